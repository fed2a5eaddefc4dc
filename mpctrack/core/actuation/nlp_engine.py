"""
Thin wrapper around CasADi's IPOPT interface.
Derivatives (gradient, constraint Jacobian, Lagrangian Hessian) are exact,
generated by CasADi's automatic differentiation of the symbolic problem.
"""

import enum
import logging
import time
from dataclasses import dataclass

import casadi as ca
import numpy as np

logger = logging.getLogger(__name__)


class SolveStatus(enum.Enum):
    CONVERGED = 'converged'
    ITERATION_LIMIT = 'iteration_limit'
    INFEASIBLE = 'infeasible'
    NUMERICAL_FAILURE = 'numerical_failure'


_IPOPT_STATUS = {
    'Solve_Succeeded': SolveStatus.CONVERGED,
    'Solved_To_Acceptable_Level': SolveStatus.CONVERGED,
    'Maximum_Iterations_Exceeded': SolveStatus.ITERATION_LIMIT,
    'Maximum_CpuTime_Exceeded': SolveStatus.ITERATION_LIMIT,
    'Maximum_WallTime_Exceeded': SolveStatus.ITERATION_LIMIT,
    'Infeasible_Problem_Detected': SolveStatus.INFEASIBLE,
    'Restoration_Failed': SolveStatus.INFEASIBLE,
    'Not_Enough_Degrees_Of_Freedom': SolveStatus.INFEASIBLE,
    'Search_Direction_Becomes_Too_Small': SolveStatus.NUMERICAL_FAILURE,
    'Diverging_Iterates': SolveStatus.NUMERICAL_FAILURE,
    'Invalid_Number_Detected': SolveStatus.NUMERICAL_FAILURE,
    'Error_In_Step_Computation': SolveStatus.NUMERICAL_FAILURE,
}


def classify_status(return_status):
    """Map an IPOPT return status string onto a SolveStatus."""
    return _IPOPT_STATUS.get(return_status, SolveStatus.NUMERICAL_FAILURE)


def check_finite(status, x, cost):
    """A converged status only stands if the solution and objective are finite."""
    if status is SolveStatus.CONVERGED and not (np.all(np.isfinite(x)) and np.isfinite(cost)):
        return SolveStatus.NUMERICAL_FAILURE
    return status


@dataclass
class NLPSolution:
    x: np.ndarray
    cost: float
    status: SolveStatus
    return_status: str
    iterations: int
    solve_time: float


class NLPEngine:
    def __init__(self, variables, parameters, cost, constraints, options):
        """
        Build the IPOPT solver once; it is reused for every control cycle.
        Args:
            variables (casadi.SX): Decision vector symbol.
            parameters (casadi.SX): Per-cycle parameter symbol (state, coefficients).
            cost (casadi.SX): Scalar objective.
            constraints (list): Equality residual expressions (g == 0).
            options (SolverOptions): IPOPT budget and tolerances.
        """
        self.n_constraints = len(constraints)
        nlp = {
            'x': variables,
            'f': cost,
            'g': ca.vertcat(*constraints),
            'p': parameters,
        }
        self.solver = ca.nlpsol('mpc_solver', 'ipopt', nlp, options.to_ipopt())
        # Equality constraints: lbg = ubg = 0
        self.lbg = np.zeros(self.n_constraints)
        self.ubg = np.zeros(self.n_constraints)
        logger.info(f"Built IPOPT solver: {variables.numel()} variables, {self.n_constraints} constraints")

    def solve(self, x0, p, lbx, ubx):
        """
        Run IPOPT from x0.
        Returns:
            NLPSolution: Solution vector and classified status. Never raises for
            a failed solve; the caller decides what a failure means.
        """
        start = time.perf_counter()
        try:
            sol = self.solver(x0=x0, p=p, lbx=lbx, ubx=ubx, lbg=self.lbg, ubg=self.ubg)
        except RuntimeError as exc:
            # CasADi raises when a function evaluation itself fails
            logger.warning(f"IPOPT evaluation error: {exc}")
            return NLPSolution(x=np.full(len(x0), np.nan), cost=float('nan'),
                               status=SolveStatus.NUMERICAL_FAILURE, return_status='Evaluation_Error',
                               iterations=0, solve_time=time.perf_counter() - start)
        elapsed = time.perf_counter() - start

        stats = self.solver.stats()
        return_status = stats.get('return_status', 'unknown')
        x = np.array(sol['x'], dtype=float).flatten()
        cost = float(sol['f'])
        status = check_finite(classify_status(return_status), x, cost)

        return NLPSolution(x=x, cost=cost, status=status, return_status=return_status,
                           iterations=int(stats.get('iter_count', 0)), solve_time=elapsed)
