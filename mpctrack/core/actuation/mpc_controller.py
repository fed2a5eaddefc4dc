"""
Model Predictive Controller (MPC) for autonomous vehicle trajectory tracking.
Uses CasADi for symbolic optimization and IPOPT as the solver.
"""

import logging
import math
from dataclasses import dataclass

import casadi as ca
import numpy as np

from mpctrack.core.actuation.constraints import constraint_residuals, variable_bounds
from mpctrack.core.actuation.layout import DecisionLayout
from mpctrack.core.actuation.nlp_engine import NLPEngine, SolveStatus
from mpctrack.core.actuation.objective import mpc_cost
from mpctrack.core.common.exceptions import ConvergenceError, InputError, NumericalError
from mpctrack.core.common.horizon_config import HorizonConfig
from mpctrack.dynamics.vehicle_module import CASADI_OPS, CONTROL_FIELDS, STATE_FIELDS, VehicleModel

logger = logging.getLogger(__name__)

MAX_COEFFS = 4  # cubic reference path


@dataclass
class SolverResult:
    """Outcome of one successful solve."""

    steering: float             # delta_0 (radians)
    throttle: float             # a_0
    trajectory: np.ndarray      # (N-1, 2) predicted (x, y) for t = 1..N-1
    states: np.ndarray          # (N, 6) solved state block
    actuations: np.ndarray      # (N-1, 2) solved (delta, a) block
    cost: float
    status: SolveStatus
    iterations: int
    solve_time: float
    decision: np.ndarray        # raw decision vector
    steer_bound: float

    @property
    def normalized_steering(self):
        """Steering command scaled to [-1, 1] by the steering bound."""
        return float(np.clip(self.steering / self.steer_bound, -1.0, 1.0))


def _as_finite_vector(values, name):
    try:
        vector = np.asarray(values, dtype=float).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise InputError(f"{name} must be a sequence of real numbers") from exc
    if not np.all(np.isfinite(vector)):
        raise InputError(f"{name} contains non-finite values: {vector.tolist()}")
    return vector


class MPCController:
    def __init__(self, config):
        """
        Initialize MPC with configuration parameters.
        Args:
            config (HorizonConfig or dict): Horizon configuration (dict as found in the YAML file).
        """
        if not isinstance(config, HorizonConfig):
            config = HorizonConfig.from_dict(config)
        self.config = config

        # Prediction horizon and timestep
        self.horizon = config.horizon
        self.dt = config.dt
        self.layout = DecisionLayout(config.horizon)

        # Vehicle dynamics model
        self.dynamics = VehicleModel(lf=config.lf, error_model=config.error_model)

        self.lbx, self.ubx = variable_bounds(self.layout, config)
        # Setup MPC optimization problem
        self.setup_mpc()

    def setup_mpc(self):
        """Setup symbolic variables, cost function, and constraints for CasADi solver."""
        # W: flat decision vector (states then actuations)
        # P: measured state (6) followed by padded path coefficients (4)
        self.W = ca.SX.sym('W', self.layout.n_vars)
        self.P = ca.SX.sym('P', self.dynamics.n_states + MAX_COEFFS)
        state = self.P[:self.dynamics.n_states]
        coeffs = [self.P[self.dynamics.n_states + i] for i in range(MAX_COEFFS)]

        cost = mpc_cost(self.layout, self.W, self.config.weights, self.config.ref_speed)
        constraints = constraint_residuals(self.layout, self.dynamics, self.W, state, coeffs,
                                           self.dt, CASADI_OPS)

        self.engine = NLPEngine(self.W, self.P, cost, constraints, self.config.solver)

    def solve(self, state, coeffs, initial_guess=None):
        """
        Compute the optimal actuation for the current cycle.
        Args:
            state (sequence): [x, y, psi, v, cte, epsi] in the vehicle frame.
            coeffs (sequence): 1 to 4 reference polynomial coefficients, c0 first.
            initial_guess (sequence): Optional decision vector to start from.
        Returns:
            SolverResult: First actuation pair and predicted trajectory.
        Raises:
            InputError: Malformed state, coefficients or initial guess.
            ConvergenceError: Iteration/time budget exhausted or infeasible.
            NumericalError: Non-finite values met while solving.
        """
        state = _as_finite_vector(state, 'state')
        if state.size != self.dynamics.n_states:
            raise InputError(f"state must have {self.dynamics.n_states} components, got {state.size}")
        coeffs = _as_finite_vector(coeffs, 'coeffs')
        if not 1 <= coeffs.size <= MAX_COEFFS:
            raise InputError(f"coeffs must have 1 to {MAX_COEFFS} components, got {coeffs.size}")
        coeffs = np.pad(coeffs, (0, MAX_COEFFS - coeffs.size))

        if initial_guess is None:
            w0 = self.initial_guess(state, coeffs)
        else:
            w0 = _as_finite_vector(initial_guess, 'initial_guess')
            if w0.size != self.layout.n_vars:
                raise InputError(f"initial_guess must have {self.layout.n_vars} components, got {w0.size}")

        solution = self.engine.solve(w0, np.concatenate([state, coeffs]), self.lbx, self.ubx)
        logger.debug(f"MPC solve: {solution.return_status} after {solution.iterations} iterations "
                     f"in {solution.solve_time * 1000.0:.1f} ms, cost={solution.cost:.4g}")

        if solution.status is SolveStatus.NUMERICAL_FAILURE:
            raise NumericalError(f"Numerical failure in MPC solve: {solution.return_status}",
                                 solution.status, solution.return_status, solution.iterations)
        if solution.status is not SolveStatus.CONVERGED:
            raise ConvergenceError(f"MPC solve did not converge: {solution.return_status}",
                                   solution.status, solution.return_status, solution.iterations)

        return self._extract(solution)

    def initial_guess(self, state, coeffs):
        """Zero-actuation rollout from the measured state, so every residual starts at zero."""
        w0 = np.zeros(self.layout.n_vars)
        rollout = self.dynamics.rollout(state, np.zeros((self.horizon - 1, self.dynamics.n_controls)),
                                        self.dt, coeffs)
        for t in range(self.horizon):
            for i, name in enumerate(STATE_FIELDS):
                w0[self.layout.state_offset(t, name)] = rollout[t, i]
        return w0

    def shift_guess(self, decision):
        """Previous solution advanced one step, last step repeated, for warm starting."""
        decision = np.asarray(decision, dtype=float)
        w0 = np.empty_like(decision)
        for t in range(self.horizon):
            src = min(t + 1, self.horizon - 1)
            for name in STATE_FIELDS:
                w0[self.layout.state_offset(t, name)] = decision[self.layout.state_offset(src, name)]
        for t in range(self.horizon - 1):
            src = min(t + 1, self.horizon - 2)
            for name in CONTROL_FIELDS:
                w0[self.layout.actuation_offset(t, name)] = decision[self.layout.actuation_offset(src, name)]
        return w0

    def _extract(self, solution):
        """Read actuation and predicted trajectory out of the solved vector."""
        w = solution.x
        states = np.array([self.layout.state_at(w, t) for t in range(self.horizon)])
        actuations = np.array([self.layout.actuation_at(w, t) for t in range(self.horizon - 1)])

        # Predicted path comes from the state block, skipping the pinned t = 0
        trajectory = states[1:, :2].copy()
        delta, acc = actuations[0]

        return SolverResult(
            steering=float(delta),
            throttle=float(acc),
            trajectory=trajectory,
            states=states,
            actuations=actuations,
            cost=solution.cost,
            status=solution.status,
            iterations=solution.iterations,
            solve_time=solution.solve_time,
            decision=w.copy(),
            steer_bound=self.config.steer_bound,
        )

    def evaluate_cost(self, decision):
        """Objective value of an arbitrary decision vector (numpy)."""
        value = mpc_cost(self.layout, np.asarray(decision, dtype=float), self.config.weights,
                         self.config.ref_speed)
        if not math.isfinite(value):
            raise NumericalError("Objective evaluated to a non-finite value")
        return float(value)
