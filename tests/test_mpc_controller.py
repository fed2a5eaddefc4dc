"""
Tests for the MPC solver: straight-line equilibrium, bounds, initial pin,
dynamics consistency, relaxed constraints, horizon scaling and steering sign.
"""

import numpy as np
import pytest

from mpctrack.core.actuation.mpc_controller import MPCController
from mpctrack.core.actuation.nlp_engine import NLPSolution, SolveStatus
from mpctrack.core.common.exceptions import (ConfigurationError, ConvergenceError, InputError,
                                             NumericalError)
from mpctrack.core.common.horizon_config import HorizonConfig
from mpctrack.core.sensing.preprocess import tracking_errors

STEER_BOUND = 0.436332


def _make_controller(**overrides):
    return MPCController(HorizonConfig(**overrides))


@pytest.fixture(scope='module')
def mpc():
    return _make_controller()


@pytest.fixture(scope='module')
def path_mpc():
    return _make_controller(error_model='path')


def _curved_cases():
    return [
        (np.array([0.0, 0.0, 0.0, 10.0, 0.0, 0.0]), [0.0, 0.0, 0.0, 0.0]),
        (np.array([0.0, 0.0, 0.0, 20.0, 1.5, -0.1]), [-1.5, 0.1, 0.0, 0.0]),
        (np.array([0.5, 0.0, 0.05, 35.0, -2.0, 0.2]), [2.0, -0.2, 0.01, -0.001]),
    ]


class TestStraightLine:
    def test_equilibrium(self, mpc):
        result = mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], [0.0, 0.0, 0.0, 0.0])
        assert result.status is SolveStatus.CONVERGED
        assert abs(result.steering) < 1e-3
        # Below reference speed: accelerate
        assert result.throttle > 0.0
        np.testing.assert_allclose(result.trajectory[:, 1], 0.0, atol=1e-6)

    def test_above_reference_speed_brakes(self, mpc):
        result = mpc.solve([0.0, 0.0, 0.0, 60.0, 0.0, 0.0], [0.0])
        assert result.throttle < 0.0

    def test_result_shapes(self, mpc):
        result = mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], [0.0, 0.0])
        n = mpc.horizon
        assert result.trajectory.shape == (n - 1, 2)
        assert result.states.shape == (n, 6)
        assert result.actuations.shape == (n - 1, 2)
        assert result.decision.shape == (mpc.layout.n_vars,)
        # Trajectory comes from the state block, t = 1..N-1
        np.testing.assert_allclose(result.trajectory, result.states[1:, :2])
        assert result.steering == result.actuations[0, 0]
        assert result.throttle == result.actuations[0, 1]

    def test_trajectory_moves_forward(self, mpc):
        result = mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], [0.0])
        assert np.all(np.diff(result.trajectory[:, 0]) > 0.0)


class TestSolutionProperties:
    @pytest.mark.parametrize('case', range(3))
    def test_bounds(self, mpc, case):
        state, coeffs = _curved_cases()[case]
        result = mpc.solve(state, coeffs)
        assert np.all(np.abs(result.actuations[:, 0]) <= STEER_BOUND + 1e-7)
        assert np.all(np.abs(result.actuations[:, 1]) <= 1.0 + 1e-7)
        assert -1.0 <= result.normalized_steering <= 1.0

    @pytest.mark.parametrize('case', range(3))
    def test_initial_pin(self, mpc, case):
        state, coeffs = _curved_cases()[case]
        result = mpc.solve(state, coeffs)
        np.testing.assert_allclose(result.states[0], state, atol=1e-6)

    @pytest.mark.parametrize('case', range(3))
    def test_dynamics_round_trip(self, mpc, case):
        state, coeffs = _curved_cases()[case]
        result = mpc.solve(state, coeffs)
        replayed = mpc.dynamics.rollout(state, result.actuations, mpc.dt, coeffs)
        np.testing.assert_allclose(replayed[1:, :2], result.trajectory, atol=1e-4)
        np.testing.assert_allclose(replayed, result.states, atol=1e-4)

    def test_path_model_round_trip(self, path_mpc):
        state, coeffs = _curved_cases()[2]
        result = path_mpc.solve(state, coeffs)
        replayed = path_mpc.dynamics.rollout(state, result.actuations, path_mpc.dt, coeffs)
        np.testing.assert_allclose(replayed, result.states, atol=1e-4)

    def test_cost_matches_objective(self, mpc):
        state, coeffs = _curved_cases()[1]
        result = mpc.solve(state, coeffs)
        assert result.cost == pytest.approx(mpc.evaluate_cost(result.decision), rel=1e-6)

    def test_normalized_steering(self, mpc):
        state, coeffs = _curved_cases()[1]
        result = mpc.solve(state, coeffs)
        assert result.normalized_steering == pytest.approx(result.steering / STEER_BOUND)

    def test_repeated_solves_are_identical(self, mpc):
        state, coeffs = _curved_cases()[1]
        first = mpc.solve(state, coeffs)
        mpc.solve(*_curved_cases()[2])
        again = mpc.solve(state, coeffs)
        np.testing.assert_allclose(first.decision, again.decision)


def test_relaxed_steering_bound_never_costs_more():
    state = np.array([0.0, 0.0, 0.0, 20.0, -2.0, 0.15])
    coeffs = [2.0, -0.15, 0.0, 0.0]
    narrow = _make_controller(steer_bound=0.05).solve(state, coeffs)
    wide = _make_controller(steer_bound=STEER_BOUND).solve(state, coeffs)
    assert wide.cost <= narrow.cost * (1.0 + 1e-6)
    assert np.max(np.abs(narrow.actuations[:, 0])) <= 0.05 + 1e-7


def test_relaxed_accel_bound_never_costs_more():
    state = np.array([0.0, 0.0, 0.0, 5.0, 0.0, 0.0])
    narrow = _make_controller(accel_bound=0.2).solve(state, [0.0])
    wide = _make_controller(accel_bound=1.0).solve(state, [0.0])
    assert wide.cost <= narrow.cost * (1.0 + 1e-6)


@pytest.mark.parametrize('horizon', range(2, 26))
def test_horizon_scaling(horizon):
    mpc = _make_controller(horizon=horizon)
    assert mpc.layout.n_vars == 6 * horizon + 2 * (horizon - 1)
    assert mpc.engine.n_constraints == 6 * horizon
    result = mpc.solve([0.0, 0.0, 0.0, 15.0, 0.5, -0.05], [-0.5, 0.05, 0.0, 0.0])
    assert result.trajectory.shape == (horizon - 1, 2)
    assert result.actuations.shape == (horizon - 1, 2)


class TestSteeringSign:
    @pytest.mark.parametrize('offset, sign', [(1.0, 1.0), (-1.0, -1.0)])
    def test_offset_path(self, mpc, offset, sign):
        # Path offset to the left (positive y) must steer left (positive delta)
        coeffs = [offset, 0.0, 0.0, 0.0]
        cte, epsi = tracking_errors(coeffs)
        result = mpc.solve([0.0, 0.0, 0.0, 20.0, cte, epsi], coeffs)
        assert np.sign(result.steering) == sign
        assert abs(result.steering) > 1e-3

    @pytest.mark.parametrize('error_cte, sign', [(1.0, -1.0), (-1.0, 1.0)])
    def test_cross_track_error(self, mpc, error_cte, sign):
        # Vehicle left of the path (cte > 0) steers right, and vice versa
        result = mpc.solve([0.0, 0.0, 0.0, 20.0, error_cte, 0.0], [0.0])
        assert np.sign(result.steering) == sign

    @pytest.mark.parametrize('curvature, sign', [(0.02, 1.0), (-0.02, -1.0)])
    def test_curving_path(self, path_mpc, curvature, sign):
        coeffs = [0.0, 0.0, curvature, 0.0]
        cte, epsi = tracking_errors(coeffs)
        result = path_mpc.solve([0.0, 0.0, 0.0, 20.0, cte, epsi], coeffs)
        assert np.sign(result.steering) == sign

    def test_mirrored_inputs_mirror_steering(self, mpc):
        left = mpc.solve([0.0, 0.0, 0.0, 20.0, -0.8, 0.05], [0.8, -0.05])
        right = mpc.solve([0.0, 0.0, 0.0, 20.0, 0.8, -0.05], [-0.8, 0.05])
        assert left.steering == pytest.approx(-right.steering, abs=1e-6)
        assert left.throttle == pytest.approx(right.throttle, abs=1e-6)


class TestInputValidation:
    @pytest.mark.parametrize('state', [
        [0.0] * 5,
        [0.0] * 7,
        [0.0, 0.0, 0.0, float('nan'), 0.0, 0.0],
        [0.0, 0.0, float('inf'), 10.0, 0.0, 0.0],
        ['a', 0.0, 0.0, 10.0, 0.0, 0.0],
    ])
    def test_bad_state(self, mpc, state):
        with pytest.raises(InputError):
            mpc.solve(state, [0.0])

    @pytest.mark.parametrize('coeffs', [[], [0.0] * 5, [0.0, float('nan')]])
    def test_bad_coeffs(self, mpc, coeffs):
        with pytest.raises(InputError):
            mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], coeffs)

    def test_bad_initial_guess(self, mpc):
        with pytest.raises(InputError):
            mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], [0.0], initial_guess=np.zeros(3))

    def test_bad_config(self):
        with pytest.raises(ConfigurationError):
            MPCController({'horizon': 1})
        with pytest.raises(ConfigurationError):
            MPCController({'dt': 0.0})


class TestWarmStart:
    def test_initial_guess_is_feasible(self, mpc):
        state = np.array([0.0, 0.0, 0.1, 12.0, 0.4, 0.1])
        w0 = mpc.initial_guess(state, np.zeros(4))
        np.testing.assert_allclose(mpc.layout.state_at(w0, 0), state)
        assert np.all(w0[mpc.layout.n_states:] == 0.0)

    def test_shift_guess(self, mpc):
        result = mpc.solve(*_curved_cases()[1])
        shifted = mpc.shift_guess(result.decision)
        assert shifted.shape == result.decision.shape
        np.testing.assert_allclose(mpc.layout.state_at(shifted, 0), result.states[1])
        np.testing.assert_allclose(mpc.layout.actuation_at(shifted, 0), result.actuations[1])
        np.testing.assert_allclose(mpc.layout.state_at(shifted, mpc.horizon - 1), result.states[-1])

    def test_warm_started_solve_matches_cold(self, mpc):
        state, coeffs = _curved_cases()[1]
        cold = mpc.solve(state, coeffs)
        warm = mpc.solve(state, coeffs, initial_guess=cold.decision)
        assert warm.steering == pytest.approx(cold.steering, abs=1e-5)
        assert warm.throttle == pytest.approx(cold.throttle, abs=1e-5)


class TestSolveFailures:
    def test_iteration_limit(self):
        mpc = MPCController({'solver': {'max_iter': 1}})
        with pytest.raises(ConvergenceError) as excinfo:
            mpc.solve([0.0, 0.0, 0.0, 10.0, 2.0, 0.3], [-2.0, -0.3])
        assert excinfo.value.status is SolveStatus.ITERATION_LIMIT
        assert excinfo.value.return_status == 'Maximum_Iterations_Exceeded'

    def test_numerical_failure(self, monkeypatch):
        mpc = _make_controller(horizon=4)

        def broken_solve(x0, p, lbx, ubx):
            return NLPSolution(x=np.full(len(x0), np.nan), cost=float('nan'),
                               status=SolveStatus.NUMERICAL_FAILURE,
                               return_status='Invalid_Number_Detected', iterations=3, solve_time=0.0)

        monkeypatch.setattr(mpc.engine, 'solve', broken_solve)
        with pytest.raises(NumericalError) as excinfo:
            mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], [0.0])
        assert excinfo.value.iterations == 3

    def test_overflowing_cost_raises_numerical_error(self):
        # (v - ref_speed)^2 overflows to inf at the very first evaluation
        mpc = _make_controller(horizon=4)
        with pytest.raises(NumericalError) as excinfo:
            mpc.solve([0.0, 0.0, 0.0, 1.0e200, 0.0, 0.0], [0.0])
        assert excinfo.value.status is SolveStatus.NUMERICAL_FAILURE

    def test_infeasible_reported_as_convergence_error(self, monkeypatch):
        mpc = _make_controller(horizon=4)

        def infeasible_solve(x0, p, lbx, ubx):
            return NLPSolution(x=np.asarray(x0), cost=0.0, status=SolveStatus.INFEASIBLE,
                               return_status='Infeasible_Problem_Detected', iterations=7, solve_time=0.0)

        monkeypatch.setattr(mpc.engine, 'solve', infeasible_solve)
        with pytest.raises(ConvergenceError) as excinfo:
            mpc.solve([0.0, 0.0, 0.0, 10.0, 0.0, 0.0], [0.0])
        assert excinfo.value.status is SolveStatus.INFEASIBLE
