"""
Defines the vehicle's kinematic model for MPC.
States: [x, y, psi, v, cte, epsi] (vehicle frame, psi counter-clockwise)
Controls: [delta (steering angle, positive turns left), a (acceleration)]

The model is written against a small math namespace so the same equations
run on casadi symbols (solver assembly, exact AD derivatives) and on numpy
floats (rollouts, latency prediction).
"""

from types import SimpleNamespace

import casadi as ca
import numpy as np

STATE_FIELDS = ('x', 'y', 'psi', 'v', 'cte', 'epsi')
CONTROL_FIELDS = ('delta', 'a')

CASADI_OPS = SimpleNamespace(sin=ca.sin, cos=ca.cos, atan=ca.atan)
NUMPY_OPS = SimpleNamespace(sin=np.sin, cos=np.cos, atan=np.arctan)


def polyeval(coeffs, x):
    """Evaluate c0 + c1*x + c2*x^2 + ... (Horner form, any numeric type)."""
    result = 0
    for c in reversed(list(coeffs)):
        result = result * x + c
    return result


def polyslope(coeffs, x):
    """Derivative of the reference polynomial at x."""
    coeffs = list(coeffs)
    result = 0
    for power in range(len(coeffs) - 1, 0, -1):
        result = result * x + power * coeffs[power]
    return result


class VehicleModel:
    def __init__(self, lf=2.67, error_model='integrated'):
        # Number of states and controls
        self.n_states = len(STATE_FIELDS)
        self.n_controls = len(CONTROL_FIELDS)
        self.Lf = lf  # Center of gravity to front axle (meters)
        self.error_model = error_model  # 'integrated' or 'path'

    def kinematic_model(self, state, control, dt, coeffs=None, ops=NUMPY_OPS):
        """
        Kinematic bicycle model, one discrete step of length dt.
        Args:
            state (sequence): [x, y, psi, v, cte, epsi]
            control (sequence): [delta, a]
            dt (float): Step duration (seconds).
            coeffs (sequence): Reference polynomial, c0 first. Required for the 'path' error model.
            ops (namespace): sin/cos/atan implementation matching the element type.
        Returns:
            list: Next state, same element type as the inputs.
        """
        x, y, psi, v, cte, epsi = [state[i] for i in range(self.n_states)]
        delta, a = control[0], control[1]

        yaw_step = v / self.Lf * delta * dt

        if self.error_model == 'path':
            # Errors re-referenced to the path before being propagated
            cte = y - polyeval(coeffs, x)
            epsi = psi - ops.atan(polyslope(coeffs, x))

        return [
            x + v * ops.cos(psi) * dt,
            y + v * ops.sin(psi) * dt,
            psi + yaw_step,
            v + a * dt,
            cte + v * ops.sin(epsi) * dt,
            epsi + yaw_step,
        ]

    def rollout(self, state, controls, dt, coeffs=None):
        """
        Numerically propagate a state through a control sequence.
        Args:
            state (array): Initial state, 6 values.
            controls (array): (M, 2) actuation sequence.
        Returns:
            np.ndarray: (M + 1, 6) trajectory including the initial state.
        """
        trajectory = [np.asarray(state, dtype=float)]
        for control in np.asarray(controls, dtype=float).reshape(-1, self.n_controls):
            trajectory.append(np.asarray(
                self.kinematic_model(trajectory[-1], control, dt, coeffs, NUMPY_OPS), dtype=float))
        return np.vstack(trajectory)
