"""
Equality residuals and variable bounds of the MPC problem.
"""

import numpy as np

from mpctrack.dynamics.vehicle_module import NUMPY_OPS, STATE_FIELDS


def constraint_residuals(layout, model, w, state, coeffs, dt, ops=NUMPY_OPS):
    """
    Residuals that must vanish at a feasible solution.
    Indices 0..5 pin state[0] to the measured state; then, for each
    t = 1..N-1, model(state_{t-1}, actuation_{t-1}) - state_t per component.
    Args:
        layout (DecisionLayout): Offsets into w.
        model (VehicleModel): Dynamics used for the transitions.
        w (sequence): Decision vector (casadi symbol or numpy array).
        state (sequence): Measured vehicle state, 6 values.
        coeffs (sequence): Reference polynomial coefficients.
        dt (float): Step duration.
        ops (namespace): Math operations matching the element type of w.
    Returns:
        list: 6N residual expressions, state-field-major within each block.
    """
    residuals = [w[layout.state_offset(0, name)] - state[i] for i, name in enumerate(STATE_FIELDS)]

    for t in range(1, layout.horizon):
        predicted = model.kinematic_model(layout.state_at(w, t - 1), layout.actuation_at(w, t - 1),
                                          dt, coeffs, ops)
        actual = layout.state_at(w, t)
        residuals.extend(predicted[i] - actual[i] for i in range(len(STATE_FIELDS)))

    return residuals


def variable_bounds(layout, config):
    """
    Lower and upper bounds for the decision vector.
    States are left free (+-state_bound), actuators are boxed.
    Args:
        layout (DecisionLayout): Offsets.
        config (HorizonConfig): Bounds.
    Returns:
        tuple(np.ndarray, np.ndarray): lbx, ubx
    """
    lbx = np.full(layout.n_vars, -config.state_bound)
    ubx = np.full(layout.n_vars, config.state_bound)

    for t in range(layout.horizon - 1):
        lbx[layout.actuation_offset(t, 'delta')] = -config.steer_bound
        ubx[layout.actuation_offset(t, 'delta')] = config.steer_bound
        lbx[layout.actuation_offset(t, 'a')] = -config.accel_bound
        ubx[layout.actuation_offset(t, 'a')] = config.accel_bound

    return lbx, ubx
