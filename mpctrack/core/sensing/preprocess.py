"""
Turns raw telemetry into the solver inputs:
waypoints shifted into the vehicle frame, a cubic reference fit,
initial tracking errors and a latency-compensated state.
"""

import numpy as np

from mpctrack.core.common.exceptions import InputError
from mpctrack.dynamics.vehicle_module import NUMPY_OPS, polyeval, polyslope


def to_vehicle_frame(ptsx, ptsy, px, py, psi):
    """
    Shift world-frame waypoints so the vehicle sits at the origin heading along +x.
    Args:
        ptsx, ptsy (sequence): Waypoints in the world frame.
        px, py (float): Vehicle position in the world frame.
        psi (float): Vehicle heading in the world frame (radians).
    Returns:
        tuple(np.ndarray, np.ndarray): Waypoints in the vehicle frame.
    """
    try:
        shift_x = np.asarray(ptsx, dtype=float) - px
        shift_y = np.asarray(ptsy, dtype=float) - py
    except (TypeError, ValueError) as exc:
        raise InputError("Waypoints must be sequences of real numbers") from exc
    if shift_x.shape != shift_y.shape:
        raise InputError(f"ptsx and ptsy differ in length ({shift_x.size} vs {shift_y.size})")
    cos_psi, sin_psi = np.cos(-psi), np.sin(-psi)
    return shift_x * cos_psi - shift_y * sin_psi, shift_x * sin_psi + shift_y * cos_psi


def fit_reference(xs, ys, order=3):
    """
    Least-squares polynomial fit of the reference waypoints.
    Returns:
        np.ndarray: order + 1 coefficients, constant term first.
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if xs.size <= order:
        raise InputError(f"Need more than {order} waypoints for an order-{order} fit, got {xs.size}")
    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        raise InputError("Waypoints contain non-finite values")
    vander = np.vander(xs, order + 1, increasing=True)
    coeffs, _, _, _ = np.linalg.lstsq(vander, ys, rcond=None)
    return coeffs


def tracking_errors(coeffs, x=0.0, y=0.0, psi=0.0):
    """Cross-track error (vehicle minus path) and heading error at a pose."""
    cte = y - polyeval(coeffs, x)
    epsi = psi - np.arctan(polyslope(coeffs, x))
    return float(cte), float(epsi)


def predict_state(model, speed, steering, throttle, coeffs, latency):
    """
    Vehicle-frame state after the actuation latency.
    The vehicle starts at the origin with heading 0; one model step of length
    `latency` under the currently applied command gives the state the solver
    should plan from.
    Args:
        model (VehicleModel): Dynamics shared with the solver.
        speed (float): Current speed.
        steering (float): Applied steering angle (radians, positive left).
        throttle (float): Applied acceleration command.
        coeffs (sequence): Reference polynomial in the vehicle frame.
        latency (float): Actuation delay (seconds).
    Returns:
        np.ndarray: [x, y, psi, v, cte, epsi]
    """
    cte, epsi = tracking_errors(coeffs)
    state = np.array([0.0, 0.0, 0.0, speed, cte, epsi])
    if latency <= 0.0:
        return state
    return np.asarray(model.kinematic_model(state, [steering, throttle], latency, coeffs, NUMPY_OPS),
                      dtype=float)


def reference_line(coeffs, poly_inc=2.5, num_points=25):
    """Sampled reference polyline for display."""
    xs = poly_inc * np.arange(num_points)
    return xs, polyeval(coeffs, xs)
