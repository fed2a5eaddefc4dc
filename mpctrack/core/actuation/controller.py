"""
Integrates the MPC controller into the per-cycle telemetry loop.
"""

import logging

from mpctrack.bridge import event_codec
from mpctrack.core.actuation.mpc_controller import MPCController
from mpctrack.core.common.exceptions import InputError, SolveError
from mpctrack.core.common.horizon_config import ControlConfig, HorizonConfig
from mpctrack.core.sensing.preprocess import (fit_reference, predict_state, reference_line,
                                              to_vehicle_frame)

logger = logging.getLogger(__name__)

TELEMETRY_KEYS = ('ptsx', 'ptsy', 'x', 'y', 'psi', 'speed', 'steering_angle', 'throttle')

# The simulator reports and expects steering positive clockwise (right turn);
# the vehicle model steers positive counter-clockwise.
SIMULATOR_STEERING_SIGN = -1.0


def _telemetry_float(telemetry, key):
    try:
        return float(telemetry[key])
    except (TypeError, ValueError) as exc:
        raise InputError(f"Telemetry '{key}' must be a number, got {telemetry[key]!r}") from exc


class ControlManager:
    def __init__(self, mpc_config, control_config=None, controller=None):
        """
        Initialize the MPC controller.
        Args:
            mpc_config (dict or HorizonConfig): 'mpc' section of the YAML configuration.
            control_config (dict or ControlConfig): 'control' section of the YAML configuration.
            controller (MPCController): Prebuilt solver, reused instead of building one.
        """
        if not isinstance(mpc_config, HorizonConfig):
            mpc_config = HorizonConfig.from_dict(mpc_config)
        if not isinstance(control_config, ControlConfig):
            control_config = ControlConfig.from_dict(control_config)
        self.config = control_config
        self.controller = controller or MPCController(mpc_config)

        self.last_command = None
        self.last_result = None
        self.failures = 0

    def vehicle_state(self, telemetry):
        """
        Reference fit and latency-compensated state for one telemetry frame.
        Args:
            telemetry (dict): Simulator telemetry (steering positive clockwise).
        Returns:
            tuple(np.ndarray, np.ndarray): Path coefficients and [x, y, psi, v, cte, epsi].
        Raises:
            InputError: Missing or malformed telemetry.
        """
        if not isinstance(telemetry, dict):
            raise InputError(f"Telemetry must be an object, got {type(telemetry).__name__}")
        missing = [key for key in TELEMETRY_KEYS if key not in telemetry]
        if missing:
            raise InputError(f"Telemetry is missing {', '.join(missing)}")

        px, py, psi, speed, steering, throttle = [
            _telemetry_float(telemetry, key)
            for key in ('x', 'y', 'psi', 'speed', 'steering_angle', 'throttle')]

        ptsx, ptsy = to_vehicle_frame(telemetry['ptsx'], telemetry['ptsy'], px, py, psi)
        coeffs = fit_reference(ptsx, ptsy, self.config.poly_order)
        state = predict_state(self.controller.dynamics, speed, SIMULATOR_STEERING_SIGN * steering,
                              throttle, coeffs, self.config.latency)
        return coeffs, state

    def run_step(self, telemetry):
        """
        Execute one control step.
        Args:
            telemetry (dict): Waypoints (ptsx, ptsy) and vehicle pose/speed/actuation in the world frame.
        Returns:
            dict: steering_angle (normalized, positive clockwise), throttle, predicted (mpc_x, mpc_y)
            and reference (next_x, next_y) points.
        Raises:
            InputError: Missing or malformed telemetry.
        """
        coeffs, state = self.vehicle_state(telemetry)
        next_x, next_y = reference_line(coeffs, self.config.poly_inc, self.config.num_points)

        guess = None
        if self.config.warm_start and self.last_result is not None:
            guess = self.controller.shift_guess(self.last_result.decision)

        try:
            result = self.controller.solve(state, coeffs, initial_guess=guess)
        except SolveError as exc:
            command = self._fallback(exc)
            command.update(next_x=next_x.tolist(), next_y=next_y.tolist())
            return command

        self.failures = 0
        self.last_result = result
        self.last_command = {
            'steering_angle': SIMULATOR_STEERING_SIGN * result.normalized_steering,
            'throttle': result.throttle,
        }
        return dict(self.last_command,
                    mpc_x=result.trajectory[:, 0].tolist(),
                    mpc_y=result.trajectory[:, 1].tolist(),
                    next_x=next_x.tolist(),
                    next_y=next_y.tolist())

    def _fallback(self, error):
        """Command to send when the solver gave no usable result."""
        self.failures += 1
        self.last_result = None
        hold = (self.config.fallback == 'hold' and self.last_command is not None
                and self.failures <= self.config.max_hold_cycles)
        if hold:
            logger.warning(f"MPC solve failed ({error.return_status}), holding previous command "
                           f"[{self.failures}/{self.config.max_hold_cycles}]")
            command = dict(self.last_command)
        else:
            logger.warning(f"MPC solve failed ({error.return_status}), commanding safe stop")
            command = self.safe_stop()
        command.update(mpc_x=[], mpc_y=[])
        return command

    @staticmethod
    def safe_stop():
        return {'steering_angle': 0.0, 'throttle': -1.0}

    def on_message(self, frame):
        """
        Handle one simulator frame.
        Args:
            frame (str): Raw text frame.
        Returns:
            str: Reply frame, or None when the frame needs no reply.
        """
        if not event_codec.is_event(frame):
            return None
        payload = event_codec.has_data(frame)
        if not payload:
            # Manual driving
            return event_codec.MANUAL_FRAME
        event, data = event_codec.decode_event(payload)
        if event != 'telemetry':
            return None
        return event_codec.encode_event('steer', self.run_step(data))
