"""
Closed-loop test script for the MPC controller.
The simulator is replaced by the kinematic model itself, driving along a
synthetic winding track.
"""

import argparse
import logging
from pathlib import Path

import numpy as np

from mpctrack.core.actuation.controller import ControlManager
from mpctrack.scenario_testing.config_yaml import load_configs

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).parent / 'mpc_test.yaml'


def build_track(length=600.0, amplitude=8.0, wavelength=150.0, spacing=5.0):
    """Sinusoidal reference waypoints in the world frame."""
    xs = np.arange(0.0, length, spacing)
    return xs, amplitude * np.sin(2.0 * np.pi * xs / wavelength)


def run_scenario(config_path=DEFAULT_CONFIG, cycles=None):
    """
    Main function to run the MPC-controlled vehicle along the track.
    Returns:
        np.ndarray: Lateral distance to the track at every completed cycle.
    """
    # -------------------------------------------------------------------------
    # 1. Load Configuration and build the controller
    # -------------------------------------------------------------------------
    mpc_config, control_config, params = load_configs(config_path)
    track = params.get('track', {})
    sim = params.get('simulation', {})
    control_manager = ControlManager(mpc_config, control_config)

    xs, ys = build_track(track.get('length', 600.0), track.get('amplitude', 8.0),
                         track.get('wavelength', 150.0), track.get('spacing', 5.0))
    n_waypoints = track.get('waypoints', 6)

    # -------------------------------------------------------------------------
    # 2. Vehicle state in the world frame
    # -------------------------------------------------------------------------
    px, py = 0.0, ys[0] + sim.get('initial_offset', 1.0)
    psi = np.arctan2(ys[1] - ys[0], xs[1] - xs[0])
    v = sim.get('initial_speed', 10.0)
    steering, throttle = 0.0, 0.0

    # -------------------------------------------------------------------------
    # 3. Main Simulation Loop
    # -------------------------------------------------------------------------
    errors = []
    for cycle in range(cycles or sim.get('cycles', 300)):
        ahead = int(np.searchsorted(xs, px, side='right'))
        if ahead + n_waypoints > len(xs):
            logger.info(f"End of track reached after {cycle} cycles")
            break

        telemetry = {
            'ptsx': xs[ahead:ahead + n_waypoints].tolist(),
            'ptsy': ys[ahead:ahead + n_waypoints].tolist(),
            'x': px, 'y': py, 'psi': psi, 'speed': v,
            'steering_angle': steering, 'throttle': throttle,
        }
        command = control_manager.run_step(telemetry)
        steering = command['steering_angle'] * mpc_config.steer_bound
        throttle = command['throttle']

        # Advance the vehicle by one control period
        px += v * np.cos(psi) * mpc_config.dt
        py += v * np.sin(psi) * mpc_config.dt
        # Simulator convention: positive steering turns clockwise
        psi -= v / mpc_config.lf * steering * mpc_config.dt
        v += throttle * mpc_config.dt

        errors.append(abs(py - np.interp(px, xs, ys)))
        logger.debug(f"cycle {cycle}: x={px:.1f} y={py:.2f} v={v:.1f} "
                     f"steer={command['steering_angle']:+.3f} throttle={throttle:+.3f}")

    errors = np.asarray(errors)
    if errors.size:
        logger.info(f"Lateral error over {errors.size} cycles: mean={errors.mean():.3f} m, "
                    f"max={errors.max():.3f} m")
    return errors


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--config', default=str(DEFAULT_CONFIG), help='Scenario YAML file')
    parser.add_argument('--cycles', type=int, default=None, help='Override the number of control cycles')
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    run_scenario(args.config, args.cycles)
