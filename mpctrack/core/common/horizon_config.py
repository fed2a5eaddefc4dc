"""
Process-wide configuration for the MPC controller.
Built once at startup (usually from the YAML scenario file) and shared
read-only by every control cycle.
"""

import math
from dataclasses import dataclass, field, fields

from mpctrack.core.common.exceptions import ConfigurationError

ERROR_MODELS = ('integrated', 'path')
FALLBACK_POLICIES = ('hold', 'stop')


def _build(cls, data, section):
    """Instantiate a config dataclass from a dict, rejecting unknown keys."""
    if data is None:
        return cls()
    if isinstance(data, cls):
        return data
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{section}' must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    return cls(**data)


def _require(condition, message):
    if not condition:
        raise ConfigurationError(message)


def _is_number(value):
    # bool is an int subclass; YAML reads '1e-8' (no dot) as a string
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def _is_integer(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _require_numbers(obj, names):
    for name in names:
        value = getattr(obj, name)
        _require(_is_number(value), f"'{name}' must be a finite number, got {value!r}")


def _require_integers(obj, names):
    for name in names:
        value = getattr(obj, name)
        _require(_is_integer(value), f"'{name}' must be an integer, got {value!r}")


@dataclass(frozen=True)
class CostWeights:
    """Weights of the tracking, actuation and smoothness cost terms."""

    cte: float = 3000.0     # Cross-track error
    epsi: float = 3000.0    # Heading error
    v: float = 1.0          # Deviation from reference speed
    delta: float = 5.0      # Steering magnitude
    a: float = 5.0          # Acceleration magnitude
    ddelta: float = 200.0   # Steering change between steps
    da: float = 10.0        # Acceleration change between steps

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            _require(_is_number(value) and value >= 0.0,
                     f"Cost weight '{f.name}' must be a finite non-negative number, got {value!r}")


@dataclass(frozen=True)
class SolverOptions:
    """IPOPT budget and tolerances for one control cycle."""

    max_iter: int = 200
    max_cpu_time: float = 0.5   # seconds
    tol: float = 1e-8
    acceptable_tol: float = 1e-6
    print_level: int = 0

    def __post_init__(self):
        _require_integers(self, ('max_iter', 'print_level'))
        _require_numbers(self, ('max_cpu_time', 'tol', 'acceptable_tol'))
        _require(self.max_iter >= 1, f"max_iter must be a positive integer, got {self.max_iter!r}")
        _require(self.max_cpu_time > 0.0, f"max_cpu_time must be positive, got {self.max_cpu_time}")
        _require(self.tol > 0.0, f"tol must be positive, got {self.tol}")
        _require(self.acceptable_tol >= self.tol,
                 f"acceptable_tol ({self.acceptable_tol}) must not be tighter than tol ({self.tol})")

    def to_ipopt(self):
        """Options dict understood by casadi.nlpsol."""
        return {
            'ipopt.print_level': self.print_level,
            'ipopt.sb': 'yes',
            'ipopt.max_iter': self.max_iter,
            'ipopt.max_cpu_time': self.max_cpu_time,
            'ipopt.tol': self.tol,
            'ipopt.acceptable_tol': self.acceptable_tol,
            'print_time': 0,
            'error_on_fail': False,
        }


@dataclass(frozen=True)
class HorizonConfig:
    """
    Horizon, vehicle and cost configuration of the MPC problem.
    Args:
        horizon (int): Number of predicted states N.
        dt (float): Seconds per step.
        ref_speed (float): Reference speed tracked by the cost.
        lf (float): Distance from center of gravity to the front axle (meters).
        steer_bound (float): Steering limit (radians), symmetric.
        accel_bound (float): Throttle/acceleration limit, symmetric.
        state_bound (float): Magnitude passed to IPOPT as "no limit".
        error_model (str): 'integrated' or 'path' propagation of cte/epsi.
    """

    horizon: int = 10
    dt: float = 0.1
    ref_speed: float = 40.0
    lf: float = 2.67
    steer_bound: float = 0.436332   # 25 degrees
    accel_bound: float = 1.0
    state_bound: float = 1.0e19
    error_model: str = 'integrated'
    weights: CostWeights = field(default_factory=CostWeights)
    solver: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self):
        _require(_is_integer(self.horizon) and self.horizon >= 2,
                 f"horizon must be an integer >= 2, got {self.horizon!r}")
        _require_numbers(self, ('dt', 'ref_speed', 'lf', 'steer_bound', 'accel_bound', 'state_bound'))
        _require(self.dt > 0.0, f"dt must be positive, got {self.dt}")
        _require(self.lf > 0.0, f"lf must be positive, got {self.lf}")
        _require(self.steer_bound > 0.0, f"steer_bound must be positive, got {self.steer_bound}")
        _require(self.accel_bound > 0.0, f"accel_bound must be positive, got {self.accel_bound}")
        _require(self.state_bound > max(self.steer_bound, self.accel_bound),
                 f"state_bound ({self.state_bound}) must exceed the actuation bounds")
        _require(self.error_model in ERROR_MODELS,
                 f"error_model must be one of {ERROR_MODELS}, got {self.error_model!r}")
        _require(isinstance(self.weights, CostWeights), "weights must be a CostWeights instance")
        _require(isinstance(self.solver, SolverOptions), "solver must be a SolverOptions instance")

    @classmethod
    def from_dict(cls, config):
        """
        Build from a plain mapping such as the 'mpc' section of a YAML file.
        Args:
            config (dict): Flat horizon keys plus optional 'weights' and 'solver' sections.
        Returns:
            HorizonConfig
        """
        if config is not None and not isinstance(config, dict):
            raise ConfigurationError(f"'mpc' must be a mapping, got {type(config).__name__}")
        config = dict(config or {})
        try:
            weights = _build(CostWeights, config.pop('weights', None), 'weights')
            solver = _build(SolverOptions, config.pop('solver', None), 'solver')
            return _build(cls, dict(config, weights=weights, solver=solver), 'mpc')
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

    def replace(self, **changes):
        """Copy with some fields changed (validated again)."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes)
        return HorizonConfig(**values)


@dataclass(frozen=True)
class ControlConfig:
    """
    Per-cycle driver settings around the solver.
    Args:
        latency (float): Actuation delay compensated before solving (seconds).
        fallback (str): 'hold' the last good command or 'stop' on a failed solve.
        max_hold_cycles (int): Consecutive failures tolerated under 'hold' before stopping.
        warm_start (bool): Seed each solve with the previous shifted solution.
        poly_order (int): Degree of the reference curve fit.
        poly_inc (float): Spacing of the displayed reference line (meters).
        num_points (int): Number of displayed reference line points.
    """

    latency: float = 0.1
    fallback: str = 'hold'
    max_hold_cycles: int = 3
    warm_start: bool = False
    poly_order: int = 3
    poly_inc: float = 2.5
    num_points: int = 25

    def __post_init__(self):
        _require_numbers(self, ('latency', 'poly_inc'))
        _require_integers(self, ('max_hold_cycles', 'poly_order', 'num_points'))
        _require(isinstance(self.warm_start, bool), f"warm_start must be a boolean, got {self.warm_start!r}")
        _require(self.latency >= 0.0, f"latency must be non-negative, got {self.latency}")
        _require(self.fallback in FALLBACK_POLICIES,
                 f"fallback must be one of {FALLBACK_POLICIES}, got {self.fallback!r}")
        _require(self.max_hold_cycles >= 0, f"max_hold_cycles must be non-negative, got {self.max_hold_cycles}")
        _require(1 <= self.poly_order <= 3, f"poly_order must be between 1 and 3, got {self.poly_order}")
        _require(self.poly_inc > 0.0, f"poly_inc must be positive, got {self.poly_inc}")
        _require(self.num_points >= 0, f"num_points must be non-negative, got {self.num_points}")

    @classmethod
    def from_dict(cls, config):
        try:
            return _build(cls, config, 'control')
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc
