"""
Index arithmetic for the flat MPC decision vector.
[x_0..x_{N-1}, y_0.., psi_0.., v_0.., cte_0.., epsi_0.., delta_0..delta_{N-2}, a_0..a_{N-2}]
"""

from dataclasses import dataclass

from mpctrack.dynamics.vehicle_module import CONTROL_FIELDS, STATE_FIELDS


@dataclass(frozen=True)
class DecisionLayout:
    horizon: int

    @property
    def n_states(self):
        return len(STATE_FIELDS) * self.horizon

    @property
    def n_controls(self):
        return len(CONTROL_FIELDS) * (self.horizon - 1)

    @property
    def n_vars(self):
        """Length of the decision vector: 6N + 2(N - 1)."""
        return self.n_states + self.n_controls

    @property
    def n_constraints(self):
        """Initial pin (6) plus dynamics residuals 6(N - 1)."""
        return len(STATE_FIELDS) * self.horizon

    def state_offset(self, t, name):
        if not 0 <= t < self.horizon:
            raise IndexError(f"State step {t} outside horizon 0..{self.horizon - 1}")
        return STATE_FIELDS.index(name) * self.horizon + t

    def actuation_offset(self, t, name):
        if not 0 <= t < self.horizon - 1:
            raise IndexError(f"Actuation step {t} outside horizon 0..{self.horizon - 2}")
        return self.n_states + CONTROL_FIELDS.index(name) * (self.horizon - 1) + t

    def state_at(self, vector, t):
        """The 6 state entries of step t, in STATE_FIELDS order."""
        return [vector[self.state_offset(t, name)] for name in STATE_FIELDS]

    def actuation_at(self, vector, t):
        """The (delta, a) entries of step t."""
        return [vector[self.actuation_offset(t, name)] for name in CONTROL_FIELDS]
