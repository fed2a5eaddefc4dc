"""
MPC objective: tracking error, actuation magnitude and actuation smoothness.
"""


def tracking_cost(layout, w, weights, ref_speed):
    """Sum over t = 0..N-1 of weighted cte^2, epsi^2 and (v - v_ref)^2."""
    cost = 0
    for t in range(layout.horizon):
        cte = w[layout.state_offset(t, 'cte')]
        epsi = w[layout.state_offset(t, 'epsi')]
        v = w[layout.state_offset(t, 'v')]
        cost += weights.cte * cte ** 2 + weights.epsi * epsi ** 2 + weights.v * (v - ref_speed) ** 2
    return cost


def actuation_cost(layout, w, weights):
    """Sum over t = 0..N-2 of weighted delta^2 and a^2."""
    cost = 0
    for t in range(layout.horizon - 1):
        delta, a = layout.actuation_at(w, t)
        cost += weights.delta * delta ** 2 + weights.a * a ** 2
    return cost


def smoothness_cost(layout, w, weights):
    """Sum over t = 0..N-3 of weighted squared actuation changes."""
    cost = 0
    for t in range(layout.horizon - 2):
        delta, a = layout.actuation_at(w, t)
        next_delta, next_a = layout.actuation_at(w, t + 1)
        cost += weights.ddelta * (next_delta - delta) ** 2 + weights.da * (next_a - a) ** 2
    return cost


def mpc_cost(layout, w, weights, ref_speed):
    """
    Total objective J for a decision vector.
    Works on casadi symbols and on plain numpy vectors alike.
    Args:
        layout (DecisionLayout): Offsets into w.
        w (sequence): Decision vector.
        weights (CostWeights): Term weights.
        ref_speed (float): Reference speed.
    Returns:
        Scalar of the element type of w.
    """
    return (tracking_cost(layout, w, weights, ref_speed)
            + actuation_cost(layout, w, weights)
            + smoothness_cost(layout, w, weights))
