"""
Error kinds raised by the MPC core.
Validation errors are raised before any problem is assembled; solve errors
carry the NLP status so the caller can pick its own fallback command.
"""


class MPCError(Exception):
    """Base class for every error raised by mpctrack."""


class InputError(MPCError, ValueError):
    """Malformed vehicle state, path coefficients or initial guess."""


class ConfigurationError(MPCError, ValueError):
    """Invalid horizon or controller configuration."""


class SolveError(MPCError):
    """
    The NLP engine returned without a usable solution.
    Args:
        message (str): Human readable description.
        status (SolveStatus): Classified engine status.
        return_status (str): Raw IPOPT return status.
        iterations (int): Iterations spent before giving up.
    """

    def __init__(self, message, status=None, return_status='', iterations=0):
        super().__init__(message)
        self.status = status
        self.return_status = return_status
        self.iterations = iterations


class ConvergenceError(SolveError):
    """Iteration/time budget exhausted or problem detected infeasible."""


class NumericalError(SolveError):
    """NaN/Inf during derivative evaluation, line search or in the solution."""
