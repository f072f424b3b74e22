"""
Exceptions raised by the iterative LQ game solver.

All of these are fatal configuration problems. They are raised once, while a
solver is being set up or immediately after a backward pass, never from inside
jitted code. Numerical near-singularity is handled by regularization and
line-search exhaustion is reported through the solver status instead.
"""


class ConfigurationError(ValueError):
    """Invalid solver parameters, cost wiring or player counts."""


class DimensionError(ConfigurationError):
    """Malformed state/control dimensions or array shapes."""


class SingularGameError(ConfigurationError):
    """The coupled block system could not be solved even after regularization."""
