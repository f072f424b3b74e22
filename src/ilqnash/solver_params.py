"""
Configuration for the iterative LQ game solver.

The defaults reproduce the usual ILQGames setup: a 2 s horizon at 0.1 s
steps, full Newton-like steps to start with, halving down to 1e-3 on
failure, and acceptance on strict decrease of the summed player costs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .errors import ConfigurationError


class AcceptanceRule(enum.Enum):
    """How the line search decides whether a candidate trajectory is better."""

    #: sum of player costs decreases (up to ``cost_tolerance``)
    TOTAL_COST = "total_cost"
    #: no player's cost increases by more than ``cost_tolerance`` and the sum decreases
    PER_PLAYER = "per_player"
    #: sufficient decrease  ΣJ_new ≤ ΣJ_old − c·η·Σ‖α‖²
    ARMIJO = "armijo"


@dataclass(frozen=True)
class SolverParams:
    """
    Parameters of one iterative LQ game solve.

    Attributes
    ----------
    time_step : float
        Discretization step dt (s). Must match the dynamics.
    time_horizon : float
        Horizon T (s), a whole multiple of dt; the grid has
        ``num_time_steps = T / dt`` controls.
    max_iterations : int
        Budget of outer iterations.
    convergence_tolerance : float
        Converged once the relative change in total cost, or the largest
        applied feedforward term, drops below this.
    initial_step_size, min_step_size, step_size_decay : float
        Backtracking schedule  η ← decay·η  from ``initial_step_size`` while
        η ≥ ``min_step_size``.
    acceptance_rule : AcceptanceRule
    cost_tolerance : float
        Slack allowed by TOTAL_COST / PER_PLAYER.
    armijo_coefficient : float
        c in the ARMIJO rule.
    regularization : float
        Multiple of the identity added to an ill-conditioned block system.
    max_condition_number : float
        Condition number above which the block system is regularized.
    stop_on_stall : bool
        Treat a failed line search as convergence instead of trying again.
    """

    time_step: float = 0.1
    time_horizon: float = 2.0
    max_iterations: int = 100
    convergence_tolerance: float = 1e-4
    initial_step_size: float = 1.0
    min_step_size: float = 1e-3
    step_size_decay: float = 0.5
    acceptance_rule: AcceptanceRule = AcceptanceRule.TOTAL_COST
    cost_tolerance: float = 0.0
    armijo_coefficient: float = 1e-4
    regularization: float = 1e-6
    max_condition_number: float = 1e8
    stop_on_stall: bool = True

    def __post_init__(self) -> None:
        if self.time_step <= 0.0:
            raise ConfigurationError(f"time_step must be positive, got {self.time_step}")
        if self.time_horizon < self.time_step:
            raise ConfigurationError(
                f"time_horizon ({self.time_horizon}) shorter than one time_step ({self.time_step})")
        steps = round(self.time_horizon / self.time_step)
        if abs(steps * self.time_step - self.time_horizon) > 1e-9 * max(1.0, self.time_horizon):
            raise ConfigurationError(
                f"time_horizon ({self.time_horizon}) is not a whole number of "
                f"time_steps ({self.time_step})")
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be at least 1")
        if self.convergence_tolerance < 0.0:
            raise ConfigurationError("convergence_tolerance must be non-negative")
        if not 0.0 < self.initial_step_size <= 1.0:
            raise ConfigurationError("initial_step_size must lie in (0, 1]")
        if not 0.0 < self.min_step_size <= self.initial_step_size:
            raise ConfigurationError("min_step_size must lie in (0, initial_step_size]")
        if not 0.0 < self.step_size_decay < 1.0:
            raise ConfigurationError("step_size_decay must lie in (0, 1)")
        if not isinstance(self.acceptance_rule, AcceptanceRule):
            raise ConfigurationError(f"unknown acceptance rule {self.acceptance_rule!r}")
        if self.cost_tolerance < 0.0:
            raise ConfigurationError("cost_tolerance must be non-negative")
        if self.armijo_coefficient <= 0.0:
            raise ConfigurationError("armijo_coefficient must be positive")
        if self.regularization <= 0.0:
            raise ConfigurationError("regularization must be positive")
        if self.max_condition_number <= 1.0:
            raise ConfigurationError("max_condition_number must exceed 1")

    @property
    def num_time_steps(self) -> int:
        """K, the number of control steps on the grid."""
        return int(round(self.time_horizon / self.time_step))
