# ──────────────────────────────────────────────────────────────────────────────
#  src/ilqnash/player_cost.py
#  One player's total cost: weighted terms + state-constraint penalties,
#  optionally exponentiated  J → exp(γ·J)
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
from functools import partial
from typing import List, NamedTuple, Tuple

import jax
import jax.numpy as jnp
from jax import jit, jacfwd, hessian

from .constraint import Constraint
from .cost import Cost
from .errors import ConfigurationError


class Quadraticization(NamedTuple):
    """Second-order expansion of one player's cost at one time step."""
    cost: jax.Array   # ()
    lx:   jax.Array   # (n,)
    lu:   jax.Array   # (m_i,)
    Hxx:  jax.Array   # (n, n)
    Huu:  jax.Array   # (m_i, m_i)
    Hux:  jax.Array   # (m_i, n)


class PlayerCost(object):
    """Sum of weighted running terms, terminal terms and state constraints."""

    def __init__(self, name: str = ""):
        self._name = name
        self._costs: List[Tuple[Cost, float]] = []
        self._terminal_costs: List[Tuple[Cost, float]] = []
        self._constraints: List[Constraint] = []
        self._exponential_constant = None
        self._frozen = False

    # ---------------- wiring ---------------------------------------
    def _check_not_frozen(self):
        # self is a static jit argument; the first trace fixes the wiring.
        if self._frozen:
            raise ConfigurationError(
                f"player cost '{self._name}' was already evaluated; wire it before use")

    def add_cost(self, cost: Cost, weight: float = 1.0):
        self._check_not_frozen()
        self._costs.append((cost, weight))

    def add_terminal_cost(self, cost: Cost, weight: float = 1.0):
        self._check_not_frozen()
        self._terminal_costs.append((cost, weight))

    def add_state_constraint(self, constraint: Constraint):
        self._check_not_frozen()
        self._constraints.append(constraint)

    def set_exponential_constant(self, gamma: float):
        self._check_not_frozen()
        if gamma <= 0.0:
            raise ConfigurationError(f"exponential constant must be positive, got {gamma}")
        self._exponential_constant = gamma

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_exponentiated(self) -> bool:
        return self._exponential_constant is not None

    @property
    def exponential_constant(self):
        return self._exponential_constant

    @property
    def is_empty(self) -> bool:
        return not (self._costs or self._terminal_costs or self._constraints)

    @property
    def has_terminal_cost(self) -> bool:
        return bool(self._terminal_costs)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # ---------------- evaluation -----------------------------------
    @partial(jit, static_argnums=(0,))
    def get_raw_cost(self, x, ui, k=0):
        """Un-exponentiated instantaneous cost."""
        self._frozen = True
        total = jnp.zeros(())
        for cost, weight in self._costs:
            total = total + weight * cost.get_cost(x, ui, k)
        for constraint in self._constraints:
            total = total + constraint.get_cost(x, k)
        return total

    @partial(jit, static_argnums=(0,))
    def get_raw_terminal_cost(self, x):
        self._frozen = True
        total = jnp.zeros(())
        for cost, weight in self._terminal_costs:
            total = total + weight * cost.get_cost(x, jnp.zeros(0), -1)
        return total

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, ui, k=0):
        g = self.get_raw_cost(x, ui, k)
        if self.is_exponentiated:
            return jnp.exp(self._exponential_constant * g)
        return g

    @partial(jit, static_argnums=(0,))
    def get_terminal_cost(self, x):
        self._frozen = True
        if not self._terminal_costs:
            return jnp.zeros(())
        g = self.get_raw_terminal_cost(x)
        if self.is_exponentiated:
            return jnp.exp(self._exponential_constant * g)
        return g

    # ---------------- quadraticization -----------------------------
    def _exponentiate(self, g, lx, lu, Hxx, Huu, Hux):
        # d/dz e^{γg} = γe^{γg} ∇g ;  d²/dz² e^{γg} = γe^{γg}(∇²g + γ ∇g ∇gᵀ)
        gamma = self._exponential_constant
        scale = gamma * jnp.exp(gamma * g)
        return Quadraticization(
            cost=jnp.exp(gamma * g),
            lx=scale * lx,
            lu=scale * lu,
            Hxx=scale * (Hxx + gamma * jnp.outer(lx, lx)),
            Huu=scale * (Huu + gamma * jnp.outer(lu, lu)),
            Hux=scale * (Hux + gamma * jnp.outer(lu, lx)),
        )

    @partial(jit, static_argnums=(0,))
    def quadraticize(self, x, ui, k=0) -> Quadraticization:
        """Gradient/Hessian w.r.t. the joint state and this player's control."""
        g = self.get_raw_cost(x, ui, k)
        lx, lu = jacfwd(self.get_raw_cost, argnums=(0, 1))(x, ui, k)
        (Hxx, Hxu), (Hux, Huu) = hessian(self.get_raw_cost, argnums=(0, 1))(x, ui, k)
        Huu = jnp.atleast_2d(Huu)
        Hux = Hux.reshape(ui.shape[0], x.shape[0])

        if self.is_exponentiated:
            return self._exponentiate(g, lx, lu, Hxx, Huu, Hux)
        return Quadraticization(g, lx, lu, Hxx, Huu, Hux)

    @partial(jit, static_argnums=(0,))
    def quadraticize_terminal(self, x) -> Tuple[jax.Array, jax.Array, jax.Array]:
        """(cost, lx, Hxx) of the terminal cost; zeros if none was added."""
        self._frozen = True
        n = x.shape[0]
        if not self._terminal_costs:
            return jnp.zeros(()), jnp.zeros(n), jnp.zeros((n, n))

        g = self.get_raw_terminal_cost(x)
        lx = jacfwd(self.get_raw_terminal_cost)(x)
        Hxx = hessian(self.get_raw_terminal_cost)(x)
        if self.is_exponentiated:
            q = self._exponentiate(g, lx, jnp.zeros(0), Hxx,
                                   jnp.zeros((0, 0)), jnp.zeros((0, n)))
            return q.cost, q.lx, q.Hxx
        return g, lx, Hxx
