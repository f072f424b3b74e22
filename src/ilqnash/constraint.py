"""
State constraints (smooth penalties) and control box constraints.

A state constraint is described by a signed violation g(x, k) which is
non-positive when the constraint holds.  Its penalty

    weight · exp(z),                         z = sharpness · g ≤ z_max
    weight · exp(z_max) · (1 + z − z_max),   z > z_max

is negligible deep inside the feasible set and steepens as the bound is
approached. Past z_max (``max_exponent``) it continues along its tangent, so
value, gradient and Hessian stay finite however far the state strays.
"""
from functools import partial
from typing import Sequence

import jax
import jax.numpy as jnp
from jax import jit, grad

_SMALL = 1e-9


class Constraint(object):
    """Base class for smooth state constraints."""

    def __init__(self, name: str = "", weight: float = 1.0, sharpness: float = 10.0,
                 max_exponent: float = 20.0):
        if sharpness <= 0.0 or weight <= 0.0 or max_exponent <= 0.0:
            raise ValueError("constraint weight, sharpness and max_exponent must be positive")
        self._name = name
        self.weight = weight
        self.sharpness = sharpness
        self.max_exponent = max_exponent

    @property
    def name(self) -> str:
        return self._name

    @partial(jit, static_argnums=(0,))
    def value(self, x: jax.Array, k: int = 0) -> jax.Array:
        """Signed violation; > 0 means violated."""
        raise NotImplementedError

    @partial(jit, static_argnums=(0,))
    def get_grad(self, x, k=0):
        return grad(self.value)(x, k)

    @partial(jit, static_argnums=(0,))
    def is_satisfied(self, x, k=0):
        return self.value(x, k) <= 0.0

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, k=0):
        z = self.sharpness * self.value(x, k)
        excess = jnp.maximum(z - self.max_exponent, 0.0)
        return self.weight * jnp.exp(jnp.minimum(z, self.max_exponent)) * (1.0 + excess)


class SingleDimensionConstraint(Constraint):
    """
    x[d] ≥ threshold  (``oriented_right=True``, feasible to the right)  or
    x[d] ≤ threshold.
    """

    def __init__(self, dimension: int, threshold: float, oriented_right: bool,
                 name: str = "SingleDimensionConstraint", **kwargs):
        super().__init__(name, **kwargs)
        self.dimension = dimension
        self.threshold = threshold
        self.oriented_right = oriented_right

    @partial(jit, static_argnums=(0,))
    def value(self, x, k=0):
        v = x[self.dimension]
        return self.threshold - v if self.oriented_right else v - self.threshold


class ProximityConstraint(Constraint):
    """Keeps two players' positions at least ``min_distance`` apart."""

    def __init__(self, position_indices_1: Sequence[int],
                 position_indices_2: Sequence[int], min_distance: float,
                 name: str = "ProximityConstraint", **kwargs):
        super().__init__(name, **kwargs)
        self.idx_1 = jnp.asarray(position_indices_1)
        self.idx_2 = jnp.asarray(position_indices_2)
        self.min_distance = min_distance

    @partial(jit, static_argnums=(0,))
    def value(self, x, k=0):
        delta = x[self.idx_1] - x[self.idx_2]
        return self.min_distance - jnp.sqrt(jnp.sum(delta * delta) + _SMALL)


# ────────────────────────────────────────────────────────────────────
class BoxConstraint(object):
    """Elementwise bounds on one player's control, enforced by clipping."""

    def __init__(self, lower, upper):
        lower, upper = jnp.asarray(lower), jnp.asarray(upper)
        if jnp.any(lower > upper):
            raise ValueError("BoxConstraint lower bound exceeds upper bound")
        self.lower = lower
        self.upper = upper

    def clip(self, u: jax.Array) -> jax.Array:
        return jnp.clip(u, self.lower, self.upper)

    def contains(self, u: jax.Array) -> bool:
        return bool(jnp.all((u >= self.lower) & (u <= self.upper)))
