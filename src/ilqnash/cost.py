"""
Instantaneous cost terms.

Every term is a scalar function of (x, u_i, k) where x is the joint state and
u_i is the owning player's control. Gradients and Hessians come from JAX
autodiff; PlayerCost sums terms and does the exponential transform.

Reference: ilqgames/python (Fridovich-Keil & Ratner)
"""

from functools import partial
from typing import Optional, Sequence

import numpy as np
import jax
import jax.numpy as jnp
from jax import jit, jacfwd, hessian

_SMALL = 1e-9


# ────────────────────────────────────────────────────────────────────
#  BASE CLASS
# ────────────────────────────────────────────────────────────────────
class Cost(object):
    """Abstract cost-function parent class."""

    def __init__(self, name: str = "", arg: str = "x"):
        if arg not in ("x", "u"):
            raise ValueError(f"arg must be 'x' or 'u', got '{arg}'")
        self._name, self._arg = name, arg

    @property
    def name(self) -> str:
        return self._name

    def _select(self, x, ui):
        return x if self._arg == "x" else ui

    # ---------------- one-step primitives ---------------------------
    @partial(jit, static_argnums=(0,))
    def get_cost(self, x: jax.Array, ui: jax.Array, k: int = 0):
        raise NotImplementedError

    @partial(jit, static_argnums=(0,))
    def get_grad(self, x, ui, k=0):
        return jacfwd(self.get_cost, argnums=[0, 1])(x, ui, k)

    @partial(jit, static_argnums=(0,))
    def get_hess(self, x, ui, k=0):
        Hxx = hessian(self.get_cost, argnums=0)(x, ui, k)
        Huu = hessian(self.get_cost, argnums=1)(x, ui, k)
        return Hxx, Huu


# ────────────────────────────────────────────────────────────────────
#  QUADRATIC-TYPE COSTS
# ────────────────────────────────────────────────────────────────────
class QuadraticCost(Cost):
    """
    w · (v[d] − nominal)²  on one dimension, or  w · ‖v − nominal‖²  on all
    of them when ``dimension`` is None.  v is x or u_i depending on ``arg``.
    """

    def __init__(self, weight: float, dimension: Optional[int] = None, nominal=0.0,
                 arg: str = "x", name: str = "QuadraticCost"):
        super().__init__(name, arg)
        self.weight = weight
        self.dimension = dimension
        self.nominal = jnp.asarray(nominal)

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, ui, k=0):
        v = self._select(x, ui)
        if self.dimension is not None:
            v = v[self.dimension]
        return self.weight * jnp.sum((v - self.nominal) ** 2)


class SemiquadraticCost(Cost):
    """
    One-sided quadratic: zero on the good side of ``threshold`` and
    w · (v[d] − threshold)² past it.  ``oriented_right`` penalizes values
    above the threshold.
    """

    def __init__(self, weight: float, dimension: int, threshold: float,
                 oriented_right: bool, arg: str = "x",
                 name: str = "SemiquadraticCost"):
        super().__init__(name, arg)
        self.weight = weight
        self.dimension = dimension
        self.threshold = threshold
        self.oriented_right = oriented_right

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, ui, k=0):
        v = self._select(x, ui)[self.dimension]
        excess = v - self.threshold if self.oriented_right else self.threshold - v
        return self.weight * jnp.maximum(excess, 0.0) ** 2


class ProximityCost(Cost):
    """
    Penalizes two players' positions being closer than ``max_distance``:

        w · max(d_max − ‖p₁ − p₂‖, 0)²
    """

    def __init__(self, weight: float, position_indices_1: Sequence[int],
                 position_indices_2: Sequence[int], max_distance: float,
                 name: str = "ProximityCost"):
        super().__init__(name, "x")
        self.weight = weight
        self.idx_1 = jnp.asarray(position_indices_1)
        self.idx_2 = jnp.asarray(position_indices_2)
        self.max_distance = max_distance

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, ui, k=0):
        delta = x[self.idx_1] - x[self.idx_2]
        dist = jnp.sqrt(jnp.sum(delta * delta) + _SMALL)
        return self.weight * jnp.maximum(self.max_distance - dist, 0.0) ** 2


# ────────────────────────────────────────────────────────────────────
#  SIGNED-DISTANCE COSTS (reach / avoid)
# ────────────────────────────────────────────────────────────────────
class SignedDistanceCost(Cost):
    """
    Signed distance from a position to a disc target, positive outside.

    With ``reach=True`` the cost is the signed distance itself (pulls the
    position in); with ``reach=False`` the sign is flipped (pushes it out).
    Exponentiating a PlayerCost built on this term gives the smooth
    surrogate for the min-max reachability objective.
    """

    def __init__(self, center, radius: float, position_indices: Sequence[int],
                 reach: bool = True, weight: float = 1.0,
                 name: str = "SignedDistanceCost"):
        super().__init__(name, "x")
        self.center = jnp.asarray(center)
        self.radius = radius
        self.idx = jnp.asarray(position_indices)
        self.reach = reach
        self.weight = weight

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, ui, k=0):
        delta = x[self.idx] - self.center
        sd = jnp.sqrt(jnp.sum(delta * delta) + _SMALL) - self.radius
        return self.weight * (sd if self.reach else -sd)


def draw_circle(center, radius: float, num_points: int) -> np.ndarray:
    """Vertices of a regular polygon approximating a circle, shape (num_points, 2)."""
    angles = np.linspace(0.0, 2.0 * np.pi, num_points, endpoint=False)
    return np.stack([center[0] + radius * np.cos(angles),
                     center[1] + radius * np.sin(angles)], axis=1)


def _segment_sq_distances(p, starts, ends):
    seg = ends - starts
    seg_len_sq = jnp.sum(seg * seg, axis=1)
    t = jnp.sum((p - starts) * seg, axis=1) / jnp.maximum(seg_len_sq, _SMALL)
    t = jnp.clip(t, 0.0, 1.0)
    closest = starts + t[:, None] * seg
    diff = p - closest
    return jnp.sum(diff * diff, axis=1)


class Polyline2SignedDistanceCost(Cost):
    """
    Signed distance to a closed planar polygon (negative inside).

    ``reach`` orients the sign the same way as SignedDistanceCost.
    """

    def __init__(self, vertices, position_indices: Sequence[int],
                 reach: bool = True, weight: float = 1.0,
                 name: str = "Polyline2SignedDistanceCost"):
        super().__init__(name, "x")
        vertices = jnp.asarray(vertices)
        if vertices.ndim != 2 or vertices.shape[1] != 2 or vertices.shape[0] < 3:
            raise ValueError("polygon needs at least 3 planar vertices")
        self.starts = vertices
        self.ends = jnp.roll(vertices, -1, axis=0)
        self.idx = jnp.asarray(position_indices)
        self.reach = reach
        self.weight = weight

    @partial(jit, static_argnums=(0,))
    def _inside(self, p):
        # Even-odd ray casting along +x.
        y0, y1 = self.starts[:, 1], self.ends[:, 1]
        x0, x1 = self.starts[:, 0], self.ends[:, 0]
        straddles = (y0 > p[1]) != (y1 > p[1])
        x_cross = x0 + (p[1] - y0) * (x1 - x0) / jnp.where(y1 == y0, _SMALL, y1 - y0)
        crossings = jnp.sum(straddles & (p[0] < x_cross))
        return crossings % 2 == 1

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, ui, k=0):
        p = x[self.idx]
        dist = jnp.sqrt(jnp.min(_segment_sq_distances(p, self.starts, self.ends)) + _SMALL)
        sd = jnp.where(self._inside(p), -dist, dist)
        return self.weight * (sd if self.reach else -sd)


class QuadraticPolylineCost(Cost):
    """w · (distance from a position to an open polyline)², e.g. lane keeping."""

    def __init__(self, weight: float, points, position_indices: Sequence[int],
                 name: str = "QuadraticPolylineCost"):
        super().__init__(name, "x")
        points = jnp.asarray(points)
        if points.ndim != 2 or points.shape[1] != 2 or points.shape[0] < 2:
            raise ValueError("polyline needs at least 2 planar points")
        self.starts = points[:-1]
        self.ends = points[1:]
        self.idx = jnp.asarray(position_indices)
        self.weight = weight

    @partial(jit, static_argnums=(0,))
    def get_cost(self, x, ui, k=0):
        p = x[self.idx]
        return self.weight * jnp.min(_segment_sq_distances(p, self.starts, self.ends))
