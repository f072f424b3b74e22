# ──────────────────────────────────────────────────────────────────────────────
#  src/ilqnash/operating_point.py
#  Nominal trajectories and per-player feedback strategies (JAX pytrees)
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
from typing import List, NamedTuple, Sequence

import jax
import jax.numpy as jnp


def _check_index(k: int, size: int, what: str):
    if not 0 <= k < size:
        raise IndexError(f"{what} index {k} outside [0, {size})")


class OperatingPoint(NamedTuple):
    """
    Nominal joint trajectory.

        xs    : (n, K+1)     states x_0 … x_K
        us[i] : (m_i, K)     player-i controls u_0 … u_{K-1}
    """
    xs: jax.Array
    us: List[jax.Array]

    @classmethod
    def zeros(cls, x_dim: int, u_dims: Sequence[int], horizon: int) -> "OperatingPoint":
        return cls(jnp.zeros((x_dim, horizon + 1)),
                   [jnp.zeros((m, horizon)) for m in u_dims])

    @property
    def horizon(self) -> int:
        return self.xs.shape[1] - 1

    @property
    def num_players(self) -> int:
        return len(self.us)

    def state(self, k: int) -> jax.Array:
        _check_index(k, self.horizon + 1, "state")
        return self.xs[:, k]

    def control(self, k: int, player: int) -> jax.Array:
        _check_index(player, self.num_players, "player")
        _check_index(k, self.horizon, "control")
        return self.us[player][:, k]


class Strategy(NamedTuple):
    """
    One player's time-indexed affine feedback law.

        Ps     : (m_i, n, K)   feedback gains
        alphas : (m_i, K)      feedforward terms

    The control at step k is  u_k = u_ref_k − P_k (x_k − x_ref_k) − α_k.
    """
    Ps: jax.Array
    alphas: jax.Array

    @classmethod
    def zeros(cls, x_dim: int, u_dim: int, horizon: int) -> "Strategy":
        return cls(jnp.zeros((u_dim, x_dim, horizon)), jnp.zeros((u_dim, horizon)))

    @property
    def horizon(self) -> int:
        return self.Ps.shape[2]

    def P(self, k: int) -> jax.Array:
        _check_index(k, self.horizon, "strategy")
        return self.Ps[:, :, k]

    def alpha(self, k: int) -> jax.Array:
        _check_index(k, self.horizon, "strategy")
        return self.alphas[:, k]

    def __call__(self, k: int, delta_x: jax.Array, u_ref: jax.Array) -> jax.Array:
        return u_ref - self.P(k) @ delta_x - self.alpha(k)
