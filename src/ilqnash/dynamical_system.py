"""
Single-player continuous-time dynamical systems.

These are the building blocks stacked by ProductMultiPlayerDynamicalSystem;
each one only knows its own state and control.
"""
from functools import partial

import jax
import jax.numpy as jnp
from jax import jit

from .errors import DimensionError


class DynamicalSystem(object):
  """Base class for single-player continuous-time dynamical systems."""

  def __init__(self, x_dim: int, u_dim: int, T: float = 0.1):
    if x_dim < 1 or u_dim < 1:
      raise DimensionError(
          f"state and control dimensions must be positive, got {x_dim}, {u_dim}")
    self._x_dim = x_dim
    self._u_dim = u_dim
    self._T = T

  @property
  def x_dim(self) -> int:
    return self._x_dim

  @property
  def u_dim(self) -> int:
    return self._u_dim

  # ------------------------------------------------------------------
  @partial(jit, static_argnums=(0,))
  def cont_time_dyn(self, x: jax.Array, u: jax.Array, k: int = 0) -> jax.Array:
    raise NotImplementedError

  # ------------------------------------------------------------------
  @partial(jit, static_argnums=(0,))
  def disc_time_dyn(self, x0: jax.Array, u0: jax.Array, k: int = 0) -> jax.Array:
    """Forward-Euler step:  x⁺ = x + T·f(x,u)."""
    return x0 + self._T * self.cont_time_dyn(x0, u0, k)


# ─────────────────────────────────────────────────────────────────────
class Unicycle4D(DynamicalSystem):
  """
  4D unicycle.

      x = [px, py, θ, v],   u = [ω, a]

      ṗx = v cos θ    ṗy = v sin θ    θ̇ = ω    v̇ = a
  """

  def __init__(self, T: float = 0.1):
    super().__init__(x_dim=4, u_dim=2, T=T)

  @partial(jit, static_argnums=(0,))
  def cont_time_dyn(self, x, u, k=0):
    return jnp.array([x[3] * jnp.cos(x[2]),
                      x[3] * jnp.sin(x[2]),
                      u[0],
                      u[1]])


# ─────────────────────────────────────────────────────────────────────
class DelayedDubinsCar(DynamicalSystem):
  """
  Constant-speed Dubins car whose turn rate is itself a state.

      x = [px, py, θ, ω],   u = [ω̇]

  Integrating the steering once means a bound on ω can be imposed as a
  state constraint.
  """

  def __init__(self, speed: float = 1.0, T: float = 0.1):
    super().__init__(x_dim=4, u_dim=1, T=T)
    self.speed = speed

  @partial(jit, static_argnums=(0,))
  def cont_time_dyn(self, x, u, k=0):
    return jnp.array([self.speed * jnp.cos(x[2]),
                      self.speed * jnp.sin(x[2]),
                      x[3],
                      u[0]])


# ─────────────────────────────────────────────────────────────────────
class PointMass2D(DynamicalSystem):
  """Planar double integrator, x = [px, py, vx, vy], u = [ax, ay]."""

  def __init__(self, T: float = 0.1):
    super().__init__(x_dim=4, u_dim=2, T=T)

  @partial(jit, static_argnums=(0,))
  def cont_time_dyn(self, x, u, k=0):
    return jnp.array([x[2], x[3], u[0], u[1]])
