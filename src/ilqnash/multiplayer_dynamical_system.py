"""
Multiplayer dynamical systems.

Every player shares one joint state x ∈ ℝⁿ and owns a control u_i ∈ ℝ^{m_i}.
Discretization and linearization live here; the solver only ever calls
``disc_time_dyn`` and ``linearize_discrete``.
"""
import numpy as np
from typing import List, Sequence, Tuple
from functools import partial

import jax
import jax.numpy as jnp
from jax import jit, jacfwd
from jax.scipy.linalg import expm

from .dynamical_system import DynamicalSystem
from .errors import DimensionError

_INTEGRATORS = ("euler", "rk4")


# ─────────────────────────────────────────────────────────────────────
#  Generic base class
# ─────────────────────────────────────────────────────────────────────
class MultiPlayerDynamicalSystem(object):
  """
  Base class for all multiplayer continuous-time dynamical systems.
  Supports numerical integration and linearization.
  """

  def __init__(self, x_dim: int, u_dims: Sequence[int], T: float = 0.1,
               integration: str = "euler"):
    """
    Parameters
    ----------
    x_dim       : int      – joint-state dimension
    u_dims      : [int]    – list (one per player) of control dimensions
    T           : float    – integration step (s)
    integration : str      – "euler" or "rk4"
    """
    if x_dim < 1:
      raise DimensionError(f"state dimension must be positive, got {x_dim}")
    if len(u_dims) < 1 or any(m < 1 for m in u_dims):
      raise DimensionError(f"need at least one player with positive control "
                           f"dimension, got {list(u_dims)}")
    if T <= 0.0:
      raise DimensionError(f"time step must be positive, got {T}")
    if integration not in _INTEGRATORS:
      raise DimensionError(f"unknown integration scheme '{integration}'")

    self._x_dim        = x_dim
    self._u_dims       = list(u_dims)
    self._T            = T
    self._num_players  = len(u_dims)
    self._integration  = integration
    self.jac_f         = jit(jacfwd(self.disc_time_dyn, argnums=[0, 1]))

  @property
  def x_dim(self) -> int:
    return self._x_dim

  @property
  def u_dims(self) -> List[int]:
    return list(self._u_dims)

  @property
  def num_players(self) -> int:
    return self._num_players

  @property
  def T(self) -> float:
    return self._T

  # ------------------------------------------------------------------
  @partial(jit, static_argnums=(0,))
  def cont_time_dyn(self, x: jax.Array, u_list: list, k: int = 0) -> jax.Array:
    raise NotImplementedError

  # ------------------------------------------------------------------
  @partial(jit, static_argnums=(0,))
  def disc_time_dyn(self, x0: jax.Array, u0_list: list, k: int = 0) -> jax.Array:
    """One step of the configured integrator (zero-order hold on u)."""
    f, T = self.cont_time_dyn, self._T
    if self._integration == "euler":
      return x0 + T * f(x0, u0_list, k)

    k1 = f(x0, u0_list, k)
    k2 = f(x0 + 0.5 * T * k1, u0_list, k)
    k3 = f(x0 + 0.5 * T * k2, u0_list, k)
    k4 = f(x0 + T * k3, u0_list, k)
    return x0 + T / 6.0 * (k1 + 2.0 * k2 + 2.0 * k3 + k4)

  # ------------------------------------------------------------------
  @partial(jit, static_argnums=(0,))
  def linearize_discrete(self, x0: jax.Array, u0_list: list,
                         k: int = 0) -> Tuple[jax.Array, list]:
    """Jacobians (A, [B_i]) of the discrete-time dynamics about (x₀,u₀)."""
    A, B_list = self.jac_f(x0, list(u0_list), k)
    return A, list(B_list)


# ─────────────────────────────────────────────────────────────────────
class ProductMultiPlayerDynamicalSystem(MultiPlayerDynamicalSystem):
  """
  Cartesian product of independent single-player subsystems.

  The joint state is the concatenation of each subsystem's state, so the
  Jacobian blocks coupling different players are identically zero.
  """

  def __init__(self, subsystems: Sequence[DynamicalSystem], T: float = 0.1,
               integration: str = "euler"):
    self._subsystems = list(subsystems)
    self._x_dims     = [sys.x_dim for sys in self._subsystems]
    super().__init__(sum(self._x_dims), [sys.u_dim for sys in self._subsystems],
                     T, integration)
    self.update_lifting_matrices()

  # ------------------------------------------------------------------
  def update_lifting_matrices(self):
    _split = np.hstack((0, np.cumsum(np.asarray(self._x_dims))))
    self._LMx = [jnp.asarray(np.eye(d, self._x_dim, k=_split[i]))
                 for i, d in enumerate(self._x_dims)]

  def state_indices(self, player: int) -> range:
    """Indices of the joint state owned by ``player``."""
    start = sum(self._x_dims[:player])
    return range(start, start + self._x_dims[player])

  # ------------------------------------------------------------------
  @partial(jit, static_argnums=(0,))
  def cont_time_dyn(self, x: jax.Array, u_list: list, k: int = 0) -> jax.Array:
    parts = [sys.cont_time_dyn(LMx @ x, u_i, k)
             for sys, LMx, u_i in zip(self._subsystems, self._LMx, u_list)]
    return jnp.concatenate(parts, axis=0)


# ─────────────────────────────────────────────────────────────────────
class LinearMultiPlayerSystem(MultiPlayerDynamicalSystem):
  """
  Continuous-time linear joint dynamics

      ẋ = A x + Σ_i B_i u_i

  discretized exactly under a zero-order hold, so ``linearize_discrete``
  returns the exact (A_d, [B_d,i]) rather than a Jacobian approximation.
  """

  def __init__(self, A, B_list, T: float = 0.1):
    A = jnp.asarray(A)
    B_list = [jnp.asarray(B) for B in B_list]
    n = A.shape[0]
    if A.shape != (n, n):
      raise DimensionError(f"A must be square, got shape {A.shape}")
    for i, B in enumerate(B_list):
      if B.ndim != 2 or B.shape[0] != n:
        raise DimensionError(
            f"B[{i}] must have {n} rows, got shape {B.shape}")

    super().__init__(n, [B.shape[1] for B in B_list], T)
    self._A, self._B_list = A, B_list

    # expm([[A, B], [0, 0]] T) = [[A_d, B_d], [0, I]]
    m_tot = sum(self._u_dims)
    M = jnp.zeros((n + m_tot, n + m_tot))
    M = M.at[:n, :n].set(A)
    M = M.at[:n, n:].set(jnp.concatenate(B_list, axis=1))
    E = expm(M * T)

    self._Ad = E[:n, :n]
    self._Bd_list = []
    off = n
    for m in self._u_dims:
      self._Bd_list.append(E[:n, off:off + m])
      off += m

  # ------------------------------------------------------------------
  @partial(jit, static_argnums=(0,))
  def cont_time_dyn(self, x, u_list, k=0):
    return self._A @ x + sum(B @ u for B, u in zip(self._B_list, u_list))

  @partial(jit, static_argnums=(0,))
  def disc_time_dyn(self, x0, u0_list, k=0):
    return self._Ad @ x0 + sum(B @ u for B, u in zip(self._Bd_list, u0_list))

  @partial(jit, static_argnums=(0,))
  def linearize_discrete(self, x0, u0_list, k=0):
    return self._Ad, list(self._Bd_list)
