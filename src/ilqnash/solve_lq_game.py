# ──────────────────────────────────────────────────────────────────────────────
#  src/ilqnash/solve_lq_game.py
#  Pure-JAX feedback Nash solver for a time-varying LQ game (backward pass)
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
from functools import partial
from typing import List, NamedTuple, Optional

import jax
import jax.numpy as jnp
from jax import jit, lax


class LQSolution(NamedTuple):
    Ps:          List[jax.Array]   # [(m_i, n, K)]
    alphas:      List[jax.Array]   # [(m_i, K)]
    Zs:          List[jax.Array]   # [(n, n, K+1)]
    zetas:       List[jax.Array]   # [(n, K+1)]
    regularized: jax.Array         # (K,) bool – steps where S was ill-conditioned


@partial(jit, static_argnames=("regularization", "max_condition_number"))
def solve_lq_game(
    As: jax.Array,
    Bs: List[jax.Array],
    Qs: List[jax.Array],
    ls: List[jax.Array],
    Rs: List[jax.Array],
    rs: Optional[List[jax.Array]] = None,
    Hs: Optional[List[jax.Array]] = None,
    regularization: float = 1e-6,
    max_condition_number: float = 1e8,
) -> LQSolution:
    """
    Feedback Nash strategies of the LQ game

        δx_{k+1} = A_k δx_k + Σ_i B_i,k δu_i,k
        ℓ_i,k    = ½δxᵀQ_i δx + l_iᵀδx + ½δu_iᵀR_i δu_i + r_iᵀδu_i + δu_iᵀH_i δx

    with terminal cost ½δxᵀQ_i,K δx + l_i,Kᵀδx.  Stateless and therefore
    differentiable.

    Inputs (time on the last axis):
      As         : (n, n, K)
      Bs[i]      : (n, m_i, K)
      Qs[i]      : (n, n, K+1)      – slice K is the terminal Hessian
      ls[i]      : (n, K+1)
      Rs[i]      : (m_i, m_i, K)
      rs[i]      : (m_i, K)         – zeros if omitted
      Hs[i]      : (m_i, n, K)      – zeros if omitted

    At each step all players' gains come from one linear solve on the
    (Σm_i × Σm_i) block matrix

        S_ij = B_iᵀ Z_i B_j + δ_ij R_i

    which is regularized by ``regularization``·I whenever its condition
    number exceeds ``max_condition_number`` (or is not finite).
    """
    K, n = As.shape[2], As.shape[0]
    kP   = len(Bs)
    m    = [B.shape[1] for B in Bs]
    m_tot = sum(m)

    if rs is None:
        rs = [jnp.zeros((m[i], K)) for i in range(kP)]
    if Hs is None:
        Hs = [jnp.zeros((m[i], n, K)) for i in range(kP)]

    # Player block offsets (static ints)
    offs, o = [], 0
    for i in range(kP):
        offs.append(o)
        o += m[i]

    I_big = jnp.eye(m_tot)
    Z_K   = [Qs[i][:, :, K] for i in range(kP)]
    ze_K  = [ls[i][:, K]    for i in range(kP)]

    def back_step(carry, k):
        Z_n, z_n = carry

        A_k = As[:, :, k]
        B_k = [Bs[i][:, :, k] for i in range(kP)]
        R_k = [Rs[i][:, :, k] for i in range(kP)]
        H_k = [Hs[i][:, :, k] for i in range(kP)]
        r_k = [rs[i][:, k]    for i in range(kP)]

        S    = jnp.zeros((m_tot, m_tot), dtype=A_k.dtype)
        Y    = jnp.zeros((m_tot, n + 1), dtype=A_k.dtype)
        Bstk = jnp.concatenate(B_k, axis=1)

        for i in range(kP):
            oi, mi = offs[i], m[i]
            BZ = B_k[i].T @ Z_n[i]
            Y = Y.at[oi:oi+mi, :n].set(BZ @ A_k + H_k[i])
            Y = Y.at[oi:oi+mi, n].set(B_k[i].T @ z_n[i] + r_k[i])
            S = S.at[oi:oi+mi, :].set(BZ @ Bstk)
            S = S.at[oi:oi+mi, oi:oi+mi].add(R_k[i])

        cond = jnp.linalg.cond(S)
        ill  = jnp.logical_not(cond < max_condition_number)
        S_reg = S + jnp.where(ill, regularization, 0.0) * I_big

        # One solve for both the gains and the feedforward terms.
        sol   = jnp.linalg.solve(S_reg, Y)
        P_big = sol[:, :n]
        a_big = sol[:, n]

        F_k  = A_k - Bstk @ P_big
        beta = -(Bstk @ a_big)

        Z_new, z_new = [], []
        for i in range(kP):
            oi, mi = offs[i], m[i]
            P_i, a_i = P_big[oi:oi+mi, :], a_big[oi:oi+mi]
            PH = P_i.T @ H_k[i]
            Z_i = (F_k.T @ Z_n[i] @ F_k + Qs[i][:, :, k]
                   + P_i.T @ R_k[i] @ P_i - PH - PH.T)
            Z_new.append(0.5 * (Z_i + Z_i.T))
            z_new.append(F_k.T @ (z_n[i] + Z_n[i] @ beta) + ls[i][:, k]
                         + P_i.T @ (R_k[i] @ a_i - r_k[i]) - H_k[i].T @ a_i)

        return (Z_new, z_new), (P_big, a_big, Z_new, z_new, ill)

    _, (P_all, a_all, Z_all, z_all, ill_all) = lax.scan(
        back_step, (Z_K, ze_K), jnp.arange(K), reverse=True)

    Ps, alphas, Zs, zetas = [], [], [], []
    for i in range(kP):
        oi, mi = offs[i], m[i]
        Ps.append(jnp.moveaxis(P_all[:, oi:oi+mi, :], 0, -1))
        alphas.append(a_all[:, oi:oi+mi].T)
        Zs.append(jnp.concatenate(
            [jnp.moveaxis(Z_all[i], 0, -1), Z_K[i][:, :, None]], axis=2))
        zetas.append(jnp.concatenate([z_all[i].T, ze_K[i][:, None]], axis=1))

    return LQSolution(Ps, alphas, Zs, zetas, ill_all)
