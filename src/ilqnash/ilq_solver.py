# ──────────────────────────────────────────────────────────────────────────────
#  src/ilqnash/ilq_solver.py
#  Iterative LQ (feedback Nash) game solver – jitted phases, Python outer loop
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
import enum
import logging
import time
from functools import partial
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import jax
import jax.numpy as jnp
from jax import jit, lax, vmap

from .constraint import BoxConstraint
from .errors import ConfigurationError, DimensionError, SingularGameError
from .multiplayer_dynamical_system import MultiPlayerDynamicalSystem
from .operating_point import OperatingPoint, Strategy
from .player_cost import PlayerCost
from .solve_lq_game import LQSolution, solve_lq_game
from .solver_log import IterateRecord, SolverLog
from .solver_params import AcceptanceRule, SolverParams

logger = logging.getLogger(__name__)


class SolverStatus(enum.Enum):
    LINEARIZING = "linearizing"
    QUADRATICIZING = "quadraticizing"
    SOLVING = "solving"
    LINE_SEARCHING = "line_searching"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    STOPPED = "stopped"


class CostExpansion(NamedTuple):
    """Every player's quadraticized cost along the whole horizon."""
    costs: List[jax.Array]   # [(K+1,)]  running costs, terminal last
    Qs:    List[jax.Array]   # [(n, n, K+1)]
    ls:    List[jax.Array]   # [(n, K+1)]
    Rs:    List[jax.Array]   # [(m_i, m_i, K)]
    rs:    List[jax.Array]   # [(m_i, K)]
    Hs:    List[jax.Array]   # [(m_i, n, K)]


def _symmetrize(H):
    return 0.5 * (H + jnp.swapaxes(H, 0, 1))


def _all_finite(arrays) -> bool:
    return all(bool(jnp.all(jnp.isfinite(a))) for a in arrays)


class ILQSolver:
    """Iterative LQ Nash solver – each phase is jit-compiled, the loop is not."""

    # ───────────────────────────────────── constructor / reset
    def __init__(
        self,
        dynamics: MultiPlayerDynamicalSystem,
        player_costs: List[PlayerCost],
        params: Optional[SolverParams] = None,
        *,
        u_constraints: Optional[List[Optional[BoxConstraint]]] = None,
        verbose: bool = False,
        name: Optional[str] = None,
    ):
        params = params if params is not None else SolverParams()

        if len(player_costs) != dynamics.num_players:
            raise ConfigurationError(
                f"{len(player_costs)} player costs for {dynamics.num_players} players")
        for i, pc in enumerate(player_costs):
            if pc.is_empty:
                raise ConfigurationError(
                    f"player {i} ('{pc.name}') has no cost terms at all")
        if u_constraints is not None and len(u_constraints) != dynamics.num_players:
            raise ConfigurationError(
                f"{len(u_constraints)} control constraints for {dynamics.num_players} players")
        if abs(dynamics.T - params.time_step) > 1e-9 * max(1.0, params.time_step):
            raise ConfigurationError(
                f"dynamics step {dynamics.T} differs from time_step {params.time_step}")

        self._dyn         = dynamics
        self._costs       = list(player_costs)
        self._params      = params
        self._u_bounds    = list(u_constraints) if u_constraints is not None else None
        self._horizon     = params.num_time_steps
        self._num_players = dynamics.num_players
        self._verbose     = verbose
        self._name        = name or ""
        self._stop_requested = False
        self.reset()

    # -------------------------------------------------------------------------
    def reset(self):
        self._log             = SolverLog(self._name)
        self._status          = None
        self._operating_point = None
        self._costs_current   = None
        self._strategies      = [
            Strategy.zeros(self._dyn.x_dim, m, self._horizon) for m in self._dyn.u_dims]

    def request_stop(self):
        """Stop after the current outer iteration; honoured by the next run if idle."""
        self._stop_requested = True

    # ────────────────────────────────────────── read-only views
    @property
    def params(self) -> SolverParams:
        return self._params

    @property
    def horizon(self) -> int:
        return self._horizon

    @property
    def status(self) -> Optional[SolverStatus]:
        return self._status

    @property
    def log(self) -> SolverLog:
        return self._log

    @property
    def operating_point(self) -> Optional[OperatingPoint]:
        return self._operating_point

    @property
    def strategies(self) -> List[Strategy]:
        return list(self._strategies)

    @property
    def costs(self):
        return self._costs_current

    # ────────────────────────────────────────── public interface
    def run(
        self,
        x0,
        us_init: Optional[Sequence] = None,
        strategies: Optional[List[Strategy]] = None,
    ) -> OperatingPoint:
        """
        Solve from initial state ``x0``.

        The first nominal trajectory is the rollout of ``strategies`` (zeros
        if omitted) about a reference whose states are zero and whose
        controls are ``us_init`` (zeros if omitted).
        """
        n, K = self._dyn.x_dim, self._horizon
        x0 = jnp.asarray(x0, dtype=jnp.result_type(float))
        if x0.shape != (n,):
            raise DimensionError(f"x0 has shape {x0.shape}, expected ({n},)")
        reference = self._initial_reference(us_init)
        strategies = self._check_strategies(strategies)

        self.reset()
        t_start = time.time()
        op, costs = self.compute_operating_point(reference, strategies, 1.0, x0)
        self._operating_point, self._costs_current = op, costs
        self._log.append(IterateRecord(0, op, costs, strategies, 1.0, 0,
                                       time.time() - t_start))
        self._report("Iteration 0 | total cost %.6g", float(jnp.sum(costs)))

        for iteration in range(1, self._params.max_iterations + 1):
            if self._stop_requested:
                self._status = SolverStatus.STOPPED
                self._report("Stop requested, halting before iteration %d", iteration)
                break

            t_start = time.time()

            self._status = SolverStatus.LINEARIZING
            As, Bs = self.linearize_dynamics(op)

            self._status = SolverStatus.QUADRATICIZING
            expansion = self.quadraticize_costs(op)

            self._status = SolverStatus.SOLVING
            solution = self.solve_lq_game(As, Bs, expansion)
            new_strategies = [Strategy(P, a) for P, a in zip(solution.Ps, solution.alphas)]
            num_regularized = int(jnp.sum(solution.regularized))
            if num_regularized:
                logger.warning("[iLQSolver] Iteration %d: regularized %d of %d block solves",
                               iteration, num_regularized, K)

            self._status = SolverStatus.LINE_SEARCHING
            accepted, step, new_op, new_costs = self._line_search(op, costs, new_strategies, x0)

            total_old, total_new = float(jnp.sum(costs)), float(jnp.sum(new_costs))
            op, costs = new_op, new_costs
            self._operating_point, self._costs_current = op, costs
            self._strategies = new_strategies
            self._log.append(IterateRecord(iteration, op, costs, new_strategies, step,
                                           num_regularized, time.time() - t_start))
            self._report("Iteration %d | total cost %.6g | step %.3g | iter. time %.3fs",
                         iteration, total_new, step, time.time() - t_start)

            if not accepted:
                logger.warning("[iLQSolver] Iteration %d: line search found no improvement "
                               "down to step %.3g", iteration, self._params.min_step_size)
                if self._params.stop_on_stall:
                    self._status = SolverStatus.CONVERGED
                    break
                continue

            if self._is_converged(total_old, total_new, step, new_strategies):
                self._status = SolverStatus.CONVERGED
                self._report("Total cost (%.6g) has converged!", total_new)
                break
        else:
            self._status = SolverStatus.MAX_ITERATIONS_REACHED

        self._stop_requested = False
        return self._operating_point

    # ────────────────────────────────────────── setup helpers
    def _initial_reference(self, us_init) -> OperatingPoint:
        n, K = self._dyn.x_dim, self._horizon
        reference = OperatingPoint.zeros(n, self._dyn.u_dims, K)
        if us_init is None:
            return reference
        if len(us_init) != self._num_players:
            raise DimensionError(f"us_init has {len(us_init)} entries, expected "
                                 f"{self._num_players}")
        us = []
        for i, (u, m) in enumerate(zip(us_init, self._dyn.u_dims)):
            u = jnp.asarray(u, dtype=reference.xs.dtype)
            if u.shape != (m, K):
                raise DimensionError(f"us_init[{i}] has shape {u.shape}, expected ({m}, {K})")
            us.append(u)
        return OperatingPoint(reference.xs, us)

    def _check_strategies(self, strategies) -> List[Strategy]:
        n, K = self._dyn.x_dim, self._horizon
        if strategies is None:
            return [Strategy.zeros(n, m, K) for m in self._dyn.u_dims]
        if len(strategies) != self._num_players:
            raise DimensionError(f"{len(strategies)} strategies for {self._num_players} players")
        for i, (s, m) in enumerate(zip(strategies, self._dyn.u_dims)):
            if s.Ps.shape != (m, n, K) or s.alphas.shape != (m, K):
                raise DimensionError(
                    f"strategy {i} has shapes {s.Ps.shape}, {s.alphas.shape}; "
                    f"expected ({m}, {n}, {K}), ({m}, {K})")
        return list(strategies)

    def _report(self, msg, *args):
        logger.log(logging.INFO if self._verbose else logging.DEBUG,
                   "[iLQSolver] " + msg, *args)

    # ────────────────────────────────────────── line search / convergence
    def _line_search(self, op, costs, strategies, x0):
        """Backtrack η ← decay·η until the acceptance rule holds."""
        p = self._params
        ff_sq = float(sum(jnp.sum(s.alphas ** 2) for s in strategies))
        step = p.initial_step_size
        while step >= p.min_step_size:
            cand_op, cand_costs = self.compute_operating_point(op, strategies, step, x0)
            if self._accept(costs, cand_costs, step, ff_sq):
                return True, step, cand_op, cand_costs
            step *= p.step_size_decay
        return False, 0.0, op, costs

    def _accept(self, old_costs, new_costs, step, ff_sq) -> bool:
        p = self._params
        old, new = np.asarray(old_costs), np.asarray(new_costs)
        if not np.all(np.isfinite(new)):
            return False
        if p.acceptance_rule is AcceptanceRule.TOTAL_COST:
            return new.sum() < old.sum() + p.cost_tolerance
        if p.acceptance_rule is AcceptanceRule.PER_PLAYER:
            return bool(np.all(new <= old + p.cost_tolerance)) and new.sum() < old.sum()
        return new.sum() <= old.sum() - p.armijo_coefficient * step * ff_sq

    def _is_converged(self, total_old, total_new, step, strategies) -> bool:
        tol = self._params.convergence_tolerance
        rel_change = abs(total_old - total_new) / max(abs(total_old), 1e-12)
        max_ff = step * max(float(jnp.max(jnp.abs(s.alphas))) for s in strategies)
        return rel_change < tol or max_ff < tol

    # ───────────────────────────── forward rollout of the true dynamics
    def compute_operating_point(
        self,
        reference: OperatingPoint,
        strategies: List[Strategy],
        step_size: float,
        x0=None,
    ) -> Tuple[OperatingPoint, jax.Array]:
        """
        Simulate  u_k = u_ref_k − η (P_k (x_k − x_ref_k) + α_k)  through the
        nonlinear dynamics and return the trajectory with its per-player cost.
        """
        if x0 is None:
            x0 = reference.xs[:, 0]
        return self._rollout(reference, list(strategies), jnp.asarray(step_size), x0)

    @partial(jit, static_argnums=0)
    def _rollout(self, reference, strategies, step_size, x0):
        K, nP = self._horizon, self._num_players

        def step(x, k):
            x_ref = reference.xs[:, k]
            us = []
            for i in range(nP):
                s = strategies[i]
                u = reference.us[i][:, k] - step_size * (
                    s.Ps[:, :, k] @ (x - x_ref) + s.alphas[:, k])
                if self._u_bounds and self._u_bounds[i] is not None:
                    u = self._u_bounds[i].clip(u)
                us.append(u)
            x_next = self._dyn.disc_time_dyn(x, us, k)
            return x_next, (x_next, us)

        _, (xs_next, us_seq) = lax.scan(step, x0, jnp.arange(K))
        op = OperatingPoint(jnp.concatenate([x0[:, None], xs_next.T], axis=1),
                            [u.T for u in us_seq])
        return op, self.evaluate_costs(op)

    @partial(jit, static_argnums=0)
    def evaluate_costs(self, op: OperatingPoint) -> jax.Array:
        """(N,) true total cost of every player along ``op``."""
        K = self._horizon
        xs_k, ks = op.xs[:, :K].T, jnp.arange(K)
        totals = []
        for i, pc in enumerate(self._costs):
            running = vmap(pc.get_cost)(xs_k, op.us[i].T, ks)
            totals.append(jnp.sum(running) + pc.get_terminal_cost(op.xs[:, K]))
        return jnp.stack(totals)

    # ───────────────────────────── linearize dynamics (vmapped over time)
    @partial(jit, static_argnums=0)
    def linearize_dynamics(self, op: OperatingPoint):
        """A: (n, n, K),  Bs[i]: (n, m_i, K)."""
        K = self._horizon
        A, Bs = vmap(self._dyn.linearize_discrete)(
            op.xs[:, :K].T, [u.T for u in op.us], jnp.arange(K))
        return jnp.moveaxis(A, 0, -1), [jnp.moveaxis(B, 0, -1) for B in Bs]

    # ───────────────────────────── quadraticize costs (vmapped over time)
    @partial(jit, static_argnums=0)
    def quadraticize_costs(self, op: OperatingPoint) -> CostExpansion:
        K = self._horizon
        xs_k, ks = op.xs[:, :K].T, jnp.arange(K)
        costs, Qs, ls, Rs, rs, Hs = [], [], [], [], [], []
        for i, pc in enumerate(self._costs):
            q = vmap(pc.quadraticize)(xs_k, op.us[i].T, ks)
            c_T, lx_T, Hxx_T = pc.quadraticize_terminal(op.xs[:, K])

            costs.append(jnp.concatenate([q.cost, c_T[None]]))
            Qs.append(_symmetrize(jnp.concatenate(
                [jnp.moveaxis(q.Hxx, 0, -1), Hxx_T[:, :, None]], axis=2)))
            ls.append(jnp.concatenate([q.lx.T, lx_T[:, None]], axis=1))
            Rs.append(_symmetrize(jnp.moveaxis(q.Huu, 0, -1)))
            rs.append(q.lu.T)
            Hs.append(jnp.moveaxis(q.Hux, 0, -1))
        return CostExpansion(costs, Qs, ls, Rs, rs, Hs)

    # ───────────────────────────── coupled LQ game
    def solve_lq_game(self, As, Bs, expansion: CostExpansion) -> LQSolution:
        """
        Backward pass on the current expansion.

        A non-finite linearization or cost expansion means the dynamics or a
        cost is undefined along the nominal trajectory; a non-finite solve
        from finite inputs means the block system is singular. Both are fatal.
        """
        if not _all_finite([As] + list(Bs)):
            raise SingularGameError(
                "dynamics linearization is not finite along the nominal trajectory")
        for i in range(self._num_players):
            if not _all_finite([expansion.Qs[i], expansion.ls[i], expansion.Rs[i],
                                expansion.rs[i], expansion.Hs[i]]):
                raise SingularGameError(
                    f"player {i}: cost expansion is not finite along the nominal "
                    f"trajectory; check that every cost is defined there")

        p = self._params
        solution = solve_lq_game(
            As, Bs, expansion.Qs, expansion.ls, expansion.Rs, expansion.rs, expansion.Hs,
            regularization=p.regularization,
            max_condition_number=p.max_condition_number,
        )
        for i, (P, a) in enumerate(zip(solution.Ps, solution.alphas)):
            if not _all_finite([P, a]):
                raise SingularGameError(
                    f"player {i}: coupled block solve is singular even after "
                    f"regularization; check that every player's cost is well posed")
        return solution
