#!/usr/bin/env python

"""Unit tests for the coupled feedback Nash LQ solve"""

import unittest

import numpy as np
import jax.numpy as jnp

from ilqnash.solve_lq_game import solve_lq_game


def tile(M, K):
    return jnp.asarray(np.repeat(np.asarray(M, dtype=float)[..., None], K, axis=-1))


def riccati(A, B, Q, R, K):
    """Textbook finite-horizon discrete LQR gains with zero terminal cost."""
    V = np.zeros_like(Q)
    gains = []
    for _ in range(K):
        P = np.linalg.solve(R + B.T @ V @ B, B.T @ V @ A)
        V = Q + A.T @ V @ (A - B @ P)
        gains.append(P)
    return gains[::-1]


class TestSinglePlayer(unittest.TestCase):

    def setUp(self):
        self.K = 15
        self.A = np.array([[1.0, 0.1], [0.0, 1.0]])
        self.B = np.array([[0.005], [0.1]])
        self.Q = 2.0 * np.diag([1.0, 0.5])
        self.R = 2.0 * np.array([[0.3]])

    def _solve(self, ls=None, rs=None):
        K, n = self.K, 2
        Qs = tile(self.Q, K + 1).at[:, :, K].set(0.0)
        ls = ls if ls is not None else jnp.zeros((n, K + 1))
        return solve_lq_game(tile(self.A, K), [tile(self.B, K)], [Qs], [ls],
                             [tile(self.R, K)], rs=[rs] if rs is not None else None)

    def test_matches_riccati(self):
        solution = self._solve()
        gains = riccati(self.A, self.B, self.Q, self.R, self.K)
        for k in range(self.K):
            self.assertTrue(np.allclose(solution.Ps[0][:, :, k], gains[k]))
        self.assertTrue(np.allclose(solution.alphas[0], 0.0))
        self.assertFalse(bool(np.any(solution.regularized)))

    def test_shapes(self):
        solution = self._solve()
        self.assertEqual(solution.Ps[0].shape, (1, 2, self.K))
        self.assertEqual(solution.alphas[0].shape, (1, self.K))
        self.assertEqual(solution.Zs[0].shape, (2, 2, self.K + 1))
        self.assertEqual(solution.zetas[0].shape, (2, self.K + 1))
        self.assertEqual(solution.regularized.shape, (self.K,))

    def test_affine_terms_are_optimal(self):
        rng = np.random.default_rng(3)
        l = rng.normal(size=(2, self.K + 1))
        r = rng.normal(size=(1, self.K))
        solution = self._solve(jnp.asarray(l), jnp.asarray(r))
        P, alpha = np.asarray(solution.Ps[0]), np.asarray(solution.alphas[0])
        x0 = np.array([1.0, -0.5])

        def total_cost(us):
            x, J = x0, 0.0
            for k in range(self.K):
                u = us[:, k]
                J += 0.5 * x @ self.Q @ x + l[:, k] @ x + 0.5 * u @ self.R @ u + r[:, k] @ u
                x = self.A @ x + self.B @ u
            return J + l[:, self.K] @ x

        us, x = np.zeros((1, self.K)), x0
        for k in range(self.K):
            us[:, k] = -P[:, :, k] @ x - alpha[:, k]
            x = self.A @ x + self.B @ us[:, k]

        J_star = total_cost(us)
        for _ in range(5):
            self.assertLess(J_star, total_cost(us + 0.1 * rng.normal(size=us.shape)))


class TestTwoPlayer(unittest.TestCase):

    def test_decoupled_players_solve_independently(self):
        K = 10
        A1 = np.array([[1.0, 0.1], [0.0, 1.0]])
        B1 = np.array([[0.0], [0.1]])
        A2 = np.array([[0.9, 0.2], [0.0, 1.1]])
        B2 = np.array([[0.1], [0.05]])
        Q1, Q2 = 2.0 * np.eye(2), np.diag([4.0, 1.0])
        R1, R2 = np.array([[1.0]]), np.array([[0.5]])

        A = np.block([[A1, np.zeros((2, 2))], [np.zeros((2, 2)), A2]])
        B_1 = np.vstack([B1, np.zeros((2, 1))])
        B_2 = np.vstack([np.zeros((2, 1)), B2])
        Qj1 = np.zeros((4, 4))
        Qj1[:2, :2] = Q1
        Qj2 = np.zeros((4, 4))
        Qj2[2:, 2:] = Q2

        solution = solve_lq_game(
            tile(A, K), [tile(B_1, K), tile(B_2, K)],
            [tile(Qj1, K + 1).at[:, :, K].set(0.0), tile(Qj2, K + 1).at[:, :, K].set(0.0)],
            [jnp.zeros((4, K + 1)), jnp.zeros((4, K + 1))],
            [tile(R1, K), tile(R2, K)])

        gains1 = riccati(A1, B1, Q1, R1, K)
        gains2 = riccati(A2, B2, Q2, R2, K)
        for k in range(K):
            P1, P2 = solution.Ps[0][:, :, k], solution.Ps[1][:, :, k]
            self.assertTrue(np.allclose(P1[:, :2], gains1[k]))
            self.assertTrue(np.allclose(P1[:, 2:], 0.0))
            self.assertTrue(np.allclose(P2[:, 2:], gains2[k]))
            self.assertTrue(np.allclose(P2[:, :2], 0.0))

    def test_cost_to_go_symmetric(self):
        K = 8
        rng = np.random.default_rng(1)
        A = np.eye(3) + 0.1 * rng.normal(size=(3, 3))
        Bs = [tile(0.1 * rng.normal(size=(3, 1)), K), tile(0.1 * rng.normal(size=(3, 2)), K)]
        Qs, Rs, Hs = [], [], []
        for m in (1, 2):
            M = rng.normal(size=(3, 3))
            Qs.append(tile(M @ M.T + np.eye(3), K + 1))
            Rs.append(tile(np.eye(m), K))
            Hs.append(tile(0.1 * rng.normal(size=(m, 3)), K))
        ls = [jnp.asarray(rng.normal(size=(3, K + 1))) for _ in range(2)]

        solution = solve_lq_game(tile(A, K), Bs, Qs, ls, Rs, Hs=Hs)
        for Z in solution.Zs:
            self.assertTrue(np.allclose(Z, np.swapaxes(Z, 0, 1)))
        for P, alpha in zip(solution.Ps, solution.alphas):
            self.assertTrue(np.all(np.isfinite(P)))
            self.assertTrue(np.all(np.isfinite(alpha)))


class TestRegularization(unittest.TestCase):

    def test_singular_block_is_flagged(self):
        K = 5
        A = tile(np.eye(2), K)
        B = tile(np.array([[0.0], [1.0]]), K)
        Qs = tile(np.eye(2), K + 1).at[:, :, K].set(0.0)
        Rs = tile(np.zeros((1, 1)), K)

        solution = solve_lq_game(A, [B], [Qs], [jnp.zeros((2, K + 1))], [Rs])

        # With zero terminal cost and zero control cost the last block is 0.
        self.assertTrue(bool(solution.regularized[-1]))
        self.assertFalse(bool(solution.regularized[0]))
        self.assertTrue(np.allclose(solution.Ps[0][:, :, -1], 0.0))
        self.assertTrue(np.all(np.isfinite(solution.Ps[0])))


if __name__ == "__main__":
    unittest.main()
