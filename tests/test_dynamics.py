#!/usr/bin/env python

"""Unit tests for the single- and multiplayer dynamical systems"""

import unittest

import numpy as np
import jax.numpy as jnp

from ilqnash.dynamical_system import DelayedDubinsCar, PointMass2D, Unicycle4D
from ilqnash.errors import DimensionError
from ilqnash.multiplayer_dynamical_system import (
    LinearMultiPlayerSystem, MultiPlayerDynamicalSystem, ProductMultiPlayerDynamicalSystem
)


def linearize_finite_difference(f, x, us, eps=1e-6):
    """Central-difference Jacobians of f(x, us) with respect to x and each u_i."""
    x = np.asarray(x, dtype=float)
    us = [np.asarray(u, dtype=float) for u in us]
    n = x.size

    A = np.zeros((n, n))
    for j in range(n):
        dx = np.zeros(n)
        dx[j] = eps
        A[:, j] = (np.asarray(f(x + dx, us)) - np.asarray(f(x - dx, us))) / (2 * eps)

    Bs = []
    for i, u in enumerate(us):
        B = np.zeros((n, u.size))
        for j in range(u.size):
            du = np.zeros(u.size)
            du[j] = eps
            up = [v + du if l == i else v for l, v in enumerate(us)]
            um = [v - du if l == i else v for l, v in enumerate(us)]
            B[:, j] = (np.asarray(f(x, up)) - np.asarray(f(x, um))) / (2 * eps)
        Bs.append(B)
    return A, Bs


class TestUnicycle(unittest.TestCase):

    def setUp(self):
        self.model = ProductMultiPlayerDynamicalSystem([Unicycle4D(T=0.5)], T=0.5)

    def test_straight(self):
        x = jnp.array([0.0, 0.0, 0.0, 1.0])
        u = [jnp.zeros(2)]
        X_truth = np.array([
            [0.0, 0.0, 0.0, 1.0],
            [0.5, 0.0, 0.0, 1.0],
            [1.0, 0.0, 0.0, 1.0],
            [1.5, 0.0, 0.0, 1.0],
        ])
        for x_expect in X_truth:
            self.assertTrue(np.allclose(x, x_expect))
            x = self.model.disc_time_dyn(x, u)

    def test_linearize(self):
        rng = np.random.default_rng(0)
        x = rng.normal(size=4)
        u = [rng.normal(size=2)]
        A, Bs = self.model.linearize_discrete(jnp.asarray(x), [jnp.asarray(u[0])])
        A_diff, B_diff = linearize_finite_difference(
            lambda x, us: self.model.disc_time_dyn(jnp.asarray(x), [jnp.asarray(v) for v in us]),
            x, u)

        self.assertTrue(np.allclose(A, A_diff, atol=1e-5))
        self.assertTrue(np.allclose(Bs[0], B_diff[0], atol=1e-5))


class TestDelayedDubinsCar(unittest.TestCase):

    def test_turn_rate_is_state(self):
        car = DelayedDubinsCar(speed=2.0, T=0.1)
        x = jnp.array([0.0, 0.0, 0.0, 0.5])
        x_next = car.disc_time_dyn(x, jnp.array([1.0]))
        self.assertTrue(np.allclose(x_next, [0.2, 0.0, 0.05, 0.6]))


class TestProductSystem(unittest.TestCase):

    def setUp(self):
        self.model = ProductMultiPlayerDynamicalSystem([Unicycle4D(), Unicycle4D()], T=0.1)

    def test_dimensions(self):
        self.assertEqual(self.model.x_dim, 8)
        self.assertEqual(self.model.u_dims, [2, 2])
        self.assertEqual(self.model.num_players, 2)
        self.assertEqual(list(self.model.state_indices(1)), [4, 5, 6, 7])

    def test_no_cross_coupling(self):
        x = jnp.array([1.0, -1.0, 0.3, 2.0, 0.5, 0.2, -0.7, 1.5])
        us = [jnp.array([0.1, 0.2]), jnp.array([-0.3, 0.4])]
        A, Bs = self.model.linearize_discrete(x, us)

        self.assertTrue(np.allclose(A[:4, 4:], 0.0))
        self.assertTrue(np.allclose(A[4:, :4], 0.0))
        self.assertTrue(np.allclose(Bs[0][4:], 0.0))
        self.assertTrue(np.allclose(Bs[1][:4], 0.0))

    def test_matches_subsystems(self):
        x = jnp.array([1.0, -1.0, 0.3, 2.0, 0.5, 0.2, -0.7, 1.5])
        us = [jnp.array([0.1, 0.2]), jnp.array([-0.3, 0.4])]
        x_next = self.model.disc_time_dyn(x, us)

        sub = Unicycle4D(T=0.1)
        self.assertTrue(np.allclose(x_next[:4], sub.disc_time_dyn(x[:4], us[0])))
        self.assertTrue(np.allclose(x_next[4:], sub.disc_time_dyn(x[4:], us[1])))


class TestIntegrators(unittest.TestCase):

    def test_rk4_exact_for_double_integrator(self):
        T = 0.2
        euler = ProductMultiPlayerDynamicalSystem([PointMass2D(T)], T=T)
        rk4 = ProductMultiPlayerDynamicalSystem([PointMass2D(T)], T=T, integration="rk4")
        x0 = jnp.zeros(4)
        u = [jnp.array([1.0, -2.0])]

        self.assertTrue(np.allclose(euler.disc_time_dyn(x0, u), [0.0, 0.0, T, -2 * T]))
        self.assertTrue(np.allclose(rk4.disc_time_dyn(x0, u),
                                    [0.5 * T ** 2, -T ** 2, T, -2 * T]))

    def test_unknown_scheme(self):
        with self.assertRaises(DimensionError):
            ProductMultiPlayerDynamicalSystem([PointMass2D()], integration="midpoint")


class TestLinearSystem(unittest.TestCase):

    def test_zero_order_hold(self):
        T = 0.1
        system = LinearMultiPlayerSystem([[0.0, 1.0], [0.0, 0.0]],
                                         [[[0.0], [1.0]], [[1.0], [0.0]]], T=T)
        A, Bs = system.linearize_discrete(jnp.zeros(2), [jnp.zeros(1), jnp.zeros(1)])

        self.assertTrue(np.allclose(A, [[1.0, T], [0.0, 1.0]]))
        self.assertTrue(np.allclose(Bs[0], [[0.5 * T ** 2], [T]]))
        self.assertTrue(np.allclose(Bs[1], [[T], [0.0]]))

        x = jnp.array([1.0, 2.0])
        us = [jnp.array([3.0]), jnp.array([-1.0])]
        self.assertTrue(np.allclose(system.disc_time_dyn(x, us),
                                    A @ x + Bs[0] @ us[0] + Bs[1] @ us[1]))

    def test_bad_shapes(self):
        with self.assertRaises(DimensionError):
            LinearMultiPlayerSystem(np.zeros((2, 3)), [np.zeros((2, 1))])
        with self.assertRaises(DimensionError):
            LinearMultiPlayerSystem(np.zeros((2, 2)), [np.zeros((3, 1))])

    def test_no_players(self):
        with self.assertRaises(DimensionError):
            MultiPlayerDynamicalSystem(4, [])


if __name__ == "__main__":
    unittest.main()
