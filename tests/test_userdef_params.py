"""End-to-end fits on user-defined parameter types."""

import numpy as np
import pytest

from dualopt import LMSolverOptions, Options, optimize_lm


class Rectangle:
    """Axis-aligned rectangle given by two corners."""

    DIMS = 4

    def __init__(self, p1=(0.0, 0.0), p2=(1.0, 1.0)):
        self.p1 = np.asarray(p1, dtype=float)
        self.p2 = np.asarray(p2, dtype=float)

    def plus_eq(self, delta):
        self.p1 = self.p1 + delta[:2]
        self.p2 = self.p2 + delta[2:]
        return self

    def center(self):
        return 0.5 * (self.p1 + self.p2)

    def __str__(self):
        return f"Rectangle({self.p1}, {self.p2})"


def rectangle_loss(rect, grad, H):
    residuals = np.concatenate([rect.p1 - np.array([1.0, 2.0]), rect.p2 - np.array([3.0, 4.0])])
    if grad is not None:
        J = np.eye(4)
        grad[:] = J.T @ residuals
        H[:] = J.T @ J
    return np.linalg.norm(residuals)


def test_rectangle_corners_are_fitted():
    rectangle = Rectangle()
    res = optimize_lm(rectangle, rectangle_loss, solver_options=LMSolverOptions(damping_init=1e-1))
    assert res.succeeded()
    assert res.x is rectangle
    assert rectangle.p1 == pytest.approx([1.0, 2.0], abs=1e-5)
    assert rectangle.p2 == pytest.approx([3.0, 4.0], abs=1e-5)
    assert rectangle.center() == pytest.approx([2.0, 3.0], abs=1e-5)


def test_rectangle_with_autodiff_residuals():
    rectangle = Rectangle()

    def residuals(rect):
        return np.concatenate([rect.p1 - np.array([1.0, 2.0]), rect.p2 - np.array([3.0, 4.0])])

    res = optimize_lm(rectangle, residuals)
    assert res.converged()
    assert rectangle.p2 == pytest.approx([3.0, 4.0], abs=1e-5)


def make_circle(n, radius, center, noise, rng):
    angles = np.arange(n) * 2.0 * np.pi / (n - 1)
    points = center + radius * np.stack([np.cos(angles), np.sin(angles)], axis=1)
    return points + noise * rng.uniform(-1.0, 1.0, size=points.shape)


def test_fit_circle(rng):
    obs = make_circle(10, 2.0, np.array([2.0, 7.0]), 1e-5, rng)

    def residuals(x):
        center = x[:2]
        diff = obs - center
        res = np.sum(diff * diff, axis=1) - x[2] * x[2]
        # Prior on the radius with a sigma of 1e3
        return np.hstack([res, 1e-3 * (x[2] - 1.0)])

    x = np.array([0.0, 0.0, 1.0])
    res = optimize_lm(x, residuals, solver_options=LMSolverOptions(damping_init=10.0))
    assert res.succeeded()
    assert x[0] == pytest.approx(2.0, rel=1e-4)
    assert x[1] == pytest.approx(7.0, rel=1e-4)
    assert abs(x[2]) == pytest.approx(2.0, rel=1e-4)


def test_fit_circle_with_numerical_derivatives(rng):
    obs = make_circle(12, 1.5, np.array([-1.0, 0.5]), 0.0, rng)

    def residuals(x):
        return np.sqrt(np.sum((obs - x[:2]) ** 2, axis=1)) - x[2]

    x = np.array([0.0, 0.0, 1.0])
    res = optimize_lm(x, residuals, options=Options(use_autodiff=False, max_iters=200))
    assert res.succeeded()
    assert x == pytest.approx([-1.0, 0.5, 1.5], abs=1e-4)
