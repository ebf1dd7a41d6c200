import numpy as np
import pytest

from dualopt.autodiff import calculate_jacobian, seed_jets
from dualopt.jet import Jet
from dualopt.num_diff import (
    approx_grad,
    numerical_gradient,
    numerical_jacobian,
    residual_vector,
)


class Rotation2:
    """Planar rotation updated on its tangent space."""

    DIMS = 1

    def __init__(self, angle=0.0):
        self.angle = angle

    def plus_eq(self, delta):
        self.angle = self.angle + delta[0]
        return self

    def matrix(self):
        c, s = np.cos(self.angle), np.sin(self.angle)
        return np.stack([np.stack([c, -s]), np.stack([s, c])])


def test_seed_jets_for_arrays():
    x_jet, width = seed_jets(np.array([1.0, 2.0]))
    assert isinstance(x_jet, Jet)
    assert width == 2
    assert np.allclose(x_jet.v, [1.0, 2.0])
    assert np.allclose(x_jet.d, np.eye(2))


def test_seed_jets_for_scalar():
    x_jet, width = seed_jets(3.0)
    assert width == 1
    assert x_jet.shape == ()
    assert np.allclose(x_jet.d, [1.0])


def test_calculate_jacobian_linear():
    A = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
    x = np.array([0.5, -1.0])
    values, J = calculate_jacobian(x, lambda v: A @ v - 1.0)
    assert np.allclose(values, A @ x - 1.0)
    assert np.allclose(J, A)


def test_calculate_jacobian_scalar_output():
    values, J = calculate_jacobian(np.array([2.0, 3.0]), lambda v: v[0] * v[1])
    assert values.shape == (1,)
    assert np.allclose(J, [[3.0, 2.0]])


def test_calculate_jacobian_strips_count():
    values, J = calculate_jacobian(np.array([2.0]), lambda v: (v * 2.0, 7))
    assert np.allclose(values, [4.0])
    assert np.allclose(J, [[2.0]])


def test_jacobian_on_user_manifold():
    rot = Rotation2(0.3)
    point = np.array([1.0, 0.0])
    values, J = calculate_jacobian(rot, lambda r: r.matrix() @ point)
    assert np.allclose(values, [np.cos(0.3), np.sin(0.3)])
    assert np.allclose(J[:, 0], [-np.sin(0.3), np.cos(0.3)])
    assert rot.angle == 0.3


def test_autodiff_matches_numerical_jacobian(rng):
    def residuals(x):
        return np.stack([np.exp(x[0]) * x[1], x[1] ** 2 - np.sin(x[0]), x[0] / (1.0 + x[1] ** 2)])

    for _ in range(10):
        x = rng.normal(size=2)
        _, J_auto = calculate_jacobian(x, residuals)
        _, J_num = numerical_jacobian(x, residuals, eps=1e-6)
        assert np.allclose(J_auto, J_num, rtol=1e-4, atol=1e-6)


def test_numerical_gradient_through_trait():
    grad = numerical_gradient(np.array([1.0, -2.0]), lambda x: float(x @ x))
    assert np.allclose(grad, [2.0, -4.0], atol=1e-6)


def test_numerical_gradient_scalar():
    grad = numerical_gradient(3.0, lambda x: x**2)
    assert np.allclose(grad, [6.0], atol=1e-6)


def test_numerical_jacobian_invalid_eps():
    with pytest.raises(ValueError):
        numerical_jacobian(np.zeros(1), lambda x: x, eps=0.0)


def test_approx_grad_matches_linear_function():
    def fun(x: np.ndarray) -> float:
        return float(3 * x[0] - 2 * x[1])

    grad = approx_grad(fun, np.array([0.2, -0.1]))
    assert np.allclose(grad, np.array([3.0, -2.0]), atol=1e-6)


def test_approx_grad_invalid_eps():
    with pytest.raises(ValueError):
        approx_grad(lambda x: float(x[0]), np.array([0.0]), eps=0.0)


def test_approx_grad_counts_evaluations():
    _, evals = approx_grad(lambda x: float(np.sum(x)), np.zeros(3), return_evals=True)
    assert evals == 6


def test_residual_vector_flattens():
    assert np.allclose(residual_vector(2.0), [2.0])
    assert np.allclose(residual_vector((np.ones((2, 2)), 3)), np.ones(4))
