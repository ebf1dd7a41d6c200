import numpy as np
import pytest

from dualopt.jet import Jet, as_jet, value_of
from dualopt.num_diff import approx_grad


def _grad(fun, x):
    out = fun(Jet.variables(x))
    return out.v, out.d


def test_variables_seed_identity():
    x = Jet.variables(np.array([1.0, 2.0, 3.0]))
    assert x.shape == (3,)
    assert x.width == 3
    assert np.allclose(x.d, np.eye(3))


def test_constant_has_zero_derivatives():
    c = Jet.constant(np.ones((2, 2)), 4)
    assert c.d.shape == (2, 2, 4)
    assert not np.any(c.d)


def test_shape_mismatch_rejected():
    with pytest.raises(ValueError):
        Jet(np.zeros(3), np.zeros((2, 3)))


def test_arithmetic_rules():
    x = Jet.variables(np.array([2.0, 3.0]))
    a, b = x[0], x[1]
    assert np.allclose((a + b).d, [1.0, 1.0])
    assert np.allclose((a - b).d, [1.0, -1.0])
    assert np.allclose((a * b).d, [3.0, 2.0])
    assert np.allclose((a / b).d, [1.0 / 3.0, -2.0 / 9.0])
    assert np.allclose((-a).d, [-1.0, 0.0])
    assert np.allclose((2.0 - a).d, [-1.0, 0.0])
    assert np.allclose((1.0 / a).d, [-0.25, 0.0])


def test_power_rules():
    x = Jet.variables(np.array([2.0, 3.0]))
    a, b = x[0], x[1]
    assert np.allclose((a**3).d, [12.0, 0.0])
    assert np.allclose((a**0).d, [0.0, 0.0])
    assert np.allclose((2.0**b).d, [0.0, 8.0 * np.log(2.0)])
    p = a**b
    assert p.v == pytest.approx(8.0)
    assert np.allclose(p.d, [3.0 * 4.0, 8.0 * np.log(2.0)])


def test_zero_base_with_constant_exponent():
    x = Jet.variables(np.array([0.0]))
    out = x[0] ** 2
    assert out.v == 0.0
    assert np.allclose(out.d, [0.0])


@pytest.mark.parametrize(
    "func, deriv",
    [
        (np.sqrt, lambda v: 0.5 / np.sqrt(v)),
        (np.exp, np.exp),
        (np.log, lambda v: 1.0 / v),
        (np.sin, np.cos),
        (np.cos, lambda v: -np.sin(v)),
        (np.tan, lambda v: 1.0 / np.cos(v) ** 2),
        (np.arctan, lambda v: 1.0 / (1.0 + v * v)),
        (np.tanh, lambda v: 1.0 - np.tanh(v) ** 2),
        (np.abs, np.sign),
        (np.square, lambda v: 2.0 * v),
        (np.cbrt, lambda v: 1.0 / (3.0 * np.cbrt(v) ** 2)),
        (np.log1p, lambda v: 1.0 / (1.0 + v)),
        (np.expm1, np.exp),
        (np.arcsin, lambda v: 1.0 / np.sqrt(1.0 - v * v)),
        (np.fabs, np.sign),
        (np.log10, lambda v: 1.0 / (v * np.log(10.0))),
        (np.log2, lambda v: 1.0 / (v * np.log(2.0))),
        (np.exp2, lambda v: np.exp2(v) * np.log(2.0)),
        (np.arcsinh, lambda v: 1.0 / np.sqrt(v * v + 1.0)),
        (np.arctanh, lambda v: 1.0 / (1.0 - v * v)),
        (np.sign, np.zeros_like),
    ],
)
def test_unary_derivatives(func, deriv):
    v = np.array([0.3, 0.7])
    out = func(Jet.variables(v))
    assert np.allclose(out.v, func(v))
    assert np.allclose(np.diag(out.d), deriv(v))


def test_arccosh_derivative():
    v = np.array([1.5, 3.0])
    out = np.arccosh(Jet.variables(v))
    assert np.allclose(out.v, np.arccosh(v))
    assert np.allclose(np.diag(out.d), 1.0 / np.sqrt(v * v - 1.0))


def test_clip_passes_derivatives_inside_bounds_only():
    x = Jet.variables(np.array([-2.0, 0.5, 3.0]))
    out = np.clip(x, -1.0, 1.0)
    assert np.allclose(out.v, [-1.0, 0.5, 1.0])
    assert np.allclose(np.diag(out.d), [0.0, 1.0, 0.0])

    upper = np.clip(x, None, 1.0)
    assert np.allclose(upper.v, [-2.0, 0.5, 1.0])
    assert np.allclose(np.diag(upper.d), [1.0, 1.0, 0.0])


def test_clip_with_jet_bounds():
    x = Jet.variables(np.array([0.0, 5.0]))
    out = np.clip(x[1], x[0], 2.0)
    assert out.v == 2.0
    assert np.allclose(out.d, [0.0, 0.0])
    out = np.clip(x[0], x[1], 10.0)
    assert out.v == 5.0
    assert np.allclose(out.d, [0.0, 1.0])


def test_sqrt_at_zero_is_infinite():
    with np.errstate(divide="ignore"):
        out = np.sqrt(Jet.variables(np.array([0.0])))
    assert np.isinf(out.d[0, 0])


def test_binary_ufuncs():
    x = Jet.variables(np.array([1.0, 2.0]))
    a, b = x[0], x[1]
    r2 = 5.0
    assert np.allclose(np.arctan2(a, b).d, [2.0 / r2, -1.0 / r2])
    assert np.allclose(np.hypot(a, b).d, [1.0 / np.sqrt(r2), 2.0 / np.sqrt(r2)])
    assert np.allclose(np.maximum(a, b).d, [0.0, 1.0])
    assert np.allclose(np.minimum(a, b).d, [1.0, 0.0])


def test_comparisons_use_values():
    x = Jet.variables(np.array([1.0, 2.0]))
    assert bool(x[0] < x[1])
    assert bool(x[1] >= 2.0)
    assert np.array_equal(x > 1.5, [False, True])


def test_matmul_matches_dense_jacobian(rng):
    A = rng.normal(size=(3, 4))
    v = rng.normal(size=4)
    out = A @ Jet.variables(v)
    assert np.allclose(out.v, A @ v)
    assert np.allclose(out.d, A)

    M = Jet.variables(rng.normal(size=(2, 2)))
    prod = M @ M
    assert prod.d.shape == (2, 2, 4)
    eps = 1e-6
    base = M.v
    for k in range(4):
        step = np.zeros(4)
        step[k] = eps
        plus = (base + step.reshape(2, 2)) @ (base + step.reshape(2, 2))
        minus = (base - step.reshape(2, 2)) @ (base - step.reshape(2, 2))
        assert np.allclose(prod.d[..., k], (plus - minus) / (2 * eps), atol=1e-6)


def test_dot_and_norm():
    x = Jet.variables(np.array([3.0, 4.0]))
    n = np.linalg.norm(x)
    assert n.v == pytest.approx(5.0)
    assert np.allclose(n.d, [0.6, 0.8])
    d = np.dot(x, x)
    assert np.allclose(d.d, [6.0, 8.0])


def test_reductions_and_reshaping():
    x = Jet.variables(np.arange(6.0).reshape(2, 3))
    s = x.sum(axis=0)
    assert s.shape == (3,)
    assert s.d.shape == (3, 6)
    assert np.allclose(np.sum(x).d, np.ones(6))
    assert np.allclose(np.mean(x).d, np.full(6, 1.0 / 6.0))
    assert x.T.shape == (3, 2)
    assert np.allclose(x.T.d[2, 1], np.eye(6)[5])
    assert x.ravel().shape == (6,)
    assert np.reshape(x, (3, 2)).shape == (3, 2)
    assert x[..., 1].shape == (2,)
    assert np.allclose(x[..., 1].d[1], np.eye(6)[4])


def test_stack_concatenate_where():
    x = Jet.variables(np.array([1.0, -2.0]))
    stacked = np.stack([x[0], x[1] * 2.0, 3.0])
    assert stacked.shape == (3,)
    assert np.allclose(stacked.d, [[1, 0], [0, 2], [0, 0]])
    cat = np.concatenate([x, np.array([5.0])])
    assert cat.shape == (3,)
    h = np.hstack([x[0], x])
    assert h.shape == (3,)
    w = np.where(x.v > 0, x, -x)
    assert np.allclose(w.v, [1.0, 2.0])
    assert np.allclose(w.d, [[1, 0], [0, -1]])


def test_setitem_and_iteration():
    x = Jet.variables(np.array([1.0, 2.0]))
    out = Jet.constant(np.zeros(3), 2)
    out[0] = x[0] * 3.0
    out[1:] = x * x
    out[2] = 7.0
    assert np.allclose(out.v, [3.0, 1.0, 7.0])
    assert np.allclose(out.d, [[3, 0], [2, 0], [0, 0]])
    assert len(x) == 2
    assert [float(j.v) for j in x] == [1.0, 2.0]
    with pytest.raises(TypeError):
        len(x[0])


def test_object_arrays_are_reassembled():
    x = Jet.variables(np.array([1.0, 2.0]))
    items = np.array([x[0] * x[1], 4.0, x[1]], dtype=object)
    jet = as_jet(items, 2)
    assert np.allclose(jet.v, [2.0, 4.0, 2.0])
    assert np.allclose(jet.d, [[2, 1], [0, 0], [0, 1]])
    assert np.allclose(value_of(items), [2.0, 4.0, 2.0])


def test_no_implicit_float_conversion():
    x = Jet.variables(np.array([1.0]))
    with pytest.raises(TypeError):
        float(x[0])


def test_out_argument_rejected():
    x = Jet.variables(np.array([1.0]))
    with pytest.raises(TypeError):
        np.add(x, x, out=np.zeros(1))


def test_mixed_widths_rejected():
    with pytest.raises(ValueError):
        as_jet(Jet.constant(1.0, 2), 3)


def _composite(x):
    a, b, c = x[0], x[1], x[2]
    return np.stack(
        [
            a * b - c / (1.0 + a * a),
            np.sqrt(a * a + b * b + 1.0) * c,
            (b + 2.0) ** 1.5 - (a**2) * (c**3),
            (a - b) / (c * c + 0.5),
        ]
    )


def test_autodiff_matches_central_differences(rng):
    for _ in range(100):
        x0 = rng.uniform(0.1, 2.0, size=3)
        values, jac = _grad(_composite, x0)
        for row in range(values.size):

            def fun(x, row=row):
                return float(_composite(x)[row])

            numeric = approx_grad(fun, x0, eps=1e-6)
            assert np.allclose(jac[row], numeric, rtol=1e-4, atol=1e-6)
