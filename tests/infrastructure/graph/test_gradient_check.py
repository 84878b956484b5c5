"""
Finite-difference gradient checks for every differentiable operator.

Each check builds `loss = sum(op(x) * w)` with a random constant `w`, so the
adjoint reaching `op` is non-trivial, and compares `x.grad` with central
differences of the forward pass.
"""

import unittest

import numpy as np

from keygraph import (
    ExpressionGraph,
    dot,
    exp,
    log,
    logit,
    logsoftmax,
    mean,
    mult,
    neg,
    plus,
    relu,
    reshape,
    rows,
    softmax,
    step,
    sum,
    tanh,
    transpose,
)

EPS = 1e-6


def _numeric_grad(g, x, loss):
    data = x.val.data
    out = np.zeros(data.shape)
    for idx in np.ndindex(*data.shape):
        orig = data[idx]
        data[idx] = orig + EPS
        g.forward([loss])
        fp = loss.val.to_numpy().item()
        data[idx] = orig - EPS
        g.forward([loss])
        fm = loss.val.to_numpy().item()
        data[idx] = orig
        out[idx] = (fp - fm) / (2 * EPS)
    return out


class TestGradientCheck(unittest.TestCase):
    def setUp(self):
        self.rng = np.random.default_rng(2024)

    def _check(self, build, x_np, *, extra=None):
        g = ExpressionGraph(dtype=np.float64, seed=11)
        x = g.param(x_np.shape, value=x_np)
        y = build(g, x)
        w = g.constant(y.shape, value=self.rng.standard_normal(y.shape.dims))
        loss = sum(mult(y, w))

        g.forward([loss])
        g.backward([loss])
        analytic = x.grad.to_numpy()
        numeric = _numeric_grad(g, x, loss)
        np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-7)

    def _randn(self, *shape):
        return self.rng.standard_normal(shape)

    def test_logit(self):
        self._check(lambda g, x: logit(x), self._randn(3, 4))

    def test_tanh(self):
        self._check(lambda g, x: tanh(x), self._randn(3, 4))

    def test_relu(self):
        x = self._randn(3, 4)
        x[np.abs(x) < 0.1] = 0.5  # keep away from the kink
        self._check(lambda g, x: relu(x), x)

    def test_log(self):
        self._check(lambda g, x: log(x), self.rng.uniform(0.5, 2.0, (3, 4)))

    def test_exp(self):
        self._check(lambda g, x: exp(x), self._randn(3, 4))

    def test_neg(self):
        self._check(lambda g, x: neg(x), self._randn(2, 5))

    def test_sum_all_and_axes(self):
        for axis in (None, 0, 1, 2):
            with self.subTest(axis=axis):
                self._check(lambda g, x: sum(x, axis=axis), self._randn(3, 4, 2))

    def test_mean_all_and_axes(self):
        for axis in (None, 0, 1):
            with self.subTest(axis=axis):
                self._check(lambda g, x: mean(x, axis=axis), self._randn(3, 4))

    def test_softmax(self):
        self._check(lambda g, x: softmax(x), self._randn(3, 5))

    def test_softmax_with_mask(self):
        mask = np.zeros((3, 5))
        mask[0, 1] = mask[2, 4] = -np.inf
        mask[1, 0] = -1e9
        self._check(lambda g, x: softmax(x, g.constant((3, 5), mask)), self._randn(3, 5))

    def test_logsoftmax(self):
        self._check(lambda g, x: logsoftmax(x), self._randn(3, 5))

    def test_rows_with_repeats(self):
        self._check(lambda g, x: rows(x, [3, 0, 3, 1]), self._randn(4, 3))

    def test_transpose(self):
        self._check(lambda g, x: transpose(x), self._randn(2, 5))

    def test_reshape_view(self):
        self._check(lambda g, x: tanh(reshape(x, (6, 2))), self._randn(3, 4))

    def test_step_view(self):
        self._check(lambda g, x: exp(step(x, 3)), self._randn(2, 3, 4))

    def test_dot_both_operands(self):
        b_np = self._randn(4, 2)
        self._check(lambda g, x: dot(x, g.param((4, 2), b_np)), self._randn(3, 4))
        a_np = self._randn(3, 4)
        self._check(lambda g, x: dot(g.param((3, 4), a_np), x), self._randn(4, 2))

    def test_broadcast_plus_and_mult(self):
        c = self._randn(3, 4)
        self._check(lambda g, x: plus(g.constant((3, 4), c), x), self._randn(1, 4))
        self._check(lambda g, x: mult(x, g.constant((3, 4), c)), self._randn(3, 1))

    def test_composite_dag(self):
        def build(g, x):
            h = tanh(x)
            return plus(mult(h, h), logsoftmax(h))

        self._check(build, self._randn(3, 4))


if __name__ == "__main__":
    unittest.main()
