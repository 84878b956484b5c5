import unittest

import numpy as np

from keygraph import (
    ExpressionGraph,
    IndexOutOfRangeError,
    OperatorRegistry,
    ShapeMismatchError,
    dot,
    dropout,
    exp,
    log,
    logit,
    logsoftmax,
    mean,
    mult,
    neg,
    relu,
    rows,
    softmax,
    sum,
    tanh,
    transpose,
)


def _v(node):
    """Node value squeezed to its leading (rows, cols) matrix."""
    return node.val.to_numpy()[:, :, 0, 0]


class TestElementwiseForward(unittest.TestCase):
    def setUp(self):
        self.g = ExpressionGraph(dtype=np.float64)
        self.x_np = np.array([[-2.0, -0.5, 0.0], [0.5, 1.0, 3.0]])
        self.x = self.g.constant((2, 3), self.x_np)

    def test_values_match_numpy(self):
        cases = {
            "logit": (logit(self.x), 1.0 / (1.0 + np.exp(-self.x_np))),
            "tanh": (tanh(self.x), np.tanh(self.x_np)),
            "relu": (relu(self.x), np.maximum(self.x_np, 0.0)),
            "exp": (exp(self.x), np.exp(self.x_np)),
            "neg": (neg(self.x), -self.x_np),
            "transpose": (transpose(self.x), self.x_np.T),
        }
        self.g.forward([n for n, _ in cases.values()])
        for name, (node, expected) in cases.items():
            with self.subTest(op=name):
                np.testing.assert_allclose(_v(node), expected, rtol=1e-12)

    def test_log(self):
        y = log(exp(self.x))
        self.g.forward([y])
        np.testing.assert_allclose(_v(y), self.x_np, atol=1e-12)

    def test_type_tags_and_colors(self):
        self.assertEqual(logit(self.x).type, "logit")
        self.assertEqual(relu(self.x).type, "ReLU")
        self.assertEqual(neg(self.x).type, "-")
        self.assertEqual(sum(self.x).color, "orange")
        self.assertEqual(tanh(self.x).color, "yellow")

    def test_registry_lists_core_operators(self):
        for tag in ("logit", "tanh", "ReLU", "log", "exp", "-", "sum", "mean",
                    "softmax", "logsoftmax", "rows", "transpose", "reshape",
                    "step", "dropout", "param", "input"):
            with self.subTest(tag=tag):
                self.assertIn(tag, OperatorRegistry.available())

    def test_unknown_operator_raises(self):
        with self.assertRaises(ValueError):
            self.g.add_node("softplus", [self.x])

    def test_wrong_arity_raises(self):
        with self.assertRaises(TypeError):
            self.g.add_node("tanh", [self.x, self.x])


class TestReductions(unittest.TestCase):
    def setUp(self):
        self.g = ExpressionGraph(dtype=np.float64)
        self.x_np = np.arange(24, dtype=np.float64).reshape(2, 3, 4)
        self.x = self.g.param((2, 3, 4), self.x_np)

    def test_sum_without_axis_is_scalar_shaped(self):
        y = sum(self.x)
        self.assertEqual(y.shape, (1, 1, 1, 1))
        self.g.forward([y])
        self.assertEqual(y.val.to_numpy().item(), self.x_np.sum())

    def test_mean_equals_sum_over_count(self):
        for axis in (None, 0, 1, 2):
            with self.subTest(axis=axis):
                m = mean(self.x, axis=axis)
                s = sum(self.x, axis=axis)
                self.g.forward([m, s])
                count = self.x.shape.elements() // m.shape.elements()
                np.testing.assert_allclose(
                    m.val.to_numpy(), s.val.to_numpy() / count, rtol=1e-12
                )

    def test_mean_gradient_scale_is_one_over_count(self):
        m = mean(self.x, axis=1)
        self.g.forward([m])
        self.g.backward([m])
        np.testing.assert_allclose(self.x.grad.to_numpy(), np.full((2, 3, 4, 1), 1.0 / 3.0))

    def test_invalid_axis_raises_at_construction(self):
        with self.assertRaises(ShapeMismatchError):
            sum(self.x, axis=5)

    def test_relu_then_sum_scenario(self):
        g = ExpressionGraph(dtype=np.float64)
        x_np = np.array([[1.0, -2.0, 3.0], [0.0, 4.0, -0.5]])
        x = g.param((2, 3), x_np)
        y = sum(relu(x), axis=1)
        self.assertEqual(y.shape, (2, 1, 1, 1))

        g.forward([y])
        np.testing.assert_allclose(y.val.to_numpy().reshape(2), [4.0, 4.0])

        g.backward([y])  # adjoint [1, 1]
        np.testing.assert_allclose(
            x.grad.to_numpy().reshape(2, 3), [[1.0, 0.0, 1.0], [0.0, 1.0, 0.0]]
        )


class TestSoftmax(unittest.TestCase):
    def setUp(self):
        self.g = ExpressionGraph()
        self.x_np = np.random.default_rng(3).standard_normal((4, 6)).astype(np.float32)
        self.x = self.g.param((4, 6), self.x_np)

    def test_rows_sum_to_one(self):
        y = softmax(self.x)
        self.g.forward([y])
        np.testing.assert_allclose(_v(y).sum(axis=1), 1.0, atol=1e-6)

    def test_rows_sum_to_one_with_mask(self):
        mask_np = np.zeros((4, 6), dtype=np.float32)
        mask_np[:, 4:] = -np.inf
        mask_np[2, 0] = -1e9
        y = softmax(self.x, self.g.constant((4, 6), mask_np))
        self.g.forward([y])
        v = _v(y)
        np.testing.assert_allclose(v.sum(axis=1), 1.0, atol=1e-6)
        self.assertTrue(np.all(v[:, 4:] == 0.0))
        self.assertEqual(v[2, 0], 0.0)

    def test_broadcast_row_mask(self):
        mask_np = np.array([[0.0, 0.0, -np.inf, 0.0, 0.0, 0.0]], dtype=np.float32)
        y = softmax(self.x, self.g.constant((1, 6), mask_np))
        self.g.forward([y])
        self.assertTrue(np.all(_v(y)[:, 2] == 0.0))

    def test_mask_must_broadcast(self):
        with self.assertRaises(ShapeMismatchError):
            softmax(self.x, self.g.constant((4, 5)))

    def test_mask_gets_no_gradient(self):
        mask = self.g.param((4, 6))
        y = softmax(self.x, mask)
        w = np.arange(24, dtype=np.float32).reshape(4, 6)
        loss = sum(mult(y, self.g.constant((4, 6), w)))
        self.g.forward([loss])
        self.g.backward([loss])
        self.assertTrue(np.all(mask.grad.to_numpy() == 0.0))

    def test_logsoftmax_exponentiates_to_probabilities(self):
        y = logsoftmax(self.x)
        self.g.forward([y])
        np.testing.assert_allclose(np.exp(_v(y)).sum(axis=1), 1.0, atol=1e-6)


class TestRows(unittest.TestCase):
    def test_gather_values(self):
        g = ExpressionGraph(dtype=np.float64)
        x_np = np.arange(12, dtype=np.float64).reshape(4, 3)
        x = g.param((4, 3), x_np)
        y = rows(x, [3, 1])
        self.assertEqual(y.shape, (2, 3, 1, 1))
        g.forward([y])
        np.testing.assert_array_equal(_v(y), x_np[[3, 1]])

    def test_repeated_indices_accumulate(self):
        g = ExpressionGraph(dtype=np.float64)
        x = g.param((4, 3))
        y = rows(x, [2, 2])
        g.forward([y])
        g.backward([y])
        grad = x.grad.to_numpy().reshape(4, 3)
        np.testing.assert_array_equal(grad[2], [2.0, 2.0, 2.0])
        np.testing.assert_array_equal(grad[[0, 1, 3]], np.zeros((3, 3)))

    def test_out_of_range_fails_at_first_forward(self):
        g = ExpressionGraph()
        x = g.param((4, 3))
        y = rows(x, [1, 4])  # construction succeeds
        with self.assertRaises(IndexOutOfRangeError):
            g.forward([y])


class TestDot(unittest.TestCase):
    def test_matrix_product(self):
        g = ExpressionGraph(dtype=np.float64)
        a_np = np.arange(6.0).reshape(2, 3)
        b_np = np.arange(12.0).reshape(3, 4)
        y = dot(g.constant((2, 3), a_np), g.constant((3, 4), b_np))
        g.forward([y])
        np.testing.assert_allclose(_v(y), a_np @ b_np)

    def test_global_clip_applies_to_operands(self):
        g = ExpressionGraph(dtype=np.float64, clip=1.0)
        y = dot(g.constant((1, 2), [[10.0, -0.5]]), g.constant((2, 1), [[3.0], [2.0]]))
        g.forward([y])
        # [1, -0.5] . [1, 1]
        self.assertAlmostEqual(y.val.to_numpy().item(), 0.5)

        g.backend.set_clip(0.0)
        g.forward([y])
        self.assertAlmostEqual(y.val.to_numpy().item(), 29.0)


class TestDropout(unittest.TestCase):
    def test_invalid_p_raises(self):
        g = ExpressionGraph()
        x = g.constant((2, 2))
        for p in (-0.1, 1.0):
            with self.subTest(p=p):
                with self.assertRaises(ValueError):
                    dropout(x, p=p)

    def test_inference_is_identity(self):
        g = ExpressionGraph(inference=True)
        x_np = np.random.default_rng(0).standard_normal((5, 5)).astype(np.float32)
        x = g.param((5, 5), x_np)
        y = dropout(x, p=0.7)
        g.forward([y])
        np.testing.assert_array_equal(_v(y), x_np)

        g.backward([y])
        np.testing.assert_array_equal(x.grad.to_numpy(), np.ones((5, 5, 1, 1)))

    def test_training_values_are_zero_or_scaled(self):
        g = ExpressionGraph(seed=1)
        x = g.constant((20, 20), np.ones((20, 20)))
        y = dropout(x, p=0.5)
        g.forward([y])
        uniq = set(np.unique(_v(y)).tolist())
        self.assertEqual(uniq, {0.0, 2.0})

    def test_expected_value_matches_input(self):
        g = ExpressionGraph(seed=42, dtype=np.float64)
        x_np = np.full((30, 30), 3.0)
        x = g.constant((30, 30), x_np)
        y = dropout(x, p=0.3)
        total = np.zeros((30, 30))
        n = 200
        for _ in range(n):
            g.forward([y])
            total += _v(y)
        self.assertAlmostEqual(float((total / n).mean()), 3.0, delta=0.03)

    def test_backward_uses_forward_mask(self):
        g = ExpressionGraph(seed=9, dtype=np.float64)
        x = g.param((8, 8), np.ones((8, 8)))
        y = dropout(x, p=0.5)
        g.forward([y])
        g.backward([y])
        np.testing.assert_array_equal(x.grad.to_numpy(), y.val.to_numpy())

    def test_mask_is_created_lazily(self):
        g = ExpressionGraph()
        y = dropout(g.param((3, 3)), p=0.2)
        self.assertNotIn("rng", y.saved)
        g.forward([y])
        self.assertIn("rng", y.saved)

    def test_seeding_is_reproducible_across_graphs(self):
        def run(seed):
            g = ExpressionGraph(seed=seed)
            y = dropout(g.constant((16, 16), np.ones((16, 16))), p=0.5)
            g.forward([y])
            return y.val.to_numpy()

        np.testing.assert_array_equal(run(5), run(5))
        self.assertFalse(np.array_equal(run(5), run(6)))

    def test_explicit_seed_overrides_graph_seed(self):
        def run(graph_seed):
            g = ExpressionGraph(seed=graph_seed)
            y = dropout(g.constant((16, 16), np.ones((16, 16))), p=0.5, seed=77)
            g.forward([y])
            return y.val.to_numpy()

        np.testing.assert_array_equal(run(1), run(2))

    def test_constant_input_is_not_trainable(self):
        g = ExpressionGraph()
        y = dropout(g.constant((3, 3), np.ones((3, 3))), p=0.5)
        self.assertFalse(y.trainable)
        g.forward([y])
        g.backward([y])
        self.assertIsNone(y.grad)


if __name__ == "__main__":
    unittest.main()
