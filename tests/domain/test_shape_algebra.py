import unittest

from keygraph.domain._errors import IndexOutOfRangeError, ShapeMismatchError
from keygraph.domain._shape import (
    Shape,
    broadcast_shape,
    dot_shape,
    reduce_shape,
    reshape_shape,
    rows_shape,
    timestep_shape,
    transpose_shape,
)


class TestShape(unittest.TestCase):
    def test_pads_to_four_axes(self):
        self.assertEqual(Shape((2, 3)).dims, (2, 3, 1, 1))
        self.assertEqual(Shape(()).dims, (1, 1, 1, 1))

    def test_elements_is_product_of_axes(self):
        self.assertEqual(Shape((2, 3, 4, 5)).elements(), 120)
        self.assertEqual(Shape((7,)).elements(), 7)

    def test_rejects_more_than_four_axes(self):
        with self.assertRaises(ShapeMismatchError):
            Shape((1, 2, 3, 4, 5))

    def test_rejects_non_positive_axes(self):
        with self.assertRaises(ShapeMismatchError):
            Shape((2, 0))

    def test_set_returns_new_shape(self):
        a = Shape((2, 3))
        b = a.set(1, 5)
        self.assertEqual(a.dims, (2, 3, 1, 1))
        self.assertEqual(b.dims, (2, 5, 1, 1))

    def test_equality_with_tuples_and_hash(self):
        self.assertEqual(Shape((2, 3)), (2, 3, 1, 1))
        self.assertEqual(Shape((2, 3)), (2, 3))
        self.assertNotEqual(Shape((2, 3)), (3, 2))
        self.assertEqual(hash(Shape((2, 3))), hash(Shape((2, 3, 1, 1))))


class TestShapeRules(unittest.TestCase):
    def test_reduce_all_axes_gives_scalar_shape(self):
        self.assertEqual(reduce_shape(Shape((2, 3, 4, 5))), (1, 1, 1, 1))

    def test_reduce_single_axis(self):
        self.assertEqual(reduce_shape(Shape((2, 3, 4)), 1), (2, 1, 4, 1))
        self.assertEqual(reduce_shape(Shape((2, 3, 4)), 0), (1, 3, 4, 1))

    def test_reduce_invalid_axis_raises(self):
        with self.assertRaises(ShapeMismatchError):
            reduce_shape(Shape((2, 3)), 4)
        with self.assertRaises(ShapeMismatchError):
            reduce_shape(Shape((2, 3)), -1)

    def test_transpose_swaps_first_two_axes(self):
        self.assertEqual(transpose_shape(Shape((2, 3, 4, 5))), (3, 2, 4, 5))

    def test_rows_sets_axis_zero_to_index_count(self):
        self.assertEqual(rows_shape(Shape((10, 3)), [1, 1, 4]), (3, 3, 1, 1))

    def test_rows_requires_indices(self):
        with self.assertRaises(ShapeMismatchError):
            rows_shape(Shape((10, 3)), [])

    def test_reshape_requires_same_element_count(self):
        self.assertEqual(reshape_shape(Shape((2, 3)), (3, 2)), (3, 2, 1, 1))
        with self.assertRaises(ShapeMismatchError) as cm:
            reshape_shape(Shape((2, 3)), (4, 2))
        self.assertEqual(cm.exception.expected, (2, 3, 1, 1))
        self.assertEqual(cm.exception.actual, (4, 2, 1, 1))

    def test_shape_mismatch_is_a_value_error(self):
        with self.assertRaises(ValueError):
            reshape_shape(Shape((2, 3)), (5,))

    def test_timestep_collapses_trailing_axes(self):
        self.assertEqual(timestep_shape(Shape((2, 3, 4, 5))), (2, 3, 1, 1))

    def test_broadcast(self):
        self.assertEqual(broadcast_shape(Shape((2, 3)), Shape((1, 3))), (2, 3, 1, 1))
        with self.assertRaises(ShapeMismatchError):
            broadcast_shape(Shape((2, 3)), Shape((3, 3)))

    def test_dot(self):
        self.assertEqual(dot_shape(Shape((2, 3)), Shape((3, 5))), (2, 5, 1, 1))
        with self.assertRaises(ShapeMismatchError):
            dot_shape(Shape((2, 3)), Shape((2, 5)))

    def test_index_error_is_an_index_error(self):
        err = IndexOutOfRangeError("rows", 5, 3)
        self.assertIsInstance(err, IndexError)
        self.assertEqual((err.index, err.limit), (5, 3))


if __name__ == "__main__":
    unittest.main()
