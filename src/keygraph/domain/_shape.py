"""
Fixed-rank shape algebra.

Every tensor in the expression graph has exactly four axes. Unused trailing
axes have size 1, so a 2x3 matrix is `Shape((2, 3, 1, 1))`. Axis 0 holds rows
and axis 1 holds columns; axes 2 and 3 are typically time steps and batch
slices.

This module defines the immutable `Shape` type together with the shape rules
used by operators to derive their output shape from their inputs:

- elementwise: output equals input
- reduction: reduced axis (or all axes) collapses to 1
- transpose: axes 0 and 1 swap
- rows gather: axis 0 becomes the number of selected rows
- reshape: explicit target, element counts must agree
- timestep: axes 2 and 3 collapse to 1
- broadcast / matrix product: used by binary operators

Each rule is a pure function of its inputs and raises `ShapeMismatchError`
when the inputs are incompatible. Operators call them once, at construction.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence, Union

from ._errors import ShapeMismatchError

RANK = 4

ShapeLike = Union["Shape", Sequence[int]]


class Shape:
    """
    Immutable four-axis shape.

    Parameters
    ----------
    dims : Sequence[int]
        Between one and four positive axis sizes. Missing trailing axes are
        filled with 1.

    Raises
    ------
    ShapeMismatchError
        If more than four axes are given or any axis is not positive.
    """

    __slots__ = ("_dims",)

    def __init__(self, dims: Iterable[int] = ()) -> None:
        d = tuple(int(v) for v in dims)
        if len(d) > RANK:
            raise ShapeMismatchError(
                "shape", f"at most {RANK} axes are supported", actual=d
            )
        if any(v <= 0 for v in d):
            raise ShapeMismatchError("shape", "axis sizes must be positive", actual=d)
        self._dims = d + (1,) * (RANK - len(d))

    @classmethod
    def of(cls, shape: ShapeLike) -> "Shape":
        """Coerce a tuple/list (or an existing `Shape`) into a `Shape`."""
        return shape if isinstance(shape, Shape) else cls(shape)

    @property
    def dims(self) -> tuple[int, int, int, int]:
        return self._dims  # type: ignore[return-value]

    def elements(self) -> int:
        """Return the product of all four axes."""
        n = 1
        for v in self._dims:
            n *= v
        return n

    def set(self, axis: int, value: int) -> "Shape":
        """Return a copy of this shape with `axis` replaced by `value`."""
        _check_axis("shape", axis)
        d = list(self._dims)
        d[axis] = int(value)
        return Shape(d)

    def __getitem__(self, axis: int) -> int:
        return self._dims[axis]

    def __iter__(self) -> Iterator[int]:
        return iter(self._dims)

    def __len__(self) -> int:
        return RANK

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Shape):
            return self._dims == other._dims
        if isinstance(other, (tuple, list)):
            try:
                return self._dims == Shape(other)._dims
            except ShapeMismatchError:
                return False
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._dims)

    def __repr__(self) -> str:
        return f"Shape({self._dims})"


def _check_axis(op: str, axis: int) -> int:
    if not isinstance(axis, int) or not 0 <= axis < RANK:
        raise ShapeMismatchError(op, f"axis must be in [0, {RANK}), got {axis!r}")
    return axis


def elementwise_shape(a: Shape) -> Shape:
    return a


def reduce_shape(a: Shape, axis: Optional[int] = None, *, op: str = "reduce") -> Shape:
    """
    Collapse `axis` of `a` to size 1, or every axis when `axis` is None.

    Parameters
    ----------
    a : Shape
        Input shape.
    axis : int or None
        Axis to reduce. None reduces all four axes to a (1, 1, 1, 1) result.
    op : str
        Operator tag used in error messages.
    """
    if axis is None:
        return Shape((1, 1, 1, 1))
    return a.set(_check_axis(op, axis), 1)


def transpose_shape(a: Shape) -> Shape:
    """Swap axes 0 and 1."""
    return Shape((a[1], a[0], a[2], a[3]))


def rows_shape(a: Shape, indices: Sequence[int]) -> Shape:
    """Replace axis 0 with the number of gathered rows."""
    if len(indices) == 0:
        raise ShapeMismatchError("rows", "at least one row index is required")
    return a.set(0, len(indices))


def reshape_shape(a: Shape, target: ShapeLike) -> Shape:
    """
    Validate and return an explicit reshape target.

    Raises
    ------
    ShapeMismatchError
        If the target's element count differs from the source's.
    """
    t = Shape.of(target)
    if t.elements() != a.elements():
        raise ShapeMismatchError(
            "reshape",
            f"cannot view {a.elements()} elements as {t.dims} "
            f"({t.elements()} elements)",
            expected=a.dims,
            actual=t.dims,
        )
    return t


def timestep_shape(a: Shape) -> Shape:
    """Collapse axes 2 and 3, leaving one (rows, cols) slice."""
    return Shape((a[0], a[1], 1, 1))


def broadcast_shape(a: Shape, b: Shape, *, op: str = "broadcast") -> Shape:
    """
    Return the broadcast of two shapes.

    Each axis must either match or be 1 in one of the operands.
    """
    out = []
    for x, y in zip(a, b):
        if x != y and x != 1 and y != 1:
            raise ShapeMismatchError(
                op,
                f"shapes {a.dims} and {b.dims} are not broadcast-compatible",
                expected=a.dims,
                actual=b.dims,
            )
        out.append(max(x, y))
    return Shape(out)


def dot_shape(a: Shape, b: Shape) -> Shape:
    """
    Matrix product shape over axes 0/1: (a0, a1) x (b0, b1) -> (a0, b1).

    Axes 2 and 3 of both operands must match.
    """
    if a[1] != b[0]:
        raise ShapeMismatchError(
            "dot",
            f"inner dimensions differ: {a[1]} vs {b[0]}",
            expected=(a[1],),
            actual=(b[0],),
        )
    if (a[2], a[3]) != (b[2], b[3]):
        raise ShapeMismatchError(
            "dot", "trailing axes must match", expected=a.dims, actual=b.dims
        )
    return Shape((a[0], b[1], a[2], a[3]))
