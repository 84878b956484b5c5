"""
Tensor buffers and zero-copy aliasing.

This module defines `TensorBuffer`, the unit of storage for node values and
gradients. A buffer is a typed, shaped, row-major array in one of two modes:

- **Owning**: the buffer allocates a flat storage array of
  `shape.elements()` items and releases it on `free()`. Every (re)allocation
  bumps a generation counter.
- **Aliasing**: the buffer is a window `[offset, offset + elements)` into
  another buffer's flat storage. It never allocates and never frees. The
  window is re-derived from the source on every access and pinned to the
  source generation it was created against: reading it after the source was
  reallocated or released fails loudly.

Ownership semantics
-------------------
An alias must not outlive its source storage. Reading an alias after its
source has been freed or reallocated raises `UsageOrderViolationError`
instead of returning stale memory. View nodes never hold an alias across
passes; they build a fresh one on every access.

Aliases are how view nodes (reshape, timestep slice) share storage with their
child: writes through the child are immediately visible through the view, and
gradient accumulation into a view lands directly in the child's gradient.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from typing_extensions import Self

from ...domain._errors import UsageOrderViolationError
from ...domain._shape import Shape, ShapeLike


class TensorBuffer:
    """
    Typed, shaped, row-major storage, either owning or aliasing.

    Use `TensorBuffer.allocate` to create an owning buffer and
    `TensorBuffer.alias` to create a view into an existing one.

    Attributes
    ----------
    shape : Shape
        Four-axis shape of the buffer.
    dtype : np.dtype
        Element type.
    """

    __slots__ = ("shape", "dtype", "_storage", "_source", "_offset", "_generation")

    def __init__(
        self,
        shape: ShapeLike,
        dtype: np.dtype,
        *,
        storage: Optional[np.ndarray] = None,
        source: Optional["TensorBuffer"] = None,
        offset: int = 0,
    ) -> None:
        self.shape = Shape.of(shape)
        self.dtype = np.dtype(dtype)
        self._storage = storage
        self._source = source
        self._offset = int(offset)
        if source is not None:
            self._generation = source.generation
        else:
            self._generation = 0 if storage is None else 1

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def allocate(
        cls, shape: ShapeLike, dtype: np.dtype = np.float32, *, fill: float = 0.0
    ) -> Self:
        """Create an owning buffer filled with `fill`."""
        shape = Shape.of(shape)
        storage = np.full(shape.elements(), fill, dtype=np.dtype(dtype))
        return cls(shape, dtype, storage=storage)

    @classmethod
    def alias(
        cls, source: "TensorBuffer", shape: ShapeLike, offset: int = 0
    ) -> Self:
        """
        Create an aliasing buffer into `source`'s storage.

        Parameters
        ----------
        source : TensorBuffer
            Buffer to alias. May itself be an alias; windows compose.
        shape : ShapeLike
            Shape of the window.
        offset : int
            Element offset of the window within `source`.

        Raises
        ------
        UsageOrderViolationError
            If the window does not fit inside `source`.
        """
        shape = Shape.of(shape)
        if offset < 0 or offset + shape.elements() > source.shape.elements():
            raise UsageOrderViolationError(
                f"Alias window [{offset}, {offset + shape.elements()}) exceeds "
                f"source of {source.shape.elements()} elements."
            )
        return cls(shape, source.dtype, source=source, offset=offset)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def is_alias(self) -> bool:
        return self._source is not None

    @property
    def is_allocated(self) -> bool:
        if self._source is not None:
            return self._source.is_allocated
        return self._storage is not None

    @property
    def generation(self) -> int:
        """
        Allocation generation of this buffer.

        For aliases this is the source generation the alias was created
        against.
        """
        return self._generation

    @property
    def is_stale(self) -> bool:
        """True for an alias whose source was reallocated after it was made."""
        return self._source is not None and (
            self._source.is_stale or self._source.generation != self._generation
        )

    @property
    def offset(self) -> int:
        return self._offset

    def _flat(self) -> np.ndarray:
        if self._source is not None:
            if self.is_stale:
                raise UsageOrderViolationError(
                    "Alias source was reallocated; rebuild the alias from its source."
                )
            base = self._source._flat()
            return base[self._offset : self._offset + self.shape.elements()]
        if self._storage is None:
            raise UsageOrderViolationError(
                "Buffer storage has been released; it cannot be accessed."
            )
        return self._storage

    @property
    def data(self) -> np.ndarray:
        """
        Rank-4 NumPy view of the storage, indexed as (rows, cols, axis2, axis3).

        Storage layout: every (rows, cols) matrix slice is a contiguous
        row-major block, and slices are stacked by axis 2, then axis 3. Element
        (i, j, t, b) lives at flat index ((b * d2 + t) * d0 + i) * d1 + j.
        For matrices (d2 == d3 == 1) this is plain row-major order.

        For aliases the view is re-derived from the source on every access and
        shares memory with it.
        """
        d0, d1, d2, d3 = self.shape.dims
        return self._flat().reshape(d3, d2, d0, d1).transpose(2, 3, 1, 0)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def reallocate(self) -> None:
        """
        Replace the owning storage with a fresh zeroed allocation.

        Raises
        ------
        UsageOrderViolationError
            If called on an aliasing buffer.
        """
        if self._source is not None:
            raise UsageOrderViolationError("Aliasing buffers never allocate.")
        self._storage = np.zeros(self.shape.elements(), dtype=self.dtype)
        self._generation += 1

    def free(self) -> None:
        """Release owning storage. Aliases release nothing."""
        if self._source is None:
            self._storage = None

    # ------------------------------------------------------------------
    # Host I/O
    # ------------------------------------------------------------------
    def fill(self, value: float) -> None:
        self._flat()[...] = value

    def copy_from_numpy(self, arr: np.ndarray) -> None:
        """
        Copy host data into the buffer.

        `arr` is interpreted in NumPy (row-major) order over the four axes, so
        an array of shape (2, 3) fills a (2, 3, 1, 1) buffer as expected. Any
        array with the right number of elements is accepted.
        """
        arr = np.asarray(arr)
        if arr.size != self.shape.elements():
            raise ValueError(
                f"copy_from_numpy expects {self.shape.elements()} elements, "
                f"got {arr.size} (shape {arr.shape})."
            )
        self.data[...] = arr.reshape(self.shape.dims)

    def to_numpy(self) -> np.ndarray:
        """Return a host copy shaped as the buffer's four axes."""
        return np.array(self.data, copy=True, order="C")

    def __repr__(self) -> str:
        mode = f"alias@{self._offset}" if self.is_alias else "owning"
        return f"TensorBuffer(shape={self.shape.dims}, dtype={self.dtype}, {mode})"
