"""
CPU reference kernel library (NumPy backend).

This module provides NumPy implementations of the kernel primitives that
operators dispatch through. They serve as:

- The kernels of the CPU backend
- The numerical ground truth for unit tests and gradient checks

Design notes
------------
- All arrays are rank-4 views as returned by `TensorBuffer.data`. Rows live
  on axis 0, columns on axis 1. Outputs may be non-contiguous views and are
  always written in place.
- "Row-wise" operations (softmax family) normalize over axis 1 for every
  (row, axis-2, axis-3) position.
- Gradient kernels accumulate (`+=`) into their output. Nothing in this module
  overwrites a gradient.
- These implementations favor clarity over performance.
"""

from __future__ import annotations

import warnings
from typing import Any, Callable, Optional, Sequence

import numpy as np

from ...domain._errors import IndexOutOfRangeError
from ...domain._kernels import KernelLibrary


def _sum_to(x: np.ndarray, shape: tuple[int, ...]) -> np.ndarray:
    """
    Sum `x` over every axis where `shape` has size 1 but `x` does not.

    `x` is first broadcast against `shape` so scalar or partially broadcast
    functor results are handled uniformly.
    """
    x = np.asarray(x)
    full = np.broadcast_shapes(x.shape, shape)
    if x.shape != full:
        x = np.broadcast_to(x, full)
    axes = tuple(i for i, (n, m) in enumerate(zip(full, shape)) if m == 1 and n != 1)
    if axes:
        x = x.sum(axis=axes, keepdims=True)
    return x


def _check_rows(indices: Sequence[int], n_rows: int) -> np.ndarray:
    idx = np.asarray(indices, dtype=np.int64).reshape(-1)
    bad = np.flatnonzero((idx < 0) | (idx >= n_rows))
    if bad.size:
        raise IndexOutOfRangeError("rows", int(idx[bad[0]]), n_rows)
    return idx


def _matrix(x: np.ndarray, trans: bool, clip: float) -> np.ndarray:
    if clip > 0.0:
        x = np.clip(x, -clip, clip)
    return x.transpose(1, 0, 2, 3) if trans else x


class NumpyKernelLibrary(KernelLibrary):
    """
    NumPy implementation of `KernelLibrary`.

    Instances are stateless; the CPU backend shares a single one.
    """

    # ------------------------------------------------------------------
    # Elementwise / reduction
    # ------------------------------------------------------------------
    def element(self, fn: Callable[..., Any], out: np.ndarray, *inputs: Any) -> None:
        out[...] = fn(*inputs)

    def add(self, fn: Callable[..., Any], out: np.ndarray, *inputs: Any) -> None:
        out += _sum_to(fn(*inputs), out.shape)

    def reduce(self, fn: Callable[..., Any], out: np.ndarray, *inputs: Any) -> None:
        out[...] = _sum_to(fn(*inputs), out.shape)

    def transpose(self, out: np.ndarray, x: np.ndarray, *, accumulate: bool = False) -> None:
        xt = x.transpose(1, 0, 2, 3)
        if accumulate:
            out += xt
        else:
            out[...] = xt

    # ------------------------------------------------------------------
    # Softmax family
    # ------------------------------------------------------------------
    def softmax(
        self, out: np.ndarray, x: np.ndarray, mask: Optional[np.ndarray] = None
    ) -> None:
        """
        Row-wise softmax over axis 1.

        `mask` is additive: it is added to the logits before normalization,
        so entries of `-inf` (or a large negative value) produce exact or
        near-exact zeros in the output. Rows that are masked entirely have no
        valid distribution and are set to zero.
        """
        z = x if mask is None else x + mask
        m = z.max(axis=1, keepdims=True)
        dead = ~np.isfinite(m)
        if dead.any():
            warnings.warn(
                "softmax: encountered fully masked rows; their output is zero.",
                RuntimeWarning,
                stacklevel=2,
            )
            m = np.where(dead, 0.0, m)
        with np.errstate(under="ignore"):
            e = np.exp(z - m)
        s = e.sum(axis=1, keepdims=True)
        out[...] = np.divide(e, s, out=np.zeros_like(e), where=s > 0)

    def softmax_grad(self, grad: np.ndarray, adj: np.ndarray, val: np.ndarray) -> None:
        # J * dy = p .* (dy - p'dy)
        dot = (val * adj).sum(axis=1, keepdims=True)
        grad += val * (adj - dot)

    def log_softmax(self, out: np.ndarray, x: np.ndarray) -> None:
        m = x.max(axis=1, keepdims=True)
        z = x - m
        out[...] = z - np.log(np.exp(z).sum(axis=1, keepdims=True))

    def log_softmax_grad(self, grad: np.ndarray, adj: np.ndarray, val: np.ndarray) -> None:
        grad += adj - np.exp(val) * adj.sum(axis=1, keepdims=True)

    # ------------------------------------------------------------------
    # Row gather / scatter
    # ------------------------------------------------------------------
    def copy_rows(self, out: np.ndarray, x: np.ndarray, indices: Sequence[int]) -> None:
        idx = _check_rows(indices, x.shape[0])
        out[...] = x[idx]

    def paste_rows(self, grad: np.ndarray, adj: np.ndarray, indices: Sequence[int]) -> None:
        idx = _check_rows(indices, grad.shape[0])
        # unbuffered so repeated indices accumulate
        np.add.at(grad, idx, adj)

    # ------------------------------------------------------------------
    # Matrix product
    # ------------------------------------------------------------------
    def prod(
        self,
        out: np.ndarray,
        a: np.ndarray,
        b: np.ndarray,
        *,
        trans_a: bool = False,
        trans_b: bool = False,
        beta: float = 0.0,
        clip_a: float = 0.0,
        clip_b: float = 0.0,
    ) -> None:
        r = np.einsum(
            "ij...,jk...->ik...",
            _matrix(a, trans_a, clip_a),
            _matrix(b, trans_b, clip_b),
        )
        if beta == 0.0:
            out[...] = r
        else:
            out[...] = beta * out + r

    # ------------------------------------------------------------------
    # Dropout
    # ------------------------------------------------------------------
    def dropout_mask(
        self, rng: np.random.Generator, like: np.ndarray, keep_prob: float
    ) -> np.ndarray:
        keep = rng.random(like.shape) < keep_prob
        return keep.astype(like.dtype) / like.dtype.type(keep_prob)

    def dropout_forward(self, out: np.ndarray, x: np.ndarray, mask: np.ndarray) -> None:
        np.multiply(x, mask, out=out)

    def dropout_backward(self, grad: np.ndarray, adj: np.ndarray, mask: np.ndarray) -> None:
        grad += adj * mask
