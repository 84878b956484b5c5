"""
Kernel library interface definitions.

A kernel library is the numeric layer every operator dispatches through.
Operators never touch array math themselves; they describe *what* to compute
(e.g. "accumulate `adj * val * (1 - val)` into the child gradient") and the
kernel library of the active backend executes it on device storage.

Array arguments are backend arrays of rank 4 (row-major). Output arguments
are written in place. Functions named `*_grad`, `add` and `paste_rows`
accumulate into their output and never overwrite it, because a node may
receive gradient contributions from several parents.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Sequence


class KernelLibrary(ABC):
    """
    Abstract base class for device-side numeric primitives.

    Notes
    -----
    - `element`, `add` and `reduce` take an elementwise functor `fn` that is
      applied to the input arrays; the result is then assigned, accumulated
      or summed down to the output shape respectively.
    - Broadcasting follows the four-axis rule: every axis matches or is 1.
    """

    @abstractmethod
    def element(self, fn: Callable[..., Any], out: Any, *inputs: Any) -> None:
        """Assign `out = fn(*inputs)` elementwise."""
        ...

    @abstractmethod
    def add(self, fn: Callable[..., Any], out: Any, *inputs: Any) -> None:
        """Accumulate `out += fn(*inputs)`, summing broadcast axes back to `out`."""
        ...

    @abstractmethod
    def reduce(self, fn: Callable[..., Any], out: Any, *inputs: Any) -> None:
        """Assign `out = fn(*inputs)` summed over the axes where `out` has size 1."""
        ...

    @abstractmethod
    def transpose(self, out: Any, x: Any, *, accumulate: bool = False) -> None:
        """Swap axes 0/1 of `x` into `out` (or accumulate into it)."""
        ...

    @abstractmethod
    def softmax(self, out: Any, x: Any, mask: Optional[Any] = None) -> None:
        """Row-wise softmax over axis 1 with an optional additive mask."""
        ...

    @abstractmethod
    def softmax_grad(self, grad: Any, adj: Any, val: Any) -> None:
        """Accumulate `grad += val * (adj - sum(val * adj))` per row."""
        ...

    @abstractmethod
    def log_softmax(self, out: Any, x: Any) -> None:
        """Row-wise log-softmax over axis 1."""
        ...

    @abstractmethod
    def log_softmax_grad(self, grad: Any, adj: Any, val: Any) -> None:
        """Accumulate `grad += adj - exp(val) * sum(adj)` per row."""
        ...

    @abstractmethod
    def copy_rows(self, out: Any, x: Any, indices: Sequence[int]) -> None:
        """Gather `out[i] = x[indices[i]]` along axis 0."""
        ...

    @abstractmethod
    def paste_rows(self, grad: Any, adj: Any, indices: Sequence[int]) -> None:
        """Scatter-add `grad[indices[i]] += adj[i]`; repeated indices accumulate."""
        ...

    @abstractmethod
    def prod(
        self,
        out: Any,
        a: Any,
        b: Any,
        *,
        trans_a: bool = False,
        trans_b: bool = False,
        beta: float = 0.0,
        clip_a: float = 0.0,
        clip_b: float = 0.0,
    ) -> None:
        """
        Matrix product over axes 0/1: `out = beta * out + op(a) @ op(b)`.

        `op` optionally transposes axes 0/1. A non-zero `clip_a`/`clip_b`
        clamps the corresponding operand to `[-clip, clip]` first.
        """
        ...

    @abstractmethod
    def dropout_mask(self, rng: Any, like: Any, keep_prob: float) -> Any:
        """Draw an inverted-dropout mask (`bernoulli(keep) / keep`) shaped like `like`."""
        ...

    @abstractmethod
    def dropout_forward(self, out: Any, x: Any, mask: Any) -> None:
        """Assign `out = x * mask`."""
        ...

    @abstractmethod
    def dropout_backward(self, grad: Any, adj: Any, mask: Any) -> None:
        """Accumulate `grad += adj * mask`."""
        ...
