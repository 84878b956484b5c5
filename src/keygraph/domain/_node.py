"""
Node operator interface definitions.

This module defines the abstract base class for operator variants plugged
into the generic node lifecycle. A concrete `NodeOp` subclass is a small
function table:

- `shape`: derives the output shape from the children's shapes and the
  operator's keyword parameters (called once, at construction)
- `forward`: computes the node value from valued children
- `backward`: accumulates the node gradient into its children's gradients

Operators hold no per-node state. Anything a node needs to remember between
passes (e.g. a dropout mask) is kept on the node itself, in `node.saved`.

This design is inspired by function-level autograd systems (e.g. PyTorch's
`autograd.Function`) with forward/backward declared as static methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Sequence

from ._kernels import KernelLibrary
from ._shape import Shape


class NodeState(Enum):
    """Lifecycle states of a graph node."""

    CONSTRUCTED = "constructed"
    VALUED = "valued"
    GRADIENT_ACCUMULATED = "gradient-accumulated"
    RELEASED = "released"


class NodeOp(ABC):
    """
    Abstract base class for operator variants.

    Class attributes
    ----------------
    tag : str
        Type tag exposed as `node.type` (graph introspection / visualization).
    color : str
        Visualization grouping hint. Not computational.
    arity : int or None
        Required number of children; None accepts any count.
    is_view : bool
        View operators own no storage. Their value and gradient alias the
        first child's buffers at `view_offset(node)`.
    is_leaf : bool
        Leaf operators hold a value supplied at construction.

    Notes
    -----
    - `backward` implementations must accumulate (`+=`) and never overwrite:
      a child in a DAG may receive contributions from several parents.
    - `backward` must skip children whose `trainable` flag is False; they
      have no gradient buffer.
    """

    tag: ClassVar[str] = ""
    color: ClassVar[str] = "yellow"
    arity: ClassVar[Optional[int]] = 1
    is_view: ClassVar[bool] = False
    is_leaf: ClassVar[bool] = False

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and normalize keyword parameters. Defaults to identity."""
        return params

    @staticmethod
    @abstractmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        """Compute the output shape from the children's shapes."""
        ...

    @staticmethod
    def forward(node: Any, k: KernelLibrary) -> None:
        """Compute `node.val` from valued children."""
        return None

    @staticmethod
    def backward(node: Any, k: KernelLibrary) -> None:
        """Accumulate `node.grad` into trainable children's gradients."""
        return None

    @staticmethod
    def inference(node: Any, k: KernelLibrary) -> Optional[bool]:
        """
        Forward variant used when the graph is in inference mode.

        Return True if handled; the default returns None, meaning the regular
        `forward` runs.
        """
        return None

    @staticmethod
    def view_offset(node: Any) -> int:
        """Element offset of a view into its child's storage."""
        return 0
