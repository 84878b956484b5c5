"""
Generic graph node.

A `Node` is one entry in an `ExpressionGraph` arena. It is identified by an
integer handle, refers to its children by handle, and delegates all
operator-specific behavior to its `NodeOp` subclass (the function table).

Lifecycle
---------
    CONSTRUCTED -> VALUED -> GRADIENT_ACCUMULATED -> RELEASED

- `forward()` requires every child to have been valued in the current pass
  (leaves are always valued) and raises `UsageOrderViolationError` otherwise.
- `backward()` requires the node itself to have been valued in the current
  pass.
- Owning nodes allocate a value buffer on first forward. Gradient buffers are
  created only for trainable nodes, by the graph, before backward starts.
- View nodes never allocate. Their `val`/`grad` are rebuilt as aliases into
  the child's current buffers on every access.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple, Type

from ...domain._errors import UsageOrderViolationError
from ...domain._node import NodeOp, NodeState
from ...domain._shape import Shape
from ..tensor._buffer import TensorBuffer

if TYPE_CHECKING:
    from ._graph import ExpressionGraph


class Node:
    """
    Unit of the expression graph producing one tensor value.

    Parameters
    ----------
    graph : ExpressionGraph
        Owning graph (arena).
    node_id : int
        Handle of this node inside the arena.
    op : type[NodeOp]
        Operator function table.
    children : tuple[int, ...]
        Child handles.
    shape : Shape
        Output shape, computed once by the graph.
    params : dict
        Normalized operator parameters.
    trainable : bool
        Whether a gradient is required for this node.
    """

    __slots__ = (
        "graph",
        "id",
        "op",
        "children_ids",
        "shape",
        "params",
        "trainable",
        "state",
        "saved",
        "_val",
        "_grad",
        "_valued_pass",
    )

    def __init__(
        self,
        graph: "ExpressionGraph",
        node_id: int,
        op: Type[NodeOp],
        children: Tuple[int, ...],
        shape: Shape,
        params: Dict[str, Any],
        trainable: bool,
    ) -> None:
        self.graph = graph
        self.id = node_id
        self.op = op
        self.children_ids = children
        self.shape = shape
        self.params = params
        self.trainable = trainable
        self.state = NodeState.CONSTRUCTED
        self.saved: Dict[str, Any] = {}
        self._val: Optional[TensorBuffer] = None
        self._grad: Optional[TensorBuffer] = None
        self._valued_pass = -1

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def type(self) -> str:
        return self.op.tag

    @property
    def color(self) -> str:
        return self.op.color

    @property
    def is_view(self) -> bool:
        return self.op.is_view

    @property
    def children(self) -> Tuple["Node", ...]:
        return tuple(self.graph.node(i) for i in self.children_ids)

    def child(self, i: int = 0) -> "Node":
        return self.graph.node(self.children_ids[i])

    def is_valued(self) -> bool:
        """True if this node holds a value usable in the graph's current pass."""
        if self.state is NodeState.RELEASED:
            return False
        if self.op.is_leaf:
            return self._val is not None
        return self._valued_pass == self.graph.pass_id

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------
    @property
    def val(self) -> TensorBuffer:
        """
        Value buffer.

        For view nodes this is a fresh alias into the child's value storage,
        re-derived on each access.
        """
        if self.op.is_view:
            return TensorBuffer.alias(self.child().val, self.shape, self.op.view_offset(self))
        if self._val is None:
            raise UsageOrderViolationError(
                f"Node {self.id} ({self.type}) has no value; run forward first."
            )
        return self._val

    @property
    def grad(self) -> Optional[TensorBuffer]:
        """
        Gradient buffer, or None for non-trainable nodes.

        For view nodes this aliases the child's gradient storage, so
        accumulation lands directly in the child's buffer.
        """
        if not self.trainable:
            return None
        if self.op.is_view:
            child_grad = self.child().grad
            if child_grad is None:
                return None
            return TensorBuffer.alias(child_grad, self.shape, self.op.view_offset(self))
        return self._grad

    # the incoming gradient, named after the backprop literature
    adj = grad

    def allocate(self) -> int:
        """
        Allocate the value buffer if needed.

        Returns
        -------
        int
            Number of elements newly allocated. Always 0 for view nodes.
        """
        if self.op.is_view or self._val is not None:
            return 0
        self._val = TensorBuffer.allocate(self.shape, self.graph.dtype)
        return self.shape.elements()

    def zero_grad(self) -> None:
        """
        Give a trainable owning node a fresh zeroed gradient buffer.

        Existing buffers are reallocated, which bumps their generation, so a
        gradient alias kept from an earlier backward pass cannot be read.
        """
        if not self.trainable or self.op.is_view:
            return
        if self._grad is None:
            self._grad = TensorBuffer.allocate(self.shape, self.graph.dtype)
        else:
            self._grad.reallocate()

    def free(self) -> None:
        """Release owning buffers and per-node state."""
        if self._val is not None:
            self._val.free()
        if self._grad is not None:
            self._grad.free()
        self._val = None
        self._grad = None
        self.saved.clear()
        self.state = NodeState.RELEASED

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def forward(self) -> None:
        """Compute this node's value from its (already valued) children."""
        if self.state is NodeState.RELEASED:
            raise UsageOrderViolationError(f"Node {self.id} ({self.type}) was released.")
        for c in self.children:
            if not c.is_valued():
                raise UsageOrderViolationError(
                    f"forward of node {self.id} ({self.type}) before its child "
                    f"{c.id} ({c.type}) was valued."
                )

        if not self.op.is_leaf:
            self.allocate()
            if not self.op.is_view:
                k = self.graph.backend.kernels
                handled = self.graph.inference and self.op.inference(self, k)
                if not handled:
                    self.op.forward(self, k)

        self._valued_pass = self.graph.pass_id
        self.state = NodeState.VALUED

    def backward(self) -> None:
        """Accumulate this node's gradient into its trainable children."""
        if not self.is_valued():
            raise UsageOrderViolationError(
                f"backward of node {self.id} ({self.type}) before its forward."
            )
        if self.trainable and not self.op.is_view and not self.op.is_leaf:
            self.op.backward(self, self.graph.backend.kernels)
        self.state = NodeState.GRADIENT_ACCUMULATED

    def __repr__(self) -> str:
        return (
            f"Node(id={self.id}, type={self.type!r}, shape={self.shape.dims}, "
            f"children={self.children_ids}, trainable={self.trainable})"
        )
