"""
Expression graph: node arena and forward/backward driver.

`ExpressionGraph` owns every node of one graph build in an arena indexed by
integer handles. Children are referenced by handle, which makes the graph a
DAG without shared-ownership cycles, and gives a topological order for free:
a node is always created after its children, so ascending handles restricted
to the nodes reachable from the roots is a valid evaluation order.

The driver computes that order once per (root set, graph build) and caches
it. Adding a node invalidates the cache.

Pass protocol
-------------
forward(roots)
    Increments the pass counter, then calls `forward()` on every reachable
    node in topological order, then synchronizes the backend.
backward(roots)
    Zeroes the gradient of every reachable trainable owning node, seeds each
    trainable root's gradient with ones, then calls `backward()` on every
    reachable node in reverse order, then synchronizes the backend.

Configuration is passed to the constructor; there is no global state. The
backend (and with it the clip value) is owned by the graph.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ...domain._backend import Backend
from ...domain._errors import UsageOrderViolationError
from ...domain._node import NodeState
from ...domain._shape import ShapeLike
from ...domain.device._device import Device
from ..backends import backend_by_device_id
from ..tensor._buffer import TensorBuffer
from ._node import Node
from ._operators import OperatorRegistry

logger = logging.getLogger(__name__)

NodeRef = Union[Node, int]


class ExpressionGraph:
    """
    Arena of nodes plus the topological forward/backward driver.

    Parameters
    ----------
    device : str or Device, optional
        Device identifier resolved through `backend_by_device_id`.
        Default "cpu".
    seed : int, optional
        Graph seed. Forwarded to the backend and used to seed per-node random
        state (dropout). Default 0.
    dtype : numpy dtype, optional
        Element type of every buffer. Default float32.
    inference : bool, optional
        Start in inference mode (dropout becomes the identity). Default False.
    clip : float, optional
        Global matrix-multiply clip value set on the backend. 0 disables it.
    backend : Backend, optional
        Pre-built backend. Overrides `device` and `seed` resolution.
    """

    def __init__(
        self,
        device: Union[str, Device] = "cpu",
        seed: int = 0,
        *,
        dtype: Any = np.float32,
        inference: bool = False,
        clip: Optional[float] = None,
        backend: Optional[Backend] = None,
    ) -> None:
        self.backend = backend if backend is not None else backend_by_device_id(device, seed)
        self.seed = int(seed) if backend is None else backend.seed
        self.dtype = np.dtype(dtype)
        self.inference = bool(inference)
        self.pass_id = 0
        if clip is not None:
            self.backend.set_clip(clip)
        self.backend.set_device()

        self._nodes: List[Node] = []
        self._order_cache: Dict[Tuple[int, ...], Tuple[int, ...]] = {}

    # ------------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, handle: int) -> Node:
        if not 0 <= handle < len(self._nodes):
            raise UsageOrderViolationError(
                f"Unknown node handle {handle}; the graph has {len(self._nodes)} nodes."
            )
        return self._nodes[handle]

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return tuple(self._nodes)

    def _handle(self, ref: NodeRef) -> int:
        if isinstance(ref, Node):
            if ref.graph is not self:
                raise ValueError(f"Node {ref.id} belongs to a different graph")
            if not (0 <= ref.id < len(self._nodes) and self._nodes[ref.id] is ref):
                raise UsageOrderViolationError(
                    f"Node {ref.id} ({ref.type}) is no longer in this graph; it was released."
                )
            return ref.id
        if isinstance(ref, (int, np.integer)):
            return self.node(int(ref)).id
        raise TypeError(f"Expected a Node or node handle, got {type(ref).__name__}")

    def add_node(
        self, tag: str, children: Sequence[NodeRef] = (), **params: Any
    ) -> Node:
        """
        Construct a node.

        Parameters
        ----------
        tag : str
            Operator type tag (see `OperatorRegistry.available()`).
        children : Sequence[Node | int]
            Child nodes or handles.
        **params
            Operator-specific parameters (axis, shape, step, indices, p, ...).
            Leaf operators also accept `value` (initial data) and, for
            `param`, `trainable`.

        Returns
        -------
        Node
            The new node, with its shape already computed.

        Raises
        ------
        ShapeMismatchError
            If the output shape cannot be derived from the children.
        """
        op = OperatorRegistry.get(tag)
        ids = tuple(self._handle(c) for c in children)
        if op.arity is not None and len(ids) != op.arity:
            raise TypeError(f"{tag} expects {op.arity} children, got {len(ids)}")

        value = params.pop("value", None) if op.is_leaf else None
        trainable_flag = params.pop("trainable", None) if op.is_leaf else None

        params = op.prepare(dict(params))
        shape = op.shape([self._nodes[i].shape for i in ids], **params)

        if op.is_leaf:
            trainable = (op.tag == "param") if trainable_flag is None else bool(trainable_flag)
        else:
            trainable = any(self._nodes[i].trainable for i in ids)

        node = Node(self, len(self._nodes), op, ids, shape, params, trainable)
        self._nodes.append(node)
        self._order_cache.clear()

        if op.is_leaf:
            self._init_leaf(node, value)

        logger.debug("add_node: %r", node)
        return node

    def _init_leaf(self, node: Node, value: Optional[Any]) -> None:
        node._val = TensorBuffer.allocate(node.shape, self.dtype)
        if value is not None:
            node._val.copy_from_numpy(np.asarray(value))
        node.state = NodeState.VALUED

    def param(
        self, shape: ShapeLike, value: Optional[Any] = None, *, trainable: bool = True
    ) -> Node:
        """Create a trainable leaf (zero-initialized unless `value` is given)."""
        return self.add_node("param", shape=shape, value=value, trainable=trainable)

    def constant(self, shape: ShapeLike, value: Optional[Any] = None) -> Node:
        """Create a non-trainable input leaf."""
        return self.add_node("input", shape=shape, value=value)

    input = constant

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------
    def topological_order(self, roots: Iterable[NodeRef]) -> Tuple[Node, ...]:
        """
        Return the nodes reachable from `roots`, children before parents.

        The order is computed once per root set and cached until the graph
        changes.
        """
        key = tuple(sorted({self._handle(r) for r in roots}))
        order = self._order_cache.get(key)
        if order is None:
            seen = set()
            stack = list(key)
            while stack:
                i = stack.pop()
                if i in seen:
                    continue
                seen.add(i)
                stack.extend(self._nodes[i].children_ids)
            # handles increase from children to parents
            order = tuple(sorted(seen))
            self._order_cache[key] = order
            logger.debug("topological_order: roots=%s -> %d nodes", key, len(order))
        return tuple(self._nodes[i] for i in order)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------
    def forward(self, roots: Iterable[NodeRef]) -> None:
        """Value every node reachable from `roots` in dependency order."""
        order = self.topological_order(roots)
        self.pass_id += 1
        logger.debug("forward: pass %d over %d nodes", self.pass_id, len(order))
        for node in order:
            node.forward()
        self.backend.synchronize()

    def backward(self, roots: Iterable[NodeRef]) -> None:
        """
        Backpropagate from `roots`, seeding each trainable root with ones.

        Must follow a `forward` over the same (or a superset of the) roots in
        the current pass.
        """
        roots = list(roots)
        order = self.topological_order(roots)
        logger.debug("backward: pass %d over %d nodes", self.pass_id, len(order))

        for node in order:
            node.zero_grad()
        for h in dict.fromkeys(self._handle(r) for r in roots):
            node = self._nodes[h]
            if not node.is_valued():
                raise UsageOrderViolationError(
                    f"backward from node {node.id} ({node.type}) before its forward."
                )
            if node.grad is not None:
                # a root may be a view of another root
                node.grad.data[...] += 1.0

        for node in reversed(order):
            node.backward()
        self.backend.synchronize()

    def set_inference(self, inference: bool) -> None:
        self.inference = bool(inference)

    def clear(self) -> None:
        """Release every node and empty the arena."""
        for node in self._nodes:
            node.free()
        logger.debug("clear: released %d nodes", len(self._nodes))
        self._nodes.clear()
        self._order_cache.clear()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def to_dot(self, roots: Optional[Iterable[NodeRef]] = None) -> str:
        """Render the graph (or the part reachable from `roots`) as Graphviz text."""
        nodes = self._nodes if roots is None else self.topological_order(roots)
        lines = ["digraph ExpressionGraph {", '  graph[splines=ortho, ordering="out"]']
        for n in nodes:
            label = f"{n.type}\\n{n.id}\\n{list(n.shape.dims)}"
            if n.trainable:
                label += "\\n(trainable)"
            lines.append(
                f'  "{n.id}" [shape="box", label="{label}", style="filled", fillcolor="{n.color}"]'
            )
        for n in nodes:
            for c in n.children_ids:
                lines.append(f'  "{c}" -> "{n.id}"')
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ExpressionGraph(nodes={len(self._nodes)}, backend={self.backend!r}, "
            f"dtype={self.dtype}, inference={self.inference})"
        )
