"""
Node-construction functions.

Thin wrappers over `ExpressionGraph.add_node`: each takes its child node(s),
infers the graph from them and returns the new node. They validate only what
`add_node` cannot (that binary operands share one graph); shape and parameter
validation happen in the operator's `prepare`/`shape`.

    g = ExpressionGraph()
    x = g.param((2, 3), value=...)
    y = sum(relu(x), axis=1)
"""

from __future__ import annotations

from typing import Optional, Sequence

from ...domain._shape import ShapeLike
from ._node import Node


def _unary(tag: str, x: Node, **params) -> Node:
    if not isinstance(x, Node):
        raise TypeError(f"{tag} expects a Node")
    return x.graph.add_node(tag, [x], **params)


def _binary(tag: str, a: Node, b: Node) -> Node:
    if not isinstance(a, Node) or not isinstance(b, Node):
        raise TypeError(f"{tag} expects two Nodes")
    if a.graph is not b.graph:
        raise ValueError(f"{tag}: operands belong to different graphs")
    return a.graph.add_node(tag, [a, b])


def logit(x: Node) -> Node:
    """Elementwise sigmoid."""
    return _unary("logit", x)


sigmoid = logit


def tanh(x: Node) -> Node:
    return _unary("tanh", x)


def relu(x: Node) -> Node:
    return _unary("ReLU", x)


def log(x: Node) -> Node:
    return _unary("log", x)


def exp(x: Node) -> Node:
    return _unary("exp", x)


def neg(x: Node) -> Node:
    return _unary("-", x)


def sum(x: Node, axis: Optional[int] = None) -> Node:
    """Sum over `axis`, or over all axes into a (1, 1, 1, 1) node."""
    return _unary("sum", x, axis=axis)


def mean(x: Node, axis: Optional[int] = None) -> Node:
    """Mean over `axis`, or over all axes into a (1, 1, 1, 1) node."""
    return _unary("mean", x, axis=axis)


def softmax(x: Node, mask: Optional[Node] = None) -> Node:
    """
    Row-wise softmax over axis 1.

    Parameters
    ----------
    x : Node
        Logits.
    mask : Node, optional
        Additive mask broadcastable to `x` (0 keeps a position, a large
        negative value or -inf removes it).
    """
    if mask is None:
        return _unary("softmax", x)
    if not isinstance(x, Node) or not isinstance(mask, Node):
        raise TypeError("softmax expects Nodes")
    if x.graph is not mask.graph:
        raise ValueError("softmax: input and mask belong to different graphs")
    return x.graph.add_node("softmax", [x, mask])


def logsoftmax(x: Node) -> Node:
    return _unary("logsoftmax", x)


def rows(x: Node, indices: Sequence[int]) -> Node:
    """Gather rows of `x` (axis 0) by index; indices may repeat."""
    return _unary("rows", x, indices=indices)


def transpose(x: Node) -> Node:
    return _unary("transpose", x)


def reshape(x: Node, shape: ShapeLike) -> Node:
    """Zero-copy view of `x` with a new shape of the same element count."""
    return _unary("reshape", x, shape=shape)


def step(x: Node, index: int) -> Node:
    """Zero-copy view of the (rows, cols) slice number `index` of `x`."""
    return _unary("step", x, step=index)


def dropout(x: Node, p: float = 0.5, seed: Optional[int] = None) -> Node:
    """Inverted dropout with drop probability `p`."""
    return _unary("dropout", x, p=p, seed=seed)


def plus(a: Node, b: Node) -> Node:
    return _binary("+", a, b)


def mult(a: Node, b: Node) -> Node:
    return _binary("×", a, b)


def dot(a: Node, b: Node) -> Node:
    """Matrix product over axes 0/1, with the backend clip applied to operands."""
    return _binary("•", a, b)


__all__ = [
    "logit",
    "sigmoid",
    "tanh",
    "relu",
    "log",
    "exp",
    "neg",
    "sum",
    "mean",
    "softmax",
    "logsoftmax",
    "rows",
    "transpose",
    "reshape",
    "step",
    "dropout",
    "plus",
    "mult",
    "dot",
]
