"""
Operator variants and their registry.

Each operator is a `NodeOp` subclass registered under its type tag. The
registry is the single dispatch point used by `ExpressionGraph.add_node`, so
new operators are added by registering one more class:

    @OperatorRegistry.register_operator("softplus")
    class SoftplusOp(NodeOp):
        @staticmethod
        def shape(children, **params): ...
        @staticmethod
        def forward(node, k): ...
        @staticmethod
        def backward(node, k): ...

Conventions
-----------
- `_x(node, i)` is the value array of child `i`; `_g(node, i)` its gradient
  array, or None when that child is not trainable.
- Forward kernels write `node.val`; backward kernels accumulate into child
  gradients and never overwrite them.
"""

from __future__ import annotations

from typing import Any, Callable, ClassVar, Dict, Optional, Sequence, Type, TypeVar

import numpy as np

from ...domain._errors import IndexOutOfRangeError, ShapeMismatchError
from ...domain._kernels import KernelLibrary
from ...domain._node import NodeOp
from ...domain._shape import (
    Shape,
    broadcast_shape,
    dot_shape,
    elementwise_shape,
    reduce_shape,
    reshape_shape,
    rows_shape,
    timestep_shape,
    transpose_shape,
)

T = TypeVar("T", bound=Type[NodeOp])


class OperatorRegistry:
    """
    Registry mapping type tags to `NodeOp` subclasses.

    Notes
    -----
    - Registration keys must be unique unless explicitly overwritten.
    - The registered class's `tag` attribute is set to the registration key.
    """

    OPERATORS: ClassVar[Dict[str, Type[NodeOp]]] = {}

    @classmethod
    def register_operator(cls, tag: str, *, overwrite: bool = False) -> Callable[[T], T]:
        if not isinstance(tag, str) or not tag:
            raise ValueError("Operator tag must be a non-empty string")

        def decorator(op_cls: T) -> T:
            if not overwrite and tag in cls.OPERATORS:
                raise ValueError(f"Operator already registered: {tag!r}")
            op_cls.tag = tag
            cls.OPERATORS[tag] = op_cls
            return op_cls

        return decorator

    @classmethod
    def available(cls) -> tuple[str, ...]:
        """Return registered operator tags (sorted)."""
        return tuple(sorted(cls.OPERATORS))

    @classmethod
    def get(cls, tag: str) -> Type[NodeOp]:
        try:
            return cls.OPERATORS[tag]
        except KeyError as e:
            available = ", ".join(cls.available()) or "<none>"
            raise ValueError(
                f"Unsupported operator: {tag!r}. Available: {available}"
            ) from e


def _x(node: Any, i: int = 0) -> np.ndarray:
    return node.child(i).val.data


def _g(node: Any, i: int = 0) -> Optional[np.ndarray]:
    g = node.child(i).grad
    return None if g is None else g.data


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def _identity(x: np.ndarray) -> np.ndarray:
    return x


def _check_axis_param(params: Dict[str, Any]) -> Dict[str, Any]:
    axis = params.get("axis")
    if axis is not None and not isinstance(axis, (int, np.integer)):
        raise TypeError(f"axis must be an int or None, got {type(axis).__name__}")
    return {"axis": None if axis is None else int(axis)}


# ----------------------------------------------------------------------
# Leaves
# ----------------------------------------------------------------------
class _LeafOp(NodeOp):
    arity = 0
    is_leaf = True

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        if "shape" not in params:
            raise TypeError("leaf nodes require a 'shape' parameter")
        return {"shape": Shape.of(params["shape"])}

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return params["shape"]


@OperatorRegistry.register_operator("param")
class ParamOp(_LeafOp):
    """Trainable leaf holding a parameter tensor."""

    color = "orangered"


@OperatorRegistry.register_operator("input")
class InputOp(_LeafOp):
    """Non-trainable constant leaf."""

    color = "white"


# ----------------------------------------------------------------------
# Elementwise nonlinearities
# ----------------------------------------------------------------------
class _UnaryOp(NodeOp):
    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return elementwise_shape(children[0])


@OperatorRegistry.register_operator("logit")
class LogitOp(_UnaryOp):
    """Sigmoid: val = 1 / (1 + exp(-x))."""

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(_sigmoid, node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.add(lambda adj, v: adj * v * (1.0 - v), g, node.adj.data, node.val.data)


@OperatorRegistry.register_operator("tanh")
class TanhOp(_UnaryOp):
    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(np.tanh, node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.add(lambda adj, v: adj * (1.0 - v * v), g, node.adj.data, node.val.data)


@OperatorRegistry.register_operator("ReLU")
class ReLUOp(_UnaryOp):
    """
    Rectified linear unit, f(x) = max(0, x).

    The derivative is taken as 0 at x == 0.
    """

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(lambda x: np.maximum(x, 0.0), node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.add(lambda adj, x: adj * (x > 0.0), g, node.adj.data, _x(node))


@OperatorRegistry.register_operator("log")
class LogOp(_UnaryOp):
    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(np.log, node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.add(lambda adj, x: adj / x, g, node.adj.data, _x(node))


@OperatorRegistry.register_operator("exp")
class ExpOp(_UnaryOp):
    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(np.exp, node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            # exp(x) is the node value
            k.add(lambda adj, v: adj * v, g, node.adj.data, node.val.data)


@OperatorRegistry.register_operator("-")
class NegOp(_UnaryOp):
    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(np.negative, node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.add(np.negative, g, node.adj.data)


# ----------------------------------------------------------------------
# Reductions
# ----------------------------------------------------------------------
@OperatorRegistry.register_operator("sum")
class SumOp(NodeOp):
    """Sum over `axis`, or over all four axes when `axis` is None."""

    color = "orange"

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        return _check_axis_param(params)

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return reduce_shape(children[0], params["axis"], op="sum")

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.reduce(_identity, node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.add(_identity, g, node.adj.data)


@OperatorRegistry.register_operator("mean")
class MeanOp(NodeOp):
    """
    Mean over `axis`, or over all four axes when `axis` is None.

    count = source elements / result elements; both the value and the
    gradient are scaled by 1 / count.
    """

    color = "orange"

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        return _check_axis_param(params)

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return reduce_shape(children[0], params["axis"], op="mean")

    @staticmethod
    def _scale(node) -> float:
        return 1.0 / (node.child().shape.elements() // node.shape.elements())

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        scale = MeanOp._scale(node)
        k.reduce(lambda x: x * scale, node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            scale = MeanOp._scale(node)
            k.add(lambda adj: adj * scale, g, node.adj.data)


# ----------------------------------------------------------------------
# Softmax family
# ----------------------------------------------------------------------
@OperatorRegistry.register_operator("softmax")
class SoftmaxOp(NodeOp):
    """
    Row-wise softmax over axis 1 with an optional additive mask.

    The mask is an optional second child. It is added to the logits before
    normalization and receives no gradient.
    """

    arity = None

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        if len(children) not in (1, 2):
            raise ShapeMismatchError("softmax", "expects an input and an optional mask")
        x = children[0]
        if len(children) == 2 and broadcast_shape(x, children[1], op="softmax") != x:
            raise ShapeMismatchError(
                "softmax",
                "mask must broadcast to the input shape",
                expected=x.dims,
                actual=children[1].dims,
            )
        return elementwise_shape(x)

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        mask = _x(node, 1) if len(node.children_ids) == 2 else None
        k.softmax(node.val.data, _x(node), mask)

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        # J * dy = p .* (dy - p'dy), see Martins & Astudillo (ICML 2016), sec. 2.5.
        # val is already masked, so the mask needs no special handling here.
        g = _g(node)
        if g is not None:
            k.softmax_grad(g, node.adj.data, node.val.data)


@OperatorRegistry.register_operator("logsoftmax")
class LogSoftmaxOp(_UnaryOp):
    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.log_softmax(node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        # J * dy = dy - exp(val) * sum(dy)
        g = _g(node)
        if g is not None:
            k.log_softmax_grad(g, node.adj.data, node.val.data)


# ----------------------------------------------------------------------
# Data movement
# ----------------------------------------------------------------------
@OperatorRegistry.register_operator("rows")
class RowsOp(NodeOp):
    """
    Gather rows along axis 0: val[i] = x[indices[i]].

    Indices are validated at the first forward. Backward scatter-adds, so a
    row selected several times receives the sum of its contributions.
    """

    color = "orange"

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        if "indices" not in params:
            raise TypeError("rows requires an 'indices' parameter")
        return {"indices": tuple(int(i) for i in params["indices"])}

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return rows_shape(children[0], params["indices"])

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.copy_rows(node.val.data, _x(node), node.params["indices"])

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.paste_rows(g, node.adj.data, node.params["indices"])


@OperatorRegistry.register_operator("transpose")
class TransposeOp(NodeOp):
    color = "orange"

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return transpose_shape(children[0])

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.transpose(node.val.data, _x(node))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is not None:
            k.transpose(g, node.adj.data, accumulate=True)


@OperatorRegistry.register_operator("reshape")
class ReshapeOp(NodeOp):
    """Zero-copy view of the child's storage with a new shape."""

    color = "grey"
    is_view = True

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        if "shape" not in params:
            raise TypeError("reshape requires a 'shape' parameter")
        return {"shape": Shape.of(params["shape"])}

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return reshape_shape(children[0], params["shape"])


@OperatorRegistry.register_operator("step")
class TimestepOp(NodeOp):
    """
    Zero-copy view of one (rows, cols) slice of the child.

    Slices are numbered over axis 2 first, then axis 3; slice `step` starts
    at element offset `step * rows * cols` of the child's storage.
    """

    color = "grey"
    is_view = True

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        if "step" not in params:
            raise TypeError("step requires a 'step' parameter")
        return {"step": int(params["step"])}

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        a = children[0]
        steps = a[2] * a[3]
        if not 0 <= params["step"] < steps:
            raise IndexOutOfRangeError("step", params["step"], steps)
        return timestep_shape(a)

    @staticmethod
    def view_offset(node) -> int:
        return node.params["step"] * node.shape.elements()


# ----------------------------------------------------------------------
# Stochastic
# ----------------------------------------------------------------------
@OperatorRegistry.register_operator("dropout")
class DropoutOp(_UnaryOp):
    """
    Inverted dropout.

    Training: val = x * mask / keep_prob with mask ~ Bernoulli(keep_prob).
    Inference: val = x.

    The node's random generator is created on the first forward, seeded from
    `(seed, node.id)` where `seed` is the explicit `seed` parameter or the
    graph seed. A fresh mask is drawn on every training forward and kept in
    `node.saved["mask"]` for the backward pass.
    """

    @staticmethod
    def prepare(params: Dict[str, Any]) -> Dict[str, Any]:
        p = float(params.get("p", 0.5))
        if not 0.0 <= p < 1.0:
            raise ValueError("Dropout probability p must be in [0, 1).")
        seed = params.get("seed")
        return {"p": p, "seed": None if seed is None else int(seed)}

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        rng = node.saved.get("rng")
        if rng is None:
            seed = node.params["seed"]
            if seed is None:
                seed = node.graph.seed
            rng = np.random.default_rng((seed, node.id))
            node.saved["rng"] = rng
        x = _x(node)
        mask = k.dropout_mask(rng, x, 1.0 - node.params["p"])
        node.saved["mask"] = mask
        k.dropout_forward(node.val.data, x, mask)

    @staticmethod
    def inference(node, k: KernelLibrary) -> Optional[bool]:
        node.saved["mask"] = None
        k.element(_identity, node.val.data, _x(node))
        return True

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        g = _g(node)
        if g is None:
            return
        mask = node.saved.get("mask")
        if mask is None:
            k.add(_identity, g, node.adj.data)
        else:
            k.dropout_backward(g, node.adj.data, mask)


# ----------------------------------------------------------------------
# Binary
# ----------------------------------------------------------------------
class _BinaryOp(NodeOp):
    arity = 2

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return broadcast_shape(children[0], children[1])


@OperatorRegistry.register_operator("+")
class PlusOp(_BinaryOp):
    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(np.add, node.val.data, _x(node, 0), _x(node, 1))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        for i in (0, 1):
            g = _g(node, i)
            if g is not None:
                k.add(_identity, g, node.adj.data)


@OperatorRegistry.register_operator("×")
class MultOp(_BinaryOp):
    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        k.element(np.multiply, node.val.data, _x(node, 0), _x(node, 1))

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        ga, gb = _g(node, 0), _g(node, 1)
        if ga is not None:
            k.add(np.multiply, ga, node.adj.data, _x(node, 1))
        if gb is not None:
            k.add(np.multiply, gb, node.adj.data, _x(node, 0))


@OperatorRegistry.register_operator("•")
class DotOp(NodeOp):
    """
    Matrix product over axes 0/1.

    Both operands are clamped to [-clip, clip] with the backend's global clip
    value (0 disables clipping). The backward pass uses the same clamped
    operands.
    """

    color = "orange"
    arity = 2

    @staticmethod
    def shape(children: Sequence[Shape], **params: Any) -> Shape:
        return dot_shape(children[0], children[1])

    @staticmethod
    def forward(node, k: KernelLibrary) -> None:
        clip = node.graph.backend.get_clip()
        k.prod(node.val.data, _x(node, 0), _x(node, 1), clip_a=clip, clip_b=clip)

    @staticmethod
    def backward(node, k: KernelLibrary) -> None:
        clip = node.graph.backend.get_clip()
        ga, gb = _g(node, 0), _g(node, 1)
        adj = node.adj.data
        if ga is not None:
            # dA += adj . B^T
            k.prod(ga, adj, _x(node, 1), trans_b=True, beta=1.0, clip_b=clip)
        if gb is not None:
            # dB += A^T . adj
            k.prod(gb, _x(node, 0), adj, trans_a=True, beta=1.0, clip_a=clip)
