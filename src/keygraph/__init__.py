"""
KeyGraph: the expression-graph core of a neural-network toolkit.

Build nodes with the functional API, evaluate them with
`ExpressionGraph.forward`, backpropagate with `ExpressionGraph.backward` and
read buffers with `node.val.to_numpy()` / `node.grad.to_numpy()`.
"""

from .domain import (
    Backend,
    Device,
    DeviceError,
    DeviceNotSupportedError,
    DeviceType,
    IndexOutOfRangeError,
    KernelLibrary,
    KeyGraphError,
    NodeOp,
    NodeState,
    Shape,
    ShapeMismatchError,
    UsageOrderViolationError,
)
from .infrastructure.backends import (
    BackendRegistry,
    CpuBackend,
    CudaBackend,
    backend_by_device_id,
)
from .infrastructure.graph import ExpressionGraph, Node, OperatorRegistry
from .infrastructure.graph._functional import (
    dot,
    dropout,
    exp,
    log,
    logit,
    logsoftmax,
    mean,
    mult,
    neg,
    plus,
    relu,
    reshape,
    rows,
    sigmoid,
    softmax,
    step,
    sum,
    tanh,
    transpose,
)
from .infrastructure.kernels import NumpyKernelLibrary
from .infrastructure.tensor import TensorBuffer

__version__ = "0.1.0a0"
