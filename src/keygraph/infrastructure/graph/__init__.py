from ._graph import ExpressionGraph
from ._node import Node
from ._operators import OperatorRegistry

__all__ = [ExpressionGraph.__name__, Node.__name__, OperatorRegistry.__name__]
