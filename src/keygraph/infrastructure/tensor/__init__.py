from ._buffer import TensorBuffer

__all__ = [TensorBuffer.__name__]
