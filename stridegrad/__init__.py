from stridegrad.desc import MAX_DIM, TensorDesc, broadcast_shapes
from stridegrad.dtype import DType
from stridegrad.errors import GraphError, OpError, StrideGradError
from stridegrad.op import Op, OpContext, OpDesc
from stridegrad.storage import Storage
from stridegrad.tensor import (
    Tensor,
    arange,
    empty,
    fill,
    from_flat_values,
    from_nested_values,
    from_numpy,
    from_values,
    ones,
    scalar,
    zeros,
)
