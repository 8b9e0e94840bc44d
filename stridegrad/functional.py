"""
Convenience wrappers: one function per eager operator.

Each call runs the operator on a fresh :class:`~stridegrad.op.OpContext`
and raises :class:`~stridegrad.errors.OpError` when validation fails, so
driver code can use plain exception handling instead of checking status.
"""
from typing import List, Sequence

from stridegrad.dtype import DTypeLike
from stridegrad.errors import OpError
from stridegrad.op import Op, OpContext, OpDesc
from stridegrad.ops import (
    OpAdd,
    OpAxisDesc,
    OpCast,
    OpCastDesc,
    OpConcat,
    OpConcatDesc,
    OpCond,
    OpCos,
    OpDiv,
    OpEq,
    OpExp,
    OpExpand,
    OpExpandDesc,
    OpGather,
    OpGatherBackward,
    OpGatherBackwardDesc,
    OpGatherDesc,
    OpGe,
    OpGeq,
    OpIndexSelect,
    OpIndexSelectBackward,
    OpIndexSelectBackwardDesc,
    OpIndexSelectDesc,
    OpLe,
    OpLeq,
    OpLog,
    OpMatMul,
    OpMatMulDesc,
    OpMax,
    OpMin,
    OpMul,
    OpNarrow,
    OpNarrowBackward,
    OpNarrowBackwardDesc,
    OpNarrowDesc,
    OpNeg,
    OpNeq,
    OpOnesLike,
    OpPermute,
    OpPermuteDesc,
    OpPow,
    OpReciprocal,
    OpReduceDesc,
    OpReduceMax,
    OpReduceMean,
    OpReduceMin,
    OpReduceSum,
    OpReshape,
    OpReshapeDesc,
    OpSigmoid,
    OpSin,
    OpSplit,
    OpSplitDesc,
    OpSqueeze,
    OpSub,
    OpSumTo,
    OpSumToDesc,
    OpTan,
    OpTanh,
    OpUnsqueeze,
    OpZerosLike,
)
from stridegrad.tensor import Tensor


def execute(op: Op, inputs: Sequence[Tensor]) -> List[Tensor]:
    """
    Run ``op`` on ``inputs`` and return all of its outputs.

    Raises
    ------
    OpError
        If the operator recorded a validation diagnostic.
    """
    ctx = OpContext()
    outputs = op.execute(ctx, inputs)
    if not ctx.ok:
        raise OpError(op.name, ctx.error_str)
    return outputs


def _single(op_type, desc: OpDesc = None, *inputs: Tensor) -> Tensor:
    return execute(op_type(desc), inputs)[0]


def neg(x: Tensor) -> Tensor:
    return _single(OpNeg, None, x)


def sin(x: Tensor) -> Tensor:
    return _single(OpSin, None, x)


def cos(x: Tensor) -> Tensor:
    return _single(OpCos, None, x)


def tan(x: Tensor) -> Tensor:
    return _single(OpTan, None, x)


def log(x: Tensor) -> Tensor:
    return _single(OpLog, None, x)


def exp(x: Tensor) -> Tensor:
    return _single(OpExp, None, x)


def tanh(x: Tensor) -> Tensor:
    return _single(OpTanh, None, x)


def sigmoid(x: Tensor) -> Tensor:
    return _single(OpSigmoid, None, x)


def reciprocal(x: Tensor) -> Tensor:
    return _single(OpReciprocal, None, x)


def add(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpAdd, None, a, b)


def sub(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpSub, None, a, b)


def mul(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpMul, None, a, b)


def div(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpDiv, None, a, b)


def pow(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpPow, None, a, b)


def minimum(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpMin, None, a, b)


def maximum(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpMax, None, a, b)


def ge(a: Tensor, b: Tensor) -> Tensor:
    """``a > b`` elementwise, as 0/1 in the input dtype."""
    return _single(OpGe, None, a, b)


def le(a: Tensor, b: Tensor) -> Tensor:
    """``a < b`` elementwise, as 0/1 in the input dtype."""
    return _single(OpLe, None, a, b)


def geq(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpGeq, None, a, b)


def leq(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpLeq, None, a, b)


def eq(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpEq, None, a, b)


def neq(a: Tensor, b: Tensor) -> Tensor:
    return _single(OpNeq, None, a, b)


def cast(x: Tensor, dtype: DTypeLike) -> Tensor:
    return _single(OpCast, OpCastDesc(dtype), x)


def cond(c: Tensor, a: Tensor, b: Tensor) -> Tensor:
    """Select ``a`` where ``c`` is non-zero and ``b`` elsewhere."""
    return _single(OpCond, None, c, a, b)


def zeros_like(x: Tensor) -> Tensor:
    return _single(OpZerosLike, None, x)


def ones_like(x: Tensor) -> Tensor:
    return _single(OpOnesLike, None, x)


def matmul(a: Tensor, b: Tensor, transpose_a: bool = False, transpose_b: bool = False) -> Tensor:
    return _single(OpMatMul, OpMatMulDesc(transpose_a, transpose_b), a, b)


def reduce_sum(x: Tensor, axis: int, keepdims: bool = False) -> Tensor:
    """
    Sum over one axis.

    Examples
    --------
    >>> x = fill(DType.Float32, [2, 3], 1.0)
    >>> reduce_sum(x, axis=1).tolist()
    [3.0, 3.0]
    """
    return _single(OpReduceSum, OpReduceDesc(axis, keepdims), x)


def reduce_mean(x: Tensor, axis: int, keepdims: bool = False) -> Tensor:
    return _single(OpReduceMean, OpReduceDesc(axis, keepdims), x)


def reduce_min(x: Tensor, axis: int, keepdims: bool = False) -> List[Tensor]:
    """Returns ``[values, indices]``."""
    return execute(OpReduceMin(OpReduceDesc(axis, keepdims)), [x])


def reduce_max(x: Tensor, axis: int, keepdims: bool = False) -> List[Tensor]:
    """Returns ``[values, indices]``."""
    return execute(OpReduceMax(OpReduceDesc(axis, keepdims)), [x])


def reshape(x: Tensor, shape: Sequence[int]) -> Tensor:
    return _single(OpReshape, OpReshapeDesc(tuple(shape)), x)


def permute(x: Tensor, axes: Sequence[int]) -> Tensor:
    return _single(OpPermute, OpPermuteDesc(tuple(axes)), x)


def expand(x: Tensor, shape: Sequence[int]) -> Tensor:
    return _single(OpExpand, OpExpandDesc(tuple(shape)), x)


def squeeze(x: Tensor, axis: int) -> Tensor:
    return _single(OpSqueeze, OpAxisDesc(axis), x)


def unsqueeze(x: Tensor, axis: int) -> Tensor:
    return _single(OpUnsqueeze, OpAxisDesc(axis), x)


def sum_to(x: Tensor, shape: Sequence[int]) -> Tensor:
    return _single(OpSumTo, OpSumToDesc(tuple(shape)), x)


def concat(inputs: Sequence[Tensor], axis: int = 0) -> Tensor:
    return execute(OpConcat(OpConcatDesc(axis)), inputs)[0]


def split(x: Tensor, axis: int, splits: Sequence[int]) -> List[Tensor]:
    return execute(OpSplit(OpSplitDesc(axis, tuple(splits))), [x])


def narrow(x: Tensor, axis: int, start: int, length: int) -> Tensor:
    return _single(OpNarrow, OpNarrowDesc(axis, start, length), x)


def narrow_backward(grad: Tensor, axis: int, start: int, input_size: int) -> Tensor:
    return _single(OpNarrowBackward, OpNarrowBackwardDesc(axis, start, input_size), grad)


def index_select(x: Tensor, axis: int, indices: Tensor) -> Tensor:
    return _single(OpIndexSelect, OpIndexSelectDesc(axis), x, indices)


def index_select_backward(grad: Tensor, axis: int, indices: Tensor, input_size: int) -> Tensor:
    return _single(OpIndexSelectBackward, OpIndexSelectBackwardDesc(axis, input_size), grad, indices)


def gather(x: Tensor, axis: int, indices: Tensor) -> Tensor:
    return _single(OpGather, OpGatherDesc(axis), x, indices)


def gather_backward(grad: Tensor, axis: int, indices: Tensor, input_size: int) -> Tensor:
    return _single(OpGatherBackward, OpGatherBackwardDesc(axis, input_size), grad, indices)
