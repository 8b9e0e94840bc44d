"""
Builders for graph nodes, one per operator.

Builders never evaluate anything and never fail on dtype or shape problems;
those surface as diagnostics when a :class:`GraphForwardContext` evaluates
the node. A builder adds its node to the graph of its input nodes, or to
the default graph when it has none.

Examples
--------
>>> from stridegrad.graph import functional as G
>>> a = G.placeholder("a", [], DType.Float32)
>>> y = G.reciprocal(a)
>>> y.graph.backward(y)
>>> ctx = GraphForwardContext(y.graph).feed("a", scalar(DType.Float32, 2.0))
>>> ctx.eval(a.grad(y)).item()
-0.25
"""
from typing import List, Optional, Sequence, Type, Union

from stridegrad.dtype import DTypeLike
from stridegrad.errors import GraphError
from stridegrad.graph.elemwise import (
    GOpAdd,
    GOpCast,
    GOpCond,
    GOpCos,
    GOpDiv,
    GOpEq,
    GOpExp,
    GOpGe,
    GOpGeq,
    GOpLe,
    GOpLeq,
    GOpLog,
    GOpMax,
    GOpMin,
    GOpMul,
    GOpNeg,
    GOpNeq,
    GOpPow,
    GOpReciprocal,
    GOpSigmoid,
    GOpSin,
    GOpSub,
    GOpTan,
    GOpTanh,
)
from stridegrad.graph.graph import Graph, GraphOp, GTensor, graph_of
from stridegrad.graph.linalg import GOpMatMul
from stridegrad.graph.netsrc import (
    GConstantDesc,
    GFillLikeDesc,
    GOpAssign,
    GOpConstant,
    GOpFill,
    GOpFillLike,
    GOpOnes,
    GOpOnesLike,
    GOpPlaceholder,
    GOpVariable,
    GOpZeros,
    GOpZerosLike,
    GPlaceholderDesc,
)
from stridegrad.graph.reduction import GOpReduceMax, GOpReduceMean, GOpReduceMin, GOpReduceSum
from stridegrad.graph.shape import GOpExpand, GOpPermute, GOpReshape, GOpSqueeze, GOpSumTo, GOpUnsqueeze
from stridegrad.graph.slice import (
    GOpConcat,
    GOpGather,
    GOpGatherBackward,
    GOpIndexSelect,
    GOpIndexSelectBackward,
    GOpNarrow,
    GOpNarrowBackward,
    GOpSplit,
)
from stridegrad.op import OpDesc
from stridegrad.ops import (
    OpAxisDesc,
    OpCastDesc,
    OpConcatDesc,
    OpExpandDesc,
    OpFactoryDesc,
    OpFillDesc,
    OpGatherBackwardDesc,
    OpGatherDesc,
    OpIndexSelectBackwardDesc,
    OpIndexSelectDesc,
    OpMatMulDesc,
    OpNarrowBackwardDesc,
    OpNarrowDesc,
    OpPermuteDesc,
    OpReduceDesc,
    OpReshapeDesc,
    OpSplitDesc,
    OpSumToDesc,
)
from stridegrad.tensor import Scalar, Tensor

SizeOrRef = Union[int, GTensor]


def apply(op_type: Type[GraphOp], desc: Optional[OpDesc], *inputs: GTensor,
          name: Optional[str] = None, graph: Optional[Graph] = None) -> List[GTensor]:
    """
    Add an ``op_type(desc)`` node over ``inputs`` and return its outputs.

    Raises
    ------
    GraphError
        If the inputs belong to different graphs, or to a graph other than
        an explicitly given ``graph``.
    """
    target = graph_of(*inputs) if graph is None or inputs else graph
    if graph is not None and target is not graph:
        raise GraphError("inputs do not belong to the requested graph.")
    return target.op(op_type, desc, *inputs, name=name)


def _one(op_type: Type[GraphOp], desc: Optional[OpDesc], *inputs: GTensor) -> GTensor:
    return apply(op_type, desc, *inputs)[0]


def _with_reference(size: SizeOrRef, inputs: List[GTensor]) -> int:
    # A node passed instead of a size becomes a trailing reference input.
    if isinstance(size, GTensor):
        inputs.append(size)
        return -1
    return int(size)


# Source nodes.


def placeholder(name: str, shape: Optional[Sequence[int]] = None, dtype: Optional[DTypeLike] = None,
                graph: Optional[Graph] = None) -> GTensor:
    """
    Named input node, bound with ``GraphForwardContext.feed(name, tensor)``.

    ``shape`` and ``dtype`` are optional; when given, fed tensors are
    checked against them and ``-1`` extents match any size.
    """
    desc = GPlaceholderDesc(dtype, None if shape is None else tuple(shape))
    return apply(GOpPlaceholder, desc, name=name, graph=graph)[0]


def constant(value: Tensor, name: Optional[str] = None, graph: Optional[Graph] = None) -> GTensor:
    return apply(GOpConstant, GConstantDesc(value), name=name, graph=graph)[0]


def variable(name: str, value: Tensor, graph: Optional[Graph] = None) -> GTensor:
    """Named node holding ``value`` until an :func:`assign` replaces it."""
    node = apply(GOpVariable, None, name=name, graph=graph)[0]
    node.op.value = value
    return node


def assign(var: GTensor, value: GTensor, name: Optional[str] = None) -> GTensor:
    """
    Node that stores ``value`` in ``var`` when evaluated, and outputs it.

    Raises
    ------
    GraphError
        If ``var`` is not a variable node.
    """
    if not isinstance(var, GTensor) or not isinstance(var.op, GOpVariable):
        raise GraphError(f"{var!r} is not a variable node.")
    return apply(GOpAssign, None, var, value, name=name)[0]


def zeros(dtype: DTypeLike, shape: Sequence[int], graph: Optional[Graph] = None) -> GTensor:
    return apply(GOpZeros, OpFactoryDesc(dtype, tuple(shape)), graph=graph)[0]


def ones(dtype: DTypeLike, shape: Sequence[int], graph: Optional[Graph] = None) -> GTensor:
    return apply(GOpOnes, OpFactoryDesc(dtype, tuple(shape)), graph=graph)[0]


def fill(dtype: DTypeLike, shape: Sequence[int], value: Scalar, graph: Optional[Graph] = None) -> GTensor:
    return apply(GOpFill, OpFillDesc(dtype, tuple(shape), value), graph=graph)[0]


def zeros_like(x: GTensor) -> GTensor:
    return _one(GOpZerosLike, None, x)


def ones_like(x: GTensor) -> GTensor:
    return _one(GOpOnesLike, None, x)


def fill_like(x: GTensor, value: Scalar) -> GTensor:
    return _one(GOpFillLike, GFillLikeDesc(value), x)


# Elementwise.


def neg(x: GTensor) -> GTensor:
    return _one(GOpNeg, None, x)


def sin(x: GTensor) -> GTensor:
    return _one(GOpSin, None, x)


def cos(x: GTensor) -> GTensor:
    return _one(GOpCos, None, x)


def tan(x: GTensor) -> GTensor:
    return _one(GOpTan, None, x)


def log(x: GTensor) -> GTensor:
    return _one(GOpLog, None, x)


def exp(x: GTensor) -> GTensor:
    return _one(GOpExp, None, x)


def tanh(x: GTensor) -> GTensor:
    return _one(GOpTanh, None, x)


def sigmoid(x: GTensor) -> GTensor:
    return _one(GOpSigmoid, None, x)


def reciprocal(x: GTensor) -> GTensor:
    return _one(GOpReciprocal, None, x)


def add(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpAdd, None, a, b)


def sub(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpSub, None, a, b)


def mul(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpMul, None, a, b)


def div(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpDiv, None, a, b)


def pow(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpPow, None, a, b)


def minimum(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpMin, None, a, b)


def maximum(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpMax, None, a, b)


def ge(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpGe, None, a, b)


def le(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpLe, None, a, b)


def geq(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpGeq, None, a, b)


def leq(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpLeq, None, a, b)


def eq(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpEq, None, a, b)


def neq(a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpNeq, None, a, b)


def cast(x: GTensor, dtype: DTypeLike) -> GTensor:
    return _one(GOpCast, OpCastDesc(dtype), x)


def cast_like(x: GTensor, like: GTensor) -> GTensor:
    """Cast ``x`` to the dtype ``like`` has at evaluation time."""
    return _one(GOpCast, None, x, like)


def cond(c: GTensor, a: GTensor, b: GTensor) -> GTensor:
    return _one(GOpCond, None, c, a, b)


def matmul(a: GTensor, b: GTensor, transpose_a: bool = False, transpose_b: bool = False) -> GTensor:
    return _one(GOpMatMul, OpMatMulDesc(transpose_a, transpose_b), a, b)


# Reductions.


def reduce_sum(x: GTensor, axis: int, keepdims: bool = False) -> GTensor:
    return _one(GOpReduceSum, OpReduceDesc(axis, keepdims), x)


def reduce_mean(x: GTensor, axis: int, keepdims: bool = False) -> GTensor:
    return _one(GOpReduceMean, OpReduceDesc(axis, keepdims), x)


def reduce_min(x: GTensor, axis: int, keepdims: bool = False) -> List[GTensor]:
    """``[values, indices]`` nodes."""
    return apply(GOpReduceMin, OpReduceDesc(axis, keepdims), x)


def reduce_max(x: GTensor, axis: int, keepdims: bool = False) -> List[GTensor]:
    """``[values, indices]`` nodes."""
    return apply(GOpReduceMax, OpReduceDesc(axis, keepdims), x)


# Shape.


def reshape(x: GTensor, shape: Sequence[int]) -> GTensor:
    return _one(GOpReshape, OpReshapeDesc(tuple(shape)), x)


def reshape_like(x: GTensor, like: GTensor) -> GTensor:
    return _one(GOpReshape, None, x, like)


def permute(x: GTensor, axes: Sequence[int]) -> GTensor:
    return _one(GOpPermute, OpPermuteDesc(tuple(axes)), x)


def expand(x: GTensor, shape: Sequence[int]) -> GTensor:
    return _one(GOpExpand, OpExpandDesc(tuple(shape)), x)


def expand_as(x: GTensor, like: GTensor) -> GTensor:
    return _one(GOpExpand, None, x, like)


def squeeze(x: GTensor, axis: int) -> GTensor:
    return _one(GOpSqueeze, OpAxisDesc(axis), x)


def unsqueeze(x: GTensor, axis: int) -> GTensor:
    return _one(GOpUnsqueeze, OpAxisDesc(axis), x)


def sum_to(x: GTensor, target: Union[Sequence[int], GTensor]) -> GTensor:
    """Reduce ``x`` to ``target``: an explicit shape, or the shape of a node."""
    if isinstance(target, GTensor):
        return _one(GOpSumTo, None, x, target)
    return _one(GOpSumTo, OpSumToDesc(tuple(target)), x)


# Slicing.


def concat(inputs: Sequence[GTensor], axis: int = 0) -> GTensor:
    return _one(GOpConcat, OpConcatDesc(axis), *inputs)


def split(x: GTensor, axis: int, splits: Sequence[SizeOrRef]) -> List[GTensor]:
    """
    Split ``x`` along ``axis``.

    ``splits`` lists either the piece extents, or nodes whose extent along
    ``axis`` gives them at evaluation time.
    """
    splits = list(splits)
    if splits and all(isinstance(s, GTensor) for s in splits):
        return apply(GOpSplit, OpSplitDesc(axis, ()), x, *splits)
    return apply(GOpSplit, OpSplitDesc(axis, tuple(int(s) for s in splits)), x)


def narrow(x: GTensor, axis: int, start: int, length: SizeOrRef) -> GTensor:
    inputs = [x]
    length = _with_reference(length, inputs)
    return _one(GOpNarrow, OpNarrowDesc(axis, start, length), *inputs)


def narrow_backward(grad: GTensor, axis: int, start: int, input_size: SizeOrRef) -> GTensor:
    inputs = [grad]
    input_size = _with_reference(input_size, inputs)
    return _one(GOpNarrowBackward, OpNarrowBackwardDesc(axis, start, input_size), *inputs)


def index_select(x: GTensor, axis: int, indices: GTensor) -> GTensor:
    return _one(GOpIndexSelect, OpIndexSelectDesc(axis), x, indices)


def index_select_backward(grad: GTensor, axis: int, indices: GTensor, input_size: SizeOrRef) -> GTensor:
    inputs = [grad, indices]
    input_size = _with_reference(input_size, inputs)
    return _one(GOpIndexSelectBackward, OpIndexSelectBackwardDesc(axis, input_size), *inputs)


def gather(x: GTensor, axis: int, indices: GTensor) -> GTensor:
    return _one(GOpGather, OpGatherDesc(axis), x, indices)


def gather_backward(grad: GTensor, axis: int, indices: GTensor, input_size: SizeOrRef) -> GTensor:
    inputs = [grad, indices]
    input_size = _with_reference(input_size, inputs)
    return _one(GOpGatherBackward, OpGatherBackwardDesc(axis, input_size), *inputs)
