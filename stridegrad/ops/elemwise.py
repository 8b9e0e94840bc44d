from dataclasses import dataclass
from typing import Callable, ClassVar

import numpy as np

from stridegrad.desc import broadcast_shapes
from stridegrad.dtype import DType, FLOAT_DTYPES, INTEGER_DTYPES, as_dtype, dispatch
from stridegrad.op import (
    Op,
    OpContext,
    OpDesc,
    TensorVec,
    check_compatible_dtype,
    check_compatible_shape,
    check_nr_inputs,
)
from stridegrad.tensor import from_numpy


def _int_div(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    # Truncating integer division; x / 0 yields 0.
    with np.errstate(divide="ignore", invalid="ignore"):
        q = np.floor_divide(a, b)
        r = np.remainder(a, b)
    fix = (r != 0) & ((a < 0) != (b < 0))
    return np.where(b == 0, 0, q + fix)


def _float_div(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.true_divide(a, b)


_DIV_KERNELS = {**{d: _int_div for d in INTEGER_DTYPES}, **{d: _float_div for d in FLOAT_DTYPES}}


def _float_math(fn: Callable[[np.ndarray], np.ndarray]) -> Callable[[np.ndarray], np.ndarray]:
    # Transcendental kernels run in float64 for integer inputs.
    def kernel(x: np.ndarray) -> np.ndarray:
        if x.dtype.kind in "iu":
            x = x.astype(np.float64)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return fn(x)
    return kernel


class UnaryElemwiseOp(Op):
    """One input, output of the same dtype and shape."""
    kernel: ClassVar[Callable[[np.ndarray], np.ndarray]]

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        check_nr_inputs(ctx, self, inputs, 1)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        return [from_numpy(type(self).kernel(x.view()), x.dtype)]


class OpNeg(UnaryElemwiseOp):
    kernel = staticmethod(np.negative)


class OpSin(UnaryElemwiseOp):
    kernel = staticmethod(_float_math(np.sin))


class OpCos(UnaryElemwiseOp):
    kernel = staticmethod(_float_math(np.cos))


class OpTan(UnaryElemwiseOp):
    kernel = staticmethod(_float_math(np.tan))


class OpLog(UnaryElemwiseOp):
    kernel = staticmethod(_float_math(np.log))


class OpExp(UnaryElemwiseOp):
    kernel = staticmethod(_float_math(np.exp))


class OpTanh(UnaryElemwiseOp):
    kernel = staticmethod(_float_math(np.tanh))


class OpSigmoid(UnaryElemwiseOp):
    kernel = staticmethod(_float_math(lambda x: 1.0 / (1.0 + np.exp(-x))))


class OpReciprocal(UnaryElemwiseOp):
    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        data = x.view()
        return [from_numpy(dispatch(x.dtype, _DIV_KERNELS, np.ones_like(data), data), x.dtype)]


class BinaryElemwiseOp(Op):
    """
    Two inputs of the same dtype with broadcast-compatible shapes.

    The output takes the broadcast shape and the input dtype.
    """
    kernel: ClassVar[Callable[[np.ndarray, np.ndarray], np.ndarray]]

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 2):
            return
        if not check_compatible_dtype(ctx, self, inputs):
            return
        check_compatible_shape(ctx, self, inputs, allow_broadcast=True)

    def apply(self, dtype: DType, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return type(self).kernel(a, b)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        a, b = inputs
        out = self.apply(a.dtype, a.view(), b.view())
        shape = broadcast_shapes(a.shape, b.shape)
        return [from_numpy(np.broadcast_to(out, shape), a.dtype)]


class OpAdd(BinaryElemwiseOp):
    kernel = staticmethod(np.add)


class OpSub(BinaryElemwiseOp):
    kernel = staticmethod(np.subtract)


class OpMul(BinaryElemwiseOp):
    kernel = staticmethod(np.multiply)


class OpDiv(BinaryElemwiseOp):
    def apply(self, dtype: DType, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return dispatch(dtype, _DIV_KERNELS, a, b)


class OpPow(BinaryElemwiseOp):
    def apply(self, dtype: DType, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        if dtype.is_integer:
            a = a.astype(np.float64)
            b = b.astype(np.float64)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return np.power(a, b)


class OpMin(BinaryElemwiseOp):
    kernel = staticmethod(np.minimum)


class OpMax(BinaryElemwiseOp):
    kernel = staticmethod(np.maximum)


class OpGe(BinaryElemwiseOp):
    """``a > b`` as 0/1 values of the input dtype."""
    kernel = staticmethod(np.greater)


class OpLe(BinaryElemwiseOp):
    """``a < b`` as 0/1 values of the input dtype."""
    kernel = staticmethod(np.less)


class OpGeq(BinaryElemwiseOp):
    kernel = staticmethod(np.greater_equal)


class OpLeq(BinaryElemwiseOp):
    kernel = staticmethod(np.less_equal)


class OpEq(BinaryElemwiseOp):
    kernel = staticmethod(np.equal)


class OpNeq(BinaryElemwiseOp):
    kernel = staticmethod(np.not_equal)


@dataclass(frozen=True)
class OpCastDesc(OpDesc):
    dtype: DType

    def __post_init__(self) -> None:
        object.__setattr__(self, "dtype", as_dtype(self.dtype))


class OpCast(Op):
    """Convert every element to ``desc.dtype`` (floats truncate towards zero)."""
    desc_type = OpCastDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        check_nr_inputs(ctx, self, inputs, 1)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        dtype = self.desc.dtype
        with np.errstate(invalid="ignore"):
            values = inputs[0].view().astype(dtype.np_dtype)
        return [from_numpy(values, dtype)]


class OpCond(Op):
    """
    Elementwise select: ``a`` where ``cond`` is non-zero, else ``b``.

    ``a`` and ``b`` must share a dtype; ``cond`` may be of any dtype. All
    three shapes broadcast together.
    """

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 3):
            return
        if not check_compatible_dtype(ctx, self, inputs[1:]):
            return
        check_compatible_shape(ctx, self, inputs, allow_broadcast=True)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        cond, a, b = inputs
        shape = broadcast_shapes(cond.shape, a.shape, b.shape)
        out = np.where(cond.view() != 0, a.view(), b.view())
        return [from_numpy(np.broadcast_to(out, shape), a.dtype)]
