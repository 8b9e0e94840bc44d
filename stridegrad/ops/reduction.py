from dataclasses import dataclass

import numpy as np

from stridegrad.dtype import DType
from stridegrad.op import Op, OpContext, OpDesc, TensorVec, check_axis, check_nr_inputs, normalize_axis
from stridegrad.tensor import from_numpy


@dataclass(frozen=True)
class OpReduceDesc(OpDesc):
    axis: int
    keepdims: bool = False


class ReduceOp(Op):
    """
    Reduction over one axis.

    The output has the input's rank when ``keepdims`` is set (the reduced
    axis becomes 1), otherwise one axis fewer.
    """
    desc_type = OpReduceDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        check_axis(ctx, self, self.desc.axis, inputs[0].ndim)

    def axis(self, inputs: TensorVec) -> int:
        return normalize_axis(self.desc.axis, inputs[0].ndim)


class OpReduceSum(ReduceOp):
    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        out = np.sum(x.view(), axis=self.axis(inputs), keepdims=self.desc.keepdims, dtype=x.dtype.np_dtype)
        return [from_numpy(out, x.dtype)]


class OpReduceMean(ReduceOp):
    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        with np.errstate(invalid="ignore", divide="ignore"):
            out = np.mean(x.view(), axis=self.axis(inputs), keepdims=self.desc.keepdims)
        return [from_numpy(out, x.dtype)]


class ArgReduceOp(ReduceOp):
    """
    Min/max reduction with two outputs: the values, and their Int64
    positions along the axis (first occurrence on ties).
    """

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        nr_errors = len(ctx.errors)
        super().check_inputs(ctx, inputs)
        if len(ctx.errors) == nr_errors and inputs[0].shape[self.axis(inputs)] == 0:
            ctx.error(self, "cannot reduce over an empty axis.")

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        axis = self.axis(inputs)
        data = x.view()
        values = self.value_kernel(data, axis=axis, keepdims=self.desc.keepdims)
        indices = self.index_kernel(data, axis=axis)
        if self.desc.keepdims:
            indices = np.expand_dims(indices, axis)
        return [from_numpy(values, x.dtype), from_numpy(indices, DType.Int64)]


class OpReduceMin(ArgReduceOp):
    value_kernel = staticmethod(np.min)
    index_kernel = staticmethod(np.argmin)


class OpReduceMax(ArgReduceOp):
    value_kernel = staticmethod(np.max)
    index_kernel = staticmethod(np.argmax)
