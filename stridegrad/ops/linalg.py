from dataclasses import dataclass

import numpy as np

from stridegrad.op import Op, OpContext, OpDesc, TensorVec, check_compatible_dtype, check_input_dim, check_nr_inputs
from stridegrad.tensor import from_numpy


@dataclass(frozen=True)
class OpMatMulDesc(OpDesc):
    transpose_a: bool = False
    transpose_b: bool = False


class OpMatMul(Op):
    """
    Matrix product of two rank-2 tensors, ``op(a) @ op(b)``.

    ``op`` transposes its argument when the matching ``transpose_*`` flag
    of the descriptor is set.
    """
    desc_type = OpMatMulDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 2):
            return
        if not check_compatible_dtype(ctx, self, inputs):
            return
        if not (check_input_dim(ctx, self, inputs, 0, 2) and check_input_dim(ctx, self, inputs, 1, 2)):
            return
        a, b = inputs
        k_a = a.shape[0] if self.desc.transpose_a else a.shape[1]
        k_b = b.shape[1] if self.desc.transpose_b else b.shape[0]
        if k_a != k_b:
            ctx.error(
                self,
                f"inner dimensions do not match: {a.shape} x {b.shape} "
                f"(transpose_a={self.desc.transpose_a}, transpose_b={self.desc.transpose_b}).",
            )

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        a, b = (t.view() for t in inputs)
        if self.desc.transpose_a:
            a = a.T
        if self.desc.transpose_b:
            b = b.T
        return [from_numpy(np.matmul(a, b), inputs[0].dtype)]
