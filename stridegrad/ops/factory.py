from dataclasses import dataclass
from typing import Tuple, Union

from stridegrad.dtype import DType, as_dtype
from stridegrad.op import Op, OpContext, OpDesc, TensorVec, check_nr_inputs, check_shape
from stridegrad.tensor import fill


@dataclass(frozen=True)
class OpFactoryDesc(OpDesc):
    dtype: DType
    shape: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "dtype", as_dtype(self.dtype))
        object.__setattr__(self, "shape", tuple(int(s) for s in self.shape))


@dataclass(frozen=True)
class OpFillDesc(OpFactoryDesc):
    value: Union[int, float] = 0


class OpFill(Op):
    """Source operator: no inputs, one tensor of ``desc.shape`` filled with ``desc.value``."""
    desc_type = OpFillDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if check_nr_inputs(ctx, self, inputs, 0):
            check_shape(ctx, self, self.desc.shape)

    def fill_value(self) -> Union[int, float]:
        return self.desc.value

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        return [fill(self.desc.dtype, self.desc.shape, self.fill_value())]


class OpZeros(OpFill):
    desc_type = OpFactoryDesc

    def fill_value(self) -> int:
        return 0


class OpOnes(OpFill):
    desc_type = OpFactoryDesc

    def fill_value(self) -> int:
        return 1


class OpZerosLike(Op):
    """Zeros with the dtype and shape of the single input."""
    value = 0

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        check_nr_inputs(ctx, self, inputs, 1)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        return [fill(inputs[0].dtype, inputs[0].shape, self.value)]


class OpOnesLike(OpZerosLike):
    """Ones with the dtype and shape of the single input."""
    value = 1
