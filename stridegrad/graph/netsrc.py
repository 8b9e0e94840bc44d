"""
Source nodes: placeholders, constants, variables, assignment and factories.

None of these propagate a gradient to their inputs.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from stridegrad.dtype import DType, as_dtype
from stridegrad.graph.forward import GraphForwardContext
from stridegrad.graph.graph import GraphOp
from stridegrad.op import OpContext, OpDesc
from stridegrad.ops import OpFill, OpFillDesc, OpOnes, OpOnesLike, OpZeros, OpZerosLike
from stridegrad.tensor import Tensor


@dataclass(frozen=True)
class GPlaceholderDesc(OpDesc):
    """
    Declared dtype and shape of a placeholder; ``None`` leaves them open.

    A ``-1`` extent accepts any size along that axis.
    """
    dtype: Optional[DType] = None
    shape: Optional[Tuple[int, ...]] = None

    def __post_init__(self) -> None:
        if self.dtype is not None:
            object.__setattr__(self, "dtype", as_dtype(self.dtype))
        if self.shape is not None:
            object.__setattr__(self, "shape", tuple(int(s) for s in self.shape))


class GOpPlaceholder(GraphOp):
    """Input node; its value is fed by name on the forward context."""

    def forward(self, ctx: OpContext, values: List[Tensor]) -> List[Tensor]:
        if not isinstance(ctx, GraphForwardContext):
            ctx.error(self, f"placeholder {self.name!r} needs a GraphForwardContext, got {type(ctx).__name__}.")
            return []
        value = ctx.fed(self.name)
        if value is None:
            ctx.error(self, f"placeholder {self.name!r} was not fed.")
            return []
        desc = self.desc or GPlaceholderDesc()
        if desc.dtype is not None and value.dtype != desc.dtype:
            ctx.error(self, f"fed a {value.dtype.value} tensor, expected {desc.dtype.value}.")
            return []
        if desc.shape is not None:
            shape = value.shape
            if len(shape) != len(desc.shape) or any(d not in (-1, s) for d, s in zip(desc.shape, shape)):
                ctx.error(self, f"fed a tensor of shape {shape}, expected {desc.shape}.")
                return []
        return [value]


@dataclass(frozen=True)
class GConstantDesc(OpDesc):
    value: Tensor


class GOpConstant(GraphOp):
    """Node whose value is a fixed tensor."""

    def forward(self, ctx: OpContext, values: List[Tensor]) -> List[Tensor]:
        return [self.desc.value]


class GOpVariable(GraphOp):
    """
    Named node holding a mutable value.

    The value is set at construction and replaced by evaluating a
    :class:`GOpAssign` node targeting the variable.
    """

    def __init__(self, desc: Optional[OpDesc] = None) -> None:
        super().__init__(desc)
        self.value: Optional[Tensor] = None

    def forward(self, ctx: OpContext, values: List[Tensor]) -> List[Tensor]:
        if self.value is None:
            ctx.error(self, f"variable {self.name!r} has no value.")
            return []
        return [self.value]


class GOpAssign(GraphOp):
    """
    ``assign(variable, value)``: store ``value`` in the variable and output it.

    Inputs are the variable node and the value node.
    """

    def forward(self, ctx: OpContext, values: List[Tensor]) -> List[Tensor]:
        variable = self.inputs[0].op
        if not isinstance(variable, GOpVariable):
            ctx.error(self, f"assignment target {self.inputs[0]!r} is not a variable.")
            return []
        current, value = values
        if current.dtype != value.dtype or current.shape != value.shape:
            ctx.error(
                self,
                f"cannot assign a {value.dtype.value}{value.shape} tensor to variable "
                f"{variable.name!r} of {current.dtype.value}{current.shape}.",
            )
            return []
        variable.value = value
        return [value]


class GOpZeros(GraphOp):
    eager_type = OpZeros


class GOpOnes(GraphOp):
    eager_type = OpOnes


class GOpFill(GraphOp):
    eager_type = OpFill


class GOpZerosLike(GraphOp):
    eager_type = OpZerosLike


class GOpOnesLike(GraphOp):
    eager_type = OpOnesLike


@dataclass(frozen=True)
class GFillLikeDesc(OpDesc):
    value: Union[int, float] = 0


class GOpFillLike(GraphOp):
    """``value`` in the dtype and shape of the single input."""
    eager_type = OpFill

    def eager_desc(self, values: List[Tensor]) -> OpFillDesc:
        like = values[0]
        return OpFillDesc(like.dtype, like.shape, self.desc.value)

    def eager_inputs(self, values: List[Tensor]) -> List[Tensor]:
        return []
