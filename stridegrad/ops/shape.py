from dataclasses import dataclass
from typing import Tuple

import numpy as np

from stridegrad.desc import MAX_DIM, TensorDesc
from stridegrad.op import Op, OpContext, OpDesc, TensorVec, check_axis, check_nr_inputs, normalize_axis
from stridegrad.tensor import Tensor, from_numpy, tensor


def _as_shape(values) -> Tuple[int, ...]:
    return tuple(int(v) for v in values)


@dataclass(frozen=True)
class OpReshapeDesc(OpDesc):
    shape: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", _as_shape(self.shape))


class OpReshape(Op):
    """
    Reinterpret the elements under a new shape of equal element count.

    At most one extent may be ``-1``; it is inferred. A contiguous input is
    reshaped as a view sharing its storage; any other input is copied into
    row-major order first.
    """
    desc_type = OpReshapeDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        shape = self.desc.shape
        if len(shape) > MAX_DIM:
            ctx.error(self, f"target rank {len(shape)} exceeds the maximum of {MAX_DIM}.")
            return
        if sum(1 for s in shape if s == -1) > 1 or any(s < -1 for s in shape):
            ctx.error(self, f"invalid target shape {shape}.")
            return
        if self._resolve(inputs[0].numel()) is None:
            ctx.error(self, f"cannot reshape a tensor of shape {inputs[0].shape} into {shape}.")

    def _resolve(self, numel: int):
        shape = list(self.desc.shape)
        known = 1
        for s in shape:
            if s != -1:
                known *= s
        if -1 in shape:
            if known == 0 or numel % known != 0:
                return None
            shape[shape.index(-1)] = numel // known
        elif known != numel:
            return None
        return tuple(shape)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        shape = self._resolve(x.numel())
        if x.is_contiguous():
            return [tensor(TensorDesc(x.dtype, shape), x.storage, False, x.offset)]
        return [from_numpy(x.view().reshape(shape), x.dtype)]


@dataclass(frozen=True)
class OpPermuteDesc(OpDesc):
    axes: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "axes", _as_shape(self.axes))


class OpPermute(Op):
    """Reorder axes; output axis ``i`` is input axis ``axes[i]``. Always a view."""
    desc_type = OpPermuteDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        ndim = inputs[0].ndim
        axes = [normalize_axis(a, ndim) for a in self.desc.axes]
        if sorted(axes) != list(range(ndim)):
            ctx.error(self, f"axes {self.desc.axes} are not a permutation of {ndim} axes.")

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        axes = [normalize_axis(a, x.ndim) for a in self.desc.axes]
        desc = TensorDesc(x.dtype, [x.shape[a] for a in axes], [x.stride[a] for a in axes])
        return [tensor(desc, x.storage, False, x.offset)]


@dataclass(frozen=True)
class OpExpandDesc(OpDesc):
    shape: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", _as_shape(self.shape))


class OpExpand(Op):
    """
    Broadcast to a larger shape without copying.

    The input is right-aligned with the target; size-1 and missing leading
    axes are expanded with stride 0. ``-1`` keeps the input extent.
    """
    desc_type = OpExpandDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        x = inputs[0]
        shape = self.desc.shape
        if len(shape) > MAX_DIM or len(shape) < x.ndim:
            ctx.error(self, f"cannot expand a tensor of shape {x.shape} to {shape}.")
            return
        lead = len(shape) - x.ndim
        for i, extent in enumerate(x.shape):
            target = shape[lead + i]
            if target < -1 or (target != -1 and extent != 1 and extent != target):
                ctx.error(self, f"cannot expand a tensor of shape {x.shape} to {shape}.")
                return
        if any(s < 0 for s in shape[:lead]):
            ctx.error(self, f"new leading axes need explicit extents, got {shape}.")

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        target = self.desc.shape
        lead = len(target) - x.ndim
        shape = list(target[:lead])
        stride = [0] * lead
        for i, extent in enumerate(x.shape):
            want = target[lead + i]
            if want == -1 or want == extent:
                shape.append(extent)
                stride.append(x.stride[i])
            else:
                shape.append(want)
                stride.append(0)
        return [tensor(TensorDesc(x.dtype, shape, stride), x.storage, False, x.offset)]


@dataclass(frozen=True)
class OpAxisDesc(OpDesc):
    axis: int


class OpSqueeze(Op):
    """Drop an axis of extent 1 (view)."""
    desc_type = OpAxisDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        x = inputs[0]
        if not check_axis(ctx, self, self.desc.axis, x.ndim):
            return
        if x.shape[self.desc.axis] != 1:
            ctx.error(self, f"axis {self.desc.axis} of shape {x.shape} does not have extent 1.")

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        axis = normalize_axis(self.desc.axis, x.ndim)
        shape = [s for i, s in enumerate(x.shape) if i != axis]
        stride = [s for i, s in enumerate(x.stride) if i != axis]
        return [tensor(TensorDesc(x.dtype, shape, stride), x.storage, False, x.offset)]


class OpUnsqueeze(Op):
    """Insert an axis of extent 1 at ``axis`` (``-1`` appends). View."""
    desc_type = OpAxisDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        x = inputs[0]
        if x.ndim + 1 > MAX_DIM:
            ctx.error(self, f"result rank would exceed the maximum of {MAX_DIM}.")
            return
        check_axis(ctx, self, self.desc.axis, x.ndim + 1)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        axis = normalize_axis(self.desc.axis, x.ndim + 1)
        shape = list(x.shape)
        stride = list(x.stride)
        inner = stride[axis] * shape[axis] if axis < x.ndim else 1
        shape.insert(axis, 1)
        stride.insert(axis, inner)
        return [tensor(TensorDesc(x.dtype, shape, stride), x.storage, False, x.offset)]


@dataclass(frozen=True)
class OpSumToDesc(OpDesc):
    shape: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", _as_shape(self.shape))


class OpSumTo(Op):
    """
    Reduce a broadcast result back to ``desc.shape``.

    Leading extra axes are summed away, and every axis where the target
    extent is 1 but the input extent is not is summed with ``keepdims``.
    The input must be broadcastable from the target shape. When the shapes
    already match the input is returned as is.
    """
    desc_type = OpSumToDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        x = inputs[0]
        target = self.desc.shape
        lead = x.ndim - len(target)
        ok = lead >= 0 and all(
            t == 1 or t == s for t, s in zip(target, x.shape[lead:])
        )
        if not ok:
            ctx.error(self, f"shape {x.shape} cannot be reduced to {target}.")

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        target = self.desc.shape
        if x.shape == target:
            return [x]
        data = x.view()
        lead = x.ndim - len(target)
        if lead:
            data = data.sum(axis=tuple(range(lead)))
        axes = tuple(i for i, (t, s) in enumerate(zip(target, data.shape)) if t == 1 and s != 1)
        if axes:
            data = data.sum(axis=axes, keepdims=True)
        return [from_numpy(np.reshape(data, target), x.dtype)]
