"""
Axis-indexed operators: concat, split, narrow, index-select, gather, and the
scatter-accumulate kernels used for their gradients.

All kernels share one addressing scheme. A flat row-major index ``i`` into a
tensor with default strides ``ds`` is split around the target axis into

- ``outer = i // ds[axis - 1]`` (block of all leading axes, 0 for axis 0),
- ``pos = (i % ds[axis - 1]) // ds[axis]`` (position along the axis),
- ``inner = i % ds[axis]`` (offset within the trailing axes),

``pos`` is remapped by the operator (shifted, looked up in an index tensor)
and the triple is recomposed with the *other* tensor's default strides. The
kernels run on whole ``numpy.arange`` index arrays at once.
"""
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from stridegrad.desc import TensorDesc, default_stride
from stridegrad.op import (
    Op,
    OpContext,
    OpDesc,
    TensorVec,
    check_axis,
    check_compatible_dim,
    check_compatible_dtype,
    check_extent,
    check_input_dim,
    check_input_dtype_int,
    check_nonempty_inputs,
    check_nr_inputs,
    normalize_axis,
)
from stridegrad.tensor import Tensor, empty, tensor, zeros


def split_index(flat: np.ndarray, stride: Sequence[int], axis: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Decompose flat row-major indices into ``(outer, pos, inner)`` around ``axis``."""
    inner_size = stride[axis]
    if axis == 0:
        return np.zeros_like(flat), flat // inner_size, flat % inner_size
    outer_size = stride[axis - 1]
    return flat // outer_size, (flat % outer_size) // inner_size, flat % inner_size


def join_index(outer: np.ndarray, pos: np.ndarray, inner: np.ndarray, stride: Sequence[int], axis: int) -> np.ndarray:
    """Inverse of :func:`split_index` under (possibly different) default strides."""
    outer_size = stride[axis - 1] if axis != 0 else 0
    return outer * outer_size + pos * stride[axis] + inner


def _values(t: Tensor) -> np.ndarray:
    # Logical elements in row-major order.
    return t.view().reshape(-1)


def _check_index_range(ctx: OpContext, op: Op, index: Tensor, size: int) -> bool:
    values = _values(index)
    if values.size and (values.min() < 0 or values.max() >= size):
        ctx.error(op, f"index values must lie in [0, {size}), got [{values.min()}, {values.max()}].")
        return False
    return True


def _with_extent(shape: Sequence[int], axis: int, extent: int) -> Tuple[int, ...]:
    shape = list(shape)
    shape[axis] = extent
    return tuple(shape)


@dataclass(frozen=True)
class OpConcatDesc(OpDesc):
    axis: int = 0


class OpConcat(Op):
    """Join tensors along an existing axis; all other extents must match."""
    desc_type = OpConcatDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nonempty_inputs(ctx, self, inputs):
            return
        if not (check_compatible_dtype(ctx, self, inputs) and check_compatible_dim(ctx, self, inputs)):
            return
        ndim = inputs[0].ndim
        if not check_axis(ctx, self, self.desc.axis, ndim):
            return
        axis = normalize_axis(self.desc.axis, ndim)
        reference = inputs[0].shape
        for t in inputs[1:]:
            if any(t.shape[j] != reference[j] for j in range(ndim) if j != axis):
                ctx.error(
                    self,
                    f"inputs shape can only differ along axis {axis}; got "
                    f"{', '.join(str(i.shape) for i in inputs)}.",
                )
                return

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        axis = normalize_axis(self.desc.axis, inputs[0].ndim)
        total = sum(t.shape[axis] for t in inputs)
        output = empty(inputs[0].dtype, _with_extent(inputs[0].shape, axis, total))
        out_data = output.storage.data
        out_stride = output.desc.get_default_stride()

        start = 0
        for t in inputs:
            if t.numel():
                flat = np.arange(t.numel(), dtype=np.int64)
                outer, pos, inner = split_index(flat, t.desc.get_default_stride(), axis)
                out_data[join_index(outer, pos + start, inner, out_stride, axis)] = _values(t)
            start += t.shape[axis]
        return [output]


@dataclass(frozen=True)
class OpSplitDesc(OpDesc):
    axis: int
    splits: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "splits", tuple(int(s) for s in self.splits))


class OpSplit(Op):
    """
    Cut one tensor along ``axis`` into consecutive pieces of ``splits`` extents.

    The pieces are views sharing the input's storage.
    """
    desc_type = OpSplitDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        x = inputs[0]
        if not check_axis(ctx, self, self.desc.axis, x.ndim):
            return
        splits = self.desc.splits
        if any(s < 0 for s in splits) or sum(splits) != x.shape[self.desc.axis]:
            ctx.error(
                self,
                f"split values {splits} are not consistent with extent {x.shape[self.desc.axis]} "
                f"of axis {self.desc.axis}.",
            )

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        axis = normalize_axis(self.desc.axis, x.ndim)
        outputs = []
        start = 0
        for extent in self.desc.splits:
            desc = TensorDesc(x.dtype, _with_extent(x.shape, axis, extent), x.stride)
            outputs.append(tensor(desc, x.storage, False, x.offset + start * x.stride[axis]))
            start += extent
        return outputs


@dataclass(frozen=True)
class OpNarrowDesc(OpDesc):
    axis: int
    start: int
    length: int


class OpNarrow(Op):
    """``[start, start + length)`` along ``axis``, as a view over the input storage."""
    desc_type = OpNarrowDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        x = inputs[0]
        desc = self.desc
        if not check_axis(ctx, self, desc.axis, x.ndim):
            return
        extent = x.shape[desc.axis]
        if desc.start < 0 or desc.length < 0 or desc.start + desc.length > extent:
            ctx.error(
                self,
                f"invalid input range: start = {desc.start}, length = {desc.length}, "
                f"input tensor size = {extent}.",
            )

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x = inputs[0]
        axis = normalize_axis(self.desc.axis, x.ndim)
        desc = TensorDesc(x.dtype, _with_extent(x.shape, axis, self.desc.length), x.stride)
        return [tensor(desc, x.storage, False, x.offset + self.desc.start * x.stride[axis])]


@dataclass(frozen=True)
class OpNarrowBackwardDesc(OpDesc):
    axis: int
    start: int
    input_size: int


class OpNarrowBackward(Op):
    """
    Place a narrowed gradient back into a zero tensor whose ``axis`` has
    extent ``input_size``, starting at ``start``.
    """
    desc_type = OpNarrowBackwardDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 1):
            return
        g = inputs[0]
        desc = self.desc
        if not check_axis(ctx, self, desc.axis, g.ndim):
            return
        if desc.start < 0 or desc.start + g.shape[desc.axis] > desc.input_size:
            ctx.error(
                self,
                f"a slice of extent {g.shape[desc.axis]} at {desc.start} does not fit "
                f"into input size {desc.input_size}.",
            )

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        g = inputs[0]
        axis = normalize_axis(self.desc.axis, g.ndim)
        output = zeros(g.dtype, _with_extent(g.shape, axis, self.desc.input_size))
        if g.numel():
            flat = np.arange(g.numel(), dtype=np.int64)
            outer, pos, inner = split_index(flat, g.desc.get_default_stride(), axis)
            target = join_index(outer, pos + self.desc.start, inner, output.desc.get_default_stride(), axis)
            np.add.at(output.storage.data, target, _values(g))
        return [output]


@dataclass(frozen=True)
class OpIndexSelectDesc(OpDesc):
    axis: int


class OpIndexSelect(Op):
    """Pick slices along ``axis`` at the positions listed in a rank-1 integer index."""
    desc_type = OpIndexSelectDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 2):
            return
        if not (check_input_dtype_int(ctx, self, inputs, 1) and check_input_dim(ctx, self, inputs, 1, 1)):
            return
        x, index = inputs
        if not check_axis(ctx, self, self.desc.axis, x.ndim):
            return
        _check_index_range(ctx, self, index, x.shape[self.desc.axis])

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x, index = inputs
        axis = normalize_axis(self.desc.axis, x.ndim)
        output = empty(x.dtype, _with_extent(x.shape, axis, index.shape[0]))
        if output.numel():
            flat = np.arange(output.numel(), dtype=np.int64)
            outer, pos, inner = split_index(flat, output.desc.get_default_stride(), axis)
            k = _values(index).astype(np.int64)[pos]
            source = join_index(outer, k, inner, default_stride(x.shape), axis)
            output.storage.data[:] = _values(x)[source]
        return [output]


@dataclass(frozen=True)
class OpIndexSelectBackwardDesc(OpDesc):
    axis: int
    input_size: int


class OpIndexSelectBackward(Op):
    """
    Scatter-add a gradient of :class:`OpIndexSelect` back into a zero tensor
    whose ``axis`` has extent ``input_size``. Repeated indices accumulate.
    """
    desc_type = OpIndexSelectBackwardDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 2):
            return
        if not (check_input_dtype_int(ctx, self, inputs, 1) and check_input_dim(ctx, self, inputs, 1, 1)):
            return
        g, index = inputs
        if not check_axis(ctx, self, self.desc.axis, g.ndim):
            return
        if not check_extent(ctx, self, "input_size", self.desc.input_size):
            return
        if g.shape[self.desc.axis] != index.shape[0]:
            ctx.error(
                self,
                f"gradient extent {g.shape[self.desc.axis]} along axis {self.desc.axis} "
                f"does not match {index.shape[0]} indices.",
            )
            return
        _check_index_range(ctx, self, index, self.desc.input_size)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        g, index = inputs
        axis = normalize_axis(self.desc.axis, g.ndim)
        output = zeros(g.dtype, _with_extent(g.shape, axis, self.desc.input_size))
        if g.numel():
            flat = np.arange(g.numel(), dtype=np.int64)
            outer, pos, inner = split_index(flat, g.desc.get_default_stride(), axis)
            k = _values(index).astype(np.int64)[pos]
            target = join_index(outer, k, inner, output.desc.get_default_stride(), axis)
            np.add.at(output.storage.data, target, _values(g))
        return [output]


@dataclass(frozen=True)
class OpGatherDesc(OpDesc):
    axis: int


class OpGather(Op):
    """
    ``out[..., i, ...] = x[..., index[..., i, ...], ...]`` along ``axis``.

    ``index`` holds integers, has the rank of ``x`` and matches its shape on
    every axis except ``axis``. The output takes the index's shape.
    """
    desc_type = OpGatherDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 2):
            return
        if not (check_input_dtype_int(ctx, self, inputs, 1) and check_compatible_dim(ctx, self, inputs)):
            return
        x, index = inputs
        if not check_axis(ctx, self, self.desc.axis, x.ndim):
            return
        axis = normalize_axis(self.desc.axis, x.ndim)
        if any(x.shape[i] != index.shape[i] for i in range(x.ndim) if i != axis):
            ctx.error(
                self,
                f"the inputs should have the same shape except along axis {axis}; "
                f"got {x.shape} and {index.shape}.",
            )
            return
        _check_index_range(ctx, self, index, x.shape[axis])

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        x, index = inputs
        axis = normalize_axis(self.desc.axis, x.ndim)
        output = empty(x.dtype, index.shape)
        if output.numel():
            flat = np.arange(output.numel(), dtype=np.int64)
            outer, _, inner = split_index(flat, output.desc.get_default_stride(), axis)
            k = _values(index).astype(np.int64)
            source = join_index(outer, k, inner, default_stride(x.shape), axis)
            output.storage.data[:] = _values(x)[source]
        return [output]


@dataclass(frozen=True)
class OpGatherBackwardDesc(OpDesc):
    axis: int
    input_size: int


class OpGatherBackward(Op):
    """
    Scatter-add a gradient of :class:`OpGather` into a zero tensor whose
    ``axis`` has extent ``input_size``. Repeated indices accumulate.
    """
    desc_type = OpGatherBackwardDesc

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        if not check_nr_inputs(ctx, self, inputs, 2):
            return
        if not (check_input_dtype_int(ctx, self, inputs, 1) and check_compatible_dim(ctx, self, inputs)):
            return
        g, index = inputs
        if not check_axis(ctx, self, self.desc.axis, g.ndim):
            return
        if not check_extent(ctx, self, "input_size", self.desc.input_size):
            return
        if g.shape != index.shape:
            ctx.error(self, f"gradient shape {g.shape} does not match index shape {index.shape}.")
            return
        _check_index_range(ctx, self, index, self.desc.input_size)

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        g, index = inputs
        axis = normalize_axis(self.desc.axis, g.ndim)
        output = zeros(g.dtype, _with_extent(g.shape, axis, self.desc.input_size))
        if g.numel():
            flat = np.arange(g.numel(), dtype=np.int64)
            outer, _, inner = split_index(flat, g.desc.get_default_stride(), axis)
            k = _values(index).astype(np.int64)
            target = join_index(outer, k, inner, output.desc.get_default_stride(), axis)
            np.add.at(output.storage.data, target, _values(g))
        return [output]
