"""
Axis-indexed operator nodes.

Sizes that gradient rules can only know at evaluation time (the extent of
the original input, the split sizes undoing a concat) come from extra
*reference* inputs appended after the regular ones; the eager descriptor is
completed from their shapes when the node runs.
"""
from dataclasses import replace
from typing import List, Optional

from stridegrad.graph.graph import GraphOp
from stridegrad.op import OpDesc
from stridegrad.ops import (
    OpConcat,
    OpGather,
    OpGatherBackward,
    OpIndexSelect,
    OpIndexSelectBackward,
    OpNarrow,
    OpNarrowBackward,
    OpSplit,
)
from stridegrad.tensor import Tensor


def _extent(t: Tensor, axis: int) -> int:
    # Out-of-range axes are left for the eager operator to report.
    return t.shape[axis] if -t.ndim <= axis < t.ndim else 0


class _ReferenceOp(GraphOp):
    # Number of regular inputs; any further inputs are references.
    nr_regular = 1

    @property
    def nr_references(self) -> int:
        return len(self.inputs) - self.nr_regular

    def eager_inputs(self, values: List[Tensor]) -> List[Tensor]:
        return values[:self.nr_regular]

    def from_reference(self, reference: Tensor) -> OpDesc:
        raise NotImplementedError

    def eager_desc(self, values: List[Tensor]) -> Optional[OpDesc]:
        if len(values) > self.nr_regular and self.desc is not None:
            return self.from_reference(values[self.nr_regular])
        return self.desc

    def no_reference_grads(self) -> list:
        return [None] * self.nr_references


class GOpConcat(GraphOp):
    eager_type = OpConcat

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return G.split(grads[0], self.desc.axis, self.inputs)


class GOpSplit(GraphOp):
    """
    Split along ``desc.axis``.

    With reference inputs after the tensor to split, the split sizes are
    their extents along the axis and there is one output per reference.
    """
    eager_type = OpSplit

    @property
    def nr_outputs(self) -> int:
        if len(self.inputs) > 1:
            return len(self.inputs) - 1
        return len(self.desc.splits)

    def eager_desc(self, values: List[Tensor]) -> Optional[OpDesc]:
        if len(values) > 1 and self.desc is not None:
            return replace(self.desc, splits=tuple(_extent(v, self.desc.axis) for v in values[1:]))
        return self.desc

    def eager_inputs(self, values: List[Tensor]) -> List[Tensor]:
        return values[:1]

    def grad(self, grads):
        from stridegrad.graph import functional as G
        parts = [g if g is not None else G.zeros_like(out) for g, out in zip(grads, self.outputs)]
        return [G.concat(parts, self.desc.axis)] + [None] * (len(self.inputs) - 1)


class GOpNarrow(_ReferenceOp):
    """Narrow; a reference input supplies ``length`` as its extent along the axis."""
    eager_type = OpNarrow

    def from_reference(self, reference: Tensor) -> OpDesc:
        return replace(self.desc, length=_extent(reference, self.desc.axis))

    def grad(self, grads):
        from stridegrad.graph import functional as G
        x = self.inputs[0]
        return [G.narrow_backward(grads[0], self.desc.axis, self.desc.start, x)] + self.no_reference_grads()


class GOpNarrowBackward(_ReferenceOp):
    """Narrow backward; a reference input supplies ``input_size``."""
    eager_type = OpNarrowBackward

    def from_reference(self, reference: Tensor) -> OpDesc:
        return replace(self.desc, input_size=_extent(reference, self.desc.axis))

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = self.inputs[0]
        return [G.narrow(grads[0], self.desc.axis, self.desc.start, g)] + self.no_reference_grads()


class GOpIndexSelect(GraphOp):
    eager_type = OpIndexSelect

    def grad(self, grads):
        from stridegrad.graph import functional as G
        x, index = self.inputs
        return [G.index_select_backward(grads[0], self.desc.axis, index, x), None]


class GOpIndexSelectBackward(_ReferenceOp):
    """Inputs: gradient, index, and optionally a reference supplying ``input_size``."""
    eager_type = OpIndexSelectBackward
    nr_regular = 2

    def from_reference(self, reference: Tensor) -> OpDesc:
        return replace(self.desc, input_size=_extent(reference, self.desc.axis))

    def grad(self, grads):
        from stridegrad.graph import functional as G
        index = self.inputs[1]
        return [G.index_select(grads[0], self.desc.axis, index), None] + self.no_reference_grads()


class GOpGather(GraphOp):
    eager_type = OpGather

    def grad(self, grads):
        from stridegrad.graph import functional as G
        x, index = self.inputs
        return [G.gather_backward(grads[0], self.desc.axis, index, x), None]


class GOpGatherBackward(_ReferenceOp):
    """Inputs: gradient, index, and optionally a reference supplying ``input_size``."""
    eager_type = OpGatherBackward
    nr_regular = 2

    def from_reference(self, reference: Tensor) -> OpDesc:
        return replace(self.desc, input_size=_extent(reference, self.desc.axis))

    def grad(self, grads):
        from stridegrad.graph import functional as G
        index = self.inputs[1]
        return [G.gather(grads[0], self.desc.axis, index), None] + self.no_reference_grads()
