"""
Shape operator nodes.

Reshape, Expand and SumTo take their target shape either from the
descriptor or, when built with a second *reference* input, from that
input's shape at evaluation time. Gradient rules use the reference form
since input shapes are unknown while the graph is built.
"""
from typing import List, Optional

from stridegrad.graph.graph import GraphOp, GTensor
from stridegrad.op import OpDesc
from stridegrad.ops import (
    OpExpand,
    OpExpandDesc,
    OpPermute,
    OpReshape,
    OpReshapeDesc,
    OpSqueeze,
    OpSumTo,
    OpSumToDesc,
    OpUnsqueeze,
)
from stridegrad.tensor import Tensor


class _ShapeLikeOp(GraphOp):
    # Eager descriptor class built from the reference input's shape.
    shape_desc = OpDesc

    def eager_desc(self, values: List[Tensor]) -> Optional[OpDesc]:
        if len(values) == 2:
            return self.shape_desc(values[1].shape)
        return self.desc

    def eager_inputs(self, values: List[Tensor]) -> List[Tensor]:
        return values[:1]

    def _with_reference(self, grad: Optional[GTensor]) -> List[Optional[GTensor]]:
        return [grad] + [None] * (len(self.inputs) - 1)


class GOpReshape(_ShapeLikeOp):
    eager_type = OpReshape
    shape_desc = OpReshapeDesc

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return self._with_reference(G.reshape_like(grads[0], self.inputs[0]))


class GOpExpand(_ShapeLikeOp):
    eager_type = OpExpand
    shape_desc = OpExpandDesc

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return self._with_reference(G.sum_to(grads[0], self.inputs[0]))


class GOpSumTo(_ShapeLikeOp):
    """Reduce a broadcast value back to the reference's shape."""
    eager_type = OpSumTo
    shape_desc = OpSumToDesc

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return self._with_reference(G.expand_as(grads[0], self.inputs[0]))


class GOpPermute(GraphOp):
    eager_type = OpPermute

    def grad(self, grads):
        from stridegrad.graph import functional as G
        ndim = len(self.desc.axes)
        axes = [a + ndim if a < 0 else a for a in self.desc.axes]
        if sorted(axes) != list(range(ndim)):
            # Invalid permutation; evaluation reports it on the forward node.
            return [G.permute(grads[0], axes)]
        inverse = [0] * ndim
        for i, a in enumerate(axes):
            inverse[a] = i
        return [G.permute(grads[0], inverse)]


class GOpSqueeze(GraphOp):
    eager_type = OpSqueeze

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return [G.unsqueeze(grads[0], self.desc.axis)]


class GOpUnsqueeze(GraphOp):
    eager_type = OpUnsqueeze

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return [G.squeeze(grads[0], self.desc.axis)]
