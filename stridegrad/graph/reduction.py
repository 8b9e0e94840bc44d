from stridegrad.graph.graph import GraphOp
from stridegrad.ops import OpReduceMax, OpReduceMean, OpReduceMin, OpReduceSum


class _ReduceOp(GraphOp):

    def keep_axis(self, g):
        """Restore the reduced axis of ``g`` when the node dropped it."""
        if self.desc.keepdims:
            return g
        return g.unsqueeze(self.desc.axis)


class GOpReduceSum(_ReduceOp):
    eager_type = OpReduceSum

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return [G.expand_as(self.keep_axis(grads[0]), self.inputs[0])]


class GOpReduceMean(_ReduceOp):
    eager_type = OpReduceMean

    def grad(self, grads):
        from stridegrad.graph import functional as G
        x = self.inputs[0]
        count = G.reduce_sum(G.ones_like(x), self.desc.axis, keepdims=True)
        return [G.expand_as(self.keep_axis(grads[0]), x) * G.reciprocal(count)]


class _ArgReduceOp(_ReduceOp):
    """
    Two outputs: values and Int64 indices.

    The value gradient is scattered back to the selected positions; the
    indices output is not differentiable.
    """

    @property
    def nr_outputs(self) -> int:
        return 2

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        if g is None:
            return [None]
        x = self.inputs[0]
        indices = self.keep_axis(self.outputs[1])
        return [G.gather_backward(self.keep_axis(g), self.desc.axis, indices, x)]


class GOpReduceMin(_ArgReduceOp):
    eager_type = OpReduceMin


class GOpReduceMax(_ArgReduceOp):
    eager_type = OpReduceMax
