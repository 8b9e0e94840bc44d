from stridegrad.graph.graph import GraphOp
from stridegrad.ops import OpMatMul


class GOpMatMul(GraphOp):
    """
    ``C = op(A) @ op(B)``.

    Gradients for each combination of transpose flags::

        (F, F): dA = g @ B.T      dB = A.T @ g
        (T, F): dA = B @ g.T      dB = A @ g
        (F, T): dA = g @ B        dB = g.T @ A
        (T, T): dA = B.T @ g.T    dB = g.T @ A.T
    """
    eager_type = OpMatMul

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        a, b = self.inputs
        ta, tb = self.desc.transpose_a, self.desc.transpose_b
        if not ta and not tb:
            return [G.matmul(g, b, transpose_b=True), G.matmul(a, g, transpose_a=True)]
        if ta and not tb:
            return [G.matmul(b, g, transpose_b=True), G.matmul(a, g)]
        if not ta and tb:
            return [G.matmul(g, b), G.matmul(g, a, transpose_a=True)]
        return [
            G.matmul(b, g, transpose_a=True, transpose_b=True),
            G.matmul(g, a, transpose_a=True, transpose_b=True),
        ]
