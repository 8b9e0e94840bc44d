"""
Elementwise operator nodes and their calculus rules.

Binary rules reduce each partial gradient to its input's shape with
``sum_to`` because the forward pass may have broadcast the inputs.
Comparison nodes propagate no gradient.
"""
from typing import List, Optional

from stridegrad.graph.graph import GraphOp
from stridegrad.op import OpDesc
from stridegrad.ops import (
    OpAdd,
    OpCast,
    OpCastDesc,
    OpCond,
    OpCos,
    OpDiv,
    OpEq,
    OpExp,
    OpGe,
    OpGeq,
    OpLe,
    OpLeq,
    OpLog,
    OpMax,
    OpMin,
    OpMul,
    OpNeg,
    OpNeq,
    OpPow,
    OpReciprocal,
    OpSigmoid,
    OpSin,
    OpSub,
    OpTan,
    OpTanh,
)
from stridegrad.tensor import Tensor


class GOpNeg(GraphOp):
    eager_type = OpNeg

    def grad(self, grads):
        return [-grads[0]]


class GOpSin(GraphOp):
    eager_type = OpSin

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return [grads[0] * G.cos(self.inputs[0])]


class GOpCos(GraphOp):
    eager_type = OpCos

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return [grads[0] * -G.sin(self.inputs[0])]


class GOpTan(GraphOp):
    eager_type = OpTan

    def grad(self, grads):
        from stridegrad.graph import functional as G
        c = G.cos(self.inputs[0])
        return [grads[0] * G.reciprocal(c * c)]


class GOpLog(GraphOp):
    eager_type = OpLog

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return [grads[0] * G.reciprocal(self.inputs[0])]


class GOpExp(GraphOp):
    eager_type = OpExp

    def grad(self, grads):
        return [grads[0] * self.outputs[0]]


class GOpTanh(GraphOp):
    eager_type = OpTanh

    def grad(self, grads):
        from stridegrad.graph import functional as G
        y = self.outputs[0]
        return [grads[0] * (G.ones_like(y) - y * y)]


class GOpSigmoid(GraphOp):
    eager_type = OpSigmoid

    def grad(self, grads):
        from stridegrad.graph import functional as G
        y = self.outputs[0]
        return [grads[0] * y * (G.ones_like(y) - y)]


class GOpReciprocal(GraphOp):
    """``1 / x``; gradient ``-g / x**2``."""
    eager_type = OpReciprocal

    def grad(self, grads):
        x = self.inputs[0]
        return [-(grads[0] / (x * x))]


class GOpAdd(GraphOp):
    eager_type = OpAdd

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        a, b = self.inputs
        return [G.sum_to(g, a), G.sum_to(g, b)]


class GOpSub(GraphOp):
    eager_type = OpSub

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        a, b = self.inputs
        return [G.sum_to(g, a), G.sum_to(-g, b)]


class GOpMul(GraphOp):
    eager_type = OpMul

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        a, b = self.inputs
        return [G.sum_to(g * b, a), G.sum_to(g * a, b)]


class GOpDiv(GraphOp):
    eager_type = OpDiv

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        a, b = self.inputs
        return [G.sum_to(g / b, a), G.sum_to(-(g * self.outputs[0] / b), b)]


class GOpPow(GraphOp):
    """``a ** b``; gradients ``g * b * a ** (b - 1)`` and ``g * a ** b * log(a)``."""
    eager_type = OpPow

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        a, b = self.inputs
        da = g * b * G.pow(a, b - G.ones_like(b))
        db = g * self.outputs[0] * G.log(a)
        return [G.sum_to(da, a), G.sum_to(db, b)]


class _SelectOp(GraphOp):
    # The gradient flows to ``a`` where ``pick_a(a, b)`` holds, else to ``b``.

    def pick_a(self, a, b):
        raise NotImplementedError

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        a, b = self.inputs
        mask = self.pick_a(a, b)
        zero = G.zeros_like(g)
        return [G.sum_to(G.cond(mask, g, zero), a), G.sum_to(G.cond(mask, zero, g), b)]


class GOpMin(_SelectOp):
    eager_type = OpMin

    def pick_a(self, a, b):
        return a <= b


class GOpMax(_SelectOp):
    eager_type = OpMax

    def pick_a(self, a, b):
        return a >= b


class GOpGe(GraphOp):
    eager_type = OpGe


class GOpLe(GraphOp):
    eager_type = OpLe


class GOpGeq(GraphOp):
    eager_type = OpGeq


class GOpLeq(GraphOp):
    eager_type = OpLeq


class GOpEq(GraphOp):
    eager_type = OpEq


class GOpNeq(GraphOp):
    eager_type = OpNeq


class GOpCast(GraphOp):
    """
    Cast to ``desc.dtype``, or to the dtype of a second reference input.

    The gradient is the incoming gradient cast back to the input's dtype,
    for integer inputs as well.
    """
    eager_type = OpCast

    def eager_desc(self, values: List[Tensor]) -> Optional[OpDesc]:
        if len(values) == 2:
            return OpCastDesc(values[1].dtype)
        return self.desc

    def eager_inputs(self, values: List[Tensor]) -> List[Tensor]:
        return values[:1]

    def grad(self, grads):
        from stridegrad.graph import functional as G
        return [G.cast_like(grads[0], self.inputs[0])] + [None] * (len(self.inputs) - 1)


class GOpCond(GraphOp):
    """``cond(c, a, b)``; ``c`` itself receives no gradient."""
    eager_type = OpCond

    def grad(self, grads):
        from stridegrad.graph import functional as G
        g = grads[0]
        c, a, b = self.inputs
        zero = G.zeros_like(g)
        return [None, G.sum_to(G.cond(c, g, zero), a), G.sum_to(G.cond(c, zero, g), b)]
