import numpy as np
import pytest
import torch

from stridegrad import functional as F
from stridegrad.dtype import DType
from stridegrad.errors import OpError
from stridegrad.op import OpContext
from stridegrad.ops import OpAdd, OpCast, OpCastDesc, OpCond, OpNarrow, OpConcatDesc
from stridegrad.tensor import from_flat_values, from_numpy
from tests.utils import assert_close, make_tensor, make_torch


@pytest.mark.parametrize(
    "name, ref",
    [
        ("neg", torch.neg),
        ("sin", torch.sin),
        ("cos", torch.cos),
        ("tan", torch.tan),
        ("exp", torch.exp),
        ("tanh", torch.tanh),
        ("sigmoid", torch.sigmoid),
    ],
)
def test_unary_matches_torch(rng, name, ref):
    x_np = rng.uniform(-1.0, 1.0, size=(3, 4)).astype(np.float32)
    y = getattr(F, name)(make_tensor(x_np))
    assert y.dtype is DType.Float32
    assert_close(y, ref(make_torch(x_np, requires_grad=False)), atol=1e-5)


def test_log_and_reciprocal_match_torch(rng):
    x_np = rng.uniform(0.5, 2.0, size=(5,)).astype(np.float32)
    xt = make_torch(x_np, requires_grad=False)
    assert_close(F.log(make_tensor(x_np)), torch.log(xt))
    assert_close(F.reciprocal(make_tensor(x_np)), torch.reciprocal(xt))


def test_unary_on_strided_input(rng):
    x_np = rng.normal(size=(4, 3)).astype(np.float32)
    x = F.permute(make_tensor(x_np), (1, 0))
    assert_close(F.exp(x), np.exp(x_np.T), atol=1e-5)


@pytest.mark.parametrize(
    "name, ref",
    [
        ("add", torch.add),
        ("sub", torch.sub),
        ("mul", torch.mul),
        ("div", torch.div),
        ("minimum", torch.minimum),
        ("maximum", torch.maximum),
    ],
)
def test_binary_broadcast_matches_torch(rng, name, ref):
    a_np = rng.normal(size=(4, 1, 3)).astype(np.float32)
    b_np = rng.normal(size=(1, 5, 3)).astype(np.float32)
    y = getattr(F, name)(make_tensor(a_np), make_tensor(b_np))
    assert y.shape == (4, 5, 3)
    yt = ref(make_torch(a_np, requires_grad=False), make_torch(b_np, requires_grad=False))
    assert_close(y, yt, atol=1e-5)


def test_pow_matches_torch(rng):
    a_np = rng.uniform(0.5, 2.0, size=(2, 3)).astype(np.float32)
    b_np = rng.uniform(-1.0, 2.0, size=(3,)).astype(np.float32)
    y = F.pow(make_tensor(a_np), make_tensor(b_np))
    assert_close(y, torch.pow(make_torch(a_np, False), make_torch(b_np, False)), atol=1e-5)


def test_integer_division_truncates():
    a = from_flat_values(DType.Int32, [7, -7, 5, 0])
    b = from_flat_values(DType.Int32, [2, 2, 0, 3])
    assert F.div(a, b).tolist() == [3, -3, 0, 0]
    assert F.div(a, b).dtype is DType.Int32


def test_comparisons_produce_zero_one_in_input_dtype():
    a = from_flat_values(DType.Float32, [1, 2, 3])
    b = from_flat_values(DType.Float32, [2, 2, 2])
    assert (a > b).tolist() == [0.0, 0.0, 1.0]
    assert (a < b).tolist() == [1.0, 0.0, 0.0]
    assert (a >= b).tolist() == [0.0, 1.0, 1.0]
    assert (a <= b).tolist() == [1.0, 1.0, 0.0]
    assert a.eq(b).tolist() == [0.0, 1.0, 0.0]
    assert a.neq(b).tolist() == [1.0, 0.0, 1.0]
    assert (a > b).dtype is DType.Float32


def test_tensor_operator_overloads_with_scalars():
    a = from_flat_values(DType.Int64, [1, 2, 3])
    assert (a + 1).tolist() == [2, 3, 4]
    assert (10 - a).tolist() == [9, 8, 7]
    assert (a * 2).tolist() == [2, 4, 6]
    assert (6 / a).tolist() == [6, 3, 2]
    assert (-a).tolist() == [-1, -2, -3]
    assert (a ** 2).tolist() == [1, 4, 9]


def test_cast():
    x = from_flat_values(DType.Float32, [1.7, -2.5, 3.0])
    assert x.int32().tolist() == [1, -2, 3]
    assert x.cast(DType.Float64).dtype is DType.Float64
    ctx = OpContext()
    out = OpCast(OpCastDesc("uint8")).execute(ctx, [from_flat_values(DType.Int32, [1, 2])])
    assert ctx.ok
    assert out[0].dtype is DType.UInt8


def test_cond_selects_and_broadcasts():
    c = from_flat_values(DType.Int32, [1, 0, 1])
    a = from_numpy(np.full((2, 3), 5.0, dtype=np.float32))
    b = from_flat_values(DType.Float32, [-1, -2, -3])
    ctx = OpContext()
    (y,) = OpCond().execute(ctx, [c, a, b])
    assert ctx.ok
    assert y.tolist() == [[5.0, -2.0, 5.0], [5.0, -2.0, 5.0]]


def test_dtype_mismatch_is_a_diagnostic():
    ctx = OpContext()
    out = OpAdd().execute(ctx, [from_flat_values(DType.Float32, [1]), from_flat_values(DType.Int32, [1])])
    assert out == []
    assert not ctx.ok and ctx.is_error
    assert "OpAdd" in ctx.error_str
    assert "dtype" in ctx.error_str


def test_incompatible_shapes_are_a_diagnostic():
    ctx = OpContext()
    a = make_tensor(np.zeros((2, 3)))
    b = make_tensor(np.zeros((4,)))
    assert OpAdd().execute(ctx, [a, b]) == []
    assert "broadcast" in ctx.error_str


def test_wrong_descriptor_type_is_a_diagnostic():
    ctx = OpContext()
    assert OpNarrow(OpConcatDesc(0)).execute(ctx, [make_tensor(np.zeros(3))]) == []
    assert "OpNarrowDesc" in ctx.error_str


def test_shared_context_accumulates():
    ctx = OpContext()
    f = from_flat_values(DType.Float32, [1])
    i = from_flat_values(DType.Int32, [1])
    OpAdd().execute(ctx, [f, i])
    OpAdd().execute(ctx, [f])
    assert len(ctx.errors) == 2
    ctx.clear()
    assert ctx.ok


def test_functional_raises_op_error():
    with pytest.raises(OpError) as info:
        F.add(from_flat_values(DType.Float32, [1]), from_flat_values(DType.Int32, [1]))
    assert info.value.op_name == "OpAdd"
    with pytest.raises(OpError):
        from_flat_values(DType.Float32, [1, 2]) + from_flat_values(DType.Float32, [1, 2, 3])
