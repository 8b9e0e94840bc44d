import numpy as np
import pytest

from stridegrad import functional as F
from stridegrad.dtype import DType
from stridegrad.errors import OpError
from stridegrad.op import OpContext
from stridegrad.ops import (
    OpExpand,
    OpExpandDesc,
    OpFactoryDesc,
    OpFill,
    OpFillDesc,
    OpReshape,
    OpReshapeDesc,
    OpZeros,
)
from stridegrad.tensor import arange, ones
from tests.utils import assert_close, make_tensor


def test_reshape_contiguous_is_a_view(rng):
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)
    x = make_tensor(x_np)
    y = x.reshape((6, -1))
    assert y.shape == (6, 4)
    assert y.storage is x.storage
    assert not y.own_data
    assert_close(y, x_np.reshape(6, 4))


def test_reshape_non_contiguous_copies(rng):
    x_np = rng.normal(size=(3, 4)).astype(np.float32)
    x = F.permute(make_tensor(x_np), (1, 0))
    y = x.reshape((12,))
    assert y.storage is not x.storage
    assert_close(y, x_np.T.reshape(12))


def test_reshape_rejects_bad_shapes():
    x = arange(DType.Int32, 12)
    for shape in [(5, -1), (-1, -1), (3, 5)]:
        ctx = OpContext()
        assert OpReshape(OpReshapeDesc(shape)).execute(ctx, [x]) == []
        assert not ctx.ok


def test_negative_extents_are_diagnostics():
    cases = [
        (OpFill(OpFillDesc(DType.Float32, (-1, 2), 1.0)), []),
        (OpZeros(OpFactoryDesc(DType.Int32, (3, -2))), []),
        (OpExpand(OpExpandDesc((-3, 2))), [ones(DType.Float32, (1, 2))]),
        (OpExpand(OpExpandDesc((-2, 3, 2))), [ones(DType.Float32, (3, 2))]),
    ]
    for op, inputs in cases:
        ctx = OpContext()
        assert op.execute(ctx, inputs) == []
        assert not ctx.ok


def test_permute_is_a_view(rng):
    x_np = rng.normal(size=(2, 3, 4, 5)).astype(np.float32)
    x = make_tensor(x_np)
    y = x.permute((3, 0, 2, 1))
    assert y.storage is x.storage
    assert not y.is_contiguous()
    assert_close(y, x_np.transpose(3, 0, 2, 1))
    with pytest.raises(OpError):
        x.permute((0, 0, 1, 2))


def test_expand_uses_zero_strides(rng):
    x_np = rng.normal(size=(3, 1)).astype(np.float32)
    x = make_tensor(x_np)
    y = x.expand((2, 3, 4))
    assert y.shape == (2, 3, 4)
    assert y.stride == (0, 1, 0)
    assert y.storage is x.storage
    assert_close(y, np.broadcast_to(x_np, (2, 3, 4)))
    assert x.expand((-1, 2)).shape == (3, 2)
    with pytest.raises(OpError):
        x.expand((2, 4))


def test_squeeze_unsqueeze_roundtrip(rng):
    x_np = rng.normal(size=(2, 3)).astype(np.float32)
    x = make_tensor(x_np)
    y = x.unsqueeze(1)
    assert y.shape == (2, 1, 3)
    assert y.is_contiguous()
    assert x.unsqueeze(-1).shape == (2, 3, 1)
    z = y.squeeze(1)
    assert z.shape == (2, 3)
    assert_close(z, x_np)
    with pytest.raises(OpError):
        x.squeeze(0)


def test_sum_to_reduces_broadcast_axes(rng):
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)
    y = F.sum_to(make_tensor(x_np), (3, 1))
    assert y.shape == (3, 1)
    assert_close(y, x_np.sum(axis=(0, 2)).reshape(3, 1), atol=1e-5)

    x = make_tensor(x_np)
    assert F.sum_to(x, (2, 3, 4)) is x
    with pytest.raises(OpError):
        F.sum_to(x, (5, 4))
