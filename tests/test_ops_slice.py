import numpy as np
import pytest
import torch

from stridegrad import functional as F
from stridegrad.dtype import DType
from stridegrad.op import OpContext
from stridegrad.ops import (
    OpConcat,
    OpConcatDesc,
    OpGather,
    OpGatherBackward,
    OpGatherBackwardDesc,
    OpGatherDesc,
    OpIndexSelect,
    OpIndexSelectBackward,
    OpIndexSelectBackwardDesc,
    OpIndexSelectDesc,
    OpNarrow,
    OpNarrowBackward,
    OpNarrowBackwardDesc,
    OpNarrowDesc,
    OpSplit,
    OpSplitDesc,
)
from stridegrad.ops.slice import join_index, split_index
from stridegrad.tensor import zeros
from tests.utils import assert_close, make_index, make_tensor, make_torch


def test_split_join_index_roundtrip():
    stride = (12, 4, 1)
    flat = np.arange(24)
    for axis in range(3):
        outer, pos, inner = split_index(flat, stride, axis)
        assert join_index(outer, pos, inner, stride, axis).tolist() == flat.tolist()
    outer, pos, inner = split_index(np.array([17]), stride, 1)
    assert (outer[0], pos[0], inner[0]) == (1, 1, 1)


@pytest.mark.parametrize("axis", [0, 1, 2, -1])
def test_concat_matches_torch(rng, axis):
    shapes = [[2, 3, 4], [2, 3, 4], [2, 3, 4]]
    for i, s in enumerate(shapes):
        s[axis] = i + 1
    arrays = [rng.normal(size=s).astype(np.float32) for s in shapes]
    y = F.concat([make_tensor(a) for a in arrays], axis)
    yt = torch.cat([make_torch(a, False) for a in arrays], dim=axis)
    assert_close(y, yt)


def test_concat_then_split_roundtrip(rng):
    arrays = [rng.normal(size=(2, n, 3)).astype(np.float32) for n in (1, 4, 2)]
    joined = F.concat([make_tensor(a) for a in arrays], 1)
    parts = F.split(joined, 1, [1, 4, 2])
    assert len(parts) == 3
    for part, a in zip(parts, arrays):
        assert part.storage is joined.storage
        assert_close(part, a)


def test_split_of_offset_view(rng):
    x_np = rng.normal(size=(6, 4)).astype(np.float32)
    x = F.narrow(make_tensor(x_np), 0, 2, 4)
    a, b = F.split(x, 0, [1, 3])
    assert_close(a, x_np[2:3])
    assert_close(b, x_np[3:6])


def test_narrow_is_a_view_on_strided_input(rng):
    x_np = rng.normal(size=(3, 5, 4)).astype(np.float32)
    x = F.permute(make_tensor(x_np), (2, 1, 0))
    y = x.narrow(1, 1, 3)
    assert y.storage is x.storage
    assert_close(y, make_torch(x_np, False).permute(2, 1, 0).narrow(1, 1, 3))


def test_narrow_backward_reconstructs_slice(rng):
    x_np = rng.normal(size=(3, 6)).astype(np.float32)
    x = make_tensor(x_np)
    back = F.narrow_backward(F.narrow(x, 1, 2, 3), 1, 2, 6)
    expected = np.zeros_like(x_np)
    expected[:, 2:5] = x_np[:, 2:5]
    assert back.shape == (3, 6)
    assert_close(back, expected)


def test_index_select_matches_torch(rng):
    x_np = rng.normal(size=(4, 3, 2)).astype(np.float32)
    idx = np.array([3, 0, 0, 2])
    y = F.index_select(make_tensor(x_np), 0, make_index(idx))
    assert_close(y, torch.index_select(make_torch(x_np, False), 0, torch.tensor(idx)))
    y = make_tensor(x_np).index_select(-1, make_index([1, 1]))
    assert_close(y, torch.index_select(make_torch(x_np, False), 2, torch.tensor([1, 1])))


def test_index_select_backward_accumulates(rng):
    g_np = rng.normal(size=(2, 4)).astype(np.float32)
    idx = np.array([1, 0, 1, 1])
    y = F.index_select_backward(make_tensor(g_np), 1, make_index(idx), 3)
    yt = torch.zeros(2, 3).index_add(1, torch.tensor(idx), torch.tensor(g_np))
    assert_close(y, yt, atol=1e-5)


@pytest.mark.parametrize("axis", [0, 1, 2])
def test_gather_matches_torch(rng, axis):
    x_np = rng.normal(size=(3, 4, 5)).astype(np.float32)
    idx_shape = [3, 4, 5]
    idx_shape[axis] = 6
    idx = rng.integers(0, x_np.shape[axis], size=idx_shape)
    y = F.gather(make_tensor(x_np), axis, make_index(idx))
    yt = torch.gather(make_torch(x_np, False), axis, torch.tensor(idx))
    assert_close(y, yt)


def test_gather_backward_accumulates_repeated_indices():
    g = make_tensor(np.array([[1.0, 2.0, 4.0], [8.0, 16.0, 32.0]]))
    idx = make_index([[0, 0, 2], [1, 1, 1]])
    y = F.gather_backward(g, 1, idx, 3)
    assert y.tolist() == [[3.0, 0.0, 4.0], [0.0, 56.0, 0.0]]


@pytest.mark.parametrize("axis", [0, 1])
def test_gather_backward_matches_torch(rng, axis):
    g_np = rng.normal(size=(4, 4)).astype(np.float32)
    idx = rng.integers(0, 3, size=(4, 4))
    shape = [4, 4]
    shape[axis] = 3
    y = F.gather_backward(make_tensor(g_np), axis, make_index(idx), 3)
    yt = torch.zeros(*shape).scatter_add(axis, torch.tensor(idx), torch.tensor(g_np))
    assert_close(y, yt, atol=1e-5)


def _diagnostic(op, inputs):
    ctx = OpContext()
    assert op.execute(ctx, inputs) == []
    return ctx.error_str


def test_slice_validation_diagnostics():
    x = zeros(DType.Float32, (2, 3))
    assert "at least one input" in _diagnostic(OpConcat(OpConcatDesc(0)), [])
    assert "differ along axis" in _diagnostic(OpConcat(OpConcatDesc(0)), [x, zeros(DType.Float32, (2, 4))])
    assert "dtype" in _diagnostic(OpConcat(OpConcatDesc(1)), [x, zeros(DType.Int32, (2, 3))])
    assert "split" in _diagnostic(OpSplit(OpSplitDesc(1, (1, 1))), [x])
    assert "expected 1 inputs" in _diagnostic(OpSplit(OpSplitDesc(1, (3,))), [x, x])
    assert "invalid input range" in _diagnostic(OpNarrow(OpNarrowDesc(1, 2, 2)), [x])
    assert "invalid axis" in _diagnostic(OpNarrow(OpNarrowDesc(2, 0, 1)), [x])
    assert "integer" in _diagnostic(OpIndexSelect(OpIndexSelectDesc(0)), [x, zeros(DType.Float32, (2,))])
    assert "1 axes" in _diagnostic(OpIndexSelect(OpIndexSelectDesc(0)), [x, zeros(DType.Int64, (2, 1))])
    assert "index values" in _diagnostic(OpIndexSelect(OpIndexSelectDesc(0)), [x, make_index([0, 2])])
    assert "same shape" in _diagnostic(OpGather(OpGatherDesc(1)), [x, zeros(DType.Int64, (3, 3))])
    assert "axes" in _diagnostic(OpGather(OpGatherDesc(1)), [x, zeros(DType.Int64, (2,))])


def test_backward_ops_reject_negative_input_size():
    g = zeros(DType.Float32, (2, 3))
    empty_index = zeros(DType.Int64, (0,))
    assert "input_size" in _diagnostic(
        OpIndexSelectBackward(OpIndexSelectBackwardDesc(1, -1)), [zeros(DType.Float32, (2, 0)), empty_index]
    )
    assert "input_size" in _diagnostic(
        OpGatherBackward(OpGatherBackwardDesc(1, -2)), [g, zeros(DType.Int64, (2, 3))]
    )
    assert "does not fit" in _diagnostic(OpNarrowBackward(OpNarrowBackwardDesc(1, 0, -1)), [g])
