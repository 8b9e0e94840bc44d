import numpy as np
import pytest

from stridegrad import functional as F
from stridegrad.desc import TensorDesc
from stridegrad.dtype import DType
from stridegrad.storage import Storage
from stridegrad.tensor import (
    Tensor,
    arange,
    empty,
    fill,
    from_flat_values,
    from_nested_values,
    from_numpy,
    from_values,
    ones,
    scalar,
    zeros,
)
from tests.utils import assert_close


def _grid():
    return from_numpy(np.arange(12, dtype=np.float32).reshape(3, 4))


def test_fill_then_reduce_sum():
    x = empty(DType.Float32, [2, 3])
    assert x.shape == (2, 3)
    x = fill(DType.Float32, [2, 3], 1.0)
    y = F.reduce_sum(x, axis=1, keepdims=False)
    assert y.shape == (2,)
    assert y.tolist() == [3.0, 3.0]


def test_factories():
    assert zeros(DType.Int32, (2, 2)).tolist() == [[0, 0], [0, 0]]
    assert ones(DType.UInt8, (3,)).tolist() == [1, 1, 1]
    assert fill(DType.Int8, (2,), 2.7).tolist() == [2, 2]
    s = scalar(DType.Float64, 1.5)
    assert s.shape == () and s.item() == 1.5


def test_arange():
    assert arange(DType.Int32, 5).tolist() == [0, 1, 2, 3, 4]
    assert arange(DType.Int64, 2, 8, 3).tolist() == [2, 5]
    assert arange(DType.Float32, 3, 0, -1).tolist() == [3.0, 2.0, 1.0]
    with pytest.raises(ValueError):
        arange(DType.Int32, 0, 4, 0)


def test_from_values():
    flat = from_flat_values(DType.Float32, [1, 2, 3])
    assert flat.shape == (3,)
    nested = from_nested_values(DType.Int32, [[1, 2], [3, 4], [5, 6]])
    assert nested.shape == (3, 2)
    assert nested.at(2, 1) == 6
    assert from_values(DType.Int32, [[1], [2]]).shape == (2, 1)
    assert from_values(DType.Int32, [1, 2]).shape == (2,)


def test_from_nested_values_shape_mismatch():
    with pytest.raises(ValueError, match="Shape mismatch"):
        from_nested_values(DType.Float32, [[1, 2], [3]])


def test_index_and_elindex_on_permuted_view():
    t = F.permute(zeros(DType.Float32, (2, 3)), (1, 0))
    assert t.shape == (3, 2)
    assert t.stride == (1, 3)
    assert t.elindex(1) == 3
    assert t.index(2, 1) == 5
    with pytest.raises(IndexError):
        t.index(3, 0)


def test_addresses_follow_strides():
    x = _grid()
    t = F.narrow(F.permute(x, (1, 0)), 0, 1, 2)
    assert t.offset == 1
    assert t.addresses().tolist() == [1, 5, 9, 2, 6, 10]
    assert_close(t, np.arange(12, dtype=np.float32).reshape(3, 4).T[1:3])


def test_views_share_storage():
    x = _grid()
    v = F.narrow(x, 0, 1, 1)
    assert v.storage is x.storage
    assert not v.own_data
    assert x.storage.ref_count == 2


def test_ref_count_drops_when_views_go_away():
    x = _grid()
    storage = x.storage
    v = F.narrow(x, 0, 1, 1)
    w = F.permute(x, (1, 0))
    assert storage.ref_count == 3

    del v
    assert storage.ref_count == 2
    w.set_at((0, 0), 1.0)
    assert w.storage is not storage
    assert storage.ref_count == 1
    del w, x
    assert storage.ref_count == 0


def test_write_through_contiguous_view_clones_range():
    x = _grid()
    v = F.narrow(x, 0, 1, 1)
    v.set_at((0, 0), 100.0)

    assert x.at(1, 0) == 4.0
    assert v.at(0, 0) == 100.0
    assert v.own_data
    assert v.storage is not x.storage
    assert v.storage.size() == 4
    assert v.offset == 0
    assert v.tolist() == [[100.0, 5.0, 6.0, 7.0]]


def test_write_through_permuted_view_materialises():
    x = _grid()
    p = F.permute(x, (1, 0))
    p.set_elat(1, -1.0)

    assert x.numpy().tolist() == np.arange(12, dtype=np.float32).reshape(3, 4).tolist()
    assert p.is_contiguous()
    assert p.own_data
    assert p.at(0, 1) == -1.0
    assert p.at(3, 2) == 11.0


def test_write_through_expanded_view_materialises():
    x = from_flat_values(DType.Int32, [1, 2, 3])
    e = F.expand(x, (2, 3))
    assert e.stride == (0, 1)
    e.mutable_data()[1, 0] = 9
    assert e.tolist() == [[1, 2, 3], [9, 2, 3]]
    assert x.tolist() == [1, 2, 3]


def test_owner_writes_in_place():
    x = _grid()
    storage = x.storage
    x.set_at((0, 0), 42.0)
    assert x.storage is storage
    assert x.at(0, 0) == 42.0


def test_make_contiguous_is_noop_when_contiguous():
    x = _grid()
    storage = x.storage
    x.make_contiguous()
    assert x.storage is storage


def test_storage_clone_range():
    s = Storage(DType.Int64, data=np.arange(10))
    c = s.clone(3, 4)
    assert c.data.tolist() == [3, 4, 5, 6]
    assert s.clone(8, 5).size() == 2
    assert s.memsize() == 80


def test_invariant_violations_raise():
    with pytest.raises(ValueError):
        Tensor(TensorDesc(DType.Float32, (3,)), Storage(DType.Int32, 3))
    with pytest.raises(ValueError):
        Tensor(TensorDesc(DType.Float32, (3,)), Storage(DType.Float32, 2))
    with pytest.raises(ValueError):
        Tensor(TensorDesc(DType.Float32, (2,)), Storage(DType.Float32, 2), offset=1)


def test_state_roundtrip_keeps_view_addressing():
    v = F.narrow(_grid(), 1, 1, 2)
    state = v.get_state()
    assert list(state) == ["desc", "storage", "offset"]
    restored = Tensor.from_state(state)
    assert restored.offset == v.offset
    assert restored.tolist() == v.tolist()


def test_repr_truncates():
    text = repr(arange(DType.Int32, 20))
    assert "..." in text
    assert "int32" in text
    assert "..." not in repr(arange(DType.Int32, 3))


def test_item_requires_single_element():
    with pytest.raises(ValueError):
        arange(DType.Int32, 2).item()
