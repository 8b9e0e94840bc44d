import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from stridegrad.desc import ShapeVec, TensorDesc
from stridegrad.dtype import DType, DTypeLike, as_dtype
from stridegrad.storage import Storage

logger = logging.getLogger(__name__)

MAX_PRINT = 16
"""int: Maximum number of element values shown by ``repr``."""

Scalar = Union[int, float, bool, np.number]


class Tensor:
    """
    A possibly non-contiguous N-dimensional view into a shared storage.

    A tensor is the tuple ``(desc, storage, own_data, offset)``. The element
    at logical index ``idx`` lives at storage position
    ``offset + sum(idx[i] * desc.stride(i))``.

    Tensors returned by operators are treated as immutable. The only way to
    write elements is through the ``set_*`` methods, which first call
    :meth:`make_own_data`: a view (``own_data=False``) is copied into a
    private buffer before the write, so other tensors sharing the original
    storage never observe it.

    Parameters
    ----------
    desc : TensorDesc
        Shape, stride and dtype.
    storage : Storage
        Element buffer. Its dtype must equal ``desc.dtype``.
    own_data : bool, default True
        False marks the tensor as a view over storage owned by another
        tensor.
    offset : int, default 0
        Storage position of the element at logical index ``(0, ..., 0)``.

    Raises
    ------
    ValueError
        If the storage dtype differs from the descriptor dtype, or the
        addressed window does not fit inside the storage.

    Notes
    -----
    - Kernels never index element by element in Python; they build the
      physical addresses of all elements at once (:meth:`addresses`) or read
      through a strided numpy view (:meth:`view`).
    """
    def __init__(
        self,
        desc: TensorDesc,
        storage: Storage,
        own_data: bool = True,
        offset: int = 0,
    ) -> None:
        if storage.dtype != desc.dtype:
            raise ValueError(
                f"Storage dtype {storage.dtype.value} does not match descriptor dtype {desc.dtype.value}."
            )
        self._desc = desc
        self._storage = storage
        self._own_data = bool(own_data)
        self._offset = int(offset)
        self._check_window()
        storage.attach(self)

    def _check_window(self) -> None:
        if self._desc.numel() == 0:
            return
        lo = hi = self._offset
        for i in range(self._desc.dim()):
            step = (self._desc.shape(i) - 1) * self._desc.stride(i)
            if step < 0:
                lo += step
            else:
                hi += step
        if lo < 0 or hi >= self._storage.size():
            raise ValueError(
                f"Tensor window [{lo}, {hi}] is outside of a storage of size {self._storage.size()}."
            )

    def _rebind(self, desc: TensorDesc, storage: Storage, own_data: bool, offset: int) -> None:
        self._storage.detach(self)
        self._desc = desc
        self._storage = storage
        self._own_data = own_data
        self._offset = offset
        storage.attach(self)

    @property
    def desc(self) -> TensorDesc:
        """TensorDesc: Shape, stride and dtype of the tensor."""
        return self._desc

    @property
    def storage(self) -> Storage:
        """Storage: The (possibly shared) element buffer."""
        return self._storage

    @property
    def own_data(self) -> bool:
        """bool: False if the tensor is a view over storage owned by another tensor."""
        return self._own_data

    @property
    def offset(self) -> int:
        """int: Storage position of the first logical element."""
        return self._offset

    @property
    def dtype(self) -> DType:
        """DType: Element kind."""
        return self._desc.dtype

    @property
    def shape(self) -> ShapeVec:
        """tuple of int: The tensor's shape."""
        return self._desc.shape_vec

    @property
    def stride(self) -> ShapeVec:
        """tuple of int: The tensor's element strides."""
        return self._desc.stride_vec

    @property
    def ndim(self) -> int:
        """int: The number of axes."""
        return self._desc.dim()

    def numel(self) -> int:
        """Total number of logical elements."""
        return self._desc.numel()

    def is_contiguous(self) -> bool:
        return self._desc.is_contiguous()

    def index(self, *idx: int) -> int:
        """
        Storage position of a multi-index, relative to :attr:`offset`.

        Raises
        ------
        IndexError
            If the number of indices differs from the rank, or an index is
            out of range.
        """
        if len(idx) != self.ndim:
            raise IndexError(f"Expected {self.ndim} indices, got {len(idx)}.")
        pos = 0
        for axis, i in enumerate(idx):
            extent = self._desc.shape(axis)
            if not -extent <= i < extent:
                raise IndexError(f"Index {i} is out of range for axis {axis} of extent {extent}.")
            pos += (i % extent) * self._desc.stride(axis)
        return pos

    def elindex(self, i: Union[int, np.ndarray]) -> Union[int, np.ndarray]:
        """
        Map a flat row-major logical index to a storage position relative
        to :attr:`offset`.

        Works on a single ``int`` or elementwise on an integer ndarray.

        Examples
        --------
        >>> t = zeros(DType.Float32, (2, 3)).permute((1, 0))
        >>> t.elindex(1)    # logical (0, 1) -> stride 3 along axis 1
        3
        """
        pos = i * 0
        for axis in range(self.ndim - 1, -1, -1):
            extent = self._desc.shape(axis)
            pos = pos + (i % extent) * self._desc.stride(axis)
            i = i // extent
        return pos

    def addresses(self) -> np.ndarray:
        """
        Physical storage positions of every logical element, in row-major order.

        Returns
        -------
        numpy.ndarray
            int64 array of length ``numel()``.
        """
        flat = np.arange(self.numel(), dtype=np.int64)
        if self.numel() == 0:
            return flat
        return self._offset + self.elindex(flat)

    def view(self) -> np.ndarray:
        """
        Read-only strided numpy view of the logical elements (no copy).

        The view aliases the storage; use :meth:`numpy` for an independent copy.
        """
        data = self._storage.data
        if self.numel() == 0:
            return np.empty(self.shape, dtype=data.dtype)
        itemsize = data.itemsize
        return np.lib.stride_tricks.as_strided(
            data[self._offset:],
            shape=self.shape,
            strides=tuple(s * itemsize for s in self.stride),
            writeable=False,
        )

    def numpy(self) -> np.ndarray:
        """Row-major copy of the logical elements as a numpy array."""
        return np.array(self.view(), copy=True)

    def tolist(self) -> Any:
        """Nested Python lists (a plain scalar for rank-0 tensors)."""
        return self.view().tolist()

    def item(self) -> Scalar:
        """
        The single element of a one-element tensor as a Python scalar.

        Raises
        ------
        ValueError
            If the tensor does not hold exactly one element.
        """
        if self.numel() != 1:
            raise ValueError(f"item() requires a single-element tensor, got shape {self.shape}.")
        return self._storage.data[self.addresses()[0]].item()

    def at(self, *idx: int) -> Scalar:
        """Element at a multi-index."""
        return self._storage.data[self._offset + self.index(*idx)].item()

    def elat(self, i: int) -> Scalar:
        """Element at a flat row-major logical index."""
        return self._storage.data[self._offset + self.elindex(i)].item()

    def set_at(self, idx: Sequence[int], value: Scalar) -> None:
        """
        Write the element at a multi-index.

        Triggers :meth:`make_own_data` first if the tensor is a view.
        """
        self.make_own_data()
        self._storage.data[self._offset + self.index(*idx)] = value

    def set_elat(self, i: int, value: Scalar) -> None:
        """
        Write the element at a flat row-major logical index.

        Triggers :meth:`make_own_data` first if the tensor is a view.
        """
        self.make_own_data()
        self._storage.data[self._offset + self.elindex(i)] = value

    def mutable_data(self) -> np.ndarray:
        """
        Writable strided numpy view for bulk in-place writes.

        Calls :meth:`make_own_data` first, so writes through the returned
        array never reach storage borrowed from another tensor.
        """
        self.make_own_data()
        data = self._storage.data
        if self.numel() == 0:
            return np.empty(self.shape, dtype=data.dtype)
        itemsize = data.itemsize
        return np.lib.stride_tricks.as_strided(
            data[self._offset:],
            shape=self.shape,
            strides=tuple(s * itemsize for s in self.stride),
        )

    def make_contiguous(self) -> None:
        """
        Materialise a non-contiguous tensor into an owned, row-major buffer.

        No-op if the strides already equal the default. Otherwise every
        logical element is copied in row-major order into a fresh storage,
        the strides are reset to the default, and the tensor becomes the
        owner of the new buffer.
        """
        if self._desc.is_contiguous():
            return
        values = self._storage.data[self.addresses()]
        desc = TensorDesc(self.dtype, self.shape)
        logger.debug("make_contiguous: copied %d elements of %s", values.shape[0], self._desc)
        self._rebind(desc, Storage(self.dtype, data=values), True, 0)

    def make_own_data(self) -> None:
        """
        Ensure the tensor owns its storage before an in-place write.

        - Already owning: no-op.
        - Contiguous view: clone only the ``[offset, offset + numel)`` range
          of the shared storage.
        - Any other view (permuted, expanded, strided): fall back to
          :meth:`make_contiguous`.
        """
        if self._own_data:
            return
        if self._desc.is_contiguous():
            storage = self._storage.clone(self._offset, self.numel())
            desc = TensorDesc(self.dtype, self.shape)
            logger.debug("make_own_data: cloned range [%d, %d)", self._offset, self._offset + self.numel())
            self._rebind(desc, storage, True, 0)
        else:
            self.make_contiguous()

    def clone(self) -> "Tensor":
        """Owned, contiguous copy of the tensor."""
        return from_numpy(self.numpy(), self.dtype)

    def get_state(self) -> Dict[str, Any]:
        """
        Serialisable state: descriptor, storage, then base offset.

        The storage entry is the full flat buffer, so views keep their
        addressing when restored with :meth:`from_state`.
        """
        return {
            "desc": self._desc.to_dict(),
            "storage": self._storage.data.copy(),
            "offset": self._offset,
        }

    @staticmethod
    def from_state(state: Dict[str, Any]) -> "Tensor":
        """Rebuild an owning tensor from :meth:`get_state` output."""
        desc = TensorDesc.from_dict(state["desc"])
        storage = Storage(desc.dtype, data=np.asarray(state["storage"]))
        return Tensor(desc, storage, True, int(state["offset"]))

    def __repr__(self) -> str:
        values = self._storage.data[self.addresses()[:MAX_PRINT]].tolist()
        body = ", ".join(str(v) for v in values)
        if self.numel() > MAX_PRINT:
            body += ", ..."
        return (
            f"Tensor(dtype={self.dtype.value}, shape={self.shape}, data=[{body}], "
            f"own_data={self._own_data}, offset={self._offset})"
        )

    # Operator overloads delegate to stridegrad.functional, which raises
    # OpError when validation fails.

    def __add__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.add(self, _ensure_tensor(other, self.dtype))

    def __radd__(self, other: Scalar) -> "Tensor":
        from stridegrad import functional as F
        return F.add(_ensure_tensor(other, self.dtype), self)

    def __sub__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.sub(self, _ensure_tensor(other, self.dtype))

    def __rsub__(self, other: Scalar) -> "Tensor":
        from stridegrad import functional as F
        return F.sub(_ensure_tensor(other, self.dtype), self)

    def __mul__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.mul(self, _ensure_tensor(other, self.dtype))

    def __rmul__(self, other: Scalar) -> "Tensor":
        from stridegrad import functional as F
        return F.mul(_ensure_tensor(other, self.dtype), self)

    def __truediv__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.div(self, _ensure_tensor(other, self.dtype))

    def __rtruediv__(self, other: Scalar) -> "Tensor":
        from stridegrad import functional as F
        return F.div(_ensure_tensor(other, self.dtype), self)

    def __pow__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.pow(self, _ensure_tensor(other, self.dtype))

    def __neg__(self) -> "Tensor":
        from stridegrad import functional as F
        return F.neg(self)

    def __gt__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.ge(self, _ensure_tensor(other, self.dtype))

    def __lt__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.le(self, _ensure_tensor(other, self.dtype))

    def __ge__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.geq(self, _ensure_tensor(other, self.dtype))

    def __le__(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.leq(self, _ensure_tensor(other, self.dtype))

    def __matmul__(self, other: "Tensor") -> "Tensor":
        from stridegrad import functional as F
        return F.matmul(self, other)

    def eq(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.eq(self, _ensure_tensor(other, self.dtype))

    def neq(self, other: Union["Tensor", Scalar]) -> "Tensor":
        from stridegrad import functional as F
        return F.neq(self, _ensure_tensor(other, self.dtype))

    def cast(self, dtype: DTypeLike) -> "Tensor":
        from stridegrad import functional as F
        return F.cast(self, dtype)

    def int8(self) -> "Tensor":
        return self.cast(DType.Int8)

    def uint8(self) -> "Tensor":
        return self.cast(DType.UInt8)

    def int32(self) -> "Tensor":
        return self.cast(DType.Int32)

    def uint32(self) -> "Tensor":
        return self.cast(DType.UInt32)

    def int64(self) -> "Tensor":
        return self.cast(DType.Int64)

    def uint64(self) -> "Tensor":
        return self.cast(DType.UInt64)

    def float32(self) -> "Tensor":
        return self.cast(DType.Float32)

    def float64(self) -> "Tensor":
        return self.cast(DType.Float64)

    def sum(self, axis: int, keepdims: bool = False) -> "Tensor":
        from stridegrad import functional as F
        return F.reduce_sum(self, axis, keepdims)

    def mean(self, axis: int, keepdims: bool = False) -> "Tensor":
        from stridegrad import functional as F
        return F.reduce_mean(self, axis, keepdims)

    def min(self, axis: int, keepdims: bool = False) -> List["Tensor"]:
        """Minimum along ``axis``: ``[values, int64 indices]``."""
        from stridegrad import functional as F
        return F.reduce_min(self, axis, keepdims)

    def max(self, axis: int, keepdims: bool = False) -> List["Tensor"]:
        """Maximum along ``axis``: ``[values, int64 indices]``."""
        from stridegrad import functional as F
        return F.reduce_max(self, axis, keepdims)

    def reshape(self, shape: Sequence[int]) -> "Tensor":
        from stridegrad import functional as F
        return F.reshape(self, shape)

    def permute(self, axes: Sequence[int]) -> "Tensor":
        from stridegrad import functional as F
        return F.permute(self, axes)

    def expand(self, shape: Sequence[int]) -> "Tensor":
        from stridegrad import functional as F
        return F.expand(self, shape)

    def squeeze(self, axis: int) -> "Tensor":
        from stridegrad import functional as F
        return F.squeeze(self, axis)

    def unsqueeze(self, axis: int) -> "Tensor":
        from stridegrad import functional as F
        return F.unsqueeze(self, axis)

    def narrow(self, axis: int, start: int, length: int) -> "Tensor":
        from stridegrad import functional as F
        return F.narrow(self, axis, start, length)

    def index_select(self, axis: int, indices: "Tensor") -> "Tensor":
        from stridegrad import functional as F
        return F.index_select(self, axis, indices)

    def gather(self, axis: int, indices: "Tensor") -> "Tensor":
        from stridegrad import functional as F
        return F.gather(self, axis, indices)


def _ensure_tensor(x: Union[Tensor, Scalar], dtype: DType) -> Tensor:
    """Wrap Python scalars as rank-0 tensors of ``dtype``; tensors pass through."""
    if isinstance(x, Tensor):
        return x
    return scalar(dtype, x)


def tensor(desc: TensorDesc, storage: Storage, own_data: bool = True, offset: int = 0) -> Tensor:
    """Build a tensor over an existing storage."""
    return Tensor(desc, storage, own_data, offset)


def empty(dtype: DTypeLike, shape: Sequence[int]) -> Tensor:
    """
    Uninitialised, owned, contiguous tensor.

    Parameters
    ----------
    dtype : DType or dtype-like
        Element kind.
    shape : sequence of int
        Per-axis extents.
    """
    desc = TensorDesc(dtype, shape)
    return Tensor(desc, Storage(desc.dtype, desc.numel()))


def fill(dtype: DTypeLike, shape: Sequence[int], value: Scalar) -> Tensor:
    """
    Owned tensor with every element set to ``value``.

    ``value`` is converted to the element type the way numpy assignment does
    (floats truncate towards zero for integer dtypes).
    """
    out = empty(dtype, shape)
    out.storage.data[...] = value
    return out


def zeros(dtype: DTypeLike, shape: Sequence[int]) -> Tensor:
    """Owned tensor of zeros."""
    return fill(dtype, shape, 0)


def ones(dtype: DTypeLike, shape: Sequence[int]) -> Tensor:
    """Owned tensor of ones."""
    return fill(dtype, shape, 1)


def scalar(dtype: DTypeLike, value: Scalar = 0) -> Tensor:
    """Rank-0 tensor holding ``value``."""
    return fill(dtype, (), value)


def arange(
    dtype: DTypeLike,
    begin: int,
    end: Optional[int] = None,
    step: int = 1,
) -> Tensor:
    """
    Rank-1 tensor ``[begin, begin + step, ...]`` stopping before ``end``.

    With a single bound, counts from 0 to ``begin`` (``arange(dt, 5)`` is
    ``[0, 1, 2, 3, 4]``).

    Raises
    ------
    ValueError
        If ``step`` is 0.
    """
    if end is None:
        begin, end = 0, begin
    if step == 0:
        raise ValueError("arange() step must not be zero.")
    values = np.asarray(range(int(begin), int(end), int(step)), dtype=np.int64)
    return from_numpy(values, dtype)


def from_numpy(array: Any, dtype: Optional[DTypeLike] = None) -> Tensor:
    """
    Owned, contiguous tensor holding a copy of ``array``.

    Parameters
    ----------
    array : array-like
        Source values; nested sequences are accepted.
    dtype : DType or dtype-like, optional
        Target element kind. Defaults to the array's own dtype.
    """
    array = np.asarray(array)
    dtype = DType.from_numpy(array.dtype) if dtype is None else as_dtype(dtype)
    values = np.array(array, dtype=dtype.np_dtype, copy=True).reshape(-1)
    desc = TensorDesc(dtype, array.shape)
    return Tensor(desc, Storage(dtype, data=values))


def from_flat_values(dtype: DTypeLike, values: Iterable[Scalar]) -> Tensor:
    """Rank-1 tensor from a flat sequence of scalars."""
    values = list(values)
    return from_numpy(np.asarray(values, dtype=as_dtype(dtype).np_dtype).reshape(len(values)), dtype)


def from_nested_values(dtype: DTypeLike, values: Sequence[Sequence[Scalar]]) -> Tensor:
    """
    Rank-2 tensor from a sequence of equally long sequences.

    Raises
    ------
    ValueError
        If ``values`` is empty or the inner sequences differ in length.
    """
    rows = [list(row) for row in values]
    if not rows:
        raise ValueError("from_nested_values() requires at least one row.")
    width = len(rows[0])
    for i, row in enumerate(rows):
        if len(row) != width:
            raise ValueError(
                f"Shape mismatch: row {i} has {len(row)} values, expected {width}."
            )
    flat = [v for row in rows for v in row]
    array = np.asarray(flat, dtype=as_dtype(dtype).np_dtype).reshape(len(rows), width)
    return from_numpy(array, dtype)


def from_values(dtype: DTypeLike, values: Sequence[Any]) -> Tensor:
    """
    Tensor from a flat sequence of scalars or a two-level nested sequence.

    Dispatches to :func:`from_flat_values` or :func:`from_nested_values`
    depending on whether the first item is itself a sequence.
    """
    values = list(values)
    if values and isinstance(values[0], (list, tuple, np.ndarray)):
        return from_nested_values(dtype, values)
    return from_flat_values(dtype, values)
