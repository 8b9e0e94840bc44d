from typing import Iterable, Optional, Sequence, Tuple

from stridegrad.dtype import DType, DTypeLike, as_dtype

MAX_DIM = 15
"""int: Maximum number of axes a tensor descriptor may carry."""

ShapeVec = Tuple[int, ...]


def default_stride(shape: Sequence[int]) -> ShapeVec:
    """
    Row-major (C order) element strides for ``shape``.

    Examples
    --------
    >>> default_stride((2, 3, 4))
    (12, 4, 1)
    >>> default_stride(())
    ()
    """
    stride = [0] * len(shape)
    acc = 1
    for i in range(len(shape) - 1, -1, -1):
        stride[i] = acc
        acc *= max(int(shape[i]), 1)
    return tuple(stride)


def broadcast_shapes(*shapes: Sequence[int]) -> Optional[ShapeVec]:
    """
    Right-aligned broadcast of several shapes.

    Returns the broadcast shape, or ``None`` when two extents on the same
    aligned axis differ and neither of them is 1.
    """
    ndim = max((len(s) for s in shapes), default=0)
    out = [1] * ndim
    for shape in shapes:
        offset = ndim - len(shape)
        for i, extent in enumerate(shape):
            cur = out[offset + i]
            if cur == 1:
                out[offset + i] = int(extent)
            elif extent != 1 and extent != cur:
                return None
    return tuple(out)


class TensorDesc:
    """
    Shape, stride and dtype metadata describing how to read a storage buffer.

    ``stride[i]`` is the number of elements the storage offset advances for a
    unit step of logical index ``i``. A freshly built descriptor gets the
    row-major default stride unless one is given explicitly (transposed,
    expanded or sliced views).

    Parameters
    ----------
    dtype : DType or dtype-like
        Element kind.
    shape : sequence of int
        Per-axis extents. At most :data:`MAX_DIM` axes.
    stride : sequence of int, optional
        Per-axis element strides. Defaults to ``default_stride(shape)``.

    Raises
    ------
    ValueError
        If the rank exceeds :data:`MAX_DIM`, an extent is negative, or
        ``stride`` does not have one entry per axis.
    """
    __slots__ = ("_dtype", "_shape", "_stride")

    def __init__(
        self,
        dtype: DTypeLike,
        shape: Iterable[int] = (),
        stride: Optional[Iterable[int]] = None,
    ) -> None:
        shape = [int(s) for s in shape]
        if len(shape) > MAX_DIM:
            raise ValueError(f"Tensor rank {len(shape)} exceeds the maximum of {MAX_DIM}.")
        if any(s < 0 for s in shape):
            raise ValueError(f"Negative extent in shape {tuple(shape)}.")
        if stride is None:
            stride = list(default_stride(shape))
        else:
            stride = [int(s) for s in stride]
            if len(stride) != len(shape):
                raise ValueError(f"Stride {tuple(stride)} does not match shape {tuple(shape)}.")

        self._dtype = as_dtype(dtype)
        self._shape = shape
        self._stride = stride

    @property
    def dtype(self) -> DType:
        """DType: Element kind."""
        return self._dtype

    def dim(self) -> int:
        """Number of axes."""
        return len(self._shape)

    def shape(self, i: int) -> int:
        """Extent of axis ``i`` (negative indices count from the end)."""
        return self._shape[i]

    def stride(self, i: int) -> int:
        """Element stride of axis ``i`` (negative indices count from the end)."""
        return self._stride[i]

    def set_shape(self, i: int, value: int) -> None:
        self._shape[i] = int(value)

    def set_stride(self, i: int, value: int) -> None:
        self._stride[i] = int(value)

    @property
    def shape_vec(self) -> ShapeVec:
        """tuple of int: All extents."""
        return tuple(self._shape)

    @property
    def stride_vec(self) -> ShapeVec:
        """tuple of int: All strides."""
        return tuple(self._stride)

    def numel(self) -> int:
        """Number of logical elements (product of the extents; 1 for rank 0)."""
        n = 1
        for s in self._shape:
            n *= s
        return n

    def get_default_stride(self) -> ShapeVec:
        """Row-major strides for the current shape, ignoring the stored strides."""
        return default_stride(self._shape)

    def set_default_stride(self) -> None:
        """Reset the stored strides to the row-major default."""
        self._stride = list(self.get_default_stride())

    def is_contiguous(self) -> bool:
        """
        Whether the strides equal the row-major default for the shape.

        Axes of extent 1 never move the offset, so their stride is ignored.
        """
        expected = self.get_default_stride()
        return all(
            extent == 1 or stride == want
            for extent, stride, want in zip(self._shape, self._stride, expected)
        )

    def is_compatible(self, other: "TensorDesc", allow_broadcast: bool = False) -> bool:
        """
        Shape compatibility check.

        Parameters
        ----------
        other : TensorDesc
            Descriptor to compare with.
        allow_broadcast : bool, default False
            If False, shapes must be equal. If True, shapes are right-aligned
            and an extent of 1 on either side matches any extent.

        Examples
        --------
        >>> a = TensorDesc(DType.Float32, (4, 1, 3))
        >>> b = TensorDesc(DType.Float32, (1, 5, 3))
        >>> a.is_compatible(b, allow_broadcast=True)
        True
        >>> a.is_compatible(b)
        False
        """
        if not allow_broadcast:
            return self._shape == other._shape
        return broadcast_shapes(self._shape, other._shape) is not None

    def copy(self) -> "TensorDesc":
        return TensorDesc(self._dtype, self._shape, self._stride)

    def to_dict(self) -> dict:
        """Plain-data form of the descriptor (dtype name, shape, stride)."""
        return {"dtype": self._dtype.value, "shape": list(self._shape), "stride": list(self._stride)}

    @classmethod
    def from_dict(cls, state: dict) -> "TensorDesc":
        return cls(state["dtype"], state["shape"], state["stride"])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TensorDesc):
            return NotImplemented
        return (
            self._dtype == other._dtype
            and self._shape == other._shape
            and self._stride == other._stride
        )

    def __hash__(self) -> int:
        return hash((self._dtype, tuple(self._shape), tuple(self._stride)))

    def __repr__(self) -> str:
        return f"TensorDesc(dtype={self._dtype.value}, shape={self.shape_vec}, stride={self.stride_vec})"
