import weakref
from typing import Any, Optional

import numpy as np

from stridegrad.dtype import DType, DTypeLike, as_dtype


class Storage:
    """
    Flat, dtype-tagged element buffer shared by one or more tensors.

    A storage is created when a tensor is built from scratch (``empty``,
    ``fill``, cloning) and handed out again by view operators (split,
    narrow, reshape of a contiguous tensor, permute, expand). Tensors
    register themselves as holders; :attr:`ref_count` reports how many live
    tensors currently reference the buffer. The buffer itself is released by
    the interpreter once the last holder goes away.

    Parameters
    ----------
    dtype : DType or dtype-like
        Element kind of the buffer.
    size : int, optional
        Number of elements to allocate (uninitialised). Ignored if ``data``
        is given.
    data : numpy.ndarray, optional
        Existing buffer to adopt. It is flattened and converted to the
        storage dtype; no copy is made when it already is a flat array of
        that dtype.
    """

    def __init__(
        self,
        dtype: DTypeLike,
        size: int = 0,
        data: Optional[np.ndarray] = None,
    ) -> None:
        self._dtype = as_dtype(dtype)
        if data is None:
            data = np.empty(int(size), dtype=self._dtype.np_dtype)
        else:
            data = np.ascontiguousarray(data, dtype=self._dtype.np_dtype).reshape(-1)
        self._data = data
        self._holders = weakref.WeakSet()

    @property
    def dtype(self) -> DType:
        """DType: Element kind of the buffer."""
        return self._dtype

    @property
    def data(self) -> np.ndarray:
        """numpy.ndarray: The flat 1-D element buffer."""
        return self._data

    def size(self) -> int:
        """Number of elements in the buffer."""
        return int(self._data.shape[0])

    def memsize(self) -> int:
        """Size of the buffer in bytes."""
        return int(self._data.nbytes)

    @property
    def ref_count(self) -> int:
        """int: Number of live tensors referencing this storage."""
        return len(self._holders)

    def attach(self, holder: Any) -> None:
        self._holders.add(holder)

    def detach(self, holder: Any) -> None:
        self._holders.discard(holder)

    def clone(self, start: int = 0, length: Optional[int] = None) -> "Storage":
        """
        Copy the element range ``[start, start + length)`` into a new storage.

        Parameters
        ----------
        start : int, default 0
            First element to copy.
        length : int, optional
            Number of elements; defaults to everything from ``start`` to the
            end of the buffer. Ranges reaching past the end are clipped.

        Returns
        -------
        Storage
            A new, unshared buffer of the same dtype.
        """
        stop = self.size() if length is None else min(self.size(), start + length)
        return Storage(self._dtype, data=self._data[start:stop].copy())

    def __repr__(self) -> str:
        values = ", ".join(str(v) for v in self._data[:16].tolist())
        if self.size() > 16:
            values += ", ..."
        return f"Storage(dtype={self._dtype.value}, size={self.size()}, data=[{values}])"
