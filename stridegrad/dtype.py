from enum import Enum
from typing import Any, Callable, Dict, Union

import numpy as np


class DType(Enum):
    """
    Scalar element kinds supported by the tensor runtime.

    Each member is tagged with the numpy scalar type used to store its
    elements. The tag is the single dispatch key used by kernels: generic
    code branches on ``dtype`` once per call and then runs a vectorised
    numpy path specialised for ``dtype.np_dtype``.

    Examples
    --------
    >>> DType.Float32.np_dtype
    <class 'numpy.float32'>
    >>> DType.from_numpy(np.int64)
    <DType.Int64: 'int64'>
    """
    Int8 = "int8"
    UInt8 = "uint8"
    Int32 = "int32"
    UInt32 = "uint32"
    Int64 = "int64"
    UInt64 = "uint64"
    Float32 = "float32"
    Float64 = "float64"

    @property
    def np_dtype(self) -> type:
        """type: The numpy scalar type backing this dtype."""
        return _NP_DTYPES[self]

    @property
    def itemsize(self) -> int:
        """int: Size of one element in bytes."""
        return np.dtype(self.np_dtype).itemsize

    @property
    def is_integer(self) -> bool:
        """bool: True for the signed and unsigned integer kinds."""
        return self not in (DType.Float32, DType.Float64)

    @property
    def is_float(self) -> bool:
        """bool: True for the floating point kinds."""
        return not self.is_integer

    @staticmethod
    def from_numpy(dtype: Any) -> "DType":
        """
        Map a numpy dtype (or anything ``numpy.dtype`` accepts) to a ``DType``.

        Raises
        ------
        ValueError
            If the numpy dtype has no counterpart in the runtime.
        """
        name = np.dtype(dtype).name
        try:
            return DType(name)
        except ValueError:
            raise ValueError(f"Unsupported numpy dtype: {name!r}") from None

    def __repr__(self) -> str:
        return f"DType.{self.name}"


_NP_DTYPES: Dict[DType, type] = {
    DType.Int8: np.int8,
    DType.UInt8: np.uint8,
    DType.Int32: np.int32,
    DType.UInt32: np.uint32,
    DType.Int64: np.int64,
    DType.UInt64: np.uint64,
    DType.Float32: np.float32,
    DType.Float64: np.float64,
}

DTypeLike = Union[DType, str, type, np.dtype]


def as_dtype(dtype: DTypeLike) -> DType:
    """
    Normalise a dtype specifier to a :class:`DType`.

    Accepts a ``DType`` member, its value string (``"float32"``), or any
    numpy dtype specifier.
    """
    if isinstance(dtype, DType):
        return dtype
    if isinstance(dtype, str):
        try:
            return DType(dtype.lower())
        except ValueError:
            pass
    return DType.from_numpy(dtype)


def dispatch(dtype: DType, table: Dict[DType, Callable[..., Any]], *args: Any, **kwargs: Any) -> Any:
    """
    Run the kernel registered for ``dtype`` in ``table``.

    Parameters
    ----------
    dtype : DType
        Runtime dtype tag.
    table : dict[DType, callable]
        Per-dtype kernels. Missing kinds are a programming error.

    Raises
    ------
    TypeError
        If no kernel is registered for ``dtype``.
    """
    try:
        kernel = table[dtype]
    except KeyError:
        raise TypeError(f"No kernel registered for {dtype!r}") from None
    return kernel(*args, **kwargs)


INTEGER_DTYPES = tuple(d for d in DType if d.is_integer)
FLOAT_DTYPES = tuple(d for d in DType if d.is_float)
