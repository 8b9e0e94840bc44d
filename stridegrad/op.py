import logging
from dataclasses import dataclass
from typing import ClassVar, List, Optional, Sequence, Tuple, Type

from stridegrad.desc import MAX_DIM, broadcast_shapes
from stridegrad.tensor import Tensor

logger = logging.getLogger(__name__)

TensorVec = List[Tensor]


@dataclass(frozen=True)
class OpDesc:
    """Base class of the immutable, operator-specific parameter bundles."""


class OpContext:
    """
    Diagnostic sink shared by one or more operator executions.

    Operators never raise on bad inputs: ``check_inputs`` records a message
    here and :meth:`Op.execute` then skips ``compute``. Callers inspect
    :attr:`ok` / :attr:`error_str` before using outputs.

    Examples
    --------
    >>> ctx = OpContext()
    >>> outputs = OpAdd().execute(ctx, [a, b])
    >>> if not ctx.ok:
    ...     print(ctx.error_str)
    """
    def __init__(self) -> None:
        self._errors: List[Tuple[str, str]] = []

    def error(self, op: "Op", message: str) -> None:
        """Record a diagnostic ``message`` attributed to ``op``."""
        name = op.name if isinstance(op, Op) else str(op)
        logger.debug("%s validation failed: %s", name, message)
        self._errors.append((name, message))

    @property
    def errors(self) -> List[Tuple[str, str]]:
        """list of (str, str): Recorded ``(op name, message)`` pairs."""
        return list(self._errors)

    @property
    def ok(self) -> bool:
        """bool: True when no diagnostic has been recorded."""
        return not self._errors

    @property
    def is_error(self) -> bool:
        return bool(self._errors)

    @property
    def error_str(self) -> str:
        """str: All diagnostics, one ``"<op>: <message>"`` per line."""
        return "\n".join(f"{name}: {message}" for name, message in self._errors)

    def clear(self) -> None:
        self._errors.clear()


class Op:
    """
    Eager operator with a two-phase validate/compute contract.

    Subclasses implement :meth:`check_inputs`, which records diagnostics on
    the context and must not raise for bad inputs, and :meth:`compute`,
    which may assume the inputs passed validation.

    Attributes
    ----------
    desc_type : type or None
        Expected :class:`OpDesc` subclass; ``None`` for operators without
        parameters.
    """
    desc_type: ClassVar[Optional[Type[OpDesc]]] = None

    def __init__(self, desc: Optional[OpDesc] = None) -> None:
        self._desc = desc

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def desc(self) -> Optional[OpDesc]:
        return self._desc

    def set_desc(self, desc: Optional[OpDesc]) -> "Op":
        self._desc = desc
        return self

    def check_inputs(self, ctx: OpContext, inputs: TensorVec) -> None:
        pass

    def compute(self, ctx: OpContext, inputs: TensorVec) -> TensorVec:
        raise NotImplementedError

    def execute(self, ctx: OpContext, inputs: Sequence[Tensor]) -> TensorVec:
        """
        Validate ``inputs`` and, if no diagnostic was recorded, compute.

        Returns
        -------
        list of Tensor
            The outputs, or an empty list when validation failed.
        """
        inputs = list(inputs)
        nr_errors = len(ctx.errors)
        if self.desc_type is not None and not isinstance(self._desc, self.desc_type):
            ctx.error(self, f"expected a {self.desc_type.__name__}, got {self._desc!r}.")
        else:
            self.check_inputs(ctx, inputs)
        if len(ctx.errors) > nr_errors:
            return []
        return list(self.compute(ctx, inputs))


def normalize_axis(axis: int, ndim: int) -> int:
    """Map a possibly negative axis to ``[0, ndim)`` (no range check)."""
    return axis + ndim if axis < 0 else axis


def check_nr_inputs(ctx: OpContext, op: Op, inputs: TensorVec, n: int) -> bool:
    if len(inputs) != n:
        ctx.error(op, f"expected {n} inputs, got {len(inputs)}.")
        return False
    return True


def check_nonempty_inputs(ctx: OpContext, op: Op, inputs: TensorVec) -> bool:
    if not inputs:
        ctx.error(op, "expected at least one input.")
        return False
    return True


def check_compatible_dtype(ctx: OpContext, op: Op, inputs: TensorVec) -> bool:
    dtypes = [t.dtype for t in inputs]
    if any(d != dtypes[0] for d in dtypes):
        ctx.error(op, f"inputs must share a dtype, got {[d.value for d in dtypes]}.")
        return False
    return True


def check_compatible_dim(ctx: OpContext, op: Op, inputs: TensorVec) -> bool:
    dims = [t.ndim for t in inputs]
    if any(d != dims[0] for d in dims):
        ctx.error(op, f"inputs must have the same number of axes, got {dims}.")
        return False
    return True


def check_compatible_shape(ctx: OpContext, op: Op, inputs: TensorVec, allow_broadcast: bool = True) -> bool:
    shapes = [t.shape for t in inputs]
    if allow_broadcast:
        ok = broadcast_shapes(*shapes) is not None
    else:
        ok = all(s == shapes[0] for s in shapes)
    if not ok:
        kind = "broadcast-compatible" if allow_broadcast else "equal"
        ctx.error(op, f"input shapes must be {kind}, got {', '.join(str(s) for s in shapes)}.")
        return False
    return True


def check_input_dtype_int(ctx: OpContext, op: Op, inputs: TensorVec, i: int) -> bool:
    if not inputs[i].dtype.is_integer:
        ctx.error(op, f"input #{i} must hold an integer dtype, got {inputs[i].dtype.value}.")
        return False
    return True


def check_input_dim(ctx: OpContext, op: Op, inputs: TensorVec, i: int, ndim: int) -> bool:
    if inputs[i].ndim != ndim:
        ctx.error(op, f"input #{i} must have {ndim} axes, got {inputs[i].ndim}.")
        return False
    return True


def check_shape(ctx: OpContext, op: Op, shape: Sequence[int]) -> bool:
    if len(shape) > MAX_DIM or any(s < 0 for s in shape):
        ctx.error(op, f"invalid shape {tuple(shape)}.")
        return False
    return True


def check_extent(ctx: OpContext, op: Op, name: str, extent: int) -> bool:
    if extent < 0:
        ctx.error(op, f"{name} must not be negative, got {extent}.")
        return False
    return True


def check_axis(ctx: OpContext, op: Op, axis: int, ndim: int) -> bool:
    if not -ndim <= axis < ndim:
        ctx.error(op, f"invalid axis {axis} for a tensor with {ndim} axes.")
        return False
    return True
