import logging
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from stridegrad.dtype import DTypeLike
from stridegrad.errors import GraphError
from stridegrad.op import Op, OpContext, OpDesc
from stridegrad.tensor import Scalar, Tensor

logger = logging.getLogger(__name__)

GradKey = Tuple[int, int]


class GTensor:
    """
    Symbolic handle to one output of a graph operator.

    A handle is just ``(graph, index)``; the graph owns every node and keeps
    per-loss gradients in its own side table, so handles never reference
    each other. Node dtype and shape are generally unknown until evaluation
    (placeholders may declare them).

    The arithmetic, comparison and shape methods mirror :class:`Tensor` and
    append operator nodes to the handle's graph instead of computing.

    Examples
    --------
    >>> a = G.placeholder("a", [], DType.Float32)
    >>> b = G.placeholder("b", [], DType.Float32)
    >>> f = a * b
    >>> f.graph.backward(f)
    >>> a.grad(f)   # a node computing b * ones_like(f)
    """
    def __init__(self, graph: "Graph", index: int, op_index: int, output_index: int) -> None:
        self._graph = graph
        self._index = index
        self._op_index = op_index
        self._output_index = output_index

    @property
    def graph(self) -> "Graph":
        return self._graph

    @property
    def index(self) -> int:
        """int: Position of the node in its graph's tensor arena."""
        return self._index

    @property
    def op(self) -> "GraphOp":
        """GraphOp: The operator node that produces this tensor."""
        return self._graph.ops[self._op_index]

    @property
    def output_index(self) -> int:
        return self._output_index

    @property
    def name(self) -> str:
        op = self.op
        return op.name if op.nr_outputs == 1 else f"{op.name}:{self._output_index}"

    def grad(self, loss: "GTensor") -> Optional["GTensor"]:
        """
        Gradient node of ``loss`` with respect to this node.

        Returns ``None`` when ``loss`` does not depend on this node or
        ``backward(loss)`` has not been run.
        """
        return self._graph.get_grad(self, loss)

    def __repr__(self) -> str:
        return f"GTensor({self.name!r}, index={self._index})"

    def __add__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.add(self, _ensure_node(other, self))

    def __radd__(self, other: Scalar) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.add(_ensure_node(other, self), self)

    def __sub__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.sub(self, _ensure_node(other, self))

    def __rsub__(self, other: Scalar) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.sub(_ensure_node(other, self), self)

    def __mul__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.mul(self, _ensure_node(other, self))

    def __rmul__(self, other: Scalar) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.mul(_ensure_node(other, self), self)

    def __truediv__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.div(self, _ensure_node(other, self))

    def __rtruediv__(self, other: Scalar) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.div(_ensure_node(other, self), self)

    def __pow__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.pow(self, _ensure_node(other, self))

    def __neg__(self) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.neg(self)

    def __gt__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.ge(self, _ensure_node(other, self))

    def __lt__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.le(self, _ensure_node(other, self))

    def __ge__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.geq(self, _ensure_node(other, self))

    def __le__(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.leq(self, _ensure_node(other, self))

    def __matmul__(self, other: "GTensor") -> "GTensor":
        from stridegrad.graph import functional as G
        return G.matmul(self, other)

    def eq(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.eq(self, _ensure_node(other, self))

    def neq(self, other: Union["GTensor", Scalar]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.neq(self, _ensure_node(other, self))

    def cast(self, dtype: DTypeLike) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.cast(self, dtype)

    def sum(self, axis: int, keepdims: bool = False) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.reduce_sum(self, axis, keepdims)

    def mean(self, axis: int, keepdims: bool = False) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.reduce_mean(self, axis, keepdims)

    def min(self, axis: int, keepdims: bool = False) -> List["GTensor"]:
        """``[values, indices]`` nodes."""
        from stridegrad.graph import functional as G
        return G.reduce_min(self, axis, keepdims)

    def max(self, axis: int, keepdims: bool = False) -> List["GTensor"]:
        """``[values, indices]`` nodes."""
        from stridegrad.graph import functional as G
        return G.reduce_max(self, axis, keepdims)

    def reshape(self, shape: Sequence[int]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.reshape(self, shape)

    def permute(self, axes: Sequence[int]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.permute(self, axes)

    def expand(self, shape: Sequence[int]) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.expand(self, shape)

    def squeeze(self, axis: int) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.squeeze(self, axis)

    def unsqueeze(self, axis: int) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.unsqueeze(self, axis)

    def narrow(self, axis: int, start: int, length: int) -> "GTensor":
        from stridegrad.graph import functional as G
        return G.narrow(self, axis, start, length)

    def index_select(self, axis: int, indices: "GTensor") -> "GTensor":
        from stridegrad.graph import functional as G
        return G.index_select(self, axis, indices)

    def gather(self, axis: int, indices: "GTensor") -> "GTensor":
        from stridegrad.graph import functional as G
        return G.gather(self, axis, indices)


def _ensure_node(x: Union[GTensor, Scalar], like: GTensor) -> GTensor:
    """Python scalars become a fill node shaped and typed like ``like``."""
    if isinstance(x, GTensor):
        return x
    from stridegrad.graph import functional as G
    return G.fill_like(like, x)


class GraphOp:
    """
    Operator node of a :class:`Graph`.

    Forward evaluation delegates to an eager :class:`Op`: ``eager_type``
    instantiated with :meth:`eager_desc`, run on :meth:`eager_inputs`. Both
    hooks see the concrete input tensors, which lets a node derive its eager
    descriptor from runtime shapes (e.g. the extent of a reference input).

    Subclasses encode the calculus rule in :meth:`grad`, building new
    forward nodes in the same graph. The default rule propagates no
    gradient, which is what non-differentiable operators use.

    Attributes
    ----------
    eager_type : type
        Eager operator class evaluated by :meth:`forward`.
    """
    eager_type: ClassVar[Optional[Type[Op]]] = None

    def __init__(self, desc: Optional[Any] = None) -> None:
        self.desc = desc
        self.graph: Optional["Graph"] = None
        self.index = -1
        self.name = ""
        self.inputs: List[GTensor] = []
        self.outputs: List[GTensor] = []

    @property
    def nr_outputs(self) -> int:
        return 1

    def eager_desc(self, values: List[Tensor]) -> Optional[OpDesc]:
        return self.desc

    def eager_inputs(self, values: List[Tensor]) -> List[Tensor]:
        return values

    def eager_op(self, values: List[Tensor]) -> Op:
        return self.eager_type(self.eager_desc(values))

    def forward(self, ctx: OpContext, values: List[Tensor]) -> List[Tensor]:
        """Evaluate on concrete ``values``; diagnostics go to ``ctx``."""
        return self.eager_op(values).execute(ctx, self.eager_inputs(values))

    def grad(self, grads: List[Optional[GTensor]]) -> List[Optional[GTensor]]:
        """
        Input gradients from output gradients.

        Parameters
        ----------
        grads : list of GTensor or None
            Gradient node per output, ``None`` for outputs the loss does not
            depend on. At least one entry is not ``None``.

        Returns
        -------
        list of GTensor or None
            One entry per input; ``None`` means no gradient flows there.
        """
        return [None] * len(self.inputs)

    def backward(self, graph: "Graph", loss: GTensor) -> None:
        """Read resolved output gradients and contribute to every input."""
        grads = [graph.get_grad(out, loss) for out in self.outputs]
        if all(g is None for g in grads):
            input_grads = [None] * len(self.inputs)
        else:
            input_grads = self.grad(grads)
        for node, g in zip(self.inputs, input_grads):
            graph.set_grad(node, loss, g)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, inputs={[t.index for t in self.inputs]})"


class _Pending:
    __slots__ = ("expected", "parts")

    def __init__(self, expected: int) -> None:
        self.expected = expected
        self.parts: List[Optional[GTensor]] = []


class Graph:
    """
    Arena of operator nodes and their output tensors.

    Nodes are appended and never removed. Because an operator can only
    consume tensors that already exist, arena order is a topological order.

    Gradients live in a side table keyed by ``(node index, loss index)``.
    During :meth:`backward` an entry is *pending* until every consumer of
    the node inside the loss's dependency set has contributed; the partial
    gradients are then summed into a single node.
    """
    def __init__(self) -> None:
        self._ops: List[GraphOp] = []
        self._tensors: List[GTensor] = []
        self._ops_by_name: Dict[str, GraphOp] = {}
        self._grads: Dict[GradKey, Optional[GTensor]] = {}
        self._pending: Dict[GradKey, _Pending] = {}
        self._losses: set = set()

    @property
    def ops(self) -> List[GraphOp]:
        return self._ops

    @property
    def tensors(self) -> List[GTensor]:
        return self._tensors

    def find_op(self, name: str) -> Optional[GraphOp]:
        return self._ops_by_name.get(name)

    def as_default(self) -> "default_graph":
        """Context manager making this graph the default one."""
        return default_graph(self)

    def add_op(self, op: GraphOp, inputs: Sequence[GTensor], name: Optional[str] = None) -> List[GTensor]:
        """
        Append ``op`` consuming ``inputs`` and create its output nodes.

        Raises
        ------
        GraphError
            If an input belongs to another graph, ``op`` was already added,
            or ``name`` is taken.
        """
        if op.graph is not None:
            raise GraphError(f"{op!r} already belongs to a graph.")
        for t in inputs:
            if not isinstance(t, GTensor) or t.graph is not self:
                raise GraphError(f"input {t!r} is not a node of this graph.")
        index = len(self._ops)
        name = name if name is not None else f"{type(op).__name__}_{index}"
        if name in self._ops_by_name:
            raise GraphError(f"an operator named {name!r} already exists.")

        op.graph = self
        op.index = index
        op.name = name
        op.inputs = list(inputs)
        outputs = []
        for i in range(op.nr_outputs):
            t = GTensor(self, len(self._tensors), index, i)
            self._tensors.append(t)
            outputs.append(t)
        op.outputs = outputs
        self._ops.append(op)
        self._ops_by_name[name] = op
        return list(outputs)

    def op(self, op_type: Type[GraphOp], desc: Optional[Any] = None, *inputs: GTensor,
           name: Optional[str] = None) -> List[GTensor]:
        """Instantiate ``op_type(desc)`` over ``inputs``; returns its outputs."""
        return self.add_op(op_type(desc), inputs, name)

    def dependency_ops(self, targets: Iterable[GTensor]) -> List[GraphOp]:
        """Operators the ``targets`` transitively depend on, in arena order."""
        seen = set()
        stack = [t.op for t in targets]
        while stack:
            op = stack.pop()
            if op.index in seen:
                continue
            seen.add(op.index)
            stack.extend(t.op for t in op.inputs)
        return [self._ops[i] for i in sorted(seen)]

    def _check_node(self, node: GTensor) -> None:
        if not isinstance(node, GTensor) or node.graph is not self:
            raise GraphError(f"{node!r} is not a node of this graph.")

    def get_grad(self, node: GTensor, loss: GTensor) -> Optional[GTensor]:
        """
        Resolved gradient of ``loss`` w.r.t. ``node``, or ``None``.

        Raises
        ------
        GraphError
            If the gradient still waits for contributions from consumers.
        """
        self._check_node(node)
        self._check_node(loss)
        key = (node.index, loss.index)
        if key in self._pending:
            raise GraphError(f"gradient of {node!r} w.r.t. {loss!r} is still pending.")
        return self._grads.get(key)

    def set_grad(self, node: GTensor, loss: GTensor, grad: Optional[GTensor]) -> None:
        """
        Record one consumer's contribution to ``node``'s gradient.

        Once all expected contributions arrived they are merged: ``None``
        parts are dropped, and if every part is ``None`` the node resolves
        to ``None``.
        """
        key = (node.index, loss.index)
        pending = self._pending.get(key)
        if pending is None:
            raise GraphError(f"gradient of {node!r} w.r.t. {loss!r} is not expected (already set?).")
        pending.parts.append(grad)
        if len(pending.parts) == pending.expected:
            del self._pending[key]
            self._grads[key] = _accumulate(pending.parts)

    def _discard(self, loss: GTensor) -> None:
        # Forget a failed pass so that it can be run again.
        for table in (self._pending, self._grads):
            for key in [k for k in table if k[1] == loss.index]:
                del table[key]

    def backward(self, loss: GTensor) -> None:
        """
        Build gradient nodes of ``loss`` w.r.t. every node it depends on.

        The loss is seeded with ``ones_like(loss)``; operators are then
        visited in reverse arena order so that each one only runs after all
        consumers of its outputs contributed. Once a pass completed, calling it
        again for the same loss is a no-op; a pass interrupted by an exception
        leaves no gradients of that loss behind.
        """
        from stridegrad.graph import functional as G

        self._check_node(loss)
        if loss.index in self._losses:
            return
        ops = self.dependency_ops([loss])

        consumers: Dict[int, int] = {loss.index: 1}
        for op in ops:
            for t in op.outputs:
                consumers.setdefault(t.index, 0)
            for t in op.inputs:
                consumers[t.index] = consumers.get(t.index, 0) + 1
        for index, count in consumers.items():
            key = (index, loss.index)
            if count == 0:
                self._grads[key] = None
            else:
                self._pending[key] = _Pending(count)

        try:
            self.set_grad(loss, loss, G.ones_like(loss))
            for op in reversed(ops):
                op.backward(self, loss)
        except Exception:
            self._discard(loss)
            raise
        self._losses.add(loss.index)
        logger.debug("backward(%s): visited %d ops, graph has %d ops", loss.name, len(ops), len(self._ops))


def _accumulate(parts: List[Optional[GTensor]]) -> Optional[GTensor]:
    from stridegrad.graph import functional as G

    parts = [p for p in parts if p is not None]
    if not parts:
        return None
    total = parts[0]
    for p in parts[1:]:
        total = G.add(total, p)
    return total


_default_graph: Optional[Graph] = None
"""Graph: Graph that builders use when no input node determines one.

Swapped by the :class:`default_graph` context manager.
"""


def get_default_graph() -> Graph:
    """Return the current default graph, creating one on first use."""
    global _default_graph
    if _default_graph is None:
        _default_graph = Graph()
    return _default_graph


def reset_default_graph() -> Graph:
    """Replace the default graph with a fresh one and return it."""
    global _default_graph
    _default_graph = Graph()
    return _default_graph


class default_graph:
    """
    Context manager that temporarily replaces the default graph.

    Examples
    --------
    >>> g = Graph()
    >>> with g.as_default():
    ...     x = G.placeholder("x")   # added to g
    >>> # Outside the context, the previous default graph is restored.

    Notes
    -----
    - Contexts nest; the previous default graph is restored on exit.
    """
    def __init__(self, graph: Graph) -> None:
        self.graph = graph

    def __enter__(self) -> Graph:
        global _default_graph
        self.prev = _default_graph
        _default_graph = self.graph
        return self.graph

    def __exit__(self, *args) -> None:
        global _default_graph
        _default_graph = self.prev


def graph_of(*nodes: Any) -> Graph:
    """
    Graph shared by every :class:`GTensor` in ``nodes``.

    Falls back to the default graph when ``nodes`` holds no graph tensor.

    Raises
    ------
    GraphError
        If the nodes belong to different graphs.
    """
    graph = None
    for n in nodes:
        if isinstance(n, GTensor):
            if graph is None:
                graph = n.graph
            elif n.graph is not graph:
                raise GraphError("cannot combine nodes from different graphs.")
    return graph if graph is not None else get_default_graph()
