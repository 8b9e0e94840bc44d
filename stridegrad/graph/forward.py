import logging
from typing import Dict, List, Optional, Sequence, Union

from stridegrad.errors import GraphError
from stridegrad.graph.graph import Graph, GTensor, get_default_graph
from stridegrad.op import OpContext
from stridegrad.tensor import Tensor

logger = logging.getLogger(__name__)


class GraphForwardContext(OpContext):
    """
    Evaluation context for one graph.

    Placeholders are bound by name with :meth:`feed`; :meth:`eval` then runs
    the eager operator of every node the requested ones depend on, in arena
    order. Operator diagnostics and unbound placeholders are recorded on the
    context like any operator diagnostic.

    Parameters
    ----------
    graph : Graph, optional
        Graph to evaluate. Defaults to the current default graph.

    Examples
    --------
    >>> ctx = GraphForwardContext(graph)
    >>> ctx.feed("a", scalar(DType.Float32, 3.0))
    >>> value = ctx.eval(a.grad(f))
    >>> if not ctx.ok:
    ...     print(ctx.error_str)
    """
    def __init__(self, graph: Optional[Graph] = None) -> None:
        super().__init__()
        self.graph = graph if graph is not None else get_default_graph()
        self._feeds: Dict[str, Tensor] = {}

    def feed(self, name: str, value: Tensor) -> "GraphForwardContext":
        """Bind the placeholder called ``name`` to ``value``."""
        if not isinstance(value, Tensor):
            raise TypeError(f"feed() expects a Tensor, got {type(value).__name__}.")
        self._feeds[name] = value
        return self

    def fed(self, name: str) -> Optional[Tensor]:
        return self._feeds.get(name)

    def eval(self, nodes: Union[GTensor, Sequence[GTensor]]) -> Union[Tensor, List[Tensor], None]:
        """
        Evaluate ``nodes``.

        Values are memoised for the duration of the call, so a node shared
        by several requested nodes is computed once.

        Parameters
        ----------
        nodes : GTensor or sequence of GTensor
            Nodes to compute.

        Returns
        -------
        Tensor, list of Tensor or None
            A tensor for a single node, a list for a sequence, and ``None``
            when evaluation failed; see :attr:`error_str`.

        Raises
        ------
        GraphError
            If a node is not part of this context's graph.
        """
        single = isinstance(nodes, GTensor)
        targets = [nodes] if single else list(nodes)
        for t in targets:
            if not isinstance(t, GTensor) or t.graph is not self.graph:
                raise GraphError(f"{t!r} is not a node of the evaluated graph.")

        ops = self.graph.dependency_ops(targets)
        values: Dict[int, Tensor] = {}
        nr_errors = len(self.errors)
        for op in ops:
            outputs = op.forward(self, [values[t.index] for t in op.inputs])
            if len(self.errors) > nr_errors:
                logger.debug("evaluation stopped at %s", op.name)
                return None
            for node, value in zip(op.outputs, outputs):
                values[node.index] = value
        logger.debug("evaluated %d ops", len(ops))

        result = [values[t.index] for t in targets]
        return result[0] if single else result
