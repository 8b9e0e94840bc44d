from stridegrad.graph.forward import GraphForwardContext
from stridegrad.graph.graph import (
    Graph,
    GraphOp,
    GTensor,
    default_graph,
    get_default_graph,
    graph_of,
    reset_default_graph,
)
from stridegrad.graph import functional
