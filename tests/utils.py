import numpy as np
import torch

from stridegrad.dtype import DType
from stridegrad.graph import GraphForwardContext
from stridegrad.tensor import Tensor, from_numpy

ATOL = 1e-6
RTOL = 1e-5

def make_tensor(x_np: np.ndarray, dtype: DType = DType.Float32) -> Tensor:
    return from_numpy(np.asarray(x_np), dtype)

def make_torch(x_np: np.ndarray, requires_grad: bool = True) -> torch.Tensor:
    return torch.tensor(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)

def make_index(idx_np) -> Tensor:
    return from_numpy(np.asarray(idx_np), DType.Int64)

def tdata(t: Tensor) -> np.ndarray:
    return t.numpy()

def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = tdata(a) if isinstance(a, Tensor) else np.asarray(a)
    b = b.detach().cpu().numpy() if isinstance(b, torch.Tensor) else np.asarray(b)
    assert a.shape == b.shape, f"shape {a.shape} != {b.shape}"
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a-b))}"

def evaluate(graph, feeds, nodes):
    ctx = GraphForwardContext(graph)
    for name, value in feeds.items():
        ctx.feed(name, value)
    out = ctx.eval(nodes)
    assert ctx.ok, ctx.error_str
    return out
