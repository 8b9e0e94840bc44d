import math

import numpy as np
import pytest
import torch

from stridegrad.dtype import DType
from stridegrad.errors import GraphError
from stridegrad.graph import functional as G
from stridegrad.tensor import from_flat_values, scalar
from tests.utils import assert_close, evaluate, make_index, make_tensor, make_torch


def _scalars(**values):
    return {name: scalar(DType.Float32, v) for name, v in values.items()}


def test_product_rule(graph):
    a = G.placeholder("a", [], DType.Float32)
    b = G.placeholder("b", [], DType.Float32)
    f = a * b
    graph.backward(f)

    ga, gb = evaluate(graph, _scalars(a=3.0, b=5.0), [a.grad(f), b.grad(f)])
    assert ga.item() == 5.0
    assert gb.item() == 3.0


def test_reciprocal_rule(graph):
    a = G.placeholder("a", [], DType.Float32)
    f = G.reciprocal(a)
    graph.backward(f)
    assert evaluate(graph, _scalars(a=2.0), a.grad(f)).item() == -0.25


def test_scalar_division_rule(graph):
    a = G.placeholder("a")
    f = 1.0 / a
    graph.backward(f)
    assert evaluate(graph, _scalars(a=2.0), a.grad(f)).item() == -0.25


def test_multiple_consumers_accumulate(graph):
    a = G.placeholder("a")
    f = a * a + a
    graph.backward(f)
    assert evaluate(graph, _scalars(a=3.0), a.grad(f)).item() == 7.0


def test_pow_rule(graph):
    a = G.placeholder("a")
    b = G.placeholder("b")
    f = a ** b
    graph.backward(f)
    ga, gb = evaluate(graph, _scalars(a=2.0, b=3.0), [a.grad(f), b.grad(f)])
    assert ga.item() == pytest.approx(12.0)
    assert gb.item() == pytest.approx(8.0 * math.log(2.0), rel=1e-6)


def test_comparisons_propagate_no_gradient(graph):
    a = G.placeholder("a")
    b = G.placeholder("b")
    f = (a > b) * a
    graph.backward(f)
    assert b.grad(f) is None
    assert evaluate(graph, _scalars(a=3.0, b=5.0), a.grad(f)).item() == 0.0


def test_unrelated_node_has_no_gradient(graph):
    a = G.placeholder("a")
    c = G.placeholder("c")
    f = G.exp(a)
    graph.backward(f)
    assert c.grad(f) is None
    assert f.grad(f) is not None
    assert a.grad(c) is None


def test_cast_gradient_is_cast_back_to_input_dtype(graph):
    a = G.placeholder("a", [2], DType.Int32)
    f = a.cast(DType.Float32) * 2.5
    graph.backward(f)
    g = evaluate(graph, {"a": from_flat_values(DType.Int32, [1, 4])}, a.grad(f))
    assert g.dtype is DType.Int32
    assert g.tolist() == [2, 2]


def test_second_derivative(graph):
    a = G.placeholder("a")
    f = a * a * a
    graph.backward(f)
    da = a.grad(f)
    graph.backward(da)
    dda = a.grad(da)
    first, second = evaluate(graph, _scalars(a=2.0), [da, dda])
    assert first.item() == 12.0
    assert second.item() == 12.0


def test_backward_is_idempotent(graph):
    a = G.placeholder("a")
    f = G.sin(a)
    graph.backward(f)
    grad = a.grad(f)
    nr_ops = len(graph.ops)
    graph.backward(f)
    assert a.grad(f) is grad
    assert len(graph.ops) == nr_ops


def test_gradient_cannot_be_set_twice(graph):
    a = G.placeholder("a")
    f = G.neg(a)
    graph.backward(f)
    with pytest.raises(GraphError):
        graph.set_grad(a, f, a)


@pytest.mark.parametrize(
    "build, ref",
    [
        (G.sin, torch.sin),
        (G.cos, torch.cos),
        (G.tan, torch.tan),
        (G.exp, torch.exp),
        (G.tanh, torch.tanh),
        (G.sigmoid, torch.sigmoid),
        (G.neg, torch.neg),
    ],
)
def test_unary_gradients_match_torch(graph, rng, build, ref):
    x_np = rng.uniform(-1.0, 1.0, size=(3, 4)).astype(np.float32)
    x = G.placeholder("x")
    f = build(x)
    graph.backward(f)

    xt = make_torch(x_np)
    ref(xt).sum().backward()
    assert_close(evaluate(graph, {"x": make_tensor(x_np)}, x.grad(f)), xt.grad, atol=1e-5)


def test_log_gradient_matches_torch(graph, rng):
    x_np = rng.uniform(0.5, 2.0, size=(5,)).astype(np.float32)
    x = G.placeholder("x")
    f = G.log(x)
    graph.backward(f)
    xt = make_torch(x_np)
    torch.log(xt).sum().backward()
    assert_close(evaluate(graph, {"x": make_tensor(x_np)}, x.grad(f)), xt.grad, atol=1e-5)


@pytest.mark.parametrize(
    "build, ref",
    [
        (lambda a, b: a + b, lambda a, b: a + b),
        (lambda a, b: a - b, lambda a, b: a - b),
        (lambda a, b: a * b, lambda a, b: a * b),
        (lambda a, b: a / b, lambda a, b: a / b),
        (G.minimum, torch.minimum),
        (G.maximum, torch.maximum),
    ],
)
def test_broadcast_binary_gradients_match_torch(graph, rng, build, ref):
    a_np = rng.normal(size=(4, 1, 3)).astype(np.float32)
    b_np = rng.uniform(0.5, 2.0, size=(5, 3)).astype(np.float32)
    a = G.placeholder("a")
    b = G.placeholder("b")
    f = build(a, b)
    graph.backward(f)

    at, bt = make_torch(a_np), make_torch(b_np)
    ref(at, bt).sum().backward()
    ga, gb = evaluate(graph, {"a": make_tensor(a_np), "b": make_tensor(b_np)}, [a.grad(f), b.grad(f)])
    assert ga.shape == (4, 1, 3)
    assert gb.shape == (5, 3)
    assert_close(ga, at.grad, atol=1e-5)
    assert_close(gb, bt.grad, atol=1e-5)


def test_reduction_gradients_match_torch(graph, rng):
    x_np = rng.normal(size=(3, 4)).astype(np.float32)
    x = G.placeholder("x")
    w = G.constant(make_tensor(np.arange(3, dtype=np.float32)))
    f = G.reduce_sum(x, 1) * w + G.reduce_mean(x, 0, keepdims=True).sum(1) + x.max(1)[0] - x.min(0)[0].sum(0)
    graph.backward(f)

    xt = make_torch(x_np)
    wt = torch.arange(3, dtype=torch.float32)
    ft = xt.sum(1) * wt + xt.mean(0, keepdim=True).sum(1) + xt.max(1).values - xt.min(0).values.sum(0)
    ft.sum().backward()
    assert_close(evaluate(graph, {"x": make_tensor(x_np)}, x.grad(f)), xt.grad, atol=1e-5)


def test_max_indices_output_has_no_gradient(graph):
    x = G.placeholder("x")
    values, indices = G.reduce_max(x, 0)
    graph.backward(values)
    assert indices.grad(values) is None
    assert x.grad(values) is not None


def test_shape_gradients_match_torch(graph, rng):
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)
    c_np = rng.normal(size=(4, 2, 6)).astype(np.float32)
    x = G.placeholder("x")
    y = x.permute((2, 0, 1)).reshape((4, 6)).unsqueeze(1).expand((4, 2, 6))
    f = y * G.constant(make_tensor(c_np))
    graph.backward(f)

    xt = make_torch(x_np)
    yt = xt.permute(2, 0, 1).reshape(4, 6).unsqueeze(1).expand(4, 2, 6)
    (yt * torch.tensor(c_np)).sum().backward()
    assert_close(evaluate(graph, {"x": make_tensor(x_np)}, x.grad(f)), xt.grad, atol=1e-5)


def test_matmul_gradients_match_torch(graph, rng):
    a_np = rng.normal(size=(3, 4)).astype(np.float32)
    b_np = rng.normal(size=(5, 4)).astype(np.float32)
    a = G.placeholder("a")
    b = G.placeholder("b")
    f = G.matmul(a, b, transpose_a=True, transpose_b=True)
    graph.backward(f)

    at, bt = make_torch(a_np), make_torch(b_np)
    (at.T @ bt.T).sum().backward()
    ga, gb = evaluate(graph, {"a": make_tensor(a_np), "b": make_tensor(b_np)}, [a.grad(f), b.grad(f)])
    assert_close(ga, at.grad, atol=1e-5)
    assert_close(gb, bt.grad, atol=1e-5)


def test_slice_gradients_match_torch(graph, rng):
    x_np = rng.normal(size=(4, 5)).astype(np.float32)
    y_np = rng.normal(size=(4, 2)).astype(np.float32)
    c_np = rng.normal(size=(4, 7)).astype(np.float32)
    rows = np.array([3, 1, 3])
    cols = rng.integers(0, 5, size=(4, 3))

    x = G.placeholder("x")
    y = G.placeholder("y")
    joined = G.concat([x, y], 1) * G.constant(make_tensor(c_np))
    head, tail = G.split(joined, 1, [3, 4])
    f = (
        head.sum(1)
        + tail.narrow(1, 1, 2).sum(1)
        + x.index_select(0, G.constant(make_index(rows))).sum(0).sum(0)
        + x.gather(1, G.constant(make_index(cols))).sum(1)
    )
    graph.backward(f)

    xt, yt = make_torch(x_np), make_torch(y_np)
    jt = torch.cat([xt, yt], 1) * torch.tensor(c_np)
    ht, tt = torch.split(jt, [3, 4], dim=1)
    ft = (
        ht.sum(1)
        + tt.narrow(1, 1, 2).sum(1)
        + xt.index_select(0, torch.tensor(rows)).sum(0).sum(0)
        + xt.gather(1, torch.tensor(cols)).sum(1)
    )
    ft.sum().backward()
    gx, gy = evaluate(graph, {"x": make_tensor(x_np), "y": make_tensor(y_np)}, [x.grad(f), y.grad(f)])
    assert_close(gx, xt.grad, atol=1e-5)
    assert_close(gy, yt.grad, atol=1e-5)


def test_unused_split_output_gets_zero_gradient(graph):
    x = G.placeholder("x")
    first, _ = G.split(x, 0, [1, 2])
    graph.backward(first)
    g = evaluate(graph, {"x": from_flat_values(DType.Float32, [1, 2, 3])}, x.grad(first))
    assert g.tolist() == [1.0, 0.0, 0.0]


def test_cond_gradient(graph):
    c = G.placeholder("c")
    a = G.placeholder("a")
    b = G.placeholder("b")
    f = G.cond(c, a, b)
    graph.backward(f)
    assert c.grad(f) is None
    feeds = {
        "c": from_flat_values(DType.Int32, [1, 0, 1]),
        "a": from_flat_values(DType.Float32, [1, 2, 3]),
        "b": from_flat_values(DType.Float32, [4, 5, 6]),
    }
    ga, gb = evaluate(graph, feeds, [a.grad(f), b.grad(f)])
    assert ga.tolist() == [1.0, 0.0, 1.0]
    assert gb.tolist() == [0.0, 1.0, 0.0]
