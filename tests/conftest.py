import numpy as np
import pytest

from stridegrad.graph import Graph


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def graph():
    g = Graph()
    with g.as_default():
        yield g
