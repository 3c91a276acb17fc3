import numpy as np
import pytest


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def checkerboard():
    i, j = np.indices((16, 16))
    return (i + j) % 2 == 0


@pytest.fixture
def boolean_trend(rng):
    """Three random boolean grids of increasing cover."""
    return [rng.random((24, 24)) < p for p in (0.2, 0.4, 0.6)]
