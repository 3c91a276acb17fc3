import math

import numpy as np
import pytest

from spatialews import rspectrum, sdr
from spatialews.exceptions import InvalidInputError
from spatialews.spectrum import radial_distances


def test_constant_grid_has_no_power():
    spec = rspectrum(np.full((16, 16), 3.0))
    assert np.allclose(spec["rspec"], 0.0)
    assert math.isnan(sdr(np.full((16, 16), 3.0)))


def test_distances_exclude_zero_frequency(rng):
    spec = rspectrum(rng.random((20, 30)))
    assert spec["dist"].iloc[0] == 1
    assert np.all(np.diff(spec["dist"]) > 0)
    assert np.all(spec["rspec"] >= 0)


def test_radial_distances_center():
    dist = radial_distances((8, 8))
    assert dist[4, 4] == 0
    assert dist[4, 7] == 3
    assert dist[0, 0] == 6


def test_plane_detrend_removes_gradient():
    rows, cols = np.indices((16, 16))
    plane = 2.0 * rows - 0.5 * cols + 1.0
    assert np.allclose(rspectrum(plane, detrend="plane")["rspec"], 0.0, atol=1e-12)
    assert rspectrum(plane, detrend="mean")["rspec"].max() > 1e-3


def test_sdr_orders_spatial_scales(rng, checkerboard):
    rows, _ = np.indices((32, 32))
    smooth = np.sin(2 * np.pi * rows / 32) + rng.normal(0, 0.05, (32, 32))
    assert sdr(smooth) > 1.0
    # All the power of a checkerboard sits at the highest frequency
    assert sdr(checkerboard) == pytest.approx(0.0)


def test_one_cell_grid():
    assert rspectrum(np.ones((1, 1))).empty
    assert math.isnan(sdr(np.ones((1, 1))))


@pytest.mark.parametrize("low, high", [
    ((0.5, 0.2), (0.8, 1)),
    ((-0.1, 0.2), (0.8, 1)),
    ((0, 0.2), (0.8, 1.5)),
    ((0, 0.2), "high"),
])
def test_invalid_ranges(low, high):
    with pytest.raises(InvalidInputError):
        sdr(np.random.rand(8, 8), low, high)


def test_invalid_detrend():
    with pytest.raises(InvalidInputError):
        rspectrum(np.random.rand(8, 8), detrend="median")
