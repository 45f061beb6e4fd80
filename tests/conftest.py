"""
Shared fixtures for the landfrag test suite.
"""

import numpy as np
import pytest
from affine import Affine

from landfrag.raster import Raster


@pytest.fixture
def utm_transform():
    return Affine(30.0, 0.0, 500000.0, 0.0, -30.0, 4100000.0)


@pytest.fixture
def forest_raster(utm_transform):
    """7x7 habitat grid with a gap, a missing cell and an open corner."""
    data = np.ones((7, 7))
    data[3, 3] = 0
    data[0, 6] = np.nan
    data[5:, :2] = 0
    return Raster(data=data, transform=utm_transform, crs="EPSG:32631", nodata=-9999.0)


@pytest.fixture
def random_binary():
    rng = np.random.default_rng(42)
    data = (rng.random((23, 17)) < 0.7).astype("float64")
    data[rng.random(data.shape) < 0.08] = np.nan
    return Raster(data=data)
