import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import LineString, Point

METRIC = "EPSG:32618"

# Two parallel east-west lines in UTM 18N, 4 km apart, roughly over Manhattan
X0, X1 = 580_000.0, 590_000.0
Y_SOUTH, Y_NORTH = 4_510_000.0, 4_514_000.0


def make_points(coords, crs=METRIC, index=None):
    return gpd.GeoDataFrame(geometry=[Point(x, y) for x, y in coords], crs=crs, index=index)


@pytest.fixture
def lines():
    return gpd.GeoDataFrame(
        {"name": ["south", "north"]},
        geometry=[LineString([(X0, Y_SOUTH), (X1, Y_SOUTH)]), LineString([(X0, Y_NORTH), (X1, Y_NORTH)])],
        crs=METRIC,
    )


@pytest.fixture
def half_covered_schools():
    """100 schools on the south line and 100 schools 2000 m from both lines."""
    xs = np.linspace(581_000.0, 589_000.0, 100)
    on_line = [(x, Y_SOUTH) for x in xs]
    far = [(x, Y_SOUTH + 2000.0) for x in xs]
    return make_points(on_line + far)


@pytest.fixture
def csr_points():
    rng = np.random.default_rng(42)
    coords = rng.uniform(low=(X0, Y_SOUTH), high=(X1, Y_NORTH), size=(300, 2))
    return make_points(coords)
