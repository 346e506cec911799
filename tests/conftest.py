import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import pytest
from shapely.geometry import LineString, Point, Polygon

# Ensure the repository root is on sys.path so tests can import the
# top-level modules like `map_types` and `create_street_map`.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))


class FakeLocation:
    """Stand-in for geopy's Location."""

    def __init__(self, address, south, north, west, east, importance=0.5):
        self.address = address
        self.raw = {
            "boundingbox": [str(south), str(north), str(west), str(east)],
            "importance": importance,
        }


class FakeGeocoder:
    def __init__(self, candidates=None, error=None):
        self.candidates = candidates
        self.error = error
        self.queries = []

    def geocode(self, query, exactly_one=True):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.candidates


@pytest.fixture
def rio_geocoder():
    return FakeGeocoder([
        FakeLocation(
            "Rio de Janeiro, Região Sudeste, Brasil",
            -23.08271, -22.74609, -43.79625, -43.09908, importance=0.8,
        ),
    ])


@pytest.fixture
def rio_window():
    from map_types import BoundingBox

    return BoundingBox(-43.79625, -23.08271, -43.09908, -22.74609)


def fake_osm_features(bbox, tags):
    """A road crossing the bbox, a pond and a node, in EPSG:4326."""
    west, south, east, north = bbox
    mid_x = (west + east) / 2
    mid_y = (south + north) / 2
    key = next(iter(tags))
    value = tags[key][0]
    return gpd.GeoDataFrame(
        {key: [value, value, value], "name": ["road", "pond", "node"]},
        geometry=[
            LineString([(west - 1, mid_y), (east + 1, mid_y)]),
            Polygon([
                (mid_x - 0.01, mid_y - 0.01),
                (mid_x + 0.01, mid_y - 0.01),
                (mid_x + 0.01, mid_y + 0.01),
                (mid_x - 0.01, mid_y + 0.01),
            ]),
            Point(mid_x, mid_y),
        ],
        crs="EPSG:4326",
    )


@pytest.fixture
def fake_overpass(monkeypatch):
    """Replace the OSMnx download with fake_osm_features and record calls."""
    import feature_fetcher

    calls = []

    def features_from_bbox(bbox, tags):
        calls.append((bbox, tags))
        return fake_osm_features(bbox, tags)

    monkeypatch.setattr(feature_fetcher.ox, "features_from_bbox", features_from_bbox)
    return calls
