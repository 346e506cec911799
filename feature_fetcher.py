"""
Feature Fetcher

Downloads OpenStreetMap features for a bounding box, one Overpass query per
selector, using OSMnx. A failing selector leaves an empty layer carrying the
error; the remaining selectors are still fetched.
"""

import json
from dataclasses import dataclass, field

import osmnx as ox
import requests
from osmnx._errors import InsufficientResponseError, ResponseStatusCodeError
from tqdm import tqdm

from map_types import (
    DEFAULT_TIMEOUT,
    BoundingBox,
    FeatureLayer,
    FeatureSelector,
    FeatureUnavailable,
    MalformedResponse,
    NetworkError,
    empty_geometries,
)

LINE_TYPES = ["LineString", "MultiLineString"]
POLYGON_TYPES = ["Polygon", "MultiPolygon"]

# Layers drawn by the bundled palette themes
LAYER_CATALOG = {
    "streets": FeatureSelector(
        "highway", ("motorway", "primary", "secondary", "tertiary"), label="streets"
    ),
    "small_streets": FeatureSelector(
        "highway",
        ("residential", "living_street", "unclassified", "service", "footway"),
        label="small_streets",
    ),
    "river": FeatureSelector("waterway", ("river",), label="river"),
    "water": FeatureSelector("natural", ("water",), label="water"),
    "forest": FeatureSelector("natural", ("wood",), label="forest"),
}


@dataclass(frozen=True, eq=False)
class FetchResult:
    """Layers in selector order. Failed selectors map to empty layers."""

    layers: dict = field(default_factory=dict)

    @property
    def failures(self):
        return [layer for layer in self.layers.values() if layer.failed]

    @property
    def complete(self) -> bool:
        return not self.failures

    def __len__(self):
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers.values())

    def __getitem__(self, selector):
        return self.layers[selector]


def configure_osmnx(timeout=DEFAULT_TIMEOUT):
    """Disable the OSMnx response cache and bound every request."""
    ox.settings.use_cache = False
    ox.settings.requests_timeout = timeout
    ox.settings.log_console = False


def _keep_drawable(gdf, key):
    drawable = gdf[gdf.geom_type.isin(LINE_TYPES + POLYGON_TYPES)]
    columns = [key, "geometry"] if key in drawable.columns else ["geometry"]
    return drawable[columns]


def fetch_layer(bbox: BoundingBox, selector: FeatureSelector) -> FeatureLayer:
    """
    Fetch one selector's features within a bounding box.

    Raises:
        FeatureUnavailable: If the backend has no matching features
        NetworkError: On HTTP errors, connection failures and timeouts
        MalformedResponse: If the response cannot be turned into geometries
    """
    try:
        gdf = ox.features_from_bbox(bbox=bbox.as_tuple(), tags=selector.as_tags())
    except InsufficientResponseError as e:
        raise FeatureUnavailable(f"No features for {selector}: {e}") from e
    except ResponseStatusCodeError as e:
        raise NetworkError(f"Overpass rejected query for {selector}: {e}", stage="fetch") from e
    except requests.RequestException as e:
        raise NetworkError(f"Could not reach Overpass for {selector}: {e}", stage="fetch") from e
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise MalformedResponse(f"Unreadable response for {selector}: {e}", stage="fetch") from e

    if gdf.crs is None:
        gdf = gdf.set_crs("EPSG:4326")
    return FeatureLayer(selector, _keep_drawable(gdf, selector.key))


def fetch_features(bbox: BoundingBox, selectors, timeout=DEFAULT_TIMEOUT) -> FetchResult:
    """
    Fetch every selector within a bounding box, in order.

    Args:
        bbox: Area to query
        selectors: Ordered FeatureSelectors; duplicates are rejected
        timeout: Seconds allowed per request

    Returns:
        FetchResult mapping each selector to its FeatureLayer, in input order
    """
    selectors = list(selectors)
    if len(set(selectors)) != len(selectors):
        raise ValueError("Duplicate feature selectors")

    configure_osmnx(timeout)

    layers = {}
    with tqdm(
        total=len(selectors),
        desc="Fetching map data",
        unit="layer",
        bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt}",
    ) as pbar:
        for selector in selectors:
            pbar.set_description(f"Downloading {selector.label}")
            try:
                layers[selector] = fetch_layer(bbox, selector)
            except (FeatureUnavailable, NetworkError, MalformedResponse) as e:
                layers[selector] = FeatureLayer(selector, empty_geometries(), error=e)
            pbar.update(1)

    result = FetchResult(layers)
    if result.complete:
        print("✓ All layers retrieved successfully!")
    else:
        for layer in result.failures:
            print(f"⚠ {layer.selector.label}: {layer.error}")
    return result
