import pytest
import requests
from osmnx._errors import InsufficientResponseError, ResponseStatusCodeError

import feature_fetcher
from conftest import fake_osm_features
from feature_fetcher import LAYER_CATALOG, fetch_features, fetch_layer
from map_types import (
    BoundingBox,
    FeatureSelector,
    FeatureUnavailable,
    MalformedResponse,
    NetworkError,
)

BBOX = BoundingBox(-43.2915, -23.025, -43.14008, -22.84009)


def test_fetch_layer_queries_bbox_and_tags(fake_overpass):
    selector = LAYER_CATALOG["streets"]
    layer = fetch_layer(BBOX, selector)

    assert fake_overpass == [(BBOX.as_tuple(), {"highway": ["motorway", "primary", "secondary", "tertiary"]})]
    assert layer.selector is selector
    assert not layer.failed


def test_fetch_layer_drops_points_and_extra_columns(fake_overpass):
    layer = fetch_layer(BBOX, LAYER_CATALOG["river"])
    assert sorted(layer.geometries.geom_type) == ["LineString", "Polygon"]
    assert list(layer.geometries.columns) == ["waterway", "geometry"]
    assert layer.geometries.crs == "EPSG:4326"


def test_fetch_features_preserves_selector_order(fake_overpass):
    selectors = [LAYER_CATALOG[name] for name in ("forest", "streets", "water", "river")]
    result = fetch_features(BBOX, selectors)

    assert list(result.layers) == selectors
    assert [call[1] for call in fake_overpass] == [s.as_tags() for s in selectors]
    assert result.complete


def test_fetch_features_rejects_duplicates(fake_overpass):
    with pytest.raises(ValueError):
        fetch_features(BBOX, [LAYER_CATALOG["river"], LAYER_CATALOG["river"]])
    assert fake_overpass == []


def test_failures_are_recorded_without_aborting(monkeypatch):
    failing = {
        "wood": InsufficientResponseError("No data elements in server response."),
        "water": requests.ConnectionError("connection reset"),
        "river": ValueError("unexpected payload"),
        "footway": ResponseStatusCodeError("429 Too Many Requests"),
    }

    def features_from_bbox(bbox, tags):
        values = next(iter(tags.values()))
        for value in values:
            if value in failing:
                raise failing[value]
        return fake_osm_features(bbox, tags)

    monkeypatch.setattr(feature_fetcher.ox, "features_from_bbox", features_from_bbox)
    selectors = list(LAYER_CATALOG.values())
    result = fetch_features(BBOX, selectors)

    assert len(result) == len(selectors)
    assert list(result.layers) == selectors

    errors = {layer.selector.label: type(layer.error) for layer in result.failures}
    assert errors == {
        "forest": FeatureUnavailable,
        "water": NetworkError,
        "river": MalformedResponse,
        "small_streets": NetworkError,
    }
    for layer in result.failures:
        assert layer.is_empty
    assert not result[LAYER_CATALOG["streets"]].failed
    assert not result[LAYER_CATALOG["streets"]].is_empty


def test_timeout_and_cache_settings_are_applied(fake_overpass):
    fetch_features(BBOX, [LAYER_CATALOG["streets"]], timeout=12)
    assert feature_fetcher.ox.settings.requests_timeout == 12
    assert feature_fetcher.ox.settings.use_cache is False


def test_selectors_refetch_every_call(fake_overpass):
    selector = FeatureSelector("natural", ("water",))
    fetch_features(BBOX, [selector])
    fetch_features(BBOX, [selector])
    assert len(fake_overpass) == 2
