import math

import pytest

from map_types import (
    AmbiguousPlace,
    BoundingBox,
    FeatureLayer,
    FeatureSelector,
    FlatBackground,
    LayerStyle,
    MapRequest,
    NetworkError,
    PlaceNotFound,
    StreetMapError,
    TileBackground,
    TileFetchError,
)


def test_bounding_box_accepts_ordered_coordinates():
    bbox = BoundingBox(-43.79625, -23.08271, -43.09908, -22.74609)
    assert bbox.xlim == (-43.79625, -43.09908)
    assert bbox.ylim == (-23.08271, -22.74609)
    assert bbox.as_tuple() == (-43.79625, -23.08271, -43.09908, -22.74609)


@pytest.mark.parametrize("coords", [
    (10, 0, 5, 1),     # west > east
    (0, 0, 0, 1),      # west == east
    (0, 1, 1, 0),      # south > north
    (0, 2, 1, 2),      # south == north
    (0, -91, 1, 0),    # latitude out of range
    (math.nan, 0, 1, 1),
])
def test_bounding_box_rejects_invalid_extents(coords):
    with pytest.raises(ValueError):
        BoundingBox(*coords)


def test_bounding_box_contains_and_polygon():
    outer = BoundingBox(-43.8, -23.1, -43.0, -22.7)
    inner = BoundingBox(-43.2915, -23.025, -43.14008, -22.84009)
    assert outer.contains(inner)
    assert not inner.contains(outer)
    assert outer.to_polygon().bounds == outer.as_tuple()


def test_from_limits_matches_plot_limits():
    bbox = BoundingBox.from_limits((-89.52684, -89.268), (42.981, 43.16192))
    assert bbox == BoundingBox(-89.52684, 42.981, -89.268, 43.16192)


def test_feature_selector_normalizes_values_and_label():
    single = FeatureSelector("waterway", "river")
    assert single.values == ("river",)
    assert single.label == "waterway"
    assert single.as_tags() == {"waterway": ["river"]}

    streets = FeatureSelector("highway", ["motorway", "primary"], label="streets")
    assert streets.values == ("motorway", "primary")
    assert hash(streets) == hash(FeatureSelector("highway", ("motorway", "primary"), label="streets"))


def test_feature_selector_needs_key_and_values():
    with pytest.raises(ValueError):
        FeatureSelector("", ("x",))
    with pytest.raises(ValueError):
        FeatureSelector("highway", ())


def test_empty_feature_layer():
    layer = FeatureLayer(FeatureSelector("natural", ("wood",)))
    assert layer.is_empty
    assert not layer.failed
    assert len(layer) == 0


def test_layer_style_validation():
    LayerStyle(color="#7fc0ff", linewidth=0.4, alpha=0.8, fill="turquoise", fill_alpha=0.1)
    with pytest.raises(ValueError):
        LayerStyle(color="not-a-color")
    with pytest.raises(ValueError):
        LayerStyle(alpha=1.5)
    with pytest.raises(ValueError):
        LayerStyle(linewidth=-1)
    with pytest.raises(ValueError):
        LayerStyle(fill="#zzzzzz")


def test_layer_style_from_dict_defaults():
    style = LayerStyle.from_dict({"color": "#ffbe7f", "linewidth": 0.6})
    assert style == LayerStyle(color="#ffbe7f", linewidth=0.6, alpha=1.0)


def test_backgrounds_validate():
    with pytest.raises(ValueError):
        FlatBackground("grey-ish")
    with pytest.raises(ValueError):
        TileBackground(theme="watercolor", zoom=25)


def test_map_request_needs_exactly_one_location():
    pair = (FeatureSelector("highway", ("primary",)), LayerStyle())
    bbox = BoundingBox(0, 0, 1, 1)
    with pytest.raises(ValueError):
        MapRequest(layers=[pair])
    with pytest.raises(ValueError):
        MapRequest(layers=[pair], place="Madison United States", bbox=bbox)
    request = MapRequest(layers=[pair], bbox=bbox)
    assert request.layers == (pair,)
    assert request.selectors == [pair[0]]


def test_map_request_rejects_duplicates_and_bad_pairs():
    selector = FeatureSelector("highway", ("primary",))
    with pytest.raises(ValueError):
        MapRequest(layers=[(selector, LayerStyle()), (selector, LayerStyle(color="red"))],
                   place="Rio de Janeiro Brazil")
    with pytest.raises(ValueError):
        MapRequest(layers=[(selector, "red")], place="Rio de Janeiro Brazil")
    with pytest.raises(ValueError):
        MapRequest(layers=[], place="Rio de Janeiro Brazil", width=0)


def test_errors_carry_their_stage():
    assert PlaceNotFound("x").stage == "resolve"
    assert AmbiguousPlace("x").stage == "resolve"
    assert TileFetchError("x").stage == "style"
    assert NetworkError("x", stage="fetch").stage == "fetch"
    assert isinstance(NetworkError("x"), StreetMapError)


def test_bounding_box_accepts_numpy_scalars():
    import numpy as np

    bbox = BoundingBox(np.float32(-43.5), np.int64(-23), np.float64(-43.1), np.float32(-22.5))
    assert bbox.xlim == (-43.5, pytest.approx(-43.1))
    with pytest.raises(ValueError):
        BoundingBox(np.float64(np.inf), 0, 1, 1)
