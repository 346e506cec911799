"""
Layer Styler

Pairs fetched layers with their rendering style and resolves the map
background, downloading painterly raster tiles through contextily when asked.
"""

import os
from dataclasses import dataclass
from typing import Optional

import contextily as cx
import geopandas as gpd
import matplotlib.colors as mcolors
import numpy as np
import requests

from feature_fetcher import LINE_TYPES, POLYGON_TYPES
from map_types import (
    BoundingBox,
    FeatureLayer,
    FlatBackground,
    LayerStyle,
    TileBackground,
    TileFetchError,
    WGS84,
)

# Short names for the tile themes people usually ask for
TILE_THEMES = {
    "watercolor": "Stadia.StamenWatercolor",
    "toner": "Stadia.StamenToner",
    "toner_lite": "Stadia.StamenTonerLite",
    "terrain": "Stadia.StamenTerrain",
    "positron": "CartoDB.Positron",
    "dark_matter": "CartoDB.DarkMatter",
    "osm": "OpenStreetMap.Mapnik",
}


@dataclass(frozen=True, eq=False)
class StyledLayer:
    """Drawable form of a layer: geometries split by kind plus plot kwargs."""

    label: str
    lines: gpd.GeoSeries
    polygons: gpd.GeoSeries
    line_kwargs: dict
    polygon_kwargs: dict

    @property
    def is_empty(self) -> bool:
        return self.lines.empty and self.polygons.empty

    @property
    def total_bounds(self):
        return gpd.GeoSeries(
            list(self.lines) + list(self.polygons), crs=WGS84
        ).total_bounds


@dataclass(frozen=True, eq=False)
class ResolvedBackground:
    """
    Either a flat color or an RGB(A) image with its extent
    (west, east, south, north) in degrees.
    """

    color: Optional[str] = None
    image: Optional[np.ndarray] = None
    extent: Optional[tuple] = None

    @property
    def is_tiled(self) -> bool:
        return self.image is not None

    @property
    def window(self) -> Optional[BoundingBox]:
        if self.extent is None:
            return None
        west, east, south, north = self.extent
        return BoundingBox(west, south, east, north)


def style_layer(layer: FeatureLayer, style: LayerStyle) -> StyledLayer:
    """
    Build the drawable description of one layer. The layer is not modified.

    Lines take the stroke color. Polygons are filled with `style.fill` when
    set and otherwise drawn as outlines in the stroke color.
    """
    geoms = layer.geometries.geometry
    kinds = geoms.geom_type
    stroke = mcolors.to_rgba(style.color, style.alpha)

    if style.fill is not None:
        fill_alpha = style.alpha if style.fill_alpha is None else style.fill_alpha
        face = mcolors.to_rgba(style.fill, fill_alpha)
    else:
        face = "none"

    return StyledLayer(
        label=layer.selector.label,
        lines=geoms[kinds.isin(LINE_TYPES)],
        polygons=geoms[kinds.isin(POLYGON_TYPES)],
        line_kwargs={"color": stroke, "linewidth": style.linewidth},
        polygon_kwargs={
            "facecolor": face,
            "edgecolor": stroke,
            "linewidth": style.linewidth,
        },
    )


def tile_provider(theme: str):
    """
    Look up an xyzservices provider by short theme name or full provider name.

    Raises:
        TileFetchError: If the theme is unknown or needs an API key we do not have
    """
    name = TILE_THEMES.get(theme, theme)
    try:
        provider = cx.providers.query_name(name)
    except ValueError as e:
        raise TileFetchError(f"Unknown tile theme '{theme}'") from e

    if provider.requires_token():
        api_key = os.environ.get("STADIA_API_KEY")
        if not api_key:
            raise TileFetchError(
                f"Tile theme '{theme}' ({provider.name}) needs an API key; set STADIA_API_KEY"
            )
        provider = provider(api_key=api_key)
    return provider


def fetch_tiles(bbox: BoundingBox, zoom: int, theme: str) -> ResolvedBackground:
    """
    Download the tiles covering a bounding box and warp them to lon/lat.

    The higher the zoom, the sharper the tiles and the more of them are
    downloaded.
    """
    provider = tile_provider(theme)
    print(f"Downloading {theme} tiles at zoom {zoom}...")
    try:
        img, extent = cx.bounds2img(
            *bbox.as_tuple(),
            zoom=zoom,
            source=provider,
            ll=True,
            max_retries=0,
            use_cache=False,
        )
        img, extent = cx.warp_tiles(img, extent, t_crs=WGS84)
    except requests.RequestException as e:
        raise TileFetchError(f"Could not download {theme} tiles: {e}") from e
    except OSError as e:
        raise TileFetchError(f"Unreadable {theme} tiles: {e}") from e
    except ValueError as e:
        raise TileFetchError(f"Tile backend rejected {theme} request: {e}") from e

    print(f"✓ Tiles ready ({img.shape[1]}x{img.shape[0]} px)")
    return ResolvedBackground(image=img, extent=tuple(float(v) for v in extent))


def resolve_background(background, anchor: Optional[BoundingBox] = None) -> Optional[ResolvedBackground]:
    """
    Turn a background choice into something the compositor can draw.

    A tile background without its own bbox is anchored to `anchor`.
    Tile failures are fatal; there is no fallback to a flat color.
    """
    if background is None:
        return None
    if isinstance(background, ResolvedBackground):
        return background
    if isinstance(background, FlatBackground):
        return ResolvedBackground(color=background.color)
    if isinstance(background, TileBackground):
        bbox = background.bbox or anchor
        if bbox is None:
            raise TileFetchError(f"Tile theme '{background.theme}' needs a bounding box")
        return fetch_tiles(bbox, background.zoom, background.theme)
    raise TypeError(f"Unsupported background: {background!r}")
