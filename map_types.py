"""
Street Map Types

Value objects shared by every stage of the street map pipeline, plus the
error hierarchy. Everything here is immutable once built: a MapRequest and
the layers fetched for it belong to exactly one render.
"""

import math
import numbers
import os
from dataclasses import dataclass, field
from typing import Optional, Union

import geopandas as gpd
import matplotlib.colors as mcolors
import numpy as np
from shapely.geometry import Polygon, box

DEFAULT_TIMEOUT = float(os.environ.get("STREETMAP_TIMEOUT", "60"))

WGS84 = "EPSG:4326"


class StreetMapError(Exception):
    """Base class for every pipeline failure. `stage` names where it happened."""

    stage = "pipeline"

    def __init__(self, message, stage=None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class PlaceNotFound(StreetMapError):
    """Raised when the geocoder has no match for a place name."""

    stage = "resolve"


class AmbiguousPlace(StreetMapError):
    """Raised in strict mode when several candidates share the top rank."""

    stage = "resolve"


class NetworkError(StreetMapError):
    """Raised when a backend is unreachable or a request times out."""


class FeatureUnavailable(StreetMapError):
    """Raised when the geodata backend has nothing for a selector."""

    stage = "fetch"


class MalformedResponse(StreetMapError):
    """Raised when a backend answers with data we cannot interpret."""


class TileFetchError(StreetMapError):
    """Raised when background tiles cannot be fetched."""

    stage = "style"


class EmptyCompositionError(StreetMapError):
    """Raised when the compositor is given neither layers nor a background."""

    stage = "composite"


@dataclass(frozen=True)
class BoundingBox:
    """Geographic extent in degrees (EPSG:4326)."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self):
        values = (self.west, self.south, self.east, self.north)
        if not all(isinstance(v, numbers.Real) and math.isfinite(v) for v in values):
            raise ValueError(f"Bounding box values must be finite numbers: {values}")
        if not self.west < self.east:
            raise ValueError(f"west ({self.west}) must be less than east ({self.east})")
        if not self.south < self.north:
            raise ValueError(f"south ({self.south}) must be less than north ({self.north})")
        if self.south < -90 or self.north > 90:
            raise ValueError(f"Latitudes out of range: {self.south}, {self.north}")

    @classmethod
    def from_limits(cls, xlim, ylim):
        """Build from plot-style limits: (west, east), (south, north)."""
        return cls(float(xlim[0]), float(ylim[0]), float(xlim[1]), float(ylim[1]))

    @property
    def xlim(self):
        return (self.west, self.east)

    @property
    def ylim(self):
        return (self.south, self.north)

    @property
    def center(self):
        """(latitude, longitude) of the box center."""
        return ((self.south + self.north) / 2.0, (self.west + self.east) / 2.0)

    def as_tuple(self):
        return (self.west, self.south, self.east, self.north)

    def contains(self, other: "BoundingBox") -> bool:
        return (
            self.west <= other.west
            and self.south <= other.south
            and self.east >= other.east
            and self.north >= other.north
        )

    def to_polygon(self) -> Polygon:
        return box(self.west, self.south, self.east, self.north)


@dataclass(frozen=True)
class FeatureSelector:
    """
    An OSM tag key and the tag values to match, e.g. highway=motorway|primary.

    `label` names the layer in logs and palette themes; it defaults to the key.
    """

    key: str
    values: tuple
    label: str = ""

    def __post_init__(self):
        if not self.key:
            raise ValueError("Feature selector key must not be empty")
        values = (self.values,) if isinstance(self.values, str) else tuple(self.values)
        if not values:
            raise ValueError(f"Feature selector '{self.key}' needs at least one value")
        object.__setattr__(self, "values", values)
        if not self.label:
            object.__setattr__(self, "label", self.key)

    def as_tags(self) -> dict:
        return {self.key: list(self.values)}

    def __str__(self):
        return f"{self.label} ({self.key}={'|'.join(self.values)})"


def empty_geometries() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(geometry=[], crs=WGS84)


@dataclass(frozen=True, eq=False)
class FeatureLayer:
    """Geometries fetched for one selector. `error` is set when the fetch failed."""

    selector: FeatureSelector
    geometries: gpd.GeoDataFrame = field(default_factory=empty_geometries)
    error: Optional[StreetMapError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def is_empty(self) -> bool:
        return self.geometries.empty

    def __len__(self):
        return len(self.geometries)


def _check_opacity(name, value):
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")


@dataclass(frozen=True)
class LayerStyle:
    """Stroke and optional fill for one layer. Colors are any matplotlib color."""

    color: str = "black"
    linewidth: float = 1.0
    alpha: float = 1.0
    fill: Optional[str] = None
    fill_alpha: Optional[float] = None

    def __post_init__(self):
        if not mcolors.is_color_like(self.color):
            raise ValueError(f"Invalid color: {self.color!r}")
        if self.fill is not None and not mcolors.is_color_like(self.fill):
            raise ValueError(f"Invalid fill color: {self.fill!r}")
        if self.linewidth < 0:
            raise ValueError(f"linewidth must not be negative, got {self.linewidth}")
        _check_opacity("alpha", self.alpha)
        if self.fill_alpha is not None:
            _check_opacity("fill_alpha", self.fill_alpha)

    @classmethod
    def from_dict(cls, data: dict) -> "LayerStyle":
        return cls(
            color=data.get("color", "black"),
            linewidth=float(data.get("linewidth", 1.0)),
            alpha=float(data.get("alpha", 1.0)),
            fill=data.get("fill"),
            fill_alpha=None if data.get("fill_alpha") is None else float(data["fill_alpha"]),
        )


@dataclass(frozen=True)
class FlatBackground:
    color: str = "white"

    def __post_init__(self):
        if not mcolors.is_color_like(self.color):
            raise ValueError(f"Invalid background color: {self.color!r}")


@dataclass(frozen=True)
class TileBackground:
    """
    Raster tiles from a named theme. Higher zoom gives sharper tiles but
    downloads more of them. Without a bbox the tiles cover the map window.
    """

    theme: str = "watercolor"
    zoom: int = 12
    bbox: Optional[BoundingBox] = None

    def __post_init__(self):
        if not 0 <= self.zoom <= 20:
            raise ValueError(f"Tile zoom must be between 0 and 20, got {self.zoom}")


Background = Union[FlatBackground, TileBackground]


@dataclass(frozen=True)
class MapRequest:
    """
    One map to render: where, what to draw and how, and the output size.

    `window` is the visible coordinate window; it may differ from the fetch
    bbox, e.g. to leave room for a title. Width and height are in inches.
    """

    layers: tuple
    place: Optional[str] = None
    bbox: Optional[BoundingBox] = None
    background: Optional[Background] = None
    window: Optional[BoundingBox] = None
    width: float = 6.0
    height: float = 6.0
    dpi: int = 150
    title: Optional[str] = None

    def __post_init__(self):
        if (self.place is None) == (self.bbox is None):
            raise ValueError("A map request needs exactly one of place or bbox")
        layers = tuple(tuple(pair) for pair in self.layers)
        for pair in layers:
            if len(pair) != 2 or not isinstance(pair[0], FeatureSelector) \
                    or not isinstance(pair[1], LayerStyle):
                raise ValueError(f"Layers must be (FeatureSelector, LayerStyle) pairs, got {pair!r}")
        selectors = [selector for selector, _style in layers]
        if len(set(selectors)) != len(selectors):
            raise ValueError("Duplicate feature selectors in map request")
        object.__setattr__(self, "layers", layers)
        if self.width <= 0 or self.height <= 0 or self.dpi <= 0:
            raise ValueError("Width, height and dpi must be positive")

    @property
    def selectors(self):
        return [selector for selector, _style in self.layers]


@dataclass(frozen=True, eq=False)
class MapImage:
    """RGBA raster (height x width x 4, uint8) covering `window`."""

    pixels: np.ndarray
    window: BoundingBox
    dpi: int

    @property
    def width_px(self) -> int:
        return self.pixels.shape[1]

    @property
    def height_px(self) -> int:
        return self.pixels.shape[0]

    @property
    def size_inches(self):
        return (self.width_px / self.dpi, self.height_px / self.dpi)


@dataclass(frozen=True, eq=False)
class MapResult:
    image: MapImage
    failures: list = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures
