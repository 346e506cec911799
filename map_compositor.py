"""
Map Compositor

Stacks a background and styled layers inside a coordinate window and renders
them to an RGBA raster with matplotlib.
"""

import math

import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
import numpy as np

from font_management import font_properties
from layer_styler import ResolvedBackground, StyledLayer, resolve_background
from map_types import BoundingBox, EmptyCompositionError, MapImage

DEFAULT_WINDOW = BoundingBox(0.0, 0.0, 1.0, 1.0)


def _layer_window(layers):
    bounds = [layer.total_bounds for layer in layers if not layer.is_empty]
    if not bounds:
        return None
    stacked = np.array(bounds)
    west, south = stacked[:, 0].min(), stacked[:, 1].min()
    east, north = stacked[:, 2].max(), stacked[:, 3].max()
    if west >= east or south >= north:
        return None
    return BoundingBox(float(west), float(south), float(east), float(north))


def choose_window(window, layers, background):
    """
    The window to draw: the one given, else the tile extent, else the
    extent of all layer geometry, else the unit square.
    """
    if window:
        if isinstance(window, BoundingBox):
            return window
        return BoundingBox(*window)
    if background is not None and background.window is not None:
        return background.window
    return _layer_window(layers) or DEFAULT_WINDOW


def _geographic_aspect(window: BoundingBox) -> float:
    """Stretch latitude so a degree of longitude and of latitude look alike."""
    mid_lat = (window.south + window.north) / 2.0
    return 1.0 / max(math.cos(math.radians(mid_lat)), 1e-6)


def _clipped(geoms, clip_box):
    if geoms.empty:
        return geoms
    clipped = geoms.clip(clip_box, keep_geom_type=True)
    return clipped[~clipped.is_empty]


def _draw_layer(ax, layer: StyledLayer, clip_box, zorder):
    # Polygons sit under the layer's own lines
    polygons = _clipped(layer.polygons, clip_box)
    if not polygons.empty:
        polygons.plot(ax=ax, zorder=zorder, **layer.polygon_kwargs)
    lines = _clipped(layer.lines, clip_box)
    if not lines.empty:
        lines.plot(ax=ax, zorder=zorder + 0.5, **layer.line_kwargs)


def _text_color(bg_color):
    r, g, b = mcolors.to_rgb(bg_color)
    return "black" if 0.299 * r + 0.587 * g + 0.114 * b > 0.5 else "white"


def _draw_title(fig, title, color, fonts, height):
    # Sized against a 6 inch tall map
    scale_factor = height / 6.0
    fig.text(
        0.5,
        0.05,
        title,
        color=color,
        ha="center",
        va="center",
        fontproperties=font_properties(fonts, "bold", 22 * scale_factor),
        zorder=100,
    )


def composite(
    layers,
    window,
    background,
    width=6.0,
    height=6.0,
    dpi=150,
    title=None,
    fonts=None,
) -> MapImage:
    """
    Render styled layers over a background.

    Layers are drawn in order, the first at the bottom. Geometry outside the
    window is clipped away; geometry straddling its edge is cut, not dropped.

    Args:
        layers: Ordered StyledLayers
        window: BoundingBox (or (west, south, east, north)) to show; falsy
            means derive it from the background or the layers
        background: ResolvedBackground, FlatBackground, TileBackground or None
        width: Image width in inches
        height: Image height in inches
        dpi: Pixels per inch
        title: Optional caption drawn in the bottom margin
        fonts: Font paths from font_management.load_fonts

    Returns:
        MapImage of round(width * dpi) x round(height * dpi) pixels

    Raises:
        EmptyCompositionError: If there are no layers and no background
    """
    layers = list(layers or [])
    if not layers and background is None:
        raise EmptyCompositionError("Nothing to draw: no layers and no background")

    if window and not isinstance(window, BoundingBox):
        window = BoundingBox(*window)
    if background is not None and not isinstance(background, ResolvedBackground):
        background = resolve_background(background, window or None)

    window = choose_window(window, layers, background)
    bg_color = background.color if background is not None and background.color else "white"

    fig, ax = plt.subplots(figsize=(width, height), dpi=dpi, facecolor=bg_color)
    try:
        ax.set_position((0.0, 0.0, 1.0, 1.0))
        ax.set_facecolor(bg_color)

        if background is not None and background.is_tiled:
            ax.imshow(
                background.image,
                extent=background.extent,
                interpolation="bilinear",
                aspect="auto",
                zorder=0,
            )

        clip_box = window.to_polygon()
        for i, layer in enumerate(layers):
            if not layer.is_empty:
                _draw_layer(ax, layer, clip_box, zorder=i + 1)

        ax.set_xlim(window.xlim)
        ax.set_ylim(window.ylim)
        ax.set_aspect(_geographic_aspect(window), adjustable="box")
        ax.axis("off")

        if title:
            _draw_title(fig, title, _text_color(bg_color), fonts, height)

        fig.canvas.draw()
        pixels = np.asarray(fig.canvas.buffer_rgba()).copy()
    finally:
        plt.close(fig)

    return MapImage(pixels=pixels, window=window, dpi=dpi)
