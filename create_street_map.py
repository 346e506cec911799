#!/usr/bin/env python3
"""
City Street Map Generator

Builds static street maps of any city: resolves the place with Nominatim,
downloads roads, rivers, water bodies and forests from OpenStreetMap with
OSMnx, styles them with a palette theme and renders them over a flat color
or painterly raster tiles.
"""

import argparse
import json
import os
import sys
from datetime import datetime
from pathlib import Path

import matplotlib.pyplot as plt
from lat_lon_parser import parse

from feature_fetcher import LAYER_CATALOG, fetch_features
from font_management import load_fonts
from layer_styler import TILE_THEMES, resolve_background, style_layer
from map_compositor import composite
from map_types import (
    DEFAULT_TIMEOUT,
    BoundingBox,
    FlatBackground,
    LayerStyle,
    MapRequest,
    MapResult,
    StreetMapError,
    TileBackground,
)
from place_resolver import resolve_place

THEMES_DIR = os.environ.get("STREETMAP_THEMES_DIR", str(Path(__file__).parent / "themes"))
MAPS_DIR = "maps"

FILE_ENCODING = "utf-8"

# Used when a theme file is missing
DEFAULT_THEME = {
    "name": "Night",
    "description": "Blue major roads and orange side streets on near-black",
    "background": {"color": "#050505"},
    "layers": {
        "streets": {"color": "#7fc0ff", "linewidth": 1.1, "alpha": 0.8},
        "small_streets": {"color": "#ffbe7f", "linewidth": 0.6, "alpha": 0.6},
        "river": {"color": "#ffbe7f", "linewidth": 0.6, "alpha": 0.5},
        "water": {
            "color": "#00E5EE",
            "linewidth": 0.6,
            "alpha": 0.1,
            "fill": "#00E5EE",
            "fill_alpha": 0.1,
        },
    },
}


def get_available_themes():
    """
    Scans the themes directory and returns a list of available theme names.
    """
    if not os.path.isdir(THEMES_DIR):
        return []
    return sorted(file[:-5] for file in os.listdir(THEMES_DIR) if file.endswith(".json"))


def load_theme(theme_name="night"):
    """
    Load a palette theme from the themes directory.
    """
    theme_file = os.path.join(THEMES_DIR, f"{theme_name}.json")

    if not os.path.exists(theme_file):
        print(f"⚠ Theme file '{theme_file}' not found. Using default night theme.")
        return DEFAULT_THEME

    with open(theme_file, "r", encoding=FILE_ENCODING) as f:
        theme = json.load(f)
    print(f"✓ Loaded theme: {theme.get('name', theme_name)}")
    if "description" in theme:
        print(f"  {theme['description']}")
    return theme


def theme_layers(theme):
    """
    (FeatureSelector, LayerStyle) pairs for the layers a theme styles, in the
    order the theme lists them. Unknown layer names are rejected.
    """
    pairs = []
    for label, style in theme.get("layers", {}).items():
        if label not in LAYER_CATALOG:
            raise ValueError(
                f"Theme layer '{label}' is not one of: {', '.join(LAYER_CATALOG)}"
            )
        pairs.append((LAYER_CATALOG[label], LayerStyle.from_dict(style)))
    return pairs


def theme_background(theme, tiles=None, zoom=None):
    """Background from a theme, optionally overridden by a tile theme/zoom."""
    spec = dict(theme.get("background", {}))
    if tiles:
        spec["tiles"] = tiles
    if zoom is not None:
        spec["zoom"] = zoom
    if "tiles" in spec:
        return TileBackground(theme=spec["tiles"], zoom=int(spec.get("zoom", 12)))
    return FlatBackground(spec.get("color", "white"))


def render_map(request: MapRequest, geocoder=None, strict=False, timeout=DEFAULT_TIMEOUT,
               fonts=None) -> MapResult:
    """
    Run one map request through the whole pipeline.

    Resolve the place (unless the request carries a bbox), fetch each
    selector, style the layers, resolve the background and composite.

    Args:
        request: The map to draw
        geocoder: Optional geopy-style geocoder for the place lookup
        strict: Raise AmbiguousPlace instead of picking the top candidate
        timeout: Seconds allowed per network request
        fonts: Title fonts from font_management.load_fonts

    Returns:
        MapResult with the image and any layers that failed to download

    Raises:
        StreetMapError: If the place lookup, tile download or compositing fails
    """
    label = request.place or "bounding box"
    print(f"\nGenerating map for {label}...")

    bbox = request.bbox
    if bbox is None:
        bbox = resolve_place(request.place, geocoder=geocoder, strict=strict, timeout=timeout)
    window = request.window or bbox

    fetched = fetch_features(bbox, request.selectors, timeout=timeout)

    print("Styling layers...")
    styled = [style_layer(fetched[selector], style) for selector, style in request.layers]
    background = resolve_background(request.background, anchor=window)

    print("Rendering map...")
    image = composite(
        styled,
        window,
        background,
        width=request.width,
        height=request.height,
        dpi=request.dpi,
        title=request.title,
        fonts=fonts,
    )
    print(f"✓ Rendered {image.width_px}x{image.height_px} px")
    return MapResult(image=image, failures=fetched.failures)


def save_map(image, output_file, output_format="png"):
    """Write a rendered map; the dpi is kept so the physical size survives."""
    print(f"Saving to {output_file}...")
    plt.imsave(output_file, image.pixels, format=output_format.lower(), dpi=image.dpi)
    print(f"✓ Done! Map saved as {output_file}")


def generate_output_filename(name, theme_name, output_format):
    """
    Generate unique output filename with place, theme, and datetime.
    """
    os.makedirs(MAPS_DIR, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = name.lower().replace(" ", "_").replace(",", "")
    return os.path.join(MAPS_DIR, f"{slug}_{theme_name}_{timestamp}.{output_format.lower()}")


def parse_bbox(values):
    """BoundingBox from four coordinate strings (west south east north)."""
    west, south, east, north = (parse(v) for v in values)
    return BoundingBox(west, south, east, north)


def print_examples():
    """Print usage examples."""
    print("""
City Street Map Generator
=========================

Usage:
  python create_street_map.py --place <place> [options]

Examples:
  # Night palette over Rio, cropped to the city center
  python create_street_map.py -p "Rio de Janeiro Brazil" -t night \\
      --window -43.2915 -23.025 -43.14008 -22.84009

  # Watercolor tiles, leaving room at the bottom for a title
  python create_street_map.py -p "Rio de Janeiro Brazil" -t watercolor --zoom 14 \\
      --window -43.2815 -23.051 -43.14008 -22.85009 --title "RIO DE JANEIRO"

  # Explicit bounding box instead of a place lookup
  python create_street_map.py --bbox -89.52684 42.981 -89.268 43.16192 -t watercolor

  # List themes
  python create_street_map.py --list-themes

Options:
  --place, -p       Place name to look up
  --bbox            West South East North of the area to download
  --window          West South East North of the area to show
  --theme, -t       Palette theme (default: night)
  --tiles           Tile theme for the background (overrides the palette)
  --zoom            Tile zoom level; higher is sharper but downloads more
  --width, -W       Image width (default: 6)
  --height, -H      Image height (default: 6)
  --title           Caption drawn at the bottom of the map

Tile themes: """ + ", ".join(TILE_THEMES) + """
Stamen themes are served by Stadia Maps and need STADIA_API_KEY.
""")


def list_themes():
    """List all available themes with descriptions."""
    available_themes = get_available_themes()
    if not available_themes:
        print(f"No themes found in '{THEMES_DIR}'.")
        return

    print("\nAvailable Themes:")
    print("-" * 60)
    for theme_name in available_themes:
        theme_path = os.path.join(THEMES_DIR, f"{theme_name}.json")
        try:
            with open(theme_path, "r", encoding=FILE_ENCODING) as f:
                theme_data = json.load(f)
            display_name = theme_data.get("name", theme_name)
            description = theme_data.get("description", "")
        except (OSError, json.JSONDecodeError):
            display_name = theme_name
            description = ""
        print(f"  {theme_name}")
        print(f"    {display_name}")
        if description:
            print(f"    {description}")
        print()


def build_parser():
    parser = argparse.ArgumentParser(
        description="Generate static street maps for any city",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python create_street_map.py --place "Rio de Janeiro Brazil"
  python create_street_map.py --place "Madison United States" --theme watercolor
  python create_street_map.py --list-themes
        """,
    )
    parser.add_argument("--place", "-p", type=str, help="Place name to look up")
    parser.add_argument(
        "--bbox", nargs=4, metavar=("WEST", "SOUTH", "EAST", "NORTH"),
        help="Download area instead of a place lookup",
    )
    parser.add_argument(
        "--window", nargs=4, metavar=("WEST", "SOUTH", "EAST", "NORTH"),
        help="Visible area (default: the download area)",
    )
    parser.add_argument(
        "--theme", "-t", type=str, default="night", help="Palette theme (default: night)"
    )
    parser.add_argument("--tiles", type=str, help="Tile theme for the background")
    parser.add_argument("--zoom", type=int, help="Tile zoom level")
    parser.add_argument(
        "--width", "-W", type=float, default=6, help="Image width (default: 6). Unit set by --unit."
    )
    parser.add_argument(
        "--height", "-H", type=float, default=6, help="Image height (default: 6). Unit set by --unit."
    )
    parser.add_argument(
        "--unit", "-u", type=str, default="in", choices=["in", "mm"],
        help="Unit for --width/--height: 'in' (inches, default) or 'mm'",
    )
    parser.add_argument("--dpi", type=int, default=300, help="Pixels per inch (default: 300)")
    parser.add_argument("--title", "-T", type=str, help="Caption drawn at the bottom")
    parser.add_argument("--font-family", type=str, help="Google Fonts family for the title")
    parser.add_argument(
        "--strict", action="store_true",
        help="Fail when the place name matches several places equally well",
    )
    parser.add_argument(
        "--timeout", type=float, default=DEFAULT_TIMEOUT,
        help=f"Seconds allowed per network request (default: {DEFAULT_TIMEOUT:g})",
    )
    parser.add_argument(
        "--format", "-f", default="png", choices=["png", "jpg", "pdf", "svg"],
        help="Output format (default: png)",
    )
    parser.add_argument("--output", "-o", type=str, help="Output file path")
    parser.add_argument("--list-themes", action="store_true", help="List all available themes")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if argv is None and len(sys.argv) == 1:
        print_examples()
        return 0

    if args.list_themes:
        list_themes()
        return 0

    if bool(args.place) == bool(args.bbox):
        print("Error: give exactly one of --place or --bbox.\n")
        print_examples()
        return 1

    if args.unit == "mm":
        MM_PER_INCH = 25.4
        args.width = args.width / MM_PER_INCH
        args.height = args.height / MM_PER_INCH

    print("=" * 50)
    print("City Street Map Generator")
    print("=" * 50)

    fonts = load_fonts(args.font_family) if args.title else None

    try:
        theme = load_theme(args.theme)
        request = MapRequest(
            layers=theme_layers(theme),
            place=args.place,
            bbox=parse_bbox(args.bbox) if args.bbox else None,
            background=theme_background(theme, args.tiles, args.zoom),
            window=parse_bbox(args.window) if args.window else None,
            width=args.width,
            height=args.height,
            dpi=args.dpi,
            title=args.title,
        )
        result = render_map(request, strict=args.strict, timeout=args.timeout, fonts=fonts)
    except StreetMapError as e:
        print(f"\n✗ Error ({e.stage}): {e}")
        return 1
    except ValueError as e:
        print(f"\n✗ Error: {e}")
        return 1

    output_file = args.output or generate_output_filename(
        args.place or "bbox", args.theme, args.format
    )
    save_map(result.image, output_file, args.format)

    if result.failures:
        print(f"⚠ {len(result.failures)} layer(s) could not be downloaded")

    print("\n" + "=" * 50)
    print("✓ Map generation complete!")
    print("=" * 50)
    return 0


if __name__ == "__main__":
    sys.exit(main())
