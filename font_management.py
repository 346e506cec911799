"""
Font Management Module
Loads title fonts from the local fonts directory or Google Fonts.
"""

import os
import re
from pathlib import Path
from typing import Optional

import requests
from matplotlib.font_manager import FontProperties

FONTS_DIR = os.environ.get("FONTS_DIR", "fonts")
FONTS_CACHE_DIR = Path(FONTS_DIR) / "cache"

WEIGHT_NAMES = {300: "light", 400: "regular", 700: "bold"}


def _font_urls(font_family: str, weights: list) -> dict:
    """Map each weight offered by the Google Fonts CSS API to its file URL."""
    response = requests.get(
        "https://fonts.googleapis.com/css2",
        params={"family": f"{font_family}:wght@{';'.join(map(str, weights))}"},
        headers={"User-Agent": "Mozilla/5.0"},
        timeout=10,
    )
    response.raise_for_status()

    urls = {}
    for block in re.split(r"@font-face\s*\{", response.text)[1:]:
        weight = re.search(r"font-weight:\s*(\d+)", block)
        url = re.search(r"url\((https://[^)]+\.(woff2|ttf))\)", block)
        if weight and url:
            urls[int(weight.group(1))] = url.group(1)
    return urls


def download_google_font(font_family: str, weights: list = None) -> Optional[dict]:
    """
    Download a font family from Google Fonts into the font cache.
    Returns a dict of weight name -> path, or None if nothing could be fetched.
    """
    weights = weights or list(WEIGHT_NAMES)
    FONTS_CACHE_DIR.mkdir(parents=True, exist_ok=True)
    slug = font_family.replace(" ", "_").lower()

    try:
        urls = _font_urls(font_family, weights)
    except requests.RequestException as e:
        print(f"⚠ Could not query Google Fonts for '{font_family}': {e}")
        return None

    if not urls:
        return None

    font_files = {}
    for weight in weights:
        closest = min(urls, key=lambda w: abs(w - weight))
        url = urls[closest]
        name = WEIGHT_NAMES.get(weight, "regular")
        ext = "woff2" if url.endswith(".woff2") else "ttf"
        path = FONTS_CACHE_DIR / f"{slug}_{name}.{ext}"

        if not path.exists():
            try:
                r = requests.get(url, timeout=10)
                r.raise_for_status()
                path.write_bytes(r.content)
            except (requests.RequestException, OSError) as e:
                print(f"⚠ Skipping {font_family} {name}: {e}")
                continue
        font_files[name] = str(path)

    if "regular" not in font_files and font_files:
        font_files["regular"] = next(iter(font_files.values()))
    for name in ("bold", "light"):
        if name not in font_files and "regular" in font_files:
            font_files[name] = font_files["regular"]

    return font_files or None


def load_fonts(font_family: Optional[str] = None) -> Optional[dict]:
    """
    Load fonts from the local directory or Google Fonts.
    Returns a dict with 'bold', 'regular', 'light' keys, or None.
    """
    if font_family and font_family.lower() != "roboto":
        fonts = download_google_font(font_family)
        if fonts:
            return fonts
        print(f"⚠ Failed to load '{font_family}', falling back to Roboto")

    fonts = {
        "bold": os.path.join(FONTS_DIR, "Roboto-Bold.ttf"),
        "regular": os.path.join(FONTS_DIR, "Roboto-Regular.ttf"),
        "light": os.path.join(FONTS_DIR, "Roboto-Light.ttf"),
    }
    if all(os.path.exists(path) for path in fonts.values()):
        return fonts
    return None


def font_properties(fonts: Optional[dict], weight: str, size: float) -> FontProperties:
    """FontProperties for a loaded font weight, or monospace when none loaded."""
    if fonts and weight in fonts:
        return FontProperties(fname=fonts[weight], size=size)
    return FontProperties(
        family="monospace", weight="bold" if weight == "bold" else "normal", size=size
    )
