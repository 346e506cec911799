"""
Place Resolver

Turns a free-text place name into a bounding box using Nominatim through geopy.
"""

import time

from geopy.exc import GeocoderServiceError
from geopy.geocoders import Nominatim

from map_types import (
    DEFAULT_TIMEOUT,
    AmbiguousPlace,
    BoundingBox,
    MalformedResponse,
    NetworkError,
    PlaceNotFound,
)

USER_AGENT = "city_streetmaps"


def default_geocoder(timeout=DEFAULT_TIMEOUT):
    # Respect Nominatim's one-request-per-second usage policy
    time.sleep(1)
    return Nominatim(user_agent=USER_AGENT, timeout=timeout)


def _candidate_bbox(location) -> BoundingBox:
    """
    Read the bounding box of a geopy Location.

    Nominatim reports it as [south, north, west, east] strings.
    """
    raw = getattr(location, "raw", None) or {}
    try:
        south, north, west, east = (float(v) for v in raw["boundingbox"])
        return BoundingBox(west, south, east, north)
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponse(
            f"Geocoder returned no usable bounding box for {getattr(location, 'address', location)}: {e}",
            stage="resolve",
        ) from e


def _importance(location) -> float:
    raw = getattr(location, "raw", None) or {}
    try:
        return float(raw.get("importance", 0.0))
    except (TypeError, ValueError):
        return 0.0


def resolve_place(place: str, geocoder=None, strict=False, timeout=DEFAULT_TIMEOUT) -> BoundingBox:
    """
    Look up the bounding box of a place.

    Args:
        place: Free-text place name, e.g. "Rio de Janeiro Brazil"
        geocoder: Object with a geopy-style `geocode(query, exactly_one=...)`;
            a Nominatim client is created when omitted
        strict: Raise AmbiguousPlace instead of taking the first of several
            equally ranked candidates
        timeout: Seconds before the lookup is abandoned

    Returns:
        BoundingBox of the highest-ranked candidate

    Raises:
        PlaceNotFound: If nothing matches
        AmbiguousPlace: In strict mode, if the top rank is shared
        NetworkError: If the geocoder is unreachable or times out
    """
    if not place or not place.strip():
        raise PlaceNotFound("Empty place name")

    if geocoder is None:
        geocoder = default_geocoder(timeout)

    print(f"Looking up bounding box for {place}...")
    try:
        candidates = geocoder.geocode(place, exactly_one=False)
    except GeocoderServiceError as e:
        raise NetworkError(f"Geocoding failed for {place}: {e}", stage="resolve") from e

    if not candidates:
        raise PlaceNotFound(f"Could not find a place matching '{place}'")

    best = candidates[0]
    if strict and len(candidates) > 1:
        top = _importance(best)
        tied = [c for c in candidates if _importance(c) == top]
        if len(tied) > 1:
            names = "; ".join(str(getattr(c, "address", c)) for c in tied)
            raise AmbiguousPlace(f"'{place}' matches {len(tied)} places equally: {names}")

    bbox = _candidate_bbox(best)
    addr = getattr(best, "address", None)
    if addr:
        print(f"✓ Found: {addr}")
    print(f"✓ Bounding box: {bbox.west}, {bbox.south}, {bbox.east}, {bbox.north}")
    return bbox
