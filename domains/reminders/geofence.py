"""Geofence helpers: great-circle distance and location resolution."""

import math
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from config import GEOCODER_URL, GEOCODER_USER_AGENT
from logger import logger
from . import config
from .errors import ValidationError

_COORD_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def __post_init__(self):
        if not -90 <= self.lat <= 90 or not -180 <= self.lng <= 180:
            raise ValidationError(f"Coordinates out of range: {self.lat}, {self.lng}")


def haversine_distance(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in metres."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)

    h = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) *
         math.sin(d_lng / 2) ** 2)

    return 2 * config.EARTH_RADIUS_METERS * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def parse_coordinates(value: Any) -> Optional[Coordinates]:
    """Read coordinates from a dict, a (lat, lng) pair or a "lat,lng" string.

    Returns:
        Coordinates, or None if `value` is not a coordinate form (e.g. a place name)

    Raises:
        ValidationError: If it looks like coordinates but they are out of range
    """
    if isinstance(value, Coordinates):
        return value
    try:
        if isinstance(value, dict):
            lat = value.get("lat", value.get("latitude"))
            lng = value.get("lng", value.get("lon", value.get("longitude")))
            if lat is None or lng is None:
                return None
            return Coordinates(float(lat), float(lng))
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return Coordinates(float(value[0]), float(value[1]))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid coordinates {value!r}: {e}") from e
    if isinstance(value, str):
        match = _COORD_PATTERN.match(value)
        if match:
            return Coordinates(float(match.group(1)), float(match.group(2)))
    return None


class Geocoder(Protocol):
    """Resolves a place name to coordinates."""

    async def resolve(self, name: str) -> Optional[Coordinates]:
        ...


class NominatimGeocoder:
    """Geocoder backed by a Nominatim-compatible search endpoint."""

    def __init__(self, url: str = GEOCODER_URL, user_agent: str = GEOCODER_USER_AGENT):
        self.url = url
        self.user_agent = user_agent

    async def resolve(self, name: str) -> Optional[Coordinates]:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    self.url,
                    params={"q": name, "format": "json", "limit": 1},
                    headers={"User-Agent": self.user_agent},
                    timeout=config.GEOCODER_TIMEOUT
                )
                response.raise_for_status()
                results = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Geocoding failed for '{name}': {e}")
            return None

        if not results:
            logger.warning(f"No geocoding match for '{name}'")
            return None

        return Coordinates(float(results[0]["lat"]), float(results[0]["lon"]))


async def resolve_location(location: Any, geocoder: Optional[Geocoder] = None) -> Coordinates:
    """Turn a location (coordinates or place name) into coordinates.

    Raises:
        ValidationError: If the location can't be resolved
    """
    coords = parse_coordinates(location)
    if coords is not None:
        return coords

    if isinstance(location, str) and location.strip() and geocoder is not None:
        coords = await geocoder.resolve(location.strip())
        if coords is not None:
            return coords

    raise ValidationError(f"Cannot resolve location: {location!r}")
