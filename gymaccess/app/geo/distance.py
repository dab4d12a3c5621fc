"""Great-circle distance and nearest-facility ranking."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List

from ..passes.models import Facility

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RankedFacility:
    """Facility paired with its distance from the ranking origin."""

    facility: Facility
    distance_km: float


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in kilometres between two points on the Earth's surface."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def rank_facilities(origin: GeoPoint, facilities: Iterable[Facility], *, limit: int = 3) -> List[RankedFacility]:
    """Return the ``limit`` nearest facilities; those without coordinates are skipped."""

    ranked = [
        RankedFacility(
            facility=facility,
            distance_km=haversine_km(origin.latitude, origin.longitude, facility.latitude, facility.longitude),
        )
        for facility in facilities
        if facility.has_coordinates
    ]
    ranked.sort(key=lambda item: item.distance_km)
    return ranked[: max(limit, 0)]


__all__ = ["EARTH_RADIUS_KM", "GeoPoint", "RankedFacility", "haversine_km", "rank_facilities"]
