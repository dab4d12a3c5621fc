"""Location helpers used to personalize subscriber notifications."""
from .distance import EARTH_RADIUS_KM, GeoPoint, RankedFacility, haversine_km, rank_facilities
from .geocoding import GeoapifyGeocoder, Geocoder

__all__ = [
    "EARTH_RADIUS_KM",
    "GeoPoint",
    "GeoapifyGeocoder",
    "Geocoder",
    "RankedFacility",
    "haversine_km",
    "rank_facilities",
]
