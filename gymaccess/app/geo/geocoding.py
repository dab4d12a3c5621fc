"""Postcode geocoding backed by the Geoapify search API."""
from __future__ import annotations

import http.client
import json
import logging
from typing import Optional, Protocol
from urllib import parse as urllib_parse, request as urllib_request

from .distance import GeoPoint

logger = logging.getLogger("geocoding")

GEOAPIFY_SEARCH_URL = "https://api.geoapify.com/v1/geocode/search"


class Geocoder(Protocol):
    def geocode(self, query: str) -> Optional[GeoPoint]:
        ...


class GeoapifyGeocoder:
    """Resolve free-text locations such as postcodes to coordinates."""

    def __init__(self, api_key: Optional[str], *, timeout: float = 5.0) -> None:
        self._api_key = api_key
        self._timeout = timeout

    def geocode(self, query: str) -> Optional[GeoPoint]:
        search = (query or "").strip()
        if not search:
            return None
        if not self._api_key:
            logger.warning("Geocoding skipped: API key is not configured")
            return None

        params = {"text": search, "format": "json", "apiKey": self._api_key}
        url = f"{GEOAPIFY_SEARCH_URL}?{urllib_parse.urlencode(params)}"
        try:
            with urllib_request.urlopen(url, timeout=self._timeout) as response:
                body = response.read()
            payload = json.loads(body.decode("utf-8"))
        except (OSError, http.client.HTTPException, ValueError) as exc:
            logger.warning("Geocoding lookup failed", extra={"postcode": search, "error": str(exc)})
            return None

        results = payload.get("results") if isinstance(payload, dict) else None
        if not results:
            logger.info("Geocoding returned no results", extra={"postcode": search})
            return None
        first = results[0]
        try:
            return GeoPoint(latitude=float(first["lat"]), longitude=float(first["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.warning("Geocoding result missing coordinates", extra={"postcode": search})
            return None


__all__ = ["GEOAPIFY_SEARCH_URL", "GeoapifyGeocoder", "Geocoder"]
