"""Geocoding and distance primitives used by booking creation and matching"""
import logging
from math import radians, sin, cos, sqrt, atan2
from typing import Optional, Tuple

import httpx

from gorepair.config import settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


class GeocodingService:
    """Resolves service addresses to coordinates and measures distances"""

    @staticmethod
    def format_address(address: dict) -> str:
        """Join the non-empty address parts in street-to-country order"""
        parts = [
            address.get("street"),
            address.get("landmark"),
            address.get("city"),
            address.get("state"),
            address.get("pincode"),
            address.get("country"),
        ]
        return ", ".join(str(p) for p in parts if p)

    @staticmethod
    async def geocode_address(address: dict) -> Optional[Tuple[float, float]]:
        """
        Convert a booking address to (latitude, longitude)

        Tries OpenStreetMap Nominatim first, then Google when an API key is
        configured. Returns None when neither resolves the address; bookings
        are still accepted without coordinates.
        """
        full_address = GeocodingService.format_address(address)
        if not full_address:
            return None

        coordinates = await GeocodingService._geocode_nominatim(full_address)
        if coordinates:
            logger.info(f"Geocoded address via Nominatim: {full_address} -> {coordinates}")
            return coordinates

        if settings.GOOGLE_MAPS_API_KEY:
            coordinates = await GeocodingService._geocode_google(full_address)
            if coordinates:
                logger.info(f"Geocoded address via Google: {full_address} -> {coordinates}")
                return coordinates

        logger.warning(f"Failed to geocode address: {full_address}")
        return None

    @staticmethod
    async def _geocode_nominatim(address: str) -> Optional[Tuple[float, float]]:
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(
                    "https://nominatim.openstreetmap.org/search",
                    params={
                        "q": address,
                        "format": "json",
                        "limit": 1,
                        "countrycodes": settings.GEOCODING_COUNTRY_CODE
                    },
                    headers={"User-Agent": settings.NOMINATIM_USER_AGENT}  # Required by Nominatim
                )
                response.raise_for_status()
                data = response.json()
                if data:
                    lat = float(data[0].get("lat", 0))
                    lon = float(data[0].get("lon", 0))
                    if lat and lon:
                        return (lat, lon)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Nominatim geocoding error: {e}")
        return None

    @staticmethod
    async def _geocode_google(address: str) -> Optional[Tuple[float, float]]:
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(
                    "https://maps.googleapis.com/maps/api/geocode/json",
                    params={
                        "address": address,
                        "key": settings.GOOGLE_MAPS_API_KEY,
                        "region": settings.GEOCODING_COUNTRY_CODE
                    }
                )
                response.raise_for_status()
                data = response.json()
                if data.get("status") == "OK" and data.get("results"):
                    location = data["results"][0]["geometry"]["location"]
                    lat = float(location.get("lat", 0))
                    lng = float(location.get("lng", 0))
                    if lat and lng:
                        return (lat, lng)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Google geocoding error: {e}")
        return None

    @staticmethod
    def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Great-circle distance in kilometers (Haversine)"""
        lat1_rad, lon1_rad = radians(lat1), radians(lon1)
        lat2_rad, lon2_rad = radians(lat2), radians(lon2)

        dlat = lat2_rad - lat1_rad
        dlon = lon2_rad - lon1_rad

        a = sin(dlat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(dlon / 2) ** 2
        c = 2 * atan2(sqrt(a), sqrt(1 - a))
        return EARTH_RADIUS_KM * c

    @staticmethod
    def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return GeocodingService.calculate_distance(lat1, lon1, lat2, lon2) * 1000.0


# Create global instance
geocoding_service = GeocodingService()
