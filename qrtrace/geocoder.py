"""
Reverse geocoding for qrtrace.

Turns a coordinate pair into a human-readable place name using an
OpenStreetMap Nominatim compatible endpoint.
"""

from abc import ABC, abstractmethod

import requests

from .errors import GeocoderError


class Geocoder(ABC):
    """Abstract reverse geocoder."""

    @abstractmethod
    def lookup(self, latitude: float, longitude: float) -> str:
        """
        Return the display name for a coordinate pair.

        Raises:
            GeocoderError: on any network, status or payload failure
        """
        pass


class NominatimGeocoder(Geocoder):
    """
    Nominatim reverse lookup over HTTP.

    Nominatim's usage policy requires an identifying User-Agent.
    Docs: https://nominatim.org/release-docs/latest/api/Reverse/
    """

    def __init__(self, url: str, user_agent: str, timeout: float = 5.0):
        self._url = url
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._timeout = timeout

    def lookup(self, latitude: float, longitude: float) -> str:
        try:
            r = requests.get(
                self._url,
                params={"format": "json", "lat": latitude, "lon": longitude},
                headers=self._headers,
                timeout=self._timeout,
            )
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise GeocoderError(f"reverse lookup failed: {e}") from e
        except ValueError as e:
            raise GeocoderError("reverse lookup returned invalid JSON") from e

        name = data.get("display_name") if isinstance(data, dict) else None
        if not isinstance(name, str) or not name:
            raise GeocoderError("reverse lookup returned no display_name")
        return name
