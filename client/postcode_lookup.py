"""Postcode to coordinate lookup via postcodes.io."""
import logging
from typing import Optional
from urllib.parse import quote

import requests

from processor.errors import (
    LocationUnavailable,
    NetworkError,
    RequestTimeout,
    ValidationError,
)
from processor.models import GeoPoint

logger = logging.getLogger(__name__)


class PostcodeLookup:
    """Resolves UK postcodes to a map center."""

    BASE_URL = "https://api.postcodes.io/postcodes"

    def __init__(self, timeout: float = 10, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def locate(self, postcode: str) -> GeoPoint:
        """
        Look up the coordinates of a postcode.

        Args:
            postcode: UK postcode, any spacing or case

        Returns:
            GeoPoint for the postcode centroid

        Raises:
            LocationUnavailable: If the postcode is unknown
            RequestTimeout: If the lookup timed out
            NetworkError: For other transport failures
        """
        normalized = ' '.join((postcode or '').upper().split())
        if not normalized:
            raise LocationUnavailable("No postcode given")

        url = f"{self.BASE_URL}/{quote(normalized)}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise RequestTimeout(f"Postcode lookup timed out for {normalized}", target=normalized) from e
        except requests.RequestException as e:
            raise NetworkError(f"Postcode lookup failed for {normalized}: {e}", target=normalized) from e

        if response.status_code == 404:
            raise LocationUnavailable(f"Unknown postcode: {normalized}")
        if not response.ok:
            raise NetworkError(
                f"Postcode lookup failed with HTTP {response.status_code}", target=normalized
            )

        try:
            result = response.json()['result']
            point = GeoPoint(lat=result['latitude'], lng=result['longitude'])
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise LocationUnavailable(f"No coordinates for postcode {normalized}") from e

        logger.info(f"Resolved postcode {normalized} to ({point.lat}, {point.lng})")
        return point
