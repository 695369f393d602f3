"""HTTP client for the events backend (tile index, batch join and broad list endpoints)."""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from processor.errors import InvalidResponseError, NetworkError, RequestTimeout
from processor.models import DateRange

logger = logging.getLogger(__name__)


class EventApiClient:
    """Blocking client for the events API. Returns raw event dicts."""

    BASE_URL = "https://api.bndy.co.uk"
    GEO_PATH = "/api/events/public/geo"
    BATCH_PATH = "/api/events/batch"
    PUBLIC_PATH = "/api/events/public"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10,
        max_retries: int = 2,
        base_delay: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: API root (default: production API)
            timeout: HTTP request timeout in seconds (default: 10)
            max_retries: Total attempts per request (default: 2)
            base_delay: First backoff delay in seconds, doubled per attempt
            session: Optional requests session to reuse
        """
        self.base_url = (base_url or self.BASE_URL).rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self.session.headers.setdefault('Accept', 'application/json')

    def fetch_tile_events(
        self,
        geohash: str,
        date_range: Optional[DateRange] = None,
    ) -> List[Dict[str, Any]]:
        """
        Query the spatial index for events in one geohash cell.

        Args:
            geohash: Cell token
            date_range: Optional date window

        Returns:
            Minimal event dicts (``{"id": ...}``); empty when nothing matches
        """
        params = {'geohash': geohash}
        if date_range:
            params.update(date_range.to_query_params())

        data = self._request('GET', self.GEO_PATH, params=params, target=geohash)
        return self._events_from(data, target=geohash)

    def fetch_events_batch(self, event_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Fetch fully joined records for a list of ids in one request.

        Ids unknown to the backend are simply absent from the result.

        Args:
            event_ids: Event ids to resolve

        Returns:
            Raw joined event dicts
        """
        data = self._request(
            'POST',
            self.BATCH_PATH,
            json_body={'eventIds': list(event_ids)},
            target=self.BATCH_PATH,
        )
        return self._events_from(data, target=self.BATCH_PATH)

    def fetch_public_events(self, date_range: Optional[DateRange] = None) -> List[Dict[str, Any]]:
        """
        Fetch every public event in a date window, with no spatial filter.

        Args:
            date_range: Optional date window

        Returns:
            Raw event dicts
        """
        params = date_range.to_query_params() if date_range else None
        data = self._request('GET', self.PUBLIC_PATH, params=params, target=self.PUBLIC_PATH)
        return self._events_from(data, target=self.PUBLIC_PATH)

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        target: Optional[str] = None,
    ) -> Any:
        """
        Send a request with retry logic.

        Timeouts, connection errors and 5xx responses are retried with
        exponential backoff; 4xx responses fail immediately.

        Raises:
            RequestTimeout: If the last attempt timed out
            NetworkError: For any other transport or HTTP failure
            InvalidResponseError: If the body is not JSON
        """
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"{method} {path} (attempt {attempt + 1}/{self.max_retries})")
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except requests.Timeout as e:
                cause = e
                error = RequestTimeout(
                    f"{method} {path} timed out after {self.timeout}s", target=target
                )
            except requests.HTTPError as e:
                cause = e
                status = e.response.status_code if e.response is not None else None
                error = NetworkError(f"{method} {path} failed with HTTP {status}", target=target)
                if status is not None and status < 500:
                    logger.error(f"Request rejected by API: {error}")
                    raise error from cause
            except requests.RequestException as e:
                cause = e
                error = NetworkError(f"{method} {path} failed: {e}", target=target)
            else:
                return self._decode(response, target)

            if attempt < self.max_retries - 1:
                # Calculate exponential backoff delay
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{self.max_retries}): {error}. "
                    f"Retrying in {delay} seconds..."
                )
                time.sleep(delay)
            else:
                logger.error(
                    f"All {self.max_retries} attempts failed. Last error: {error}"
                )
                raise error from cause

    def _decode(self, response: requests.Response, target: Optional[str]) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"Response from {response.url} is not valid JSON", target=target
            ) from e

    def _events_from(self, data: Any, target: Optional[str]) -> List[Dict[str, Any]]:
        events = data.get('events') if isinstance(data, dict) else None
        if not isinstance(events, list):
            raise InvalidResponseError(
                "Response is missing the 'events' list", target=target
            )
        return events
