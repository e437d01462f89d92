"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from typing import Sequence

import httpx

from ...config import settings

logger = logging.getLogger(__name__)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        # One client per call; calls may run on worker threads.
        return httpx.Client(transport=self._transport)

    def _attempt_timeout(self, deadline: float, attempt: int) -> httpx.Timeout:
        """Split what is left of the call budget evenly over the attempts still allowed."""
        remaining = max(deadline - time.monotonic(), 0.0)
        share = remaining / (self.max_retries + 1 - attempt)
        return httpx.Timeout(share, connect=min(share, 10.0))

    def _can_retry(self, attempt: int, wait_time: float, deadline: float) -> bool:
        return attempt <= self.max_retries and time.monotonic() + wait_time < deadline

    def _get_json(self, url: str, params: dict) -> dict:
        """GET ``url`` with retries, all attempts and backoff sleeps within ``self.timeout``."""
        client = self._get_client()
        deadline = time.monotonic() + self.timeout
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params, timeout=self._attempt_timeout(deadline, attempt))
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code", "Ok") != "Ok":
                        raise ValueError(f"OSRM request failed: {data.get('message', data.get('code'))}")
                    return data
                except httpx.HTTPStatusError as e:
                    if e.response.status_code == 414:
                        raise ValueError("OSRM request URL too large.") from e
                    attempt += 1
                    wait_time = self.backoff_seconds * attempt
                    if not self._can_retry(attempt, wait_time, deadline):
                        raise
                    time.sleep(wait_time)
                except httpx.TimeoutException as e:
                    attempt += 1
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    if not self._can_retry(attempt, wait_time, deadline):
                        logger.warning(f"OSRM request timed out after {attempt} attempt(s): {e}")
                        raise
                    logger.debug(f"OSRM request timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.ConnectError, httpx.NetworkError) as e:
                    attempt += 1
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    if not self._can_retry(attempt, wait_time, deadline):
                        raise ConnectionError(
                            f"Failed to connect to OSRM service at {self.base_url}: {e}"
                        ) from e
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
        finally:
            client.close()

    def table(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Get the duration (seconds) and distance (meters) matrix for (lat, lon) coordinates."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM table.")

        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        url = f"{self.base_url}/table/v1/{self.profile}/{coordinate_str}"
        data = self._get_json(url, {"annotations": "duration,distance"})
        if "durations" not in data or "distances" not in data:
            raise ValueError("OSRM response missing durations/distances.")
        return data

    def route(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Get the driving route through the coordinates in the given order.

        Returns the raw OSRM payload; ``routes[0]["legs"]`` carries per-leg
        duration (seconds) and distance (meters).
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")

        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"
        params = {
            "overview": "full",
            "geometries": "polyline",
            "steps": "false",
        }
        data = self._get_json(url, params)
        if not data.get("routes"):
            raise ValueError("OSRM route response contained no routes.")
        return data


def decode_polyline(polyline: str) -> list[tuple[float, float]]:
    """Decode Google polyline string to list of (lat, lon) coordinates.

    OSRM uses Google's polyline encoding format for route geometry.
    """
    coordinates = []
    index = 0
    lat = 0
    lon = 0

    while index < len(polyline):
        shift = 0
        result = 0
        while True:
            b = ord(polyline[index]) - 63
            index += 1
            result |= (b & 0x1f) << shift
            shift += 5
            if b < 0x20:
                break
        lat += ~(result >> 1) if (result & 1) else (result >> 1)

        shift = 0
        result = 0
        while True:
            b = ord(polyline[index]) - 63
            index += 1
            result |= (b & 0x1f) << shift
            shift += 5
            if b < 0x20:
                break
        lon += ~(result >> 1) if (result & 1) else (result >> 1)

        coordinates.append((lat / 1e5, lon / 1e5))

    return coordinates


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health by making a minimal table request."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        test_coords = "13.388860,52.517037;13.385983,52.496891"
        url = f"{base.rstrip('/')}/table/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"annotations": "duration"}, timeout=5.0)
        response.raise_for_status()
        data = response.json()
        return "durations" in data and isinstance(data.get("durations"), list)
    except (httpx.HTTPError, ValueError):
        return False
