"""HTTP client for OSRM road distances."""

from __future__ import annotations

import logging
import time

import httpx

from ...config import settings
from ...models.domain import Coordinate

logger = logging.getLogger(__name__)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float = 10.0,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.timeout = timeout
        self.transport = transport

    def _get_client(self) -> httpx.Client:
        return httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0), transport=self.transport)

    def route(self, coordinates: list[Coordinate]) -> dict:
        """Fetch the driving route through ``coordinates`` from the OSRM route endpoint."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")

        coordinate_str = ";".join(f"{point.longitude},{point.latitude}" for point in coordinates)
        params = {"overview": "false", "steps": "false"}
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code") != "Ok" or not data.get("routes"):
                        error_msg = data.get("message", "Unknown OSRM route error")
                        raise ValueError(f"OSRM route request failed: {error_msg}")
                    return data
                except (httpx.TimeoutException, httpx.ConnectError, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(f"Failed to reach OSRM service at {self.base_url}: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except httpx.HTTPStatusError:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
        finally:
            client.close()

    def route_distance_km(self, origin: Coordinate, destination: Coordinate) -> float:
        data = self.route([origin, destination])
        return float(data["routes"][0]["distance"]) / 1000.0


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM reachability with a minimal two-point route request."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        test_coords = "13.388860,52.517037;13.385983,52.496891"
        url = f"{base}/route/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"overview": "false"}, timeout=5.0)
        response.raise_for_status()
        return response.json().get("code") == "Ok"
    except (httpx.HTTPError, ValueError):
        return False
