"""
Distance / duration oracle.

``OSRMRouteOracle`` talks to an OSRM-compatible ``/route`` endpoint over
HTTP and returns a normalised ``RouteEstimate``.  It knows nothing about
fallbacks or degraded mode; the dispatch coordinator bounds the call with a
timeout and substitutes configured defaults on any failure.

OSRM expects ``lon,lat`` order; internally we always pass ``Location``.
"""

from __future__ import annotations

from typing import Optional, Protocol

import httpx

from ridehail.domain.entities import Location, RouteEstimate


class RouteOracleError(Exception):
    pass


class RouteOracle(Protocol):
    async def route(self, origin: Location, destination: Location) -> RouteEstimate: ...


class OSRMRouteOracle:
    def __init__(
        self,
        base_url: str,
        profile: str = "driving",
        timeout: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self._client = client

    @staticmethod
    def format_coordinates(*points: Location) -> str:
        return ";".join(f"{p.longitude},{p.latitude}" for p in points)

    async def route(self, origin: Location, destination: Location) -> RouteEstimate:
        url = (
            f"{self.base_url}/route/v1/{self.profile}/"
            f"{self.format_coordinates(origin, destination)}"
        )
        try:
            if self._client is not None:
                response = await self._client.get(
                    url, params={"overview": "false"}, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params={"overview": "false"})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RouteOracleError(f"Routing request failed: {exc}") from exc

        if data.get("code") != "Ok" or not data.get("routes"):
            raise RouteOracleError(f"OSRM error: {data.get('message', data.get('code'))}")

        leg = data["routes"][0]
        return RouteEstimate(
            distance_km=leg["distance"] / 1000.0,
            duration_min=leg["duration"] / 60.0,
        )
