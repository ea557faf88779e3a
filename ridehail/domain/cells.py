"""
H3 spatial binning for the driver index.
=========================================

Each driver row carries the H3 cell of its last reported position.  A
proximity query converts the search radius into a ring count ``k`` and asks
the store for drivers in ``grid_disk(origin_cell, k)`` only; the exact
haversine check runs afterwards on that short list.

Ring sizing
-----------
Cell sizes vary across the globe and shrink around the twelve pentagons, so
an average edge length only gives a starting guess (``1.5 x k x edge`` is the
inner reach of a hexagonal disk).  The guess is then verified: any path from
the origin to a point outside ``grid_disk(origin, k)`` crosses a cell of ring
``k + 1``.  When every cell of that ring lies at least ``radius`` away (centre
distance minus circumradius, both measured with ``haversine_km``), the disk
holds every point within range.  Otherwise ``k`` grows by one and the check
repeats.

Complexity: O(k²) cells per query.
"""

from __future__ import annotations

import math

import h3

from .distance import haversine_km


def driver_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def nearest_km(lat: float, lng: float, cell: str) -> float:
    """Lower bound on the distance from (lat, lng) to any point of *cell*."""
    centre_lat, centre_lng = h3.cell_to_latlng(cell)
    circumradius = max(
        haversine_km(centre_lat, centre_lng, v_lat, v_lng)
        for v_lat, v_lng in h3.cell_to_boundary(cell)
    )
    return haversine_km(lat, lng, centre_lat, centre_lng) - circumradius


def rings_for_radius(
    lat: float, lng: float, radius_km: float, resolution: int = 7
) -> int:
    """Ring count whose disk around the origin cell holds every point within *radius_km*."""
    origin = driver_cell(lat, lng, resolution)
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    k = max(0, math.ceil(radius_km / (1.5 * edge_km)) - 1)

    disk = set(h3.grid_disk(origin, k))
    while True:
        wider = set(h3.grid_disk(origin, k + 1))
        if all(nearest_km(lat, lng, cell) >= radius_km for cell in wider - disk):
            return k
        disk = wider
        k += 1


def covering_cells(
    lat: float, lng: float, radius_km: float, resolution: int = 7
) -> list[str]:
    """All cells that may contain a point within *radius_km* of the origin.

    A superset: the caller still filters by exact distance.
    """
    origin = driver_cell(lat, lng, resolution)
    return sorted(h3.grid_disk(origin, rings_for_radius(lat, lng, radius_km, resolution)))
