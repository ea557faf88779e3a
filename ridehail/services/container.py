"""Wires the services together; one ``Services`` per application."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.config import Settings
from ridehail.domain.pricing import FareCalculator, SurgeSchedule
from ridehail.infrastructure.notifier import Notifier
from ridehail.infrastructure.offers import OfferStore
from ridehail.infrastructure.routing import RouteOracle
from .dispatch import DispatchCoordinator, DispatchPolicy
from .drivers import DriverService
from .geo_index import GeoIndex
from .ledger import Ledger
from .lifecycle import RideLifecycle
from .riders import RiderService


@dataclass
class Services:
    geo: GeoIndex
    ledger: Ledger
    lifecycle: RideLifecycle
    dispatch: DispatchCoordinator
    drivers: DriverService
    riders: RiderService


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    offers: OfferStore,
    router: RouteOracle,
    fares: Optional[FareCalculator] = None,
) -> Services:
    geo = GeoIndex(
        session_factory,
        resolution=settings.h3_resolution,
        default_radius_km=settings.search_radius_km,
        max_radius_km=settings.max_search_radius_km,
        default_limit=settings.candidate_limit,
    )
    ledger = Ledger(session_factory)
    lifecycle = RideLifecycle(
        session_factory,
        ledger,
        notifier,
        offers,
        pickup_radius_km=settings.search_radius_km,
    )
    fares = fares or FareCalculator(
        SurgeSchedule.from_settings(settings), settings.service_timezone
    )
    dispatch = DispatchCoordinator(
        session_factory,
        geo,
        ledger,
        lifecycle,
        fares,
        router,
        notifier,
        offers,
        DispatchPolicy.from_settings(settings),
    )
    return Services(
        geo=geo,
        ledger=ledger,
        lifecycle=lifecycle,
        dispatch=dispatch,
        drivers=DriverService(session_factory, geo, notifier),
        riders=RiderService(session_factory, ledger),
    )
