"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Repositories never commit; the calling
service owns the transaction boundary.

Every write to a contended row (``rides.status``/``rides.driver_id``,
``drivers.is_available``, ``riders.wallet_balance``) is a single conditional
``UPDATE ... WHERE <precondition>`` whose rowcount tells the caller whether
it won.  There is no read-then-write on those columns.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Collection, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DriverModel,
    LedgerEntryModel,
    PricingModel,
    RequestLogModel,
    RideModel,
    RiderModel,
)
from ridehail.domain.enums import (
    ACTIVE_STATUSES,
    LedgerReason,
    RideStatus,
    VehicleClass,
)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ride(self, **fields: Any) -> RideModel:
        ride = RideModel(status=RideStatus.REQUESTED, **fields)
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def reload(self, ride_id: int) -> Optional[RideModel]:
        """Re-read a ride, discarding any stale identity-map copy."""
        return await self.session.get(RideModel, ride_id, populate_existing=True)

    async def compare_and_set(
        self,
        ride_id: int,
        expected: Collection[RideStatus],
        values: dict[str, Any],
        driver_id: Optional[int] = None,
    ) -> bool:
        """
        ``UPDATE rides SET <values> WHERE id = :id AND status IN :expected
        [AND driver_id = :driver_id]``.  Returns True iff this call won.
        """
        stmt = (
            update(RideModel)
            .where(RideModel.id == ride_id)
            .where(RideModel.status.in_(list(expected)))
        )
        if driver_id is not None:
            stmt = stmt.where(RideModel.driver_id == driver_id)
        stmt = stmt.values(**values, updated_at=func.now()).execution_options(
            synchronize_session=False
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def history(
        self,
        *,
        rider_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        status: Optional[RideStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[RideModel], int]:
        conditions = []
        if rider_id is not None:
            conditions.append(RideModel.rider_id == rider_id)
        if driver_id is not None:
            conditions.append(RideModel.driver_id == driver_id)
        if status is not None:
            conditions.append(RideModel.status == status)

        total = await self.session.scalar(
            select(func.count()).select_from(RideModel).where(*conditions)
        )
        result = await self.session.execute(
            select(RideModel)
            .where(*conditions)
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def active_for_driver(self, driver_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.driver_id == driver_id)
            .where(RideModel.status.in_(list(ACTIVE_STATUSES)))
            .order_by(RideModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def count_completed_for_rider(self, rider_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideModel)
            .where(RideModel.rider_id == rider_id)
            .where(RideModel.status == RideStatus.COMPLETED)
        )
        return result.scalar() or 0

    async def average_fare_for_rider(self, rider_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.avg(RideModel.total_fare))
            .where(RideModel.rider_id == rider_id)
            .where(RideModel.status == RideStatus.COMPLETED)
        )
        value = result.scalar()
        return Decimal(str(value)) if value is not None else Decimal("0")

    async def stale_requested_ids(self, older_than: datetime) -> list[int]:
        result = await self.session.execute(
            select(RideModel.id)
            .where(RideModel.status == RideStatus.REQUESTED)
            .where(RideModel.created_at < older_than)
            .order_by(RideModel.created_at)
        )
        return list(result.scalars().all())


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id)

    async def reload(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(
            DriverModel, driver_id, populate_existing=True
        )

    async def update_position(
        self,
        driver_id: int,
        lat: float,
        lng: float,
        h3_cell: str,
        reported_at: datetime,
    ) -> bool:
        """Last-write-wins: older reports than the stored one are ignored."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .where(
                or_(
                    DriverModel.location_updated_at.is_(None),
                    DriverModel.location_updated_at <= reported_at,
                )
            )
            .values(
                current_lat=lat,
                current_lng=lng,
                h3_cell=h3_cell,
                location_updated_at=reported_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def dispatchable_in_cells(
        self, cells: Collection[str], vehicle_class: VehicleClass
    ) -> list[DriverModel]:
        if not cells:
            return []
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.h3_cell.in_(list(cells)))
            .where(DriverModel.vehicle_class == vehicle_class)
            .where(DriverModel.is_available.is_(True))
            .where(DriverModel.is_online.is_(True))
        )
        return list(result.scalars().all())

    async def still_dispatchable(self, driver_ids: Collection[int]) -> set[int]:
        if not driver_ids:
            return set()
        result = await self.session.execute(
            select(DriverModel.id)
            .where(DriverModel.id.in_(list(driver_ids)))
            .where(DriverModel.is_available.is_(True))
            .where(DriverModel.is_online.is_(True))
        )
        return set(result.scalars().all())

    async def claim(self, driver_id: int) -> bool:
        """Flip ``is_available`` true -> false; False if already busy."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .where(DriverModel.is_available.is_(True))
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, driver_id: int) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_available=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def toggle_online(self, driver_id: int) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_online=~DriverModel.is_online)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class RiderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, rider_id: int) -> Optional[RiderModel]:
        return await self.session.get(RiderModel, rider_id)

    async def get_balance(self, rider_id: int) -> Optional[Decimal]:
        result = await self.session.execute(
            select(RiderModel.wallet_balance).where(RiderModel.id == rider_id)
        )
        return result.scalar_one_or_none()

    async def debit_if_covered(self, rider_id: int, amount: Decimal) -> bool:
        result = await self.session.execute(
            update(RiderModel)
            .where(RiderModel.id == rider_id)
            .where(RiderModel.wallet_balance >= amount)
            .values(wallet_balance=RiderModel.wallet_balance - amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def credit(self, rider_id: int, amount: Decimal) -> bool:
        result = await self.session.execute(
            update(RiderModel)
            .where(RiderModel.id == rider_id)
            .values(wallet_balance=RiderModel.wallet_balance + amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class PricingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, vehicle_class: VehicleClass) -> Optional[PricingModel]:
        return await self.session.get(PricingModel, vehicle_class)


class LedgerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        *,
        rider_id: int,
        amount: Decimal,
        balance_after: Decimal,
        reason: LedgerReason,
        ride_id: Optional[int] = None,
    ) -> LedgerEntryModel:
        entry = LedgerEntryModel(
            rider_id=rider_id,
            ride_id=ride_id,
            amount=amount,
            balance_after=balance_after,
            reason=reason,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def for_rider(self, rider_id: int) -> list[LedgerEntryModel]:
        result = await self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.rider_id == rider_id)
            .order_by(LedgerEntryModel.id)
        )
        return list(result.scalars().all())


class RequestLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        *,
        rider_id: Optional[int],
        request_type: str,
        request_data: Optional[dict] = None,
        response_time_ms: Optional[float] = None,
    ) -> RequestLogModel:
        log = RequestLogModel(
            rider_id=rider_id,
            request_type=request_type,
            request_data=request_data,
            response_time_ms=response_time_ms,
        )
        self.session.add(log)
        await self.session.flush()
        return log
