"""Data access for booking analytics.

The aggregation engine only talks to :class:`AnalyticsRepository`. The
SQLAlchemy implementation opens a fresh session per call, so independent
queries can be awaited concurrently with ``asyncio.gather``.
"""

from collections.abc import Iterable
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.analytics.schemas import RouteRef
from app.domain.bookings import statuses as booking_statuses
from app.domain.bookings.db_models import Booking, Bus, Payment, Route, SeatLayout, SeatStatus, Trip


class GroupBy(StrEnum):
    ROUTE = "route"
    DAY = "day"


@dataclass(frozen=True)
class AggregateRow:
    status: str
    count: int
    amount: float
    group: str | None = None


@dataclass(frozen=True)
class TripOccupancyRow:
    trip_id: str
    route_id: str
    route_name: str
    departure_time: datetime
    total_seats: int
    occupied_seats: int


@dataclass(frozen=True)
class PaymentTotalRow:
    provider: str
    count: int
    amount: float


class AnalyticsRepository(Protocol):
    async def count_and_sum(
        self,
        start: datetime,
        end: datetime,
        *,
        statuses: Iterable[str] | None = None,
        group_by: GroupBy | None = None,
    ) -> list[AggregateRow]: ...

    async def routes_by_id(self, route_ids: Iterable[str]) -> dict[str, RouteRef]: ...

    async def trip_occupancy(self, start: datetime, end: datetime) -> list[TripOccupancyRow]: ...

    async def payment_totals(self, start: datetime, end: datetime) -> list[PaymentTotalRow]: ...


def _as_float(value: Decimal | float | int | None) -> float:
    if value is None:
        return 0.0
    return float(value)


def _normalize_dt(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _bound(value: datetime) -> datetime:
    # SQLite drops offsets on bind, so bounds go out as UTC wall-clock values.
    return _normalize_dt(value).astimezone(timezone.utc)


class SqlAlchemyAnalyticsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def count_and_sum(
        self,
        start: datetime,
        end: datetime,
        *,
        statuses: Iterable[str] | None = None,
        group_by: GroupBy | None = None,
    ) -> list[AggregateRow]:
        if group_by == GroupBy.DAY:
            return await self._count_and_sum_by_day(start, end, statuses)

        columns = [Booking.status, func.count(Booking.booking_id), func.sum(Booking.total_amount)]
        group_columns = [Booking.status]
        if group_by == GroupBy.ROUTE:
            columns.append(Trip.route_id)
            group_columns.insert(0, Trip.route_id)

        stmt = select(*columns).select_from(Booking)
        if group_by == GroupBy.ROUTE:
            stmt = stmt.join(Trip, Trip.trip_id == Booking.trip_id)
        stmt = stmt.where(Booking.booked_at >= _bound(start), Booking.booked_at <= _bound(end))
        if statuses is not None:
            stmt = stmt.where(Booking.status.in_(list(statuses)))
        stmt = stmt.group_by(*group_columns).order_by(*group_columns)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            AggregateRow(
                status=str(row[0]).lower(),
                count=int(row[1] or 0),
                amount=_as_float(row[2]),
                group=str(row[3]) if group_by == GroupBy.ROUTE else None,
            )
            for row in rows
        ]

    async def _count_and_sum_by_day(
        self,
        start: datetime,
        end: datetime,
        statuses: Iterable[str] | None,
    ) -> list[AggregateRow]:
        # Days are cut in the window's timezone, not the database session's.
        stmt = select(Booking.status, Booking.booked_at, Booking.total_amount).where(
            Booking.booked_at >= _bound(start),
            Booking.booked_at <= _bound(end),
        )
        if statuses is not None:
            stmt = stmt.where(Booking.status.in_(list(statuses)))

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        tz = start.tzinfo or timezone.utc
        counts: dict[tuple[str, str], int] = defaultdict(int)
        amounts: dict[tuple[str, str], float] = defaultdict(float)
        for status, booked_at, amount in rows:
            day = _normalize_dt(booked_at).astimezone(tz).date().isoformat()
            key = (day, str(status).lower())
            counts[key] += 1
            amounts[key] += _as_float(amount)
        return [
            AggregateRow(status=status, count=counts[(day, status)], amount=amounts[(day, status)], group=day)
            for day, status in sorted(counts)
        ]

    async def routes_by_id(self, route_ids: Iterable[str]) -> dict[str, RouteRef]:
        ids = list(route_ids)
        if not ids:
            return {}
        stmt = select(Route).where(Route.route_id.in_(ids))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            routes = result.scalars().all()
        return {
            route.route_id: RouteRef(
                id=route.route_id,
                name=route.name,
                origin=route.origin,
                destination=route.destination,
            )
            for route in routes
        }

    async def trip_occupancy(self, start: datetime, end: datetime) -> list[TripOccupancyRow]:
        trips_stmt = (
            select(
                Trip.trip_id,
                Trip.route_id,
                Route.name,
                Trip.departure_time,
                SeatLayout.total_rows,
                SeatLayout.seats_per_row,
            )
            .join(Route, Route.route_id == Trip.route_id)
            .join(Bus, Bus.bus_id == Trip.bus_id)
            .outerjoin(SeatLayout, SeatLayout.bus_id == Bus.bus_id)
            .where(
                Trip.departure_time >= _bound(start),
                Trip.departure_time <= _bound(end),
                Trip.deleted.is_(False),
            )
            .order_by(Trip.departure_time, Trip.trip_id)
        )
        booked_stmt = (
            select(SeatStatus.trip_id, func.count(SeatStatus.seat_status_id))
            .join(Trip, Trip.trip_id == SeatStatus.trip_id)
            .where(
                SeatStatus.state == booking_statuses.SEAT_BOOKED,
                Trip.departure_time >= _bound(start),
                Trip.departure_time <= _bound(end),
                Trip.deleted.is_(False),
            )
            .group_by(SeatStatus.trip_id)
        )
        async with self._session_factory() as session:
            trip_rows = (await session.execute(trips_stmt)).all()
            booked_rows = (await session.execute(booked_stmt)).all()

        booked = {trip_id: int(count or 0) for trip_id, count in booked_rows}
        return [
            TripOccupancyRow(
                trip_id=trip_id,
                route_id=route_id,
                route_name=route_name,
                departure_time=departure_time,
                total_seats=int(total_rows or 0) * int(seats_per_row or 0),
                occupied_seats=booked.get(trip_id, 0),
            )
            for trip_id, route_id, route_name, departure_time, total_rows, seats_per_row in trip_rows
        ]

    async def payment_totals(self, start: datetime, end: datetime) -> list[PaymentTotalRow]:
        stmt = (
            select(Payment.provider, func.count(Payment.payment_id), func.sum(Payment.amount))
            .where(
                Payment.status == booking_statuses.PAYMENT_COMPLETED,
                Payment.processed_at >= _bound(start),
                Payment.processed_at <= _bound(end),
            )
            .group_by(Payment.provider)
            .order_by(Payment.provider)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()
        return [
            PaymentTotalRow(provider=str(provider), count=int(count or 0), amount=_as_float(amount))
            for provider, count, amount in rows
        ]
