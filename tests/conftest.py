import asyncio
import os
import sys
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TESTING", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.domain.analytics.cache import AnalyticsCache
from app.domain.analytics.repository import AggregateRow, GroupBy, PaymentTotalRow, TripOccupancyRow
from app.domain.analytics.schemas import RouteRef
from app.domain.analytics.service import AnalyticsService
from app.domain.bookings import db_models as booking_db_models  # noqa: F401
from app.domain.bookings import statuses
from app.infra.db import Base
from app.main import app, build_analytics
from app.settings import settings

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@dataclass
class FakeBooking:
    status: str
    amount: float
    booked_at: datetime
    route_id: str = "route-1"


@dataclass
class FakePayment:
    provider: str
    amount: float
    processed_at: datetime
    status: str = statuses.PAYMENT_COMPLETED


class StubRepository:
    """In-memory repository that counts every call it serves."""

    def __init__(self) -> None:
        self.bookings: list[FakeBooking] = []
        self.routes: dict[str, RouteRef] = {}
        self.trips: list[TripOccupancyRow] = []
        self.payments: list[FakePayment] = []
        self.calls: Counter[str] = Counter()
        self.error: Exception | None = None

    def add_bookings(self, count: int, status: str, amount: float, booked_at: datetime = NOW, route_id: str = "route-1") -> None:
        for _ in range(count):
            self.bookings.append(FakeBooking(status=status, amount=amount, booked_at=booked_at, route_id=route_id))

    def add_route(self, route_id: str, name: str) -> None:
        self.routes[route_id] = RouteRef(id=route_id, name=name, origin="A", destination="B")

    def _check(self, name: str) -> None:
        self.calls[name] += 1
        if self.error is not None:
            raise self.error

    async def count_and_sum(self, start, end, *, statuses=None, group_by=None):
        self._check("count_and_sum")
        grouped: dict[tuple[str | None, str], list] = defaultdict(lambda: [0, 0.0])
        for booking in self.bookings:
            if not (start <= booking.booked_at <= end):
                continue
            if statuses is not None and booking.status not in statuses:
                continue
            if group_by == GroupBy.ROUTE:
                group = booking.route_id
            elif group_by == GroupBy.DAY:
                group = booking.booked_at.astimezone(start.tzinfo).date().isoformat()
            else:
                group = None
            bucket = grouped[(group, booking.status)]
            bucket[0] += 1
            bucket[1] += booking.amount
        return [
            AggregateRow(status=status, count=count, amount=amount, group=group)
            for (group, status), (count, amount) in grouped.items()
        ]

    async def routes_by_id(self, route_ids):
        self._check("routes_by_id")
        return {route_id: self.routes[route_id] for route_id in route_ids if route_id in self.routes}

    async def trip_occupancy(self, start, end):
        self._check("trip_occupancy")
        return [trip for trip in self.trips if start <= trip.departure_time <= end]

    async def payment_totals(self, start, end):
        self._check("payment_totals")
        grouped: dict[str, list] = defaultdict(lambda: [0, 0.0])
        for payment in self.payments:
            if payment.status != statuses.PAYMENT_COMPLETED:
                continue
            if not (start <= payment.processed_at <= end):
                continue
            grouped[payment.provider][0] += 1
            grouped[payment.provider][1] += payment.amount
        return [
            PaymentTotalRow(provider=provider, count=count, amount=amount)
            for provider, (count, amount) in sorted(grouped.items())
        ]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="module")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def stub_repository():
    return StubRepository()


@pytest.fixture()
def fake_clock():
    return FakeClock()


@pytest.fixture()
def analytics_cache(fake_clock):
    return AnalyticsCache(clock=fake_clock)


@pytest.fixture()
def analytics_service(stub_repository, analytics_cache):
    return AnalyticsService(stub_repository, analytics_cache, clock=lambda: NOW)


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    # One connection per session: gathered queries run on whichever loop awaits them.
    database_path = tmp_path_factory.mktemp("db") / "analytics.sqlite3"
    engine = create_async_engine(f"sqlite+aiosqlite:///{database_path}", poolclass=NullPool)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original_username = settings.admin_basic_username
    original_password = settings.admin_basic_password
    original_testing = settings.testing
    original_metrics = settings.metrics_enabled
    original_metrics_token = settings.metrics_token
    settings.testing = True
    yield
    settings.admin_basic_username = original_username
    settings.admin_basic_password = original_password
    settings.testing = original_testing
    settings.metrics_enabled = original_metrics
    settings.metrics_token = original_metrics_token


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def admin_auth() -> tuple[str, str]:
    settings.admin_basic_username = "admin"
    settings.admin_basic_password = "secret"
    return ("admin", "secret")


@pytest.fixture()
def client(async_session_maker):
    original_state = {
        name: getattr(app.state, name)
        for name in ("db_session_factory", "analytics_cache", "analytics_service", "analytics_invalidation")
    }
    cache, service, invalidation = build_analytics(settings, async_session_maker)
    app.state.db_session_factory = async_session_maker
    app.state.analytics_cache = cache
    app.state.analytics_service = service
    app.state.analytics_invalidation = invalidation
    with TestClient(app) as test_client:
        yield test_client
    for name, value in original_state.items():
        setattr(app.state, name, value)
