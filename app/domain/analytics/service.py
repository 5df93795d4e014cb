import asyncio
import math
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo

from app.domain.analytics import schemas
from app.domain.analytics.cache import AnalyticsCache, with_cache
from app.domain.analytics.repository import AggregateRow, AnalyticsRepository, GroupBy
from app.domain.analytics.windows import TimeWindow, WeekStart, resolve_window, trend_buckets
from app.domain.bookings import statuses

# Cheap, volatile counts expire quickly; join-heavy reports live longer.
CACHE_TTL_SECONDS: dict[str, float] = {
    "booking_summary": 5 * 60,
    "total_bookings_count": 5 * 60,
    "booking_trends": 10 * 60,
    "conversion_analytics": 10 * 60,
    "detailed_conversion": 10 * 60,
    "booking_growth": 10 * 60,
    "payment_methods": 10 * 60,
    "route_analytics": 15 * 60,
    "popular_routes": 15 * 60,
    "seat_occupancy": 15 * 60,
}

DROP_OFF_HINT_THRESHOLD = 50.0
LOW_CONVERSION_THRESHOLD = 10.0

DEFAULT_MAX_RANGE_DAYS = 1096
DEFAULT_MAX_CONCURRENT_QUERIES = 4


def _percent(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def _average(total: float, count: int) -> float:
    if not count:
        return 0.0
    return round(total / count, 2)


def _estimate(count: int, multiplier: float) -> int:
    return int(math.floor(count * multiplier + 0.5))


@dataclass(frozen=True)
class FunnelModel:
    """Placeholder ratios for funnel stages that have no telemetry behind them."""

    visitor_multiplier: float = 2.5
    search_multiplier: float = 3.5
    seat_selection_multiplier: float = 1.5
    booking_attempt_multiplier: float = 1.2

    @classmethod
    def from_settings(cls, app_settings) -> "FunnelModel":
        return cls(
            visitor_multiplier=app_settings.analytics_funnel_visitor_multiplier,
            search_multiplier=app_settings.analytics_funnel_search_multiplier,
            seat_selection_multiplier=app_settings.analytics_funnel_seat_selection_multiplier,
            booking_attempt_multiplier=app_settings.analytics_funnel_booking_attempt_multiplier,
        )


@dataclass
class StatusTotals:
    counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    revenue: float = 0.0

    @classmethod
    def from_rows(cls, rows: Iterable[AggregateRow]) -> "StatusTotals":
        totals = cls()
        for row in rows:
            totals.add(row)
        return totals

    def add(self, row: AggregateRow) -> None:
        self.counts[row.status] += row.count
        if row.status in statuses.REVENUE_STATUSES:
            self.revenue += row.amount

    def count(self, status: str) -> int:
        return self.counts.get(status, 0)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def paid(self) -> int:
        return sum(self.count(status) for status in statuses.REVENUE_STATUSES)


def _group_totals(rows: Iterable[AggregateRow]) -> dict[str, StatusTotals]:
    grouped: dict[str, StatusTotals] = {}
    for row in rows:
        if row.group is None:
            continue
        grouped.setdefault(row.group, StatusTotals()).add(row)
    return grouped


def _build_funnel(stages: list[tuple[str, int]]) -> list[schemas.FunnelStep]:
    steps: list[schemas.FunnelStep] = []
    for index, (name, count) in enumerate(stages):
        if index == 0:
            conversion, drop_off = 100.0, 0.0
        else:
            previous = stages[index - 1][1]
            conversion = _percent(count, previous)
            drop_off = round(100 - conversion, 2) if previous else 0.0
        steps.append(
            schemas.FunnelStep(step=name, count=count, conversion_rate=conversion, drop_off_rate=drop_off)
        )
    return steps


def _trend_direction(current: int, previous: int) -> str:
    if current > previous:
        return "up"
    if current < previous:
        return "down"
    return "stable"


class AnalyticsService:
    """Booking analytics over resolved reporting windows.

    Every public aggregation is wrapped with :func:`with_cache` at construction
    time, so callers get memoized results keyed by method name and query.
    """

    def __init__(
        self,
        repository: AnalyticsRepository,
        cache: AnalyticsCache,
        *,
        tz: tzinfo = timezone.utc,
        week_start: WeekStart = "monday",
        funnel: FunnelModel | None = None,
        max_range_days: int | None = DEFAULT_MAX_RANGE_DAYS,
        max_concurrent_queries: int = DEFAULT_MAX_CONCURRENT_QUERIES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.tz = tz
        self.week_start = week_start
        self.funnel = funnel or FunnelModel()
        self.max_range_days = max_range_days
        self.max_concurrent_queries = max_concurrent_queries
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

        self.booking_summary = self._memoize("booking_summary", self._booking_summary)
        self.total_bookings_count = self._memoize("total_bookings_count", self._total_bookings_count)
        self.booking_trends = self._memoize("booking_trends", self._booking_trends)
        self.route_analytics = self._memoize("route_analytics", self._route_analytics)
        self.conversion_analytics = self._memoize("conversion_analytics", self._conversion_analytics)
        self.booking_growth = self._memoize("booking_growth", self._booking_growth)
        self.popular_routes = self._memoize("popular_routes", self._popular_routes)
        self.seat_occupancy = self._memoize("seat_occupancy", self._seat_occupancy)
        self.detailed_conversion = self._memoize("detailed_conversion", self._detailed_conversion)
        self.payment_methods = self._memoize("payment_methods", self._payment_methods)

    @classmethod
    def from_settings(
        cls,
        repository: AnalyticsRepository,
        cache: AnalyticsCache,
        app_settings,
        clock: Callable[[], datetime] | None = None,
    ) -> "AnalyticsService":
        return cls(
            repository,
            cache,
            tz=app_settings.reporting_tz,
            week_start=app_settings.analytics_week_start,
            funnel=FunnelModel.from_settings(app_settings),
            max_range_days=app_settings.analytics_max_range_days,
            max_concurrent_queries=app_settings.analytics_max_concurrent_queries,
            clock=clock,
        )

    def _memoize(self, name: str, fn):
        return with_cache(self.cache, name, fn, CACHE_TTL_SECONDS[name])

    def resolve(self, query: schemas.AnalyticsQuery) -> TimeWindow:
        return resolve_window(
            query,
            self._clock(),
            tz=self.tz,
            week_start=self.week_start,
            max_days=self.max_range_days,
        )

    async def _gather(self, *aws):
        # Caps how many repository queries one aggregation keeps in flight.
        semaphore = asyncio.Semaphore(self.max_concurrent_queries)

        async def bounded(aw):
            async with semaphore:
                return await aw

        return await asyncio.gather(*(bounded(aw) for aw in aws))

    @staticmethod
    def _period(window: TimeWindow) -> schemas.AnalyticsPeriod:
        return schemas.AnalyticsPeriod(start_date=window.start, end_date=window.end)

    async def _totals(self, window: TimeWindow) -> StatusTotals:
        rows = await self.repository.count_and_sum(window.start, window.end)
        return StatusTotals.from_rows(rows)

    async def _route_totals(self, window: TimeWindow) -> dict[str, StatusTotals]:
        rows = await self.repository.count_and_sum(window.start, window.end, group_by=GroupBy.ROUTE)
        return _group_totals(rows)

    async def _route_refs(self, route_ids: list[str]) -> dict[str, schemas.RouteRef]:
        refs = await self.repository.routes_by_id(route_ids)
        for route_id in route_ids:
            if route_id not in refs:
                refs[route_id] = schemas.RouteRef(id=route_id, name=route_id, origin="", destination="")
        return refs

    async def _booking_summary(self, query: schemas.AnalyticsQuery) -> schemas.BookingSummary:
        window = self.resolve(query)
        totals = await self._totals(window)
        return schemas.BookingSummary(
            total_bookings=totals.total,
            paid_bookings=totals.paid,
            completed_bookings=totals.count(statuses.COMPLETED),
            pending_bookings=totals.count(statuses.PENDING),
            cancelled_bookings=totals.count(statuses.CANCELLED),
            expired_bookings=totals.count(statuses.EXPIRED),
            total_revenue=round(totals.revenue, 2),
            average_booking_value=_average(totals.revenue, totals.paid),
            conversion_rate=_percent(totals.paid, totals.total),
            period=self._period(window),
        )

    async def _total_bookings_count(self, query: schemas.AnalyticsQuery) -> schemas.TotalBookingsCount:
        window = self.resolve(query)
        totals = await self._totals(window)
        return schemas.TotalBookingsCount(
            total_bookings=totals.total,
            by_status={status: totals.count(status) for status in sorted(statuses.STATUSES)},
            period=self._period(window),
        )

    async def _booking_trends(self, query: schemas.AnalyticsQuery) -> schemas.BookingTrends:
        window = self.resolve(query)
        buckets = trend_buckets(window, query.timeframe, week_start=self.week_start)
        results = await self._gather(
            *(self.repository.count_and_sum(bucket.query_start, bucket.query_end) for bucket in buckets)
        )

        points: list[schemas.TrendDataPoint] = []
        for bucket, rows in zip(buckets, results):
            totals = StatusTotals.from_rows(rows)
            points.append(
                schemas.TrendDataPoint(
                    date=bucket.label,
                    bookings=totals.total,
                    revenue=round(totals.revenue, 2),
                    conversion_rate=_percent(totals.paid, totals.total),
                )
            )

        growth_rate = 0.0
        if len(points) >= 2:
            first, last = points[0].revenue, points[-1].revenue
            growth_rate = _percent(last - first, first)
        average_conversion = (
            round(sum(point.conversion_rate for point in points) / len(points), 2) if points else 0.0
        )
        return schemas.BookingTrends(
            timeframe=query.timeframe,
            data=points,
            period=self._period(window),
            summary=schemas.BookingTrendsSummary(
                total_bookings=sum(point.bookings for point in points),
                total_revenue=round(sum(point.revenue for point in points), 2),
                average_conversion_rate=average_conversion,
                growth_rate=growth_rate,
            ),
        )

    async def _route_analytics(self, query: schemas.AnalyticsQuery) -> schemas.RouteAnalytics:
        window = self.resolve(query)
        by_route = await self._route_totals(window)
        refs = await self._route_refs(list(by_route))
        window_revenue = sum(totals.revenue for totals in by_route.values())

        ranked = sorted(by_route.items(), key=lambda item: item[1].revenue, reverse=True)
        routes = [
            schemas.RoutePerformance(
                route=refs[route_id],
                total_bookings=totals.total,
                total_revenue=round(totals.revenue, 2),
                average_booking_value=_average(totals.revenue, totals.paid),
                conversion_rate=_percent(totals.paid, totals.total),
                popularity_rank=rank,
                revenue_percentage=_percent(totals.revenue, window_revenue),
            )
            for rank, (route_id, totals) in enumerate(ranked, start=1)
        ]
        return schemas.RouteAnalytics(
            routes=routes,
            period=self._period(window),
            summary=schemas.RouteAnalyticsSummary(
                total_routes=len(routes),
                top_performing_route=routes[0] if routes else None,
                lowest_performing_route=routes[-1] if routes else None,
            ),
        )

    async def _conversion_analytics(self, query: schemas.AnalyticsQuery) -> schemas.ConversionAnalytics:
        window = self.resolve(query)
        totals = await self._totals(window)
        visitors = _estimate(totals.total, self.funnel.visitor_multiplier)
        funnel = _build_funnel(
            [
                ("Visitors", visitors),
                (
                    "Search Results",
                    totals.total + totals.count(statuses.PENDING) + totals.count(statuses.CANCELLED),
                ),
                ("Route Selection", totals.total),
                ("Payment Completed", totals.paid),
            ]
        )
        overall = _percent(totals.paid, visitors)

        biggest = max(funnel[1:], key=lambda step: step.drop_off_rate)
        opportunities = [
            f"Reduce drop-off at {step.step}: {step.drop_off_rate}% do not continue"
            for step in funnel[1:]
            if step.drop_off_rate > DROP_OFF_HINT_THRESHOLD
        ]
        if overall < LOW_CONVERSION_THRESHOLD:
            opportunities.append(
                f"Overall conversion is {overall}%; review pricing and the checkout flow"
            )
        return schemas.ConversionAnalytics(
            funnel=funnel,
            overall_conversion_rate=overall,
            period=self._period(window),
            insights=schemas.ConversionInsights(
                biggest_drop_off=biggest.step,
                improvement_opportunities=opportunities,
            ),
        )

    async def _booking_growth(self, query: schemas.AnalyticsQuery) -> schemas.BookingGrowth:
        window = self.resolve(query)
        previous_window = window.previous()
        current, previous, daily_rows = await self._gather(
            self._totals(window),
            self._totals(previous_window),
            self.repository.count_and_sum(window.start, window.end, group_by=GroupBy.DAY),
        )

        daily: list[schemas.DailyGrowth] = []
        prior_count: int | None = None
        for day, totals in sorted(_group_totals(daily_rows).items()):
            growth = _percent(totals.total - prior_count, prior_count) if prior_count is not None else 0.0
            daily.append(schemas.DailyGrowth(date=day, bookings=totals.total, growth=growth))
            prior_count = totals.total

        return schemas.BookingGrowth(
            current_period=schemas.GrowthPeriod(
                total_bookings=current.total,
                revenue=round(current.revenue, 2),
                period=window.label(),
            ),
            previous_period=schemas.GrowthPeriod(
                total_bookings=previous.total,
                revenue=round(previous.revenue, 2),
                period=previous_window.label(),
            ),
            growth=schemas.GrowthRates(
                bookings_growth_rate=_percent(current.total - previous.total, previous.total),
                revenue_growth_rate=_percent(current.revenue - previous.revenue, previous.revenue),
                bookings_growth_absolute=current.total - previous.total,
                revenue_growth_absolute=round(current.revenue - previous.revenue, 2),
            ),
            daily_growth=daily,
        )

    async def _popular_routes(self, query: schemas.AnalyticsQuery) -> schemas.PopularRoutes:
        window = self.resolve(query)
        current, previous = await self._gather(
            self._route_totals(window),
            self._route_totals(window.previous()),
        )
        refs = await self._route_refs(list(current))
        window_bookings = sum(totals.total for totals in current.values())

        ranked = sorted(current.items(), key=lambda item: item[1].total, reverse=True)
        routes = []
        for rank, (route_id, totals) in enumerate(ranked, start=1):
            previous_count = previous[route_id].total if route_id in previous else 0
            routes.append(
                schemas.PopularRoute(
                    route=refs[route_id],
                    bookings_count=totals.total,
                    revenue=round(totals.revenue, 2),
                    average_price=_average(totals.revenue, totals.paid),
                    market_share=_percent(totals.total, window_bookings),
                    rank=rank,
                    trend=_trend_direction(totals.total, previous_count),
                )
            )
        return schemas.PopularRoutes(
            routes=routes,
            period=self._period(window),
            summary=schemas.PopularRoutesSummary(
                total_routes=len(routes),
                top_route=routes[0].route.name if routes else None,
                total_bookings=window_bookings,
            ),
        )

    async def _seat_occupancy(self, query: schemas.AnalyticsQuery) -> schemas.SeatOccupancy:
        window = self.resolve(query)
        trips = await self.repository.trip_occupancy(window.start, window.end)

        route_names: dict[str, str] = {}
        by_route: dict[str, list[int]] = {}
        by_day: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        total_seats = occupied_seats = 0
        for trip in trips:
            total_seats += trip.total_seats
            occupied_seats += trip.occupied_seats
            route_names.setdefault(trip.route_id, trip.route_name)
            route_bucket = by_route.setdefault(trip.route_id, [0, 0])
            route_bucket[0] += trip.total_seats
            route_bucket[1] += trip.occupied_seats
            departure = trip.departure_time
            if departure.tzinfo is None:
                departure = departure.replace(tzinfo=timezone.utc)
            day_bucket = by_day[departure.astimezone(self.tz).date().isoformat()]
            day_bucket[0] += trip.total_seats
            day_bucket[1] += trip.occupied_seats

        return schemas.SeatOccupancy(
            overall=schemas.OccupancyTotals(
                total_seats=total_seats,
                occupied_seats=occupied_seats,
                occupancy_rate=_percent(occupied_seats, total_seats),
            ),
            by_route=[
                schemas.RouteOccupancy(
                    route_id=route_id,
                    route_name=route_names[route_id],
                    total_seats=seats,
                    occupied_seats=occupied,
                    occupancy_rate=_percent(occupied, seats),
                )
                for route_id, (seats, occupied) in by_route.items()
            ],
            by_timeframe=[
                schemas.DailyOccupancy(
                    date=day,
                    total_seats=seats,
                    occupied_seats=occupied,
                    occupancy_rate=_percent(occupied, seats),
                )
                for day, (seats, occupied) in sorted(by_day.items())
            ],
            period=self._period(window),
        )

    async def _detailed_conversion(self, query: schemas.AnalyticsQuery) -> schemas.DetailedConversion:
        window = self.resolve(query)
        totals = await self._totals(window)
        total, paid = totals.total, totals.paid
        searches = _estimate(total, self.funnel.search_multiplier)
        stages = [
            ("Search", searches),
            ("Trip Details", _estimate(total, self.funnel.visitor_multiplier)),
            ("Seat Selection", _estimate(total, self.funnel.seat_selection_multiplier)),
            ("Booking Attempt", _estimate(total, self.funnel.booking_attempt_multiplier)),
            ("Payment Completed", paid),
        ]
        funnel = []
        for index, (name, count) in enumerate(stages):
            if index == 0:
                from_previous = from_start = 100.0
            else:
                from_previous = _percent(count, stages[index - 1][1])
                from_start = _percent(count, searches)
            funnel.append(
                schemas.DetailedFunnelStep(
                    step=name,
                    count=count,
                    conversion_from_previous=from_previous,
                    conversion_from_start=from_start,
                )
            )
        return schemas.DetailedConversion(
            search_to_booking=schemas.SearchToBooking(
                searches=searches,
                booking_attempts=total,
                conversion_rate=_percent(total, searches),
            ),
            booking_to_paid=schemas.BookingToPaid(
                total_bookings=total,
                paid_bookings=paid,
                conversion_rate=_percent(paid, total),
            ),
            overall_conversion=schemas.OverallConversion(
                searches=searches,
                paid_bookings=paid,
                conversion_rate=_percent(paid, searches),
            ),
            funnel=funnel,
            period=self._period(window),
        )

    async def _payment_methods(self, query: schemas.AnalyticsQuery) -> schemas.PaymentMethodAnalytics:
        window = self.resolve(query)
        rows = await self.repository.payment_totals(window.start, window.end)
        total_transactions = sum(row.count for row in rows)
        ranked = sorted(rows, key=lambda row: row.count, reverse=True)
        return schemas.PaymentMethodAnalytics(
            methods=[
                schemas.PaymentMethodStats(
                    provider=row.provider,
                    count=row.count,
                    total_amount=round(row.amount, 2),
                    percentage=_percent(row.count, total_transactions),
                )
                for row in ranked
            ],
            total_transactions=total_transactions,
            total_revenue=round(sum(row.amount for row in rows), 2),
            period=self._period(window),
        )
