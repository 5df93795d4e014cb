import logging
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)


class Timeframe(StrEnum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class AnalyticsQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: date | None = None
    end_date: date | None = None
    timeframe: Timeframe = Timeframe.monthly

    @field_validator("timeframe", mode="before")
    @classmethod
    def fallback_timeframe(cls, value: Any) -> Any:
        if value is None or value == "":
            return Timeframe.monthly
        if isinstance(value, Timeframe):
            return value
        try:
            return Timeframe(value)
        except ValueError:
            logger.warning("analytics_unknown_timeframe", extra={"extra": {"timeframe": str(value)}})
            return Timeframe.monthly

    def cache_params(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class AnalyticsModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class AnalyticsPeriod(AnalyticsModel):
    start_date: datetime
    end_date: datetime


class BookingSummary(AnalyticsModel):
    total_bookings: int
    paid_bookings: int
    completed_bookings: int
    pending_bookings: int
    cancelled_bookings: int
    expired_bookings: int
    total_revenue: float
    average_booking_value: float
    conversion_rate: float
    period: AnalyticsPeriod


class TotalBookingsCount(AnalyticsModel):
    total_bookings: int
    by_status: dict[str, int]
    period: AnalyticsPeriod


class TrendDataPoint(AnalyticsModel):
    date: str
    bookings: int
    revenue: float
    conversion_rate: float


class BookingTrendsSummary(AnalyticsModel):
    total_bookings: int
    total_revenue: float
    average_conversion_rate: float
    growth_rate: float


class BookingTrends(AnalyticsModel):
    timeframe: Timeframe
    data: tuple[TrendDataPoint, ...]
    period: AnalyticsPeriod
    summary: BookingTrendsSummary


class RouteRef(AnalyticsModel):
    id: str
    name: str
    origin: str
    destination: str


class RoutePerformance(AnalyticsModel):
    route: RouteRef
    total_bookings: int
    total_revenue: float
    average_booking_value: float
    conversion_rate: float
    popularity_rank: int
    revenue_percentage: float


class RouteAnalyticsSummary(AnalyticsModel):
    total_routes: int
    top_performing_route: RoutePerformance | None
    lowest_performing_route: RoutePerformance | None


class RouteAnalytics(AnalyticsModel):
    routes: tuple[RoutePerformance, ...]
    period: AnalyticsPeriod
    summary: RouteAnalyticsSummary


class FunnelStep(AnalyticsModel):
    step: str
    count: int
    conversion_rate: float
    drop_off_rate: float


class ConversionInsights(AnalyticsModel):
    biggest_drop_off: str
    improvement_opportunities: tuple[str, ...]


class ConversionAnalytics(AnalyticsModel):
    funnel: tuple[FunnelStep, ...]
    overall_conversion_rate: float
    period: AnalyticsPeriod
    insights: ConversionInsights


class GrowthPeriod(AnalyticsModel):
    total_bookings: int
    revenue: float
    period: str


class GrowthRates(AnalyticsModel):
    bookings_growth_rate: float
    revenue_growth_rate: float
    bookings_growth_absolute: int
    revenue_growth_absolute: float


class DailyGrowth(AnalyticsModel):
    date: str
    bookings: int
    growth: float


class BookingGrowth(AnalyticsModel):
    current_period: GrowthPeriod
    previous_period: GrowthPeriod
    growth: GrowthRates
    daily_growth: tuple[DailyGrowth, ...]


class PopularRoute(AnalyticsModel):
    route: RouteRef
    bookings_count: int
    revenue: float
    average_price: float
    market_share: float
    rank: int
    trend: Literal["up", "down", "stable"]


class PopularRoutesSummary(AnalyticsModel):
    total_routes: int
    top_route: str | None
    total_bookings: int


class PopularRoutes(AnalyticsModel):
    routes: tuple[PopularRoute, ...]
    period: AnalyticsPeriod
    summary: PopularRoutesSummary


class OccupancyTotals(AnalyticsModel):
    total_seats: int
    occupied_seats: int
    occupancy_rate: float


class RouteOccupancy(OccupancyTotals):
    route_id: str
    route_name: str


class DailyOccupancy(OccupancyTotals):
    date: str


class SeatOccupancy(AnalyticsModel):
    overall: OccupancyTotals
    by_route: tuple[RouteOccupancy, ...]
    by_timeframe: tuple[DailyOccupancy, ...]
    period: AnalyticsPeriod


class DetailedFunnelStep(AnalyticsModel):
    step: str
    count: int
    conversion_from_previous: float
    conversion_from_start: float


class SearchToBooking(AnalyticsModel):
    searches: int
    booking_attempts: int
    conversion_rate: float


class BookingToPaid(AnalyticsModel):
    total_bookings: int
    paid_bookings: int
    conversion_rate: float


class OverallConversion(AnalyticsModel):
    searches: int
    paid_bookings: int
    conversion_rate: float


class DetailedConversion(AnalyticsModel):
    search_to_booking: SearchToBooking
    booking_to_paid: BookingToPaid
    overall_conversion: OverallConversion
    funnel: tuple[DetailedFunnelStep, ...]
    period: AnalyticsPeriod


class PaymentMethodStats(AnalyticsModel):
    provider: str
    count: int
    total_amount: float
    percentage: float


class PaymentMethodAnalytics(AnalyticsModel):
    methods: tuple[PaymentMethodStats, ...]
    total_transactions: int
    total_revenue: float
    period: AnalyticsPeriod


class CacheStats(AnalyticsModel):
    size: int
    hits: int
    misses: int
    hit_rate: float
