import logging

from fastapi import APIRouter, Depends, Query

from app.api.admin_auth import AdminIdentity, require_admin
from app.dependencies import get_analytics_query, get_analytics_service, get_invalidation_hook
from app.domain.analytics import schemas as analytics_schemas
from app.domain.analytics.invalidation import AnalyticsInvalidationHook
from app.domain.analytics.schemas import AnalyticsQuery
from app.domain.analytics.service import AnalyticsService

router = APIRouter(prefix="/v1/admin/analytics", dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


@router.get("/bookings/summary", response_model=analytics_schemas.BookingSummary)
async def get_booking_summary(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.booking_summary(query)


@router.get("/bookings/trends", response_model=analytics_schemas.BookingTrends)
async def get_booking_trends(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.booking_trends(query)


@router.get("/bookings/routes", response_model=analytics_schemas.RouteAnalytics)
async def get_route_analytics(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.route_analytics(query)


@router.get("/conversion", response_model=analytics_schemas.ConversionAnalytics)
async def get_conversion_analytics(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.conversion_analytics(query)


@router.get("/metrics/total-bookings", response_model=analytics_schemas.TotalBookingsCount)
async def get_total_bookings(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.total_bookings_count(query)


@router.get("/metrics/booking-growth", response_model=analytics_schemas.BookingGrowth)
async def get_booking_growth(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.booking_growth(query)


@router.get("/metrics/popular-routes", response_model=analytics_schemas.PopularRoutes)
async def get_popular_routes(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.popular_routes(query)


@router.get("/metrics/seat-occupancy", response_model=analytics_schemas.SeatOccupancy)
async def get_seat_occupancy(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.seat_occupancy(query)


@router.get("/metrics/conversion-detailed", response_model=analytics_schemas.DetailedConversion)
async def get_detailed_conversion(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.detailed_conversion(query)


@router.get("/metrics/payment-methods", response_model=analytics_schemas.PaymentMethodAnalytics)
async def get_payment_methods(
    query: AnalyticsQuery = Depends(get_analytics_query),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return await service.payment_methods(query)


@router.get("/cache/stats", response_model=analytics_schemas.CacheStats)
async def get_cache_stats(hook: AnalyticsInvalidationHook = Depends(get_invalidation_hook)):
    return hook.get_stats()


@router.post("/cache/invalidate")
async def invalidate_cache(
    reason: str = Query(default="manual", max_length=64),
    hook: AnalyticsInvalidationHook = Depends(get_invalidation_hook),
    admin: AdminIdentity = Depends(require_admin),
) -> dict[str, int | str]:
    removed = hook.invalidate(reason)
    logger.info("analytics_cache_invalidate_requested", extra={"extra": {"admin": admin.username}})
    return {"status": "invalidated", "removed": removed}
