from datetime import date

from fastapi import Query, Request

from app.domain.analytics.invalidation import AnalyticsInvalidationHook
from app.domain.analytics.schemas import AnalyticsQuery
from app.domain.analytics.service import AnalyticsService


def get_analytics_service(request: Request) -> AnalyticsService:
    return request.app.state.analytics_service


def get_invalidation_hook(request: Request) -> AnalyticsInvalidationHook:
    return request.app.state.analytics_invalidation


def get_analytics_query(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    timeframe: str | None = Query(default=None),
) -> AnalyticsQuery:
    return AnalyticsQuery(start_date=start_date, end_date=end_date, timeframe=timeframe)
