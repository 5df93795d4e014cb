import pytest
from pydantic import ValidationError

from app.settings import Settings


def test_analytics_defaults(monkeypatch):
    for name in (
        "ANALYTICS_TIMEZONE",
        "ANALYTICS_WEEK_START",
        "ANALYTICS_CACHE_DEFAULT_TTL_SECONDS",
        "ANALYTICS_MAX_RANGE_DAYS",
        "ANALYTICS_MAX_CONCURRENT_QUERIES",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.analytics_timezone == "UTC"
    assert settings.analytics_week_start == "monday"
    assert settings.analytics_cache_default_ttl_seconds == 300
    assert settings.analytics_max_range_days == 1096
    assert settings.analytics_max_concurrent_queries == 4
    assert settings.reporting_tz.key == "UTC"


@pytest.mark.parametrize(
    "env_name, env_value, attr_name, expected",
    [
        ("ANALYTICS_TIMEZONE", "Europe/Kyiv", "analytics_timezone", "Europe/Kyiv"),
        ("ANALYTICS_WEEK_START", "sunday", "analytics_week_start", "sunday"),
        ("ANALYTICS_CACHE_CLEANUP_SECONDS", "15", "analytics_cache_cleanup_seconds", 15),
        ("ANALYTICS_FUNNEL_SEARCH_MULTIPLIER", "4.5", "analytics_funnel_search_multiplier", 4.5),
        ("ANALYTICS_MAX_RANGE_DAYS", "366", "analytics_max_range_days", 366),
        ("ANALYTICS_MAX_CONCURRENT_QUERIES", "8", "analytics_max_concurrent_queries", 8),
        ("METRICS_ENABLED", "true", "metrics_enabled", True),
    ],
)
def test_env_parsing(monkeypatch, env_name, env_value, attr_name, expected):
    monkeypatch.setenv(env_name, env_value)

    settings = Settings(_env_file=None)

    assert getattr(settings, attr_name) == expected


@pytest.mark.parametrize(
    "env_name, env_value",
    [
        ("ANALYTICS_TIMEZONE", "Mars/Olympus"),
        ("ANALYTICS_WEEK_START", "friday"),
        ("ANALYTICS_CACHE_DEFAULT_TTL_SECONDS", "0"),
        ("ANALYTICS_FUNNEL_VISITOR_MULTIPLIER", "0.5"),
        ("ANALYTICS_MAX_RANGE_DAYS", "0"),
        ("ANALYTICS_MAX_CONCURRENT_QUERIES", "0"),
    ],
)
def test_invalid_env_rejected(monkeypatch, env_name, env_value):
    monkeypatch.setenv(env_name, env_value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
