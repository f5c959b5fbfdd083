from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from src.services.rate_limit.detector import RateLimitType, detect_rate_limit_type


@pytest.mark.parametrize(
    ("headers", "body", "expected"),
    [
        ({}, '{"error": {"status": "RESOURCE_EXHAUSTED"}}', RateLimitType.QUOTA),
        ({}, '{"detail": {"status": "quota_exceeded"}}', RateLimitType.QUOTA),
        ({}, "too_many_concurrent_requests", RateLimitType.CONCURRENT),
        ({"x-ratelimit-remaining": "0"}, "", RateLimitType.RPM),
        ({"Retry-After": "30"}, "", RateLimitType.RPM),
        ({}, "", RateLimitType.UNKNOWN),
    ],
)
def test_limit_type(headers, body, expected) -> None:
    assert detect_rate_limit_type(headers, body).limit_type is expected


def test_retry_after_http_date() -> None:
    when = datetime.now(timezone.utc) + timedelta(seconds=120)
    info = detect_rate_limit_type({"Retry-After": format_datetime(when, usegmt=True)})
    assert info.retry_after is not None
    assert 100 <= info.retry_after <= 120


def test_garbage_headers_are_ignored() -> None:
    info = detect_rate_limit_type({"Retry-After": "soon", "X-RateLimit-Limit": "n/a"})
    assert info.retry_after is None
    assert info.limit_value is None
    assert info.limit_type is RateLimitType.UNKNOWN
