"""
Rate limiting using slowapi.

Limits are keyed by the real client IP. Redis backs the counters when
REDIS_URL is set so limits hold across workers; otherwise counters live in
memory.

Rate Limits:
- Story generation: 10 per minute
- Payment capture and verification: 10 per minute
- Credit updates: 10 per minute
- Polar webhook: 100 per minute
- Default: 100 requests per minute
"""

import ipaddress
import logging
import re

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")


def _is_valid_ip(value: str) -> bool:
    """Return True if *value* looks like a valid IPv4 or IPv6 address."""
    if not _IP_LIKE.match(value):
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _is_private_ip(value: str) -> bool:
    """Return True if *value* is a private, loopback, or link-local address.

    Private addresses in X-Forwarded-For can be spoofed to share a bucket
    with the proxy, so they are never trusted.
    """
    try:
        addr = ipaddress.ip_address(value)
        return addr.is_private or addr.is_loopback or addr.is_link_local
    except ValueError:
        return False


def get_real_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the connection address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        candidate = real_ip.strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    return get_remote_address(request)


# Format: "count/period" where period can be: second, minute, hour, day
RATE_LIMITS = {
    "story_generation": "10/minute",
    "payment": "10/minute",
    "credits": "10/minute",
    "webhook": "100/minute",
    "default": "100/minute",
}

_storage_uri = settings.redis_url if settings.redis_url else "memory://"

if not settings.redis_url:
    logger.warning("Rate limiter using in-memory storage, not shared between workers")
    if settings.environment == "production":
        logger.critical(
            "Rate limiter has no Redis in production. Set REDIS_URL in environment variables."
        )

limiter = Limiter(
    key_func=get_real_ip,
    storage_uri=_storage_uri,
    default_limits=[RATE_LIMITS["default"]],
)


def get_rate_limit(endpoint: str) -> str:
    """
    Get rate limit configuration for a specific endpoint.

    Example:
        >>> get_rate_limit("payment")
        "10/minute"
        >>> get_rate_limit("unknown")
        "100/minute"
    """
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
