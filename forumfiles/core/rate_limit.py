import logging

from fastapi import Request
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from forumfiles.core.config import settings
from forumfiles.core.errors import RateLimited

logger = logging.getLogger("forumfiles")

_storage = MemoryStorage()
_limiter = FixedWindowRateLimiter(_storage)


def client_ip(request: Request) -> str:
    """Address used to key limits.

    ``X-Forwarded-For`` is client-controlled, so it only counts when the
    direct peer is listed in ``TRUSTED_PROXIES``.
    """
    peer = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and peer in settings.TRUSTED_PROXIES:
        return forwarded.split(",")[0].strip()
    return peer


def hit(limit: str, *identifiers: str) -> None:
    """Consume one unit of ``limit`` for the given key, or raise ``RateLimited``."""
    if not settings.RATE_LIMIT_ENABLED:
        return
    item = parse(limit)
    if not _limiter.hit(item, *identifiers):
        logger.warning("rate_limited limit=%s scope=%s", limit, identifiers[0] if identifiers else "-")
        raise RateLimited()


def record_failure(limit: str, *identifiers: str) -> None:
    """Count a failed attempt against ``limit`` without raising."""
    if settings.RATE_LIMIT_ENABLED:
        _limiter.hit(parse(limit), *identifiers)


def is_blocked(limit: str, *identifiers: str) -> bool:
    if not settings.RATE_LIMIT_ENABLED:
        return False
    return not _limiter.test(parse(limit), *identifiers)


def reset() -> None:
    _storage.reset()


class RateLimit:
    """Per-IP limit usable as a route dependency."""

    def __init__(self, scope: str, limit_setting: str):
        self.scope = scope
        self.limit_setting = limit_setting

    async def __call__(self, request: Request) -> None:
        hit(getattr(settings, self.limit_setting), self.scope, client_ip(request))


auth_limit = RateLimit("auth", "AUTH_RATE_LIMIT")
upload_limit = RateLimit("upload", "UPLOAD_RATE_LIMIT")
