"""ARQ (Async Redis Queue) settings for background workers.

Workers read ``REDIS_URL`` from the application settings; this module turns it
into the ``RedisSettings`` object ARQ expects.
"""

from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings


def get_redis_settings() -> RedisSettings:
    """Build ARQ RedisSettings from ``REDIS_URL`` (redis://[:password@]host:port/db)."""
    parsed = urlparse(get_settings().REDIS_URL)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        password=parsed.password,
    )
