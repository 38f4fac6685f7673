import redis.asyncio as redis_async

from concierge.config import settings

_redis_client = None
_redis_url = None


def create_redis(redis_url: str, socket_timeout_seconds: float):
    return redis_async.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=socket_timeout_seconds,
        socket_timeout=socket_timeout_seconds,
    )


def get_redis():
    """FastAPI dependency returning the shared store client for this process."""
    global _redis_client, _redis_url

    if _redis_client is None or _redis_url != settings.redis_url:
        _redis_url = settings.redis_url
        _redis_client = create_redis(settings.redis_url, settings.redis_socket_timeout_seconds)

    return _redis_client
