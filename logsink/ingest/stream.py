import logging

import redis.asyncio as aioredis

from logsink.config import config

logger = logging.getLogger(__name__)

_client = None


def get_redis():
    """Shared async Redis client, or None when no REDIS_URL is configured."""
    global _client
    if config.REDIS_URL is None:
        return None
    if _client is None:
        _client = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    return _client


async def enqueue_webhook(redis_client, api_key: str, log_data: str) -> str:
    """Append one authenticated webhook body to the ingest stream."""
    msg_id = await redis_client.xadd(config.INGEST_STREAM,
                                     {"api_key": api_key, "data": log_data})
    logger.debug("Queued webhook body as %s on %s", msg_id, config.INGEST_STREAM)
    return msg_id
