import asyncio
import logging
import uuid
from typing import List

import redis.asyncio as aioredis

from logsink import db
from logsink.config import config
from logsink.errors import InvalidCredential
from logsink.ingest.pipeline import process_webhook_log

logger = logging.getLogger(__name__)

CONSUMER = config.INGEST_CONSUMER or f"consumer-{uuid.uuid4().hex[:8]}"


async def ensure_group(r: aioredis.Redis):
    """Ensure consumer group exists."""
    try:
        await r.xgroup_create(config.INGEST_STREAM, config.INGEST_GROUP,
                              id="0", mkstream=True)
        logger.info("Created consumer group '%s'", config.INGEST_GROUP)
    except aioredis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            logger.error("Error creating group: %s", e)


def _process_one(api_key: str, log_data: str):
    session = db.SessionLocal()
    try:
        return process_webhook_log(session, api_key, log_data)
    finally:
        session.close()


async def process_batch(entries: List[tuple], r: aioredis.Redis):
    """
    Run the ingestion pipeline for queued webhook bodies.
    entries: list of tuples (msg_id, {"api_key": ..., "data": ...})
    """
    for msg_id, payload in entries:
        api_key = payload.get("api_key")
        log_data = payload.get("data") or ""
        try:
            # pipeline is synchronous, keep it off the event loop
            result = await asyncio.to_thread(_process_one, api_key, log_data)
            logger.debug("Processed %s: %s", msg_id, result.to_dict())
        except InvalidCredential as e:
            # key was rotated or the app disabled after the body was queued
            logger.warning("Dropping %s: %s", msg_id, e.reason)
            await r.xadd(config.INGEST_DLQ, {"error": e.reason, "msg_id": msg_id})
        except Exception as e:
            logger.error("Failed to process %s: %s", msg_id, e)
            await r.xadd(config.INGEST_DLQ, {"error": str(e), "msg_id": msg_id,
                                             "data": log_data})


async def _drain(r: aioredis.Redis, stream_id: str, block=None):
    kwargs = {"count": config.INGEST_BATCH_SIZE}
    if block is not None:
        kwargs["block"] = block
    response = await r.xreadgroup(config.INGEST_GROUP, CONSUMER,
                                  {config.INGEST_STREAM: stream_id}, **kwargs)
    if not response:
        return
    _stream_key, messages = response[0]
    entries = [(msg_id, msg_data) for msg_id, msg_data in messages]
    await process_batch(entries, r)
    for msg_id, _ in entries:
        await r.xack(config.INGEST_STREAM, config.INGEST_GROUP, msg_id)


async def consume_loop():
    """Main consumer loop."""
    r = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    await ensure_group(r)

    logger.info("Starting consumption from stream '%s' in group '%s'",
                config.INGEST_STREAM, config.INGEST_GROUP)

    while True:
        try:
            # pending messages first, then new ones
            await _drain(r, "0")
            await _drain(r, ">", block=config.INGEST_BLOCK_MS)
        except Exception as e:
            logger.error("Error in consume loop: %s", e)
            await asyncio.sleep(1)


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL)
    asyncio.run(consume_loop())
