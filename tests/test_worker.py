import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

from logsink import models
from logsink.config import config
from logsink.ingest import stream, worker


def fake_redis():
    r = MagicMock()
    r.xadd = AsyncMock(return_value="1-0")
    r.xack = AsyncMock()
    r.xreadgroup = AsyncMock()
    r.xgroup_create = AsyncMock()
    return r


class TestProcessBatch:
    def test_valid_body_is_ingested(self, db, app_obj, session_factory):
        r = fake_redis()
        body = json.dumps({"topic": "console", "message": "queued"})
        asyncio.run(worker.process_batch([("1-0", {"api_key": app_obj.api_key,
                                                   "data": body})], r))
        assert db.query(models.Log).one().message == "queued"
        r.xadd.assert_not_called()

    def test_rotated_key_goes_to_dlq(self, db, session_factory):
        r = fake_redis()
        asyncio.run(worker.process_batch([("1-0", {"api_key": "stale", "data": "{}"})], r))
        r.xadd.assert_awaited_once()
        stream_name, fields = r.xadd.await_args.args
        assert stream_name == config.INGEST_DLQ
        assert fields["msg_id"] == "1-0"
        assert db.query(models.Log).count() == 0

    def test_unexpected_failure_keeps_body(self, monkeypatch):
        r = fake_redis()

        def explode(api_key, log_data):
            raise RuntimeError("db down")

        monkeypatch.setattr(worker, "_process_one", explode)
        asyncio.run(worker.process_batch([("2-0", {"api_key": "k", "data": "{}"})], r))
        _, fields = r.xadd.await_args.args
        assert fields == {"error": "db down", "msg_id": "2-0", "data": "{}"}


class TestDrain:
    def test_entries_are_acked(self, monkeypatch):
        r = fake_redis()
        r.xreadgroup.return_value = [(config.INGEST_STREAM, [("1-0", {"api_key": "k",
                                                                       "data": ""})])]
        processed = []

        async def record(entries, client):
            processed.extend(entries)

        monkeypatch.setattr(worker, "process_batch", record)
        asyncio.run(worker._drain(r, ">", block=10))

        assert [msg_id for msg_id, _ in processed] == ["1-0"]
        r.xack.assert_awaited_once_with(config.INGEST_STREAM, config.INGEST_GROUP, "1-0")
        assert r.xreadgroup.await_args.kwargs["block"] == 10

    def test_empty_read(self):
        r = fake_redis()
        r.xreadgroup.return_value = []
        asyncio.run(worker._drain(r, "0"))
        r.xack.assert_not_called()


class TestEnqueue:
    def test_xadd_payload(self):
        r = fake_redis()
        msg_id = asyncio.run(stream.enqueue_webhook(r, "key", '{"a": 1}'))
        assert msg_id == "1-0"
        r.xadd.assert_awaited_once_with(config.INGEST_STREAM,
                                        {"api_key": "key", "data": '{"a": 1}'})

    def test_no_client_without_redis_url(self, monkeypatch):
        monkeypatch.setattr(config, "REDIS_URL", None)
        monkeypatch.setattr(stream, "_client", None)
        assert stream.get_redis() is None
