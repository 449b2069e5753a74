import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from logsink import db as database
from logsink import models
from logsink.config import config
from logsink.db import Base, get_db
from logsink.ingest import stream
from logsink.ingest.events import GenericMetadata, NormalizedLog
from logsink.main import app as main_app
from logsink.retention import HOUR_MS
from logsink.store import insert_paired

# 2023-11-14T22:00:00Z, on an hour boundary
HOUR_START = (1_700_000_000_000 // HOUR_MS) * HOUR_MS
NOW = HOUR_START + 30 * 60 * 1000

OWNER = "user-1"
ADMIN_ID = "admin-1"


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False},
                           poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    # jobs that open their own session (alert check, ingest worker) use this
    monkeypatch.setattr(database, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_app(db):
    def _make(name="checkout", owner=OWNER, api_key=None, flags=(), is_active=True):
        app_obj = models.App(name=name, owner_id=owner, is_active=is_active,
                             api_key=api_key or f"key-{owner}-{name}",
                             is_deleted=False, total_ingested=0)
        for pattern, flag_name in flags:
            app_obj.flags.append(models.FlagRule(pattern=pattern, name=flag_name,
                                                 is_active=True))
        db.add(app_obj)
        db.commit()
        return app_obj
    return _make


@pytest.fixture
def app_obj(make_app):
    return make_app()


@pytest.fixture
def add_log(db):
    """Insert one paired record directly, bypassing the webhook parser."""
    def _add(app_obj, timestamp, level="info", message="hello", source=None,
             event=None, request_id=None):
        event = event or {}
        log, summary = insert_paired(db, NormalizedLog(
            app_id=app_obj.id,
            timestamp=timestamp,
            level=level,
            message=message,
            source=source,
            request_id=request_id,
            metadata=GenericMetadata(event=event),
            raw_data=json.dumps(event),
        ))
        db.commit()
        return log, summary
    return _add


@pytest.fixture
def client(session_factory, monkeypatch):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(config, "ADMIN_USER_IDS", [ADMIN_ID])
    monkeypatch.setattr(config, "REDIS_URL", None)
    monkeypatch.setattr(stream, "_client", None)
    main_app.dependency_overrides[get_db] = override_get_db
    yield TestClient(main_app)
    main_app.dependency_overrides.clear()


def auth(user_id=OWNER):
    return {"X-User-Id": user_id}
