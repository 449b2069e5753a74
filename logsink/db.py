from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from logsink.config import config

_connect_args = {}
if config.DATABASE_URL.startswith("sqlite"):
    # sessions are handed across threadpool workers by FastAPI
    _connect_args = {"check_same_thread": False}

engine = create_engine(config.DATABASE_URL, pool_pre_ping=True,
                       connect_args=_connect_args)

SessionLocal = sessionmaker(
    bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def get_db():
    db_session = SessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
