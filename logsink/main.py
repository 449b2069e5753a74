import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from logsink import models  # noqa: F401  registers tables on Base.metadata
from logsink.config import config
from logsink.db import Base, engine
from logsink.errors import LogsinkError
from logsink.routes import admin, alerts, app as apps_router, logs, metrics, statistics, webhook
from logsink.scheduler import start_jobs

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# configure allowed origins via env var (comma-separated) or default to localhost origins
if config.CORS_ORIGINS:
    origins = config.CORS_ORIGINS
else:
    origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1",
        "http://127.0.0.1:3000",
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    tasks = start_jobs() if config.ENABLE_SCHEDULER else []
    try:
        yield
    finally:
        # shutdown: cancel background jobs and await their cancellation
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

app = FastAPI(
    title="logsink",
    version="1.0.0",
    description="Webhook log ingestion with tiered storage, retention, metrics and alerts.",
    lifespan=lifespan,
)

# apply CORS settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)


@app.exception_handler(LogsinkError)
async def logsink_error_handler(request: Request, exc: LogsinkError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.reason})


# Ingress
app.include_router(webhook.router)

# Query surface
app.include_router(logs.router)
app.include_router(statistics.router)
app.include_router(metrics.router)

# Administration
app.include_router(apps_router.router)
app.include_router(alerts.router)
app.include_router(admin.router)


@app.get("/")
def root():
    return {"message": "logsink is up and running"}
