# podpublisher/main.py
import logging
import os

import structlog
import uvicorn
from fastapi import FastAPI

from podpublisher.infrastructure.database import init_db
from podpublisher.middleware.logging import RequestIdMiddleware
from podpublisher.routers.integrations_router import router as integrations_router
from podpublisher.routers.jobs_router import router as jobs_router
from podpublisher.routers.scheduled_posts_router import router as scheduled_posts_router
from podpublisher.services.scheduler import PublishTimer

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_structlog():
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, LOG_LEVEL, logging.INFO)),
        context_class=dict,
    )


configure_structlog()
logger = structlog.get_logger()

app = FastAPI(title="Podcast Publisher")

app.add_middleware(RequestIdMiddleware)

app.include_router(jobs_router)
app.include_router(scheduled_posts_router)
app.include_router(integrations_router)

publish_timer = PublishTimer()


@app.on_event("startup")
async def on_startup():
    await init_db()
    publish_timer.start()
    logger.info("app_startup")


@app.on_event("shutdown")
async def on_shutdown():
    await publish_timer.stop()
    logger.info("app_shutdown")


@app.get("/health")
async def health():
    return {"ok": True}


if __name__ == "__main__":
    uvicorn.run("podpublisher.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=True)
