import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from adapters.entry.http.admin_config_router import router as admin_config_router
from adapters.entry.http.envelope import request_validation_handler
from adapters.entry.http.feeds_router import router as feeds_router
from config.settings import settings
from workers.ingestion_supervisor import IngestionSupervisor


def _setup_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


supervisor = IngestionSupervisor()


@asynccontextmanager
async def lifespan(app: FastAPI):
    _setup_logging()
    logging.getLogger(__name__).info("Starting %s (lifespan startup)...", settings.APP_NAME)

    await supervisor.start()
    app.state.db = supervisor.db
    app.state.feeds = supervisor.feeds

    try:
        yield
    finally:
        logging.getLogger(__name__).info("Shutting down %s (lifespan shutdown)...", settings.APP_NAME)
        await supervisor.stop()


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.include_router(feeds_router)
app.include_router(admin_config_router)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
