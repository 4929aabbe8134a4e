"""FastAPI application entrypoint."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tourism_director import __version__
from tourism_director.jobs.runner import stop_jobs
from tourism_director.logging_config import configure_logging, get_logger
from tourism_director.middleware.correlation_id import CorrelationIdMiddleware
from tourism_director.routers import generation_router, health_router, rebuild_router
from tourism_director.services.catalog import validate_catalog

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: logging, profile/category tables check. Shutdown: cancel background jobs."""
    configure_logging()
    validate_catalog()
    logger.info("app_started", version=__version__)
    yield
    await stop_jobs()
    logger.info("app_shutdown")


app = FastAPI(
    title="Tourism Content Director",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(health_router)
app.include_router(generation_router)
app.include_router(rebuild_router)


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint: app name and version."""
    return {"name": "tourism_content_director", "version": __version__}
