# outreach_server/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from outreach_server.routers import batches, health, jobs, preferences
from outreach_server.services.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the outreach scheduler with the server and stop it on shutdown."""
    start_scheduler()
    logger.info("API server started")

    yield

    stop_scheduler()
    logger.info("API server stopped")


app = FastAPI(
    title="Daily Outreach API",
    description="Scheduler and daily lead batches for sales outreach",
    version="0.1.0",
    lifespan=lifespan,
)

# Register routers
app.include_router(health.router, tags=["health"])
app.include_router(preferences.router, prefix="/api/v1", tags=["preferences"])
app.include_router(jobs.router, prefix="/api/v1", tags=["jobs"])
app.include_router(batches.router, prefix="/api/v1", tags=["batches"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
