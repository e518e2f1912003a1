"""DeviceLink Server - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from devicelink.config import settings
from devicelink.database import init_db

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database on startup."""
    init_db()
    logger.info("%s started (db=%s)", settings.server_name, settings.db_path)
    yield


app = FastAPI(
    title="DeviceLink",
    description="Device pairing and token lifecycle for the slide timetable extension",
    version="0.1.0",
    lifespan=lifespan,
)

# The extension calls from a chrome-extension:// origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Dev-User-Id", "X-Admin-Key"],
)

# --- Register API routers ---
from devicelink.api.pairing import router as pairing_router  # noqa: E402
from devicelink.api.devices import router as devices_router  # noqa: E402
from devicelink.api.system import router as system_router  # noqa: E402

API_PREFIX = "/api/v1"

app.include_router(pairing_router, prefix=API_PREFIX)
app.include_router(devices_router, prefix=API_PREFIX)
app.include_router(system_router, prefix=API_PREFIX)


@app.get("/")
def root():
    """Server info."""
    return {
        "name": settings.server_name,
        "version": "0.1.0",
        "status": "running",
    }


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run("devicelink.main:app", host=settings.host, port=settings.port, reload=settings.debug)


if __name__ == "__main__":
    run()
