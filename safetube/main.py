"""SafeTube storage service: schema management and legacy data migration."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from safetube.api.routes_migration import router as migration_router
from safetube.api.routes_schema import router as schema_router
from safetube.config import settings
from safetube.database import Database
from safetube.services.legacy_loader import LegacyDocumentLoader
from safetube.services.migration import MigrationService
from safetube.services.schema_manager import SchemaManager

APP_VERSION = "0.1.0"

logger = logging.getLogger("safetube")
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def build_services(app: FastAPI, db: Database) -> None:
    """Attach the database and the services built on it to ``app.state``."""
    schema_manager = SchemaManager(db)
    app.state.db = db
    app.state.schema_manager = schema_manager
    app.state.migration_service = MigrationService(
        db,
        schema_manager,
        LegacyDocumentLoader(settings.CONFIG_DIR),
        settings.DATA_DIR,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("Starting SafeTube storage service")
    logger.info("Database: %s", settings.db_path)
    logger.info("Legacy config directory: %s", settings.CONFIG_DIR)

    db = Database(settings.db_path, busy_timeout_ms=settings.BUSY_TIMEOUT_MS)
    await db.open()
    build_services(app, db)

    yield

    logger.info("Shutting down SafeTube storage service")
    await db.close()


app = FastAPI(
    title="SafeTube",
    description="SafeTube storage and legacy data migration",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.include_router(migration_router)
app.include_router(schema_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "app": "safetube", "version": APP_VERSION}


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
