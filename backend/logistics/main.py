"""HTTP application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from logistics.api import RunController, manager, router, websocket_endpoint
from logistics.config import get_settings
from logistics.services import create_invoice_processor
from logistics.storage import CommonCodeRepository, get_database, init_database

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


async def seed_step_codes(processor) -> None:
    """Insert the default PG_PROC rows that are missing. Best-effort."""
    try:
        rows = processor.registry.default_common_codes()
        await CommonCodeRepository().seed(rows)
    except Exception as e:
        logger.warning(f"Step code seeding skipped: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting invoice pipeline service...")

    try:
        await asyncio.wait_for(init_database(), timeout=30)
        logger.info("Database initialized")
    except asyncio.TimeoutError:
        raise RuntimeError("Database initialization timed out after 30s")

    processor = create_invoice_processor(get_settings())
    await seed_step_codes(processor)

    controller = RunController(processor, manager)
    app.state.run_controller = controller

    yield

    logger.info("Shutting down...")
    await controller.shutdown()
    await processor.close()

    try:
        await get_database().close()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database: {e}")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Invoice Pipeline",
    description="Order spreadsheet to per-center invoice files",
    version=VERSION,
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")

app.websocket("/ws")(websocket_endpoint)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Invoice Pipeline",
        "version": VERSION,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "logistics.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
