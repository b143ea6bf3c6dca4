"""Main entrypoint and application factory for the Balance Sync API.

This module initializes the FastAPI application, configures logging, creates the ledger tables, starts the daily sweep scheduler, and exposes the Scalar API reference endpoint for interactive OpenAPI documentation. It also includes the main entrypoint for running the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from scalar_fastapi import get_scalar_api_reference
from sqlalchemy.exc import SQLAlchemyError

from balance_sync.api.dependencies import build_sweeper, shared_debouncer
from balance_sync.api.routes import router
from balance_sync.core.db import get_engine, init_db
from balance_sync.core.settings import get_settings
from balance_sync.core.utils import get_logger
from balance_sync.workers.scheduler import start_scheduler


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure logging to file and console, and ensure the log directory exists."""
    log_file = Path(get_settings().log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger = get_logger("balance-sync")
    logger.setLevel(logging.INFO)
    # Add file handler for persistent logs (not colorized)
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(file_handler)
    logger.propagate = False


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler to create the ledger tables and run the sweep scheduler."""
    _ = app  # Silence unused argument warning
    settings = get_settings()
    logger = get_logger("balance-sync")
    try:
        init_db(get_engine())
    except SQLAlchemyError:
        logger.exception("Failed to create ledger tables")
        raise
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = start_scheduler(settings, lambda: build_sweeper().run())
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    if settings.debounce_seconds > 0:
        # run whatever is still waiting rather than dropping it
        shared_debouncer(settings.debounce_seconds).flush()


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Balance Sync API",
    description="""
    The Balance Sync API keeps every account's cached balance consistent with its transactions.

    **Endpoints:**
    - `POST /events/transactions`: Notify a transaction create, update or delete.
    - `POST /sync`: Recompute balances for a user or an account (operator recovery path).
    - `POST /sweep`: Start a due-transaction sweep now.
    - `GET /accounts/{{account_id}}`: Read a cached account record.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> JSONResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
