"""
FastAPI application factory
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from famledger.config import get_settings
from famledger.infrastructure.db.session import check_db_connection
from famledger.api.errors import register_error_handlers
from famledger.api.v1 import income_events, payments, attributions, budget, reports
from famledger.application.scheduler import start_scheduler, shutdown_scheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    start_scheduler()
    try:
        yield
    finally:
        shutdown_scheduler()


def create_app() -> FastAPI:
    """
    Application factory - builds and wires the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="famledger",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    register_error_handlers(app)

    app.include_router(income_events.router)
    app.include_router(payments.router)
    app.include_router(attributions.router)
    app.include_router(budget.router)
    app.include_router(reports.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "famledger.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
