"""FastAPI application main module.

This module defines the main FastAPI application instance and core API
endpoints for the storefront personalization service. It provides health
and metrics endpoints and serves as the entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from storefront import __version__
from storefront.api.dependencies import Engine, get_engine, shutdown_engine
from storefront.api.exceptions import StorefrontException
from storefront.api.logging_config import RequestLoggingMiddleware, setup_logging
from storefront.api.metrics import metrics_service
from storefront.api.routes import experiments, recommend, signals
from storefront.config import get_settings

setup_logging(get_settings().log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_engine()


# Create FastAPI application instance
app = FastAPI(
    title="Storefront Personalization API",
    description="Recommendations and A/B test assignment for the storefront",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(signals.router)
app.include_router(recommend.router)
app.include_router(experiments.router)
app.include_router(experiments.admin_router)


@app.exception_handler(StorefrontException)
async def storefront_exception_handler(
    request: Request, exc: StorefrontException
) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/ping")
def ping() -> Dict[str, str]:
    """Health check endpoint.

    Returns:
        Dictionary with status key set to "ok".

    Example:
        >>> response = client.get("/ping")
        >>> assert response.json() == {"status": "ok"}
    """
    return {"status": "ok"}


@app.get("/metrics")
def metrics(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    """Feed request counters and background event delivery stats."""
    return {
        "feeds": metrics_service.get_metrics(),
        "events": engine.dispatcher.stats(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not get_settings().is_production,
    )
