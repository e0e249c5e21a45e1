"""FastAPI application factory for kubenetviz.

Usage::

    from kubenetviz.api.app import create_app

    app = create_app(
        store=store,
        aggregator=aggregator,
        detector=detector,
        config=config,
    )

The factory is used by both the production bootstrap (``kubenetviz.app``)
and unit tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kubenetviz.api.routes import router
from kubenetviz.api.schemas import ErrorResponse

if TYPE_CHECKING:
    from kubenetviz.flows.aggregator import FlowAggregator
    from kubenetviz.graph.store import TopologyStore
    from kubenetviz.models.config import KubeNetVizConfig
    from kubenetviz.scout.detector import AnomalyDetector

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def create_app(
    store: TopologyStore,
    aggregator: FlowAggregator,
    detector: AnomalyDetector,
    config: KubeNetVizConfig | None = None,
) -> FastAPI:
    """Create and configure the kubenetviz FastAPI application.

    Args:
        store:      TopologyStore served by ``/topology`` and ``/nodes``.
        aggregator: FlowAggregator served by the ``/flows`` endpoints.
        detector:   AnomalyDetector served by ``/anomalies``.
        config:     Optional KubeNetVizConfig, used for cluster_id metadata.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from kubenetviz import __version__

    cluster_id = config.cluster_id if config is not None else ""

    app = FastAPI(
        title="kubenetviz",
        summary="Kubernetes network topology and traffic anomaly API",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    # Route handlers read their collaborators from app.state.
    app.state.store = store
    app.state.aggregator = aggregator
    app.state.detector = detector
    app.state.config = config
    app.state.cluster_id = cluster_id or ""

    app.include_router(router, prefix=_API_PREFIX)

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Map query-parameter validation errors to our error envelope."""
        errors = exc.errors()
        first_field = ""
        first_msg = ""
        if errors:
            locs = errors[0].get("loc", ())
            first_field = str(locs[-1]) if locs else ""
            first_msg = str(errors[0].get("msg", ""))

        detail = f"{first_field}: {first_msg}" if first_field else first_msg
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_PARAMETER", detail=detail).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        error = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=error, detail=str(exc.detail)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
