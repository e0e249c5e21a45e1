"""Read-only REST routes over the topology store, aggregator and detector.

Every handler pulls its collaborators from ``request.app.state``; nothing
here writes to the core.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubenetviz.api.schemas import (
    AnomalyListResponse,
    ErrorResponse,
    FlowListResponse,
    HealthResponse,
    NodeListResponse,
    StatsResponse,
)
from kubenetviz.models.alerts import AnomalyType, Severity

router = APIRouter()

_MAX_LIMIT = 10_000


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    from kubenetviz import __version__

    store = request.app.state.store
    return HealthResponse(
        version=__version__,
        cluster_id=request.app.state.cluster_id,
        nodes=store.node_count,
        edges=store.edge_count,
    )


@router.get("/topology")
async def topology(request: Request) -> dict[str, Any]:
    return request.app.state.store.snapshot().to_dict()


@router.get("/nodes", response_model=None)
async def nodes(
    request: Request,
    id: Annotated[str | None, Query(min_length=1)] = None,  # noqa: A002
) -> NodeListResponse | JSONResponse:
    store = request.app.state.store
    if id is None:
        listed = [n.to_dict() for n in store.snapshot().nodes]
        return NodeListResponse(count=len(listed), nodes=listed)
    node = store.get_node(id)
    if node is None:
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(error="NODE_NOT_FOUND", detail=f"no node with id {id!r}").model_dump(),
        )
    return NodeListResponse(count=1, nodes=[node.to_dict()])


@router.get("/flows/active", response_model=FlowListResponse)
async def active_flows(request: Request) -> FlowListResponse:
    edges = request.app.state.aggregator.active_flows()
    return FlowListResponse(count=len(edges), flows=[e.to_dict() for e in edges])


@router.get("/flows/recent", response_model=FlowListResponse)
async def recent_flows(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=_MAX_LIMIT)] = 100,
) -> FlowListResponse:
    records = request.app.state.aggregator.recent_flows(limit)
    return FlowListResponse(count=len(records), flows=[r.to_dict() for r in records])


@router.get("/anomalies", response_model=AnomalyListResponse)
async def anomalies(
    request: Request,
    severity: Severity | None = None,
    anomaly_type: Annotated[AnomalyType | None, Query(alias="type")] = None,
    limit: Annotated[int, Query(ge=1, le=_MAX_LIMIT)] = 100,
) -> AnomalyListResponse:
    events = request.app.state.detector.events(limit=limit, severity=severity, anomaly_type=anomaly_type)
    return AnomalyListResponse(count=len(events), anomalies=[e.to_dict() for e in events])


@router.get("/stats", response_model=StatsResponse)
async def stats(request: Request) -> StatsResponse:
    detector = request.app.state.detector
    return StatsResponse(
        topology=request.app.state.store.stats(),
        flows=request.app.state.aggregator.stats(),
        anomalies={
            **detector.stats(),
            "by_severity": detector.events_by_severity(),
            "by_type": detector.events_by_type(),
        },
    )


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
