"""Pydantic response models for the kubenetviz REST API.

Topology, flow and anomaly payloads are the models' own ``to_dict()`` forms;
only the envelope-style responses are declared here.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every failing endpoint."""

    error: str
    detail: str = ""


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    cluster_id: str = ""
    nodes: int = 0
    edges: int = 0


class FlowListResponse(BaseModel):
    count: int
    flows: list[dict[str, Any]] = Field(default_factory=list)


class AnomalyListResponse(BaseModel):
    count: int
    anomalies: list[dict[str, Any]] = Field(default_factory=list)


class NodeListResponse(BaseModel):
    count: int
    nodes: list[dict[str, Any]] = Field(default_factory=list)


class StatsResponse(BaseModel):
    topology: dict[str, Any]
    flows: dict[str, Any]
    anomalies: dict[str, Any]
