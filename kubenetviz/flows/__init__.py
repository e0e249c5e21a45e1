"""Flow telemetry package: aggregation into edge metrics and ingestion."""

from kubenetviz.flows.aggregator import FlowAggregator
from kubenetviz.flows.ingest import FlowIngestor

__all__ = ["FlowAggregator", "FlowIngestor"]
