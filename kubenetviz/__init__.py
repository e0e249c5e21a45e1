"""kubenetviz: live Kubernetes network topology with flow-based anomaly detection."""

__version__ = "0.3.0"
