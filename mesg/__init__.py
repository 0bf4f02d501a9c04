"""In-memory message broker served over gRPC, with an HTTP endpoint for its protocol and metrics."""

__version__ = "0.4.0"