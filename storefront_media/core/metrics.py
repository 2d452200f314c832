"""
Prometheus metrics for the ingestion service.

Scraped from GET /api/v1/metrics.
"""

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, Info, generate_latest

LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
SIZE_BUCKETS = (10_000, 50_000, 100_000, 500_000, 1_000_000, 2_500_000, 5_000_000, 10_485_760)

# =============================================================================
# Ingestion pipeline
# =============================================================================

pipeline_latency_seconds = Histogram(
    "media_pipeline_latency_seconds",
    "Wall time of one ingestion stage (validate, fetch, verify, transcode, upload)",
    labelnames=["stage", "status"],
    buckets=LATENCY_BUCKETS
)

ingestions_total = Counter(
    "media_ingestions_total",
    "Ingestion runs by outcome; error_kind is 'none' on success",
    labelnames=["status", "error_kind"]
)

ingested_bytes = Histogram(
    "media_ingested_bytes",
    "Image size as fetched and as stored",
    labelnames=["phase"],
    buckets=SIZE_BUCKETS
)

# =============================================================================
# Storage cleanup
# =============================================================================

storage_deletions_total = Counter(
    "media_storage_deletions_total",
    "Per-image delete attempts by outcome (deleted, failed, unparseable)",
    labelnames=["outcome"]
)

# =============================================================================
# HTTP surface
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=LATENCY_BUCKETS
)

app_info = Info("storefront_media_app", "Build and deployment information")


def set_app_info(version: str, environment: str):
    app_info.info({"version": version, "environment": environment})


@contextmanager
def track_stage_latency(stage: str) -> Iterator[None]:
    """
    Observe the duration of the enclosed block under the stage label,
    with status "error" when it raises.
    """
    started = time.perf_counter()
    outcome = "error"
    try:
        yield
        outcome = "success"
    finally:
        pipeline_latency_seconds.labels(stage=stage, status=outcome).observe(time.perf_counter() - started)


def record_ingestion(status: str, error_kind: str = "none"):
    ingestions_total.labels(status=status, error_kind=error_kind).inc()


def record_image_bytes(phase: str, size: int):
    ingested_bytes.labels(phase=phase).observe(size)


def record_deletion(outcome: str):
    storage_deletions_total.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
