"""Prometheus metrics for the processing pipeline.

Tracks job outcomes, attempts, pipeline step timing and worker pool load.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


APP_INFO = Info(
    "vidproxy_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)


# ============================================
# Job Metrics
# ============================================
JOBS_SUBMITTED_TOTAL = Counter(
    "video_jobs_submitted_total",
    "Processing jobs accepted for asynchronous processing",
    ["transport"],
    registry=REGISTRY,
)

JOBS_FINISHED_TOTAL = Counter(
    "video_jobs_finished_total",
    "Processing jobs that reached a terminal state",
    ["status"],
    registry=REGISTRY,
)

JOB_ATTEMPTS_TOTAL = Counter(
    "video_job_attempts_total",
    "Pipeline attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

JOB_RETRIES_TOTAL = Counter(
    "video_job_retries_total",
    "Retries scheduled after a failed attempt, by error kind",
    ["error_kind"],
    registry=REGISTRY,
)

JOB_DURATION_SECONDS = Histogram(
    "video_job_duration_seconds",
    "Duration of one pipeline attempt in seconds",
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

PIPELINE_STEP_DURATION_SECONDS = Histogram(
    "pipeline_step_duration_seconds",
    "Duration of individual pipeline steps in seconds",
    ["step"],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=REGISTRY,
)


# ============================================
# Worker Pool Metrics
# ============================================
QUEUE_DEPTH = Gauge(
    "video_queue_depth",
    "Jobs waiting for a worker slot",
    registry=REGISTRY,
)

WORKERS_BUSY = Gauge(
    "video_workers_busy",
    "Worker slots currently running a pipeline",
    registry=REGISTRY,
)


# ============================================
# Storage Metrics
# ============================================
STORAGE_OPERATIONS_TOTAL = Counter(
    "storage_operations_total",
    "Storage gateway operations by outcome",
    ["backend", "operation", "status"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
