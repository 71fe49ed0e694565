"""Prometheus metrics for the dispatch gateway."""

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest

from llm_conductor import __version__

# --- Metrics ---

APP_INFO = Info("llm_conductor", "LLM dispatch gateway info")
APP_INFO.info({"version": __version__, "name": "llm_conductor"})

PROVIDER_ATTEMPTS = Counter(
    "llm_provider_attempts_total",
    "Per-provider outcome of a dispatched request",
    ["provider", "outcome"],
)

PROVIDER_CALLS = Counter(
    "llm_provider_calls_total",
    "Individual generate() calls, including retries",
    ["provider"],
)

DISPATCH_REQUESTS = Counter(
    "llm_dispatch_requests_total",
    "Requests resolved by the drain loop",
    ["status"],
)

DISPATCH_DURATION = Histogram(
    "llm_dispatch_duration_seconds",
    "Time from dequeue to resolution, retries and backoff included",
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120],
)

QUEUE_DEPTH = Gauge(
    "llm_queue_depth",
    "Requests waiting for the drain loop",
)


def metrics_text() -> bytes:
    """Current metrics in the Prometheus exposition format."""
    return generate_latest()
