"""Prometheus metrics for the gateway."""

from prometheus_client import Counter, Histogram, Info, generate_latest

# --- Metrics ---

GATEWAY_INFO = Info("aigateway", "AI gateway library info")
GATEWAY_INFO.info({"version": "0.1.0", "name": "aigateway"})

PROVIDER_CALLS = Counter(
    "aigateway_provider_calls_total",
    "Total provider calls by outcome",
    ["provider", "operation", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "aigateway_provider_call_duration_seconds",
    "Provider call duration in seconds",
    ["provider", "operation"],
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300],
)

CIRCUIT_TRANSITIONS = Counter(
    "aigateway_circuit_transitions_total",
    "Circuit breaker state transitions",
    ["service_id", "state"],
)

QUOTA_DENIALS = Counter(
    "aigateway_quota_denials_total",
    "Requests denied by the quota enforcer",
    ["tier", "action"],
)


def metrics_payload() -> bytes:
    """Render the default registry in the Prometheus text format."""
    return generate_latest()
