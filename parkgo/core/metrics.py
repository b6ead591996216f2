"""
Prometheus metrics for the reservation and payment flows
"""

from prometheus_client import Counter, Histogram, REGISTRY


def _counter(name: str, documentation: str, labelnames):
    # Re-importing the module (tests, reloaders) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


def _histogram(name: str, documentation: str, labelnames):
    try:
        return Histogram(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUEST_COUNT = _counter(
    "parkgo_requests_total",
    "Total requests",
    ["method", "endpoint", "status"]
)
REQUEST_DURATION = _histogram(
    "parkgo_request_duration_seconds",
    "Request duration",
    ["method", "endpoint"]
)

BOOKING_TRANSITIONS = _counter(
    "parkgo_booking_transitions_total",
    "Booking state transitions",
    ["from_status", "to_status"]
)
BOOKING_REJECTIONS = _counter(
    "parkgo_booking_rejections_total",
    "Booking operations rejected by a domain rule",
    ["operation", "reason"]
)
RECONCILIATIONS = _counter(
    "parkgo_reconciliations_total",
    "Transaction reconciliation outcomes",
    ["source", "outcome"]
)
OVERTIME_CHARGE_FAILURES = _counter(
    "parkgo_overtime_charge_failures_total",
    "Overtime charges that could not be collected at exit",
    ["reason"]
)
GATEWAY_ERRORS = _counter(
    "parkgo_gateway_errors_total",
    "Payment gateway calls that failed or timed out",
    ["operation"]
)


def record_transition(from_status, to_status) -> None:
    BOOKING_TRANSITIONS.labels(
        from_status=getattr(from_status, "value", from_status),
        to_status=getattr(to_status, "value", to_status)
    ).inc()
