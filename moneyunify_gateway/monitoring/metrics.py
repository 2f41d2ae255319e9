"""
Prometheus metrics for the MoneyUnify gateway.

Tracks:
- Checkout initiations by result
- Provider API calls and their duration
- Verification outcomes per convergence driver
- Applied state transitions
- Host order callbacks (settlements)
- Sweep cycles
- Circuit breaker state
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Initiation metrics
payment_initiations_total = Counter(
    "moneyunify_payment_initiations_total",
    "Total checkout initiations",
    ["result"],  # pending, validation_error, rejected, unavailable, duplicate, disabled
)

# Provider API metrics
provider_requests_total = Counter(
    "moneyunify_provider_requests_total",
    "Total MoneyUnify API requests",
    ["operation", "outcome"],  # operation: request, verify
)

provider_request_duration_seconds = Histogram(
    "moneyunify_provider_request_duration_seconds",
    "MoneyUnify API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0),
)

circuit_breaker_state = Gauge(
    "moneyunify_circuit_breaker_state",
    "Provider circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Reconciliation metrics
verifications_total = Counter(
    "moneyunify_verifications_total",
    "Verification attempts by convergence driver",
    ["source", "outcome"],  # source: poll, sweep
)

transitions_total = Counter(
    "moneyunify_transitions_total",
    "Applied payment state transitions",
    ["source", "status"],
)

settlements_total = Counter(
    "moneyunify_settlements_total",
    "Host order callbacks for terminal records",
    ["source", "outcome"],  # outcome: settled, failed
)

terminal_guard_hits_total = Counter(
    "moneyunify_terminal_guard_hits_total",
    "Transitions skipped because another driver already settled the record",
    ["source"],
)

# Sweep metrics
sweep_duration_seconds = Histogram(
    "moneyunify_sweep_duration_seconds",
    "Sweep cycle duration in seconds",
    buckets=(0.5, 1, 5, 10, 30, 60, 120, 300, 600),
)

sweep_batch_size = Gauge(
    "moneyunify_sweep_batch_size",
    "Pending records examined by the last sweep",
)

sweep_last_run_timestamp = Gauge(
    "moneyunify_sweep_last_run_timestamp",
    "Timestamp of the last completed sweep",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_initiation(result: str) -> None:
        """Record a checkout initiation."""
        payment_initiations_total.labels(result=result).inc()

    @staticmethod
    def record_provider_call(operation: str, outcome: str, duration_seconds: float) -> None:
        """Record a MoneyUnify API call."""
        provider_requests_total.labels(operation=operation, outcome=outcome).inc()
        provider_request_duration_seconds.labels(operation=operation).observe(
            duration_seconds
        )

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_verification(source: str, outcome: str) -> None:
        """Record a verification attempt."""
        verifications_total.labels(source=source, outcome=outcome).inc()

    @staticmethod
    def record_transition(source: str, status: str) -> None:
        """Record an applied transition."""
        transitions_total.labels(source=source, status=status).inc()

    @staticmethod
    def record_settlement(source: str, outcome: str) -> None:
        """Record a host order callback attempt."""
        settlements_total.labels(source=source, outcome=outcome).inc()

    @staticmethod
    def record_terminal_guard_hit(source: str) -> None:
        """Record a lost compare-and-set."""
        terminal_guard_hits_total.labels(source=source).inc()

    @staticmethod
    def record_sweep(batch_size: int, duration_seconds: float) -> None:
        """Record a completed sweep cycle."""
        sweep_batch_size.set(batch_size)
        sweep_duration_seconds.observe(duration_seconds)
        sweep_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
