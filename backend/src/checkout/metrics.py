"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Histogram

# Payment metrics
payments_created_total = Counter(
    "payments_created_total",
    "Total payments created",
    labelnames=["currency", "method"],
)

payment_transitions_total = Counter(
    "payment_transitions_total",
    "Total payment status transitions",
    labelnames=["status"],  # completed, failed, timeout, cancelled, processing
)

payment_verifications_total = Counter(
    "payment_verifications_total",
    "Total verification requests by outcome",
    labelnames=["outcome"],  # verified, duplicate, signature_mismatch, exhausted, rejected, not_found
)

payment_refunds_total = Counter(
    "payment_refunds_total",
    "Total refunds requested at the gateway",
    labelnames=["status"],  # success, failed
)

# Sweep metrics
payment_sweep_runs_total = Counter(
    "payment_sweep_runs_total",
    "Total sweep runs",
    labelnames=["sweep", "status"],  # status: completed, failed, skipped
)

payment_sweep_records_total = Counter(
    "payment_sweep_records_total",
    "Payments handled by sweeps",
    labelnames=["sweep", "outcome"],
)

payment_sweep_duration_seconds = Histogram(
    "payment_sweep_duration_seconds",
    "Sweep run duration in seconds",
    labelnames=["sweep"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Collaborator metrics
order_status_pushes_total = Counter(
    "order_status_pushes_total",
    "Payment status pushes to the order service",
    labelnames=["status", "result"],  # result: delivered, failed, skipped
)
