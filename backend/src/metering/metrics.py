"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Gauge

# Entitlement metrics
entitlement_checks_total = Counter(
    "entitlement_checks_total",
    "Total entitlement checks",
    labelnames=["feature", "decision"],  # decision: allowed, denied, error
)

# Usage metrics
usage_recorded_total = Counter(
    "usage_recorded_total",
    "Total feature uses recorded",
    labelnames=["feature"],
)

usage_record_failures_total = Counter(
    "usage_record_failures_total",
    "Usage increments that could not be persisted",
    labelnames=["feature"],
)

# Billing event metrics
billing_events_received_total = Counter(
    "billing_events_received_total",
    "Verified processor events accepted into the inbox",
    labelnames=["event_type", "duplicate"],
)

billing_events_total = Counter(
    "billing_events_total",
    "Processor events by processing outcome",
    labelnames=["event_type", "outcome"],  # outcome: processed, skipped, failed
)

billing_event_queue_depth = Gauge(
    "billing_event_queue_depth",
    "Events waiting in the in-process dispatcher queue",
)

# Subscription metrics
subscription_snapshots_total = Counter(
    "subscription_snapshots_total",
    "Subscription snapshots offered to the ledger",
    labelnames=["result"],  # result: applied, stale
)
