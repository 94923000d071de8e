"""
Prometheus metrics for Port Watch.
"""

from prometheus_client import Counter, Gauge, Histogram

# Probes finished (by outcome: active / inactive / timeout)
PROBES_COMPLETED = Counter(
    "portwatch_probes_completed_total",
    "Total probes that produced a result",
    ["outcome"],
)

# Check requests ignored because the entry was already being probed
PROBES_SKIPPED = Counter(
    "portwatch_probes_skipped_total",
    "Check requests skipped because a probe was already in flight",
)

PROBES_IN_FLIGHT = Gauge(
    "portwatch_probes_in_flight",
    "Number of probes currently running",
)

# Total probe cost, both attempts included
PROBE_DURATION = Histogram(
    "portwatch_probe_duration_seconds",
    "Probe duration from first attempt to final outcome",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

BATCHES_COMPLETED = Counter(
    "portwatch_batches_completed_total",
    "Total check-all batches that finished",
)

POLL_ROUNDS = Counter(
    "portwatch_poll_rounds_total",
    "Total scheduled auto-refresh rounds fired",
)

WATCHED_ENTRIES = Gauge(
    "portwatch_watched_entries",
    "Number of entries on the watchlist",
)
