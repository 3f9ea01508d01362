"""Prometheus metrics for the request dispatcher and offline queue.

The module bundles all collectors in one place so importing side-effects
(metric registration) happen exactly once per process.  Services simply
``from relay.metrics import …`` and increment.
"""

from __future__ import annotations

from prometheus_client import Counter
from prometheus_client import Gauge
from prometheus_client import Histogram

operations_queued_total = Counter(
    "relay_operations_queued_total",
    "Operations persisted to the offline queue",
)

operations_sent_total = Counter(
    "relay_operations_sent_total",
    "Operations delivered successfully",
    labelnames=("source",),  # "direct" or "queue"
)

operations_failed_total = Counter(
    "relay_operations_failed_total",
    "Queued operations discarded as permanently undeliverable",
    labelnames=("reason",),
)

token_refresh_total = Counter(
    "relay_token_refresh_total",
    "Token refresh exchanges performed",
    labelnames=("outcome",),
)

# ------------------------------------------------------------------
# Gauges (current state) -------------------------------------------
# ------------------------------------------------------------------

offline_queue_depth = Gauge(
    "relay_offline_queue_depth",
    "Number of operations currently waiting in the offline queue",
)

# ------------------------------------------------------------------
# Histograms (latency) ---------------------------------------------
# ------------------------------------------------------------------

request_latency_seconds = Histogram(
    "relay_request_latency_seconds",
    "Latency of transport requests (seconds)",
    labelnames=("method",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0),
)
