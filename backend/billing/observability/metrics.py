"""Prometheus metrics helpers for the marketplace payment domain."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

BILLING_REQUEST_COUNT = Counter(
    "billing_request_total",
    "Number of marketplace API requests",
    labelnames=("endpoint", "method", "status"),
)

BILLING_REQUEST_LATENCY = Histogram(
    "billing_request_duration_seconds",
    "Latency of marketplace API requests",
    labelnames=("endpoint", "method"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

BID_PLACEMENT_COUNT = Counter(
    "auction_bid_placement_total",
    "Bid placement attempts by payment rail and outcome",
    labelnames=("payment_method", "outcome"),
)

HOLD_RELEASE_COUNT = Counter(
    "auction_hold_release_total",
    "Released bid holds by payment rail and outcome",
    labelnames=("payment_method", "outcome"),
)

AUCTION_COMPLETION_COUNT = Counter(
    "auction_completion_total",
    "Auction completion attempts by outcome",
    labelnames=("outcome",),
)

TRANSFER_ATTEMPT_COUNT = Counter(
    "billing_transfer_attempt_total",
    "Seller payout transfer attempts by outcome",
    labelnames=("outcome",),
)

TRANSFER_QUEUE_DEPTH = Gauge(
    "billing_transfer_queue_depth",
    "Transfer jobs waiting in the in-process payout queue",
    multiprocess_mode="livesum",
)

LEDGER_ADJUSTMENT_COUNT = Counter(
    "bidcoin_ledger_adjustment_total",
    "BidCoin ledger adjustments by transaction type and outcome",
    labelnames=("type", "outcome"),
)
