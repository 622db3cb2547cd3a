"""Prometheus metrics for the Page inbox."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

WEBHOOK_EVENTS = Counter(
    "inbox_webhook_events_total",
    "Messaging events received through the Page webhook",
    ["kind", "status"],  # status: processed, skipped, duplicate, error
)

OUTBOUND_MESSAGES = Counter(
    "inbox_outbound_messages_total",
    "Outbound replies relayed to customers",
    ["status"],  # status: sent, recipient_unresolved, send_failed
)

IDENTITY_RESOLUTIONS = Counter(
    "inbox_identity_resolutions_total",
    "Customer identity resolutions by producing strategy",
    ["source"],  # source: cache, conversation, profile_full, profile_basic, profile_name, placeholder
)

GRAPH_REQUESTS = Counter(
    "inbox_graph_requests_total",
    "Meta Graph API requests",
    ["operation", "outcome"],  # outcome: success, error, transport_error
)

GRAPH_REQUEST_TIME = Histogram(
    "inbox_graph_request_seconds",
    "Meta Graph API request latency",
    ["operation"],
)

MESSAGE_PROCESSING_TIME = Histogram(
    "inbox_message_processing_seconds",
    "Time to process one webhook messaging event",
    ["kind"],
)
