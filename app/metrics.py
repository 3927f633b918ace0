from prometheus_client import Counter, Histogram

# Inbound Telegram messages by payload kind (link, text, photo, ...).
MESSAGE_TOTAL = Counter(
    "telegram_messages_total",
    "Total number of Telegram messages processed",
    ["type"],
)

# /start <token> handshakes by outcome (linked / link_failed).
LINK_TOTAL = Counter(
    "bridge_link_attempts_total",
    "Total number of account linking attempts",
    ["outcome"],
)

# Messages persisted and acknowledged, by payload kind.
SAVED_TOTAL = Counter(
    "bridge_messages_saved_total",
    "Total number of Telegram messages saved to the application store",
    ["type"],
)

# Messages dropped without an acknowledgement, by reason.
# "unlinked" is the steady state for chats that never ran /start.
DROPPED_TOTAL = Counter(
    "bridge_dropped_events_total",
    "Total number of Telegram messages dropped",
    ["reason"],
)

# Unexpected exceptions caught at the dispatch boundary.
DISPATCH_ERRORS = Counter(
    "bridge_dispatch_errors_total",
    "Total number of unexpected errors while dispatching Telegram messages",
)

# Time to handle one message end to end (media, store, reply).
DISPATCH_LATENCY = Histogram(
    "bridge_dispatch_latency_seconds",
    "Time spent handling a single Telegram message",
    ["type"],
)

# Time to turn a Telegram file_id into a URL (get_file plus any mirror download).
MEDIA_LATENCY = Histogram(
    "bridge_media_resolve_latency_seconds",
    "Time spent resolving a Telegram media file",
    ["outcome"],
)
