"""
Prometheus metrics for change feed sessions.

Labels are limited to the session identity and small enumerations so the
series count stays proportional to the number of watched collections.
"""

from prometheus_client import Counter, Gauge

changefeed_events_total = Counter(
    "changefeed_events_total",
    "Change events dispatched to listeners",
    ["session"],
)

changefeed_reopens_total = Counter(
    "changefeed_reopens_total",
    "Feed reopens scheduled, by trigger",
    ["session", "trigger"],
)

changefeed_failures_total = Counter(
    "changefeed_failures_total",
    "Feed failures observed, by failure class",
    ["session", "failure"],
)

changefeed_live_sessions = Gauge(
    "changefeed_live_sessions",
    "Sessions currently holding a live subscription",
)
