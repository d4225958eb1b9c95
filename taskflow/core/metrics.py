"""Prometheus metrics for auth, revocation and tasks (default registry, served at /metrics)."""

from prometheus_client import Counter, Gauge

AUTH_ATTEMPTS = Counter(
    "auth_attempts_total",
    "Total number of authentication attempts",
    ["type", "status"],  # type: login|register|refresh, status: success|failure
)

AUTH_REJECTIONS = Counter(
    "auth_rejections_total",
    "Requests rejected by the authentication or CSRF gate",
    ["reason"],
)

TOKEN_REVOCATIONS = Counter(
    "token_revocations_total",
    "Tokens added to the revocation registry",
)

REVOCATION_EVICTIONS = Counter(
    "token_revocation_evictions_total",
    "Revocation entries evicted because the registry was full",
)

REVOKED_TOKENS = Gauge(
    "revoked_tokens",
    "Entries currently held by the revocation registry",
)

TASKS_BY_STATUS = Gauge(
    "tasks_by_status",
    "Number of tasks by status",
    ["status"],
)
