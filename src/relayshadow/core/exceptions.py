"""RelayShadow exception hierarchy.

Typed exceptions for every error category so callers can tell endpoint-
scoped failures (logged and retried) from request-scoped failures (turned
into an error response) and from call-scoped failures (raised to the
client). ``CancelledError`` is never caught by these handlers.

Exception hierarchy:

```text
RelayShadowError (base -- never raised directly)
├── ConfigurationError          -- config validation, missing keys, bad YAML
├── DatabaseError               -- pool/store failures
│   ├── ConnectionPoolError     -- transient: pool exhausted, network blip
│   └── StoreQueryError         -- a store query failed
├── ConnectivityError           -- relay network failures
│   ├── ConnectionFailure       -- one endpoint could not be opened
│   ├── AggregateConnectionFailure -- no endpoint could be opened
│   └── RelayTimeoutError       -- connect or acknowledgement wait expired
├── ProtocolError               -- malformed frame or job request
├── SignatureError              -- signing failed or signature invalid
└── PublishingError             -- no endpoint accepted a published message
```

See Also:
    [ConnectionManager][relayshadow.network.manager.ConnectionManager]:
        Raises
        [AggregateConnectionFailure][relayshadow.core.exceptions.AggregateConnectionFailure]
        when zero endpoints open.
    [Store][relayshadow.core.store.Store]: Raises
        [StoreQueryError][relayshadow.core.exceptions.StoreQueryError].
    [BaseService][relayshadow.core.base_service.BaseService]: Catches
        everything in the
        [run_forever()][relayshadow.core.base_service.BaseService.run_forever]
        loop.
"""

from __future__ import annotations


class RelayShadowError(Exception):
    """Base exception for all RelayShadow errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(RelayShadowError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(RelayShadowError):
    """Base for all analytics store errors."""


class ConnectionPoolError(DatabaseError):
    """Transient database error: pool exhausted, connection refused, network blip.

    Callers may retry after a backoff.
    """


class StoreQueryError(DatabaseError):
    """A query against the analytics store failed.

    Request handlers either fall back to static data or answer with an
    error response; the request is never left unanswered.
    """


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(RelayShadowError):
    """Base for all relay connectivity errors."""


class ConnectionFailure(ConnectivityError):
    """A single relay endpoint could not be opened.

    Non-fatal: logged by the connection manager and retried with a fixed
    delay while the manager is alive.

    Attributes:
        url: The endpoint that failed.
    """

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class AggregateConnectionFailure(ConnectivityError):
    """None of the requested relay endpoints could be opened.

    Attributes:
        failures: Per-endpoint failures, keyed by URL.
    """

    def __init__(self, failures: dict[str, BaseException]) -> None:
        detail = ", ".join(f"{url} ({err})" for url, err in failures.items()) or "no endpoints"
        super().__init__(f"Failed to connect to any relay: {detail}")
        self.failures = failures


class RelayTimeoutError(ConnectivityError):
    """A connection attempt or acknowledgement wait timed out."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProtocolError(RelayShadowError):
    """Malformed wire frame or job request."""


class SignatureError(RelayShadowError):
    """A message could not be signed, or its signature does not verify."""


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class PublishingError(RelayShadowError):
    """No relay endpoint accepted a published message.

    Attributes:
        outcomes: Per-endpoint publish outcomes, keyed by URL.
    """

    def __init__(self, message: str, outcomes: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.outcomes = outcomes or {}
