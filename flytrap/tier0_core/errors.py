"""
flytrap.tier0_core.errors
──────────────────────────
Error taxonomy for runtime-environment lookups. Every error carries a stable
machine-readable code, a message safe to show to users, and internal detail.

Discovery adapters raise their own specific errors (LookupFailure,
ApiFailure); the discovery façade wraps them in DiscoveryFailure so callers
only have to catch one type.
"""
from __future__ import annotations

from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class FlytrapError(Exception):
    """
    Base class for all flytrap errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to end users
    - detail: internal context, never shown to users
    """

    code: str = "flytrap_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


# ── Typed error classes ───────────────────────────────────────────────────────

class ConfigurationError(FlytrapError):
    """Missing or invalid environment / settings."""
    code = "configuration_error"


class ResolverUnavailable(FlytrapError):
    """No Fly.io private networking could be detected for a DNS resolver."""
    code = "resolver_unavailable"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "No Fly.io private networking detected.",
        **metadata: Any,
    ) -> None:
        super().__init__(code, user_message, **metadata)


class LookupFailure(FlytrapError):
    """A query against the .internal DNS zone failed."""
    code = "lookup_failure"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "DNS lookup failed.",
        query: str | None = None,
        **metadata: Any,
    ) -> None:
        self.query = query
        super().__init__(code, user_message, **metadata)


class MalformedRecord(LookupFailure):
    """A DNS record could not be parsed into the expected shape."""
    code = "malformed_record"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Failed to parse Fly.io TXT record.",
        record: str | None = None,
        **metadata: Any,
    ) -> None:
        self.record = record
        super().__init__(code, user_message, **metadata)


class ApiFailure(FlytrapError):
    """
    A Machines API call failed.

    reason is one of:
    - "transport": the request never produced a response (network, timeout)
    - "status":    the server answered with a non-success status
    - "schema":    the body was not JSON, or JSON of the wrong shape
    """
    code = "api_failure"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Machines API request failed.",
        reason: str = "transport",
        status: int | None = None,
        body: str | None = None,
        **metadata: Any,
    ) -> None:
        self.reason = reason
        self.status = status
        self.body = body
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["error"]["reason"] = self.reason
        if self.status is not None:
            d["error"]["status"] = self.status
        return d


class DiscoveryFailure(FlytrapError):
    """Peer discovery failed; wraps the adapter error that caused it."""
    code = "discovery_failure"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Peer discovery failed.",
        strategy: str | None = None,
        cause: FlytrapError | None = None,
        **metadata: Any,
    ) -> None:
        self.strategy = strategy
        self.cause = cause
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["error"]["strategy"] = self.strategy
        if self.cause is not None:
            d["error"]["cause"] = self.cause.code
        return d


__all__ = [
    "FlytrapError",
    "ConfigurationError",
    "ResolverUnavailable",
    "LookupFailure",
    "MalformedRecord",
    "ApiFailure",
    "DiscoveryFailure",
]
