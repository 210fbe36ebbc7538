"""
flytrap.tier0_core.logging
───────────────────────────
Structured logs for resolver queries, API requests and discovery. Events go
through the stdlib root logger to stderr, so command output on stdout stays
clean. API tokens and Authorization headers are redacted before rendering.

Minimal stack: structlog (JSON or console renderer)
Configure via: FLYTRAP_LOG_LEVEL, FLYTRAP_LOG_FORMAT=json|console
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from flytrap.tier0_core.config import get_config
from flytrap.tier0_core.errors import ConfigurationError

_DEFAULT_LEVEL = "INFO"
_DEFAULT_FORMAT = "json"


# ── Redaction processor ───────────────────────────────────────────────────────

_SENSITIVE_KEYS = frozenset({
    "token", "api_token", "fly_api_token", "authorization", "auth",
    "secret", "password", "credential", "access_token",
})

_REDACTED = "[REDACTED]"


def _redact_processor(
    logger: Any, method: str, event_dict: dict
) -> dict:
    """Replace the values of sensitive keys before any renderer sees them."""
    for key in list(event_dict):
        if key.lower() in _SENSITIVE_KEYS:
            event_dict[key] = _REDACTED
    return event_dict


# ── Configuration ─────────────────────────────────────────────────────────────

def _settings() -> tuple[str, str]:
    # Invalid settings must not stop logging from coming up; the same
    # ConfigurationError is raised again by the caller's own get_config().
    try:
        config = get_config()
    except ConfigurationError:
        return _DEFAULT_LEVEL, _DEFAULT_FORMAT
    return config.log_level.upper(), config.log_format


def _configure_structlog() -> None:
    level_name, fmt = _settings()
    level = getattr(logging, level_name, logging.INFO)

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_processor,
    ]
    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)


# ── Public API ────────────────────────────────────────────────────────────────

_configured = False


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger, configuring structlog on first use.

    Usage:
        log = get_logger(__name__)
        log.debug("resolver.query", query="vms.my-app.internal", rdtype="TXT")
        log.warning("resolver.record_skipped", record="???")
    """
    global _configured
    if not _configured:
        _configure_structlog()
        _configured = True
    return structlog.get_logger(name or "flytrap")
