"""
flytrap test configuration.

Tests never touch the network or the host's real Fly.io environment: $FLY_*
and $FLYTRAP_* variables are cleared, interface detection sees no
interfaces, and DNS / HTTP go through fakes.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from ipaddress import IPv6Address

import psutil
import pytest

from flytrap.tier0_core.errors import LookupFailure

# ── Fixed environment ─────────────────────────────────────────────────────
# Read once, when the first logger is configured.

os.environ.setdefault("FLYTRAP_LOG_LEVEL", "WARNING")
os.environ.setdefault("FLYTRAP_LOG_FORMAT", "console")


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """
    Strip Fly.io variables, hide local interfaces, and reset cached config
    and the discovery singleton so no state bleeds between tests.
    """
    from flytrap.tier0_core.config import _reset_config
    from flytrap.tier3_platform.discovery import _reset_discovery

    for key in list(os.environ):
        if key.startswith("FLY_") or (key.startswith("FLYTRAP_") and not key.startswith("FLYTRAP_LOG_")):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: {})

    _reset_config()
    _reset_discovery()
    yield
    _reset_config()
    _reset_discovery()


@pytest.fixture
def fly_env(monkeypatch):
    """A hosted Fly.io machine environment."""
    values = {
        "FLY_APP_NAME": "flytrap",
        "FLY_ALLOC_ID": "148e21dad76789",
        "FLY_MACHINE_ID": "148e21dad76789",
        "FLY_MACHINE_VERSION": "01HGJ5AXHZ7V2S3N1V8W9ZC4QK",
        "FLY_IMAGE_REF": "registry.fly.io/flytrap:deployment-01HGJ5",
        "FLY_VM_MEMORY_MB": "256",
        "FLY_REGION": "sea",
        "FLY_PRIVATE_IP": "fdaa:2:224b:a7b:2dbb:3e15:aaea:2",
        "FLY_PUBLIC_IP": "2604:1380:4091:3601::2",
        "FLY_PROCESS_GROUP": "app",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values


class FakeNameService:
    """In-memory NameService. Unknown names answer with no records."""

    def __init__(
        self,
        txt: Mapping[str, str] | None = None,
        aaaa: Mapping[str, list[str]] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self._txt = dict(txt or {})
        self._aaaa = {name: [IPv6Address(a) for a in addrs] for name, addrs in (aaaa or {}).items()}
        self._failing = failing or set()
        self.queries: list[tuple[str, str]] = []

    async def txt(self, name: str) -> str:
        self.queries.append(("TXT", name))
        if name in self._failing:
            raise LookupFailure(query=name)
        return self._txt.get(name, "")

    async def aaaa(self, name: str) -> list[IPv6Address]:
        self.queries.append(("AAAA", name))
        if name in self._failing:
            raise LookupFailure(query=name)
        return self._aaaa.get(name, [])


@pytest.fixture
def fake_name_service():
    """Factory for FakeNameService instances."""
    return FakeNameService
