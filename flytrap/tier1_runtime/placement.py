"""
flytrap.tier1_runtime.placement
────────────────────────────────
How the current process is placed in the Fly.io runtime environment: app
name, region, allocation / machine identity, and its private (6PN) and public
addresses, read from the $FLY_ environment variables.

Private-address detection falls back to scanning local network interfaces
(via psutil) for an fdaa::/16 address, which is how a WireGuard-connected
developer machine is recognised.

Reference: https://fly.io/docs/reference/runtime-environment/
"""
from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from ipaddress import IPv6Address

import psutil

from flytrap.tier0_core.errors import ConfigurationError

PRIVATE_NETWORK_PREFIX = 0xFDAA


# ── Domain model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Machine:
    """The Fly.io Machine running this process."""
    id: str
    version: str
    image: str | None = None
    memory: int | None = None

    @classmethod
    def current(cls) -> Machine:
        """Populate from $FLY_MACHINE_ID, $FLY_MACHINE_VERSION, $FLY_IMAGE_REF, $FLY_VM_MEMORY_MB."""
        memory = os.environ.get("FLY_VM_MEMORY_MB")
        return cls(
            id=_var("FLY_MACHINE_ID"),
            version=_var("FLY_MACHINE_VERSION"),
            image=os.environ.get("FLY_IMAGE_REF"),
            memory=int(memory) if memory and memory.isdigit() else None,
        )


@dataclass(frozen=True)
class Placement:
    """Where and as what the current process is running."""
    app: str
    allocation: str
    location: str
    private_ip: IPv6Address
    public_ip: IPv6Address | None = None
    process_group: str | None = None
    machine: Machine | None = None

    @classmethod
    def current(cls) -> Placement:
        """
        Read the current placement from $FLY_ environment variables.
        Raises ConfigurationError when a required variable is missing.
        """
        private_ip = _environment_address()
        if private_ip is None:
            raise ConfigurationError(
                "placement_unavailable",
                "$FLY_PRIVATE_IP is not set to a valid IPv6 address.",
            )

        try:
            machine: Machine | None = Machine.current()
        except ConfigurationError:
            machine = None

        return cls(
            app=app_name(),
            allocation=_var("FLY_ALLOC_ID"),
            location=_var("FLY_REGION"),
            private_ip=private_ip,
            public_ip=public_address(),
            process_group=os.environ.get("FLY_PROCESS_GROUP"),
            machine=machine,
        )

    @property
    def instance_id(self) -> str:
        """The identifier peers are listed under: machine ID, else allocation ID."""
        if self.machine is not None:
            return self.machine.id
        return self.allocation


# ── Address helpers ──────────────────────────────────────────────────────────

def app_name() -> str:
    """$FLY_APP_NAME; raises ConfigurationError if unset."""
    return _var("FLY_APP_NAME")


def hosted() -> bool:
    """True if this process appears to run on Fly.io itself (not over WireGuard)."""
    return bool(os.environ.get("FLY_APP_NAME")) and bool(os.environ.get("FLY_PRIVATE_IP"))


def is_private_address(address: IPv6Address) -> bool:
    return address.packed[:2] == PRIVATE_NETWORK_PREFIX.to_bytes(2, "big")


def private_address() -> IPv6Address | None:
    """
    Return this host's Fly.io private address: $FLY_PRIVATE_IP if it holds a
    valid IPv6 address, else the first local interface address in fdaa::/16.
    Returns None when neither is found.
    """
    address = _environment_address()
    if address is None:
        address = detect_address()
    return address


def public_address() -> IPv6Address | None:
    """$FLY_PUBLIC_IP, if set to a valid IPv6 address."""
    return _parse_ipv6(os.environ.get("FLY_PUBLIC_IP"))


def detect_address() -> IPv6Address | None:
    """Find the first local interface address on the Fly.io private network."""
    for addresses in psutil.net_if_addrs().values():
        for addr in addresses:
            if addr.family != socket.AF_INET6:
                continue
            ip = _parse_ipv6(addr.address.split("%", 1)[0])
            if ip is not None and is_private_address(ip):
                return ip
    return None


def _environment_address() -> IPv6Address | None:
    return _parse_ipv6(os.environ.get("FLY_PRIVATE_IP"))


def _parse_ipv6(value: str | None) -> IPv6Address | None:
    if not value:
        return None
    try:
        return IPv6Address(value)
    except ValueError:
        return None


def _var(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigurationError(
            "placement_unavailable",
            f"${name} is not set.",
            variable=name,
        )
    return value


__all__ = [
    "Machine",
    "Placement",
    "app_name",
    "hosted",
    "is_private_address",
    "private_address",
    "public_address",
    "detect_address",
]
