"""
flytrap.tier3_platform.resolver
────────────────────────────────
Query the Fly.io internal DNS zone (.internal) for app topology: the apps in
an organization, the instances of an app with their regions and private
addresses, and the nearest instances to the caller.

The DNS client is a NameService; the default one wraps dnspython's async
resolver. Resolver construction decides which nameserver to talk to:

  - Resolver.detect()       — Fly.io private networking (hosted or WireGuard)
  - Resolver.with_source()  — an explicit nameserver
  - Resolver.system()       — nameservers from /etc/resolv.conf

Reference: https://fly.io/docs/reference/private-networking/#fly-internal-addresses
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from enum import Enum
from ipaddress import IPv6Address
from typing import Protocol, TypeVar, runtime_checkable

import dns.asyncresolver
import dns.exception
import dns.resolver

from flytrap.tier0_core.config import get_config
from flytrap.tier0_core.errors import LookupFailure, MalformedRecord, ResolverUnavailable
from flytrap.tier0_core.logging import get_logger
from flytrap.tier1_runtime.placement import app_name, hosted, is_private_address, private_address
from flytrap.tier3_platform.peer import Instance, Node, Peer, valid_region_code

log = get_logger(__name__)

T = TypeVar("T")

INTERNAL_DOMAIN = "internal"
BUILDER_APP_PREFIX = "fly-builder-"


class RecordPolicy(str, Enum):
    """What to do with a TXT entry that cannot be parsed."""
    SKIP = "skip"
    STRICT = "strict"


def dns_server_address(local: IPv6Address, hosted: bool) -> IPv6Address:
    """
    Return the Fly.io DNS server serving a given local private address.

    Fly.io uses a fixed address inside its datacenters (fdaa::3), and an
    organization-specific one over WireGuard (fdaa:<b>:<c>::3).

        >>> dns_server_address(IPv6Address("fdaa:0:18:a7b:d6b:0:a:2"), hosted=False)
        IPv6Address('fdaa:0:18::3')
    """
    segments = local.exploded.split(":")
    if segments[0] != "fdaa":
        raise ValueError(f"{local} is not a Fly.io private network address")
    if hosted:
        return IPv6Address("fdaa::3")
    return IPv6Address(f"fdaa:{segments[1]}:{segments[2]}::3")


# ── Name service protocol ─────────────────────────────────────────────────────

@runtime_checkable
class NameService(Protocol):
    """Implement this protocol to plug in another DNS client."""

    async def txt(self, name: str) -> str:
        """Concatenated text of every TXT record at name; "" if there are none."""
        ...

    async def aaaa(self, name: str) -> list[IPv6Address]:
        """Every AAAA record at name; [] if there are none."""
        ...


class DnsNameService:
    """NameService backed by dnspython's asyncio resolver."""

    def __init__(self, resolver: dns.asyncresolver.Resolver, source: IPv6Address | None = None) -> None:
        self._resolver = resolver
        self._source = str(source) if source is not None else None

    @classmethod
    def for_nameservers(
        cls,
        nameservers: Iterable[IPv6Address | str],
        *,
        port: int = 53,
        local: IPv6Address | None = None,
        timeout: float = 5.0,
    ) -> DnsNameService:
        resolver = dns.asyncresolver.Resolver(configure=False)
        resolver.nameservers = [str(ns) for ns in nameservers]
        resolver.port = port
        resolver.lifetime = timeout
        resolver.use_edns(0, 0, 1232)
        return cls(resolver, source=local)

    @classmethod
    def system(cls, timeout: float = 5.0) -> DnsNameService:
        resolver = dns.asyncresolver.Resolver()
        resolver.lifetime = timeout
        resolver.use_edns(0, 0, 1232)
        return cls(resolver)

    async def txt(self, name: str) -> str:
        answer = await self._resolve(name, "TXT")
        parts: list[str] = []
        for rdata in answer:
            for chunk in rdata.strings:
                try:
                    parts.append(chunk.decode("utf-8"))
                except UnicodeDecodeError:
                    continue
        return "".join(parts)

    async def aaaa(self, name: str) -> list[IPv6Address]:
        answer = await self._resolve(name, "AAAA")
        return [IPv6Address(rdata.address) for rdata in answer]

    async def _resolve(self, name: str, rdtype: str) -> dns.resolver.Answer:
        log.debug("resolver.query", query=name, rdtype=rdtype)
        try:
            return await self._resolver.resolve(
                _absolute(name),
                rdtype,
                source=self._source,
                search=False,
                raise_on_no_answer=False,
            )
        except dns.exception.DNSException as exc:
            log.warning("resolver.query_failed", query=name, rdtype=rdtype, error=str(exc))
            raise LookupFailure(
                "lookup_failure",
                "Fly.io internal DNS lookup failed.",
                query=name,
                detail=f"{rdtype} lookup of {name} failed: {exc}",
            ) from exc


def _absolute(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


# ── Resolver ─────────────────────────────────────────────────────────────────

class Resolver:
    """
    Query the Fly.io internal DNS records.

    Usage::

        resolver = Resolver.detect()
        for peer in await resolver.current().peers():
            print(peer.id, peer.location, peer.private_address)
    """

    name = "dns"

    def __init__(
        self,
        name_service: NameService,
        *,
        policy: RecordPolicy | str | None = None,
    ) -> None:
        self._ns = name_service
        self._policy = RecordPolicy(policy or get_config().record_policy)

    @classmethod
    def detect(cls, *, policy: RecordPolicy | str | None = None) -> Resolver:
        """
        Configure from the host's Fly.io private network address.

        Raises ResolverUnavailable if the host is neither running on Fly.io
        nor connected to the WireGuard VPN. No query is sent.
        """
        local = private_address()
        if local is None or not is_private_address(local):
            raise ResolverUnavailable(
                detail=f"No local address in fdaa::/16 (found {local}).",
                address=str(local) if local is not None else None,
            )

        config = get_config()
        server = dns_server_address(local, hosted())
        log.debug("resolver.detected", local=str(local), nameserver=str(server))
        return cls.with_source(
            server,
            port=config.dns_port,
            local=local,
            timeout=config.dns_timeout,
            policy=policy,
        )

    @classmethod
    def with_source(
        cls,
        source: IPv6Address | str,
        *,
        port: int = 53,
        local: IPv6Address | None = None,
        timeout: float = 5.0,
        policy: RecordPolicy | str | None = None,
    ) -> Resolver:
        """Send queries to one nameserver, optionally bound to a local address."""
        return cls.with_sources([source], port=port, local=local, timeout=timeout, policy=policy)

    @classmethod
    def with_sources(
        cls,
        sources: Iterable[IPv6Address | str],
        *,
        port: int = 53,
        local: IPv6Address | None = None,
        timeout: float = 5.0,
        policy: RecordPolicy | str | None = None,
    ) -> Resolver:
        ns = DnsNameService.for_nameservers(sources, port=port, local=local, timeout=timeout)
        return cls(ns, policy=policy)

    @classmethod
    def system(cls, *, policy: RecordPolicy | str | None = None) -> Resolver:
        """Send queries to the nameservers configured in /etc/resolv.conf."""
        return cls(DnsNameService.system(get_config().dns_timeout), policy=policy)

    @classmethod
    def from_config(cls) -> Resolver:
        """$FLYTRAP_DNS_SERVER if set, else auto-detection."""
        config = get_config()
        if config.dns_server:
            return cls.with_source(
                config.dns_server,
                port=config.dns_port,
                timeout=config.dns_timeout,
            )
        return cls.detect()

    @property
    def policy(self) -> RecordPolicy:
        return self._policy

    @property
    def name_service(self) -> NameService:
        return self._ns

    def app(self, name: str) -> AppResolver:
        """Create an AppResolver for querying the named app."""
        return AppResolver(name, self)

    def current(self) -> AppResolver:
        """Create an AppResolver for the running app ($FLY_APP_NAME)."""
        return self.app(app_name())

    async def peers_of(self, app: str) -> list[Peer]:
        """Find all running instances of app with their private addresses."""
        return await self.app(app).peers()

    async def apps(self) -> list[str]:
        """Find all apps in the current Fly.io organization."""
        value = await self.txt("_apps")
        return [
            app for app in value.split(",")
            if app and not app.startswith(BUILDER_APP_PREFIX)
        ]

    async def instances(self) -> list[Instance]:
        """Find all running instances across every app in the organization."""
        value = await self.txt("_instances")
        return self.parse_entries(value.split(";"), Instance.parse)

    async def txt(self, name: str) -> str:
        """Perform an arbitrary TXT query on the .internal domain."""
        return await self._ns.txt(f"{name}.{INTERNAL_DOMAIN}")

    def parse_entries(self, entries: Iterable[str], parse: Callable[[str], T]) -> list[T]:
        """Parse each non-empty entry, skipping or raising on malformed ones per policy."""
        results: list[T] = []
        for entry in entries:
            if not entry.strip():
                continue
            try:
                results.append(parse(entry))
            except MalformedRecord:
                if self._policy is RecordPolicy.STRICT:
                    raise
                log.warning("resolver.record_skipped", record=entry)
        return results


class AppResolver:
    """Query the Fly.io internal DNS records under <app>.internal."""

    def __init__(self, app: str, resolver: Resolver) -> None:
        self._app = app
        self._domain = f"{app}.{INTERNAL_DOMAIN}"
        self._resolver = resolver

    @property
    def domain(self) -> str:
        return self._domain

    async def regions(self) -> list[str]:
        """Region codes where this app is deployed."""
        value = await self.txt("regions")
        return [code for code in value.split(",") if valid_region_code(code)]

    async def nodes(self) -> list[Node]:
        """All running instances of this app, with their regions. Repeated IDs are listed once."""
        value = await self.txt("vms")
        nodes = self._resolver.parse_entries(value.split(","), Node.parse)
        return list(dict.fromkeys(nodes))

    async def peers(self) -> list[Peer]:
        """
        All running instances of this app, resolved to private addresses.
        Instances without an AAAA record are left out; a failed AAAA lookup
        fails the whole call.
        """
        nodes = await self.nodes()
        addresses = await asyncio.gather(
            *(self.ip(f"{node.id}.vm") for node in nodes)
        )

        peers = [
            node.into_peer(addrs[0])
            for node, addrs in zip(nodes, addresses)
            if addrs
        ]
        log.debug("resolver.peers", app=self._app, count=len(peers))
        return peers

    async def nearest_peer_addresses(self, n: int) -> list[IPv6Address]:
        """Private addresses of the n instances geographically nearest the caller."""
        return await self.ip(f"top{n}.nearest.of")

    async def ip(self, name: str) -> list[IPv6Address]:
        """Perform an arbitrary AAAA query on the <app>.internal domain."""
        return await self._resolver.name_service.aaaa(f"{name}.{self._domain}")

    async def txt(self, name: str) -> str:
        """Perform an arbitrary TXT query on the <app>.internal domain."""
        return await self._resolver.name_service.txt(f"{name}.{self._domain}")


__all__ = [
    "AppResolver",
    "DnsNameService",
    "NameService",
    "RecordPolicy",
    "Resolver",
    "dns_server_address",
]
