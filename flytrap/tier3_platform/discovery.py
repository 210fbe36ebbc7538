"""
flytrap.tier3_platform.discovery
─────────────────────────────────
Peer discovery: list the running instances of the current app through one of
two interchangeable strategies, and tell which of them is this process.

  - dns  (Resolver)        — vms.<app>.internal TXT + per-instance AAAA
  - api  (MachinesClient)  — GET /v1/apps/<app>/machines

The strategy is chosen once at construction; there is no fallback from one
to the other. Adapter errors surface as DiscoveryFailure.

Select via: FLYTRAP_DISCOVERY_BACKEND=dns|api
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from flytrap.tier0_core.config import get_config
from flytrap.tier0_core.errors import DiscoveryFailure, FlytrapError
from flytrap.tier0_core.logging import get_logger
from flytrap.tier1_runtime.placement import Placement
from flytrap.tier3_platform.peer import Peer

log = get_logger(__name__)


@runtime_checkable
class DiscoveryStrategy(Protocol):
    name: str

    async def peers_of(self, app: str) -> list[Peer]: ...


class PeerDiscovery:
    """
    Uniform peers() over whichever strategy is configured.

    Usage::

        discovery = PeerDiscovery.from_placement(Resolver.detect(), Placement.current())
        for peer in await discovery.peers():
            marker = "*" if discovery.is_self(peer) else " "
            print(marker, peer.id, peer.location, peer.private_address)
    """

    def __init__(self, strategy: DiscoveryStrategy, *, app: str, self_id: str) -> None:
        self._strategy = strategy
        self._app = app
        self._self_id = self_id

    @classmethod
    def from_placement(cls, strategy: DiscoveryStrategy, placement: Placement) -> PeerDiscovery:
        return cls(strategy, app=placement.app, self_id=placement.instance_id)

    @property
    def strategy(self) -> DiscoveryStrategy:
        return self._strategy

    @property
    def app(self) -> str:
        return self._app

    async def peers(self) -> list[Peer]:
        """All running instances of the app, this one included."""
        try:
            peers = await self._strategy.peers_of(self._app)
        except FlytrapError as exc:
            log.warning(
                "discovery.failed",
                app=self._app,
                strategy=self._strategy.name,
                error=exc.code,
            )
            raise DiscoveryFailure(
                "discovery_failure",
                f"Could not list the instances of {self._app}.",
                detail=f"{self._strategy.name} discovery failed: {exc.detail}",
                strategy=self._strategy.name,
                cause=exc,
            ) from exc

        log.debug("discovery.peers", app=self._app, strategy=self._strategy.name, count=len(peers))
        return peers

    async def others(self) -> list[Peer]:
        """All running instances of the app except this one."""
        return [peer for peer in await self.peers() if not self.is_self(peer)]

    def is_self(self, peer: Peer) -> bool:
        return bool(self._self_id) and peer.id == self._self_id


# ── Singleton registry ────────────────────────────────────────────────────────

_discovery: PeerDiscovery | None = None


def _build_strategy() -> DiscoveryStrategy:
    # get_config() has already rejected any backend other than dns and api.
    if get_config().discovery_backend == "api":
        from flytrap.tier3_platform.api_client import MachinesClient
        return MachinesClient.from_env()
    from flytrap.tier3_platform.resolver import Resolver
    return Resolver.from_config()


def get_discovery() -> PeerDiscovery:
    """Return the process-wide PeerDiscovery for the current placement."""
    global _discovery
    if _discovery is None:
        _discovery = PeerDiscovery.from_placement(_build_strategy(), Placement.current())
    return _discovery


def _reset_discovery() -> None:
    global _discovery
    _discovery = None


async def peers() -> list[Peer]:
    """Peers of the current app via the configured strategy."""
    return await get_discovery().peers()


__all__ = [
    "DiscoveryStrategy",
    "PeerDiscovery",
    "get_discovery",
    "peers",
]
