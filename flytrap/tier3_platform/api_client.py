"""
flytrap.tier3_platform.api_client
──────────────────────────────────
Async client for the Fly.io Machines API. Lists the apps of an organization
and the machines of an app, and turns machines into discovery peers.

Every request is a single round trip with a bearer token: no caching, no
retry. Transport errors, non-success statuses and malformed bodies all
surface as ApiFailure.

Backed by: httpx (async HTTP) + pydantic (response schemas)
Reference: https://fly.io/docs/machines/api/
"""
from __future__ import annotations

import hashlib
from collections.abc import Callable
from enum import Enum
from ipaddress import IPv6Address, IPv6Network
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from flytrap.tier0_core.config import get_config
from flytrap.tier0_core.errors import ApiFailure, ConfigurationError
from flytrap.tier0_core.logging import get_logger
from flytrap.tier1_runtime.placement import app_name, is_private_address, private_address
from flytrap.tier3_platform.peer import Peer

log = get_logger(__name__)

PUBLIC_ORIGIN = "https://api.machines.dev"
PRIVATE_ORIGIN = "http://_api.internal:4280"
USER_AGENT = "flytrap/0.1.0"

DEFAULT_NETWORK = IPv6Network("fdaa::/48")


# ── Response schemas ──────────────────────────────────────────────────────────

class MachineState(str, Enum):
    """The lifecycle state of a Fly.io Machine."""
    CREATED = "created"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REPLACING = "replacing"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"

    @property
    def is_ready(self) -> bool:
        return self is MachineState.STARTED

    @property
    def target(self) -> MachineState | None:
        """If this state is a transition, the state it is heading to."""
        return _TRANSITIONS.get(self)

    @property
    def is_transition(self) -> bool:
        return self.target is not None


_TRANSITIONS = {
    MachineState.STARTING: MachineState.STARTED,
    MachineState.STOPPING: MachineState.STOPPED,
    MachineState.REPLACING: MachineState.STOPPED,
    MachineState.DESTROYING: MachineState.DESTROYED,
}


class HostStatus(str, Enum):
    OK = "ok"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


class CheckStatus(str, Enum):
    PASSING = "passing"
    WARNING = "warning"
    CRITICAL = "critical"


class MachineCheckState(BaseModel):
    """Last-observed state of a service health check on a machine."""
    model_config = ConfigDict(extra="ignore")

    name: str
    status: CheckStatus
    output: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.status is CheckStatus.PASSING


class Machine(BaseModel):
    """A Fly.io Machine as listed by GET /v1/apps/{app}/machines."""
    model_config = ConfigDict(extra="ignore")

    id: str
    region: str
    name: str = ""
    state: MachineState | None = None
    instance_id: str = ""
    private_ip: IPv6Address | None = None
    checks: list[MachineCheckState] = Field(default_factory=list)
    host_status: HostStatus = HostStatus.OK

    @field_validator("state", mode="before")
    @classmethod
    def unknown_state(cls, v: Any) -> Any:
        if isinstance(v, str) and v not in MachineState._value2member_map_:
            return None
        return v

    @property
    def location(self) -> str:
        return self.region

    def is_running(self) -> bool:
        return self.state is not None and self.state.is_ready

    def is_ready(self) -> bool:
        """Running, on a healthy host, with every health check passing."""
        return (
            self.is_running()
            and self.host_status is HostStatus.OK
            and all(check.is_ready for check in self.checks)
        )


class AppEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    machine_count: int = 0
    network_name: str = Field(default="", alias="network")


class OrganizationApps(BaseModel):
    """Response of GET /v1/apps?org_slug=..."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    total: int = Field(alias="total_apps")
    apps: list[AppEntry] = Field(default_factory=list)


_MACHINES = TypeAdapter(list[Machine])


# ── Private address derivation ────────────────────────────────────────────────

def derive_private_address(
    machine_id: str,
    region: str,
    network: IPv6Network = DEFAULT_NETWORK,
) -> IPv6Address:
    """
    Synthesize a stable private address for a machine the API listed without
    one. The host bits come from SHA-256 of "<machine_id>/<region>", so the
    same inputs always give the same address inside network.
    """
    digest = hashlib.sha256(f"{machine_id}/{region}".encode()).digest()
    host_bits = 128 - network.prefixlen
    host = int.from_bytes(digest, "big") & ((1 << host_bits) - 1)
    return IPv6Address(int(network.network_address) | host)


AddressDeriver = Callable[[str, str], IPv6Address]


# ── Client ────────────────────────────────────────────────────────────────────

class MachinesClient:
    """
    Async client for the Fly.io Machines API.

    Usage::

        client = MachinesClient.from_env()
        for machine in await client.machines("my-app"):
            print(machine.name, machine.region, machine.state)
    """

    name = "api"

    def __init__(
        self,
        token: str,
        *,
        origin: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        address_deriver: AddressDeriver = derive_private_address,
        app: str | None = None,
    ) -> None:
        if not token:
            raise ConfigurationError("missing_api_token", "A Machines API token is required.")
        config = get_config()
        self._token = token
        self._origin = (origin or config.api_origin or default_origin()).rstrip("/")
        self._timeout = timeout if timeout is not None else config.api_timeout
        self._transport = transport
        self._derive = address_deriver
        self._app = app

    @classmethod
    def from_env(cls, **kwargs: Any) -> MachinesClient:
        """Build a client authenticated with $FLY_API_TOKEN."""
        token = get_config().api_token
        if not token:
            raise ConfigurationError("missing_api_token", "$FLY_API_TOKEN is not set.")
        return cls(token, **kwargs)

    @property
    def origin(self) -> str:
        return self._origin

    def _build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def apps(self, organization: str) -> OrganizationApps:
        """List the apps under the given organization slug."""
        data = await self._get("/v1/apps", params={"org_slug": organization})
        return self._parse(lambda: OrganizationApps.model_validate(data), "/v1/apps")

    async def machines(self, app: str) -> list[Machine]:
        """List the machines of app."""
        path = f"/v1/apps/{app}/machines"
        data = await self._get(path)
        return self._parse(lambda: _MACHINES.validate_python(data), path)

    async def peers_of(self, app: str) -> list[Peer]:
        """Machines of app as discovery peers."""
        return [self._to_peer(machine) for machine in await self.machines(app)]

    async def peers(self) -> list[Peer]:
        """Machines of the configured app ($FLY_APP_NAME unless given) as peers."""
        return await self.peers_of(self._app or app_name())

    def _to_peer(self, machine: Machine) -> Peer:
        address = machine.private_ip
        if address is None:
            address = self._derive(machine.id, machine.region)
        return Peer(id=machine.id, location=machine.region, private_address=address)

    async def _get(self, path: str, **kwargs: Any) -> Any:
        url = f"{self._origin}/{path.lstrip('/')}"
        log.debug("api.request", method="GET", url=url)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, headers=self._build_headers(), **kwargs)
        except httpx.HTTPError as exc:
            log.warning("api.request_failed", url=url, error=str(exc))
            raise ApiFailure(
                "api_failure",
                "Could not reach the Fly.io Machines API.",
                detail=f"GET {url} failed: {exc}",
                reason="transport",
            ) from exc

        if not response.is_success:
            log.warning("api.error_status", url=url, status=response.status_code)
            raise ApiFailure(
                "api_failure",
                "The Fly.io Machines API rejected the request.",
                detail=f"GET {path} returned {response.status_code}",
                reason="status",
                status=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ApiFailure(
                "api_failure",
                "The Fly.io Machines API returned an unexpected response.",
                detail=f"GET {path} returned a non-JSON body",
                reason="schema",
                status=response.status_code,
                body=response.text,
            ) from exc

    @staticmethod
    def _parse(validate: Callable[[], Any], path: str) -> Any:
        try:
            return validate()
        except ValidationError as exc:
            raise ApiFailure(
                "api_failure",
                "The Fly.io Machines API returned an unexpected response.",
                detail=f"GET {path}: {exc.error_count()} validation error(s)",
                reason="schema",
            ) from exc


def default_origin() -> str:
    """The private API origin when on the Fly.io private network, else the public one."""
    local = private_address()
    if local is not None and is_private_address(local):
        return PRIVATE_ORIGIN
    return PUBLIC_ORIGIN


__all__ = [
    "AppEntry",
    "CheckStatus",
    "HostStatus",
    "Machine",
    "MachineCheckState",
    "MachineState",
    "MachinesClient",
    "OrganizationApps",
    "default_origin",
    "derive_private_address",
]
