"""
flytrap
───────
Read the Fly.io runtime environment: the current placement, and the peers of
the running app via internal DNS or the Machines API.

Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from flytrap.tier0_core.logging import get_logger
from flytrap.tier0_core.errors import (
    FlytrapError,
    ConfigurationError,
    ResolverUnavailable,
    LookupFailure,
    MalformedRecord,
    ApiFailure,
    DiscoveryFailure,
)
from flytrap.tier0_core.config import get_config, FlytrapConfig

from flytrap.tier1_runtime.placement import (
    Machine,
    Placement,
    hosted,
    private_address,
    public_address,
)

from flytrap.tier3_platform.peer import Peer, Node, Instance
from flytrap.tier3_platform.resolver import (
    AppResolver,
    RecordPolicy,
    Resolver,
    dns_server_address,
)
from flytrap.tier3_platform.api_client import MachinesClient, derive_private_address
from flytrap.tier3_platform.discovery import PeerDiscovery, get_discovery, peers

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "FlytrapError", "ConfigurationError", "ResolverUnavailable",
    "LookupFailure", "MalformedRecord", "ApiFailure", "DiscoveryFailure",
    # config
    "get_config", "FlytrapConfig",
    # placement
    "Machine", "Placement", "hosted", "private_address", "public_address",
    # peers
    "Peer", "Node", "Instance",
    # dns
    "AppResolver", "RecordPolicy", "Resolver", "dns_server_address",
    # machines api
    "MachinesClient", "derive_private_address",
    # discovery
    "PeerDiscovery", "get_discovery", "peers",
]
