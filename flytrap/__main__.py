"""flytrap command line — inspect the Fly.io runtime environment.

  python -m flytrap placement          current app, region, machine and addresses
  python -m flytrap peers [--backend]  running instances of the app (* = this one)
  python -m flytrap machines APP       Machines API listing with state
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from flytrap.tier0_core.config import get_config
from flytrap.tier0_core.errors import FlytrapError
from flytrap.tier0_core.logging import get_logger
from flytrap.tier1_runtime.placement import Placement, app_name
from flytrap.tier3_platform.api_client import MachinesClient
from flytrap.tier3_platform.discovery import DiscoveryStrategy, PeerDiscovery
from flytrap.tier3_platform.resolver import Resolver

log = get_logger("flytrap.cli")


def _placement(args: argparse.Namespace) -> None:
    runtime = Placement.current()
    print(f"Fly.io app: {runtime.app}")
    print(f"    region: {runtime.location}")
    if runtime.machine is not None:
        machine = runtime.machine
        memory = f" ({machine.memory} MB)" if machine.memory else ""
        image = f" running {machine.image}" if machine.image else ""
        print(f"   machine: {machine.id}{memory}{image}")
    if runtime.public_ip is not None:
        print(f" public IP: {runtime.public_ip}")
    print(f"private IP: {runtime.private_ip}")


async def _peers(args: argparse.Namespace) -> None:
    strategy: DiscoveryStrategy
    backend = args.backend or get_config().discovery_backend
    if backend == "api":
        strategy = MachinesClient.from_env()
    else:
        strategy = Resolver.from_config()

    app = args.app or app_name()
    try:
        self_id = Placement.current().instance_id
    except FlytrapError:
        self_id = ""

    discovery = PeerDiscovery(strategy, app=app, self_id=self_id)
    for peer in await discovery.peers():
        marker = "*" if discovery.is_self(peer) else " "
        print(f"{marker} {peer.id:<16} {peer.location:<4} {peer.private_address}")


async def _machines(args: argparse.Namespace) -> None:
    client = MachinesClient.from_env()
    for m in await client.machines(args.app):
        state = m.state.value if m.state is not None else "unknown"
        up = " (up)" if m.is_ready() else ""
        print(f"  {m.name:<24} in {m.region}: {state}{up}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="flytrap", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("placement", help="show the current placement")

    peers = sub.add_parser("peers", help="list running instances of the app")
    peers.add_argument("--backend", choices=("dns", "api"),
                       help="discovery strategy (default: $FLYTRAP_DISCOVERY_BACKEND)")
    peers.add_argument("--app", help="app name (default: $FLY_APP_NAME)")

    machines = sub.add_parser("machines", help="list machines via the Machines API")
    machines.add_argument("app")

    args = parser.parse_args(argv)

    try:
        if args.command == "placement":
            _placement(args)
        elif args.command == "peers":
            asyncio.run(_peers(args))
        elif args.command == "machines":
            asyncio.run(_machines(args))
    except FlytrapError as exc:
        log.error("cli.failed", command=args.command, error=exc.code)
        print(f"flytrap: {exc.detail}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
