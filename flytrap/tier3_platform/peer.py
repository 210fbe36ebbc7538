"""
flytrap.tier3_platform.peer
────────────────────────────
Records describing instances of a Fly.io app, as returned by peer discovery.

All records compare and hash by instance ID only: two values built from
separate lookups of the same instance are equal even if their other fields
were observed differently.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from ipaddress import IPv6Address

from flytrap.tier0_core.errors import MalformedRecord

_REGION_CODE = re.compile(r"^[a-z]{3}$")


def valid_region_code(code: str) -> bool:
    """Check that code passes for a Fly.io region code: /^[a-z]{3}$/."""
    return bool(_REGION_CODE.match(code))


# ── Domain model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Peer:
    """A running instance of an app whose private address is known."""
    id: str
    location: str = field(compare=False)
    private_address: IPv6Address = field(compare=False)


@dataclass(frozen=True)
class Node:
    """
    An instance ID and region, as listed by the vms.<app>.internal TXT record.

        >>> Node.parse("148e21dad76789 sea")
        Node(id='148e21dad76789', location='sea')
    """
    id: str
    location: str = field(compare=False)

    @classmethod
    def parse(cls, text: str) -> Node:
        id_, sep, region = text.strip().partition(" ")
        if not sep or not id_ or not valid_region_code(region):
            raise MalformedRecord(record=text)
        return cls(id=id_, location=region)

    def into_peer(self, private_address: IPv6Address) -> Peer:
        return Peer(id=self.id, location=self.location, private_address=private_address)


@dataclass(frozen=True)
class Instance:
    """
    One entry of the organization-wide _instances.internal TXT record:

        instance=148e21dad76789,app=flytrap,ip=fdaa:2:224b:a7b:2dbb:3e15:aaea:2,region=sea
    """
    id: str
    app: str = field(compare=False)
    location: str = field(compare=False)
    private_address: IPv6Address = field(compare=False)

    @classmethod
    def parse(cls, text: str) -> Instance:
        fields: dict[str, str] = {}
        for part in text.strip().split(","):
            key, sep, value = part.partition("=")
            if sep and key in ("instance", "app", "ip", "region"):
                fields[key] = value

        try:
            id_ = fields["instance"]
            app = fields["app"]
            ip = IPv6Address(fields["ip"])
            region = fields["region"]
        except (KeyError, ValueError) as exc:
            raise MalformedRecord(record=text) from exc
        if not valid_region_code(region):
            raise MalformedRecord(record=text)

        return cls(id=id_, app=app, location=region, private_address=ip)

    @property
    def peer(self) -> Peer:
        return Peer(id=self.id, location=self.location, private_address=self.private_address)


__all__ = ["Peer", "Node", "Instance", "valid_region_code"]
