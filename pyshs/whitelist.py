"""Client address allow-list and trusted proxy networks."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Union

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_networks(spec: str) -> list[Network]:
    networks: list[Network] = []
    for raw in spec.split(","):
        cidr = raw.strip()
        if not cidr:
            continue
        if "/" not in cidr:
            cidr += "/128" if ":" in cidr else "/32"
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError as exc:
            raise ValueError(f"invalid CIDR notation '{cidr}': {exc}") from exc
    return networks


def _parse_ip(text: str) -> Address | None:
    if "%" in text:
        return None
    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


@dataclass
class Whitelist:
    """Networks allowed to connect and proxies whose forwarding headers are trusted."""

    networks: list[Network] = field(default_factory=list)
    trusted_proxies: list[Network] = field(default_factory=list)
    enabled: bool = False

    def is_allowed(self, ip: str) -> bool:
        """Whether the address may connect; everything is allowed when disabled."""
        if not self.enabled:
            return True
        address = _parse_ip(ip)
        if address is None:
            return False
        return any(address in network for network in self.networks)

    def is_trusted_proxy(self, ip: str) -> bool:
        """Whether the address belongs to a trusted proxy network."""
        address = _parse_ip(ip)
        if address is None:
            return False
        return any(address in network for network in self.trusted_proxies)


def new_ip_whitelist(cidrs: str, enabled: bool, trusted_proxies: str) -> Whitelist:
    """Build a whitelist from comma separated networks or single addresses.

    An empty network list gives a disabled whitelist without trusted proxies.
    Raises ValueError on an entry that is not a valid network.
    """
    if cidrs == "":
        return Whitelist()
    return Whitelist(
        networks=_parse_networks(cidrs),
        trusted_proxies=_parse_networks(trusted_proxies),
        enabled=enabled,
    )