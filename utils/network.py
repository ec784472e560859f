"""Client address helpers."""

import ipaddress
from collections.abc import Iterable, Sequence
from functools import lru_cache

from fastapi import Request

UNKNOWN_CLIENT = "unknown"


def get_client_ip(request: Request, trusted_proxies: Sequence[str] = ()) -> str:
    """
    Return the caller address.

    X-Forwarded-For is only read when the direct peer is one of the trusted
    proxies. Hops are walked from the right and the first address outside the
    trusted networks wins: everything left of it was written by the client.
    """
    peer = request.client.host if request.client else UNKNOWN_CLIENT
    if not trusted_proxies or not ip_in_networks(peer, trusted_proxies):
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if not ip_in_networks(hop, trusted_proxies):
            return hop

    return hops[0] if hops else peer


def normalize_ip_for_key(ip: str) -> str:
    """
    Normalize an address for use in a rate limit key.

    IPv4-mapped IPv6 addresses are unwrapped and plain IPv6 addresses are
    reduced to their /64 prefix, so one host cannot rotate through its own
    subnet to get fresh counters.
    """
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return ip

    if isinstance(address, ipaddress.IPv6Address):
        if address.ipv4_mapped is not None:
            return str(address.ipv4_mapped)
        network = ipaddress.IPv6Network(f"{address}/64", strict=False)
        return str(network.network_address) + "/64"

    return str(address)


@lru_cache(maxsize=32)
def _parse_networks(
    networks: tuple[str, ...],
) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    return tuple(ipaddress.ip_network(network, strict=False) for network in networks)


def ip_in_networks(ip: str, networks: Iterable[str]) -> bool:
    """Check whether an address belongs to any of the given CIDR networks."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    return any(
        address.version == network.version and address in network
        for network in _parse_networks(tuple(networks))
    )
