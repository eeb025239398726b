"""Directed-broadcast addresses of the local IPv4 interfaces."""

import ipaddress
import logging
import socket

import psutil

logger = logging.getLogger(__name__)


def broadcast_address(ip: str, netmask: str) -> str:
    """Return ``ip | ~netmask`` for a dotted-quad address and mask."""
    ip_bytes = socket.inet_aton(ip)
    mask_bytes = socket.inet_aton(netmask)
    return socket.inet_ntoa(
        bytes(a | (~m & 0xFF) for a, m in zip(ip_bytes, mask_bytes))
    )


def _is_broadcast_capable(stats) -> bool:
    if stats is None or not stats.isup:
        return False
    # psutil reports an empty flag string on platforms without flag support
    flags = {f for f in getattr(stats, "flags", "").split(",") if f}
    if "loopback" in flags:
        return False
    return not flags or "broadcast" in flags


def interface_broadcast_addrs() -> list[str]:
    """
    Collect the directed-broadcast address of every interface that is up,
    not loopback, broadcast-capable and has an IPv4 address.
    """
    try:
        all_addrs = psutil.net_if_addrs()
        all_stats = psutil.net_if_stats()
    except OSError as e:
        logger.warning(f"Could not enumerate network interfaces: {e}")
        return []

    result: list[str] = []
    for name, addrs in all_addrs.items():
        if not _is_broadcast_capable(all_stats.get(name)):
            continue

        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                if ipaddress.IPv4Address(addr.address).is_loopback:
                    continue
                bcast = broadcast_address(addr.address, addr.netmask)
            except (OSError, ValueError) as e:
                logger.debug(f"Skipping address {addr.address} on {name}: {e}")
                continue
            if bcast not in result:
                result.append(bcast)

    return result
