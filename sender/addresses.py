"""Local IPv4 address discovery for advertising connection info."""

import socket
from typing import List

from common.logging_config import get_logger

logger = get_logger(__name__)


def rank_ip_address(ip: str) -> int:
    """
    Rank an address by how likely it is to be the machine's main LAN address.

    Lower is better. Virtual adapter ranges are pushed back.
    """
    if ip.startswith('192.168.56.'):
        return 10  # VirtualBox host-only
    if ip.startswith('172.16.') or ip.startswith('172.17.'):
        return 5  # Docker / VM bridges
    if ip.startswith('10.'):
        return 3
    if ip.startswith(('192.168.0.', '192.168.1.', '192.168.2.', '192.168.100.')):
        return 0
    return 2


def _route_address() -> str:
    """Address of the interface holding the default route (no packets are sent)."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect(('10.254.254.254', 1))
        return sock.getsockname()[0]


def discover_local_ips() -> List[str]:
    """
    Discover non-loopback IPv4 addresses, best candidate first.

    Returns:
        Sorted list of addresses; ['127.0.0.1'] if nothing else was found
    """
    found = set()

    try:
        for family, socktype, proto, canonname, sockaddr in socket.getaddrinfo(
            socket.gethostname(), None, socket.AF_INET, socket.SOCK_STREAM
        ):
            found.add(sockaddr[0])
    except socket.gaierror as e:
        logger.debug(f"Hostname resolution failed: {e}")

    try:
        found.add(_route_address())
    except OSError as e:
        logger.debug(f"Default route lookup failed: {e}")

    addresses = sorted(
        (ip for ip in found if not ip.startswith('127.')),
        key=lambda ip: (rank_ip_address(ip), ip),
    )
    return addresses or ['127.0.0.1']
