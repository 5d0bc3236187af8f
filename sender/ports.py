"""Free port selection for the sender's listener and status server."""

import socket
from typing import Optional, Tuple

from common.exceptions import PortExhaustedError
from common.logging_config import get_logger

logger = get_logger(__name__)

MAX_PORT = 65535


def is_port_free(port: int, host: str = '0.0.0.0') -> bool:
    """
    Check whether a TCP port can currently be bound.

    Args:
        port: Port number to check
        host: Interface to check on

    Returns:
        True if bind succeeded
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(host: str = '0.0.0.0', preferred: Optional[int] = None, exclude: Tuple[int, ...] = ()) -> int:
    """
    Find a bindable port.

    Tries the preferred port and up to 100 ports after it, then falls back
    to an OS-assigned ephemeral port.

    Args:
        host: Interface to check on
        preferred: Port to try first
        exclude: Ports that must not be returned

    Returns:
        A free port number

    Raises:
        PortExhaustedError: If no free port could be found
    """
    if preferred:
        for candidate in range(preferred, min(preferred + 100, MAX_PORT + 1)):
            if candidate not in exclude and is_port_free(candidate, host):
                return candidate

    for _ in range(20):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, 0))
            except OSError as e:
                raise PortExhaustedError(f"Could not bind any port on {host}: {e}")
            candidate = sock.getsockname()[1]
        if candidate not in exclude:
            return candidate

    raise PortExhaustedError(f"No free port available on {host}")


def allocate_port_pair(host: str = '0.0.0.0', preferred_http_port: Optional[int] = None) -> Tuple[int, int]:
    """
    Pick two distinct free ports: one for the data listener, one for the status page.

    Both ports are checked for availability before being returned.

    Args:
        host: Interface to check on
        preferred_http_port: Port to try first for the status page

    Returns:
        (listener_port, http_port)
    """
    listener_port = find_free_port(host)
    http_port = find_free_port(
        host,
        preferred=preferred_http_port or listener_port + 1,
        exclude=(listener_port,),
    )
    logger.debug(f"Allocated ports: listener={listener_port}, http={http_port}")
    return listener_port, http_port
