"""Resolve what the user typed into the WebSocket URL of a sender."""

from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import httpx

from common.constants import SHORTENER_TIMEOUT_SECONDS, WEBSOCKET_PATH
from common.exceptions import InputError
from common.logging_config import get_logger

logger = get_logger(__name__)

WS_SCHEMES = {'http': 'ws', 'https': 'wss', 'ws': 'ws', 'wss': 'wss'}


def build_ws_url(host: str, port: int) -> str:
    """
    WebSocket URL for a sender on the local network.

    Args:
        host: IP address or host name (IPv6 literals are bracketed)
        port: Sender's listener port

    Raises:
        InputError: If the port is out of range
    """
    if not 0 < port < 65536:
        raise InputError(f"Invalid port: {port}", remediation="Use the port shown by the sender.")
    host = host.strip()
    if ':' in host and not host.startswith('['):
        host = f"[{host}]"
    return f"ws://{host}:{port}{WEBSOCKET_PATH}"


def to_ws_url(url: str) -> str:
    """
    Convert an http(s) share link into the matching ws(s) URL.

    Raises:
        InputError: If the URL has no host or an unsupported scheme
    """
    parts = urlsplit(url)
    scheme = WS_SCHEMES.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        raise InputError(
            f"Invalid URL format: {url}",
            remediation="Provide a valid http:// or https:// URL.",
        )
    return urlunsplit((scheme, parts.netloc, parts.path or WEBSOCKET_PATH, parts.query, ''))


async def resolve_share_url(
    url: str,
    timeout: float = SHORTENER_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> str:
    """
    Follow redirects of a (possibly shortened) share link and return the sender's ws(s) URL.

    If the link cannot be fetched it is used as given.

    Args:
        url: Share link as printed by the sender
        timeout: HTTP timeout in seconds
        transport: Optional httpx transport (tests inject a MockTransport)

    Returns:
        ws:// or wss:// URL of the sender's listener
    """
    url = url.strip()
    if '://' not in url:
        url = f"https://{url}"

    if urlsplit(url).scheme.lower() in ('ws', 'wss'):
        return to_ws_url(url)

    final_url = url
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            response = await client.get(url)
            final_url = str(response.url)
    except httpx.HTTPError as e:
        logger.debug(f"Could not resolve {url}, using it as given: {e}")

    if final_url != url:
        logger.info(f"Resolved {url} -> {final_url}")
    return to_ws_url(final_url)
