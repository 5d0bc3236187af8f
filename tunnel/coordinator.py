"""Tunnel Coordinator: obtains and releases public endpoints for a session."""

import asyncio
from typing import Dict, List, Optional

from common.context import RuntimeContext
from common.exceptions import TunnelCreationError, TunnelError, TunnelTimeoutError
from common.logging_config import get_logger
from common.types import PublicEndpoint, TunnelCloseResult
from tunnel.providers import SshTunnelProvider, TunnelHandle, TunnelProvider
from tunnel.registry import TunnelRegistry
from tunnel.shortener import UrlShortener

logger = get_logger(__name__)


class TunnelCoordinator:
    """
    Single owner of every tunnel handle in the process.

    Creation is bounded by a timeout; closing is idempotent and never raises.
    Each open URL is mirrored in the persisted TunnelRegistry so that a later
    process can clean up after an ungraceful exit.
    """

    def __init__(
        self,
        context: RuntimeContext,
        provider: Optional[TunnelProvider] = None,
        registry: Optional[TunnelRegistry] = None,
        shortener: Optional[UrlShortener] = None
    ):
        """
        Args:
            context: Runtime context (timeouts, registry location)
            provider: Tunnel backend (defaults to SSH reverse forwarding to the relay host)
            registry: Persisted registry (defaults to the context's registry path)
            shortener: URL shortener (defaults to the configured shortener API)
        """
        settings = context.settings
        self.context = context
        self.provider = provider or SshTunnelProvider(
            relay_host=settings.relay_host,
            attempt_timeout=settings.tunnel_attempt_timeout,
        )
        self.registry = registry or TunnelRegistry(context.tunnel_registry_path)
        self.shortener = shortener or UrlShortener(api_url=settings.shortener_url)
        self._handles: Dict[str, TunnelHandle] = {}
        self._lock = asyncio.Lock()

    async def request_tunnel(self, port: int, timeout: Optional[float] = None) -> PublicEndpoint:
        """
        Open a public URL forwarding to localhost:port.

        Leftover tunnels from earlier runs are closed first. Tunnels this
        process still owns are left alone.

        Args:
            port: Local listener port
            timeout: Overall deadline in seconds (defaults to the configured tunnel timeout)

        Returns:
            PublicEndpoint with the tunnel URL and its shortened form

        Raises:
            TunnelTimeoutError: If no URL was obtained before the deadline
            TunnelCreationError: If the provider failed
        """
        timeout = self.context.settings.tunnel_timeout if timeout is None else timeout

        leftovers = await self.close_leftover_tunnels()
        if leftovers.closed or leftovers.failed or leftovers.dropped:
            logger.debug(
                f"Leftover tunnels: {leftovers.closed} closed, {leftovers.failed} failed, {leftovers.dropped} dropped"
            )

        logger.info(f"Requesting tunnel for port {port} via {self.provider.name} (timeout={timeout}s)")
        try:
            handle = await asyncio.wait_for(self.provider.create(port), timeout=timeout)
        except asyncio.TimeoutError:
            raise TunnelTimeoutError(f"Tunnel creation timed out after {timeout:g} seconds")
        except TunnelError:
            raise
        except Exception as e:
            raise TunnelCreationError(f"Tunnel provider failed: {e}") from e

        async with self._lock:
            self._handles[handle.url] = handle
        self.registry.register(handle.url)

        shortened_url = await self.shortener.shorten(handle.url)
        return PublicEndpoint(url=handle.url, shortened_url=shortened_url, provider=handle.provider)

    async def close_tunnel(self, url: str) -> TunnelCloseResult:
        """
        Close one tunnel by URL.

        Returns:
            closed=1 if this process owned the tunnel, zero counts otherwise
        """
        async with self._lock:
            handle = self._handles.pop(url, None)

        result = TunnelCloseResult()
        if handle is not None:
            try:
                await self.provider.close(handle)
                result.closed += 1
                logger.info(f"Tunnel closed: {url}")
            except Exception as e:
                result.failed += 1
                result.errors.append(f"Error closing {url}: {e}")
                logger.warning(f"Error closing tunnel {url}: {e}")

        self.registry.unregister(url)
        return result

    async def close_leftover_tunnels(self) -> TunnelCloseResult:
        """
        Close registry entries that no live handle in this process owns.

        Returns:
            Counts from the provider's orphan cleanup
        """
        async with self._lock:
            owned = set(self._handles)
        leftovers = [url for url in self.registry.load() if url not in owned]
        if not leftovers:
            return TunnelCloseResult()

        logger.debug(f"Cleaning up {len(leftovers)} leftover tunnel(s): {leftovers}")
        result = await self.provider.close_orphans(leftovers)
        for url in leftovers:
            self.registry.unregister(url)
        return result

    async def close_all_tunnels(self) -> TunnelCloseResult:
        """
        Close every tunnel owned by this process and every tunnel left in the registry.

        Returns:
            Aggregated counts; zero counts when nothing was open
        """
        async with self._lock:
            owned = list(self._handles.keys())

        result = TunnelCloseResult()
        for url in owned:
            result = result.merge(await self.close_tunnel(url))

        orphans = self.registry.clear()
        if orphans:
            logger.debug(f"Cleaning up {len(orphans)} tunnel(s) from registry: {orphans}")
            result = result.merge(await self.provider.close_orphans(orphans))

        return result

    def list_tunnels(self) -> List[str]:
        """Return URLs currently recorded in the registry."""
        return self.registry.load()

    @property
    def open_tunnels(self) -> List[str]:
        return list(self._handles.keys())
