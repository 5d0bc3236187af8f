"""Tunnel providers: the backends that actually open public endpoints."""

import asyncio
import re
import secrets
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urlparse

from common.constants import DEFAULT_RELAY_HOST, TUNNEL_ATTEMPT_TIMEOUT_SECONDS
from common.exceptions import TunnelCreationError, TunnelTimeoutError
from common.logging_config import get_logger
from common.types import TunnelCloseResult

logger = get_logger(__name__)


@dataclass
class TunnelHandle:
    """
    An open tunnel owned by this process.
    """
    url: str
    provider: str
    port: int
    process: Optional[asyncio.subprocess.Process] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    readers: List[asyncio.Task] = field(default_factory=list)


class TunnelProvider(ABC):
    """
    Interface the coordinator uses to open and close tunnels.
    """

    name: str = "base"

    @abstractmethod
    async def create(self, port: int) -> TunnelHandle:
        """
        Open a public endpoint forwarding to localhost:port.

        Raises:
            TunnelCreationError: If the backend refused or failed
            TunnelTimeoutError: If the backend did not answer in time
        """

    @abstractmethod
    async def close(self, handle: TunnelHandle) -> None:
        """Close a tunnel opened by this provider. Closing twice is a no-op."""

    async def close_orphans(self, urls: List[str]) -> TunnelCloseResult:
        """
        Close tunnels recorded by a previous process.

        The base implementation cannot reach another process, so every URL
        is only dropped from the registry.

        Args:
            urls: URLs found in the persisted registry

        Returns:
            Counts of URLs cleaned up
        """
        return TunnelCloseResult(dropped=len(urls))


class SshTunnelProvider(TunnelProvider):
    """
    Reverse SSH forward to a public relay host (ssh -R <sub>:80:localhost:<port> relay).

    The relay prints the public URL on stdout or stderr once the forward is up.
    """

    name = "ssh"

    def __init__(
        self,
        relay_host: str = DEFAULT_RELAY_HOST,
        attempt_timeout: float = TUNNEL_ATTEMPT_TIMEOUT_SECONDS,
        ssh_binary: str = "ssh"
    ):
        """
        Args:
            relay_host: Public SSH relay (e.g., 'serveo.net')
            attempt_timeout: Seconds to wait for the URL on a single attempt
            ssh_binary: ssh executable name or path
        """
        self.relay_host = relay_host
        self.attempt_timeout = attempt_timeout
        self.ssh_binary = ssh_binary
        self._url_pattern = re.compile(
            r'https?://[a-zA-Z0-9-]+\.' + re.escape(relay_host)
        )

    def build_command(self, port: int, subdomain: Optional[str] = None) -> List[str]:
        """
        Build the ssh argument list.

        Args:
            port: Local port to expose
            subdomain: Requested subdomain, or None to let the relay choose

        Returns:
            argv list
        """
        forward = f"{subdomain}:80:localhost:{port}" if subdomain else f"80:localhost:{port}"
        return [
            self.ssh_binary,
            '-oStrictHostKeyChecking=accept-new',
            '-oServerAliveInterval=30',
            '-oExitOnForwardFailure=yes',
            f'-R{forward}',
            self.relay_host,
        ]

    async def create(self, port: int) -> TunnelHandle:
        subdomain = f"zap-{secrets.token_hex(3)}"
        try:
            return await self._create_once(port, subdomain)
        except TunnelCreationError as e:
            logger.debug(f"Tunnel with subdomain {subdomain} failed: {e}; retrying without subdomain")
        return await self._create_once(port, None)

    async def _create_once(self, port: int, subdomain: Optional[str]) -> TunnelHandle:
        args = self.build_command(port, subdomain)
        logger.debug(f"Running: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TunnelCreationError(f"Could not start {self.ssh_binary}: {e}")

        output: List[str] = []
        found: asyncio.Future = asyncio.get_running_loop().create_future()

        async def scan(stream: asyncio.StreamReader) -> None:
            async for raw in stream:
                line = raw.decode('utf-8', errors='replace').strip()
                if not line:
                    continue
                logger.debug(f"ssh: {line}")
                output.append(line)
                match = self._url_pattern.search(line)
                if match and not found.done():
                    found.set_result(match.group(0))

        readers = [
            asyncio.create_task(scan(process.stdout)),
            asyncio.create_task(scan(process.stderr)),
        ]
        exit_waiter = asyncio.create_task(process.wait())

        try:
            await asyncio.wait_for(
                asyncio.wait({found, exit_waiter}, return_when=asyncio.FIRST_COMPLETED),
                timeout=self.attempt_timeout,
            )
        except asyncio.TimeoutError:
            await self._terminate(process, readers)
            raise TunnelTimeoutError(
                f"Tunnel creation timed out after {self.attempt_timeout:.0f} seconds"
            )
        except asyncio.CancelledError:
            await self._terminate(process, readers)
            raise
        finally:
            exit_waiter.cancel()

        if found.done():
            url = found.result()
            logger.info(f"Tunnel established: {url} -> localhost:{port}")
            return TunnelHandle(url=url, provider=self.name, port=port, process=process, readers=readers)

        await asyncio.gather(*readers, return_exceptions=True)
        tail = ' | '.join(output[-5:]) or 'no output'
        raise TunnelCreationError(f"ssh exited with code {process.returncode}: {tail}")

    async def close(self, handle: TunnelHandle) -> None:
        if handle.process is None:
            return
        await self._terminate(handle.process, handle.readers)
        handle.process = None
        handle.readers = []
        logger.debug(f"Closed ssh process for {handle.url}")

    async def close_orphans(self, urls: List[str]) -> TunnelCloseResult:
        """
        Kill ssh processes left behind for the given URLs.

        Tunnels with a requested subdomain are matched by their forward
        argument; relay-chosen URLs cannot be matched and are only dropped
        from the registry.
        """
        result = TunnelCloseResult()
        for url in urls:
            subdomain = self._subdomain_of(url)
            if subdomain is None or sys.platform == 'win32':
                logger.debug(f"No ssh process can be matched for {url}; dropping it from the registry")
                result.dropped += 1
                continue
            try:
                killer = await asyncio.create_subprocess_exec(
                    'pkill', '-f', f'-R{subdomain}:80:localhost:',
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                await asyncio.wait_for(killer.wait(), timeout=5)
                # pkill exits 1 when nothing matched: the process is already gone
                result.closed += 1
            except (OSError, asyncio.TimeoutError) as e:
                result.failed += 1
                result.errors.append(f"Error closing {url}: {e}")
        return result

    def _subdomain_of(self, url: str) -> Optional[str]:
        host = urlparse(url).hostname or ''
        if not host.endswith('.' + self.relay_host):
            return None
        label = host[: -len(self.relay_host) - 1]
        return label if label.startswith('zap-') else None

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process, readers: List[asyncio.Task]) -> None:
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=3)
            except asyncio.TimeoutError:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        for reader in readers:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)
