"""
Transfer Session Manager: owns the lifecycle of every sharing session.

A session starts with a validated file, two free ports, a bound listener
and status page, an armed inactivity timer and (optionally) a public tunnel.
All teardown goes through one idempotent path.
"""

import asyncio
import re
import secrets
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from aiohttp import web

from common.constants import GENERATED_PASSWORD_LENGTH
from common.context import RuntimeContext
from common.exceptions import (
    DirectoryNotAllowedError,
    PathInvalidError,
    SharedFileNotFoundError,
    TunnelError,
    ZapShareError,
)
from common.logging_config import get_logger
from common.types import ClientConnection, TransferSession
from sender.addresses import discover_local_ips
from sender.connection import SenderConnection
from sender.listener import TransportListener
from sender.ports import allocate_port_pair
from sender.session_store import SessionStore
from sender.state_machine import TransferCompleted
from sender.status_server import StatusServer, create_status_app
from tunnel.coordinator import TunnelCoordinator

logger = get_logger(__name__)

# E:\dir\"E:\dir\file.txt" as produced by some Windows shell integrations
DUPLICATED_WINDOWS_PATH = re.compile(r'^[A-Z]:\\.*?\\?"([A-Z]:\\[^"]*)"?$', re.IGNORECASE)

TransferObserver = Callable[[TransferSession, TransferCompleted, ClientConnection], None]
ConnectionObserver = Callable[[TransferSession, int], None]


@dataclass(frozen=True)
class SendOptions:
    """
    Options for starting a session.

    Attributes:
        password: Password receivers must present (None for open access)
        secure: Generate a random password when none is given
        tunnel: Try to open a public tunnel; failure falls back to local-only
        force_tunnel: Tunnel failure is fatal and tears the session down
        bind_host: Interface for the listener and the status page
        status_page: Serve the HTTP status/download page
        preferred_http_port: First port to try for the status page
    """
    password: Optional[str] = None
    secure: bool = False
    tunnel: bool = False
    force_tunnel: bool = False
    bind_host: str = '0.0.0.0'
    status_page: bool = True
    preferred_http_port: Optional[int] = None


@dataclass
class _ActiveSession:
    session: TransferSession
    listener: Optional[TransportListener] = None
    status_server: Optional[StatusServer] = None
    local_ips: List[str] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None
    tunnel_error: Optional[TunnelError] = None
    shutdown_task: Optional[asyncio.Task] = None
    shutdown_reason: Optional[str] = None
    closed: asyncio.Event = field(default_factory=asyncio.Event)


def normalize_share_path(raw: Union[str, Path], cwd: Optional[Path] = None) -> Path:
    """
    Turn user input into an absolute path.

    Strips surrounding quotes, repairs a duplicated Windows drive path and
    resolves relative paths against cwd.

    Raises:
        PathInvalidError: If the input is empty or cannot be resolved
    """
    text = str(raw).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        text = text[1:-1]

    match = DUPLICATED_WINDOWS_PATH.match(text)
    if match:
        logger.debug(f"Repaired duplicated path {text!r} -> {match.group(1)!r}")
        text = match.group(1)

    if not text:
        raise PathInvalidError("No file path given")
    if '\x00' in text:
        raise PathInvalidError(f"Path contains a NUL character: {text!r}")

    path = Path(text).expanduser()
    if not path.is_absolute():
        path = (cwd or Path.cwd()) / path
    try:
        return path.resolve()
    except (OSError, RuntimeError) as e:
        raise PathInvalidError(f"Cannot resolve path {text}: {e}")


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    """Random password of uppercase letters and digits."""
    alphabet = string.ascii_uppercase + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


class TransferSessionManager:
    """
    Starts, tracks and tears down sharing sessions.

    Every mutation happens on the event loop that called start(). Each
    session gets its own listener, status page, inactivity timer and
    (optionally) tunnel.
    """

    def __init__(
        self,
        context: RuntimeContext,
        coordinator: Optional[TunnelCoordinator] = None,
        store: Optional[SessionStore] = None
    ):
        """
        Args:
            context: Runtime context (timings, state directory)
            coordinator: Tunnel coordinator (created from the context when omitted)
            store: Session store (a fresh one when omitted)
        """
        self.context = context
        self.settings = context.settings
        self.coordinator = coordinator or TunnelCoordinator(context)
        self.store = store or SessionStore()
        self._sessions: Dict[str, _ActiveSession] = {}
        self._ended: Dict[str, str] = {}
        self._transfer_observers: List[TransferObserver] = []
        self._connection_observers: List[ConnectionObserver] = []

    def add_transfer_observer(self, callback: TransferObserver) -> None:
        """Called after every acknowledged transfer."""
        self._transfer_observers.append(callback)

    def add_connection_observer(self, callback: ConnectionObserver) -> None:
        """Called with the new connection count whenever a client connects or leaves."""
        self._connection_observers.append(callback)

    async def start(self, file_path: Union[str, Path], options: Optional[SendOptions] = None) -> TransferSession:
        """
        Validate the file and open everything needed to share it.

        Args:
            file_path: Path to the file to share (quotes and relative paths accepted)
            options: Password, tunnel and binding options

        Returns:
            The started session

        Raises:
            SharedFileNotFoundError: If the file does not exist
            DirectoryNotAllowedError: If the path is a directory
            PathInvalidError: If the path cannot be used
            ListenerBindError: If a port cannot be bound
            TunnelError: If force_tunnel is set and no tunnel could be opened
        """
        options = options or SendOptions()
        path = normalize_share_path(file_path)

        if not path.exists():
            raise SharedFileNotFoundError(f"File not found: {path}")
        if path.is_dir():
            raise DirectoryNotAllowedError(f"Cannot share a directory: {path}")
        if not path.is_file():
            raise PathInvalidError(f"Not a regular file: {path}")
        try:
            file_size = path.stat().st_size
        except OSError as e:
            raise PathInvalidError(f"Cannot read {path}: {e}")

        password = options.password
        if password is None and options.secure:
            password = generate_password()

        listener_port, http_port = allocate_port_pair(options.bind_host, options.preferred_http_port)
        session = TransferSession(
            file_path=path,
            file_name=path.name,
            file_size=file_size,
            listener_port=listener_port,
            http_port=http_port,
            password=password,
        )
        active = _ActiveSession(session=session)
        self._sessions[session.session_id] = active

        logger.info(
            f"Starting session {session.session_id} for {session.file_name} "
            f"({file_size} bytes, password={'yes' if password else 'no'})"
        )

        try:
            await self._open_local_endpoints(active, options)
        except ZapShareError:
            await self.shutdown(session.session_id, reason="startup failed")
            raise

        self.store.add(session)
        self._arm_timer(active)

        if options.tunnel or options.force_tunnel:
            await self._open_tunnel(active, options.force_tunnel)

        return session

    async def _open_local_endpoints(self, active: _ActiveSession, options: SendOptions) -> None:
        session = active.session
        session_id = session.session_id

        def connection_factory(ws: web.WebSocketResponse, remote_address: str) -> SenderConnection:
            return SenderConnection(
                ws,
                session,
                self.settings,
                remote_address=remote_address,
                on_transfer_complete=lambda effect, conn: self.on_transfer_complete(session_id, effect, conn),
                on_reset_timer=lambda: self.reset_inactivity_timer(session_id),
            )

        active.listener = TransportListener(
            connection_factory,
            host=options.bind_host,
            port=session.listener_port,
            keepalive_interval=self.settings.keepalive_interval,
            close_timeout=self.settings.listener_close_timeout,
        )
        active.listener.add_count_observer(lambda count: self._notify_connections(session, count))
        session.listener_port = await active.listener.start()

        if options.status_page:
            app = create_status_app(session, lambda: self.share_info(session_id))
            active.status_server = StatusServer(app, options.bind_host, session.http_port)
            await active.status_server.start()

        active.local_ips = discover_local_ips()

    async def _open_tunnel(self, active: _ActiveSession, force: bool) -> None:
        session = active.session
        try:
            endpoint = await self.coordinator.request_tunnel(
                session.listener_port, timeout=self.settings.tunnel_timeout
            )
        except TunnelError as e:
            if force:
                logger.error(f"Tunnel required but unavailable: {e}")
                await self.shutdown(session.session_id, reason="tunnel failed")
                raise
            active.tunnel_error = e
            logger.warning(f"Global tunnel unavailable, sharing on the local network only: {e}")
            return

        session.set_public_endpoint(endpoint)
        logger.info(f"Session {session.session_id} reachable at {endpoint.url}")

    def _arm_timer(self, active: _ActiveSession) -> None:
        if active.timer is not None:
            active.timer.cancel()
        active.session.touch(self.settings.inactivity_timeout)
        loop = asyncio.get_running_loop()
        active.timer = loop.call_later(
            self.settings.inactivity_timeout, self._on_inactivity, active.session.session_id
        )

    def _on_inactivity(self, session_id: str) -> None:
        active = self._sessions.get(session_id)
        if active is None:
            return
        active.timer = None
        logger.info(
            f"Session {session_id} inactive for {self.settings.inactivity_timeout:g} seconds, shutting down"
        )
        self._begin_shutdown(active, "inactivity timeout")

    def reset_inactivity_timer(self, session_id: str) -> None:
        """Push the session's expiry out by the full inactivity timeout."""
        active = self._sessions.get(session_id)
        if active is None or active.shutdown_task is not None:
            return
        self._arm_timer(active)
        logger.debug(f"Inactivity timer for {session_id} reset, expires at {active.session.expires_at}")

    def on_transfer_complete(self, session_id: str, effect: TransferCompleted, connection: ClientConnection) -> None:
        """Record a successful, acknowledged transfer and notify observers."""
        active = self._sessions.get(session_id)
        if active is None:
            return
        session = active.session
        session.transfers_completed += 1
        logger.info(
            f"Transfer #{session.transfers_completed} of {session.file_name} to "
            f"{effect.client_name} complete (saved as {effect.save_path})"
        )
        for callback in self._transfer_observers:
            try:
                callback(session, effect, connection)
            except Exception as e:
                logger.error(f"Transfer observer failed: {e}", exc_info=True)

    def _notify_connections(self, session: TransferSession, count: int) -> None:
        for callback in self._connection_observers:
            try:
                callback(session, count)
            except Exception as e:
                logger.error(f"Connection observer failed: {e}", exc_info=True)

    def share_info(self, session_id: str) -> Dict:
        """
        Connection details for presentation.

        Returns:
            Dict with local_urls, receive_command, public_url, global_command and connections
        """
        active = self._sessions.get(session_id)
        if active is None:
            return {}
        session = active.session
        ips = active.local_ips or ['127.0.0.1']
        endpoint = session.public_endpoint
        info = {
            'local_urls': [f"http://{ip}:{session.http_port}" for ip in ips],
            'receive_command': f"zapshare receive {ips[0]} {session.listener_port}",
            'public_url': endpoint.share_url if endpoint else None,
            'global_command': f"zapshare get {endpoint.share_url}" if endpoint else None,
            'connections': active.listener.connection_count if active.listener else 0,
        }
        return info

    def tunnel_error(self, session_id: str) -> Optional[TunnelError]:
        """The tunnel failure that made a session fall back to local-only, if any."""
        active = self._sessions.get(session_id)
        return active.tunnel_error if active else None

    def shutdown_reason(self, session_id: str) -> Optional[str]:
        active = self._sessions.get(session_id)
        if active is not None:
            return active.shutdown_reason
        return self._ended.get(session_id)

    async def cancel(self, session_id: Optional[str] = None) -> None:
        """Tear down one session (or all of them) immediately."""
        await self.shutdown(session_id, reason="cancelled")

    async def shutdown(self, session_id: Optional[str] = None, reason: str = "shutdown") -> None:
        """
        Release everything a session holds. Calling it again is a no-op.

        Args:
            session_id: Session to shut down (None for every session)
            reason: Logged reason for the shutdown
        """
        targets = self._targets(session_id)
        tasks = [self._begin_shutdown(active, reason) for active in targets]
        if tasks:
            await asyncio.shield(asyncio.gather(*tasks))

    async def wait_closed(self, session_id: Optional[str] = None) -> None:
        """Wait until the session (or every session) has been torn down. Unknown ids count as closed."""
        for active in self._targets(session_id):
            await active.closed.wait()

    def _targets(self, session_id: Optional[str]) -> List[_ActiveSession]:
        if session_id is None:
            return list(self._sessions.values())
        active = self._sessions.get(session_id)
        return [active] if active else []

    def _begin_shutdown(self, active: _ActiveSession, reason: str) -> asyncio.Task:
        if active.shutdown_task is None:
            active.shutdown_reason = reason
            active.shutdown_task = asyncio.ensure_future(self._teardown(active, reason))
        return active.shutdown_task

    async def _teardown(self, active: _ActiveSession, reason: str) -> None:
        session = active.session
        logger.info(f"Ending session {session.session_id} ({reason})")

        if active.timer is not None:
            active.timer.cancel()
            active.timer = None

        if active.listener is not None:
            try:
                await active.listener.close_all()
            except Exception as e:
                logger.error(f"Error closing listener: {e}", exc_info=True)

        if active.status_server is not None:
            try:
                await active.status_server.stop(timeout=self.settings.listener_close_timeout)
            except Exception as e:
                logger.error(f"Error stopping status page: {e}", exc_info=True)

        endpoint = session.clear_public_endpoint()
        if endpoint is not None:
            result = await self.coordinator.close_tunnel(endpoint.url)
            for error in result.errors:
                logger.warning(error)

        self.store.remove(session.session_id)
        self._ended[session.session_id] = active.shutdown_reason or reason
        self._sessions.pop(session.session_id, None)
        active.closed.set()
        logger.info(f"Session {session.session_id} closed after {session.transfers_completed} transfer(s)")
