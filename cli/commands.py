"""Command handler functions for CLI operations."""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional

from cli.constants import EXIT_ERROR, EXIT_INTERRUPTED, EXIT_OK, GREEN, RESET
from cli.models import GetCommand, ReceiveCommand, SendCommand, TunnelsCloseCommand, TunnelsCommand
from cli.prompts import prompt_password
from cli.utils import format_error, format_share_info, format_transfer_result
from common.context import RuntimeContext
from common.exceptions import ZapShareError
from common.logging_config import get_logger
from common.types import ClientConnection, TransferSession
from receiver.client import FileReceiver
from receiver.endpoint import build_ws_url, resolve_share_url
from sender.session_manager import SendOptions, TransferSessionManager
from sender.state_machine import TransferCompleted
from tunnel.coordinator import TunnelCoordinator

logger = get_logger(__name__)


def _report_error(error: ZapShareError, context: RuntimeContext) -> int:
    logger.debug(f"Command failed: {error!r}")
    print(format_error(error))
    if context.debug:
        print(f"For more details, check the debug log at: {context.debug_log_path}")
    return EXIT_ERROR


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, callback: Callable[[], None]) -> List[int]:
    """Route SIGINT/SIGTERM to callback. Returns the signals that were installed."""
    installed = []
    if sys.platform == 'win32':
        return installed
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, callback)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug(f"Cannot install handler for {sig}: {e}")
    return installed


async def handle_send(
    cmd: SendCommand,
    context: RuntimeContext,
    manager: Optional[TransferSessionManager] = None
) -> int:
    """
    Handle 'send' command: share a file until interrupted or inactive.

    Args:
        cmd: SendCommand with path, password and tunnel options
        context: Runtime context for this invocation
        manager: Optional TransferSessionManager for dependency injection (testing)

    Returns:
        Exit code (0 when sharing ended normally, 130 when interrupted)
    """
    manager = manager or TransferSessionManager(context)
    options = SendOptions(
        password=cmd.password,
        secure=cmd.secure,
        tunnel=cmd.tunnel,
        force_tunnel=cmd.force_tunnel,
    )

    logger.info(f"Executing send command: path={cmd.path}, tunnel={cmd.tunnel}")
    try:
        session = await manager.start(cmd.path, options)
    except ZapShareError as e:
        return _report_error(e, context)

    def on_sent(sent_session: TransferSession, effect: TransferCompleted, connection: ClientConnection) -> None:
        print(f"{GREEN}File sent successfully to {effect.client_name}{RESET}")
        if effect.save_path:
            print(f"  Saved as: {effect.save_path}")

    manager.add_transfer_observer(on_sent)

    tunnel_error = manager.tunnel_error(session.session_id)
    print(format_share_info(
        session,
        manager.share_info(session.session_id),
        tunnel_warning=str(tunnel_error) if tunnel_error else None,
    ))

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, stop_requested.set)

    closed = asyncio.ensure_future(manager.wait_closed(session.session_id))
    stopper = asyncio.ensure_future(stop_requested.wait())
    try:
        await asyncio.wait({closed, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not closed.done():
            try:
                await asyncio.wait_for(
                    manager.shutdown(session.session_id, reason="interrupted"),
                    timeout=context.settings.shutdown_grace,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Cleanup did not finish within {context.settings.shutdown_grace:g} seconds, exiting anyway"
                )
        closed.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)

    if stop_requested.is_set():
        print("\nFile sharing ended.")
        return EXIT_INTERRUPTED

    print(f"File sharing ended ({manager.shutdown_reason(session.session_id)}).")
    return EXIT_OK


async def _receive(
    url: str,
    context: RuntimeContext,
    file_name: Optional[str],
    password: Optional[str],
    output_dir: Optional[str],
    receiver: Optional[FileReceiver]
) -> int:
    receiver = receiver or FileReceiver(context, password_prompt=prompt_password)
    destination = Path(output_dir).expanduser() if output_dir else None
    try:
        result = await receiver.receive(url, save_name=file_name, password=password, output_dir=destination)
    except ZapShareError as e:
        return _report_error(e, context)

    print(format_transfer_result(result))
    return EXIT_OK


async def handle_receive(
    cmd: ReceiveCommand,
    context: RuntimeContext,
    receiver: Optional[FileReceiver] = None
) -> int:
    """
    Handle 'receive' command.

    Args:
        cmd: ReceiveCommand with host, port and optional file name
        context: Runtime context for this invocation
        receiver: Optional FileReceiver for dependency injection (testing)

    Returns:
        Exit code
    """
    logger.info(f"Executing receive command: {cmd.host}:{cmd.port}")
    try:
        url = build_ws_url(cmd.host, cmd.port)
    except ZapShareError as e:
        return _report_error(e, context)
    return await _receive(url, context, cmd.file_name, cmd.password, cmd.output_dir, receiver)


async def handle_get(
    cmd: GetCommand,
    context: RuntimeContext,
    receiver: Optional[FileReceiver] = None
) -> int:
    """
    Handle 'get' command: receive through a global share link.

    Shortened links are resolved first.

    Args:
        cmd: GetCommand with url and optional file name
        context: Runtime context for this invocation
        receiver: Optional FileReceiver for dependency injection (testing)

    Returns:
        Exit code
    """
    logger.info(f"Executing get command: {cmd.url}")
    try:
        url = await resolve_share_url(cmd.url)
    except ZapShareError as e:
        return _report_error(e, context)
    return await _receive(url, context, cmd.file_name, cmd.password, cmd.output_dir, receiver)


async def handle_tunnels(
    cmd: TunnelsCommand,
    context: RuntimeContext,
    coordinator: Optional[TunnelCoordinator] = None
) -> int:
    """
    Handle 'tunnels' command: list tunnels recorded in the registry.

    Returns:
        Exit code
    """
    coordinator = coordinator or TunnelCoordinator(context)
    urls = coordinator.list_tunnels()

    print("Active Tunnels:")
    if urls:
        print(f"{len(urls)} tunnel(s) in local registry:")
        for i, url in enumerate(urls, 1):
            print(f"  {i}. {url}")
    else:
        print("  No active tunnels in registry")
    print("\nTo close all tunnels: zapshare tunnels-close")
    return EXIT_OK


async def handle_tunnels_close(
    cmd: TunnelsCloseCommand,
    context: RuntimeContext,
    coordinator: Optional[TunnelCoordinator] = None
) -> int:
    """
    Handle 'tunnels-close' command: close every recorded tunnel.

    Returns:
        Exit code (1 if any tunnel failed to close)
    """
    coordinator = coordinator or TunnelCoordinator(context)
    result = await coordinator.close_all_tunnels()

    if result.closed:
        print(f"Closed {result.closed} tunnel(s) successfully")
    if result.dropped:
        print(
            f"Removed {result.dropped} tunnel record(s) from the registry; "
            f"their ssh processes could not be identified and may still be running"
        )
    if result.errors:
        print("Attempted to close tunnels with some errors:")
        for error in result.errors:
            print(f"  - {error}")
    if not result.closed and not result.failed and not result.dropped:
        print("No active tunnels found")

    return EXIT_ERROR if result.failed else EXIT_OK
