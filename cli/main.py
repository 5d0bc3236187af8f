"""CLI entry point."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from cli.commands import handle_get, handle_receive, handle_send, handle_tunnels, handle_tunnels_close
from cli.config import Config
from cli.constants import DESCRIPTION, EPILOG, EXIT_INTERRUPTED, LOGO, PROG_NAME
from cli.models import (
    CommandRequest,
    GetCommand,
    ReceiveCommand,
    SendCommand,
    TunnelsCloseCommand,
    TunnelsCommand,
)
from common.constants import APP_DIR_NAME
from common.context import RuntimeContext
from common.logging_config import setup_logging


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--debug', action='store_true', help='Enable debug logging to ~/.zapshare/logs/debug.log')

    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest='command', required=True)

    send = sub.add_parser('send', parents=[common], help='Share a file')
    send.add_argument('path', help='File to share')
    send.add_argument('-p', '--password', help='Require this password from receivers')
    send.add_argument('-s', '--secure', action='store_true', help='Generate a random password')
    tunnel_mode = send.add_mutually_exclusive_group()
    tunnel_mode.add_argument('--tunnel', action='store_true', help='Fail if no global link can be created')
    tunnel_mode.add_argument('--local-only', action='store_true', help='Share on the local network only')

    receive = sub.add_parser('receive', parents=[common], help='Receive a file from a sender on the local network')
    receive.add_argument('host', help="Sender's IP address")
    receive.add_argument('port', type=int, help="Sender's port")
    receive.add_argument('file_name', nargs='?', help='Save as this file name')
    receive.add_argument('-p', '--password', help='Password for protected files')
    receive.add_argument('-o', '--output-dir', help='Directory to save into')

    get = sub.add_parser('get', parents=[common], help='Receive a file from a global share link')
    get.add_argument('url', help='Share link printed by the sender')
    get.add_argument('file_name', nargs='?', help='Save as this file name')
    get.add_argument('-p', '--password', help='Password for protected files')
    get.add_argument('-o', '--output-dir', help='Directory to save into')

    sub.add_parser('tunnels', parents=[common], help='List tunnels recorded in the registry')
    sub.add_parser('tunnels-close', parents=[common], help='Close all recorded tunnels')

    return parser


def to_command(args: argparse.Namespace, tunnel_by_default: bool = True) -> CommandRequest:
    """
    Convert parsed arguments into a command request.

    Args:
        args: Parsed arguments
        tunnel_by_default: Whether send attempts a global link when neither flag is given
    """
    if args.command == 'send':
        return SendCommand(
            path=args.path,
            password=args.password,
            secure=args.secure,
            tunnel=args.tunnel or (tunnel_by_default and not args.local_only),
            force_tunnel=args.tunnel,
        )
    if args.command == 'receive':
        return ReceiveCommand(
            host=args.host,
            port=args.port,
            file_name=args.file_name,
            password=args.password,
            output_dir=args.output_dir,
        )
    if args.command == 'get':
        return GetCommand(
            url=args.url,
            file_name=args.file_name,
            password=args.password,
            output_dir=args.output_dir,
        )
    if args.command == 'tunnels':
        return TunnelsCommand()
    return TunnelsCloseCommand()


async def dispatch_command(cmd: CommandRequest, context: RuntimeContext) -> int:
    """Dispatch parsed command to appropriate handler."""
    if isinstance(cmd, SendCommand):
        return await handle_send(cmd, context)
    elif isinstance(cmd, ReceiveCommand):
        return await handle_receive(cmd, context)
    elif isinstance(cmd, GetCommand):
        return await handle_get(cmd, context)
    elif isinstance(cmd, TunnelsCommand):
        return await handle_tunnels(cmd, context)
    else:
        return await handle_tunnels_close(cmd, context)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for CLI."""
    args = build_parser().parse_args(argv)

    config = Config(Path.home() / APP_DIR_NAME / 'config.json')
    context = config.build_context(debug=args.debug)

    logger = setup_logging(
        'cli',
        log_level='DEBUG' if args.debug else None,
        debug_log_path=context.debug_log_path if args.debug else None,
    )
    if args.debug:
        logger.info("Debug logging enabled")

    command = to_command(args, tunnel_by_default=config.tunnel_by_default())
    if isinstance(command, SendCommand):
        print(LOGO)

    logger.info(f"CLI starting: {command.command}")
    try:
        return asyncio.run(dispatch_command(command, context))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")


if __name__ == "__main__":
    sys.exit(main())
