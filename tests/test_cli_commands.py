"""Tests for CLI command handlers and argument parsing."""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from cli.commands import handle_get, handle_receive, handle_send, handle_tunnels, handle_tunnels_close
from cli.constants import EXIT_ERROR, EXIT_OK
from cli.main import build_parser, to_command
from cli.models import (
    GetCommand,
    ReceiveCommand,
    SendCommand,
    TunnelsCloseCommand,
    TunnelsCommand,
)
from common.exceptions import AuthenticationError, SharedFileNotFoundError
from common.types import TransferResult, TunnelCloseResult
from receiver.client import FileReceiver
from sender.session_manager import TransferSessionManager
from tunnel.coordinator import TunnelCoordinator


class TestArgumentParsing:
    """Test argparse to command conversion."""

    def test_send_tunnels_by_default(self):
        cmd = to_command(build_parser().parse_args(['send', 'report.pdf']))

        assert cmd == SendCommand(path='report.pdf', tunnel=True, force_tunnel=False)

    def test_send_local_only(self):
        cmd = to_command(build_parser().parse_args(['send', 'report.pdf', '--local-only', '--secure']))

        assert cmd.tunnel is False
        assert cmd.secure is True

    def test_send_forced_tunnel(self):
        cmd = to_command(build_parser().parse_args(['send', 'report.pdf', '--tunnel', '-p', 'pw']))

        assert cmd.tunnel is True
        assert cmd.force_tunnel is True
        assert cmd.password == 'pw'

    def test_send_tunnel_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['send', 'a', '--tunnel', '--local-only'])

    def test_config_can_disable_default_tunnel(self):
        cmd = to_command(build_parser().parse_args(['send', 'report.pdf']), tunnel_by_default=False)

        assert cmd.tunnel is False

    def test_receive(self):
        cmd = to_command(build_parser().parse_args(['receive', '192.168.1.20', '49152', 'out.pdf', '--password', 'x']))

        assert cmd == ReceiveCommand(host='192.168.1.20', port=49152, file_name='out.pdf', password='x')

    def test_get_with_output_dir(self):
        cmd = to_command(build_parser().parse_args(['get', 'https://tiny.test/abc', '-o', '/tmp/in']))

        assert cmd == GetCommand(url='https://tiny.test/abc', output_dir='/tmp/in')

    def test_tunnel_commands(self):
        assert isinstance(to_command(build_parser().parse_args(['tunnels'])), TunnelsCommand)
        assert isinstance(to_command(build_parser().parse_args(['tunnels-close', '--debug'])), TunnelsCloseCommand)


class TestHandlers:
    """Test command handlers with mocked collaborators."""

    @pytest.mark.asyncio
    async def test_handle_send_reports_input_error(self, runtime_context, capsys):
        manager = Mock(spec=TransferSessionManager)
        manager.start = AsyncMock(side_effect=SharedFileNotFoundError("File not found: /x"))

        code = await handle_send(SendCommand(path='/x'), runtime_context, manager=manager)

        assert code == EXIT_ERROR
        output = capsys.readouterr().out
        assert "File not found: /x" in output
        assert "Hint:" in output

    @pytest.mark.asyncio
    async def test_handle_receive_success(self, runtime_context, tmp_path, capsys):
        receiver = Mock(spec=FileReceiver)
        receiver.receive = AsyncMock(return_value=TransferResult(
            save_path=tmp_path / 'a.txt', file_name='a.txt', file_size=2048, elapsed_seconds=0.5
        ))

        code = await handle_receive(
            ReceiveCommand(host='127.0.0.1', port=49152, file_name='a.txt', output_dir=str(tmp_path)),
            runtime_context,
            receiver=receiver,
        )

        assert code == EXIT_OK
        receiver.receive.assert_awaited_once_with(
            'ws://127.0.0.1:49152/', save_name='a.txt', password=None, output_dir=tmp_path
        )
        assert "Saved to:" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_handle_receive_failure(self, runtime_context, capsys):
        receiver = Mock(spec=FileReceiver)
        receiver.receive = AsyncMock(side_effect=AuthenticationError("No password entered"))

        code = await handle_receive(ReceiveCommand(host='127.0.0.1', port=49152), runtime_context, receiver=receiver)

        assert code == EXIT_ERROR
        assert "No password entered" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_handle_receive_rejects_bad_port(self, runtime_context):
        receiver = Mock(spec=FileReceiver)

        code = await handle_receive(ReceiveCommand(host='127.0.0.1', port=0), runtime_context, receiver=receiver)

        assert code == EXIT_ERROR
        receiver.receive.assert_not_called()

    @pytest.mark.asyncio
    async def test_handle_get_rejects_invalid_url(self, runtime_context):
        receiver = Mock(spec=FileReceiver)

        code = await handle_get(GetCommand(url='ftp://example.com/file'), runtime_context, receiver=receiver)

        assert code == EXIT_ERROR

    @pytest.mark.asyncio
    async def test_handle_tunnels_lists_registry(self, runtime_context, capsys):
        coordinator = Mock(spec=TunnelCoordinator)
        coordinator.list_tunnels.return_value = ['https://zap-a1.relay.test']

        code = await handle_tunnels(TunnelsCommand(), runtime_context, coordinator=coordinator)

        assert code == EXIT_OK
        assert "1. https://zap-a1.relay.test" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_handle_tunnels_close_with_nothing_open(self, runtime_context, capsys):
        coordinator = Mock(spec=TunnelCoordinator)
        coordinator.close_all_tunnels = AsyncMock(return_value=TunnelCloseResult())

        code = await handle_tunnels_close(TunnelsCloseCommand(), runtime_context, coordinator=coordinator)

        assert code == EXIT_OK
        assert "No active tunnels found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_handle_tunnels_close_reports_failures(self, runtime_context, capsys):
        coordinator = Mock(spec=TunnelCoordinator)
        coordinator.close_all_tunnels = AsyncMock(
            return_value=TunnelCloseResult(closed=1, failed=1, errors=['Error closing x: timeout'])
        )

        code = await handle_tunnels_close(TunnelsCloseCommand(), runtime_context, coordinator=coordinator)

        assert code == EXIT_ERROR
        output = capsys.readouterr().out
        assert "Closed 1 tunnel(s)" in output
        assert "Error closing x: timeout" in output


    @pytest.mark.asyncio
    async def test_handle_tunnels_close_reports_dropped_records(self, runtime_context, capsys):
        coordinator = Mock(spec=TunnelCoordinator)
        coordinator.close_all_tunnels = AsyncMock(return_value=TunnelCloseResult(dropped=2))

        code = await handle_tunnels_close(TunnelsCloseCommand(), runtime_context, coordinator=coordinator)

        assert code == EXIT_OK
        output = capsys.readouterr().out
        assert "Removed 2 tunnel record(s)" in output
        assert "Closed" not in output
        assert "No active tunnels found" not in output


class TestSendLifecycle:
    """Test the send handler against a real session manager."""

    @pytest.mark.asyncio
    async def test_send_returns_when_session_ends(self, runtime_context, sample_file, capsys):
        manager = TransferSessionManager(runtime_context)
        original_start = manager.start

        async def start_then_cancel(path, options):
            session = await original_start(path, options)
            loop = asyncio.get_running_loop()
            loop.call_later(0.2, lambda: loop.create_task(manager.cancel()))
            return session

        manager.start = start_then_cancel

        code = await asyncio.wait_for(
            handle_send(SendCommand(path=str(sample_file), tunnel=False), runtime_context, manager=manager),
            timeout=5,
        )

        assert code == EXIT_OK
        output = capsys.readouterr().out
        assert "report.txt" in output
        assert "File sharing ended (cancelled)" in output
