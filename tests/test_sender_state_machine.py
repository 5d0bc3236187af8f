"""Tests for the sender protocol state machine, driven with synthetic events."""

from pathlib import Path

import pytest

from common.protocol import ErrorMessage, MetadataMessage, PingMessage, PongMessage, ReadyMessage, ReceivedMessage
from common.types import ConnectionState, TransferSession
from sender.state_machine import (
    CloseConnection,
    ConnectionLost,
    ControlReceived,
    MalformedFrame,
    MetadataSent,
    PayloadFailed,
    PayloadReceived,
    PayloadSent,
    ProtocolViolation,
    ResetInactivityTimer,
    SendControl,
    SenderStateMachine,
    SendPayload,
    TransferCompleted,
)


def make_session(password=None, size=26):
    return TransferSession(
        file_path=Path('/tmp/report.txt'),
        file_name='report.txt',
        file_size=size,
        listener_port=50000,
        http_port=50001,
        password=password,
    )


def streamed_machine(session):
    """Machine that has sent the whole payload and awaits the acknowledgment."""
    machine = SenderStateMachine(session, metadata_delay=0.5, auth_failure_close_delay=1.0)
    machine.transition(ControlReceived(ReadyMessage(client_name="phone", password=session.password)))
    machine.transition(MetadataSent())
    machine.transition(PayloadSent(session.file_size))
    return machine


class TestHandshake:
    """Test ready handling and password gating."""

    def test_ready_without_password_sends_metadata(self):
        machine = SenderStateMachine(make_session())

        result = machine.transition(ControlReceived(ReadyMessage(client_name="phone")))

        assert result.state is ConnectionState.SENDING_METADATA
        assert result.effects == [SendControl(MetadataMessage(file_name="report.txt", file_size=26))]
        assert machine.connection.client_name == "phone"

    def test_initial_state_depends_on_password(self):
        assert SenderStateMachine(make_session()).state is ConnectionState.AWAITING_READY
        assert SenderStateMachine(make_session(password="K3X9QZ")).state is ConnectionState.AWAITING_PASSWORD

    def test_correct_password_is_accepted(self):
        machine = SenderStateMachine(make_session(password="K3X9QZ"))

        result = machine.transition(ControlReceived(ReadyMessage(client_name="phone", password="K3X9QZ")))

        assert result.state is ConnectionState.SENDING_METADATA

    def test_protected_session_ignores_noise_while_awaiting_password(self):
        machine = SenderStateMachine(make_session(password="K3X9QZ"))

        machine.transition(ControlReceived(PingMessage()))
        result = machine.transition(MalformedFrame("bad tag"))

        assert result.state is ConnectionState.AWAITING_PASSWORD
        assert isinstance(result.effects[0], ProtocolViolation)

    @pytest.mark.parametrize("candidate", [None, "", "wrong", "k3x9qz"])
    def test_wrong_password_errors_and_closes_after_delay(self, candidate):
        machine = SenderStateMachine(make_session(password="K3X9QZ"), auth_failure_close_delay=1.0)

        result = machine.transition(ControlReceived(ReadyMessage(client_name="phone", password=candidate)))

        assert result.state is ConnectionState.ERRORED
        assert result.effects == [
            SendControl(ErrorMessage(message="Invalid password")),
            CloseConnection(delay=1.0),
        ]

    def test_no_metadata_ever_leaves_after_rejection(self):
        machine = SenderStateMachine(make_session(password="K3X9QZ"))
        machine.transition(ControlReceived(ReadyMessage(password="nope")))

        result = machine.transition(ControlReceived(ReadyMessage(password="K3X9QZ")))

        assert result.state is ConnectionState.ERRORED
        assert result.effects == []

    def test_duplicate_ready_is_a_violation(self):
        machine = SenderStateMachine(make_session())
        machine.transition(ControlReceived(ReadyMessage()))

        result = machine.transition(ControlReceived(ReadyMessage()))

        assert result.state is ConnectionState.SENDING_METADATA
        assert isinstance(result.effects[0], ProtocolViolation)


class TestStreaming:
    """Test metadata, payload and acknowledgment."""

    def test_metadata_sent_schedules_payload(self):
        machine = SenderStateMachine(make_session(), metadata_delay=0.5)
        machine.transition(ControlReceived(ReadyMessage()))

        result = machine.transition(MetadataSent())

        assert result.state is ConnectionState.STREAMING
        assert result.effects == [SendPayload(delay=0.5)]

    def test_payload_sent_awaits_ack(self):
        machine = streamed_machine(make_session())

        assert machine.state is ConnectionState.AWAITING_ACK
        assert machine.connection.bytes_sent == 26

    def test_valid_ack_completes_and_resets_timer(self):
        machine = streamed_machine(make_session())

        result = machine.transition(ControlReceived(
            ReceivedMessage(client_name="phone", save_path="/home/u/report.txt", bytes_received=26)
        ))

        assert result.state is ConnectionState.CLOSED
        assert result.effects == [
            TransferCompleted(client_name="phone", save_path="/home/u/report.txt"),
            ResetInactivityTimer(),
            CloseConnection(),
        ]

    def test_ack_without_byte_count_is_accepted(self):
        machine = streamed_machine(make_session())

        result = machine.transition(ControlReceived(ReceivedMessage(client_name="phone")))

        assert result.state is ConnectionState.CLOSED

    def test_ack_with_wrong_byte_count_is_violation(self):
        machine = streamed_machine(make_session())

        result = machine.transition(ControlReceived(ReceivedMessage(bytes_received=10)))

        assert result.state is ConnectionState.AWAITING_ACK
        assert len(result.effects) == 1
        assert isinstance(result.effects[0], ProtocolViolation)

    def test_zero_byte_file_completes(self):
        machine = streamed_machine(make_session(size=0))

        result = machine.transition(ControlReceived(ReceivedMessage(bytes_received=0)))

        assert result.state is ConnectionState.CLOSED

    def test_payload_failure_errors_connection(self):
        machine = SenderStateMachine(make_session())
        machine.transition(ControlReceived(ReadyMessage()))
        machine.transition(MetadataSent())

        result = machine.transition(PayloadFailed("disk gone"))

        assert result.state is ConnectionState.ERRORED
        assert CloseConnection() in result.effects


class TestViolations:
    """Test early acknowledgments and unexpected frames."""

    @pytest.mark.parametrize("steps", [0, 1, 2])
    def test_early_ack_is_violation_without_timer_reset(self, steps):
        machine = SenderStateMachine(make_session())
        events = [ControlReceived(ReadyMessage()), MetadataSent()]
        for event in events[:steps]:
            machine.transition(event)
        state_before = machine.state

        result = machine.transition(ControlReceived(ReceivedMessage(bytes_received=26)))

        assert result.state is state_before
        assert all(not isinstance(e, (ResetInactivityTimer, TransferCompleted)) for e in result.effects)
        assert isinstance(result.effects[0], ProtocolViolation)

    def test_ping_and_pong_are_silent_in_every_live_state(self):
        machine = SenderStateMachine(make_session())
        for event in [None, ControlReceived(ReadyMessage()), MetadataSent(), PayloadSent(26)]:
            if event is not None:
                machine.transition(event)
            state_before = machine.state
            for message in (PingMessage(), PongMessage()):
                result = machine.transition(ControlReceived(message))
                assert result.state is state_before
                assert result.effects == []

    def test_payload_from_receiver_is_ignored(self):
        machine = SenderStateMachine(make_session())

        result = machine.transition(PayloadReceived(100))

        assert result.state is ConnectionState.AWAITING_READY
        assert isinstance(result.effects[0], ProtocolViolation)

    def test_malformed_frame_is_ignored(self):
        machine = SenderStateMachine(make_session())

        result = machine.transition(MalformedFrame("bad tag"))

        assert result.state is ConnectionState.AWAITING_READY
        assert isinstance(result.effects[0], ProtocolViolation)

    def test_metadata_from_receiver_is_violation(self):
        machine = SenderStateMachine(make_session())

        result = machine.transition(ControlReceived(MetadataMessage(file_name="x", file_size=1)))

        assert isinstance(result.effects[0], ProtocolViolation)


class TestConnectionLoss:
    """Test terminal states."""

    def test_connection_lost_closes(self):
        machine = SenderStateMachine(make_session())

        result = machine.transition(ConnectionLost())

        assert result.state is ConnectionState.CLOSED

    def test_terminal_states_ignore_events(self):
        machine = streamed_machine(make_session())
        machine.transition(ControlReceived(ReceivedMessage()))

        for event in (ConnectionLost(), ControlReceived(ReadyMessage()), PayloadSent(5), MalformedFrame("x")):
            result = machine.transition(event)
            assert result.state is ConnectionState.CLOSED
            assert result.effects == []
