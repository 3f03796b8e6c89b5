"""Tests for SSHCommunicator connection lifecycle and command execution"""

import io
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from chefrunner.transport.base import ConnectionInfo
from chefrunner.transport.cmd import RemoteCommand
from chefrunner.transport.config import SSHClientConfig, SSHConfig
from chefrunner.transport.connection import bastion_connect_func
from chefrunner.transport.errors import (
    AgentError,
    CommandError,
    DialError,
    HandshakeError,
    SessionError,
    TunnelDialError,
)
from chefrunner.transport.ssh import PTY_HEIGHT, PTY_TERM, PTY_WIDTH, SSHCommunicator


@pytest.fixture
def mock_handshake():
    """Patch the handshake; each call returns a fresh client"""
    with patch("chefrunner.transport.ssh.new_client_conn") as mock:
        mock.side_effect = lambda *args: MagicMock(name="client")
        yield mock


class TestConnect:
    """Test connect()"""

    def test_connect(self, conn_info, ssh_config, mock_handshake):
        communicator = SSHCommunicator(conn_info, ssh_config)

        communicator.connect()

        ssh_config.connection.assert_called_once_with()
        mock_handshake.assert_called_once_with(
            ssh_config.connection.return_value, "example.com", 22, ssh_config.config
        )
        assert communicator.client is not None

    def test_reconnect_replaces_previous_connection(self, conn_info, ssh_config, mock_handshake):
        communicator = SSHCommunicator(conn_info, ssh_config)
        communicator.connect()
        first_client = communicator.client

        communicator.connect()

        first_client.close.assert_called_once()
        assert communicator.client is not first_client
        assert ssh_config.connection.call_count == 2

    def test_dial_error_propagates(self, conn_info, ssh_config, mock_handshake):
        ssh_config.connection.side_effect = DialError("example.com:22", "connection refused")
        communicator = SSHCommunicator(conn_info, ssh_config)

        with pytest.raises(DialError):
            communicator.connect()

        mock_handshake.assert_not_called()
        assert communicator.client is None

    def test_handshake_error_propagates(self, conn_info, ssh_config, mock_handshake):
        mock_handshake.side_effect = HandshakeError("example.com:22", "auth failed")
        communicator = SSHCommunicator(conn_info, ssh_config)

        with pytest.raises(HandshakeError):
            communicator.connect()

    def test_target_unreachable_through_bastion(self):
        """Test a failed tunnel surfaces as a dial error naming the target"""
        info = ConnectionInfo(host="target.internal", password="secret", agent=False, bastion_host="jump.example.com")
        client_config = SSHClientConfig(user="centos", host_key_callback=MagicMock())
        connection = bastion_connect_func("jump.example.com", 22, client_config, "target.internal", 22)
        communicator = SSHCommunicator(info, SSHConfig(config=client_config, connection=connection))

        with patch("chefrunner.transport.connection._dial"), \
                patch("chefrunner.transport.connection.new_client_conn") as mock_bastion_handshake:
            bastion = mock_bastion_handshake.return_value
            bastion.open_channel.side_effect = paramiko.ChannelException(2, "Connect failed")

            with pytest.raises(TunnelDialError) as exc_info:
                communicator.connect()

        assert "target.internal:22" in str(exc_info.value)
        bastion.close.assert_called_once()
        assert communicator.client is None

    def test_agent_forwarding_requested(self, conn_info, ssh_config, mock_handshake):
        ssh_config.ssh_agent = MagicMock()
        communicator = SSHCommunicator(conn_info, ssh_config)

        with patch("chefrunner.transport.ssh.AgentRequestHandler") as mock_handler:
            communicator.connect()

        session = communicator.client.open_session.return_value
        mock_handler.assert_called_once_with(session)
        session.close.assert_called_once()

    def test_agent_forwarding_failure_is_not_fatal(self, conn_info, ssh_config, mock_handshake, caplog):
        ssh_config.ssh_agent = MagicMock()
        communicator = SSHCommunicator(conn_info, ssh_config)

        with patch("chefrunner.transport.ssh.AgentRequestHandler",
                   side_effect=paramiko.SSHException("forwarding refused")):
            communicator.connect()

        assert communicator.client is not None
        assert "Error forwarding agent" in caplog.text

    def test_no_agent_no_forwarding(self, conn_info, ssh_config, mock_handshake):
        communicator = SSHCommunicator(conn_info, ssh_config)

        with patch("chefrunner.transport.ssh.AgentRequestHandler") as mock_handler:
            communicator.connect()

        mock_handler.assert_not_called()
        communicator.client.open_session.assert_not_called()


class TestSessionReconnect:
    """Test the bounded reconnect when a session cannot be opened"""

    def test_reconnects_once(self, conn_info, ssh_config, mock_handshake, fake_channel):
        """Test a stale connection is replaced and the session retried"""
        communicator = SSHCommunicator(conn_info, ssh_config)
        communicator.connect()
        stale = communicator.client
        stale.open_session.side_effect = paramiko.SSHException("stale connection")

        with patch.object(communicator, "connect", wraps=communicator.connect) as mock_connect:
            mock_handshake.side_effect = None
            fresh = MagicMock(name="fresh")
            fresh.open_session.return_value = fake_channel()
            mock_handshake.return_value = fresh

            cmd = RemoteCommand("whoami")
            communicator.start(cmd)
            cmd.wait(timeout=5)

        mock_connect.assert_called_once()
        stale.open_session.assert_called_once()
        fresh.open_session.assert_called_once()

    def test_second_failure_propagates(self, conn_info, ssh_config, mock_handshake):
        """Test no further reconnect after the retry fails"""
        broken = MagicMock(name="broken")
        broken.open_session.side_effect = EOFError()
        mock_handshake.side_effect = None
        mock_handshake.return_value = broken

        communicator = SSHCommunicator(conn_info, ssh_config)
        communicator.connect()

        with pytest.raises(SessionError):
            communicator.start(RemoteCommand("whoami"))

        # initial connect plus exactly one reconnect
        assert ssh_config.connection.call_count == 2
        assert broken.open_session.call_count == 2

    def test_not_connected_connects(self, conn_info, ssh_config, mock_handshake, fake_channel):
        communicator = SSHCommunicator(conn_info, ssh_config)
        mock_handshake.side_effect = None
        mock_handshake.return_value.open_session.return_value = fake_channel()

        cmd = RemoteCommand("whoami")
        communicator.start(cmd)
        cmd.wait(timeout=5)

        ssh_config.connection.assert_called_once()


class TestStart:
    """Test running commands"""

    def _connected(self, conn_info, ssh_config, channel):
        client = MagicMock(name="client")
        client.open_session.return_value = channel
        communicator = SSHCommunicator(conn_info, ssh_config)
        with patch("chefrunner.transport.ssh.new_client_conn", return_value=client):
            communicator.connect()
        return communicator

    def test_whoami(self, conn_info, ssh_config, fake_channel):
        """Test a successful command with password auth and no bastion"""
        channel = fake_channel(stdout=b"centos\n")
        communicator = self._connected(conn_info, ssh_config, channel)
        stdout = io.BytesIO()
        cmd = RemoteCommand("whoami", stdout=stdout)

        communicator.start(cmd)
        cmd.wait(timeout=5)

        assert cmd.exit_status == 0
        assert stdout.getvalue() == b"centos\n"
        assert channel.command == "whoami\n"
        assert channel.pty == (PTY_TERM, PTY_WIDTH, PTY_HEIGHT)
        ssh_config.connection.assert_called_once()

    def test_failing_command(self, conn_info, ssh_config, fake_channel):
        """Test a non-zero exit status surfaces with the command text"""
        communicator = self._connected(conn_info, ssh_config, fake_channel(exit_status=1))
        cmd = RemoteCommand("false")

        communicator.start(cmd)
        with pytest.raises(CommandError) as exc_info:
            cmd.wait(timeout=5)

        assert exc_info.value.exit_status == 1
        assert "'false'" in str(exc_info.value)
        assert "1" in str(exc_info.value)

    def test_missing_exit_status(self, conn_info, ssh_config, fake_channel):
        communicator = self._connected(conn_info, ssh_config, fake_channel(exit_status=-1))
        cmd = RemoteCommand("reboot")

        communicator.start(cmd)
        with pytest.raises(CommandError) as exc_info:
            cmd.wait(timeout=5)

        assert isinstance(exc_info.value.error, SessionError)

    def test_no_pty(self, conn_info, fake_channel):
        channel = fake_channel()
        ssh_config = SSHConfig(
            config=SSHClientConfig(user="deploy", host_key_callback=MagicMock()),
            connection=MagicMock(),
            no_pty=True,
        )
        communicator = self._connected(conn_info, ssh_config, channel)
        cmd = RemoteCommand("uptime")

        communicator.start(cmd)
        cmd.wait(timeout=5)

        assert channel.pty is None

    def test_stdin_and_stderr(self, conn_info, ssh_config, fake_channel):
        channel = fake_channel(stderr=b"warning\n")
        communicator = self._connected(conn_info, ssh_config, channel)
        stderr = io.BytesIO()
        cmd = RemoteCommand("cat", stdin=io.BytesIO(b"input"), stderr=stderr)

        communicator.start(cmd)
        cmd.wait(timeout=5)

        assert channel.sent == b"input"
        assert channel.write_shut is True
        assert stderr.getvalue() == b"warning\n"

    def test_output_read_while_stdin_is_sent(self, conn_info, ssh_config, output_first_channel):
        """Test a remote that writes before reading its input still completes"""
        channel = output_first_channel(stdout=b"x" * 100000)
        communicator = self._connected(conn_info, ssh_config, channel)
        stdout = io.BytesIO()
        cmd = RemoteCommand("sort", stdin=io.BytesIO(b"y" * 100000), stdout=stdout)

        communicator.start(cmd)
        cmd.wait(timeout=10)

        assert cmd.exit_status == 0
        assert stdout.getvalue() == b"x" * 100000
        assert channel.sent == b"y" * 100000

    def test_command_whitespace_trimmed(self, conn_info, ssh_config, fake_channel):
        channel = fake_channel()
        communicator = self._connected(conn_info, ssh_config, channel)
        cmd = RemoteCommand("  uptime \n")

        communicator.start(cmd)
        cmd.wait(timeout=5)

        assert channel.command == "uptime\n"

    def test_exec_failure(self, conn_info, ssh_config):
        channel = MagicMock()
        channel.exec_command.side_effect = paramiko.SSHException("channel closed")
        communicator = self._connected(conn_info, ssh_config, channel)

        with pytest.raises(SessionError):
            communicator.start(RemoteCommand("uptime"))

        channel.close.assert_called_once()


class TestDisconnect:
    """Test disconnect()"""

    def test_disconnect_closes_everything(self, conn_info, ssh_config, mock_handshake):
        ssh_config.ssh_agent = MagicMock()
        communicator = SSHCommunicator(conn_info, ssh_config)
        with patch("chefrunner.transport.ssh.AgentRequestHandler") as mock_handler:
            communicator.connect()
        client = communicator.client

        communicator.disconnect()

        ssh_config.ssh_agent.close.assert_called_once()
        mock_handler.return_value.close.assert_called_once()
        client.close.assert_called_once()
        ssh_config.connection.return_value.close.assert_called_once()
        assert communicator.client is None

    def test_disconnect_twice(self, conn_info, ssh_config, mock_handshake):
        communicator = SSHCommunicator(conn_info, ssh_config)
        communicator.connect()
        client = communicator.client

        communicator.disconnect()
        communicator.disconnect()

        client.close.assert_called_once()

    def test_disconnect_without_connect(self, conn_info, ssh_config):
        SSHCommunicator(conn_info, ssh_config).disconnect()

    def test_agent_close_error_still_closes_connection(self, conn_info, ssh_config, mock_handshake):
        ssh_config.ssh_agent = MagicMock()
        ssh_config.ssh_agent.close.side_effect = AgentError("agent gone")
        communicator = SSHCommunicator(conn_info, ssh_config)
        with patch("chefrunner.transport.ssh.AgentRequestHandler"):
            communicator.connect()
        client = communicator.client

        with pytest.raises(AgentError):
            communicator.disconnect()

        client.close.assert_called_once()

    def test_timeout(self, ssh_config):
        info = ConnectionInfo(host="example.com", password="secret", agent=False, timeout="10m")

        assert SSHCommunicator(info, ssh_config).timeout() == 600.0
