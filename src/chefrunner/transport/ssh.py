"""SSH communicator: connection lifecycle, sessions and command execution"""

import logging
import threading
from typing import Optional

import paramiko
from paramiko.agent import AgentRequestHandler

from .auth import new_client_conn
from .base import Communicator, ConnectionInfo
from .cmd import RemoteCommand
from .config import SSHConfig, prepare_ssh_config
from .errors import SessionError

logger = logging.getLogger(__name__)

# Pseudo-terminal requested for commands unless no_pty is set
PTY_TERM = "xterm"
PTY_WIDTH = 80
PTY_HEIGHT = 40

_BUFFER_SIZE = 32768


def _feed_stdin(session: paramiko.Channel, stdin) -> None:
    try:
        while True:
            data = stdin.read(_BUFFER_SIZE)
            if not data:
                break
            session.sendall(data)
        session.shutdown_write()
    except (paramiko.SSHException, OSError, EOFError) as e:
        # The remote stopped reading; its exit status reports the outcome
        logger.debug(f"stdin copy stopped: {e}")


def _copy_output(read, out, errors: Optional[list] = None) -> None:
    """Write everything read from the channel to out until EOF"""
    try:
        while True:
            data = read(_BUFFER_SIZE)
            if not data:
                return
            out.write(data)
    except Exception as e:
        if errors is None:
            raise
        errors.append(e)


class SSHCommunicator(Communicator):
    """Runs commands on one remote host over a single SSH connection

    The connection is (re)established by ``connect()``. Each command gets a
    fresh session; if opening a session fails the communicator reconnects
    once and retries before giving up.
    """

    def __init__(self, conn_info: ConnectionInfo, config: Optional[SSHConfig] = None):
        """Initialize SSH communicator

        Args:
            conn_info: Resolved connection descriptor
            config: Prepared SSH config (built from conn_info if None)

        Raises:
            PrivateKeyError, AgentError, ConfigurationError: If the config cannot be built
        """
        self.conn_info = conn_info
        self.config = config if config is not None else prepare_ssh_config(conn_info)
        self.client: Optional[paramiko.Transport] = None
        self._conn = None
        self._agent_forwarding: Optional[AgentRequestHandler] = None

    def _log_connection_summary(self) -> None:
        info = self.conn_info
        logger.debug(
            "Connecting to remote host via SSH...\n"
            f"  Host: {info.host}\n"
            f"  User: {info.user}\n"
            f"  Password: {bool(info.password)}\n"
            f"  Private key: {bool(info.private_key)}\n"
            f"  SSH Agent: {info.agent}\n"
            f"  Checking Host Key: {bool(info.host_key)}"
        )
        if info.bastion_host:
            logger.debug(
                "Using configured bastion host...\n"
                f"  Host: {info.bastion_host}\n"
                f"  User: {info.bastion_user}\n"
                f"  Password: {bool(info.bastion_password)}\n"
                f"  Private key: {bool(info.bastion_private_key)}\n"
                f"  SSH Agent: {info.agent}\n"
                f"  Checking Host Key: {bool(info.bastion_host_key)}"
            )

    def _close_connection(self) -> None:
        client, conn = self.client, self._conn
        self.client = None
        self._conn = None

        try:
            if client is not None:
                client.close()
        finally:
            if conn is not None:
                conn.close()

    def connect(self) -> None:
        """Dial, handshake and authenticate, replacing any previous connection

        Raises:
            DialError: If the target (or bastion) cannot be reached
            HandshakeError: If the handshake or authentication fails
        """
        if self._conn is not None:
            try:
                self._close_connection()
            except Exception as e:
                logger.debug(f"Error closing previous connection: {e}")

        # Set the conn and client to None since we'll recreate them
        self._conn = None
        self.client = None

        self._log_connection_summary()

        logger.debug("Connecting to TCP connection for SSH")
        try:
            self._conn = self.config.connection()
        except Exception as e:
            self._conn = None
            logger.error(f"Connection error: {e}")
            raise

        logger.debug("Handshaking with SSH")
        try:
            self.client = new_client_conn(self._conn, self.conn_info.host, self.conn_info.port, self.config.config)
        except Exception as e:
            logger.warning(str(e))
            raise

        logger.info(f"Connected to {self.conn_info.address}")

        if self.config.ssh_agent is not None:
            self._request_agent_forwarding()

    def _request_agent_forwarding(self) -> None:
        """Ask the server to forward the agent; failure is only a warning"""
        logger.debug("Setting up a session to request agent forwarding")
        session = None
        try:
            session = self.client.open_session()
            self._agent_forwarding = AgentRequestHandler(session)
            logger.info("Agent forwarding enabled")
        except (paramiko.SSHException, OSError, EOFError) as e:
            logger.warning(f"Error forwarding agent: {e}")
        finally:
            if session is not None:
                session.close()

    def _new_session(self) -> paramiko.Channel:
        """Open a session, reconnecting once if the client is gone or stale

        Raises:
            SessionError: If the session cannot be opened after reconnecting
        """
        logger.debug("Opening new ssh session")
        try:
            if self.client is None:
                raise SessionError("ssh client is not connected")
            return self.client.open_session()
        except (SessionError, paramiko.SSHException, OSError, EOFError) as e:
            logger.warning(f"ssh session open error: '{e}', attempting reconnect")

        self.connect()

        try:
            return self.client.open_session()
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise SessionError(f"Failed to open session on {self.conn_info.address}: {e}") from e

    def start(self, cmd: RemoteCommand) -> None:
        """Start a command in a new session and return immediately

        Completion is tracked by a background thread; observe it with
        ``cmd.wait()``.

        Raises:
            SessionError: If the session cannot be opened or the command cannot be started
        """
        cmd.init()

        session = self._new_session()

        try:
            if not self.config.no_pty:
                # paramiko sends no terminal modes, so echo and line speed stay at the server defaults
                session.get_pty(term=PTY_TERM, width=PTY_WIDTH, height=PTY_HEIGHT)

            logger.debug(f"Starting remote command: {cmd.command}")
            session.exec_command(cmd.command.strip() + "\n")
        except (paramiko.SSHException, OSError, EOFError) as e:
            session.close()
            raise SessionError(f"Failed to start {cmd.command!r}: {e}") from e

        waiter = threading.Thread(
            target=self._wait_session,
            args=(session, cmd),
            name=f"ssh-wait-{self.conn_info.host}",
            daemon=True,
        )
        waiter.start()

    @staticmethod
    def _copy_streams(session: paramiko.Channel, cmd: RemoteCommand) -> threading.Thread:
        """Drain stdout and stderr until EOF while stdin is sent from its own thread

        Returns:
            The stdin thread, which may still be sending
        """
        feeder = threading.Thread(target=_feed_stdin, args=(session, cmd.stdin), daemon=True)
        feeder.start()

        stderr_errors = []
        stderr_copy = threading.Thread(
            target=_copy_output, args=(session.recv_stderr, cmd.stderr, stderr_errors), daemon=True
        )
        stderr_copy.start()

        _copy_output(session.recv, cmd.stdout)
        stderr_copy.join()
        if stderr_errors:
            raise stderr_errors[0]

        return feeder

    def _wait_session(self, session: paramiko.Channel, cmd: RemoteCommand) -> None:
        """Wait for the session to end, then record the result on the command"""
        exit_status = 0
        error = None
        try:
            feeder = self._copy_streams(session, cmd)
            exit_status = session.recv_exit_status()
            feeder.join()
            if exit_status == -1:
                error = SessionError("remote command exited without exit status or exit signal")
        except Exception as e:
            error = e

        cmd.set_exit_status(exit_status, error)
        logger.debug(f"Remote command exited with '{exit_status}': {cmd.command}")
        session.close()

    def disconnect(self) -> None:
        """Close the agent and the connection; safe to call repeatedly

        Raises:
            AgentError: If the agent connection fails to close (the SSH
                connection is closed regardless)
        """
        try:
            if self.config.ssh_agent is not None:
                self.config.ssh_agent.close()
        finally:
            if self._agent_forwarding is not None:
                forwarding, self._agent_forwarding = self._agent_forwarding, None
                forwarding.close()
            self._close_connection()

    def timeout(self) -> float:
        return self.conn_info.timeout_val
