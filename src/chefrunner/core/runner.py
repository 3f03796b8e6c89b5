"""Run one command on the configured host"""

import io
import logging
import os
from typing import Callable, Optional

from chefrunner.core.config import Config
from chefrunner.plugins import PLUGINS
from chefrunner.transport.base import Communicator, ConnectionInfo
from chefrunner.transport.cmd import RemoteCommand
from chefrunner.transport.errors import ConfigurationError, SSHError
from chefrunner.transport.ssh import SSHCommunicator

logger = logging.getLogger(__name__)


class Runner:
    """Connects, runs the plugin's command, waits for it and disconnects"""

    def __init__(self, config: Config,
                 communicator_factory: Callable[[ConnectionInfo], Communicator] = SSHCommunicator,
                 agent_socket: Optional[str] = None):
        """Initialize runner

        Args:
            config: Configuration instance
            communicator_factory: Builds the communicator from the descriptor
            agent_socket: SSH agent endpoint (defaults to $SSH_AUTH_SOCK)
        """
        self.config = config
        self.communicator_factory = communicator_factory
        self.agent_socket = agent_socket if agent_socket is not None else os.environ.get("SSH_AUTH_SOCK")
        self.output = ""

    def build_command(self) -> str:
        """Ask the configured plugin for the command text

        Raises:
            ConfigurationError: If the plugin is unknown or its options are invalid
        """
        plugin_class = PLUGINS.get(self.config.plugin)
        if plugin_class is None:
            raise ConfigurationError(
                f"Unknown plugin: {self.config.plugin} (available: {', '.join(sorted(PLUGINS))})"
            )

        plugin = plugin_class()
        options = self.config.plugin_options
        if not plugin.validate_options(options):
            raise ConfigurationError(f"Invalid options for plugin {self.config.plugin}")

        return plugin.build_command(options)

    def run(self) -> str:
        """Run the command and return its standard output

        The configured timeout bounds the wait for the command; when it is
        exceeded the connection is closed to terminate the remote session.

        Raises:
            SSHError: Identifying the phase (configuration, dial, handshake,
                session, command) that failed
        """
        conn_info = self.config.connection_info(self.agent_socket)
        command = self.build_command()

        communicator = self.communicator_factory(conn_info)
        stdout = io.BytesIO()
        cmd = RemoteCommand(command, stdout=stdout)

        try:
            communicator.connect()
            communicator.start(cmd)
            cmd.wait(timeout=communicator.timeout())
        except SSHError as e:
            logger.error(f"{e.phase} failed on {conn_info.host}: {e}")
            raise
        finally:
            try:
                communicator.disconnect()
            except SSHError as e:
                logger.warning(f"Error during disconnect: {e}")
            self.output = stdout.getvalue().decode("utf-8", errors="replace")
            if self.output:
                logger.debug(f"Output: {self.output}")

        logger.info(f"Command completed successfully on {conn_info.host}")
        return self.output
