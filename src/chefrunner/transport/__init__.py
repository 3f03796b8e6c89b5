"""SSH transport: connection descriptor, communicator and remote commands"""

from .base import Communicator, ConnectionInfo
from .cmd import RemoteCommand
from .ssh import SSHCommunicator

__all__ = ["Communicator", "ConnectionInfo", "RemoteCommand", "SSHCommunicator"]
