"""Network connection factories: direct TCP and tunneled through a bastion"""

import logging
import socket
from typing import Callable

import paramiko

from .auth import new_client_conn
from .base import join_host_port
from .errors import BastionDialError, BastionHandshakeError, DialError, HandshakeError, TunnelDialError

logger = logging.getLogger(__name__)

# Dial timeout in seconds
DIAL_TIMEOUT = 15.0


def _dial(host: str, port: int) -> socket.socket:
    sock = socket.create_connection((host, port), timeout=DIAL_TIMEOUT)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    return sock


def connect_func(host: str, port: int) -> Callable[[], socket.socket]:
    """Return a function that dials host:port directly

    Nothing is dialed until the returned function is called.

    Raises (from the returned function):
        DialError: If the TCP connection cannot be established
    """
    def connect() -> socket.socket:
        try:
            return _dial(host, port)
        except OSError as e:
            raise DialError(join_host_port(host, port), e) from e

    return connect


class BastionConnection:
    """A tunneled channel that also owns the bastion client it runs over

    Socket operations are delegated to the channel. Closing closes the
    channel and then the bastion; both are attempted, and a channel close
    error is the one reported.
    """

    def __init__(self, channel: paramiko.Channel, bastion: paramiko.Transport):
        self.channel = channel
        self.bastion = bastion
        self._closed = False

    def __getattr__(self, name):
        return getattr(self.channel, name)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        tunnel_error = None
        try:
            self.channel.close()
        except Exception as e:
            tunnel_error = e

        try:
            self.bastion.close()
        except Exception:
            if tunnel_error is None:
                raise

        if tunnel_error is not None:
            raise tunnel_error


def bastion_connect_func(bastion_host: str, bastion_port: int, bastion_conf,
                         host: str, port: int) -> Callable[[], BastionConnection]:
    """Return a function that reaches host:port through a bastion

    The returned function dials and authenticates the bastion, then opens a
    direct-tcpip channel from it to the target.

    Raises (from the returned function):
        BastionDialError: If the bastion cannot be reached
        BastionHandshakeError: If the bastion rejects the handshake or authentication
        TunnelDialError: If the bastion cannot reach the target
    """
    bastion_addr = join_host_port(bastion_host, bastion_port)
    addr = join_host_port(host, port)

    def connect() -> BastionConnection:
        logger.debug(f"Connecting to bastion: {bastion_addr}")
        try:
            sock = _dial(bastion_host, bastion_port)
        except OSError as e:
            raise BastionDialError(bastion_addr, e) from e

        try:
            bastion = new_client_conn(sock, bastion_host, bastion_port, bastion_conf)
        except HandshakeError as e:
            sock.close()
            raise BastionHandshakeError(bastion_addr, e.reason) from e

        logger.debug(f"Connecting via bastion ({bastion_addr}) to host: {addr}")
        try:
            channel = bastion.open_channel(
                "direct-tcpip", (host, port), ("127.0.0.1", 0), timeout=DIAL_TIMEOUT
            )
        except (paramiko.SSHException, OSError, EOFError) as e:
            bastion.close()
            raise TunnelDialError(addr, bastion_addr, e) from e

        return BastionConnection(channel, bastion)

    return connect
