"""Pytest configuration and shared fixtures"""

import io
import tempfile
import threading
from unittest.mock import MagicMock

import paramiko
import pytest

from chefrunner.transport.base import ConnectionInfo
from chefrunner.transport.config import SSHClientConfig, SSHConfig


class FakeChannel:
    """Stand-in for a paramiko session channel with canned output"""

    def __init__(self, stdout=b"", stderr=b"", exit_status=0):
        self._stdout = bytearray(stdout)
        self._stderr = bytearray(stderr)
        self.exit_status = exit_status
        self.pty = None
        self.command = None
        self.sent = b""
        self.write_shut = False
        self.closed = False

    def get_pty(self, term="vt100", width=80, height=24):
        self.pty = (term, width, height)

    def exec_command(self, command):
        self.command = command

    def sendall(self, data):
        self.sent += data

    def shutdown_write(self):
        self.write_shut = True

    def recv(self, nbytes):
        chunk = bytes(self._stdout[:nbytes])
        del self._stdout[:nbytes]
        return chunk

    def recv_stderr(self, nbytes):
        chunk = bytes(self._stderr[:nbytes])
        del self._stderr[:nbytes]
        return chunk

    def recv_exit_status(self):
        return self.exit_status

    def close(self):
        self.closed = True


class OutputFirstChannel(FakeChannel):
    """Channel that takes no input until its output has been read, and
    reports end of output only once its input is closed"""

    def __init__(self, stdout=b"", stderr=b"", exit_status=0):
        super().__init__(stdout, stderr, exit_status)
        self.drained = threading.Event()
        self.input_done = threading.Event()

    def sendall(self, data):
        if not self.drained.wait(5):
            raise OSError("send window exhausted")
        super().sendall(data)

    def shutdown_write(self):
        super().shutdown_write()
        self.input_done.set()

    def recv(self, nbytes):
        chunk = super().recv(nbytes)
        if not chunk:
            self.drained.set()
            self.input_done.wait(5)
        return chunk


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(scope="session")
def rsa_key():
    """A freshly generated RSA key"""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    """A second RSA key, distinct from rsa_key"""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def rsa_pem(rsa_key):
    """rsa_key as unencrypted PEM text"""
    buf = io.StringIO()
    rsa_key.write_private_key(buf)
    return buf.getvalue()


@pytest.fixture
def conn_info():
    """Password-only descriptor without a bastion"""
    return ConnectionInfo(host="example.com", user="deploy", password="secret", agent=False)


@pytest.fixture
def ssh_config():
    """Prepared SSH config with a mock connection factory"""
    client_config = SSHClientConfig(user="deploy", host_key_callback=MagicMock())
    return SSHConfig(config=client_config, connection=MagicMock(name="connection"))


@pytest.fixture
def fake_channel():
    return FakeChannel


@pytest.fixture
def output_first_channel():
    return OutputFirstChannel
