"""Authentication methods, host key verification and the SSH handshake"""

import base64
import binascii
import hashlib
import io
import logging
import os
import re
import tempfile
from collections import namedtuple
from typing import Optional

import paramiko
from paramiko.hostkeys import InvalidHostKey

from .base import join_host_port
from .errors import (
    ConfigurationError,
    EncryptedKeyError,
    HandshakeError,
    HostKeyMismatchError,
    KeyParseError,
    NoKeyFoundError,
)

logger = logging.getLogger(__name__)

# Handshake timeout in seconds
HANDSHAKE_TIMEOUT = 15.0

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)

_RSA_ALGORITHMS = ("rsa-sha2-512", "rsa-sha2-256", "ssh-rsa")

_PEM_BLOCK = re.compile(r"-----BEGIN ([^-\r\n]+)-----\r?\n(.*?)-----END \1-----", re.S)

PemBlock = namedtuple("PemBlock", ["type", "headers", "data"])


def decode_pem(text: str) -> Optional[PemBlock]:
    """Decode the first PEM block in text

    Returns:
        PemBlock with its type, RFC 1421 headers and payload, or None if no
        valid block is found
    """
    match = _PEM_BLOCK.search(text)
    if not match:
        return None

    lines = match.group(2).splitlines()
    headers = {}
    if lines and ":" in lines[0]:
        while lines and lines[0].strip():
            key, _, value = lines.pop(0).partition(":")
            headers[key.strip()] = value.strip()

    try:
        data = base64.b64decode("".join(line.strip() for line in lines), validate=True)
    except (binascii.Error, ValueError):
        return None

    return PemBlock(match.group(1), headers, data)


def load_private_key(text: str) -> paramiko.PKey:
    """Parse an unencrypted private key of any supported type

    Raises:
        paramiko.PasswordRequiredException: If the key needs a passphrase
        paramiko.SSHException: If no key type can parse the material
    """
    last_error = None
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(text))
        except paramiko.PasswordRequiredException:
            raise
        except Exception as e:
            last_error = e

    raise paramiko.SSHException(f"unsupported private key: {last_error}")


def read_private_key(private_key: str, hop: str) -> "PublicKeyAuth":
    """Turn PEM key material into a public key auth method

    The key is decoded locally first so an encrypted key fails fast with a
    clear error instead of prompting for a passphrase.

    Args:
        private_key: PEM encoded private key
        hop: Address of the hop the key is for (used in errors)

    Raises:
        NoKeyFoundError: No PEM block could be decoded
        EncryptedKeyError: The key is passphrase protected
        KeyParseError: The key body could not be parsed
    """
    block = decode_pem(private_key)
    if block is None:
        raise NoKeyFoundError(hop)
    if block.headers.get("Proc-Type") == "4,ENCRYPTED":
        raise EncryptedKeyError(hop)

    try:
        key = load_private_key(private_key)
    except paramiko.PasswordRequiredException:
        raise EncryptedKeyError(hop)
    except paramiko.SSHException as e:
        raise KeyParseError(hop, e) from e

    return PublicKeyAuth(key)


class AuthMethod:
    """One way of proving identity to the server"""

    name = "none"

    def authenticate(self, transport: paramiko.Transport, username: str) -> None:
        """Attempt authentication; raise paramiko.AuthenticationException on rejection"""
        raise NotImplementedError


class PublicKeyAuth(AuthMethod):
    name = "publickey"

    def __init__(self, key: paramiko.PKey):
        self.key = key

    def authenticate(self, transport, username):
        transport.auth_publickey(username, self.key)


class PasswordAuth(AuthMethod):
    name = "password"

    def __init__(self, password: str):
        self.password = password

    def authenticate(self, transport, username):
        transport.auth_password(username, self.password)


class AgentAuth(AuthMethod):
    """Offer each agent key in turn, preferred identity first"""

    name = "agent"

    def __init__(self, ssh_agent):
        self.ssh_agent = ssh_agent

    def authenticate(self, transport, username):
        signers = self.ssh_agent.signers()
        for key in signers:
            try:
                transport.auth_publickey(username, key)
                return
            except paramiko.BadAuthenticationType:
                raise
            except paramiko.AuthenticationException:
                logger.debug(f"agent key {getattr(key, 'comment', '') or key.get_name()} rejected")

        raise paramiko.AuthenticationException(f"none of the {len(signers)} agent key(s) were accepted")


def fingerprint(key: paramiko.PKey) -> str:
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def known_hosts_name(host: str, port: int) -> str:
    """Host name as written in a known_hosts file"""
    if port == 22:
        return host
    return f"[{host}]:{port}"


def insecure_ignore_host_key(host: str, port: int, key: paramiko.PKey) -> None:
    """Accept any host key

    Used when no host key is configured. This is insecure: a man in the
    middle cannot be detected. Every acceptance is logged as a warning.
    """
    logger.warning(
        f"Host key verification is DISABLED: accepting {key.get_name()} key "
        f"{fingerprint(key)} for {join_host_port(host, port)} without checking"
    )


class KnownHostCallback:
    """Verify the server key against keys trusted for exactly one host"""

    def __init__(self, host_keys: paramiko.HostKeys, name: str):
        self.host_keys = host_keys
        self.name = name

    @property
    def key_types(self) -> list:
        """Key types pinned for the host, in known_hosts order"""
        keys = self.host_keys.lookup(self.name)
        return list(keys.keys()) if keys else []

    def __call__(self, host: str, port: int, key: paramiko.PKey) -> None:
        if not self.host_keys.check(known_hosts_name(host, port), key):
            raise HostKeyMismatchError(join_host_port(host, port), key.get_name(), fingerprint(key))
        logger.debug(f"host key for {join_host_port(host, port)} verified")


def known_host_callback(host: str, port: int, host_key: str) -> KnownHostCallback:
    """Pin a host key for one host

    The key is staged in a temporary known_hosts file that is removed as
    soon as it has been loaded.

    Args:
        host: Host the key belongs to
        port: Port the host is reached on
        host_key: Public key as "<type> <base64>"

    Raises:
        ConfigurationError: If the host key cannot be parsed
    """
    name = known_hosts_name(host, port)

    fd, path = tempfile.mkstemp(prefix="chefrunner_known_hosts")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(f"{name} {host_key.strip()}\n")
        host_keys = paramiko.HostKeys(path)
    except (OSError, InvalidHostKey) as e:
        raise ConfigurationError(f"failed to load host key for {name}: {e}") from e
    finally:
        if os.path.exists(path):
            os.remove(path)

    if host_keys.lookup(name) is None:
        raise ConfigurationError(f"invalid host key for {name}: {host_key!r}")

    return KnownHostCallback(host_keys, name)


def prefer_host_key_types(transport: paramiko.Transport, pinned: list) -> None:
    """Move pinned host key types to the front of the negotiation order

    The server then signs with the pinned key even when it also holds
    ed25519 or ecdsa keys. An ssh-rsa key covers every RSA signature
    algorithm.
    """
    options = transport.get_security_options()
    available = list(options.key_types)

    preferred = []
    for key_type in pinned:
        names = _RSA_ALGORITHMS if key_type == "ssh-rsa" else (key_type,)
        preferred.extend(n for n in names if n in available and n not in preferred)

    if preferred:
        options.key_types = preferred + [t for t in available if t not in preferred]


def authenticate(transport: paramiko.Transport, config, hop: str) -> None:
    """Try the configured auth methods in order until one succeeds

    Raises:
        HandshakeError: If every method was rejected
    """
    if not config.auth:
        raise HandshakeError(hop, "no authentication methods configured")

    attempted = []
    for method in config.auth:
        attempted.append(method.name)
        try:
            method.authenticate(transport, config.user)
        except paramiko.BadAuthenticationType as e:
            logger.debug(f"{method.name} auth not allowed by {hop} (allowed: {e.allowed_types})")
            continue
        except paramiko.AuthenticationException as e:
            logger.debug(f"{method.name} auth rejected by {hop}: {e}")
            continue

        if transport.is_authenticated():
            logger.debug(f"Authenticated to {hop} as {config.user} using {method.name}")
            return

    raise HandshakeError(hop, f"unable to authenticate as {config.user!r}, attempted methods {attempted}")


def new_client_conn(sock, host: str, port: int, config) -> paramiko.Transport:
    """Run the SSH handshake over an established connection

    Args:
        sock: Raw connection (socket or socket-like channel)
        host: Host name used for host key verification
        port: Port used for host key verification
        config: SSHClientConfig for this hop

    Returns:
        Authenticated paramiko Transport

    Raises:
        HandshakeError: On negotiation failure, host key mismatch or rejected auth
    """
    hop = join_host_port(host, port)
    transport = paramiko.Transport(sock)
    if isinstance(config.host_key_callback, KnownHostCallback):
        prefer_host_key_types(transport, config.host_key_callback.key_types)
    try:
        transport.start_client(timeout=HANDSHAKE_TIMEOUT)
        config.host_key_callback(host, port, transport.get_remote_server_key())
        authenticate(transport, config, hop)
    except HandshakeError:
        transport.close()
        raise
    except (paramiko.SSHException, EOFError, OSError) as e:
        transport.close()
        raise HandshakeError(hop, e) from e

    return transport
