"""Error taxonomy for the SSH communicator"""

from typing import Optional


class SSHError(Exception):
    """Base class for all communicator errors"""

    phase = "ssh"


class ConfigurationError(SSHError):
    """Malformed connection settings"""

    phase = "configuration"


class PrivateKeyError(SSHError):
    """A private key could not be used for authentication"""

    phase = "configuration"

    def __init__(self, hop: str, message: str):
        self.hop = hop
        super().__init__(f"Failed to read key for {hop}: {message}")


class NoKeyFoundError(PrivateKeyError):
    """No PEM block could be decoded from the key material"""

    def __init__(self, hop: str):
        super().__init__(hop, "no key found")


class EncryptedKeyError(PrivateKeyError):
    """The key is passphrase protected"""

    def __init__(self, hop: str):
        super().__init__(
            hop,
            "password protected keys are not supported. Please decrypt the key prior to use.",
        )


class KeyParseError(PrivateKeyError):
    """The PEM block was found but its body could not be parsed"""

    def __init__(self, hop: str, reason):
        self.reason = reason
        super().__init__(hop, f"failed to parse key: {reason}")


class AgentError(SSHError):
    """The SSH agent could not be reached or used"""

    phase = "agent"


class DialError(SSHError):
    """A network leg of the connection failed"""

    phase = "dial"

    def __init__(self, hop: str, reason, message: Optional[str] = None):
        self.hop = hop
        self.reason = reason
        super().__init__(message or f"Error connecting to {hop}: {reason}")


class BastionDialError(DialError):
    """The bastion host itself could not be reached or authenticated"""

    def __init__(self, hop: str, reason):
        super().__init__(hop, reason, f"Error connecting to bastion {hop}: {reason}")


class TunnelDialError(DialError):
    """The bastion was reached but the tunnel to the target failed"""

    def __init__(self, hop: str, bastion: str, reason):
        self.bastion = bastion
        super().__init__(hop, reason, f"Error connecting to {hop} via bastion {bastion}: {reason}")


class HandshakeError(SSHError):
    """SSH handshake or authentication was rejected"""

    phase = "handshake"

    def __init__(self, hop: str, reason, message: Optional[str] = None):
        self.hop = hop
        self.reason = reason
        super().__init__(message or f"SSH handshake with {hop} failed: {reason}")


class BastionHandshakeError(HandshakeError):
    """The bastion was reached but rejected the handshake or authentication"""

    def __init__(self, hop: str, reason):
        super().__init__(hop, reason, f"SSH handshake with bastion {hop} failed: {reason}")


class HostKeyMismatchError(HandshakeError):
    """The presented host key does not match the pinned one"""

    def __init__(self, hop: str, key_type: str, fingerprint: str):
        self.key_type = key_type
        self.fingerprint = fingerprint
        super().__init__(hop, f"host key mismatch ({key_type} {fingerprint} is not trusted)")


class SessionError(SSHError):
    """A session could not be opened or set up"""

    phase = "session"


class CommandError(SSHError):
    """The remote command failed or could not be completed

    Carries the command text, the numeric exit status and the underlying
    error (if any) so callers can tell a failing command from a broken run.
    """

    phase = "command"

    def __init__(self, command: str, exit_status: int, error: Optional[BaseException] = None):
        self.command = command
        self.exit_status = exit_status
        self.error = error
        if error is not None:
            message = f"error executing {command!r}: {error}"
        else:
            message = f"{command!r} exit status: {exit_status}"
        super().__init__(message)


class CommandTimeoutError(SSHError):
    """The remote command did not complete within the allowed time"""

    phase = "command"

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"{command!r} did not complete within {timeout:g}s")
