"""Connection descriptor and abstract communicator"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# DefaultUser is used if there is no user given
DEFAULT_USER = "centos"

# DefaultPort is used if there is no port given
DEFAULT_PORT = 22

# DefaultTimeout is used if there is no timeout given (seconds)
DEFAULT_TIMEOUT = 5 * 60.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration string such as "90s", "5m" or "1h30m"

    Args:
        value: Duration in Go notation (sequence of number+unit pairs)

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the string is not a valid duration
    """
    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")

    return sign * total


def safe_duration(value: Optional[str], default: float) -> float:
    """Return the parsed duration, or the default if it is unparseable or not positive"""
    if not value:
        return default
    try:
        seconds = parse_duration(value)
    except ValueError:
        logger.warning(f"Invalid duration '{value}', using default of {default:g}s")
        return default

    if seconds <= 0:
        logger.warning(f"Non-positive duration '{value}', using default of {default:g}s")
        return default
    return seconds


def resolve_agent(explicit: Optional[bool], agent_socket: Optional[str]) -> bool:
    """Decide whether the SSH agent should be used

    An explicit True/False always wins. When the flag was absent (None) the
    agent is enabled only if an agent socket was discovered.
    """
    if explicit is not None:
        return bool(explicit)
    return bool(agent_socket)


def join_host_port(host: str, port: int) -> str:
    """Format a host and port as a dialable address"""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass(frozen=True)
class ConnectionInfo:
    """Typed, validated view of all connection parameters

    Defaults are applied at construction: empty user and port fall back to
    DEFAULT_USER and DEFAULT_PORT, the timeout string is resolved into
    ``timeout_val`` seconds, and when a bastion host is set its unset
    credentials inherit the primary hop's values. ``agent`` may be passed
    as None to mean "not specified"; it is resolved against
    ``agent_socket`` (the socket found in the environment, kept for opening the agent)
    exactly once.
    """

    host: str = ""
    user: str = ""
    password: str = ""
    private_key: str = ""
    host_key: str = ""
    port: int = 0
    agent: Optional[bool] = None
    timeout: str = ""

    bastion_user: str = ""
    bastion_password: str = ""
    bastion_private_key: str = ""
    bastion_host: str = ""
    bastion_host_key: str = ""
    bastion_port: int = 0

    agent_identity: str = ""
    no_pty: bool = False

    agent_socket: Optional[str] = field(default=None, repr=False)
    timeout_val: float = field(init=False, default=DEFAULT_TIMEOUT)

    def __post_init__(self):
        set_ = object.__setattr__

        set_(self, "agent", resolve_agent(self.agent, self.agent_socket))

        if not self.user:
            set_(self, "user", DEFAULT_USER)
        if not self.port:
            set_(self, "port", DEFAULT_PORT)
        set_(self, "port", int(self.port))

        set_(self, "timeout_val", safe_duration(self.timeout, DEFAULT_TIMEOUT))

        # Default all bastion attributes to their non-bastion counterparts
        if self.bastion_host:
            if not self.bastion_user:
                set_(self, "bastion_user", self.user)
            if not self.bastion_password:
                set_(self, "bastion_password", self.password)
            if not self.bastion_private_key:
                set_(self, "bastion_private_key", self.private_key)
            if not self.bastion_port:
                set_(self, "bastion_port", self.port)
            set_(self, "bastion_port", int(self.bastion_port))

    @property
    def address(self) -> str:
        return join_host_port(self.host, self.port)

    @property
    def bastion_address(self) -> Optional[str]:
        if not self.bastion_host:
            return None
        return join_host_port(self.bastion_host, self.bastion_port)


class Communicator(ABC):
    """Abstract base for remote command communicators"""

    @abstractmethod
    def connect(self) -> None:
        """Set up the connection to the remote host"""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Terminate the connection"""
        pass

    @abstractmethod
    def timeout(self) -> float:
        """Return the configured timeout in seconds"""
        pass

    @abstractmethod
    def start(self, cmd) -> None:
        """Execute a remote command in a new session

        Args:
            cmd: RemoteCommand to run; completion is observed via cmd.wait()
        """
        pass
