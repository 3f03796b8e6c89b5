"""SSH agent wrapper with identity-biased signer ordering"""

import base64
import logging
import os
from typing import List, Optional, Sequence

import paramiko

from .auth import load_private_key
from .errors import AgentError

logger = logging.getLogger(__name__)


class SSHAgent:
    """A live SSH agent connection plus the identity to prefer

    The agent transport is owned by this object and is closed exactly once,
    by ``close()``.
    """

    def __init__(self, agent, identity: str = ""):
        """Initialize agent handle

        Args:
            agent: Agent exposing get_keys() and close() (normally paramiko.Agent)
            identity: Key file path or key comment to try first
        """
        self.agent = agent
        self.identity = identity or ""
        self._closed = False

    def signers(self) -> List[paramiko.PKey]:
        """Return the agent's keys, preferred identity first"""
        if self._closed:
            return []
        return sort_signers(list(self.agent.get_keys()), self.identity)

    def close(self) -> None:
        """Close the agent transport (idempotent)"""
        if self._closed:
            return
        self._closed = True
        try:
            self.agent.close()
        except Exception as e:
            raise AgentError(f"Failed to close SSH agent connection: {e}") from e


def connect_to_agent(use_agent: bool, agent_socket: Optional[str], identity: str = "") -> Optional[SSHAgent]:
    """Open the SSH agent if it is enabled

    Args:
        use_agent: Resolved agent flag from the connection descriptor
        agent_socket: Agent endpoint discovered in the environment
        identity: Preferred agent identity

    Returns:
        SSHAgent, or None if the agent is disabled

    Raises:
        AgentError: If the agent is enabled but its endpoint is unreachable, or
            is not the socket SSH_AUTH_SOCK names
    """
    if not use_agent:
        return None

    if not agent_socket or not os.path.exists(agent_socket):
        raise AgentError(f"SSH agent requested but no agent is reachable (SSH_AUTH_SOCK={agent_socket!r})")

    # paramiko.Agent only ever opens the socket named by SSH_AUTH_SOCK
    env_socket = os.environ.get("SSH_AUTH_SOCK")
    if agent_socket != env_socket:
        raise AgentError(f"SSH agent socket {agent_socket!r} does not match SSH_AUTH_SOCK={env_socket!r}")

    try:
        agent = paramiko.Agent()
    except paramiko.SSHException as e:
        raise AgentError(f"Failed to connect to SSH agent at {agent_socket}: {e}") from e

    logger.debug(f"Connected to SSH agent at {agent_socket} ({len(agent.get_keys())} key(s) loaded)")
    return SSHAgent(agent, identity)


def id_key_data(identity: str) -> List[bytes]:
    """Read the identity file and its .pub sibling, skipping anything unreadable"""
    id_path = os.path.abspath(os.path.expanduser(identity))

    paths = [id_path]
    if not id_path.endswith(".pub"):
        paths.append(id_path + ".pub")

    file_data = []
    for path in paths:
        try:
            with open(path, "rb") as f:
                file_data.append(f.read())
            logger.debug(f"found identity data at {path!r}")
        except OSError as e:
            logger.debug(f"error reading {path!r}: {e}")

    return file_data


def _parse_authorized_key(data: bytes) -> paramiko.PKey:
    fields = data.decode("utf-8").split()
    if len(fields) < 2:
        raise ValueError("not an authorized key line")
    return paramiko.PKey.from_type_string(fields[0], base64.b64decode(fields[1]))


def _parse_public_key(data: bytes) -> paramiko.PKey:
    key_type = paramiko.Message(data).get_text()
    return paramiko.PKey.from_type_string(key_type, data)


def find_id_public_key(identity: str) -> Optional[bytes]:
    """Resolve an identity to a public key in wire format

    Each blob read for the identity is tried as a private key, then a bare
    public key, then an authorized key line.

    Returns:
        Wire-encoded public key, or None when nothing usable is found
    """
    for data in id_key_data(identity):
        try:
            key = load_private_key(data.decode("utf-8"))
            logger.debug("parsed id private key")
            return key.asbytes()
        except Exception:
            pass

        try:
            key = _parse_public_key(data)
            logger.debug("parsed id public key")
            return key.asbytes()
        except Exception:
            pass

        try:
            key = _parse_authorized_key(data)
            logger.debug("parsed id authorized key")
            return key.asbytes()
        except Exception:
            pass

    return None


def _comment(signer) -> str:
    return getattr(signer, "comment", None) or ""


def sort_signers(signers: Sequence, identity: str) -> list:
    """Move the signer matching the identity to the head of the list

    Servers may drop the connection after too many rejected keys, so the
    intended key is offered first. An exact match (same public key, or a
    comment equal to the identity) is moved to the front on its own. Failing
    that, keys whose comment ends with the identity are moved forward in
    encountered order, since the agent may have loaded the key by its full
    path while the configuration names the file only.

    Known limitation: when several keys share the suffix, all of them are
    moved forward and their agent order decides which is tried first.
    """
    signers = list(signers)
    if not identity or len(signers) < 2:
        return signers

    id_pk = find_id_public_key(identity)

    for i, signer in enumerate(signers):
        if (id_pk is not None and signer.asbytes() == id_pk) or _comment(signer) == identity:
            return [signer] + signers[:i] + signers[i + 1:]

    close = [s for s in signers if _comment(s).endswith(identity)]
    rest = [s for s in signers if not _comment(s).endswith(identity)]
    ordered = close + rest

    logger.debug(f"agent signer order: {[_comment(s) for s in ordered]}")
    return ordered
