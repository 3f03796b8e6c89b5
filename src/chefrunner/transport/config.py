"""Per-hop SSH client configuration"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .agent import SSHAgent, connect_to_agent
from .auth import (
    AgentAuth,
    AuthMethod,
    PasswordAuth,
    insecure_ignore_host_key,
    known_host_callback,
    read_private_key,
)
from .base import ConnectionInfo, join_host_port
from .connection import bastion_connect_func, connect_func

logger = logging.getLogger(__name__)


@dataclass
class SSHClientConfig:
    """Authentication and host verification settings for one hop"""

    user: str
    host_key_callback: Callable
    auth: List[AuthMethod] = field(default_factory=list)


@dataclass
class SSHConfig:
    """Everything the communicator needs to (re)connect"""

    config: SSHClientConfig

    # connection returns a new raw connection. The connection in use is
    # closed on disconnect, or when an error occurs.
    connection: Callable

    # no_pty, if true, will not request a pty from the remote end.
    no_pty: bool = False

    ssh_agent: Optional[SSHAgent] = None


def build_ssh_client_config(user: str, host: str, port: int, private_key: str = "",
                            password: str = "", host_key: str = "",
                            ssh_agent: Optional[SSHAgent] = None) -> SSHClientConfig:
    """Build the auth and host verification config for one hop

    Auth methods are offered in the order private key, password, agent.
    Without a host key any server key is accepted (insecure).

    Raises:
        PrivateKeyError: If the private key is missing, encrypted or unparseable
        ConfigurationError: If the host key cannot be parsed
    """
    hop = join_host_port(host, port)

    if host_key:
        host_key_callback = known_host_callback(host, port, host_key)
    else:
        logger.warning(f"No host key configured for {hop}: the server's host key will NOT be verified")
        host_key_callback = insecure_ignore_host_key

    conf = SSHClientConfig(user=user, host_key_callback=host_key_callback)

    if private_key:
        conf.auth.append(read_private_key(private_key, hop))

    if password:
        conf.auth.append(PasswordAuth(password))

    if ssh_agent is not None:
        conf.auth.append(AgentAuth(ssh_agent))

    logger.debug(f"Auth methods for {hop} (in priority order): {' → '.join(m.name for m in conf.auth) or 'none'}")
    return conf


def prepare_ssh_config(conn_info: ConnectionInfo) -> SSHConfig:
    """Build the SSH config, and the bastion hop if one is configured

    No network I/O happens here; dialing is deferred to the returned
    connection factory.
    """
    ssh_agent = connect_to_agent(conn_info.agent, conn_info.agent_socket, conn_info.agent_identity)

    try:
        ssh_conf = build_ssh_client_config(
            user=conn_info.user,
            host=conn_info.host,
            port=conn_info.port,
            private_key=conn_info.private_key,
            password=conn_info.password,
            host_key=conn_info.host_key,
            ssh_agent=ssh_agent,
        )

        connection = connect_func(conn_info.host, conn_info.port)

        if conn_info.bastion_host:
            bastion_conf = build_ssh_client_config(
                user=conn_info.bastion_user,
                host=conn_info.bastion_host,
                port=conn_info.bastion_port,
                private_key=conn_info.bastion_private_key,
                password=conn_info.bastion_password,
                host_key=conn_info.bastion_host_key,
                ssh_agent=ssh_agent,
            )

            connection = bastion_connect_func(
                conn_info.bastion_host, conn_info.bastion_port, bastion_conf,
                conn_info.host, conn_info.port,
            )
    except Exception:
        if ssh_agent is not None:
            ssh_agent.close()
        raise

    return SSHConfig(
        config=ssh_conf,
        connection=connection,
        no_pty=conn_info.no_pty,
        ssh_agent=ssh_agent,
    )
