"""Configuration management"""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml

from chefrunner.core.env import EnvManager
from chefrunner.transport.base import ConnectionInfo
from chefrunner.transport.errors import ConfigurationError

logger = logging.getLogger(__name__)

_BASTION_KEYS = ("user", "password", "private_key", "host", "host_key", "port")

_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off")


def _to_bool(value: Any) -> Optional[bool]:
    """Interpret a config value as a tri-state boolean (None = not set)"""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ConfigurationError(f"Invalid boolean value: {value!r}")


def _to_port(name: str, value: Any) -> int:
    if value in (None, ""):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid {name}: {value!r} is not a port number")


class Config:
    """Configuration for a chefrunner run

    Values come from an optional YAML file (with env file loading and
    ${VAR} expansion) overlaid with explicit overrides such as CLI flags.
    Overrides that are None are treated as "not given".
    """

    def __init__(self, config_file: Optional[str] = None, env_files: Optional[List[str]] = None,
                 overrides: Optional[Mapping[str, Any]] = None, environ: Optional[Mapping[str, str]] = None):
        """Load configuration

        Args:
            config_file: Path to configuration YAML file
            env_files: Environment files to load before expansion
            overrides: Values that take precedence over the file (e.g. CLI options)
            environ: Base environment (defaults to os.environ)
        """
        self.config_file = config_file
        self.env_manager = EnvManager(environ)
        self.env_files = env_files or []
        self.data: Dict[str, Any] = {}

        if self.env_files:
            self.env_manager.load_files(self.env_files)

        if config_file:
            self.load()

        for key, value in (overrides or {}).items():
            if value is None or value == () or value == []:
                continue
            self.data[key] = value

    def load(self) -> None:
        """Load configuration from file and apply environment variable expansion"""
        try:
            with open(self.config_file, "r") as f:
                data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {self.config_file}")
        except FileNotFoundError:
            logger.error(f"Configuration file not found: {self.config_file}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse configuration file: {e}")
            raise

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {self.config_file} must contain a mapping")

        self._load_env_config(data)

        try:
            data = self.env_manager.expand(data)
            logger.debug("Applied environment variable expansion to configuration")
        except ValueError as e:
            logger.error(f"Environment variable expansion failed: {e}")
            raise ConfigurationError(str(e)) from e

        self.data = self._flatten(data)

    def _load_env_config(self, data: Dict[str, Any]) -> None:
        """Load variables from the env_from and env properties"""
        env_from = data.pop("env_from", [])
        if isinstance(env_from, str):
            env_from = [env_from]
        self.env_manager.load_files(env_from)

        env_direct = data.pop("env", {}) or {}
        if isinstance(env_direct, list):
            env_direct = dict(item.split("=", 1) for item in env_direct if "=" in item)

        if env_direct:
            self.env_manager.env.update({k: str(v) for k, v in env_direct.items()})
            logger.info(f"Loaded {len(env_direct)} direct environment variables")

    @staticmethod
    def _flatten(data: Dict[str, Any]) -> Dict[str, Any]:
        """Turn a nested bastion: mapping into bastion_* keys"""
        flat = {k.replace("-", "_"): v for k, v in data.items() if k != "bastion"}
        bastion = data.get("bastion") or {}
        if not isinstance(bastion, dict):
            raise ConfigurationError("'bastion' must be a mapping")
        for key in _BASTION_KEYS:
            if key in bastion and f"bastion_{key}" not in flat:
                flat[f"bastion_{key}"] = bastion[key]
        return flat

    def _str(self, key: str) -> str:
        value = self.data.get(key)
        return "" if value is None else str(value)

    @property
    def host(self) -> str:
        return self._str("host")

    @property
    def user(self) -> str:
        return self._str("user")

    @property
    def password(self) -> str:
        return self._str("password")

    @property
    def private_key(self) -> str:
        """PEM private key, read from private_key_file when not given inline"""
        key = self._str("private_key")
        if key:
            return key

        key_file = self._str("private_key_file")
        if not key_file:
            return ""

        expanded = os.path.expanduser(key_file)
        if not os.path.exists(expanded):
            logger.warning(f"SSH key file not found: {expanded}, will use other auth methods if available")
            return ""
        with open(expanded, "r") as f:
            return f.read()

    @property
    def host_key(self) -> str:
        return self._str("host_key")

    @property
    def port(self) -> int:
        return _to_port("port", self.data.get("port"))

    @property
    def agent(self) -> Optional[bool]:
        """Explicit agent flag, or None when it was not given"""
        return _to_bool(self.data.get("agent"))

    @property
    def timeout(self) -> str:
        return self._str("timeout")

    @property
    def bastion_host(self) -> str:
        return self._str("bastion_host")

    @property
    def bastion_port(self) -> int:
        return _to_port("bastion_port", self.data.get("bastion_port"))

    @property
    def agent_identity(self) -> str:
        return self._str("agent_identity")

    @property
    def no_pty(self) -> bool:
        return bool(_to_bool(self.data.get("no_pty")))

    @property
    def run_list(self) -> List[str]:
        """Run list entries; comma separated strings are split"""
        value = self.data.get("run_list") or []
        if isinstance(value, str):
            value = [value]
        items = []
        for entry in value:
            items.extend(part.strip() for part in str(entry).split(",") if part.strip())
        return items

    @property
    def sudo_password(self) -> str:
        return self._str("sudo_password")

    @property
    def plugin(self) -> str:
        return self._str("plugin") or "chef-client"

    @property
    def plugin_options(self) -> Dict[str, Any]:
        """Options handed to the command plugin"""
        options = {
            "run_list": self.run_list,
            "sudo_password": self.sudo_password,
        }
        if "command" in self.data:
            options["command"] = self._str("command")
        if "use_sudo" in self.data:
            options["use_sudo"] = bool(_to_bool(self.data.get("use_sudo")))
        return options

    def connection_info(self, agent_socket: Optional[str] = None) -> ConnectionInfo:
        """Build the connection descriptor

        Args:
            agent_socket: SSH agent endpoint discovered in the environment
        """
        return ConnectionInfo(
            host=self.host,
            user=self.user,
            password=self.password,
            private_key=self.private_key,
            host_key=self.host_key,
            port=self.port,
            agent=self.agent,
            timeout=self.timeout,
            bastion_user=self._str("bastion_user"),
            bastion_password=self._str("bastion_password"),
            bastion_private_key=self._str("bastion_private_key"),
            bastion_host=self.bastion_host,
            bastion_host_key=self._str("bastion_host_key"),
            bastion_port=self.bastion_port,
            agent_identity=self.agent_identity,
            no_pty=self.no_pty,
            agent_socket=agent_socket,
        )

    def validate(self, agent_socket: Optional[str] = None) -> bool:
        """Validate configuration

        Returns:
            True if configuration is valid
        """
        if not self.host:
            logger.error("No host specified")
            return False

        try:
            info = self.connection_info(agent_socket)
        except ConfigurationError as e:
            logger.error(str(e))
            return False

        if not (info.password or info.private_key or info.agent):
            logger.error(f"No authentication methods configured for {info.host}")
            return False

        return True
