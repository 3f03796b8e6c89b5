"""Generic SSH command plugin"""

import logging
from typing import Any, Dict

from chefrunner.plugins.base import BasePlugin

logger = logging.getLogger(__name__)


class GenericSSHPlugin(BasePlugin):
    """Plugin for running an arbitrary command, optionally under sudo"""

    def build_command(self, options: Dict[str, Any]) -> str:
        """Build the custom command

        Args:
            options: 'command' and optional 'use_sudo', 'sudo_password'

        Returns:
            Command text
        """
        command = options.get("command", "").strip()
        use_sudo = options.get("use_sudo", False)
        sudo_password = options.get("sudo_password")

        if use_sudo:
            if sudo_password:
                command = f"echo '{sudo_password}' | sudo -S -p '' {command}"
            else:
                command = f"sudo {command}"

        return command

    def validate_options(self, options: Dict[str, Any]) -> bool:
        """Validate GenericSSH options

        Args:
            options: Options to validate

        Returns:
            True if options are valid
        """
        if not isinstance(options, dict):
            logger.error("Options must be a dictionary")
            return False

        if not isinstance(options.get("command"), str) or not options["command"].strip():
            logger.error("'command' is required in options")
            return False

        if "use_sudo" in options and not isinstance(options["use_sudo"], bool):
            logger.error("use_sudo must be a boolean")
            return False

        if options.get("sudo_password") is not None and not isinstance(options["sudo_password"], str):
            logger.error("sudo_password must be a string")
            return False

        return True
