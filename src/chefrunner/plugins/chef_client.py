"""chef-client run plugin"""

import logging
from typing import Any, Dict

from chefrunner.plugins.base import BasePlugin

logger = logging.getLogger(__name__)


class ChefClientPlugin(BasePlugin):
    """Runs chef-client under sudo, optionally with an explicit run list"""

    def build_command(self, options: Dict[str, Any]) -> str:
        """Build the chef-client command

        The sudo password is piped to ``sudo -S`` verbatim. It is not
        escaped, so it must not contain shell metacharacters.

        Args:
            options: 'sudo_password' and optional 'run_list' (list of entries)

        Returns:
            Command text
        """
        sudo_password = options.get("sudo_password", "")
        run_list = options.get("run_list") or []

        if any(c in sudo_password for c in "'\"`$;|&<>\\ \n"):
            logger.warning("sudo password contains shell metacharacters; it is passed to the shell unescaped")

        command = f"echo {sudo_password} | sudo -S chef-client"
        if run_list:
            command += " -r " + ",".join(run_list)

        return command

    def validate_options(self, options: Dict[str, Any]) -> bool:
        if not isinstance(options, dict):
            logger.error("Options must be a dictionary")
            return False

        run_list = options.get("run_list", [])
        if not isinstance(run_list, (list, tuple)) or not all(isinstance(i, str) for i in run_list):
            logger.error("run_list must be a list of strings")
            return False

        if "sudo_password" in options and not isinstance(options["sudo_password"], str):
            logger.error("sudo_password must be a string")
            return False

        return True
