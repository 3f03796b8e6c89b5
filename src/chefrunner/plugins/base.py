"""Abstract base class for command plugins"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class BasePlugin(ABC):
    """Abstract base for plugins that produce the remote command text"""

    @abstractmethod
    def build_command(self, options: Dict[str, Any]) -> str:
        """Build the command to run on the remote host

        Args:
            options: Plugin-specific options

        Returns:
            Command text
        """
        pass

    @abstractmethod
    def validate_options(self, options: Dict[str, Any]) -> bool:
        """Validate plugin options

        Args:
            options: Options to validate

        Returns:
            True if options are valid, False otherwise
        """
        pass
