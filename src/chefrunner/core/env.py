"""Environment files and ${VAR} expansion for configuration values"""

import logging
import os
import re
from typing import Any, Dict, Iterable, Mapping

logger = logging.getLogger(__name__)

# ${NAME}, ${NAME:-default}, ${NAME:?message} or $NAME
_VAR_PATTERN = re.compile(
    r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:-|:\?)(?P<arg>[^}]*))?\}"
    r"|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)"
)


class EnvManager:
    """Variables available for expansion: the process environment plus env files"""

    def __init__(self, base: Mapping[str, str] = None):
        """Initialize environment manager

        Args:
            base: Starting variables (defaults to os.environ)
        """
        self.env: Dict[str, str] = dict(os.environ if base is None else base)

    def load_file(self, file_path: str) -> Dict[str, str]:
        """Read KEY=VALUE lines from an env file

        Blank lines and # comments are ignored and surrounding quotes are
        stripped. A missing file yields no variables.
        """
        file_path = os.path.expanduser(file_path)
        variables: Dict[str, str] = {}

        if not os.path.exists(file_path):
            logger.warning(f"Environment file not found: {file_path}")
            return variables

        with open(file_path, "r") as f:
            for line_num, raw in enumerate(f, 1):
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export "):].lstrip()

                key, sep, value = line.partition("=")
                if not sep:
                    logger.warning(f"Invalid line in {file_path}:{line_num}: {line}")
                    continue

                value = value.strip()
                if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                    value = value[1:-1]
                variables[key.strip()] = value

        logger.info(f"Loaded {len(variables)} variables from {file_path}")
        return variables

    def load_files(self, file_paths: Iterable[str]) -> Dict[str, str]:
        """Load several env files into the manager; later files win"""
        merged: Dict[str, str] = {}
        for file_path in file_paths:
            merged.update(self.load_file(file_path))
        self.env.update(merged)
        return merged

    def expand_value(self, value: Any) -> Any:
        """Expand variable references in a string (other values pass through)

        Unknown plain references are left untouched.

        Raises:
            ValueError: If a ${NAME:?message} variable is not set
        """
        if not isinstance(value, str):
            return value

        def replace(match):
            name = match.group("braced") or match.group("bare")
            if name in self.env:
                return self.env[name]
            op = match.group("op")
            if op == ":-":
                return match.group("arg")
            if op == ":?":
                raise ValueError(f"Required variable not set: {name} ({match.group('arg')})")
            return match.group(0)

        return _VAR_PATTERN.sub(replace, value)

    def expand(self, data: Any) -> Any:
        """Recursively expand variables in dicts, lists and strings"""
        if isinstance(data, dict):
            return {key: self.expand(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self.expand(item) for item in data]
        return self.expand_value(data)
