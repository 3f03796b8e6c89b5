"""Command plugins: produce the remote command text"""

from .chef_client import ChefClientPlugin
from .generic_ssh import GenericSSHPlugin

PLUGINS = {
    "chef-client": ChefClientPlugin,
    "generic-ssh": GenericSSHPlugin,
}

__all__ = ["ChefClientPlugin", "GenericSSHPlugin", "PLUGINS"]
