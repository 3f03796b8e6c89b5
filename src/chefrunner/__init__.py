"""Run chef-client (or any command) on a remote host over SSH, optionally via a bastion"""

__version__ = "0.1.0"
