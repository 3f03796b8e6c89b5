"""CLI interface for chefrunner"""

import logging
import os
import sys
import warnings

import click

from chefrunner.core.config import Config
from chefrunner.core.runner import Runner
from chefrunner.plugins import PLUGINS
from chefrunner.transport.errors import SSHError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def connection_options(func):
    """Options describing the target host, the bastion and authentication"""
    options = [
        click.option("--user", envvar="PLUGIN_USER", help="SSH user name"),
        click.option("--password", envvar="PLUGIN_PASSWORD", help="SSH password"),
        click.option("--private-key", envvar=["PLUGIN_PRIVATE_KEY", "SSH_PRIVATE_KEY"],
                     help="SSH private key (PEM text)"),
        click.option("--private-key-file", type=click.Path(), help="Path to SSH private key"),
        click.option("--host", envvar="PLUGIN_HOST", help="SSH host"),
        click.option("--host-key", envvar=["PLUGIN_HOST_KEY", "SSH_HOST_KEY"],
                     help="Expected SSH host public key; without it the host key is NOT verified"),
        click.option("--port", type=int, envvar="PLUGIN_PORT", help="SSH port [default: 22]"),
        click.option("--agent/--no-agent", default=None, envvar="PLUGIN_AGENT",
                     help="Use the SSH agent [default: on when SSH_AUTH_SOCK is set]"),
        click.option("--timeout", envvar="PLUGIN_TIMEOUT", help="Command timeout, e.g. 90s or 10m [default: 5m]"),
        click.option("--bastion-user", envvar="PLUGIN_BASTION_USER", help="Bastion user name"),
        click.option("--bastion-password", envvar="PLUGIN_BASTION_PASSWORD", help="Bastion password"),
        click.option("--bastion-private-key", envvar=["PLUGIN_BASTION_PRIVATE_KEY", "SSH_BASTION_PRIVATE_KEY"],
                     help="Bastion private key (PEM text)"),
        click.option("--bastion-host", envvar="PLUGIN_BASTION_HOST", help="Bastion (jump) host"),
        click.option("--bastion-host-key", envvar=["PLUGIN_BASTION_HOST_KEY", "SSH_BASTION_HOST_KEY"],
                     help="Expected bastion host public key"),
        click.option("--bastion-port", type=int, envvar="PLUGIN_BASTION_PORT", help="Bastion port"),
        click.option("--agent-identity", envvar=["PLUGIN_AGENT_IDENTITY", "SSH_AGENT_IDENTITY"],
                     help="Agent key (file path or comment) to offer first"),
        click.option("--no-pty", is_flag=True, help="Do not request a pseudo-terminal"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def command_options(func):
    """Options describing the remote command"""
    options = [
        click.option("--plugin", type=click.Choice(sorted(PLUGINS)),
                     help="Command plugin [default: chef-client]"),
        click.option("--run-list", multiple=True, envvar="PLUGIN_RUN_LIST",
                     help="chef-client run list entry (comma separated, can be used multiple times)"),
        click.option("--sudo-password", envvar=["PLUGIN_SUDO_PASSWORD", "CHEF_CLIENT_SUDO_PASSWORD", "SUDO_PASSWORD"],
                     help="sudo password piped to the remote command"),
        click.option("--command", "command_text", help="Command for the generic-ssh plugin"),
        click.option("-c", "--config", type=click.Path(exists=True), help="Path to configuration YAML file"),
        click.option("-e", "--env-file", multiple=True, type=click.Path(exists=True),
                     help="Load environment variables from file (can be used multiple times)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_config(config, env_file, command_text, options) -> Config:
    overrides = dict(options)
    overrides["command"] = command_text
    # An unset flag must not override the config file
    if not overrides.get("no_pty"):
        overrides.pop("no_pty", None)
    env_files = list(env_file) if env_file else None
    return Config(config, env_files=env_files, overrides=overrides)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode with verbose output and warnings",
)
@click.version_option(package_name="chefrunner")
@click.pass_context
def cli(ctx, debug):
    """chefrunner - run chef-client on a remote host over SSH

    Connects to the target (optionally through a bastion host), runs one
    command and reports its output and exit status.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        # Suppress deprecation warnings in production mode
        warnings.filterwarnings("ignore", category=DeprecationWarning)


@cli.command()
@connection_options
@command_options
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def run(ctx, config, env_file, command_text, verbose, **options):
    """Run the command on the remote host

    Examples:
        chefrunner run --host 10.0.0.5 --private-key-file ~/.ssh/id_rsa --run-list 'recipe[base]'
        chefrunner run -c config.yaml -e .env.secrets
        chefrunner run --host app1 --bastion-host jump.example.com --plugin generic-ssh --command uptime
    """
    if verbose or ctx.obj.get("debug"):
        logging.getLogger().setLevel(logging.DEBUG)

    runner = None
    try:
        cfg = _build_config(config, env_file, command_text, options)
        if not cfg.validate(os.environ.get("SSH_AUTH_SOCK")):
            click.echo("✗ Configuration validation failed")
            sys.exit(1)

        if not cfg.host_key:
            click.echo("⚠️  WARNING: SSH host key verification is disabled (no host key configured)!")

        runner = Runner(cfg)
        output = runner.run()

        if output:
            click.echo(output)
        click.echo("\n✓ Command completed successfully")
        sys.exit(0)

    except SSHError as e:
        if runner is not None and runner.output:
            click.echo(runner.output)
        click.echo(f"\n✗ Error ({e.phase}): {e}")
        sys.exit(1)

    except Exception as e:
        click.echo(f"\n✗ Error: {e}")
        if verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


@cli.command()
@connection_options
@command_options
def validate(config, env_file, command_text, **options):
    """Validate configuration without connecting

    Examples:
        chefrunner validate -c config.yaml
        chefrunner validate --host 10.0.0.5 --password secret
    """
    try:
        cfg = _build_config(config, env_file, command_text, options)

        if not cfg.validate(os.environ.get("SSH_AUTH_SOCK")):
            click.echo("✗ Configuration validation failed")
            sys.exit(1)

        info = cfg.connection_info(os.environ.get("SSH_AUTH_SOCK"))
        command = Runner(cfg).build_command()

        click.echo("✓ Configuration is valid")
        click.echo(f"  Target: {info.user}@{info.address}")
        if info.bastion_host:
            click.echo(f"  Bastion: {info.bastion_user}@{info.bastion_address}")
        click.echo(f"  SSH agent: {'enabled' if info.agent else 'disabled'}")
        click.echo(f"  Timeout: {info.timeout_val:g}s")
        click.echo(f"  Plugin: {cfg.plugin}")
        if cfg.sudo_password:
            command = command.replace(cfg.sudo_password, "******")
        click.echo(f"  Command: {command}")

        sys.exit(0)

    except Exception as e:
        click.echo(f"✗ Error: {e}")
        sys.exit(1)


def main():
    """Entry point for CLI"""
    cli()


if __name__ == "__main__":
    main()
