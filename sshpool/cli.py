"""CLI interface for sshpool."""

import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

import click
from pydantic import ValidationError

from .config import ConnectionSettings, PoolSettings
from .errors import SshPoolError
from .local import LocalTransport
from .models import CommandResult
from .pool import SshPool
from .transport import ParamikoTransport, Transport


def connection_options(func):
    """Add the SSH connection options to a command."""
    options = [
        click.option("--local", is_flag=True, help="Run commands on this machine instead of over SSH"),
        click.option("--host", help="SSH host (env SSHPOOL_SSH_HOST)"),
        click.option("--port", type=int, help="SSH port (env SSHPOOL_SSH_PORT)"),
        click.option("--user", help="SSH user (env SSHPOOL_SSH_USER)"),
        click.option("--password", help="SSH password (env SSHPOOL_SSH_PASSWORD)"),
        click.option("--private-key", type=click.Path(), help="Private key file (env SSHPOOL_SSH_PRIVATE_KEY)"),
        click.option("--max-connections", type=int, help="SSH connections to spread commands over (env SSHPOOL_SSH_MAX_CONNECTIONS)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_transport(local: bool, **connection: Any) -> Transport:
    """Create the transport selected on the command line."""
    if local:
        return LocalTransport()
    overrides = {key: value for key, value in connection.items() if value is not None}
    return ParamikoTransport(ConnectionSettings(**overrides))


def read_commands(commands: Tuple[str, ...], file: Optional[str]) -> List[str]:
    """Commands from the arguments followed by those in the file, one per line."""
    result = [command for command in commands if command.strip()]
    if file:
        for line in Path(file).read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                result.append(line)
    return result


@click.group()
def cli():
    """SshPool - run many commands over SSH with bounded concurrency"""
    pass


@cli.command()
@click.argument("commands", nargs=-1)
@click.option("--file", "-f", type=click.Path(exists=True, dir_okay=False), help="File with one command per line")
@click.option("--max-threads", type=int, help="Maximum commands running at once")
@click.option("--max-retries", type=int, help="Retries for a failing command")
@click.option("--wait-retry", type=float, help="Seconds to wait before a retry")
@click.option("--min-size", type=int, help="Minimum stdout bytes for a command to succeed")
@click.option("--timeout", default=0.0, help="Per-command timeout in seconds (0 = none)")
@click.option("--debug", is_flag=True, help="Print scheduling progress")
@connection_options
def run(commands, file, max_threads, max_retries, wait_retry, min_size, timeout, debug, local, **connection):
    """Run commands through the pool.

    Example:
        sshpool run --host 10.0.0.5 --max-threads 5 'uptime' 'df -h'
        sshpool run --local --file commands.txt --max-retries 2
    """
    commands = read_commands(commands, file)
    if not commands:
        click.echo("✗ No commands given", err=True)
        sys.exit(1)

    overrides = {
        "max_threads": max_threads,
        "max_retries": max_retries,
        "wait_retry": wait_retry,
        "min_config_size": min_size,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if debug:
        overrides["debug"] = True

    results: List[CommandResult] = []

    def report(cmd, command_id, data, exit_status, stdout, stderr):
        result = pool.results[command_id]
        results.append(result)
        symbol = "✓" if result.success else "✗"
        click.echo(f"{symbol} [{data}] {cmd} (exit {exit_status}, {result.retries} retries)")
        if stdout:
            click.echo(stdout)
        if stderr:
            click.echo(stderr, err=True)

    try:
        pool = SshPool(build_transport(local, **connection), **overrides)
        with pool:
            for index, command in enumerate(commands, start=1):
                pool.submit(command, data=index, callback=report, timeout=timeout)
            pool.run_until_done()
    except ValidationError as e:
        click.echo(f"✗ Invalid configuration: {e}", err=True)
        sys.exit(1)
    except SshPoolError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    failed = sum(1 for result in results if not result.success)
    click.echo(f"\nTotal: {len(results)} | Succeeded: {len(results) - failed} | Failed: {failed}")
    if failed:
        sys.exit(1)


@cli.command(name="exec")
@click.argument("command")
@connection_options
def exec_command(command, local, **connection):
    """Run a single command and wait for it.

    Example:
        sshpool exec --host 10.0.0.5 'cat /etc/hostname'
    """
    try:
        with SshPool(build_transport(local, **connection)) as pool:
            result = pool.run_command(command)
    except ValidationError as e:
        click.echo(f"✗ Invalid configuration: {e}", err=True)
        sys.exit(1)
    except SshPoolError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    if result.stdout:
        click.echo(result.stdout)
    if result.stderr:
        click.echo(result.stderr, err=True)
    sys.exit(result.exit_status if result.exit_status >= 0 else 1)


@cli.group()
def config():
    """Inspect configuration"""
    pass


@config.command()
def show():
    """Show the configuration read from the environment.

    Example:
        SSHPOOL_MAX_THREADS=10 sshpool config show
    """
    try:
        pool_settings = PoolSettings()
        connection = ConnectionSettings()
    except ValidationError as e:
        click.echo(f"✗ Invalid configuration: {e}", err=True)
        sys.exit(1)

    click.echo("\nPool:")
    click.echo(f"  max-threads:     {pool_settings.max_threads}")
    click.echo(f"  max-retries:     {pool_settings.max_retries}")
    click.echo(f"  wait-retry:      {pool_settings.wait_retry} seconds")
    click.echo(f"  min-config-size: {pool_settings.min_config_size} bytes")
    click.echo(f"  poll-interval:   {pool_settings.poll_interval} seconds")
    click.echo("\nConnection:")
    click.echo(f"  host:            {connection.host}:{connection.port}")
    click.echo(f"  user:            {connection.user}")
    click.echo(f"  password:        {'set' if connection.password else 'not set'}")
    click.echo(f"  private-key:     {connection.private_key or 'not set'}")
    click.echo(f"  max-connections: {connection.max_connections}")
    click.echo()


if __name__ == "__main__":
    cli()
