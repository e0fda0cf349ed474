"""
Command line entry point for githooks.

Installed under a hook name (``.git/hooks/pre-receive -> githooks``) the
program dispatches that hook directly with Git's raw arguments. Under any
other name it is a Click CLI with helper commands.
"""

import os
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from . import __version__
from .access.acl import evaluate, parse_operations, parse_rules
from .access.groups import GroupDefinitionError, resolve_groups
from .access.users import InvalidSpecError
from .config.loader import ConfigSourceError, ResolvedConfig, load_config, load_settings
from .config.schema import GitHooksSettings, LoggingConfig
from .config.values import ConfigEvalError, resolve_value
from .core.hooks import Dispatcher
from .core.phases import HookPhase, UnknownHookError
from .logging import configure_logging

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2

_HOOK_NAMES = frozenset(p.value for p in HookPhase)


def _bootstrap(verbose: int = 0, quiet: bool = False) -> tuple[ResolvedConfig, GitHooksSettings]:
    """Load configuration and configure logging from it.

    Logging is first set up with defaults so errors while reading the
    configuration are reported too.
    """
    configure_logging(LoggingConfig(verbose=verbose), quiet=quiet)
    config = load_config()
    try:
        settings = load_settings(config)
    except ValueError as e:
        raise ConfigSourceError(f"invalid githooks configuration: {e}") from e
    logging_config = settings.logging.model_copy(update={"verbose": verbose})
    configure_logging(logging_config, quiet=quiet)
    return config, settings


def run_hook(invocation_name: str, args: list[str], verbose: int = 0) -> int:
    """Dispatch one hook invocation and return its exit code."""
    try:
        config, _ = _bootstrap(verbose)
        return Dispatcher(config=config).dispatch(invocation_name, args)
    except UnknownHookError as e:
        click.echo(f"githooks: {e}", err=True)
        return EXIT_CONFIG_ERROR
    except (ConfigSourceError, GroupDefinitionError) as e:
        click.echo(f"githooks: configuration error: {e}", err=True)
        return EXIT_CONFIG_ERROR


@click.group()
@click.version_option(version=__version__, prog_name="githooks")
def cli() -> None:
    """githooks - one dispatcher for every Git and Gerrit hook.

    Link this program as .git/hooks/<hook-name> to run the plugins listed
    in the githooks.plugin configuration for that hook.
    """
    pass


@cli.command(
    "run",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.option("-v", "--verbose", count=True, help="More output (-v info, -vv debug)")
@click.argument("hook")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def run_command(verbose: int, hook: str, args: tuple[str, ...]) -> None:
    """Run HOOK as if Git had invoked it with ARGS."""
    sys.exit(run_hook(hook, list(args), verbose=verbose))


def _config_as_dict(config: ResolvedConfig) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for name, values in config.items():
        data[name] = values[0] if len(values) == 1 else values
    return data


@cli.command("config")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["yaml", "list"]),
    default="list",
    show_default=True,
    help="Output format",
)
def config_command(fmt: str) -> None:
    """Show the resolved configuration in first-definition order."""
    try:
        config = load_config()
    except ConfigSourceError as e:
        click.echo(f"githooks: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    if fmt == "yaml":
        click.echo(yaml.safe_dump(_config_as_dict(config), sort_keys=False, allow_unicode=True))
        return
    for name, values in config.items():
        for value in values:
            click.echo(f"{name}={value}")


@cli.command("check-acl")
@click.argument("user")
@click.argument("ref")
@click.argument("operations")
def check_acl_command(user: str, ref: str, operations: str) -> None:
    """Evaluate githooks.checkreference.acl for USER doing OPERATIONS (e.g. CU) on REF."""
    try:
        config, settings = _bootstrap(quiet=True)
        base_dir = Path(os.getcwd())
        table: dict[str, frozenset[str]] = {}
        for source in settings.groups:
            table = resolve_groups(resolve_value(source, base_dir=base_dir), table)
        acl = [
            resolve_value(v, base_dir=base_dir)
            for v in config.get_all("githooks", "acl", "checkreference")
        ]
        decision = evaluate(parse_rules(acl), user, ref, parse_operations(operations), table)
    except (ConfigSourceError, ConfigEvalError, GroupDefinitionError, InvalidSpecError) as e:
        click.echo(f"githooks: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    click.echo(f"{'allow' if decision.allowed else 'deny'}: {decision.reason}")
    sys.exit(EXIT_SUCCESS if decision.allowed else EXIT_FAILED)


def main() -> None:
    """Console script entry point."""
    invocation = Path(sys.argv[0]).name
    if invocation in _HOOK_NAMES:
        sys.exit(run_hook(sys.argv[0], sys.argv[1:]))
    cli()


if __name__ == "__main__":
    main()
