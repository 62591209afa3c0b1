import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .constants import (
    DEFAULT_COMPOSE_ENV_FILE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_CONTEXT_DIR,
    DEFAULT_ENV_FILE,
    DEPLOY_READY_ATTEMPTS,
    DEPLOY_READY_INTERVAL,
)
from .core import PostgresStack, StackError
from .services.config_loader import ConfigLoader
from .services.env_loader import EnvironmentLoader
from .services.manager import ManagementCommand

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

console = Console()


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@dataclass
class CliState:
    env_file: str
    manifest_file: Optional[str]
    readiness_attempts: int
    readiness_interval: float


def _build_stack(state: CliState, load_env: bool = True) -> PostgresStack:
    logger = logging.getLogger("dbstack")
    settings = None
    if load_env:
        try:
            settings = EnvironmentLoader(logger=logger).load(state.env_file)
        except StackError as exc:
            raise click.ClickException(str(exc)) from exc

    return PostgresStack(
        settings=settings,
        manifest_file=state.manifest_file,
        readiness_attempts=state.readiness_attempts,
        readiness_interval=state.readiness_interval,
    )


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--env-file",
    required=False,
    type=click.Path(),
    help=f"Deployment environment file (default: {DEFAULT_ENV_FILE}).",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("-v", "--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option(
    "--manifest-file",
    required=False,
    type=click.Path(),
    help="Write a JSON run manifest for the workflow to this path.",
)
@click.version_option(__version__, prog_name="dbstack")
@click.pass_context
def main(ctx, env_file, config, verbose, log_file, manifest_file):
    """Build, publish, deploy and operate a hardened PostgreSQL 11 stack."""
    logger = logging.getLogger("dbstack")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values: Dict[str, Any] = config_loader.load(resolved_config)
    except StackError as exc:
        raise click.ClickException(str(exc)) from exc

    env_file = _resolve_option(env_file, config_values, "env_file", default=DEFAULT_ENV_FILE)
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    manifest_file = _resolve_option(manifest_file, config_values, "manifest_file")
    readiness_attempts = int(
        _resolve_option(None, config_values, "readiness_attempts", default=DEPLOY_READY_ATTEMPTS)
    )
    readiness_interval = float(
        _resolve_option(None, config_values, "readiness_interval", default=DEPLOY_READY_INTERVAL)
    )
    if readiness_attempts < 1:
        raise click.ClickException("readiness_attempts must be at least 1.")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.obj = CliState(
        env_file=env_file,
        manifest_file=manifest_file,
        readiness_attempts=readiness_attempts,
        readiness_interval=readiness_interval,
    )


@main.command()
@click.option("-t", "--test", "test_image", is_flag=True, help="Smoke test the image in a throwaway container.")
@click.option(
    "--context-dir",
    type=click.Path(file_okay=False),
    default=DEFAULT_CONTEXT_DIR,
    show_default=True,
    help="Directory holding the Dockerfile, conf/ and scripts/.",
)
@click.pass_obj
def build(state, test_image, context_dir):
    """Build and tag the PostgreSQL 11 image."""
    raise SystemExit(_build_stack(state).build(test_image=test_image, context_dir=context_dir))


@main.command()
@click.option("-f", "--force", is_flag=True, help="Skip the registry verification pull.")
@click.pass_obj
def push(state, force):
    """Push every local tag of the image to the registry."""
    raise SystemExit(_build_stack(state).push(force=force))


@main.command()
@click.option(
    "--context-dir",
    type=click.Path(file_okay=False),
    default=DEFAULT_CONTEXT_DIR,
    show_default=True,
    help="Directory holding the Dockerfile, conf/ and scripts/.",
)
@click.pass_obj
def publish(state, context_dir):
    """Build with a smoke test, then push."""
    raise SystemExit(_build_stack(state).publish(context_dir=context_dir))


@main.command()
@click.option("-f", "--force", is_flag=True, help="Replace the running container without asking.")
@click.option("-t", "--test", is_flag=True, help="Run the basic verification after deploying.")
@click.pass_obj
def deploy(state, force, test):
    """Replace the production container with a fresh one from the registry image."""
    stack = _build_stack(state)
    if not force:
        confirmed = click.confirm(
            f"This will stop and replace container {stack.settings.container_name}. Continue?",
            default=False,
        )
        if not confirmed:
            console.print("[blue]Deployment cancelled.[/blue]")
            raise SystemExit(0)
    raise SystemExit(stack.deploy(test=test))


@main.command()
@click.option("-q", "--quick", is_flag=True, help="Only check container status and readiness.")
@click.option("-f", "--full", is_flag=True, help="Run every check.")
@click.option("--status", is_flag=True, help="Print a deployment status summary afterwards.")
@click.option(
    "--sibling-probe/--no-sibling-probe",
    default=True,
    help="Probe reachability from a throwaway container on the same network.",
)
@click.option(
    "--strict-privileges",
    is_flag=True,
    help="Fail when the app user can reach the superuser database.",
)
@click.pass_obj
def verify(state, quick, full, status, sibling_probe, strict_privileges):
    """Verify the deployed instance (basic checks by default)."""
    if quick and full:
        raise click.UsageError("--quick and --full are mutually exclusive.")
    profile = "quick" if quick else "full" if full else "basic"
    raise SystemExit(
        _build_stack(state).verify(
            profile=profile,
            status=status,
            sibling_probe=sibling_probe,
            strict_privileges=strict_privileges,
        )
    )


main.add_command(verify, name="test")


@main.command("full-deploy")
@click.pass_obj
def full_deploy(state):
    """Deploy without confirmation, then run the full verification."""
    raise SystemExit(_build_stack(state).full_deploy())


@main.command()
@click.argument("command", type=click.Choice([item.value for item in ManagementCommand]))
@click.argument("args", nargs=-1)
@click.option("-f", "--follow", is_flag=True, help="Follow log output (logs).")
@click.option("--tail", type=int, default=None, help="Number of log lines to show (logs).")
@click.pass_obj
def manage(state, command, args, follow, tail):
    """Operate the existing instance: start, stop, restart, status, remove, logs, shell, connect, backup."""
    raise SystemExit(_build_stack(state).manage(command, list(args), follow=follow, tail=tail))


@main.command()
@click.pass_obj
def env(state):
    """Show the loaded environment with secrets hidden."""
    logger = logging.getLogger("dbstack")
    loader = EnvironmentLoader(logger=logger)
    try:
        settings = loader.load(state.env_file)
    except StackError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"[bold]Environment from {state.env_file}[/bold]")
    for key, value in loader.describe(settings):
        console.print(f"{key}={value}", markup=False, highlight=False)


@main.command()
@click.pass_obj
def init(state):
    """Run the idempotent initialization routine against the running instance."""
    raise SystemExit(_build_stack(state).initialize())


@main.command()
@click.argument("directory", type=click.Path(file_okay=False), default=DEFAULT_CONTEXT_DIR)
@click.option("--overwrite", is_flag=True, help="Replace existing files.")
@click.pass_obj
def context(state, directory, overwrite):
    """Write the image build context (Dockerfile, conf/, scripts/)."""
    raise SystemExit(_build_stack(state, load_env=False).write_context(directory, overwrite=overwrite))


@main.command()
@click.argument("action", type=click.Choice(["check", "up", "down", "ps"]))
@click.argument("services", nargs=-1)
@click.option(
    "--compose-file",
    type=click.Path(dir_okay=False),
    default="docker-compose.yml",
    show_default=True,
)
@click.option(
    "--compose-env",
    type=click.Path(dir_okay=False),
    default=DEFAULT_COMPOSE_ENV_FILE,
    show_default=True,
    help="Environment file with the compose variables.",
)
@click.pass_obj
def compose(state, action, services, compose_file, compose_env):
    """Drive the local multi-database compose stack."""
    stack = _build_stack(state, load_env=False)
    raise SystemExit(stack.compose(action, compose_file, compose_env, services))


@main.command()
@click.option("-f", "--force", is_flag=True, help="Skip the typed confirmation.")
@click.pass_obj
def cleanup(state, force):
    """Remove the instance, its data volume, image tags and network."""
    raise SystemExit(_build_stack(state).cleanup(force=force))


@main.command()
@click.pass_obj
def summary(state):
    """Print databases, tables and login roles of the running instance."""
    raise SystemExit(_build_stack(state).summary())


if __name__ == "__main__":
    main()
