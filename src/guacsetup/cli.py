import logging
import os

import click
from rich.logging import RichHandler

from .constants import CONFIG_FILE
from .core import GuacamoleInstaller, GuacamoleUpdater, SchemaUpgradeGate
from .errors import ProvisionError
from .services.config_loader import ConfigLoader

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _load_settings(config):
    resolved_config = config
    if resolved_config is None and os.path.exists(CONFIG_FILE):
        resolved_config = CONFIG_FILE

    try:
        return ConfigLoader().load_settings(resolved_config)
    except ProvisionError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(verbose, log_file):
    logger = logging.getLogger("guacsetup")
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


config_option = click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {CONFIG_FILE} if present.",
)
verbose_option = click.option("--verbose", is_flag=True, default=False, help="Enable verbose logging")
log_file_option = click.option("--log-file", type=click.Path(), help="Path to log file")


@click.command()
@config_option
@verbose_option
@log_file_option
def install(config, verbose, log_file):
    """Install or re-converge Apache Guacamole on this host."""
    settings = _load_settings(config)
    _configure_logging(verbose, log_file)
    raise SystemExit(GuacamoleInstaller(settings=settings).run())


@click.command()
@config_option
@verbose_option
@log_file_option
def update(config, verbose, log_file):
    """Replace the web application and JDBC extension with the latest release."""
    settings = _load_settings(config)
    _configure_logging(verbose, log_file)
    raise SystemExit(GuacamoleUpdater(settings=settings).run())


@click.command(name="schema-upgrade")
@config_option
@verbose_option
@log_file_option
@click.option("--yes", is_flag=True, default=False, help="Approve without an interactive prompt.")
@click.option(
    "--mark-applied",
    is_flag=True,
    default=False,
    help="Record scripts that were already applied by hand; no SQL is run.",
)
def schema_upgrade(config, verbose, log_file, yes, mark_applied):
    """Apply the database schema upgrade staged by the last update."""
    settings = _load_settings(config)
    _configure_logging(verbose, log_file)
    gate = SchemaUpgradeGate(
        settings=settings,
        assume_yes=yes,
        mark_applied=mark_applied,
        confirm=lambda question: click.confirm(question, default=False),
    )
    raise SystemExit(gate.run())


@click.group()
def main():
    """Idempotent Apache Guacamole installer and updater."""


main.add_command(install)
main.add_command(update)
main.add_command(schema_upgrade)


if __name__ == "__main__":
    main()
