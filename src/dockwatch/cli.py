"""
Command line entry point for dockwatch.
"""

import curses
import logging
import sys

import click

from . import __version__, setup_logging
from .backend import DockerBackend
from .config import ConfigManager
from .errors import FatalInitError
from .main import main as run_app

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@click.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Config file (default: ~/.config/dockwatch/config.yaml)")
@click.option("--interval", type=float, default=None,
              help="Container list poll interval in seconds")
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None,
              help="Override the configured log level")
@click.version_option(__version__, prog_name="dockwatch")
def main(config_path, interval, log_level):
    """Interactive terminal dashboard for Docker containers."""
    if interval is not None and interval <= 0:
        raise click.BadParameter("must be greater than 0", param_hint="--interval")

    config = ConfigManager(config_path).get_config()
    if interval is not None:
        config.sync.poll_interval = interval
    log_path = setup_logging(config.logging, log_level)
    logger.info(f"dockwatch {__version__} starting, logging to {log_path}")

    gateway = DockerBackend(
        default_shell=config.docker.default_shell,
        fallback_shell=config.docker.fallback_shell,
        docker_bin=config.docker.docker_bin,
    )
    try:
        gateway.ping()
    except FatalInitError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        curses.wrapper(run_app, gateway, config)
    except curses.error as e:
        logger.critical(f"Terminal initialisation failed: {e}")
        click.echo(f"Error: cannot initialise terminal: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        pass
    logger.info("dockwatch exited")
