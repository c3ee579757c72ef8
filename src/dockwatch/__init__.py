"""
dockwatch - An interactive terminal dashboard for Docker containers.

This package provides a curses-based live view of the containers managed by a
local docker daemon, with keyboard-driven lifecycle actions.

Features:
  - Container table with status, CPU and memory, refreshed every second
  - CPU/memory history sparklines for the selected container
  - Live log tail (stdout + stderr) for the selected container
  - Start / stop / restart / pause / delete / exec shell
  - Filtering and sorting

Main Components:
  - main.py: Render loop and input handling
  - state.py: Single-writer container state store
  - workers.py: Background list/stats/log synchronizers
  - actions.py: Validated, asynchronous lifecycle commands
  - backend.py: Docker API gateway
  - ui.py / terminal.py: Frame rendering and the curses terminal

Usage:
  dockwatch [--config PATH] [--interval SECONDS] [--log-level LEVEL]

Dependencies:
  - docker>=7.0.0
  - PyYAML, click
  - Python 3.10+
  - curses (built-in, not available on Windows natively)
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

__version__ = "0.1.0"

LOG_FORMAT = '%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s'


def get_log_path() -> str:
    """
    Get the log file path under the XDG data directory.

    Returns XDG_DATA_HOME/dockwatch/logs/dockwatch.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/dockwatch.log as fallback)
    """
    # Try XDG_DATA_HOME first (Linux/macOS)
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        # Default fallback: ~/.local/share
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'dockwatch' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'dockwatch.log')
    except (PermissionError, OSError):
        # Fallback to /tmp if permission denied
        return '/tmp/dockwatch.log'


def setup_logging(log_config=None, level: Optional[str] = None) -> str:
    """
    Send all dockwatch logging to a rotating file.

    Args:
        log_config: LogConfig (file_path, level, max_size_mb, backup_count) or None
        level: Overrides log_config.level (e.g. from --log-level)

    Returns:
        str: The log file in use
    """
    path = (log_config.file_path if log_config and log_config.file_path else None) or get_log_path()
    level_name = (level or (log_config.level if log_config else "INFO")).upper()
    max_bytes = (log_config.max_size_mb if log_config else 10) * 1024 * 1024
    backup_count = log_config.backup_count if log_config else 5

    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    logging.basicConfig(handlers=[handler], level=getattr(logging, level_name, logging.INFO),
                        format=LOG_FORMAT, force=True)
    return path
