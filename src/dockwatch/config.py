"""
Configuration management for dockwatch.

This module provides configuration file support with YAML format,
user preferences, and default settings.

Features:
- YAML configuration file at ~/.config/dockwatch/config.yaml
- Default values with user overrides
- Keybinding customization
- Sync intervals and buffer capacities
- Log location override

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- get_config() returns the merged AppConfig
- Handles missing/invalid config gracefully: unknown keys, wrong types and
  out-of-range numbers are logged and the default is kept
"""

import logging
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

# Numbers that may be zero; every other numeric setting must be positive
_ZERO_ALLOWED = {"backup_count"}


@dataclass
class KeyBindings:
    """Customizable key bindings. Each action accepts a list of key names."""
    quit: List[str] = field(default_factory=lambda: ["q", "ctrl-c"])
    help: List[str] = field(default_factory=lambda: ["h", "?"])
    filter: List[str] = field(default_factory=lambda: ["/"])
    tab_focus: List[str] = field(default_factory=lambda: ["tab"])
    up: List[str] = field(default_factory=lambda: ["up", "k"])
    down: List[str] = field(default_factory=lambda: ["down", "j"])
    page_up: List[str] = field(default_factory=lambda: ["pgup"])
    page_down: List[str] = field(default_factory=lambda: ["pgdn"])
    home: List[str] = field(default_factory=lambda: ["home"])
    end: List[str] = field(default_factory=lambda: ["end"])
    start: List[str] = field(default_factory=lambda: ["s"])
    stop: List[str] = field(default_factory=lambda: ["t"])
    restart: List[str] = field(default_factory=lambda: ["r"])
    pause_toggle: List[str] = field(default_factory=lambda: ["z"])
    delete: List[str] = field(default_factory=lambda: ["d"])
    exec: List[str] = field(default_factory=lambda: ["x"])
    sort_cycle: List[str] = field(default_factory=lambda: ["S"])
    mouse_toggle: List[str] = field(default_factory=lambda: ["m"])
    dismiss_error: List[str] = field(default_factory=lambda: ["c", "esc"])


@dataclass
class SyncConfig:
    """Background synchronizer settings."""
    poll_interval: float = 1.0  # seconds
    stats_interval: float = 2.0  # seconds
    log_capacity: int = 1000  # lines
    metrics_capacity: int = 60  # samples
    failure_threshold: int = 3
    purge_strikes: int = 2
    delete_timeout: float = 10.0  # seconds
    stats_workers: int = 4
    log_retry_delay: float = 1.0  # seconds


@dataclass
class UIConfig:
    """UI-related configuration."""
    refresh_interval: int = 100  # milliseconds
    mouse_capture: bool = True  # initial state, toggled at runtime


@dataclass
class DockerConfig:
    """Docker-related configuration."""
    default_shell: str = "/bin/bash"
    fallback_shell: str = "/bin/sh"
    docker_bin: str = "docker"


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    keybindings: KeyBindings = field(default_factory=KeyBindings)
    sync: SyncConfig = field(default_factory=SyncConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def default_config_path() -> Path:
    return Path.home() / ".config" / "dockwatch" / "config.yaml"


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else default_config_path()
        self.config_dir = self.config_file.parent
        self._config: AppConfig = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ValueError("top level must be a mapping")
                # Merge with defaults
                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                # Create default config file
                self._config = AppConfig()
                self.save_config()
                logger.info(f"Created default configuration at {self.config_file}")
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults, section by section."""
        for section in fields(default):
            updates = user.get(section.name)
            if updates is None:
                continue
            if not isinstance(updates, dict):
                logger.warning(f"Ignoring config section '{section.name}': expected a mapping")
                continue
            self._merge_dataclass(getattr(default, section.name), updates)
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object, keeping defaults for unknown or mistyped keys."""
        known = {f.name: f for f in fields(obj)}
        for key, value in updates.items():
            if key not in known:
                logger.warning(f"Unknown config key '{key}' in {type(obj).__name__}")
                continue
            current = getattr(obj, key)
            if isinstance(current, list) and isinstance(value, str):
                value = [value]
            elif isinstance(current, bool) or is_dataclass(current):
                if not isinstance(value, type(current)):
                    logger.warning(f"Ignoring config key '{key}': expected {type(current).__name__}")
                    continue
            elif isinstance(current, (int, float)):
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    logger.warning(f"Ignoring config key '{key}': expected a number")
                    continue
                if isinstance(current, int) and not isinstance(value, int):
                    logger.warning(f"Ignoring config key '{key}': expected a whole number")
                    continue
                if value < 0 or (value == 0 and key not in _ZERO_ALLOWED):
                    logger.warning(f"Ignoring config key '{key}': {value} is out of range, keeping {current}")
                    continue
            setattr(obj, key, value)

