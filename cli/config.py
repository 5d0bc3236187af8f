"""Configuration management for the ZapShare CLI."""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from common import constants
from common.context import RuntimeContext, TransferSettings
from common.logging_config import get_logger

logger = get_logger(__name__)

ENV_OVERRIDES = {
    'ZAPSHARE_RELAY_HOST': 'relay_host',
    'ZAPSHARE_RECEIVE_DIR': 'receive_dir',
}


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "relay_host": constants.DEFAULT_RELAY_HOST,
        "shortener_url": constants.DEFAULT_SHORTENER_URL,
        "receive_dir": None,
        "tunnel_by_default": True,
        "inactivity_timeout": constants.INACTIVITY_TIMEOUT_SECONDS,
        "connect_timeout": constants.CONNECT_TIMEOUT_SECONDS,
        "tunnel_timeout": constants.TUNNEL_TIMEOUT_SECONDS,
        "keepalive_interval": constants.KEEPALIVE_INTERVAL_SECONDS,
        "max_password_attempts": constants.MAX_PASSWORD_ATTEMPTS,
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.zapshare/config.json)
        """
        self.config_path = config_path
        self.data = self._load()
        self._apply_env_overrides()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        A file that cannot be parsed is copied to config.json.bak and
        defaults are used instead.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            self.config_path = Path(tempfile.gettempdir()) / constants.APP_DIR_NAME / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, ValueError, IOError) as e:
                backup_path = self.config_path.with_suffix('.json.bak')
                logger.warning(f"Invalid config file {self.config_path} ({e}); backed up to {backup_path}")
                try:
                    shutil.copy(self.config_path, backup_path)
                except IOError as copy_error:
                    logger.debug(f"Config backup failed: {copy_error}")
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            self._write(config)
            return config

    def _apply_env_overrides(self) -> None:
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                logger.debug(f"{key} overridden by {env_name}")
                self.data[key] = value

    def _write(self, data: dict) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.config_path.parent, prefix='.config-', suffix='.tmp')
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.config_path)
        except IOError as e:
            logger.debug(f"Could not write config file {self.config_path}: {e}")

    def save(self) -> None:
        """Save current configuration to file."""
        self._write(self.data)

    def get_relay_host(self) -> str:
        return self.data.get('relay_host') or constants.DEFAULT_RELAY_HOST

    def get_receive_dir(self) -> Optional[Path]:
        """
        Get the configured receive directory.

        Returns:
            Directory path, or None to use ~/.zapshare/shared/<user>
        """
        value = self.data.get('receive_dir')
        return Path(value).expanduser() if value else None

    def set_receive_dir(self, directory: Path) -> None:
        """
        Set the receive directory and save to file.

        Args:
            directory: Directory where received files are stored
        """
        self.data['receive_dir'] = str(directory)
        self.save()

    def tunnel_by_default(self) -> bool:
        return bool(self.data.get('tunnel_by_default', True))

    def to_settings(self) -> TransferSettings:
        """
        Build the TransferSettings used by the sender and receiver.

        Returns:
            TransferSettings with configured values over the defaults
        """
        return TransferSettings(
            inactivity_timeout=float(self.data.get('inactivity_timeout', constants.INACTIVITY_TIMEOUT_SECONDS)),
            keepalive_interval=float(self.data.get('keepalive_interval', constants.KEEPALIVE_INTERVAL_SECONDS)),
            connect_timeout=float(self.data.get('connect_timeout', constants.CONNECT_TIMEOUT_SECONDS)),
            tunnel_timeout=float(self.data.get('tunnel_timeout', constants.TUNNEL_TIMEOUT_SECONDS)),
            max_password_attempts=int(self.data.get('max_password_attempts', constants.MAX_PASSWORD_ATTEMPTS)),
            relay_host=self.get_relay_host(),
            shortener_url=self.data.get('shortener_url') or constants.DEFAULT_SHORTENER_URL,
        )

    def build_context(self, debug: bool = False, home_dir: Optional[Path] = None) -> RuntimeContext:
        """
        Build the RuntimeContext for one CLI invocation.

        Args:
            debug: Whether --debug was given
            home_dir: Base directory for .zapshare (defaults to the user's home)
        """
        return RuntimeContext(
            settings=self.to_settings(),
            debug=debug,
            home_dir=home_dir or Path.home(),
            receive_dir_override=self.get_receive_dir(),
        )
