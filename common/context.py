"""Runtime context passed explicitly to the session manager and tunnel coordinator."""

import getpass
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common import constants


@dataclass(frozen=True)
class TransferSettings:
    """
    Tunable timings and limits for one process.

    Defaults mirror common.constants; tests shrink the delays.
    """
    inactivity_timeout: float = constants.INACTIVITY_TIMEOUT_SECONDS
    keepalive_interval: float = constants.KEEPALIVE_INTERVAL_SECONDS
    metadata_delay: float = constants.METADATA_TO_PAYLOAD_DELAY_SECONDS
    auth_failure_close_delay: float = constants.AUTH_FAILURE_CLOSE_DELAY_SECONDS
    connect_timeout: float = constants.CONNECT_TIMEOUT_SECONDS
    tunnel_timeout: float = constants.TUNNEL_TIMEOUT_SECONDS
    tunnel_attempt_timeout: float = constants.TUNNEL_ATTEMPT_TIMEOUT_SECONDS
    listener_close_timeout: float = constants.LISTENER_CLOSE_TIMEOUT_SECONDS
    shutdown_grace: float = constants.SHUTDOWN_GRACE_SECONDS
    max_password_attempts: int = constants.MAX_PASSWORD_ATTEMPTS
    relay_host: str = constants.DEFAULT_RELAY_HOST
    shortener_url: str = constants.DEFAULT_SHORTENER_URL


@dataclass(frozen=True)
class RuntimeContext:
    """
    Process-wide configuration, constructed once at startup.

    Attributes:
        settings: Timings and limits
        debug: Whether verbose debug logging was requested
        home_dir: Base directory holding the .zapshare state directory
    """
    settings: TransferSettings = field(default_factory=TransferSettings)
    debug: bool = False
    home_dir: Path = field(default_factory=Path.home)
    receive_dir_override: Optional[Path] = None

    @property
    def state_dir(self) -> Path:
        return self.home_dir / constants.APP_DIR_NAME

    @property
    def debug_log_path(self) -> Path:
        return self.state_dir / 'logs' / 'debug.log'

    @property
    def tunnel_registry_path(self) -> Path:
        return self.state_dir / 'tunnels' / 'active_tunnels.json'

    @property
    def receive_dir(self) -> Path:
        """Per-user destination directory for received files."""
        if self.receive_dir_override is not None:
            return self.receive_dir_override
        return self.state_dir / 'shared' / _current_user()


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return 'default'
