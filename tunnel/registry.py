"""
Persistent registry of open tunnel URLs.

Lets a new process find tunnels left behind by a previous process that exited
without cleaning up. Several processes may touch the file, so every write goes
to a temporary file in the same directory and is moved into place with
os.replace.
"""

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from common.logging_config import get_logger

logger = get_logger(__name__)


class TunnelRegistry:
    """
    JSON-backed set of tunnel URLs.

    File schema: {"tunnels": [url, ...], "lastUpdated": ISO8601 timestamp}
    """

    def __init__(self, registry_path: Path):
        """
        Initialize the registry, creating or repairing the file if needed.

        Args:
            registry_path: Path to the JSON file (typically ~/.zapshare/tunnels/active_tunnels.json)
        """
        self.registry_path = Path(registry_path)
        self._lock = threading.Lock()
        self._ensure_valid()

    def _ensure_valid(self) -> None:
        """Create the file if missing and reset it if it does not match the schema."""
        if not self.registry_path.exists():
            self._write([])
            return

        try:
            with open(self.registry_path, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict) or not isinstance(data.get('tunnels'), list):
                raise ValueError("unexpected registry layout")
        except (json.JSONDecodeError, ValueError, OSError) as e:
            logger.warning(f"Tunnel registry at {self.registry_path} is corrupted, recreating: {e}")
            self._write([])

    def load(self) -> List[str]:
        """
        Read registered tunnel URLs.

        Returns:
            List of URLs; empty if the file is missing or unreadable
        """
        try:
            with open(self.registry_path, 'r') as f:
                data = json.load(f)
            tunnels = data.get('tunnels', []) if isinstance(data, dict) else []
            return [url for url in tunnels if isinstance(url, str)]
        except FileNotFoundError:
            return []
        except (json.JSONDecodeError, OSError) as e:
            logger.debug(f"Error loading tunnel registry: {e}")
            return []

    def register(self, url: str) -> None:
        """Add a URL if it is not already present."""
        with self._lock:
            tunnels = self.load()
            if url not in tunnels:
                tunnels.append(url)
                self._write(tunnels)
                logger.debug(f"Registered tunnel {url}")

    def unregister(self, url: str) -> bool:
        """
        Remove a URL.

        Returns:
            True if the URL was present
        """
        with self._lock:
            tunnels = self.load()
            if url not in tunnels:
                return False
            self._write([t for t in tunnels if t != url])
            logger.debug(f"Unregistered tunnel {url}")
            return True

    def clear(self) -> List[str]:
        """
        Empty the registry.

        Returns:
            The URLs that were registered
        """
        with self._lock:
            tunnels = self.load()
            self._write([])
            return tunnels

    def _write(self, tunnels: List[str]) -> None:
        """Atomically replace the registry file with the given URL list."""
        payload = {
            'tunnels': tunnels,
            'lastUpdated': datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.registry_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix='.active_tunnels.', suffix='.tmp', dir=str(self.registry_path.parent)
            )
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, self.registry_path)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as e:
            logger.warning(f"Error saving tunnel registry to {self.registry_path}: {e}")
