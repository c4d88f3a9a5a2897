"""Configuration management for imegasync.

Settings are stored as JSON in ``~/.config/imegasync/config.json``. The
directory can be moved with the ``IMEGASYNC_CONFIG_DIR`` environment
variable, and ``IMEGA_SERVER_URL`` / ``IMEGA_ACCESS_TOKEN`` override the
stored server and token.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .exceptions import ImegaConfigError
from .utils import DEFAULT_SYNC_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://cloudimega.com"
CONFIG_FILE_NAME = "config.json"
STATE_FILE_NAME = "sync_state.json"

DEFAULTS: dict[str, Any] = {
    "server_url": DEFAULT_SERVER_URL,
    "access_token": None,
    "refresh_token": None,
    "sync_folder": None,
    "auto_sync": True,
    "sync_interval": DEFAULT_SYNC_INTERVAL,
    "max_workers": 1,
    "propagate_deletions": False,
}


class Config:
    """Per-user settings for the sync client."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config and state files.
                Defaults to $IMEGASYNC_CONFIG_DIR or ~/.config/imegasync
        """
        if config_dir is None:
            env_dir = os.environ.get("IMEGASYNC_CONFIG_DIR")
            config_dir = (
                Path(env_dir)
                if env_dir
                else Path.home() / ".config" / "imegasync"
            )
        self.config_dir = config_dir
        self._settings: dict[str, Any] = dict(DEFAULTS)
        self._load()

    def _load(self) -> None:
        """Load settings from disk, keeping defaults for missing keys."""
        path = self.get_config_path()
        if not path.exists():
            return
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed config file {path}")
            return
        for key, value in data.items():
            if key in DEFAULTS:
                self._settings[key] = value

    def _write(self) -> None:
        """Write settings to disk with user-only permissions."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.get_config_path()
        tmp_path = path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
        except OSError as e:
            raise ImegaConfigError(f"Could not save configuration: {e}") from e

    def get_config_path(self) -> Path:
        """Path of the settings file."""
        return self.config_dir / CONFIG_FILE_NAME

    def get_state_path(self) -> Path:
        """Path of the persisted sync state."""
        return self.config_dir / STATE_FILE_NAME

    # =========================
    # Settings
    # =========================

    @property
    def server_url(self) -> str:
        url = os.environ.get("IMEGA_SERVER_URL") or self._settings["server_url"]
        return str(url).rstrip("/")

    @property
    def access_token(self) -> Optional[str]:
        return os.environ.get("IMEGA_ACCESS_TOKEN") or self._settings["access_token"]

    @property
    def refresh_token(self) -> Optional[str]:
        return self._settings["refresh_token"]

    @property
    def sync_folder(self) -> Path:
        folder = self._settings["sync_folder"]
        if folder:
            return Path(folder).expanduser()
        return Path.home() / "Documents" / "CloudImega"

    @property
    def auto_sync(self) -> bool:
        return bool(self._settings["auto_sync"])

    @property
    def sync_interval(self) -> int:
        try:
            interval = int(self._settings["sync_interval"])
        except (TypeError, ValueError):
            return DEFAULT_SYNC_INTERVAL
        return interval if interval > 0 else DEFAULT_SYNC_INTERVAL

    @property
    def max_workers(self) -> int:
        try:
            return max(1, int(self._settings["max_workers"]))
        except (TypeError, ValueError):
            return 1

    @property
    def propagate_deletions(self) -> bool:
        return bool(self._settings["propagate_deletions"])

    def is_configured(self) -> bool:
        """Check whether a session token is available."""
        return bool(self.access_token)

    def as_dict(self) -> dict[str, Any]:
        """Effective settings without secrets."""
        return {
            "server_url": self.server_url,
            "sync_folder": str(self.sync_folder),
            "auto_sync": self.auto_sync,
            "sync_interval": self.sync_interval,
            "max_workers": self.max_workers,
            "propagate_deletions": self.propagate_deletions,
            "logged_in": self.is_configured(),
        }

    # =========================
    # Persistence
    # =========================

    def save_tokens(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        """Store session tokens."""
        self._settings["access_token"] = access_token
        self._settings["refresh_token"] = refresh_token
        self._write()

    def clear_tokens(self) -> None:
        """Forget session tokens (logout)."""
        self.save_tokens(None, None)

    def save_settings(self, **settings: Any) -> None:
        """Update and store settings.

        Args:
            **settings: Known setting names and their new values

        Raises:
            ImegaConfigError: If an unknown setting is given
        """
        unknown = set(settings) - set(DEFAULTS)
        if unknown:
            raise ImegaConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        for key, value in settings.items():
            if isinstance(value, Path):
                value = str(value)
            self._settings[key] = value
        self._write()


config = Config()
