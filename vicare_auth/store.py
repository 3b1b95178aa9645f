"""JSON settings file holding the persisted refresh token.

The file is an opaque JSON object shared with other settings. Only the
``refreshToken`` key belongs to this package; saving merges into whatever is
already there. Storage problems never stop authentication: they are logged
as warnings and the session carries on without persistence.
"""

import json
import logging
import stat
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "vicare-auth" / "settings.json"

REFRESH_TOKEN_KEY = "refreshToken"


class StorageError(Exception):
    """Error in settings file operations."""

    pass


class StorageReadError(StorageError):
    """The settings file could not be read."""

    pass


class StorageWriteError(StorageError):
    """The settings file could not be written."""

    pass


class SettingsStore:
    """Load/save access to the settings file.

    Usage:
        store = SettingsStore(path)
        settings = store.load()
        store.save({"refreshToken": token})
    """

    def __init__(self, path: Path | None = None):
        """Initialize the store.

        Args:
            path: Settings file location (default ~/.config/vicare-auth/settings.json)
        """
        self.path = path or DEFAULT_SETTINGS_PATH
        self._settings: dict[str, Any] = {}
        self._loaded = False

    def _read_file(self) -> str | None:
        """Raw file content, or None if the file does not exist."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageReadError(f"Cannot read {self.path}: {e}") from e

    def _write_file(self, data: dict[str, Any]) -> None:
        """Write the settings object with owner-only permissions."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data), encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise StorageWriteError(f"Cannot write {self.path}: {e}") from e

        try:
            self.path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
        except OSError as e:
            logger.warning(f"Could not set file permissions: {e}")

    def load(self) -> dict[str, Any]:
        """Load the settings object.

        A missing file is created containing ``{}``. Unreadable or invalid
        content yields an empty object and a warning.

        Returns:
            The settings dictionary (a copy)
        """
        logger.debug("Loading local storage ...")
        settings: dict[str, Any] = {}

        try:
            raw = self._read_file()
        except StorageReadError as e:
            logger.warning(f"Error while loading local storage: {e}")
            raw = ""

        if raw is None:
            logger.debug("No storage file found, creating ...")
            try:
                self._write_file({})
            except StorageWriteError as e:
                logger.warning(f"Error while creating local storage: {e}")
        elif raw:
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f'Storage file "{self.path}" is not valid JSON')
            else:
                if isinstance(parsed, dict):
                    settings = parsed
                else:
                    logger.warning(f'Storage file "{self.path}" does not hold a JSON object')

        self._settings = settings
        self._loaded = True
        return dict(settings)

    def save(self, record: dict[str, Any]) -> bool:
        """Merge ``record`` into the settings file.

        Existing keys not named in ``record`` are preserved.

        Returns:
            True if the file was written, False if writing failed
        """
        if not self._loaded:
            self.load()

        logger.debug("Saving local storage ...")
        merged = {**self._settings, **record}

        try:
            self._write_file(merged)
        except StorageWriteError as e:
            logger.warning(f"Error while saving local storage: {e}")
            return False

        self._settings = merged
        logger.debug("Successfully saved local storage.")
        return True

    def get_refresh_token(self) -> str | None:
        """Stored refresh token, loading the file on first use."""
        if not self._loaded:
            self.load()
        token = self._settings.get(REFRESH_TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def save_refresh_token(self, refresh_token: str) -> bool:
        return self.save({REFRESH_TOKEN_KEY: refresh_token})
