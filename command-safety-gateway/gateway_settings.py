"""Application settings — persisted JSON record behind a process-wide service.

Public API:
    service = get_settings_service()
    snapshot = service.get()          # immutable AppSettings
    service.update(terminal_font_size=16)

Readers only ever see whole snapshots; a concurrent update never changes a
snapshot that is already in use.
"""

import dataclasses
import json
import os
import sys
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SETTINGS_PATH_ENV = "TRUTHGIT_SETTINGS_PATH"
REPO_PATH_ENV = "TRUTHGIT_REPO_PATH"
VAULT_PATH_ENV = "TRUTHGIT_VAULT_PATH"

DEFAULT_API_MODE = "local"
DEFAULT_API_URL = "https://truthgit-api-342668283383.us-central1.run.app"
DEFAULT_RISK_PROFILE = "medium"
DEFAULT_TERMINAL_FONT_SIZE = 14


class SettingsError(Exception):
    pass


# ---------------------------------------------------------------------------
# Settings record
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AppSettings:
    vault_path: str
    truth_repo_path: str
    api_mode: str  # "remote" or "local"
    api_url: str
    default_risk_profile: str
    terminal_font_size: int
    auto_save_audit: bool

    @classmethod
    def defaults(cls) -> "AppSettings":
        home = Path.home()
        return cls(
            vault_path=os.environ.get(VAULT_PATH_ENV) or str(home / "Documents" / "Obsidian"),
            truth_repo_path=os.environ.get(REPO_PATH_ENV) or str(home / ".truth"),
            api_mode=DEFAULT_API_MODE,
            api_url=DEFAULT_API_URL,
            default_risk_profile=DEFAULT_RISK_PROFILE,
            terminal_font_size=DEFAULT_TERMINAL_FONT_SIZE,
            auto_save_audit=True,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "AppSettings":
        """Strict: every field must be present with the right type."""
        names = [f.name for f in dataclasses.fields(cls)]
        missing = [n for n in names if n not in data]
        if missing:
            raise SettingsError(f"Missing settings fields: {', '.join(missing)}")

        font_size = data["terminal_font_size"]
        if isinstance(font_size, bool) or not isinstance(font_size, int) or font_size < 0:
            raise SettingsError("terminal_font_size must be a non-negative integer")
        if not isinstance(data["auto_save_audit"], bool):
            raise SettingsError("auto_save_audit must be a boolean")
        for name in ("vault_path", "truth_repo_path", "api_mode", "api_url",
                     "default_risk_profile"):
            if not isinstance(data[name], str):
                raise SettingsError(f"{name} must be a string")

        return cls(**{n: data[n] for n in names})

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_settings_path() -> Path:
    override = os.environ.get(SETTINGS_PATH_ENV)
    if override:
        return Path(override)
    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "truthgit" / "settings.json"


def load_settings_from_file(path: Optional[Path] = None) -> Optional[AppSettings]:
    """Read settings; None if the file is absent or unusable."""
    path = Path(path) if path is not None else get_settings_path()
    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise SettingsError("settings file must hold a JSON object")
        return AppSettings.from_dict(data)
    except (OSError, json.JSONDecodeError, SettingsError) as e:
        print(f"WARNING: Ignoring unreadable settings file {path}: {e}", file=sys.stderr)
        return None


def save_settings_to_file(settings: AppSettings, path: Optional[Path] = None):
    path = Path(path) if path is not None else get_settings_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SettingsError(f"Failed to create config dir: {e}") from e
    try:
        path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
    except OSError as e:
        raise SettingsError(f"Failed to write settings: {e}") from e


# ---------------------------------------------------------------------------
# SettingsService
# ---------------------------------------------------------------------------

class SettingsService:
    """Process-wide holder of the current settings snapshot."""

    def __init__(self, path: Optional[Path] = None, initial: Optional[AppSettings] = None):
        self._path = Path(path) if path is not None else get_settings_path()
        self._lock = threading.Lock()
        # Serializes writers; readers never wait on disk I/O.
        self._write_lock = threading.Lock()
        if initial is None:
            initial = load_settings_from_file(self._path) or AppSettings.defaults()
        self._current = initial

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> AppSettings:
        with self._lock:
            return self._current

    def set(self, new_settings: AppSettings):
        """Persist first; the in-memory snapshot changes only if the write succeeded."""
        with self._write_lock:
            save_settings_to_file(new_settings, self._path)
            with self._lock:
                self._current = new_settings

    def update(self, **changes) -> AppSettings:
        with self._write_lock:
            new_settings = dataclasses.replace(self.get(), **changes)
            save_settings_to_file(new_settings, self._path)
            with self._lock:
                self._current = new_settings
            return new_settings


_service: Optional[SettingsService] = None
_service_lock = threading.Lock()


def get_settings_service() -> SettingsService:
    global _service
    with _service_lock:
        if _service is None:
            _service = SettingsService()
        return _service
