# ABOUTME: Configuration management using XDG Base Directory specification
# ABOUTME: Handles config.json, the conversation database location, logs, and backups
import json
import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any

from mailhub.exceptions import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "mailhub"
DEFAULT_START_DATE = "2025-01-01"
REQUIRED_SECTIONS = ("import", "storage", "security", "ui")
SYSTEM_DIRS = {"/", "/etc", "/usr", "/bin", "/sbin", "/var", "/tmp"}


def _xdg_home(variable: str, fallback: str) -> Path:
    return Path(os.environ.get(variable) or os.path.expanduser(fallback)) / APP_NAME


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S")


def _bounded(value: Any, default: int, name: str, low: int = 1, high: int = 1000) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name} {value!r}, defaulting to {default}")
        number = default
    return min(max(low, number), high)


class Config:
    """
    mailhub settings and directories.

    Without an explicit config_dir the XDG locations are used:
    - Config: $XDG_CONFIG_HOME/mailhub (config.json, backups/)
    - Data: $XDG_DATA_HOME/mailhub (conversation database)
    - State: $XDG_STATE_HOME/mailhub (logs/)
    - Cache: $XDG_CACHE_HOME/mailhub

    An explicit config_dir (tests, throwaway setups) holds everything, with
    data/, state/ and cache/ beneath it.
    """

    def __init__(self, config_dir: str | None = None):
        if config_dir is None:
            self.config_dir = _xdg_home("XDG_CONFIG_HOME", "~/.config").resolve()
            self.data_dir = _xdg_home("XDG_DATA_HOME", "~/.local/share")
            self.state_dir = _xdg_home("XDG_STATE_HOME", "~/.local/state")
            self.cache_dir = _xdg_home("XDG_CACHE_HOME", "~/.cache")
        else:
            self.config_dir = Path(config_dir).resolve()
            self.data_dir = self.config_dir / "data"
            self.state_dir = self.config_dir / "state"
            self.cache_dir = self.config_dir / "cache"

        if str(self.config_dir) in SYSTEM_DIRS:
            raise ConfigError(
                f"Cannot use system directory as config dir: {self.config_dir}",
                recovery_hint="Set XDG_CONFIG_HOME or pass a dedicated directory",
            )
        logger.debug(f"Using config directory: {self.config_dir}")

        self._ensure_directories()
        self.settings = self._load_settings()
        self._apply_environment()

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    def _ensure_directories(self):
        for directory in (
            self.config_dir,
            self.config_dir / "backups",
            self.data_dir,
            self.state_dir / "logs",
            self.cache_dir,
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True, mode=0o700)
            except OSError as e:
                raise ConfigError(
                    f"Failed to create {directory}: {e}",
                    recovery_hint="Check permissions of the XDG directories",
                ) from e

    def _load_settings(self) -> dict[str, Any]:
        """Read config.json, replacing it with defaults when it is unusable."""
        if not self.config_file.exists():
            settings = self._default_settings()
            self._write(settings)
            return settings

        try:
            loaded = json.loads(self.config_file.read_text())
        except json.JSONDecodeError as e:
            return self._reset_invalid("Invalid JSON in config.json!", f"Error: {e}")
        except OSError as e:
            logger.error(f"Failed to read {self.config_file}: {e}")
            return self._default_settings()

        problem = self._structure_problem(loaded)
        if problem:
            logger.error(problem)
            return self._reset_invalid("Invalid config.json structure!", problem)

        return self._validate_settings(loaded)

    def _structure_problem(self, settings: Any) -> str | None:
        if not isinstance(settings, dict):
            return "Config is not a JSON object"
        for section in REQUIRED_SECTIONS:
            if section not in settings:
                return f"Config missing required key: {section}"
            if not isinstance(settings[section], dict):
                return f"Config key {section} has wrong type: {type(settings[section]).__name__}"
        return None

    def _reset_invalid(self, reason: str, detail: str) -> dict[str, Any]:
        """Move the broken config aside and start again from defaults."""
        backup_path = self.config_file.with_name(f"config.json.invalid_{_timestamp()}")
        self.config_file.rename(backup_path)
        logger.error(f"{reason} Backed up to {backup_path}")
        print(f"\n⚠️  WARNING: {reason}")
        print(f"   Backed up to: {backup_path}")
        print(f"   {detail}")
        print("   Using default settings instead.\n")

        settings = self._default_settings()
        self._write(settings)
        return settings

    def _default_settings(self) -> dict[str, Any]:
        return {
            "import": {
                "start_date": DEFAULT_START_DATE,  # Skip mail older than this
                "batch_size": 20,  # Progress is reported per batch
                "operator_address": "",  # Sender used for sent mail without From
            },
            "storage": {
                "database": "mailhub.db",  # Relative paths live in the data dir
            },
            "security": {"max_email_size_mb": 25},
            "ui": {
                "max_preview_lines": 8,
                "list_limit": 50,
            },
        }

    def _validate_settings(self, settings: dict[str, Any]) -> dict[str, Any]:
        """Fill in missing keys and pull values back into range."""
        for section, values in self._default_settings().items():
            current = settings.setdefault(section, {})
            for key, value in values.items():
                current.setdefault(key, value)

        import_settings = settings["import"]
        import_settings["batch_size"] = _bounded(import_settings["batch_size"], 20, "import batch_size")

        start_date = import_settings["start_date"]
        if start_date:
            try:
                date.fromisoformat(str(start_date))
            except ValueError:
                logger.warning(
                    f"Invalid import start_date '{start_date}', defaulting to {DEFAULT_START_DATE}"
                )
                import_settings["start_date"] = DEFAULT_START_DATE

        ui_settings = settings["ui"]
        ui_settings["list_limit"] = _bounded(ui_settings["list_limit"], 50, "ui list_limit")
        return settings

    def _apply_environment(self):
        """MAILHUB_* overrides (the CLI also loads them from .env)"""
        if os.environ.get("MAILHUB_DB"):
            self.settings["storage"]["database"] = os.environ["MAILHUB_DB"]
        if os.environ.get("MAILHUB_OPERATOR_ADDRESS"):
            self.settings["import"]["operator_address"] = os.environ["MAILHUB_OPERATOR_ADDRESS"]

    def _write(self, settings: dict[str, Any]):
        try:
            self.config_file.write_text(json.dumps(settings, indent=2, sort_keys=True))
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def save_config(self):
        """Write the current settings to config.json"""
        self._write(self.settings)
        logger.debug("Configuration saved")

    def get_database_path(self) -> Path:
        database = Path(self.settings["storage"]["database"]).expanduser()
        return database if database.is_absolute() else self.data_dir / database

    def get_start_date(self) -> date | None:
        value = self.settings["import"].get("start_date")
        return date.fromisoformat(value) if value else None

    def get_log_dir(self) -> Path:
        return self.state_dir / "logs"

    def backup_file(self, file_path: Path) -> Path:
        """Copy file_path to backups/<stem>_<YYYYmmddHHMMSS><suffix>.

        Returns the backup path; nothing is written when file_path is missing.
        """
        backup_path = self.config_dir / "backups" / f"{file_path.stem}_{_timestamp()}{file_path.suffix}"
        if file_path.exists():
            backup_path.write_bytes(file_path.read_bytes())
            logger.info(f"Backed up {file_path} to {backup_path}")
        return backup_path
