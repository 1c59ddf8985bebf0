"""Configuration loader for the botgate daemon.

Loads botgate.toml, applies environment variable overrides for secrets,
validates required fields, and provides typed access to all settings.
Immutable after load: no runtime config reloading.
"""

import logging
import os
import tomllib
from datetime import date
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from channels import MessageType

log = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


# Environment variable overrides for secrets
_ENV_OVERRIDES = {
    "BOTGATE_OPENAI_KEY": ("api_keys", "openai"),
}

CHANNEL_TYPES = ("cli", "telegram")
DEFAULT_ACCEPTED_TYPES = ["Text", "Audio"]


def _deep_get(d: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if not isinstance(d, dict):
            return default
        d = d.get(key, default)
    return d


def _resolve_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def _valid_timezone(name: Any) -> bool:
    if not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


class Config:
    """Immutable configuration loaded from botgate.toml."""

    def __init__(self, data: dict, config_dir: Path | None = None):
        self._data = data
        self._config_dir = config_dir or Path.cwd()
        self._apply_env_overrides()
        self._validate()

    def _apply_env_overrides(self):
        for env_var, key_path in _ENV_OVERRIDES.items():
            val = os.environ.get(env_var)
            if val:
                section, key = key_path
                if section not in self._data:
                    self._data[section] = {}
                self._data[section][key] = val

    def _validate(self):
        errors = []
        if not _deep_get(self._data, "bot", "name"):
            errors.append("[bot] name is required")
        ch_type = _deep_get(self._data, "channel", "type")
        if not ch_type:
            errors.append("[channel] type is required")
        elif ch_type not in CHANNEL_TYPES:
            errors.append(f"[channel] type must be one of {', '.join(CHANNEL_TYPES)}, got {ch_type!r}")

        for key in ("groups", "contacts"):
            value = _deep_get(self._data, "whitelist", key, default=[])
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                errors.append(f"[whitelist] {key} must be a list of strings")

        accepted = _deep_get(self._data, "plugins", "accepted_types", default=DEFAULT_ACCEPTED_TYPES)
        unknown = [t for t in accepted if t not in MessageType.__members__]
        if unknown:
            errors.append(f"[plugins] accepted_types has unknown message types: {', '.join(map(str, unknown))}")

        names = _deep_get(self._data, "plugins", "chatbot_names")
        if names is not None and (not isinstance(names, list) or not names
                                  or not all(isinstance(n, str) and n for n in names)):
            errors.append("[plugins] chatbot_names must be a non-empty list of names")

        habit_tz = _deep_get(self._data, "plugins", "habit_timezone")
        if habit_tz is not None and not _valid_timezone(habit_tz):
            errors.append(f"[plugins] habit_timezone is not a valid timezone: {habit_tz!r}")

        for i, holiday in enumerate(_deep_get(self._data, "plugins", "holidays", default=[])):
            missing = [k for k in ("name", "keywords", "image", "start") if not holiday.get(k)]
            if missing:
                errors.append(f"[[plugins.holidays]] #{i + 1} missing {', '.join(missing)}")
                continue
            start = holiday["start"]
            if not isinstance(start, date):
                try:
                    date.fromisoformat(str(start))
                except ValueError:
                    errors.append(f"[[plugins.holidays]] #{i + 1} start is not a date: {start!r}")

        sched_tz = _deep_get(self._data, "scheduler", "timezone")
        if sched_tz is not None and not _valid_timezone(sched_tz):
            errors.append(f"[scheduler] timezone is not a valid timezone: {sched_tz!r}")

        if not isinstance(self._data.get("tasks", []), list):
            errors.append("[[tasks]] must be an array of tables")

        if errors:
            raise ConfigError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    # --- Bot ---

    @property
    def bot_name(self) -> str:
        return self._data["bot"]["name"]

    # --- Channel ---

    @property
    def channel_type(self) -> str:
        return self._data["channel"]["type"]

    @property
    def cli_config(self) -> dict:
        return _deep_get(self._data, "channel", "cli", default={})

    @property
    def telegram_config(self) -> dict:
        return _deep_get(self._data, "channel", "telegram", default={})

    # --- Whitelist ---

    @property
    def group_whitelist(self) -> list[str]:
        return _deep_get(self._data, "whitelist", "groups", default=[])

    @property
    def contact_whitelist(self) -> list[str]:
        return _deep_get(self._data, "whitelist", "contacts", default=[])

    # --- Plugins ---

    @property
    def accepted_types(self) -> list[MessageType]:
        names = _deep_get(self._data, "plugins", "accepted_types", default=DEFAULT_ACCEPTED_TYPES)
        return [MessageType[n] for n in names]

    @property
    def chatbot_names(self) -> list[str]:
        return _deep_get(self._data, "plugins", "chatbot_names", default=[self.bot_name])

    @property
    def audio_response(self) -> bool:
        return _deep_get(self._data, "plugins", "audio_response", default=True)

    @property
    def habit_timezone(self) -> str:
        return _deep_get(self._data, "plugins", "habit_timezone", default="America/Toronto")

    @property
    def holidays(self) -> list[dict]:
        return _deep_get(self._data, "plugins", "holidays", default=[])

    @property
    def image_dir(self) -> Path:
        raw = _deep_get(self._data, "plugins", "image_dir", default="assets/images")
        p = Path(raw).expanduser()
        return p if p.is_absolute() else (self._config_dir / p).resolve()

    # --- Scheduler ---

    @property
    def scheduler_timezone(self) -> str | None:
        return _deep_get(self._data, "scheduler", "timezone")

    @property
    def tasks(self) -> list[dict]:
        return self._data.get("tasks", [])

    # --- LLM ---

    @property
    def llm_provider(self) -> str:
        return _deep_get(self._data, "llm", "provider", default="openai-compat")

    @property
    def llm_model(self) -> str:
        return _deep_get(self._data, "llm", "model", default="gpt-4o-mini")

    @property
    def llm_base_url(self) -> str:
        return _deep_get(self._data, "llm", "base_url", default="")

    @property
    def llm_tts_model(self) -> str:
        return _deep_get(self._data, "llm", "tts_model", default="tts-1")

    @property
    def llm_tts_voice(self) -> str:
        return _deep_get(self._data, "llm", "tts_voice", default="alloy")

    @property
    def llm_stt_model(self) -> str:
        return _deep_get(self._data, "llm", "stt_model", default="whisper-1")

    @property
    def llm_timeout(self) -> float:
        return float(_deep_get(self._data, "llm", "timeout", default=60))

    @property
    def llm_history_messages(self) -> int:
        return _deep_get(self._data, "llm", "history_messages", default=40)

    @property
    def llm_assistants(self) -> dict[str, str]:
        return _deep_get(self._data, "llm", "assistants", default={})

    # --- Paths ---

    @property
    def state_dir(self) -> Path:
        return _resolve_path(_deep_get(self._data, "paths", "state_dir", default="~/.botgate"))

    @property
    def threads_db(self) -> Path:
        raw = _deep_get(self._data, "paths", "threads_db")
        return _resolve_path(raw) if raw else self.state_dir / "threads.db"

    @property
    def log_file(self) -> Path:
        raw = _deep_get(self._data, "paths", "log_file")
        return _resolve_path(raw) if raw else self.state_dir / "botgate.log"

    # --- Logging ---

    @property
    def log_max_bytes(self) -> int:
        return _deep_get(self._data, "logging", "max_bytes", default=10 * 1024 * 1024)

    @property
    def log_backup_count(self) -> int:
        return _deep_get(self._data, "logging", "backup_count", default=3)

    # --- API Keys ---

    def api_key(self, provider: str) -> str:
        return _deep_get(self._data, "api_keys", provider, default="")


def _load_dotenv(toml_path: Path) -> None:
    """Load .env file from same directory as botgate.toml if it exists."""
    env_file = toml_path.parent / ".env"
    if not env_file.exists():
        return
    with open(env_file, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, val = line.partition("=")
            key = key.strip()
            val = val.strip().strip('"').strip("'")
            # Environment takes precedence
            if key not in os.environ:
                os.environ[key] = val


def load_config(path: str | Path, overrides: dict | None = None) -> Config:
    """Load and validate config from a TOML file.

    Args:
        path: Path to botgate.toml config file.
        overrides: Dotted-key overrides applied to the raw TOML data before
                   constructing Config (e.g. CLI args).
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")
    _load_dotenv(p)
    try:
        with open(p, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {p}: {e}") from e
    if overrides:
        for key_path, value in overrides.items():
            keys = key_path.split(".")
            d = data
            for k in keys[:-1]:
                d = d.setdefault(k, {})
            d[keys[-1]] = value
    return Config(data, config_dir=p.parent)
