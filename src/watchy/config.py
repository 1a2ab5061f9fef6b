"""Runtime configuration: home directory layout, YAML config file, env overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_MODEL = "glm-4.7:cloud"
DEFAULT_THEME = "green"
DEFAULT_RETENTION_DAYS = 1
OLLAMA_CLOUD_URL = "https://ollama.com"


class ConfigError(ValueError):
    """Raised when the YAML config file exists but cannot be used."""


@dataclass(slots=True)
class TaskSettings:
    """Task supervision settings."""

    shell: str = "bash"
    retention_days: int = DEFAULT_RETENTION_DAYS
    bash_tool_timeout_seconds: float = 30.0


@dataclass(slots=True)
class AgentSettings:
    """Inference endpoint and agent loop settings."""

    model: str = DEFAULT_MODEL
    ollama_host: str | None = None
    api_key: str | None = None
    online: bool = False
    request_timeout_seconds: float = 120.0
    turn_timeout_seconds: float = 60.0
    ask_timeout_seconds: float = 30.0
    managed_server: bool = False
    managed_server_port: int = 11439


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    home_dir: Path = field(default_factory=lambda: Path.home() / ".watchy")
    theme: str = DEFAULT_THEME
    sqlite_busy_timeout_ms: int = 5_000
    tasks: TaskSettings = field(default_factory=TaskSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @property
    def logs_dir(self) -> Path:
        return self.home_dir / "logs"

    @property
    def db_path(self) -> Path:
        return self.home_dir / "watchy.db"

    @property
    def config_path(self) -> Path:
        return self.home_dir / "config.yaml"

    @property
    def ticks_path(self) -> Path:
        return self.home_dir / "ticks.json"

    @classmethod
    def from_env(cls, home_dir: Path | None = None) -> Settings:
        """Load settings from the config file and environment.

        Creates the home and logs directories, and writes a default config
        file when none exists yet.
        """

        resolved_home = home_dir or Path(
            os.getenv("WATCHY_HOME", str(Path.home() / ".watchy")),
        ).expanduser()
        settings = cls(home_dir=resolved_home)
        settings.ensure_dirs()

        file_values = _load_config_file(settings.config_path)
        if file_values is None:
            settings.save_config()
            file_values = {}

        settings.theme = str(file_values.get("theme", DEFAULT_THEME))
        settings.sqlite_busy_timeout_ms = int(os.getenv("WATCHY_SQLITE_BUSY_TIMEOUT_MS", "5000"))
        settings.tasks = TaskSettings(
            shell=os.getenv("WATCHY_SHELL", "bash"),
            retention_days=int(
                os.getenv(
                    "WATCHY_RETENTION_DAYS",
                    str(file_values.get("retention_days", DEFAULT_RETENTION_DAYS)),
                ),
            ),
            bash_tool_timeout_seconds=float(
                os.getenv("WATCHY_BASH_TOOL_TIMEOUT_SECONDS", "30"),
            ),
        )
        settings.agent = AgentSettings(
            model=os.getenv("WATCHY_MODEL", str(file_values.get("model", DEFAULT_MODEL))),
            ollama_host=os.getenv("OLLAMA_HOST") or None,
            api_key=os.getenv("OLLAMA_API_KEY") or None,
            request_timeout_seconds=float(os.getenv("WATCHY_REQUEST_TIMEOUT_SECONDS", "120")),
            turn_timeout_seconds=float(os.getenv("WATCHY_TURN_TIMEOUT_SECONDS", "60")),
            ask_timeout_seconds=float(os.getenv("WATCHY_ASK_TIMEOUT_SECONDS", "30")),
            managed_server=_env_bool("WATCHY_MANAGED_OLLAMA", default=False),
            managed_server_port=int(os.getenv("WATCHY_OLLAMA_PORT", "11439")),
        )
        return settings

    def ensure_dirs(self) -> None:
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def save_config(self) -> None:
        """Persist the user-editable part of the settings to config.yaml."""

        document = {
            "retention_days": self.tasks.retention_days,
            "model": self.agent.model,
            "theme": self.theme,
        }
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(yaml.safe_dump(document, sort_keys=False), "utf-8")

    def use_online(self) -> None:
        """Point the agent at the hosted Ollama API instead of a local server."""

        self.agent.online = True
        self.agent.ollama_host = OLLAMA_CLOUD_URL

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.tasks.retention_days < 0:
            raise ValueError("WATCHY_RETENTION_DAYS must be >= 0.")
        if not self.tasks.shell.strip():
            raise ValueError("WATCHY_SHELL must not be empty.")
        if self.tasks.bash_tool_timeout_seconds <= 0:
            raise ValueError("WATCHY_BASH_TOOL_TIMEOUT_SECONDS must be > 0.")
        if not self.agent.model.strip():
            raise ValueError("Model name must not be empty.")
        for name, value in (
            ("WATCHY_REQUEST_TIMEOUT_SECONDS", self.agent.request_timeout_seconds),
            ("WATCHY_TURN_TIMEOUT_SECONDS", self.agent.turn_timeout_seconds),
            ("WATCHY_ASK_TIMEOUT_SECONDS", self.agent.ask_timeout_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if not 0 < self.agent.managed_server_port < 65536:
            raise ValueError("WATCHY_OLLAMA_PORT must be a valid TCP port.")


def _load_config_file(path: Path) -> dict[str, Any] | None:
    """Return the parsed config mapping, or ``None`` when the file does not exist."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as error:
        raise ConfigError(f"failed to load config: {error}") from error

    try:
        document = yaml.safe_load(raw)
    except yaml.YAMLError as error:
        raise ConfigError(f"failed to load config {path}: {error}") from error

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(f"failed to load config {path}: expected a mapping")
    return document


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
