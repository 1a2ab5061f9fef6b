"""Saved command shortcuts ("ticks") kept in a JSON file."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from watchy.storage.common import utc_now

RESERVED_NAMES = frozenset(
    {"start", "stop", "restart", "list", "logs", "info", "ask", "chat", "cleanup", "tick"},
)
_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class TickError(ValueError):
    """Invalid, duplicate or unknown tick."""


@dataclass(slots=True)
class Tick:
    name: str
    command: str
    description: str
    created_at: datetime


class TickStore:
    """Name -> command mapping persisted as pretty-printed JSON."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._ticks: dict[str, Tick] = {}
        self._load()

    def save(self, name: str, command: str, description: str = "") -> Tick:
        if not _NAME_RE.match(name):
            raise TickError(
                f"invalid tick name {name!r} (use alphanumeric, dash, or underscore)",
            )
        if name in RESERVED_NAMES:
            raise TickError(f"{name!r} is a reserved command name")
        if name in self._ticks:
            raise TickError(f"tick {name!r} already exists (use rm first to replace)")
        if not command.strip():
            raise TickError("tick command must not be empty")

        tick = Tick(name=name, command=command, description=description, created_at=utc_now())
        self._ticks[name] = tick
        self._write()
        return tick

    def get(self, name: str) -> Tick:
        try:
            return self._ticks[name]
        except KeyError:
            raise TickError(f"tick {name!r} not found") from None

    def has(self, name: str) -> bool:
        return name in self._ticks

    def list(self) -> list[Tick]:
        return [self._ticks[name] for name in sorted(self._ticks)]

    def remove(self, name: str) -> None:
        if name not in self._ticks:
            raise TickError(f"tick {name!r} not found")
        del self._ticks[name]
        self._write()

    def _load(self) -> None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as error:
            raise TickError(f"failed to load ticks from {self.path}: {error}") from error
        if not isinstance(document, dict):
            raise TickError(f"failed to load ticks from {self.path}: expected an object")

        for name, item in document.items():
            if not isinstance(item, dict):
                raise TickError(f"failed to load ticks from {self.path}: bad entry {name!r}")
            created_raw = item.get("created_at")
            try:
                created_at = datetime.fromisoformat(created_raw) if created_raw else utc_now()
            except (TypeError, ValueError):
                created_at = utc_now()
            self._ticks[name] = Tick(
                name=name,
                command=str(item.get("command", "")),
                description=str(item.get("description", "")),
                created_at=created_at,
            )

    def _write(self) -> None:
        document = {}
        for name in sorted(self._ticks):
            tick = self._ticks[name]
            item = {"command": tick.command, "created_at": tick.created_at.isoformat()}
            if tick.description:
                item["description"] = tick.description
            document[name] = item
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(document, indent=2, ensure_ascii=False), "utf-8")
