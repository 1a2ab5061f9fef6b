"""Chat message shapes exchanged with the inference endpoint."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True)
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def arguments_json(self) -> str:
        return json.dumps(self.arguments, ensure_ascii=False)

    def to_payload(self) -> dict[str, Any]:
        return {"function": {"name": self.name, "arguments": self.arguments}}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ToolCall:
        """Parse one ``tool_calls`` entry; arguments may arrive as a JSON string."""

        function = payload.get("function") or {}
        name = function.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("tool call without a function name")
        arguments = function.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as error:
                raise ValueError(f"tool call arguments are not valid JSON: {error}") from error
        if not isinstance(arguments, dict):
            raise ValueError("tool call arguments must be an object")
        return cls(name=name, arguments=arguments)


@dataclass(slots=True)
class Message:
    """One entry of a conversation history."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_payload() for call in self.tool_calls]
        if self.tool_name:
            payload["tool_name"] = self.tool_name
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Message:
        role = payload.get("role") or "assistant"
        if role not in {"system", "user", "assistant", "tool"}:
            raise ValueError(f"unexpected message role: {role!r}")
        return cls(
            role=role,
            content=payload.get("content") or "",
            tool_calls=[ToolCall.from_payload(item) for item in payload.get("tool_calls") or []],
            tool_name=payload.get("tool_name"),
        )


@dataclass(frozen=True, slots=True)
class ToolStartEvent:
    """Emitted right before a tool runs; ``args`` is the JSON text of its arguments."""

    tool: str
    args: str


@dataclass(frozen=True, slots=True)
class ToolResultEvent:
    tool: str
    result: str
