"""Errors raised by the agent loop and its tools."""

from __future__ import annotations


class AgentError(RuntimeError):
    """Base class for conversation failures surfaced to the caller."""


class Cancelled(AgentError):
    """The turn's cancel token fired (explicit cancel or deadline)."""

    def __init__(self, message: str = "request cancelled") -> None:
        super().__init__(message)


class MaxIterationsExceeded(AgentError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"agent exceeded maximum iterations ({limit})")


class InferenceError(AgentError):
    """Chat request to the inference endpoint failed."""


class InferenceTimeout(InferenceError):
    """Chat request hit its transport timeout."""


class ToolFailure(AgentError):
    """A tool call could not be performed.

    Never escapes a turn: the loop turns it into the tool result text.
    """


class UnknownTool(ToolFailure):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unknown tool: {name}")


class InvalidArgument(ToolFailure):
    """A tool argument has the wrong type or value."""


class MissingArgument(InvalidArgument):
    def __init__(self, argument: str) -> None:
        self.argument = argument
        super().__init__(f"missing '{argument}' argument")


class CommandNotAllowed(ToolFailure):
    def __init__(self, program: str) -> None:
        self.program = program
        super().__init__(
            f"command '{program}' is not allowed. Only read-only commands are permitted",
        )
