"""Bounded, cancellable tool-calling loop over a chat history."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from watchy.agent.cancellation import CancelToken
from watchy.agent.client import ChatClient
from watchy.agent.errors import Cancelled, InferenceTimeout, MaxIterationsExceeded
from watchy.agent.messages import Message, ToolCall, ToolResultEvent, ToolStartEvent
from watchy.agent.prompts import (
    FALLBACK_SYSTEM_PROMPT,
    EnvironmentFacts,
    focused_prompt,
    operator_prompt,
)
from watchy.agent.tools import TOOL_SCHEMAS, ToolExecutor
from watchy.config import DEFAULT_MODEL
from watchy.tasks.errors import TaskError
from watchy.tasks.manager import TaskManager

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10
MAX_CONTEXT_TOKENS = 16_000
CHARS_PER_TOKEN = 4
KEEP_HEAD = 4
KEEP_TAIL = 16
_DEADLINE_SLACK_SECONDS = 0.5

ToolStartCallback = Callable[[ToolStartEvent], None]
ToolResultCallback = Callable[[ToolResultEvent], None]


class Agent:
    """Model selection, tool execution and single-shot questions about tasks."""

    def __init__(
        self,
        manager: TaskManager,
        client: ChatClient,
        *,
        model: str = DEFAULT_MODEL,
        executor: ToolExecutor | None = None,
        turn_timeout_seconds: float = 60.0,
        ask_timeout_seconds: float = 30.0,
        facts: EnvironmentFacts | None = None,
    ) -> None:
        self.manager = manager
        self.client = client
        self.executor = executor or ToolExecutor(manager)
        self.turn_timeout_seconds = turn_timeout_seconds
        self.ask_timeout_seconds = ask_timeout_seconds
        self.facts = facts
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def set_model(self, model: str) -> None:
        if not model.strip():
            raise ValueError("model name must not be empty")
        self._model = model

    def new_conversation(self) -> Conversation:
        return Conversation(self)

    def execute_tool(self, call: ToolCall) -> str:
        return self.executor.execute(call)

    def ask(self, task_id: int, question: str) -> str:
        """Answer one question about ``task_id`` without keeping history."""

        focused = self.manager.get_task(task_id)
        tasks = self.manager.list_tasks()
        messages = [
            Message(role="system", content=focused_prompt(tasks, focused)),
            Message(role="user", content=question),
        ]
        cancel = CancelToken.with_timeout(self.ask_timeout_seconds)
        return self.run_turn(messages, cancel)

    def run_turn(
        self,
        messages: list[Message],
        cancel: CancelToken,
        on_tool_start: ToolStartCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> str:
        """Drive model calls and tool calls until a reply without tool calls.

        Appends every reply and tool result to ``messages`` in place.
        """

        for _ in range(MAX_ITERATIONS):
            cancel.raise_if_cancelled()
            reply = self._chat(messages, cancel)
            # A reply that arrives after cancellation is discarded.
            cancel.raise_if_cancelled()
            messages.append(reply)
            if not reply.tool_calls:
                return reply.content

            for call in reply.tool_calls:
                cancel.raise_if_cancelled()
                if on_tool_start is not None:
                    on_tool_start(ToolStartEvent(tool=call.name, args=call.arguments_json()))
                result = self._execute_tool_safely(call)
                if on_tool_result is not None:
                    on_tool_result(ToolResultEvent(tool=call.name, result=result))
                messages.append(Message(role="tool", content=result, tool_name=call.name))

        raise MaxIterationsExceeded(MAX_ITERATIONS)

    def _chat(self, messages: list[Message], cancel: CancelToken) -> Message:
        try:
            return self.client.chat(
                model=self._model,
                messages=messages,
                tools=TOOL_SCHEMAS,
                timeout=cancel.remaining(),
            )
        except InferenceTimeout as error:
            left = cancel.remaining()
            if cancel.cancelled or (left is not None and left < _DEADLINE_SLACK_SECONDS):
                raise Cancelled from error
            raise

    def _execute_tool_safely(self, call: ToolCall) -> str:
        try:
            return self.execute_tool(call)
        except Exception as error:  # noqa: BLE001
            logger.debug("Tool %s failed: %s", call.name, error)
            return f"Error executing tool: {error}"


class Conversation:
    """Chat history for one session; message 0 is always the system prompt.

    A turn works on a copy of the history. The copy replaces ``messages`` only
    when the turn ends without cancellation; an abandoned turn writes nothing.
    """

    def __init__(self, agent: Agent) -> None:
        self.agent = agent
        self.messages: list[Message] = []
        self._lock = threading.Lock()
        self.refresh_system_prompt()

    def refresh_system_prompt(self) -> None:
        """Re-render message 0 from the current task table, keeping the rest."""

        try:
            tasks = self.agent.manager.list_tasks()
        except TaskError as error:
            logger.warning("Could not load task list for the system prompt: %s", error)
            prompt = FALLBACK_SYSTEM_PROMPT
        else:
            facts = self.agent.facts or EnvironmentFacts.collect()
            prompt = operator_prompt(tasks, facts)

        system = Message(role="system", content=prompt)
        with self._lock:
            if self.messages:
                self.messages[0] = system
            else:
                self.messages.append(system)

    def send_with_events(
        self,
        cancel: CancelToken,
        text: str,
        on_tool_start: ToolStartCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> str:
        """Run one turn for ``text`` and return the model's final answer.

        Raises ``Cancelled`` when ``cancel`` fires at a checkpoint and
        ``MaxIterationsExceeded`` when the model keeps calling tools.
        """

        with self._lock:
            self.messages.append(Message(role="user", content=text))
            self.trim_context()
            working = list(self.messages)

        answer = self.agent.run_turn(working, cancel, on_tool_start, on_tool_result)

        with self._lock:
            cancel.raise_if_cancelled()
            self.messages = working
        return answer

    def send(self, text: str) -> str:
        cancel = CancelToken.with_timeout(self.agent.ask_timeout_seconds)
        return self.send_with_events(cancel, text)

    def trim_context(self) -> None:
        """Drop middle messages once the history is estimated over the token budget."""

        total_chars = sum(len(message.content) for message in self.messages)
        if total_chars // CHARS_PER_TOKEN <= MAX_CONTEXT_TOKENS:
            return
        if len(self.messages) <= 1 + KEEP_HEAD + KEEP_TAIL:
            return
        self.messages = (
            self.messages[:1]
            + self.messages[1 : 1 + KEEP_HEAD]
            + self.messages[-KEEP_TAIL:]
        )
