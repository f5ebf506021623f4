"""Typed events decoded from a session's stream.

Every line the classifier accepts becomes one or more of these frozen
dataclasses. ``Event`` is the closed union of the decoded variants; collaborators
never see raw ``type`` strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from streammux.usage import UsageSnapshot


@dataclass(frozen=True)
class SessionStart:
    conversation_id: str | None
    session_id: str


@dataclass(frozen=True)
class ToolUse:
    conversation_id: str | None
    id: str
    name: str
    raw_input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    conversation_id: str | None
    tool_use_id: str
    tool_name: str
    content: Any = None
    is_error: bool = False


@dataclass(frozen=True)
class TextDelta:
    conversation_id: str | None
    text: str


@dataclass(frozen=True)
class Message:
    """A fully flushed assistant message."""

    conversation_id: str | None
    content: str


@dataclass(frozen=True)
class Result:
    """Turn summary reported by the subprocess.

    ``usage`` holds this payload's own figures, not the conversation total.
    """

    conversation_id: str | None
    subtype: str | None = None
    is_done: bool | None = None
    stop_reason: str | None = None
    is_error: bool = False
    result_text: str | None = None
    usage: UsageSnapshot | None = None
    cost: float | None = None


@dataclass(frozen=True)
class Error:
    conversation_id: str | None
    message: str


@dataclass(frozen=True)
class AccountInfo:
    conversation_id: str | None
    subscription_type: str | None = None


@dataclass(frozen=True)
class ControlRequest:
    """A mid-turn request asking the user to approve a tool invocation."""

    conversation_id: str | None
    request_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    suggestions: list[Any] | None = None
    tool_use_id: str | None = None


@dataclass(frozen=True)
class ControlResponse:
    """Echo of an outbound control response. Informational only."""

    request_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)


Event = Union[
    SessionStart,
    ToolUse,
    ToolResult,
    TextDelta,
    Message,
    Result,
    Error,
    AccountInfo,
    ControlRequest,
    ControlResponse,
]


# Notifications derived by the multiplexer rather than decoded from a line.


@dataclass(frozen=True)
class TurnComplete:
    conversation_id: str | None
    result: Result


@dataclass(frozen=True)
class UsageUpdate:
    """Cumulative usage for a conversation after a result was folded in."""

    conversation_id: str | None
    snapshot: UsageSnapshot


# Callback method name for each event type on a ``StreamEvents`` sink.
HANDLER_NAMES: dict[type, str] = {
    SessionStart: "on_session_start",
    ToolUse: "on_tool_use",
    ToolResult: "on_tool_result",
    TextDelta: "on_text_delta",
    Message: "on_message",
    Result: "on_result",
    Error: "on_error",
    AccountInfo: "on_account_info",
    ControlRequest: "on_control_request",
    ControlResponse: "on_control_response",
    TurnComplete: "on_turn_complete",
    UsageUpdate: "on_usage",
}
