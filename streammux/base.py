"""Protocol definitions for the collaborators streammux talks to."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from streammux.control import PendingPermissionRequest
    from streammux.events import (
        AccountInfo,
        ControlRequest,
        ControlResponse,
        Error,
        Message,
        Result,
        SessionStart,
        TextDelta,
        ToolResult,
        ToolUse,
        TurnComplete,
        UsageUpdate,
    )


class StreamEvents(Protocol):
    """Callbacks invoked, in stream order, for every decoded event of a session.

    Sinks may implement any subset; the multiplexer skips missing methods.
    """

    async def on_session_start(self, event: SessionStart) -> None: ...

    async def on_tool_use(self, event: ToolUse) -> None: ...

    async def on_tool_result(self, event: ToolResult) -> None: ...

    async def on_text_delta(self, event: TextDelta) -> None: ...

    async def on_message(self, event: Message) -> None: ...

    async def on_result(self, event: Result) -> None: ...

    async def on_error(self, event: Error) -> None: ...

    async def on_account_info(self, event: AccountInfo) -> None: ...

    async def on_control_request(self, event: ControlRequest) -> None: ...

    async def on_control_response(self, event: ControlResponse) -> None: ...

    async def on_turn_complete(self, event: TurnComplete) -> None:
        """Signal that the session finished a turn and is waiting for user input."""
        ...

    async def on_usage(self, event: UsageUpdate) -> None: ...


class PermissionSurface(Protocol):
    """Where pending permission prompts are shown and withdrawn.

    Called synchronously, possibly from a non-event-loop thread, and never while
    the control manager holds its lock.
    """

    def on_permission_request(self, request: PendingPermissionRequest) -> None: ...

    def on_user_question(self, request: PendingPermissionRequest) -> None: ...

    def on_permission_resolved(
        self,
        request: PendingPermissionRequest,
        *,
        allowed: bool,
        resolved_by: str,
    ) -> None: ...

    def on_permission_expired(self, request: PendingPermissionRequest) -> None: ...

    def on_permission_stuck(self, request: PendingPermissionRequest, age_s: float) -> None: ...


class SessionWriter(Protocol):
    """Write one outbound payload to a conversation's subprocess stdin."""

    def __call__(self, conversation_id: str | None, payload: dict[str, Any]) -> bool: ...


class ApprovalPolicy(Protocol):
    """Decide whether a tool invocation may run without asking the user."""

    def __call__(self, tool_name: str, tool_input: dict[str, Any]) -> bool: ...
