"""Decodes stream lines into typed events, updating the session's turn state."""

from __future__ import annotations

import json
from typing import Any, Callable

import structlog
from pydantic import ValidationError

from streammux.errors import ParseError
from streammux.events import (
    AccountInfo,
    ControlRequest,
    ControlResponse,
    Error,
    Event,
    Message,
    Result,
    SessionStart,
    TextDelta,
    ToolResult,
    ToolUse,
)
from streammux.session import ParserSession
from streammux.settings import settings
from streammux.turn import is_end_of_turn
from streammux.usage import extract_usage
from streammux.wire import (
    AccountInfoRecord,
    ControlRequestRecord,
    ErrorRecord,
    ResultRecord,
    ToolResultRecord,
    ToolUseRecord,
)

logger = structlog.get_logger(__name__)

UNKNOWN_TOOL = "Unknown"


class EventClassifier:
    """Turns one JSON line into zero or more events for a session.

    Text arrives either as incremental deltas or whole inside ``assistant``
    messages (or only in the final ``result``). The classifier accumulates
    deltas and flushes them as a single ``Message`` before the next tool call
    or at the end of the turn, and falls back to non-streamed text only when
    nothing was streamed, so each piece of text is shown exactly once.

    Args:
        hidden_tools: Tool names recorded for result lookup but not emitted.
        context_window: Window assumed when a result reports none.
    """

    def __init__(
        self,
        hidden_tools: frozenset[str] | None = None,
        context_window: int | None = None,
    ) -> None:
        self._hidden_tools = hidden_tools if hidden_tools is not None else settings.hidden_tools()
        self._context_window = context_window or settings.context_window()
        self._handlers: dict[str, Callable[[dict, ParserSession], list[Event]]] = {
            "tool_use": self._tool_use,
            "tool_result": self._tool_result,
            "stream_event": self._stream_event,
            "text_delta": self._text_delta,
            "assistant": self._assistant,
            "message": self._message,
            "result": self._result,
            "error": self._error,
        }

    def classify(self, line: str, session: ParserSession) -> list[Event]:
        """Decode a single line.

        Raises:
            ParseError: The line is not a JSON object, or a known record type
                is missing required fields.
        """
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON: {e.msg}", line) from e
        if not isinstance(data, dict):
            raise ParseError("Stream line is not a JSON object", line)

        etype = data.get("type")
        try:
            return self._classify(etype, data, session)
        except ValidationError as e:
            raise ParseError(f"Malformed {etype} record: {e.error_count()} error(s)", line) from e

    def _classify(self, etype: Any, data: dict, session: ParserSession) -> list[Event]:
        conversation_id = session.conversation_id

        # Control traffic sits outside the text/turn bookkeeping.
        if etype == "control_request":
            record = ControlRequestRecord.model_validate(data)
            return [
                ControlRequest(
                    conversation_id=conversation_id,
                    request_id=record.request_id,
                    tool_name=record.request.tool_name,
                    input=record.request.input,
                    suggestions=record.request.suggestions,
                    tool_use_id=record.request.tool_use_id,
                )
            ]
        if etype == "control_response":
            response = data.get("response")
            response = response if isinstance(response, dict) else {}
            request_id = response.get("request_id")
            return [
                ControlResponse(
                    request_id=request_id if isinstance(request_id, str) else None,
                    payload=response,
                )
            ]
        if etype == "account_info":
            record = AccountInfoRecord.model_validate(data)
            return [AccountInfo(conversation_id, record.subscription_type)]

        session_id = data.get("session_id")
        starts_session = (
            isinstance(session_id, str) and bool(session_id) and session.streaming_id is None
        )
        if starts_session:
            session.streaming_id = session_id

        handler = self._handlers.get(etype) if isinstance(etype, str) else None
        try:
            events = handler(data, session) if handler else []
        except ValidationError:
            if starts_session:
                session.streaming_id = None
            raise

        if starts_session:
            events.insert(0, SessionStart(conversation_id, session_id))
        return events

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _tool_use(self, data: dict, session: ParserSession) -> list[Event]:
        return self._record_tool(ToolUseRecord.model_validate(data), session)

    def _tool_result(self, data: dict, session: ParserSession) -> list[Event]:
        record = ToolResultRecord.model_validate(data)
        return [
            ToolResult(
                conversation_id=session.conversation_id,
                tool_use_id=record.tool_use_id,
                tool_name=session.tool_id_to_name.get(record.tool_use_id, UNKNOWN_TOOL),
                content=record.content,
                is_error=bool(record.is_error),
            )
        ]

    def _stream_event(self, data: dict, session: ParserSession) -> list[Event]:
        # Partial-message mode wraps deltas: event.delta.text
        event = data.get("event")
        if not isinstance(event, dict) or event.get("type") != "content_block_delta":
            return []
        delta = event.get("delta")
        if not isinstance(delta, dict) or delta.get("type") != "text_delta":
            return []
        return self._accumulate(delta.get("text"), session)

    def _text_delta(self, data: dict, session: ParserSession) -> list[Event]:
        return self._accumulate(data.get("text"), session)

    def _assistant(self, data: dict, session: ParserSession) -> list[Event]:
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            content = []

        events: list[Event] = []
        candidate = ""
        for item in content:
            if not isinstance(item, dict):
                continue
            item_type = item.get("type")
            if item_type == "tool_use":
                try:
                    record = ToolUseRecord.model_validate(item)
                except ValidationError:
                    logger.warning(
                        "Skipping malformed tool_use item",
                        conversation_id=session.conversation_id,
                    )
                    continue
                if record.name not in self._hidden_tools:
                    # Text written before a tool call is shown before it.
                    if session.accumulated_text:
                        events.extend(self._flush(session))
                    elif candidate and not session.streamed_this_turn:
                        events.extend(self._flush(session, candidate))
                        candidate = ""
                events.extend(self._record_tool(record, session))
            elif item_type == "text" and isinstance(item.get("text"), str):
                candidate += item["text"]

        if session.accumulated_text:
            events.extend(self._flush(session))
        elif candidate and not session.streamed_this_turn:
            events.extend(self._flush(session, candidate))
        return events

    def _message(self, data: dict, session: ParserSession) -> list[Event]:
        if session.accumulated_text:
            return self._flush(session)
        return []

    def _result(self, data: dict, session: ParserSession) -> list[Event]:
        record = ResultRecord.model_validate(data)
        result_text = record.result if isinstance(record.result, str) else None

        events: list[Event] = []
        if session.accumulated_text:
            events.extend(self._flush(session))
        elif not session.message_sent_this_turn and result_text:
            # The response was never streamed; the result carries the only copy.
            events.append(Message(session.conversation_id, result_text))

        result = Result(
            conversation_id=session.conversation_id,
            subtype=record.subtype,
            is_done=record.is_done,
            stop_reason=record.stop_reason,
            is_error=bool(record.is_error),
            result_text=result_text,
            usage=extract_usage(data, self._context_window),
            cost=record.total_cost_usd,
        )
        events.append(result)
        # An intermediate result (more output after a tool) keeps the turn's flags.
        if is_end_of_turn(result):
            session.start_new_turn()
        return events

    def _error(self, data: dict, session: ParserSession) -> list[Event]:
        record = ErrorRecord.model_validate(data)
        return [Error(session.conversation_id, record.text)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_tool(self, record: ToolUseRecord, session: ParserSession) -> list[Event]:
        session.tool_id_to_name[record.id] = record.name
        if record.name in self._hidden_tools:
            return []
        return [ToolUse(session.conversation_id, record.id, record.name, record.input)]

    def _accumulate(self, text: Any, session: ParserSession) -> list[Event]:
        if not isinstance(text, str) or not text:
            return []
        session.accumulated_text += text
        session.streamed_this_turn = True
        return [TextDelta(session.conversation_id, text)]

    def _flush(self, session: ParserSession, text: str | None = None) -> list[Event]:
        if text is None:
            text = session.accumulated_text
            session.accumulated_text = ""
        session.message_sent_this_turn = True
        return [Message(session.conversation_id, text)]
