"""Stream parser and multiplexer for line-delimited JSON agent subprocesses."""

from __future__ import annotations

from streammux.base import ApprovalPolicy, PermissionSurface, SessionWriter, StreamEvents
from streammux.channels import StdinChannels
from streammux.control import ControlProtocolManager, Decision, PendingPermissionRequest
from streammux.errors import ParseError, StreamMuxError
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
    TurnComplete,
    UsageUpdate,
)
from streammux.mux import StreamMultiplexer
from streammux.policy import AllowRule, AlwaysAllowPolicy
from streammux.turn import TurnPhase, is_end_of_turn
from streammux.usage import UsageAggregator, UsageSnapshot, extract_usage

__all__ = [
    "AccountInfo",
    "AllowRule",
    "AlwaysAllowPolicy",
    "ApprovalPolicy",
    "ControlProtocolManager",
    "ControlRequest",
    "ControlResponse",
    "Decision",
    "Error",
    "Event",
    "Message",
    "ParseError",
    "PendingPermissionRequest",
    "PermissionSurface",
    "Result",
    "SessionStart",
    "SessionWriter",
    "StdinChannels",
    "StreamEvents",
    "StreamMultiplexer",
    "StreamMuxError",
    "TextDelta",
    "ToolResult",
    "ToolUse",
    "TurnComplete",
    "TurnPhase",
    "UsageAggregator",
    "UsageSnapshot",
    "UsageUpdate",
    "extract_usage",
    "is_end_of_turn",
]
