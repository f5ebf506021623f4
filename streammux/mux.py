"""Multiplexes the streams of many concurrent conversations.

Each conversation gets its own parser session and, when attached to a
subprocess, its own reader task. A session's state is only ever touched by the
task feeding that conversation, so sessions need no lock between them. Events
are delivered to the ``StreamEvents`` sink in stream order, one at a time.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from streammux.assembler import LineAssembler
from streammux.base import ApprovalPolicy, PermissionSurface, SessionWriter, StreamEvents
from streammux.channels import StdinChannels
from streammux.classifier import EventClassifier
from streammux.control import ControlProtocolManager, PendingPermissionRequest
from streammux.errors import ParseError
from streammux.events import (
    HANDLER_NAMES,
    AccountInfo,
    ControlRequest,
    Error,
    Event,
    Result,
    TurnComplete,
    UsageUpdate,
)
from streammux.logging import bind_conversation
from streammux.policy import AlwaysAllowPolicy
from streammux.session import ParserSession, SessionRegistry
from streammux.settings import settings
from streammux.turn import TurnPhase
from streammux.usage import UsageAggregator, UsageSnapshot

logger = structlog.get_logger(__name__)

READER_STOP_TIMEOUT = 5.0


class StreamMultiplexer:
    """Parses every conversation's stream and routes the resulting events.

    Args:
        events: Sink receiving decoded events. Optional for callers that only
            use the return value of ``feed``.
        writer: Outbound channel for control responses. Defaults to a
            ``StdinChannels`` instance, exposed as ``channels``.
        policy: Auto-approval query. Defaults to the always-allow ``rules``.
        surface: Where permission prompts are shown.
        rules: Always-allow rule set. A fresh empty one is used if omitted.
        hidden_tools: Tool names whose ``tool_use`` events are not emitted.
        context_window: Window assumed when a result reports none.
    """

    def __init__(
        self,
        events: StreamEvents | None = None,
        writer: SessionWriter | None = None,
        *,
        policy: ApprovalPolicy | None = None,
        surface: PermissionSurface | None = None,
        rules: AlwaysAllowPolicy | None = None,
        hidden_tools: frozenset[str] | None = None,
        context_window: int | None = None,
    ) -> None:
        self._events = events
        self.channels: StdinChannels | None = None
        if writer is None:
            self.channels = StdinChannels()
            writer = self.channels
        self.rules = rules if rules is not None else AlwaysAllowPolicy()
        self.control = ControlProtocolManager(writer, policy, surface, rules=self.rules)

        self._registry = SessionRegistry()
        self._assembler = LineAssembler()
        self._classifier = EventClassifier(hidden_tools=hidden_tools, context_window=context_window)
        self._usage = UsageAggregator()
        self._readers: dict[str, asyncio.Task] = {}
        self._stuck_monitor: asyncio.Task | None = None
        self._subscription_type: str | None = None

    # ------------------------------------------------------------------
    # Feeding
    # ------------------------------------------------------------------

    async def feed(self, chunk: bytes | str, conversation_id: str | None = None) -> list[Event]:
        """Feed a chunk of a conversation's stdout.

        Args:
            chunk: Any slice of the stream; lines may span chunks.
            conversation_id: Owning conversation. None uses the default session.

        Returns:
            The events decoded from the lines this chunk completed, in order.
        """
        session = self._registry.get(conversation_id)
        decoded: list[Event] = []
        for line in self._assembler.feed(session, chunk):
            decoded.extend(await self._process_line(session, line))
        return decoded

    async def finish(self, conversation_id: str | None = None) -> list[Event]:
        """Process whatever unterminated line remains at end of stream."""
        session = self._registry.peek(conversation_id)
        if session is None:
            return []
        tail = self._assembler.flush(session)
        if tail is None:
            return []
        return await self._process_line(session, tail)

    async def _process_line(self, session: ParserSession, line: str) -> list[Event]:
        if not line.strip():
            return []
        try:
            events = self._classifier.classify(line, session)
        except ParseError as e:
            logger.warning(
                "Discarding unparseable stream line",
                conversation_id=session.conversation_id,
                error=str(e),
                line=line[:200],
            )
            return []

        for event in events:
            await self._deliver(session, event)
        return events

    async def _deliver(self, session: ParserSession, event: Event) -> None:
        conversation_id = session.conversation_id
        session.turn.observe(event)

        if isinstance(event, ControlRequest):
            self.control.submit(
                event.request_id,
                event.tool_name,
                event.input,
                conversation_id,
                suggestions=event.suggestions,
                tool_use_id=event.tool_use_id,
            )
        elif isinstance(event, AccountInfo) and event.subscription_type:
            self._subscription_type = event.subscription_type

        await self._emit(event)

        if isinstance(event, Result):
            if event.usage is not None and not event.usage.is_empty:
                total = self._usage.add(conversation_id, event.usage)
                await self._emit(UsageUpdate(conversation_id, total))
            if session.turn.settle():
                logger.info(
                    "Turn complete",
                    conversation_id=conversation_id,
                    subtype=event.subtype,
                    stop_reason=event.stop_reason,
                )
                await self._emit(TurnComplete(conversation_id, event))

    async def _emit(self, event: Any) -> None:
        if self._events is None:
            return
        name = HANDLER_NAMES[type(event)]
        handler = getattr(self._events, name, None)
        if handler is None:
            return
        try:
            await handler(event)
        except Exception:
            # A failing consumer must not stall the stream.
            logger.exception(
                "Stream event callback failed",
                callback=name,
                conversation_id=getattr(event, "conversation_id", None),
            )

    # ------------------------------------------------------------------
    # Subprocess attachment
    # ------------------------------------------------------------------

    def attach(self, conversation_id: str, stdout: asyncio.StreamReader) -> asyncio.Task:
        """Start a reader task feeding ``stdout`` into the conversation.

        Attaching a conversation that already has a live reader returns the
        existing task.
        """
        existing = self._readers.get(conversation_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._read_stream(conversation_id, stdout))
        self._readers[conversation_id] = task
        return task

    def attach_process(self, conversation_id: str, proc: asyncio.subprocess.Process) -> asyncio.Task:
        """Wire a spawned subprocess: stdin as the outbound channel, stdout as input."""
        if proc.stdout is None:
            raise ValueError("Subprocess stdout must be a pipe")
        if proc.stdin is not None and self.channels is not None:
            self.channels.register(conversation_id, proc.stdin)
        return self.attach(conversation_id, proc.stdout)

    async def _read_stream(self, conversation_id: str, stdout: asyncio.StreamReader) -> None:
        bind_conversation(conversation_id)
        chunk_size = settings.read_chunk_size()
        logger.info("Starting stream reader", conversation_id=conversation_id)
        try:
            while True:
                chunk = await stdout.read(chunk_size)
                if not chunk:
                    logger.info("Stream EOF", conversation_id=conversation_id)
                    break
                await self.feed(chunk, conversation_id)
            await self.finish(conversation_id)
        except asyncio.CancelledError:
            logger.info("Stream reader cancelled", conversation_id=conversation_id)
        except Exception:
            logger.exception("Stream reader failed", conversation_id=conversation_id)
            await self._emit(Error(conversation_id, "Stream reader crashed"))
        finally:
            if self._readers.get(conversation_id) is asyncio.current_task():
                self._readers.pop(conversation_id, None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self, conversation_id: str) -> list[PendingPermissionRequest]:
        """Close a conversation: expire its prompts and drop its state.

        Other conversations are unaffected.

        Returns:
            The permission requests that were still pending.
        """
        expired = self.control.expire_all(conversation_id)
        if self.channels is not None:
            self.channels.unregister(conversation_id)

        task = self._readers.pop(conversation_id, None)
        if task is not None and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=READER_STOP_TIMEOUT)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        self._registry.dispose(conversation_id)
        self._usage.reset(conversation_id)
        logger.info(
            "Conversation closed",
            conversation_id=conversation_id,
            expired_requests=len(expired),
        )
        return expired

    def reset(self, conversation_id: str | None) -> None:
        """Clear one conversation's parser state, e.g. before a fresh process."""
        self._registry.reset(conversation_id)

    def reset_all(self) -> None:
        """Clear all parser state and usage totals."""
        self._registry.reset_all()
        self._usage.reset_all()

    def start_stuck_monitor(self, interval: float | None = None) -> asyncio.Task:
        """Start the background sweep that reports unanswered permission requests."""
        if self._stuck_monitor is None or self._stuck_monitor.done():
            self._stuck_monitor = asyncio.create_task(self.control.watch_stuck(interval))
        return self._stuck_monitor

    async def shutdown(self) -> None:
        """Stop every reader and the stuck monitor, then clear all state."""
        for conversation_id in list(self._readers):
            await self.close(conversation_id)
        if self._stuck_monitor is not None:
            self._stuck_monitor.cancel()
            try:
                await self._stuck_monitor
            except asyncio.CancelledError:
                pass
            self._stuck_monitor = None
        self.control.expire_all()
        self.reset_all()

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def phase(self, conversation_id: str | None) -> TurnPhase:
        session = self._registry.peek(conversation_id)
        return session.turn.phase if session is not None else TurnPhase.IDLE

    def usage(self, conversation_id: str | None) -> UsageSnapshot:
        return self._usage.get(conversation_id)

    def session(self, conversation_id: str | None) -> ParserSession | None:
        return self._registry.peek(conversation_id)

    def conversations(self) -> list[str]:
        return self._registry.ids()

    @property
    def subscription_type(self) -> str | None:
        return self._subscription_type
