"""Permission request tracking for the control sub-protocol.

The subprocess asks for approval with a ``control_request`` and blocks the tool
call until a matching ``control_response`` arrives on its stdin. Requests from
every conversation share one id space, so a single manager holds them all
behind one lock; decisions usually arrive from a UI thread while each
conversation's stream is processed elsewhere.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Callable

import structlog

from streammux.base import ApprovalPolicy, PermissionSurface, SessionWriter
from streammux.policy import AlwaysAllowPolicy, session_rule_for
from streammux.settings import settings
from streammux.wire import allow_response, answer_response, deny_response

logger = structlog.get_logger(__name__)

QUESTION_TOOL = "AskUserQuestion"


class Decision(str, Enum):
    """Immediate outcome of submitting a control request."""

    ALLOW = "allow"
    PENDING = "pending"


@dataclass
class PendingPermissionRequest:
    """A control request waiting for exactly one user decision."""

    request_id: str
    tool_name: str
    input: dict[str, Any]
    conversation_id: str | None
    created_at: float
    suggestions: list[Any] | None = None
    tool_use_id: str | None = None
    kind: str = "permission"
    stuck_reported: bool = False

    @property
    def is_question(self) -> bool:
        return self.kind == "question"

    @property
    def questions(self) -> list[Any]:
        questions = self.input.get("questions")
        return questions if isinstance(questions, list) else []


class ControlProtocolManager:
    """Correlates permission requests with user decisions across sessions.

    Args:
        writer: Writes a payload to a given conversation's subprocess.
        policy: Auto-approval query. Defaults to ``rules`` when omitted.
        surface: Shows and withdraws prompts. Optional.
        rules: Always-allow rule set updated when the user picks "always allow".
        stuck_after: Seconds before an unanswered request is reported as stuck.
        clock: Monotonic time source (overridable in tests).
    """

    def __init__(
        self,
        writer: SessionWriter,
        policy: ApprovalPolicy | None = None,
        surface: PermissionSurface | None = None,
        *,
        rules: AlwaysAllowPolicy | None = None,
        stuck_after: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._writer = writer
        self._rules = rules
        self._policy = policy if policy is not None else rules
        self._surface = surface
        self._stuck_after = (
            stuck_after if stuck_after is not None else settings.permission_stuck_seconds()
        )
        self._clock = clock
        self._lock = Lock()
        self._pending: dict[str, PendingPermissionRequest] = {}

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def submit(
        self,
        request_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        conversation_id: str | None,
        suggestions: list[Any] | None = None,
        tool_use_id: str | None = None,
    ) -> Decision:
        """Register a control request, or answer it at once if policy allows.

        Questions (``AskUserQuestion``) are never auto-approved.
        """
        is_question = tool_name == QUESTION_TOOL
        if not is_question and self._auto_approves(tool_name, tool_input):
            logger.info(
                "Permission auto-approved",
                request_id=request_id,
                tool_name=tool_name,
                conversation_id=conversation_id,
            )
            request = PendingPermissionRequest(
                request_id=request_id,
                tool_name=tool_name,
                input=tool_input,
                conversation_id=conversation_id,
                created_at=self._clock(),
                suggestions=suggestions,
                tool_use_id=tool_use_id,
            )
            self._write(
                conversation_id,
                allow_response(request_id, tool_input, tool_use_id),
                request_id,
            )
            self._notify("on_permission_resolved", request, allowed=True, resolved_by="policy")
            return Decision.ALLOW

        request = PendingPermissionRequest(
            request_id=request_id,
            tool_name=tool_name,
            input=tool_input,
            conversation_id=conversation_id,
            created_at=self._clock(),
            suggestions=suggestions,
            tool_use_id=tool_use_id,
            kind="question" if is_question else "permission",
        )
        with self._lock:
            duplicate = request_id in self._pending
            if not duplicate:
                self._pending[request_id] = request

        if duplicate:
            logger.warning(
                "Duplicate control request ignored",
                request_id=request_id,
                conversation_id=conversation_id,
            )
            return Decision.PENDING

        logger.info(
            "Permission request pending",
            request_id=request_id,
            tool_name=tool_name,
            kind=request.kind,
            conversation_id=conversation_id,
        )
        self._surface_request(request)
        return Decision.PENDING

    def resolve(
        self, request_id: str, approved: bool, always_allow: bool = False
    ) -> bool | None:
        """Apply the user's decision to a pending request.

        The response is written to the conversation the request came from,
        which need not be the one the user is looking at.

        Args:
            request_id: Id from the originating control request.
            approved: Allow (True) or deny (False).
            always_allow: Also allow matching invocations for the rest of the session.

        Returns:
            The write result, or None if the id is unknown or already resolved.
        """
        with self._lock:
            request = self._pending.pop(request_id, None)
        if request is None:
            logger.debug("Ignoring decision for unknown request", request_id=request_id)
            return None

        if approved:
            rule = None
            if always_allow:
                rule = session_rule_for(request.tool_name, request.input)
                if self._rules is not None:
                    self._rules.allow(request.tool_name, request.input)
            payload = allow_response(request_id, request.input, request.tool_use_id, rule)
        else:
            payload = deny_response(request_id, request.tool_use_id)

        logger.info(
            "Permission resolved",
            request_id=request_id,
            tool_name=request.tool_name,
            approved=approved,
            always_allow=always_allow,
            conversation_id=request.conversation_id,
        )
        ok = self._write(request.conversation_id, payload, request_id)
        self._notify("on_permission_resolved", request, allowed=approved, resolved_by="user")
        return ok

    def answer(self, request_id: str, answers: dict[str, str]) -> bool | None:
        """Send the user's answers to a pending ``AskUserQuestion`` request.

        Returns:
            The write result, or None if no such question is pending.
        """
        with self._lock:
            request = self._pending.get(request_id)
            if request is None or not request.is_question:
                request = None
            else:
                del self._pending[request_id]
        if request is None:
            logger.debug("Ignoring answer for unknown question", request_id=request_id)
            return None

        ok = self._write(request.conversation_id, answer_response(request_id, answers), request_id)
        self._notify("on_permission_resolved", request, allowed=True, resolved_by="user")
        return ok

    def expire_all(self, conversation_id: str | None = None) -> list[PendingPermissionRequest]:
        """Drop pending requests so no stale prompt is left on screen.

        Args:
            conversation_id: Only expire this conversation's requests. None
                expires every pending request.
        """
        with self._lock:
            if conversation_id is None:
                expired = list(self._pending.values())
                self._pending.clear()
            else:
                expired = [
                    r for r in self._pending.values() if r.conversation_id == conversation_id
                ]
                for request in expired:
                    del self._pending[request.request_id]

        for request in expired:
            logger.info(
                "Permission request expired",
                request_id=request.request_id,
                conversation_id=request.conversation_id,
            )
            self._notify("on_permission_expired", request)
        return expired

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def pending(self, conversation_id: str | None = None) -> list[PendingPermissionRequest]:
        """Return pending requests, oldest first, optionally for one conversation."""
        with self._lock:
            requests = list(self._pending.values())
        if conversation_id is not None:
            requests = [r for r in requests if r.conversation_id == conversation_id]
        return sorted(requests, key=lambda r: r.created_at)

    def has_pending(self, conversation_id: str | None = None) -> bool:
        return bool(self.pending(conversation_id))

    def resurface(self, conversation_id: str | None = None) -> int:
        """Show pending prompts again, e.g. after the user switches conversations.

        Returns:
            Number of prompts re-sent.
        """
        requests = self.pending(conversation_id)
        for request in requests:
            self._surface_request(request)
        return len(requests)

    # ------------------------------------------------------------------
    # Stuck-request monitoring
    # ------------------------------------------------------------------

    def check_stuck(self, now: float | None = None) -> list[PendingPermissionRequest]:
        """Report requests outstanding longer than the threshold, once each.

        Reported requests stay pending: approval is always the user's call.
        """
        now = self._clock() if now is None else now
        stuck: list[tuple[PendingPermissionRequest, float]] = []
        with self._lock:
            for request in self._pending.values():
                age = now - request.created_at
                if not request.stuck_reported and age >= self._stuck_after:
                    request.stuck_reported = True
                    stuck.append((request, age))

        for request, age in stuck:
            logger.warning(
                "Permission request has not been answered",
                request_id=request.request_id,
                tool_name=request.tool_name,
                conversation_id=request.conversation_id,
                age_s=round(age, 1),
            )
            self._notify("on_permission_stuck", request, age)
        return [request for request, _ in stuck]

    async def watch_stuck(self, interval: float | None = None) -> None:
        """Sweep for stuck requests until cancelled."""
        interval = interval if interval is not None else settings.stuck_check_interval_seconds()
        try:
            while True:
                await asyncio.sleep(interval)
                self.check_stuck()
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _auto_approves(self, tool_name: str, tool_input: dict[str, Any]) -> bool:
        if self._policy is None:
            return False
        try:
            return bool(self._policy(tool_name, tool_input))
        except Exception:
            # A broken policy must fall back to asking the user.
            logger.exception("Approval policy failed", tool_name=tool_name)
            return False

    def _surface_request(self, request: PendingPermissionRequest) -> None:
        if request.is_question:
            self._notify("on_user_question", request)
        else:
            self._notify("on_permission_request", request)

    def _write(self, conversation_id: str | None, payload: dict[str, Any], request_id: str) -> bool:
        try:
            ok = bool(self._writer(conversation_id, payload))
        except Exception:
            logger.exception(
                "Control response write raised",
                request_id=request_id,
                conversation_id=conversation_id,
            )
            return False
        if not ok:
            logger.warning(
                "Control response could not be written",
                request_id=request_id,
                conversation_id=conversation_id,
            )
        return ok

    def _notify(self, method: str, *args: Any, **kwargs: Any) -> None:
        if self._surface is None:
            return
        handler = getattr(self._surface, method, None)
        if handler is None:
            return
        try:
            handler(*args, **kwargs)
        except Exception:
            logger.exception("Permission surface callback failed", callback=method)
