"""Shared pytest fixtures for streammux tests."""

from typing import Any

import pytest

from streammux.control import PendingPermissionRequest


class RecordingEvents:
    """StreamEvents sink that records every callback in arrival order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def __getattr__(self, name: str):
        if not name.startswith("on_"):
            raise AttributeError(name)

        async def handler(event) -> None:
            self.calls.append((name, event))

        return handler

    def of(self, name: str) -> list[Any]:
        return [event for callback, event in self.calls if callback == name]

    def names(self) -> list[str]:
        return [callback for callback, _ in self.calls]


class RecordingWriter:
    """SessionWriter that records payloads per conversation."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.writes: list[tuple[str | None, dict]] = []

    def __call__(self, conversation_id: str | None, payload: dict) -> bool:
        self.writes.append((conversation_id, payload))
        return self.result


class RecordingSurface:
    """PermissionSurface that records prompts shown and withdrawn."""

    def __init__(self) -> None:
        self.requests: list[PendingPermissionRequest] = []
        self.questions: list[PendingPermissionRequest] = []
        self.resolved: list[dict] = []
        self.expired: list[PendingPermissionRequest] = []
        self.stuck: list[tuple[PendingPermissionRequest, float]] = []

    def on_permission_request(self, request: PendingPermissionRequest) -> None:
        self.requests.append(request)

    def on_user_question(self, request: PendingPermissionRequest) -> None:
        self.questions.append(request)

    def on_permission_resolved(self, request, *, allowed, resolved_by) -> None:
        self.resolved.append(
            {"request_id": request.request_id, "allowed": allowed, "resolved_by": resolved_by}
        )

    def on_permission_expired(self, request: PendingPermissionRequest) -> None:
        self.expired.append(request)

    def on_permission_stuck(self, request: PendingPermissionRequest, age_s: float) -> None:
        self.stuck.append((request, age_s))


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force the AnyIO pytest plugin to run tests under asyncio.

    The multiplexer uses asyncio primitives directly (tasks, StreamReader),
    which are incompatible with the trio backend.
    """
    return "asyncio"
