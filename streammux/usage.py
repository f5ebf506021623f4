"""Token and cost extraction from result payloads, folded into per-session totals."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

DEFAULT_CONTEXT_WINDOW = 200_000


@dataclass(frozen=True)
class UsageSnapshot:
    """Token counts and cost for one turn, or cumulative for one session.

    ``context_used`` is always the most recent turn's figure, never a sum.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    context_window: int | None = None
    context_used: int = 0

    @property
    def context_fraction(self) -> float | None:
        """Share of the context window used by the latest turn, or None if unknown."""
        if not self.context_window or not self.context_used:
            return None
        return self.context_used / self.context_window

    @property
    def is_empty(self) -> bool:
        return not (
            self.input_tokens
            or self.output_tokens
            or self.cache_read_tokens
            or self.cache_creation_tokens
            or self.cost_usd
        )


def _as_number(value: Any) -> float:
    # bool is an int subclass; a stray true must not count as one token
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def _first_nonzero(sources: list[dict], key: str) -> int:
    for source in sources:
        value = _as_number(source.get(key))
        if value > 0:
            return int(value)
    return 0


def _usage_sources(payload: dict) -> list[dict]:
    """Return the dicts tokens may live in, highest precedence first."""
    sources = [payload]
    usage = payload.get("usage")
    if isinstance(usage, dict):
        sources.append(usage)
    result = payload.get("result")
    if isinstance(result, dict) and isinstance(result.get("usage"), dict):
        sources.append(result["usage"])
    return sources


def _reported_context_window(payload: dict) -> int | None:
    model_usage = payload.get("modelUsage")
    if not isinstance(model_usage, dict):
        return None
    for entry in model_usage.values():
        if isinstance(entry, dict):
            window = _as_number(entry.get("contextWindow"))
            if window > 0:
                return int(window)
    return None


def extract_usage(
    payload: dict, default_context_window: int = DEFAULT_CONTEXT_WINDOW
) -> UsageSnapshot:
    """Extract a usage snapshot from a ``result`` payload.

    Token counts may sit at the top level, under ``usage``, or under
    ``result.usage``. Precedence follows that order and the first non-zero
    value wins per field.

    Args:
        payload: Decoded ``result`` line.
        default_context_window: Window assumed when the payload reports none.
    """
    sources = _usage_sources(payload)
    input_tokens = _first_nonzero(sources, "input_tokens")
    output_tokens = _first_nonzero(sources, "output_tokens")
    cache_read = _first_nonzero(sources, "cache_read_input_tokens")
    cache_creation = _first_nonzero(sources, "cache_creation_input_tokens")
    cost = float(_as_number(payload.get("total_cost_usd")))

    return UsageSnapshot(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=cost,
        cache_read_tokens=cache_read,
        cache_creation_tokens=cache_creation,
        context_window=_reported_context_window(payload) or default_context_window,
        context_used=input_tokens + cache_read + cache_creation + output_tokens,
    )


class UsageAggregator:
    """Cumulative usage per conversation.

    Tokens and cost are additive across turns and never decrease. The context
    window figures are replaced by each new turn's snapshot.
    """

    def __init__(self) -> None:
        self._totals: dict[str | None, UsageSnapshot] = {}

    def add(self, conversation_id: str | None, turn: UsageSnapshot) -> UsageSnapshot:
        """Fold one turn's usage into the conversation total and return the new total."""
        current = self._totals.get(conversation_id, UsageSnapshot())
        updated = replace(
            current,
            input_tokens=current.input_tokens + max(turn.input_tokens, 0),
            output_tokens=current.output_tokens + max(turn.output_tokens, 0),
            cost_usd=current.cost_usd + max(turn.cost_usd, 0.0),
            cache_read_tokens=current.cache_read_tokens + max(turn.cache_read_tokens, 0),
            cache_creation_tokens=current.cache_creation_tokens
            + max(turn.cache_creation_tokens, 0),
            context_window=turn.context_window or current.context_window,
            context_used=turn.context_used or current.context_used,
        )
        self._totals[conversation_id] = updated
        return updated

    def get(self, conversation_id: str | None) -> UsageSnapshot:
        return self._totals.get(conversation_id, UsageSnapshot())

    def reset(self, conversation_id: str | None) -> None:
        self._totals.pop(conversation_id, None)

    def reset_all(self) -> None:
        self._totals.clear()
