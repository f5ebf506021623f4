"""Always-allow rules used to auto-approve tool invocations.

A rule pairs a tool name with a pattern matched against the invocation's
"command": the shell command for shell tools, the file path for file tools, and
the canonical JSON of the whole input for anything else. Shell rules are stored
as ``"<command> *"`` and match the command itself or any extension of it.
Persisting rules is left to the caller (see ``dump``/``load``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from threading import Lock
from typing import Any

import structlog

from streammux.wire import PermissionRule

logger = structlog.get_logger(__name__)

SHELL_TOOLS = frozenset({"Bash"})
FILE_TOOLS = frozenset({"Edit", "MultiEdit", "Write", "Read", "NotebookEdit"})


@dataclass(frozen=True)
class AllowRule:
    tool_name: str
    pattern: str


def extract_command(tool_name: str, tool_input: dict[str, Any]) -> str | None:
    """Return the string a rule for ``tool_name`` is matched against."""
    if tool_name in SHELL_TOOLS:
        command = tool_input.get("command")
        return command.strip() if isinstance(command, str) and command.strip() else None
    if tool_name in FILE_TOOLS:
        path = tool_input.get("file_path") or tool_input.get("notebook_path")
        return path if isinstance(path, str) and path else None
    try:
        return json.dumps(tool_input, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return None


def pattern_for(tool_name: str, command: str) -> str:
    if tool_name in SHELL_TOOLS:
        return f"{command} *"
    return command


def matches_pattern(command: str, pattern: str) -> bool:
    """Match a command against an exact pattern or a ``"<prefix> *"`` pattern."""
    if pattern.endswith(" *"):
        prefix = pattern[:-2]
        return command == prefix or command.startswith(prefix + " ")
    return command == pattern


def session_rule_for(tool_name: str, tool_input: dict[str, Any]) -> PermissionRule:
    """Build the ``updatedPermissions`` rule sent back to the subprocess."""
    if tool_name in SHELL_TOOLS or tool_name in FILE_TOOLS:
        return PermissionRule(
            tool_name=tool_name, rule_content=extract_command(tool_name, tool_input)
        )
    return PermissionRule(tool_name=tool_name)


class AlwaysAllowPolicy:
    """Thread-safe rule set that doubles as an ``ApprovalPolicy`` callable."""

    def __init__(self, rules: list[AllowRule] | None = None) -> None:
        self._lock = Lock()
        self._rules: list[AllowRule] = list(rules or [])

    def __call__(self, tool_name: str, tool_input: dict[str, Any]) -> bool:
        return self.should_auto_approve(tool_name, tool_input)

    def should_auto_approve(self, tool_name: str, tool_input: dict[str, Any]) -> bool:
        command = extract_command(tool_name, tool_input)
        if command is None:
            return False
        with self._lock:
            rules = list(self._rules)
        return any(
            rule.tool_name == tool_name and matches_pattern(command, rule.pattern)
            for rule in rules
        )

    def allow(self, tool_name: str, tool_input: dict[str, Any]) -> AllowRule | None:
        """Add a rule covering this invocation. Returns None if nothing can be matched."""
        command = extract_command(tool_name, tool_input)
        if command is None:
            return None
        rule = AllowRule(tool_name=tool_name, pattern=pattern_for(tool_name, command))
        with self._lock:
            if rule not in self._rules:
                self._rules.append(rule)
                logger.info(
                    "Added always-allow rule",
                    tool_name=rule.tool_name,
                    pattern=rule.pattern,
                )
        return rule

    def remove(self, tool_name: str, pattern: str) -> None:
        with self._lock:
            self._rules = [
                r for r in self._rules if not (r.tool_name == tool_name and r.pattern == pattern)
            ]

    def rules(self) -> list[AllowRule]:
        with self._lock:
            return list(self._rules)

    def dump(self) -> list[dict[str, str]]:
        """Serialize rules as ``[{"toolName": ..., "pattern": ...}]`` for storage."""
        return [{"toolName": r.tool_name, "pattern": r.pattern} for r in self.rules()]

    @classmethod
    def load(cls, entries: list[dict[str, Any]]) -> AlwaysAllowPolicy:
        """Build a policy from ``dump`` output, skipping malformed entries."""
        rules = []
        for entry in entries:
            tool_name = entry.get("toolName") if isinstance(entry, dict) else None
            pattern = entry.get("pattern") if isinstance(entry, dict) else None
            if isinstance(tool_name, str) and isinstance(pattern, str):
                rules.append(AllowRule(tool_name=tool_name, pattern=pattern))
            else:
                logger.warning("Skipping malformed permission rule", entry=entry)
        return cls(rules)
