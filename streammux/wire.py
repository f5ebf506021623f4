"""Pydantic models for the line-delimited JSON wire format.

Inbound records are validated at the boundary so the classifier only ever
builds events from well-formed data. Outbound ``control_response`` payloads are
built from models and dumped with the camelCase names the subprocess expects.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Inbound records ---
#
# Only the fields an event cannot exist without are strict. Optional fields of
# the wrong type degrade to their default.


def _dict_or_empty(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _bool_or_none(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


class ToolUseRecord(BaseModel):
    """``tool_use`` line, or a ``tool_use`` item inside an assistant message."""

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)

    @field_validator("input", mode="before")
    @classmethod
    def input_as_dict(cls, value: Any) -> dict[str, Any]:
        return _dict_or_empty(value)


class ToolResultRecord(BaseModel):
    tool_use_id: str
    content: Any = None
    is_error: bool | None = False

    @field_validator("is_error", mode="before")
    @classmethod
    def lenient_flag(cls, value: Any) -> bool | None:
        return _bool_or_none(value)


class ResultRecord(BaseModel):
    subtype: str | None = None
    is_done: bool | None = None
    stop_reason: str | None = None
    is_error: bool | None = False
    result: Any = None
    total_cost_usd: float | None = None

    @field_validator("subtype", "stop_reason", mode="before")
    @classmethod
    def lenient_str(cls, value: Any) -> str | None:
        return _str_or_none(value)

    @field_validator("is_done", "is_error", mode="before")
    @classmethod
    def lenient_flag(cls, value: Any) -> bool | None:
        return _bool_or_none(value)

    @field_validator("total_cost_usd", mode="before")
    @classmethod
    def lenient_cost(cls, value: Any) -> float | None:
        return _number_or_none(value)


class ErrorRecord(BaseModel):
    message: Any = None

    @property
    def text(self) -> str:
        if isinstance(self.message, str) and self.message:
            return self.message
        if isinstance(self.message, dict) and isinstance(self.message.get("message"), str):
            return self.message["message"]
        return "Unknown error"


class AccountInfoRecord(BaseModel):
    subscription_type: str | None = None

    @field_validator("subscription_type", mode="before")
    @classmethod
    def lenient_str(cls, value: Any) -> str | None:
        return _str_or_none(value)


class ControlRequestBody(BaseModel):
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    suggestions: list[Any] | None = None
    tool_use_id: str | None = None

    @field_validator("input", mode="before")
    @classmethod
    def input_as_dict(cls, value: Any) -> dict[str, Any]:
        return _dict_or_empty(value)

    @field_validator("suggestions", mode="before")
    @classmethod
    def lenient_list(cls, value: Any) -> list[Any] | None:
        return value if isinstance(value, list) else None

    @field_validator("tool_use_id", mode="before")
    @classmethod
    def lenient_str(cls, value: Any) -> str | None:
        return _str_or_none(value)


class ControlRequestRecord(BaseModel):
    """``control_request`` line.

    Older CLI builds put ``tool_name``/``input`` at the top level instead of
    under ``request``; both layouts are accepted. A nested request without an
    input falls back to a top-level one.
    """

    request_id: str
    request: ControlRequestBody

    @model_validator(mode="before")
    @classmethod
    def lift_flat_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        request = data.get("request")
        if not isinstance(request, dict):
            lifted = {
                key: data[key]
                for key in ("tool_name", "input", "suggestions", "tool_use_id")
                if key in data
            }
            return {**data, "request": lifted}
        if not request.get("input") and isinstance(data.get("input"), dict):
            return {**data, "request": {**request, "input": data["input"]}}
        return data


# --- Outbound control responses ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PermissionRule(_CamelModel):
    tool_name: str = Field(alias="toolName")
    rule_content: str | None = Field(default=None, alias="ruleContent")


class PermissionUpdate(_CamelModel):
    type: Literal["addRules"] = "addRules"
    rules: list[PermissionRule]
    behavior: Literal["allow"] = "allow"
    destination: Literal["session"] = "session"


class PermissionDecision(_CamelModel):
    behavior: Literal["allow", "deny"]
    updated_input: dict[str, Any] | None = Field(default=None, alias="updatedInput")
    tool_use_id: str | None = Field(default=None, alias="toolUseID")
    updated_permissions: list[PermissionUpdate] | None = Field(
        default=None, alias="updatedPermissions"
    )
    message: str | None = None
    interrupt: bool | None = None


def _envelope(request_id: str, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "control_response",
        "response": {
            "subtype": "success",
            "request_id": request_id,
            "response": body,
        },
    }


def allow_response(
    request_id: str,
    tool_input: dict[str, Any] | None = None,
    tool_use_id: str | None = None,
    rule: PermissionRule | None = None,
) -> dict[str, Any]:
    """Build an ``allow`` control response, optionally adding a session rule."""
    decision = PermissionDecision(
        behavior="allow",
        updated_input=tool_input if tool_input is not None else {},
        tool_use_id=tool_use_id,
        updated_permissions=[PermissionUpdate(rules=[rule])] if rule else None,
    )
    return _envelope(request_id, decision.model_dump(by_alias=True, exclude_none=True))


def deny_response(
    request_id: str,
    tool_use_id: str | None = None,
    message: str = "User denied permission",
) -> dict[str, Any]:
    """Build a ``deny`` control response that also interrupts the turn."""
    decision = PermissionDecision(
        behavior="deny",
        tool_use_id=tool_use_id,
        message=message,
        interrupt=True,
    )
    return _envelope(request_id, decision.model_dump(by_alias=True, exclude_none=True))


def answer_response(request_id: str, answers: dict[str, str]) -> dict[str, Any]:
    """Build the control response carrying a user's answers to a question."""
    return _envelope(request_id, {"answers": dict(answers)})


def encode_line(payload: dict[str, Any]) -> bytes:
    """Encode a payload as one compact JSON line."""
    return (json.dumps(payload, separators=(",", ":")) + "\n").encode()
