"""
Core types for the assistant runtime.

These are the data structures that flow between the conversation driver,
the approval gate, the tool executor and the model backend. History is a
list of Message objects; it only ever grows at the end.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Message roles in the conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class AutonomyLevel(str, Enum):
    """How freely dangerous tools may run."""
    ASK = "ask"
    ALLOWLIST = "allowlist"
    FULL = "full"

    @classmethod
    def parse(cls, value: "str | AutonomyLevel") -> "AutonomyLevel":
        if isinstance(value, AutonomyLevel):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown autonomy level '{value}' (expected ask, allowlist or full)"
            ) from None


class ErrorKind(str, Enum):
    """Failure taxonomy for tool outcomes."""
    VALIDATION_ERROR = "validation_error"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"
    APPROVAL_DENIED = "approval_denied"
    EXECUTION_FAILURE = "execution_failure"
    UNKNOWN_TOOL = "unknown_tool"
    ITERATION_EXHAUSTED = "iteration_exhausted"


@dataclass
class ToolCall:
    """
    A request from the model to execute a tool.

    ids are unique within the batch they arrive in.
    """
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function")
        if not isinstance(function, dict):
            function = {}
        arguments = data.get("arguments")
        if arguments is None:
            # OpenAI-style {"function": {"name", "arguments"}}
            arguments = function.get("arguments")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or function.get("name") or ""),
            arguments=_coerce_arguments(arguments),
        )


@dataclass
class ToolOutcome:
    """
    Normalized result of running one tool.

    Every executor path ends in one of these; primitives never leak
    their own exceptions past the executor.
    """
    success: bool
    result: Any = None
    error: str | None = None
    kind: ErrorKind | None = None

    @classmethod
    def ok(cls, result: Any = None) -> "ToolOutcome":
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str) -> "ToolOutcome":
        return cls(success=False, error=error, kind=kind)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: {success, result?, error?}."""
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        return data


@dataclass
class ToolResult:
    """
    The outcome of a ToolCall, keyed back to the call's id.

    tool_call_id always refers to a call in the immediately preceding
    assistant tool-call turn.
    """
    tool_call_id: str
    output: ToolOutcome
    name: str = ""

    @property
    def success(self) -> bool:
        return self.output.success

    def to_dict(self) -> dict[str, Any]:
        return {"tool_call_id": self.tool_call_id, "output": self.output.to_dict()}


@dataclass
class Message:
    """
    A single conversation turn.

    Tool-call turns carry the batch in tool_calls; tool turns carry every
    result of that batch in tool_results.
    """
    role: Role
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    tool_results: list[ToolResult] | None = None

    @property
    def is_tool_call_turn(self) -> bool:
        return self.role == Role.ASSISTANT and bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the relay wire format."""
        result: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
        }
        if self.tool_calls is not None:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_results is not None:
            result["tool_results"] = [tr.to_dict() for tr in self.tool_results]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        tool_calls = data.get("tool_calls")
        tool_results = data.get("tool_results")
        return cls(
            role=Role(data["role"]),
            content=data.get("content") or "",
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls else None,
            tool_results=[
                ToolResult(
                    tool_call_id=str(tr.get("tool_call_id", "")),
                    output=_outcome_from_dict(tr.get("output") or {}),
                )
                for tr in tool_results
            ] if tool_results else None,
        )


def _coerce_arguments(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"raw": raw}
        return parsed if isinstance(parsed, dict) else {"raw": parsed}
    return {"raw": raw}


def _outcome_from_dict(data: dict[str, Any]) -> ToolOutcome:
    if data.get("success"):
        return ToolOutcome.ok(data.get("result"))
    return ToolOutcome(success=False, error=data.get("error"))
