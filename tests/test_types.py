"""
Tests for the core data types.
"""

import pytest

from palagent.types import (
    AutonomyLevel,
    ErrorKind,
    Message,
    Role,
    ToolCall,
    ToolOutcome,
    ToolResult,
)


class TestToolCall:
    """Test ToolCall parsing."""

    def test_from_flat_dict(self) -> None:
        call = ToolCall.from_dict({"id": "c1", "name": "shell", "arguments": {"command": "ls"}})

        assert call.id == "c1"
        assert call.name == "shell"
        assert call.arguments == {"command": "ls"}

    def test_from_openai_shape_with_json_arguments(self) -> None:
        """OpenAI sends arguments as a JSON string inside "function"."""
        call = ToolCall.from_dict({
            "id": "call_abc",
            "type": "function",
            "function": {"name": "read_file", "arguments": '{"path": "/tmp/x"}'},
        })

        assert call.name == "read_file"
        assert call.arguments == {"path": "/tmp/x"}

    def test_unparseable_arguments_are_kept_raw(self) -> None:
        call = ToolCall.from_dict({"id": "c1", "name": "shell", "arguments": "not json"})

        assert call.arguments == {"raw": "not json"}

    def test_missing_arguments_become_empty(self) -> None:
        call = ToolCall.from_dict({"id": "c1", "name": "system_info"})

        assert call.arguments == {}

    def test_null_function_is_tolerated(self) -> None:
        call = ToolCall.from_dict({"id": "c1", "name": "shell", "function": None})

        assert call.name == "shell"
        assert call.arguments == {}

    def test_null_function_without_name(self) -> None:
        call = ToolCall.from_dict({"id": None, "function": None})

        assert call.name == ""
        assert call.id == ""


class TestToolOutcome:
    """Test the normalized {success, result?, error?} shape."""

    def test_success_shape(self) -> None:
        assert ToolOutcome.ok({"a": 1}).to_dict() == {"success": True, "result": {"a": 1}}

    def test_failure_shape(self) -> None:
        outcome = ToolOutcome.fail(ErrorKind.APPROVAL_DENIED, "User denied permission")

        assert outcome.kind == ErrorKind.APPROVAL_DENIED
        assert outcome.to_dict() == {"success": False, "error": "User denied permission"}


class TestMessage:
    """Test conversation turns."""

    def test_tool_call_turn(self) -> None:
        message = Message(
            role=Role.ASSISTANT,
            tool_calls=[ToolCall(id="c1", name="shell", arguments={"command": "ls"})],
        )

        assert message.is_tool_call_turn
        assert message.to_dict()["tool_calls"] == [
            {"id": "c1", "name": "shell", "arguments": {"command": "ls"}}
        ]

    def test_plain_assistant_turn_is_not_tool_call_turn(self) -> None:
        assert not Message(role=Role.ASSISTANT, content="hi").is_tool_call_turn

    def test_tool_turn_round_trip(self) -> None:
        original = Message(
            role=Role.TOOL,
            tool_results=[ToolResult(tool_call_id="c1", output=ToolOutcome.ok("done"))],
        )

        restored = Message.from_dict(original.to_dict())

        assert restored.role == Role.TOOL
        assert restored.tool_results[0].tool_call_id == "c1"
        assert restored.tool_results[0].output.result == "done"


class TestAutonomyLevel:
    """Test autonomy parsing."""

    def test_parse_is_case_insensitive(self) -> None:
        assert AutonomyLevel.parse(" Full ") == AutonomyLevel.FULL

    def test_parse_passes_levels_through(self) -> None:
        assert AutonomyLevel.parse(AutonomyLevel.ALLOWLIST) == AutonomyLevel.ALLOWLIST

    def test_parse_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown autonomy level"):
            AutonomyLevel.parse("sometimes")
