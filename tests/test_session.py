"""
Tests for AgentSession - conversation state.
"""

from palagent.approval import ApprovalGate
from palagent.capabilities import CapabilityDetector
from palagent.session import AgentSession
from palagent.types import AutonomyLevel, Role, ToolCall, ToolOutcome, ToolResult


def make_session(autonomy: AutonomyLevel = AutonomyLevel.ASK) -> AgentSession:
    return AgentSession(
        gate=ApprovalGate(autonomy),
        detector=CapabilityDetector(platform="browser"),
    )


class TestHistory:
    """History only grows at the end."""

    def test_turn_order(self) -> None:
        session = make_session()
        session.add_user_message("list files")
        session.add_assistant_message("", tool_calls=[ToolCall("c1", "list_dir", {"path": "."})])
        session.add_tool_results([ToolResult("c1", ToolOutcome.ok([]))])
        session.add_assistant_message("The folder is empty.")

        roles = [m.role for m in session.get_messages()]

        assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        assert session.history[1].is_tool_call_turn
        assert not session.history[3].is_tool_call_turn

    def test_history_before_last(self) -> None:
        session = make_session()
        session.add_user_message("one")
        session.add_assistant_message("two")
        session.add_user_message("three")

        assert [m.content for m in session.history_before_last()] == ["one", "two"]

    def test_get_messages_is_a_copy(self) -> None:
        session = make_session()
        session.add_user_message("hi")

        session.get_messages().clear()

        assert session.message_count == 1

    def test_reset_keeps_autonomy_and_allowlist(self) -> None:
        session = make_session(AutonomyLevel.ALLOWLIST)
        session.gate.allow_tool("shell")
        session.add_user_message("hi")

        session.reset()

        assert session.message_count == 0
        assert session.autonomy == AutonomyLevel.ALLOWLIST
        assert session.gate.is_allowed("shell", {"command": "ls"})


class TestAutonomy:
    def test_session_and_gate_share_state(self) -> None:
        session = make_session()

        session.set_autonomy(AutonomyLevel.FULL)

        assert session.gate.autonomy == AutonomyLevel.FULL

    def test_capabilities_come_from_detector(self) -> None:
        assert make_session().capabilities.platform.value == "browser"


class TestSerialization:
    def test_round_trip(self) -> None:
        session = make_session(AutonomyLevel.FULL)
        session.add_user_message("remember my color")
        session.add_assistant_message("", tool_calls=[ToolCall("c1", "remember", {"key": "color", "value": "blue"})])
        session.add_tool_results([ToolResult("c1", ToolOutcome.ok({"key": "color"}))])

        restored = AgentSession.from_dict(session.to_dict())

        assert restored.id == session.id
        assert restored.autonomy == AutonomyLevel.FULL
        assert [m.role for m in restored.history] == [Role.USER, Role.ASSISTANT, Role.TOOL]
        assert restored.history[1].tool_calls[0].arguments == {"key": "color", "value": "blue"}
        assert restored.history[2].tool_results[0].tool_call_id == "c1"
