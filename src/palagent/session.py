"""
Session - the state of one conversation.

A session owns the history, the approval gate (autonomy level plus
allowlist) and the capability detector for its host. History only grows
at the end; the driver is the only writer, and reset() is the only way
to shorten it.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from palagent.approval import ApprovalGate
from palagent.capabilities import CapabilityDetector, PlatformCapabilities
from palagent.types import AutonomyLevel, Message, Role, ToolCall, ToolResult


@dataclass
class AgentSession:
    """
    A single assistant conversation.

    The session owns:
    - the conversation history (messages)
    - the approval gate, and with it the autonomy level and allowlist
    - the capability detector for the platform it runs on
    """

    gate: ApprovalGate = field(default_factory=ApprovalGate)
    detector: CapabilityDetector = field(default_factory=CapabilityDetector)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    system_prompt: str = ""
    history: list[Message] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def autonomy(self) -> AutonomyLevel:
        return self.gate.autonomy

    def set_autonomy(self, level: "AutonomyLevel | str") -> None:
        self.gate.set_autonomy(level)

    @property
    def capabilities(self) -> PlatformCapabilities:
        return self.detector.detect()

    def add_user_message(self, content: str) -> Message:
        """Add a user turn to the conversation."""
        message = Message(role=Role.USER, content=content)
        self.history.append(message)
        return message

    def add_assistant_message(
        self,
        content: str,
        tool_calls: list[ToolCall] | None = None,
    ) -> Message:
        """Add an assistant turn; with tool_calls it is a tool-call turn."""
        message = Message(
            role=Role.ASSISTANT,
            content=content,
            tool_calls=list(tool_calls) if tool_calls else None,
        )
        self.history.append(message)
        return message

    def add_tool_results(self, results: list[ToolResult]) -> Message:
        """Add one tool turn carrying every result of a batch."""
        message = Message(role=Role.TOOL, tool_results=list(results))
        self.history.append(message)
        return message

    def get_messages(self) -> list[Message]:
        """Get a copy of the history."""
        return list(self.history)

    def history_before_last(self) -> list[Message]:
        """Every turn except the newest one."""
        return list(self.history[:-1])

    def reset(self) -> None:
        """Clear the history. Autonomy and the allowlist are kept."""
        self.history.clear()

    @property
    def message_count(self) -> int:
        return len(self.history)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the conversation for saving to disk."""
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "system_prompt": self.system_prompt,
            "autonomy": self.autonomy.value,
            "history": [m.to_dict() for m in self.history],
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        gate: ApprovalGate | None = None,
        detector: CapabilityDetector | None = None,
    ) -> "AgentSession":
        """Restore a saved conversation. The allowlist lives with the gate, not here."""
        gate = gate or ApprovalGate()
        if data.get("autonomy"):
            gate.set_autonomy(data["autonomy"])
        return cls(
            gate=gate,
            detector=detector or CapabilityDetector(),
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            system_prompt=data.get("system_prompt", ""),
            history=[Message.from_dict(m) for m in data.get("history", [])],
            metadata=data.get("metadata", {}),
        )
