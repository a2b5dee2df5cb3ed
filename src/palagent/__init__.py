"""
palagent - a tool-calling personal assistant runtime.

The model decides; the runtime acts. Every side effect goes through the
tool executor, every dangerous tool through the approval gate, and the
tool list offered to the model is filtered by what the platform can
actually do.
"""

from palagent.agent import Assistant
from palagent.approval import ApprovalGate
from palagent.backend import (
    BackendError,
    BackendRequest,
    BackendResponse,
    ChatCompletionsBackend,
    ModelBackend,
    RelayBackend,
    ScriptedBackend,
)
from palagent.capabilities import Capability, CapabilityDetector, PlatformCapabilities, PlatformKind
from palagent.config import AgentConfig
from palagent.driver import ConversationDriver, TurnResult
from palagent.executor import ToolExecutor
from palagent.planner import AutonomousStepPlanner, PlannerResult, PlannerStatus
from palagent.session import AgentSession
from palagent.tools import ToolDefinition, ToolName, ToolRegistry
from palagent.types import (
    AutonomyLevel,
    ErrorKind,
    Message,
    Role,
    ToolCall,
    ToolOutcome,
    ToolResult,
)

__version__ = "0.1.0"

__all__ = [
    "AgentConfig",
    "AgentSession",
    "ApprovalGate",
    "Assistant",
    "AutonomousStepPlanner",
    "AutonomyLevel",
    "BackendError",
    "BackendRequest",
    "BackendResponse",
    "Capability",
    "CapabilityDetector",
    "ChatCompletionsBackend",
    "ConversationDriver",
    "ErrorKind",
    "Message",
    "ModelBackend",
    "PlannerResult",
    "PlannerStatus",
    "PlatformCapabilities",
    "PlatformKind",
    "RelayBackend",
    "Role",
    "ScriptedBackend",
    "ToolCall",
    "ToolDefinition",
    "ToolExecutor",
    "ToolName",
    "ToolOutcome",
    "ToolRegistry",
    "ToolResult",
    "TurnResult",
]
