"""
Assistant - wires the runtime together for one conversation.

This is the recommended way to get a working assistant: it builds the
capability detector, approval gate, registry, executor, model backend,
driver and planner from one AgentConfig, and lets the host inject
device primitives and the human approval callback.
"""

import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path

from palagent.approval import ApprovalCallback, ApprovalGate
from palagent.backend import ModelBackend, create_backend
from palagent.capabilities import Capability, CapabilityDetector
from palagent.config import AgentConfig
from palagent.driver import ConversationDriver, TurnResult
from palagent.executor import ToolExecutor
from palagent.launcher import AppLauncher
from palagent.memory import MemoryStore
from palagent.notes import NoteStore
from palagent.planner import AutonomousStepPlanner, PlannerResult, StepRecord, make_surface
from palagent.primitives import DevicePrimitive, LocalPrimitives
from palagent.session import AgentSession
from palagent.tools import ToolDefinition, ToolRegistry
from palagent.types import AutonomyLevel, ToolOutcome

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are PAL, a personal assistant that can act on the user's computer or phone "
    "through tools. Use tools when they help, one step at a time, and explain what you did. "
    "If a tool fails or permission is denied, adapt: try another approach or tell the user."
)


class Assistant:
    """A ready-to-use assistant session."""

    def __init__(
        self,
        config: AgentConfig | None = None,
        backend: ModelBackend | None = None,
        device_primitives: Mapping[str, DevicePrimitive] | None = None,
        approval_callback: ApprovalCallback | None = None,
        detector: CapabilityDetector | None = None,
        memory: MemoryStore | None = None,
        notes: NoteStore | None = None,
        launcher: AppLauncher | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        on_step: Callable[[StepRecord], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or AgentConfig.from_env()
        device_primitives = dict(device_primitives or {})

        self.detector = detector or CapabilityDetector(
            device_primitives, platform=self.config.executor.platform,
        )
        self.gate = ApprovalGate(
            self.config.approval.autonomy,
            approval_callback,
            path=self.config.approval.allowlist_path,
        )
        self.session = AgentSession(
            gate=self.gate,
            detector=self.detector,
            system_prompt=system_prompt,
        )
        self.registry = ToolRegistry(self.detector)
        self.executor = ToolExecutor(
            registry=self.registry,
            gate=self.gate,
            local=LocalPrimitives(
                command_timeout=self.config.executor.command_timeout,
                output_limit=self.config.executor.output_limit,
            ),
            device_primitives=device_primitives,
            memory=memory or MemoryStore(self.config.executor.memory_path),
            notes=notes or NoteStore(self.config.executor.notes_dir),
            launcher=launcher or AppLauncher(
                settle_seconds=self.config.executor.app_launch_settle_seconds,
            ),
        )
        self.backend = backend or create_backend(
            self.config.backend, self.config.llm, self.config.relay,
        )
        self.planner = AutonomousStepPlanner(
            self.backend,
            self.executor,
            self.config.planner,
            sleep=sleep,
            on_step=on_step,
            user_id=self.config.relay.user_id,
        )
        self.executor.task_runner = self._run_task_tool
        self.driver = ConversationDriver(
            self.session,
            self.backend,
            self.executor,
            self.config.loop,
            user_id=self.config.relay.user_id,
        )

    def send_message(self, text: str) -> str:
        """Send one user message and return the assistant's final text."""
        return self.driver.send_message(text)

    def run(self, text: str) -> TurnResult:
        return self.driver.run(text)

    def run_task(
        self,
        goal: str,
        surface: str = "screen",
        max_steps: int | None = None,
        cwd: Path | None = None,
    ) -> PlannerResult:
        """Run the autonomous planner once toward goal."""
        return self.planner.run(goal, make_surface(surface, self.executor, cwd), max_steps)

    def cancel_task(self) -> None:
        self.planner.cancel()

    def _run_task_tool(self, goal: str, surface: str, max_steps: int | None) -> ToolOutcome:
        return self.run_task(goal, surface, max_steps).to_outcome()

    def reset(self) -> None:
        """Start the conversation over."""
        self.session.reset()

    @property
    def autonomy(self) -> AutonomyLevel:
        return self.gate.autonomy

    def set_autonomy(self, level: "AutonomyLevel | str") -> None:
        self.gate.set_autonomy(level)

    def set_approval_callback(self, callback: ApprovalCallback | None) -> None:
        self.gate.set_callback(callback)

    def available_tools(self) -> list[ToolDefinition]:
        return self.registry.get_available_tools()

    def on_permission_change(self, capability: Capability | None = None, granted: bool = True) -> None:
        """Call after the host's permission state changes."""
        self.detector.on_permission_change(capability, granted)
