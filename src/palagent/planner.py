"""
Autonomous Step Planner - one action at a time toward a goal.

Some goals ("open the calculator and work out 12 * 7") need an unknown
number of primitive actions, each depending on what the previous one
changed. The planner runs a linear observe -> plan -> act -> check loop:

1. Observe the controlled surface (screen contents, or the working
   directory for the desktop surface)
2. Ask the model for exactly ONE next action
3. Execute it through the ToolExecutor, so dangerous actions still pass
   the approval gate
4. Stop on a completion or failure marker, on cancel(), or when the
   step budget runs out

The model is offered a structured next_action tool. Replies that come
back as prose are parsed with fixed patterns instead. There is no
lookahead and no rollback.
"""

import logging
import os
import platform
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from palagent.backend import BackendError, BackendRequest, ModelBackend
from palagent.config import PlannerConfig
from palagent.executor import ToolExecutor
from palagent.tools import ToolName
from palagent.types import ErrorKind, ToolOutcome

logger = logging.getLogger(__name__)

COMPLETE_MARKER = "GOAL COMPLETE"
FAILED_MARKER = "GOAL FAILED"


class ActionType(str, Enum):
    """Vocabulary of single planner actions."""
    OPEN_APP = "open"
    CLICK = "click"
    TYPE = "type"
    SCROLL = "scroll"
    BACK = "back"
    HOME = "home"
    WAIT = "wait"
    RUN_COMMAND = "run_command"
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    LIST_FILES = "list_files"
    OPEN_EXTERNAL = "open_external"
    COMPLETE = "complete"
    FAIL = "fail"


class PlannerStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


@dataclass
class PlannedAction:
    """A parsed model decision."""
    type: ActionType
    params: dict[str, Any] = field(default_factory=dict)
    raw: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.params}


@dataclass
class StepRecord:
    """What happened at one step."""
    step: int
    decision: str
    action: PlannedAction | None = None
    outcome: ToolOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "action": self.action.to_dict() if self.action else None,
            "success": self.outcome.success if self.outcome else None,
            "error": self.outcome.error if self.outcome else None,
        }


@dataclass
class PlannerResult:
    """Final result of an autonomous task."""
    status: PlannerStatus
    steps: int
    message: str
    goal: str = ""
    records: list[StepRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == PlannerStatus.COMPLETED

    @property
    def actions(self) -> list[PlannedAction]:
        """Actions that were actually executed, in order."""
        return [r.action for r in self.records if r.action is not None and r.outcome is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "goal": self.goal,
            "steps": self.steps,
            "message": self.message,
            "actions": [r.to_dict() for r in self.records if r.action is not None],
        }

    def to_outcome(self) -> ToolOutcome:
        """Shape for the run_autonomous_task tool."""
        if self.success:
            return ToolOutcome.ok(self.to_dict())
        return ToolOutcome.fail(
            ErrorKind.EXECUTION_FAILURE,
            f"Task {self.status.value} after {self.steps} step(s): {self.message}",
        )


# --- text decision parsing ----------------------------------------------------

_MARKER_PATTERN = re.compile(r"GOAL\s+(COMPLETE|FAILED)\s*:?\s*(.*)", re.IGNORECASE | re.DOTALL)

# Ordered; the first match wins
_ACTION_PATTERNS: list[tuple[re.Pattern[str], ActionType, Callable[[re.Match[str]], dict[str, Any]]]] = [
    (re.compile(r"run\s+command\s*:\s*(.+)", re.IGNORECASE),
     ActionType.RUN_COMMAND, lambda m: {"command": m.group(1).strip().strip("`")}),
    (re.compile(r"read\s+file\s*:\s*(.+)", re.IGNORECASE),
     ActionType.READ_FILE, lambda m: {"path": m.group(1).strip().strip("`\"'")}),
    (re.compile(r"list\s+files(?:\s*:\s*(.+))?", re.IGNORECASE),
     ActionType.LIST_FILES, lambda m: {"path": (m.group(1) or ".").strip().strip("`\"'")}),
    (re.compile(r"\bopen\s+(https?://\S+)", re.IGNORECASE),
     ActionType.OPEN_EXTERNAL, lambda m: {"url": m.group(1).rstrip(".,)\"'")}),
    (re.compile(r"\bopen\s+(?:the\s+)?[\"']?([^\n.,;:!?\"'`]+?)(?:\s+app(?:lication)?)?\s*(?:[\n.,;:!?\"'`]|$)",
                re.IGNORECASE),
     ActionType.OPEN_APP, lambda m: {"app": m.group(1).strip()}),
    (re.compile(r"\bclick\s+(?:on\s+)?[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE),
     ActionType.CLICK, lambda m: {"text": m.group(1).strip()}),
    (re.compile(r"\btype\s+[\"']([^\"']+)[\"']", re.IGNORECASE),
     ActionType.TYPE, lambda m: {"text": m.group(1)}),
    (re.compile(r"\bscroll\s+(up|down|left|right)", re.IGNORECASE),
     ActionType.SCROLL, lambda m: {"direction": m.group(1).lower()}),
    (re.compile(r"\b(?:go|press)\s+back", re.IGNORECASE),
     ActionType.BACK, lambda m: {}),
    (re.compile(r"\bgo\s+home", re.IGNORECASE),
     ActionType.HOME, lambda m: {}),
    (re.compile(r"\bwait\s+(\d+(?:\.\d+)?)\s*(?:seconds?|s)?", re.IGNORECASE),
     ActionType.WAIT, lambda m: {"seconds": float(m.group(1))}),
]


def parse_decision(text: str) -> PlannedAction | None:
    """
    Turn a prose decision into an action.

    Completion and failure markers take precedence over actions. Returns
    None when nothing is recognised.
    """
    text = (text or "").strip()
    if not text:
        return None

    marker = _MARKER_PATTERN.search(text)
    if marker:
        kind = ActionType.COMPLETE if marker.group(1).upper() == "COMPLETE" else ActionType.FAIL
        return PlannedAction(type=kind, params={"message": marker.group(2).strip()}, raw=text)

    for pattern, action_type, extract in _ACTION_PATTERNS:
        match = pattern.search(text)
        if match:
            return PlannedAction(type=action_type, params=extract(match), raw=text)
    return None


# --- structured decision --------------------------------------------------------

NEXT_ACTION_TOOL = "next_action"


def next_action_declaration(vocabulary: tuple[ActionType, ...]) -> dict[str, Any]:
    return {
        "name": NEXT_ACTION_TOOL,
        "description": "Choose the single next action toward the goal, or declare it complete or failed.",
        "parameters": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": [a.value for a in vocabulary]},
                "app": {"type": "string", "description": "App to open"},
                "text": {"type": "string", "description": "Element text to click, or text to type"},
                "x": {"type": "number"},
                "y": {"type": "number"},
                "direction": {"type": "string", "enum": ["up", "down", "left", "right"]},
                "seconds": {"type": "number"},
                "command": {"type": "string"},
                "path": {"type": "string"},
                "content": {"type": "string"},
                "url": {"type": "string"},
                "message": {"type": "string", "description": "Why the goal is complete or failed"},
            },
            "required": ["action"],
        },
    }


def action_from_arguments(arguments: dict[str, Any]) -> PlannedAction | None:
    try:
        action_type = ActionType(str(arguments.get("action", "")).strip().lower())
    except ValueError:
        return None
    params = {k: v for k, v in arguments.items() if k != "action" and v is not None}
    return PlannedAction(type=action_type, params=params, raw=str(arguments))


# --- surfaces ---------------------------------------------------------------------


class Surface(Protocol):
    """Something the planner observes and acts on."""
    name: str
    vocabulary: tuple[ActionType, ...]

    def observe(self) -> str | None: ...

    def describe(self, goal: str, step: int, max_steps: int, observation: str) -> str: ...


def format_screen(screen: dict[str, Any] | None) -> str:
    """Summarise a screen dump: app, clickable elements, text fields, visible text."""
    if not screen or not screen.get("elements"):
        return "Unable to read screen"

    lines = [f"App: {screen.get('packageName') or screen.get('app') or 'Unknown'}"]
    buttons: list[str] = []
    text_fields: list[str] = []
    texts: list[str] = []

    for element in screen["elements"]:
        label = element.get("text") or element.get("contentDescription")
        if element.get("clickable") and label:
            buttons.append(label)
        elif element.get("editable"):
            text_fields.append(element.get("text") or "[empty field]")
        elif element.get("text"):
            texts.append(element["text"])

    if buttons:
        lines.append(f"\nClickable elements: {', '.join(buttons[:15])}")
    if text_fields:
        lines.append(f"\nText fields: {', '.join(text_fields[:5])}")
    if texts:
        lines.append(f"\nVisible text: {' | '.join(texts[:10])}")
    return "\n".join(lines)


class ScreenSurface:
    """Apps and UI, observed through the read_screen tool."""
    name = "screen"
    vocabulary = (
        ActionType.OPEN_APP, ActionType.CLICK, ActionType.TYPE, ActionType.SCROLL,
        ActionType.BACK, ActionType.HOME, ActionType.WAIT,
        ActionType.COMPLETE, ActionType.FAIL,
    )

    def __init__(self, executor: ToolExecutor) -> None:
        self.executor = executor

    def observe(self) -> str | None:
        outcome = self.executor.execute(ToolName.READ_SCREEN.value, {})
        if not outcome.success:
            logger.warning(f"Could not read screen: {outcome.error}")
            return None
        return format_screen(outcome.result if isinstance(outcome.result, dict) else None)

    def describe(self, goal: str, step: int, max_steps: int, observation: str) -> str:
        return (
            "You are an autonomous agent controlling a device.\n\n"
            f"CURRENT GOAL: {goal}\n"
            f"STEP: {step}/{max_steps}\n\n"
            f"CURRENT SCREEN:\n{observation}\n\n"
            "Based on the current screen, decide the NEXT SINGLE ACTION to take.\n"
            "Respond with ONE action in this exact format:\n"
            '- To open an app: "open [app name]"\n'
            '- To click something: "click [text on button/element]"\n'
            "- To type text: \"type 'text to type'\"\n"
            '- To scroll: "scroll down" or "scroll up"\n'
            '- To go back: "go back"\n'
            '- To go to the home screen: "go home"\n'
            '- To wait: "wait 2 seconds"\n\n'
            f'If the goal is complete, respond with: "{COMPLETE_MARKER}: [brief explanation]"\n'
            f'If the goal is impossible, respond with: "{FAILED_MARKER}: [reason]"\n\n'
            "Your next action:"
        )


class DesktopSurface:
    """Files and commands, observed as the working directory and its listing."""
    name = "desktop"
    vocabulary = (
        ActionType.RUN_COMMAND, ActionType.OPEN_EXTERNAL, ActionType.OPEN_APP,
        ActionType.READ_FILE, ActionType.WRITE_FILE, ActionType.LIST_FILES,
        ActionType.WAIT, ActionType.COMPLETE, ActionType.FAIL,
    )

    def __init__(self, executor: ToolExecutor, cwd: Path | None = None) -> None:
        self.executor = executor
        self.cwd = cwd or Path(os.getcwd())

    def observe(self) -> str | None:
        outcome = self.executor.execute(ToolName.LIST_DIR.value, {"path": str(self.cwd)})
        if not outcome.success:
            logger.warning(f"Could not list {self.cwd}: {outcome.error}")
            return None
        names = [entry["name"] + ("/" if entry.get("type") == "directory" else "")
                 for entry in outcome.result or []]
        return f"Current Directory: {self.cwd}\nFiles in Directory: {', '.join(names[:50]) or '(empty)'}"

    def describe(self, goal: str, step: int, max_steps: int, observation: str) -> str:
        return (
            f"Goal: {goal}\n"
            f"Step: {step}/{max_steps}\n"
            f"Platform: {platform.system()} ({platform.machine()})\n"
            f"{observation}\n\n"
            "Available Actions:\n"
            "- run command: <shell command>\n"
            "- open <url or app>\n"
            "- read file: <path>\n"
            "- list files: <path>\n"
            "- wait <n> seconds\n"
            f"- {COMPLETE_MARKER}: <summary> when the goal is achieved\n"
            f"- {FAILED_MARKER}: <reason> if it cannot be achieved\n\n"
            "What should I do next to achieve the goal? Reply with exactly one action."
        )


def make_surface(name: str, executor: ToolExecutor, cwd: Path | None = None) -> Surface:
    if name == "screen":
        return ScreenSurface(executor)
    if name == "desktop":
        return DesktopSurface(executor, cwd)
    raise ValueError(f"Unknown surface '{name}' (expected screen or desktop)")


# --- the planner ------------------------------------------------------------------


class AutonomousStepPlanner:
    """
    Observe-plan-act loop driven by the model, one action per step.

    A planner runs one task at a time. cancel() may be called from any
    thread; the flag is checked once per step.
    """

    def __init__(
        self,
        backend: ModelBackend,
        executor: ToolExecutor,
        config: PlannerConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_step: Callable[[StepRecord], None] | None = None,
        user_id: str | None = None,
    ) -> None:
        self.backend = backend
        self.executor = executor
        self.config = config or PlannerConfig()
        self._sleep = sleep
        self.on_step = on_step
        self.user_id = user_id
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Ask the running task to stop before its next step."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, goal: str, surface: Surface, max_steps: int | None = None) -> PlannerResult:
        """
        Work toward goal until complete, failed, cancelled or out of steps.

        A cancel() that arrives before run() starts still applies. The flag
        is reset when the task ends.
        """
        try:
            return self._run(goal, surface, max_steps or self.config.max_steps)
        finally:
            self._cancel.clear()

    def _run(self, goal: str, surface: Surface, max_steps: int) -> PlannerResult:
        records: list[StepRecord] = []
        logger.info(f"Starting autonomous task on {surface.name}: {goal}")

        step = 0
        while step < max_steps:
            if self._cancel.is_set():
                logger.info(f"Task cancelled after {step} step(s)")
                return PlannerResult(PlannerStatus.CANCELLED, step, "Task cancelled", goal, records)

            step += 1
            logger.info(f"Planner step {step}/{max_steps}")

            observation = surface.observe()
            if observation is None:
                self._sleep(self.config.idle_seconds)
                continue

            prompt = surface.describe(goal, step, max_steps, observation)
            prompt += self._recent_actions(records)
            try:
                decision_text, action = self._decide(prompt, surface)
            except BackendError as e:
                logger.error(f"Planner could not get a decision: {e}")
                return PlannerResult(PlannerStatus.FAILED, step, f"Model backend error: {e}", goal, records)

            record = StepRecord(step=step, decision=decision_text, action=action)
            records.append(record)

            if action is not None and action.type == ActionType.COMPLETE:
                self._notify(record)
                return PlannerResult(
                    PlannerStatus.COMPLETED, step,
                    action.params.get("message") or "Goal complete", goal, records,
                )
            if action is not None and action.type == ActionType.FAIL:
                self._notify(record)
                return PlannerResult(
                    PlannerStatus.FAILED, step,
                    action.params.get("message") or "Goal failed", goal, records,
                )

            if action is None or action.type not in surface.vocabulary:
                logger.warning(f"No usable action in planner decision: {decision_text[:200]!r}")
                record.action = None
                self._notify(record)
                self._sleep(self.config.idle_seconds)
                continue

            record.outcome = self._act(action, surface)
            self._notify(record)
            self._sleep(self.config.settle_seconds)

        logger.warning(f"Autonomous task hit the step budget ({max_steps})")
        return PlannerResult(PlannerStatus.INCOMPLETE, step, "Max steps reached", goal, records)

    def _recent_actions(self, records: list[StepRecord]) -> str:
        done = [r for r in records if r.action is not None and r.outcome is not None][-5:]
        if not done:
            return ""
        lines = [
            f"- step {r.step}: {r.action.type.value} {r.action.params} -> "
            f"{'ok' if r.outcome.success else 'failed: ' + str(r.outcome.error)}"
            for r in done
        ]
        return "\n\nPrevious actions:\n" + "\n".join(lines)

    def _decide(self, prompt: str, surface: Surface) -> tuple[str, PlannedAction | None]:
        response = self.backend.send(BackendRequest(
            history=[],
            prompt=prompt,
            tools=[next_action_declaration(surface.vocabulary)],
            user_id=self.user_id,
        ))
        if response.is_tool_calls:
            for call in response.tool_calls:
                if call.name == NEXT_ACTION_TOOL:
                    return str(call.arguments), action_from_arguments(call.arguments)
            logger.warning(f"Planner got unexpected tool calls: {[c.name for c in response.tool_calls]}")
            return response.content, parse_decision(response.content)
        return response.content, parse_decision(response.content)

    def _act(self, action: PlannedAction, surface: Surface) -> ToolOutcome:
        """Execute one action. Everything except waiting goes through the executor."""
        params = action.params
        logger.info(f"Planner action: {action.type.value} {params}")

        if action.type == ActionType.WAIT:
            self._sleep(float(params.get("seconds") or 1))
            return ToolOutcome.ok(f"Waited {params.get('seconds') or 1}s")

        call = self._tool_call_for(action, surface)
        if call is None:
            return ToolOutcome.fail(ErrorKind.VALIDATION_ERROR, f"Incomplete action: {action.to_dict()}")
        name, arguments = call
        return self.executor.execute(name.value, arguments)

    def _tool_call_for(self, action: PlannedAction, surface: Surface) -> tuple[ToolName, dict[str, Any]] | None:
        params = action.params
        cwd = str(surface.cwd) if isinstance(surface, DesktopSurface) else None

        if action.type == ActionType.OPEN_APP and params.get("app"):
            return ToolName.OPEN_APP, {"app": params["app"]}
        if action.type == ActionType.CLICK:
            if params.get("x") is not None and params.get("y") is not None:
                return ToolName.MOUSE_CLICK, {"x": params["x"], "y": params["y"]}
            if params.get("text"):
                return ToolName.MOUSE_CLICK, {"text": params["text"]}
            return None
        if action.type == ActionType.TYPE and params.get("text"):
            return ToolName.TYPE_TEXT, {"text": params["text"]}
        if action.type == ActionType.SCROLL:
            return ToolName.SCROLL, {"direction": params.get("direction") or "down"}
        if action.type == ActionType.BACK:
            return ToolName.PRESS_KEY, {"key": "back"}
        if action.type == ActionType.HOME:
            return ToolName.PRESS_KEY, {"key": "home"}
        if action.type == ActionType.RUN_COMMAND and params.get("command"):
            arguments = {"command": params["command"]}
            if cwd:
                arguments["cwd"] = cwd
            return ToolName.SHELL, arguments
        if action.type == ActionType.READ_FILE and params.get("path"):
            return ToolName.READ_FILE, {"path": self._resolve(params["path"], cwd)}
        if action.type == ActionType.WRITE_FILE and params.get("path"):
            return ToolName.WRITE_FILE, {
                "path": self._resolve(params["path"], cwd),
                "content": str(params.get("content") or ""),
            }
        if action.type == ActionType.LIST_FILES:
            return ToolName.LIST_DIR, {"path": self._resolve(params.get("path") or ".", cwd)}
        if action.type == ActionType.OPEN_EXTERNAL and params.get("url"):
            return ToolName.OPEN_BROWSER, {"url": params["url"]}
        return None

    @staticmethod
    def _resolve(path: str, cwd: str | None) -> str:
        if cwd is None or Path(path).expanduser().is_absolute():
            return path
        return str(Path(cwd) / path)

    def _notify(self, record: StepRecord) -> None:
        if self.on_step:
            self.on_step(record)
