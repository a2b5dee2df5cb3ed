"""
Tool Registry - the static catalog of everything the assistant can do.

Tools are the ONLY mechanism by which the assistant can have side
effects. The catalog is fixed at import time: every tool has a name from
the closed ToolName enum, a description shown to the model, a JSON
Schema for its parameters, a dangerous flag, and the capabilities it
needs. The registry never executes anything; it only answers "what
exists" and "what can run here".
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from palagent.capabilities import Capability, CapabilityDetector, PlatformCapabilities

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """Closed set of tool names. The executor must handle every member."""
    SHELL = "shell"
    RUN_COMMAND = "run_command"
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    LIST_DIR = "list_dir"
    OPEN_APP = "open_app"
    OPEN_BROWSER = "open_browser"
    WEB_SEARCH = "web_search"
    SYSTEM_INFO = "system_info"
    GET_DATETIME = "get_datetime"
    CLIPBOARD_READ = "clipboard_read"
    CLIPBOARD_WRITE = "clipboard_write"
    SCREENSHOT = "screenshot"
    MOUSE_CLICK = "mouse_click"
    TYPE_TEXT = "type_text"
    PRESS_KEY = "press_key"
    SCROLL = "scroll"
    READ_SCREEN = "read_screen"
    BROWSER_AUTOMATION = "browser_automation"
    REMEMBER = "remember"
    RECALL = "recall"
    SAVE_NOTE = "save_note"
    READ_NOTE = "read_note"
    LIST_NOTES = "list_notes"
    CALCULATE = "calculate"
    GET_WEATHER = "get_weather"
    SET_TIMER = "set_timer"
    GET_LOCATION = "get_location"
    SEND_NOTIFICATION = "send_notification"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    GET_CALENDAR_EVENTS = "get_calendar_events"
    SEARCH_CONTACTS = "search_contacts"
    RUN_AUTONOMOUS_TASK = "run_autonomous_task"

    @classmethod
    def lookup(cls, name: str) -> "ToolName | None":
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class ToolDefinition:
    """
    Immutable catalog entry.

    - name: member of ToolName
    - description: what the tool does (shown to the model)
    - parameters: JSON Schema for the arguments
    - dangerous: must pass the approval gate before dispatch
    - requires: capabilities that must be present for the tool to run
    """
    name: ToolName
    description: str
    parameters: dict[str, Any]
    dangerous: bool = False
    requires: frozenset[Capability] = field(default_factory=frozenset)

    @property
    def required_params(self) -> list[str]:
        return list(self.parameters.get("required", []))

    def to_declaration(self) -> dict[str, Any]:
        """Export as {name, description, parameters}."""
        return {
            "name": self.name.value,
            "description": self.description,
            "parameters": self.parameters,
        }

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI tool format."""
        return {"type": "function", "function": self.to_declaration()}


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def validate_arguments(definition: ToolDefinition, arguments: dict[str, Any]) -> str | None:
    """
    Check arguments against the tool's parameter schema.

    Only required fields, declared primitive types and enums are checked.
    Returns an error message, or None when the arguments are acceptable.
    """
    if not isinstance(arguments, dict):
        return f"Arguments for {definition.name.value} must be an object"

    missing = [
        name for name in definition.required_params
        if name not in arguments or arguments[name] is None
    ]
    if missing:
        return f"Missing required parameter(s) for {definition.name.value}: {', '.join(missing)}"

    properties = definition.parameters.get("properties", {})
    for name, value in arguments.items():
        spec = properties.get(name)
        if spec is None or value is None:
            continue
        expected = _JSON_TYPES.get(spec.get("type", ""))
        # bool is an int subclass; reject it for numeric fields
        if expected and (not isinstance(value, expected) or (
            isinstance(value, bool) and bool not in expected
        )):
            return f"Parameter '{name}' of {definition.name.value} must be of type {spec['type']}"
        allowed = spec.get("enum")
        if allowed and value not in allowed:
            return f"Parameter '{name}' of {definition.name.value} must be one of: {', '.join(map(str, allowed))}"
    return None


def _schema(properties: dict[str, Any] | None = None, required: Iterable[str] = ()) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties or {},
        "required": list(required),
    }


def _tool(
    name: ToolName,
    description: str,
    parameters: dict[str, Any],
    dangerous: bool = False,
    requires: Iterable[Capability] = (),
) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description,
        parameters=parameters,
        dangerous=dangerous,
        requires=frozenset(requires),
    )


TOOL_CATALOG: tuple[ToolDefinition, ...] = (
    _tool(
        ToolName.SHELL,
        "Execute a shell command on the local system. Use for running programs, scripts, system commands.",
        _schema({
            "command": {"type": "string", "description": "The shell command to execute"},
            "cwd": {"type": "string", "description": "Working directory for the command (optional)"},
        }, required=["command"]),
        dangerous=True,
        requires=[Capability.PROCESS_EXECUTION],
    ),
    _tool(
        ToolName.RUN_COMMAND,
        "Run a single program with arguments and return its exit code and output.",
        _schema({
            "command": {"type": "string", "description": "The command line to run"},
            "cwd": {"type": "string", "description": "Working directory (optional)"},
        }, required=["command"]),
        dangerous=True,
        requires=[Capability.PROCESS_EXECUTION],
    ),
    _tool(
        ToolName.READ_FILE,
        "Read the contents of a file from the filesystem",
        _schema({
            "path": {"type": "string", "description": "Absolute or relative path to the file"},
        }, required=["path"]),
        requires=[Capability.FILESYSTEM],
    ),
    _tool(
        ToolName.WRITE_FILE,
        "Write content to a file. Creates the file if it doesn't exist.",
        _schema({
            "path": {"type": "string", "description": "Path to the file"},
            "content": {"type": "string", "description": "Content to write"},
        }, required=["path", "content"]),
        dangerous=True,
        requires=[Capability.FILESYSTEM],
    ),
    _tool(
        ToolName.LIST_DIR,
        "List files and folders in a directory",
        _schema({
            "path": {"type": "string", "description": "Path to the directory"},
        }, required=["path"]),
        requires=[Capability.FILESYSTEM],
    ),
    _tool(
        ToolName.OPEN_APP,
        "Open an application by name. Examples: calculator, notepad, spotify, discord, chrome, vscode",
        _schema({
            "app": {"type": "string", "description": "Application name (e.g., calculator, notepad, spotify)"},
        }, required=["app"]),
        requires=[Capability.APP_LAUNCH],
    ),
    _tool(
        ToolName.OPEN_BROWSER,
        "Open a URL in the default web browser. Only use for web URLs (http/https).",
        _schema({
            "url": {"type": "string", "description": "URL to open (must start with http:// or https://)"},
        }, required=["url"]),
    ),
    _tool(
        ToolName.WEB_SEARCH,
        "Search the internet for information",
        _schema({
            "query": {"type": "string", "description": "Search query"},
        }, required=["query"]),
    ),
    _tool(
        ToolName.SYSTEM_INFO,
        "Get information about the current system (OS, memory, etc)",
        _schema(),
    ),
    _tool(
        ToolName.GET_DATETIME,
        "Get the current date and time.",
        _schema({
            "timezone": {"type": "string", "description": "IANA timezone name (optional)"},
        }),
    ),
    _tool(
        ToolName.CLIPBOARD_READ,
        "Read the current clipboard contents",
        _schema(),
        requires=[Capability.CLIPBOARD],
    ),
    _tool(
        ToolName.CLIPBOARD_WRITE,
        "Write text to the clipboard",
        _schema({
            "text": {"type": "string", "description": "Text to copy to clipboard"},
        }, required=["text"]),
        requires=[Capability.CLIPBOARD],
    ),
    _tool(
        ToolName.SCREENSHOT,
        "Take a screenshot of the screen",
        _schema({
            "region": {
                "type": "string",
                "description": 'Optional: "full" for full screen or coordinates "x,y,width,height"',
            },
        }),
        requires=[Capability.POINTER_KEYBOARD],
    ),
    _tool(
        ToolName.MOUSE_CLICK,
        "Click the mouse at specific coordinates, or on an on-screen element by its text",
        _schema({
            "x": {"type": "number", "description": "X coordinate"},
            "y": {"type": "number", "description": "Y coordinate"},
            "text": {"type": "string", "description": "Visible text of the element to click (alternative to x/y)"},
            "button": {
                "type": "string",
                "description": "Mouse button: left, right, middle",
                "enum": ["left", "right", "middle"],
            },
        }),
        dangerous=True,
        requires=[Capability.POINTER_KEYBOARD],
    ),
    _tool(
        ToolName.TYPE_TEXT,
        "Type text using the keyboard",
        _schema({
            "text": {"type": "string", "description": "Text to type"},
        }, required=["text"]),
        dangerous=True,
        requires=[Capability.POINTER_KEYBOARD],
    ),
    _tool(
        ToolName.PRESS_KEY,
        "Press a special key or shortcut (enter, tab, escape, back, home, ctrl+c)",
        _schema({
            "key": {"type": "string", "description": "Key name or '+'-joined shortcut"},
        }, required=["key"]),
        dangerous=True,
        requires=[Capability.POINTER_KEYBOARD],
    ),
    _tool(
        ToolName.SCROLL,
        "Scroll the screen in a direction",
        _schema({
            "direction": {
                "type": "string",
                "description": "Scroll direction",
                "enum": ["up", "down", "left", "right"],
            },
            "amount": {"type": "integer", "description": "Scroll amount in lines (default 5)"},
        }, required=["direction"]),
        requires=[Capability.POINTER_KEYBOARD],
    ),
    _tool(
        ToolName.READ_SCREEN,
        "Read the elements currently visible on screen (app, clickable elements, text fields, text)",
        _schema(),
        requires=[Capability.SCREEN_READING],
    ),
    _tool(
        ToolName.BROWSER_AUTOMATION,
        "Automate a web page with Playwright: open a URL and run a sequence of steps "
        "(click, fill, press, wait, extract, screenshot). Returns the generated script "
        "and, when run is true, the results.",
        _schema({
            "url": {"type": "string", "description": "Page to open"},
            "steps": {
                "type": "array",
                "description": "Ordered steps, each {action, selector?, value?}",
                "items": {
                    "type": "object",
                    "properties": {
                        "action": {
                            "type": "string",
                            "enum": ["click", "fill", "press", "wait", "extract", "screenshot"],
                        },
                        "selector": {"type": "string"},
                        "value": {"type": "string"},
                    },
                    "required": ["action"],
                },
            },
            "run": {"type": "boolean", "description": "Execute the script (default true)"},
        }, required=["url"]),
        dangerous=True,
        requires=[Capability.BROWSER_AUTOMATION],
    ),
    _tool(
        ToolName.REMEMBER,
        "Save a piece of information to memory for later recall",
        _schema({
            "key": {"type": "string", "description": "A short key/label for this memory"},
            "value": {"type": "string", "description": "The information to remember"},
        }, required=["key", "value"]),
    ),
    _tool(
        ToolName.RECALL,
        "Recall information from memory",
        _schema({
            "key": {"type": "string", "description": 'The key to recall, or "all" for everything'},
        }, required=["key"]),
    ),
    _tool(
        ToolName.SAVE_NOTE,
        "Save a note or text to a file. Use when user wants to save something for later.",
        _schema({
            "filename": {"type": "string", "description": "Name for the note (without extension)"},
            "content": {"type": "string", "description": "Content to save"},
        }, required=["filename", "content"]),
    ),
    _tool(
        ToolName.READ_NOTE,
        "Read a previously saved note.",
        _schema({
            "filename": {"type": "string", "description": "Name of the note to read"},
        }, required=["filename"]),
    ),
    _tool(
        ToolName.LIST_NOTES,
        "List all saved notes.",
        _schema(),
    ),
    _tool(
        ToolName.CALCULATE,
        "Perform mathematical calculations.",
        _schema({
            "expression": {
                "type": "string",
                "description": 'Math expression to evaluate (e.g., "15% of 250", "sqrt(144)", "2^10")',
            },
        }, required=["expression"]),
    ),
    _tool(
        ToolName.GET_WEATHER,
        "Get current weather information.",
        _schema({
            "location": {"type": "string", "description": 'City name, or "current" to use the device location'},
            "units": {
                "type": "string",
                "description": "Temperature unit (default fahrenheit)",
                "enum": ["fahrenheit", "celsius"],
            },
        }, required=["location"]),
    ),
    _tool(
        ToolName.SET_TIMER,
        "Set a countdown timer.",
        _schema({
            "duration": {"type": "string", "description": 'Duration (e.g., "5 minutes", "1 hour 30 minutes")'},
            "label": {"type": "string", "description": "Optional label for the timer"},
        }, required=["duration"]),
    ),
    _tool(
        ToolName.GET_LOCATION,
        "Get the user's current location.",
        _schema(),
        requires=[Capability.GEOLOCATION],
    ),
    _tool(
        ToolName.SEND_NOTIFICATION,
        "Show a notification to the user.",
        _schema({
            "title": {"type": "string", "description": "Notification title"},
            "body": {"type": "string", "description": "Notification body"},
        }, required=["title", "body"]),
        requires=[Capability.NOTIFICATIONS],
    ),
    _tool(
        ToolName.CREATE_CALENDAR_EVENT,
        "Create a calendar event. Use when user wants to schedule something.",
        _schema({
            "title": {"type": "string", "description": "Event title"},
            "start_time": {"type": "string", "description": "Start time (ISO datetime)"},
            "end_time": {
                "type": "string",
                "description": "End time (ISO datetime). Defaults to 1 hour after start.",
            },
            "location": {"type": "string", "description": "Event location (optional)"},
            "notes": {"type": "string", "description": "Event notes/description (optional)"},
        }, required=["title", "start_time"]),
        dangerous=True,
        requires=[Capability.CALENDAR],
    ),
    _tool(
        ToolName.GET_CALENDAR_EVENTS,
        "Get upcoming calendar events.",
        _schema({
            "days_ahead": {"type": "number", "description": "Number of days to look ahead (default 7)"},
        }),
        requires=[Capability.CALENDAR],
    ),
    _tool(
        ToolName.SEARCH_CONTACTS,
        "Search user's contacts by name.",
        _schema({
            "query": {"type": "string", "description": "Name to search for"},
        }, required=["query"]),
        requires=[Capability.CONTACTS],
    ),
    _tool(
        ToolName.RUN_AUTONOMOUS_TASK,
        "Work toward a multi-step goal on its own (e.g. navigating an app), one action at a time, "
        "until the goal is complete or the step budget runs out.",
        _schema({
            "goal": {"type": "string", "description": "What should be accomplished"},
            "surface": {
                "type": "string",
                "description": "What to control: screen (apps and UI) or desktop (files and commands)",
                "enum": ["screen", "desktop"],
            },
            "max_steps": {"type": "integer", "description": "Step budget (optional)"},
        }, required=["goal"]),
    ),
)


class ToolRegistry:
    """
    Registry of tool definitions, filtered by platform capabilities.

    The registry is the controlled interface through which the model
    learns what it may call. Only tools whose required capabilities are
    all present are offered.
    """

    def __init__(
        self,
        detector: CapabilityDetector,
        definitions: Iterable[ToolDefinition] = TOOL_CATALOG,
    ) -> None:
        self.detector = detector
        self._tools: dict[ToolName, ToolDefinition] = {}
        for definition in definitions:
            if definition.name in self._tools:
                logger.warning(f"Overwriting existing tool: {definition.name.value}")
            self._tools[definition.name] = definition

    def get(self, name: "str | ToolName") -> ToolDefinition | None:
        """Get a tool definition by name."""
        key = name if isinstance(name, ToolName) else ToolName.lookup(name)
        if key is None:
            return None
        return self._tools.get(key)

    def is_dangerous(self, name: "str | ToolName") -> bool:
        """Unknown tools are treated as dangerous."""
        definition = self.get(name)
        return definition.dangerous if definition else True

    def is_available(self, name: "str | ToolName", capabilities: PlatformCapabilities | None = None) -> bool:
        definition = self.get(name)
        if definition is None:
            return False
        capabilities = capabilities or self.detector.detect()
        return capabilities.supports_all(definition.requires)

    def get_available_tools(self) -> list[ToolDefinition]:
        """Tools whose required capabilities are all present right now."""
        capabilities = self.detector.detect()
        available = [
            definition for definition in self._tools.values()
            if capabilities.supports_all(definition.requires)
        ]
        logger.debug(f"{len(available)}/{len(self._tools)} tools available")
        return available

    def get_declarations(self) -> list[dict[str, Any]]:
        """The {name, description, parameters} export for the model backend."""
        return [definition.to_declaration() for definition in self.get_available_tools()]

    def get_schemas(self) -> list[dict[str, Any]]:
        """OpenAI-format schemas for the available tools."""
        return [definition.to_openai_schema() for definition in self.get_available_tools()]

    @property
    def tool_names(self) -> list[str]:
        """Every registered tool name, available or not."""
        return [name.value for name in self._tools]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        if isinstance(name, str):
            return self.get(name) is not None
        return False
