"""
Tool Executor - the controlled entry point for all side effects.

execute() runs a fixed sequence of checks before anything happens:

1. the tool name must be in the registry (UNKNOWN_TOOL)
2. the arguments must satisfy the parameter schema (VALIDATION_ERROR)
3. the platform must provide the tool's capabilities (CAPABILITY_UNAVAILABLE)
4. dangerous tools must pass the approval gate (APPROVAL_DENIED)
5. dispatch through the ToolName-keyed handler table

Every path returns a ToolOutcome. Primitive exceptions are caught here
and never reach the driver or the model backend.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from palagent.approval import DENIED_MESSAGE, ApprovalGate
from palagent.browser import SyncBrowserService, automate
from palagent.calculator import calculate
from palagent.launcher import AppLauncher, app_package
from palagent.memory import MemoryStore
from palagent.notes import NoteStore
from palagent.primitives import (
    ArgumentError,
    CapabilityError,
    DevicePrimitive,
    LocalPrimitives,
    PrimitiveError,
)
from palagent.timers import TimerService
from palagent.tools import ToolName, ToolRegistry, validate_arguments
from palagent.types import ErrorKind, ToolCall, ToolOutcome, ToolResult
from palagent.weather import WeatherClient

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]

# (goal, surface, max_steps) -> ToolOutcome
TaskRunner = Callable[[str, str, int | None], ToolOutcome]


class ToolExecutor:
    """
    Dispatches tool calls to primitives.

    Injected device primitives take precedence over local ones, so the
    same executor serves a desktop process and a phone host.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        gate: ApprovalGate,
        local: LocalPrimitives | None = None,
        device_primitives: Mapping[str, DevicePrimitive] | None = None,
        memory: MemoryStore | None = None,
        launcher: AppLauncher | None = None,
        browser: SyncBrowserService | None = None,
        notes: NoteStore | None = None,
        timers: TimerService | None = None,
        weather: WeatherClient | None = None,
    ) -> None:
        self.registry = registry
        self.gate = gate
        self.local = local or LocalPrimitives()
        self.device_primitives = dict(device_primitives or {})
        self.memory = memory or MemoryStore()
        self.launcher = launcher or AppLauncher()
        self.browser = browser
        self.notes = notes or NoteStore()
        self.timers = timers or TimerService()
        if self.timers.notify is None:
            self.timers.notify = self._notify_timer
        self.weather = weather or WeatherClient()
        self.task_runner: TaskRunner | None = None

        self._handlers: dict[ToolName, Handler] = {
            ToolName.SHELL: self._shell,
            ToolName.RUN_COMMAND: self._run_command,
            ToolName.READ_FILE: self._read_file,
            ToolName.WRITE_FILE: self._write_file,
            ToolName.LIST_DIR: self._list_dir,
            ToolName.OPEN_APP: self._open_app,
            ToolName.OPEN_BROWSER: self._open_browser,
            ToolName.WEB_SEARCH: self._web_search,
            ToolName.SYSTEM_INFO: self._system_info,
            ToolName.GET_DATETIME: self._get_datetime,
            ToolName.CLIPBOARD_READ: self._clipboard_read,
            ToolName.CLIPBOARD_WRITE: self._clipboard_write,
            ToolName.SCREENSHOT: self._screenshot,
            ToolName.MOUSE_CLICK: self._mouse_click,
            ToolName.TYPE_TEXT: self._type_text,
            ToolName.PRESS_KEY: self._press_key,
            ToolName.SCROLL: self._scroll,
            ToolName.READ_SCREEN: self._read_screen,
            ToolName.BROWSER_AUTOMATION: self._browser_automation,
            ToolName.REMEMBER: self._remember,
            ToolName.RECALL: self._recall,
            ToolName.SAVE_NOTE: self._save_note,
            ToolName.READ_NOTE: self._read_note,
            ToolName.LIST_NOTES: self._list_notes,
            ToolName.CALCULATE: self._calculate,
            ToolName.GET_WEATHER: self._get_weather,
            ToolName.SET_TIMER: self._set_timer,
            ToolName.GET_LOCATION: self._get_location,
            ToolName.SEND_NOTIFICATION: self._send_notification,
            ToolName.CREATE_CALENDAR_EVENT: self._create_calendar_event,
            ToolName.GET_CALENDAR_EVENTS: self._get_calendar_events,
            ToolName.SEARCH_CONTACTS: self._search_contacts,
            ToolName.RUN_AUTONOMOUS_TASK: self._run_autonomous_task,
        }
        missing = [name.value for name in ToolName if name not in self._handlers]
        if missing:
            raise ValueError(f"No handler for tool(s): {', '.join(missing)}")

    def execute(self, name: str, arguments: dict[str, Any] | None = None) -> ToolOutcome:
        """Run one tool. Never raises for tool-level failures."""
        arguments = arguments if arguments is not None else {}

        definition = self.registry.get(name)
        if definition is None:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolOutcome.fail(ErrorKind.UNKNOWN_TOOL, f"Unknown tool: {name}")

        error = validate_arguments(definition, arguments)
        if error:
            logger.warning(f"Invalid arguments for {name}: {error}")
            return ToolOutcome.fail(ErrorKind.VALIDATION_ERROR, error)

        capabilities = self.registry.detector.detect()
        missing = capabilities.missing(definition.requires)
        if missing:
            message = (
                f"{name} is not available on this platform "
                f"(missing: {', '.join(cap.value for cap in missing)})"
            )
            logger.warning(message)
            return ToolOutcome.fail(ErrorKind.CAPABILITY_UNAVAILABLE, message)

        if definition.dangerous and not self.gate.request_approval(name, arguments):
            return ToolOutcome.fail(ErrorKind.APPROVAL_DENIED, DENIED_MESSAGE)

        logger.info(f"Executing tool: {name}")
        handler = self._handlers[definition.name]
        try:
            result = handler(arguments)
        except ArgumentError as e:
            return ToolOutcome.fail(ErrorKind.VALIDATION_ERROR, str(e))
        except CapabilityError as e:
            logger.error(f"Tool {name} unavailable: {e}")
            return ToolOutcome.fail(ErrorKind.CAPABILITY_UNAVAILABLE, str(e))
        except PrimitiveError as e:
            logger.error(f"Tool {name} failed: {e}")
            return ToolOutcome.fail(ErrorKind.EXECUTION_FAILURE, str(e))
        except Exception as e:
            logger.error(f"Tool {name} raised {type(e).__name__}: {e}")
            return ToolOutcome.fail(ErrorKind.EXECUTION_FAILURE, f"{type(e).__name__}: {e}")

        if isinstance(result, ToolOutcome):
            return result
        return ToolOutcome.ok(result)

    def execute_call(self, call: ToolCall) -> ToolResult:
        """Execute a ToolCall and key the outcome back to its id."""
        outcome = self.execute(call.name, call.arguments)
        return ToolResult(tool_call_id=call.id, output=outcome, name=call.name)

    # --- device primitive plumbing -------------------------------------------

    def _device(self, key: str) -> DevicePrimitive | None:
        return self.device_primitives.get(key)

    def _require_device(self, key: str) -> DevicePrimitive:
        primitive = self.device_primitives.get(key)
        if primitive is None:
            raise CapabilityError(f"No {key} primitive available on this device")
        return primitive

    def _call(self, device: DevicePrimitive, action: str, args: dict[str, Any]) -> Any:
        """
        Invoke a device primitive.

        Hosts report failure as {"success": false, "error": ...}; that
        shape becomes a failed outcome instead of a successful result.
        """
        result = device(action, args)
        if isinstance(result, dict) and isinstance(result.get("success"), bool):
            if result["success"]:
                return ToolOutcome.ok(result)
            error = result.get("error") or f"Device action '{action}' failed"
            logger.error(f"Device action {action} failed: {error}")
            return ToolOutcome.fail(ErrorKind.EXECUTION_FAILURE, str(error))
        return result

    # --- handlers ------------------------------------------------------------

    def _shell(self, args: dict[str, Any]) -> Any:
        device = self._device("process")
        if device is not None:
            return self._call(device, "shell", args)
        return self.local.shell(args["command"], args.get("cwd")).to_dict()

    def _run_command(self, args: dict[str, Any]) -> Any:
        device = self._device("process")
        if device is not None:
            return self._call(device, "run_command", args)
        return self.local.run_command(args["command"], args.get("cwd")).to_dict()

    def _read_file(self, args: dict[str, Any]) -> Any:
        device = self._device("filesystem")
        if device is not None:
            return self._call(device, "read", args)
        return self.local.read_file(args["path"])

    def _write_file(self, args: dict[str, Any]) -> Any:
        device = self._device("filesystem")
        if device is not None:
            return self._call(device, "write", args)
        return self.local.write_file(args["path"], args["content"])

    def _list_dir(self, args: dict[str, Any]) -> Any:
        device = self._device("filesystem")
        if device is not None:
            return self._call(device, "list", args)
        return self.local.list_dir(args["path"])

    def _open_app(self, args: dict[str, Any]) -> Any:
        app = args["app"]
        device = self._device("apps")
        if device is not None:
            return self._call(device, "open", {"app": app, "package": app_package(app)})
        return self.launcher.launch(app).to_dict()

    def _open_browser(self, args: dict[str, Any]) -> Any:
        return self.local.open_url(args["url"])

    def _web_search(self, args: dict[str, Any]) -> Any:
        return self.local.web_search(args["query"])

    def _system_info(self, args: dict[str, Any]) -> Any:
        return self.local.system_info()

    def _get_datetime(self, args: dict[str, Any]) -> Any:
        return self.local.get_datetime(args.get("timezone"))

    def _clipboard_read(self, args: dict[str, Any]) -> Any:
        device = self._device("clipboard")
        if device is not None:
            return self._call(device, "read", args)
        return self.local.clipboard_read()

    def _clipboard_write(self, args: dict[str, Any]) -> Any:
        device = self._device("clipboard")
        if device is not None:
            return self._call(device, "write", args)
        return self.local.clipboard_write(args["text"])

    def _screenshot(self, args: dict[str, Any]) -> Any:
        device = self._device("input")
        if device is not None:
            return self._call(device, "screenshot", args)
        return self.local.screenshot(args.get("region"))

    def _mouse_click(self, args: dict[str, Any]) -> Any:
        device = self._device("input")
        has_point = args.get("x") is not None and args.get("y") is not None
        if not has_point and not args.get("text"):
            raise ArgumentError("mouse_click needs x and y, or the text of an element")
        if device is not None:
            return self._call(device, "click", args)
        if not has_point:
            x, y = self._locate_text(args["text"])
        else:
            x, y = args["x"], args["y"]
        return self.local.mouse_click(x, y, args.get("button") or "left")

    def _locate_text(self, text: str) -> tuple[float, float]:
        """Centre of the first on-screen element whose text matches."""
        screen = self._require_device("screen")
        state = screen("read", {}) or {}
        wanted = text.strip().lower()
        for element in state.get("elements", []):
            label = str(element.get("text") or element.get("contentDescription") or "").lower()
            bounds = element.get("bounds")
            if wanted and wanted in label and bounds:
                return (
                    (bounds["left"] + bounds["right"]) / 2,
                    (bounds["top"] + bounds["bottom"]) / 2,
                )
        raise PrimitiveError(f"No element on screen matching: {text}")

    def _type_text(self, args: dict[str, Any]) -> Any:
        device = self._device("input")
        if device is not None:
            return self._call(device, "type", args)
        return self.local.type_text(args["text"])

    def _press_key(self, args: dict[str, Any]) -> Any:
        device = self._device("input")
        if device is not None:
            return self._call(device, "key", args)
        return self.local.press_key(args["key"])

    def _scroll(self, args: dict[str, Any]) -> Any:
        device = self._device("input")
        if device is not None:
            return self._call(device, "scroll", args)
        return self.local.scroll(args["direction"], int(args.get("amount") or 5))

    def _read_screen(self, args: dict[str, Any]) -> Any:
        return self._call(self._require_device("screen"), "read", args)

    def _browser_automation(self, args: dict[str, Any]) -> Any:
        device = self._device("browser")
        if device is not None:
            return self._call(device, "run", args)
        run = args.get("run")
        return automate(
            args["url"],
            args.get("steps"),
            run=True if run is None else bool(run),
            service=self.browser,
        )

    def _remember(self, args: dict[str, Any]) -> Any:
        return self.memory.remember(args["key"], args["value"])

    def _recall(self, args: dict[str, Any]) -> Any:
        return self.memory.recall(args["key"])

    def _save_note(self, args: dict[str, Any]) -> Any:
        return self.notes.save(args["filename"], args["content"])

    def _read_note(self, args: dict[str, Any]) -> Any:
        return self.notes.read(args["filename"])

    def _list_notes(self, args: dict[str, Any]) -> Any:
        return self.notes.list_notes()

    def _calculate(self, args: dict[str, Any]) -> Any:
        return calculate(args["expression"])

    def _get_weather(self, args: dict[str, Any]) -> Any:
        units = args.get("units") or "fahrenheit"
        location = args["location"].strip()
        if location and location.lower() != "current":
            return self.weather.for_place(location, units)

        geolocation = self._device("geolocation")
        if geolocation is None:
            raise CapabilityError("Current location is not available; ask the user for a city")
        position = self._call(geolocation, "get", {})
        if isinstance(position, ToolOutcome):
            if not position.success:
                return position
            position = position.result
        try:
            latitude = float(position.get("latitude", position.get("lat")))
            longitude = float(position.get("longitude", position.get("lon")))
        except (AttributeError, TypeError, ValueError):
            raise PrimitiveError(f"Could not read a position from {position!r}") from None
        return self.weather.current(latitude, longitude, units, label="your location")

    def _set_timer(self, args: dict[str, Any]) -> Any:
        return self.timers.set_timer(args["duration"], args.get("label"))

    def _notify_timer(self, title: str, body: str) -> None:
        device = self._device("notifications")
        if device is None:
            logger.info(f"{title}: {body}")
            return
        device("send", {"title": title, "body": body})

    def _get_location(self, args: dict[str, Any]) -> Any:
        return self._call(self._require_device("geolocation"), "get", args)

    def _send_notification(self, args: dict[str, Any]) -> Any:
        return self._call(self._require_device("notifications"), "send", args)

    def _create_calendar_event(self, args: dict[str, Any]) -> Any:
        calendar = self._require_device("calendar")
        event = dict(args)
        try:
            start = datetime.fromisoformat(args["start_time"])
        except ValueError:
            raise ArgumentError(f"Could not parse start time: {args['start_time']}") from None
        if not event.get("end_time"):
            event["end_time"] = (start + timedelta(hours=1)).isoformat()
        return self._call(calendar, "create", event)

    def _get_calendar_events(self, args: dict[str, Any]) -> Any:
        days = args.get("days_ahead")
        return self._call(self._require_device("calendar"), "list", {"days_ahead": 7 if days is None else days})

    def _search_contacts(self, args: dict[str, Any]) -> Any:
        return self._call(self._require_device("contacts"), "search", args)

    def _run_autonomous_task(self, args: dict[str, Any]) -> Any:
        if self.task_runner is None:
            raise CapabilityError("Autonomous tasks are not available in this session")
        return self.task_runner(args["goal"], args.get("surface") or "screen", args.get("max_steps"))
