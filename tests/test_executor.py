"""
Tests for the ToolExecutor - the controlled entry point for side effects.
"""

from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

from palagent.approval import ApprovalGate
from palagent.capabilities import Capability, CapabilityDetector
from palagent.executor import ToolExecutor
from palagent.memory import MemoryStore
from palagent.primitives import CapabilityError, LocalPrimitives, PrimitiveError
from palagent.tools import ToolName, ToolRegistry
from palagent.types import AutonomyLevel, ErrorKind, ToolCall, ToolOutcome
from palagent.weather import WeatherClient


class FakeDevice:
    """Injected device primitive that records calls."""

    def __init__(self, results: dict | None = None, error: Exception | None = None):
        self.results = results or {}
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, action: str, args: dict):
        self.calls.append((action, dict(args)))
        if self.error is not None:
            raise self.error
        return self.results.get(action, "ok")


def make_executor(
    devices: dict | None = None,
    enabled: tuple[Capability, ...] = (),
    autonomy: AutonomyLevel = AutonomyLevel.FULL,
    callback=None,
    local: LocalPrimitives | None = None,
) -> ToolExecutor:
    detector = CapabilityDetector(devices or {}, platform="desktop", enabled=enabled, probe_local=False)
    return ToolExecutor(
        registry=ToolRegistry(detector),
        gate=ApprovalGate(autonomy, callback),
        local=local or LocalPrimitives(command_timeout=10),
        device_primitives=devices,
        memory=MemoryStore(None),
    )


class TestChecks:
    """Checks run in order: name, schema, capability, approval."""

    def test_unknown_tool(self) -> None:
        outcome = make_executor().execute("teleport", {})

        assert not outcome.success
        assert outcome.kind == ErrorKind.UNKNOWN_TOOL
        assert outcome.error == "Unknown tool: teleport"

    def test_missing_required_argument(self) -> None:
        callback = MagicMock(return_value=True)
        executor = make_executor(
            enabled=(Capability.FILESYSTEM,), autonomy=AutonomyLevel.ASK, callback=callback,
        )

        outcome = executor.execute("write_file", {"path": "/tmp/x"})

        assert outcome.kind == ErrorKind.VALIDATION_ERROR
        callback.assert_not_called()

    def test_capability_unavailable_skips_dispatch(self) -> None:
        local = MagicMock(spec=LocalPrimitives)
        executor = make_executor(local=local)

        outcome = executor.execute("run_command", {"command": "ls"})

        assert outcome.kind == ErrorKind.CAPABILITY_UNAVAILABLE
        local.run_command.assert_not_called()

    def test_capability_check_happens_before_approval(self) -> None:
        callback = MagicMock(return_value=True)
        executor = make_executor(autonomy=AutonomyLevel.ASK, callback=callback)

        executor.execute("shell", {"command": "ls"})

        callback.assert_not_called()

    def test_denied_dangerous_tool_is_not_dispatched(self) -> None:
        process = FakeDevice()
        executor = make_executor(
            {"process": process}, autonomy=AutonomyLevel.ASK, callback=lambda name, args: False,
        )

        outcome = executor.execute("shell", {"command": "ls"})

        assert outcome.to_dict() == {"success": False, "error": "User denied permission"}
        assert outcome.kind == ErrorKind.APPROVAL_DENIED
        assert process.calls == []

    def test_safe_tools_skip_the_gate(self) -> None:
        callback = MagicMock(return_value=False)
        executor = make_executor(autonomy=AutonomyLevel.ASK, callback=callback)

        outcome = executor.execute("remember", {"key": "color", "value": "blue"})

        assert outcome.success
        callback.assert_not_called()


class TestNormalization:
    """Primitive exceptions never escape."""

    @pytest.mark.parametrize("error, kind", [
        (PrimitiveError("exit 1"), ErrorKind.EXECUTION_FAILURE),
        (CapabilityError("no display"), ErrorKind.CAPABILITY_UNAVAILABLE),
        (RuntimeError("boom"), ErrorKind.EXECUTION_FAILURE),
        (KeyError("x"), ErrorKind.EXECUTION_FAILURE),
    ])
    def test_exceptions_become_failed_outcomes(self, error: Exception, kind: ErrorKind) -> None:
        executor = make_executor({"process": FakeDevice(error=error)})

        outcome = executor.execute("shell", {"command": "ls"})

        assert not outcome.success
        assert outcome.kind == kind

    def test_execute_call_keeps_the_id(self) -> None:
        executor = make_executor()

        result = executor.execute_call(ToolCall(id="call_7", name="recall", arguments={"key": "missing"}))

        assert result.tool_call_id == "call_7"
        assert not result.success
        assert result.output.error == "No memory found for key: missing"

    def test_every_tool_name_has_a_handler(self) -> None:
        executor = make_executor()

        assert set(executor._handlers) == set(ToolName)


class TestDevicePrimitives:
    """Injected primitives take precedence over local ones."""

    def test_shell_goes_to_process_primitive(self) -> None:
        process = FakeDevice({"shell": {"stdout": "hi"}})
        executor = make_executor({"process": process})

        outcome = executor.execute("shell", {"command": "echo hi"})

        assert outcome.result == {"stdout": "hi"}
        assert process.calls == [("shell", {"command": "echo hi"})]

    def test_open_app_sends_package_name(self) -> None:
        apps = FakeDevice()
        executor = make_executor({"apps": apps})

        executor.execute("open_app", {"app": "YouTube"})

        assert apps.calls == [("open", {"app": "YouTube", "package": "com.google.android.youtube"})]

    def test_reported_failure_becomes_failed_outcome(self) -> None:
        apps = FakeDevice({"open": {"success": False, "error": "App not installed"}})
        executor = make_executor({"apps": apps})

        outcome = executor.execute("open_app", {"app": "calculator"})

        assert outcome.to_dict() == {"success": False, "error": "App not installed"}
        assert outcome.kind == ErrorKind.EXECUTION_FAILURE

    def test_reported_failure_without_message(self) -> None:
        executor = make_executor({"contacts": FakeDevice({"search": {"success": False}})})

        outcome = executor.execute("search_contacts", {"query": "Ada"})

        assert outcome.kind == ErrorKind.EXECUTION_FAILURE
        assert outcome.error == "Device action 'search' failed"

    def test_reported_success_keeps_the_payload(self) -> None:
        geo = FakeDevice({"get": {"success": True, "latitude": 1.0, "longitude": 2.0}})
        executor = make_executor({"geolocation": geo})

        outcome = executor.execute("get_location", {})

        assert outcome.success
        assert outcome.result["latitude"] == 1.0

    def test_non_boolean_success_field_is_plain_data(self) -> None:
        executor = make_executor({"contacts": FakeDevice({"search": {"success": "maybe"}})})

        assert executor.execute("search_contacts", {"query": "x"}).result == {"success": "maybe"}

    def test_location_notification_contacts(self) -> None:
        geo = FakeDevice({"get": {"lat": 1.0, "lon": 2.0}})
        notes = FakeDevice()
        contacts = FakeDevice({"search": [{"name": "Ada"}]})
        executor = make_executor({"geolocation": geo, "notifications": notes, "contacts": contacts})

        assert executor.execute("get_location", {}).result == {"lat": 1.0, "lon": 2.0}
        assert executor.execute("send_notification", {"title": "t", "body": "b"}).success
        assert executor.execute("search_contacts", {"query": "Ad"}).result == [{"name": "Ada"}]

    def test_calendar_event_defaults_to_one_hour(self) -> None:
        calendar = FakeDevice()
        executor = make_executor({"calendar": calendar})

        outcome = executor.execute(
            "create_calendar_event", {"title": "Dentist", "start_time": "2026-03-01T15:00:00"},
        )

        assert outcome.success
        action, args = calendar.calls[0]
        assert action == "create"
        assert args["end_time"] == "2026-03-01T16:00:00"

    def test_calendar_event_bad_start_time(self) -> None:
        executor = make_executor({"calendar": FakeDevice()})

        outcome = executor.execute("create_calendar_event", {"title": "x", "start_time": "tomorrow-ish"})

        assert outcome.kind == ErrorKind.VALIDATION_ERROR

    def test_click_by_text_uses_screen_bounds(self) -> None:
        screen = FakeDevice({"read": {"elements": [
            {"text": "Equals", "clickable": True,
             "bounds": {"left": 40, "right": 60, "top": 20, "bottom": 30}},
        ]}})
        local = MagicMock(spec=LocalPrimitives)
        local.mouse_click.return_value = "clicked"
        executor = make_executor({"screen": screen}, enabled=(Capability.POINTER_KEYBOARD,), local=local)

        outcome = executor.execute("mouse_click", {"text": "equals"})

        assert outcome.success
        local.mouse_click.assert_called_once_with(50.0, 25.0, "left")

    def test_click_needs_a_target(self) -> None:
        executor = make_executor({"input": FakeDevice()})

        outcome = executor.execute("mouse_click", {})

        assert outcome.kind == ErrorKind.VALIDATION_ERROR


class TestLocalPrimitives:
    """Real filesystem and process primitives."""

    def test_write_read_and_list(self, tmp_path: Path) -> None:
        executor = make_executor(enabled=(Capability.FILESYSTEM,))
        target = tmp_path / "notes" / "todo.txt"

        assert executor.execute("write_file", {"path": str(target), "content": "milk"}).success
        assert executor.execute("read_file", {"path": str(target)}).result == "milk"
        listing = executor.execute("list_dir", {"path": str(tmp_path / "notes")}).result
        assert listing == [{"name": "todo.txt", "type": "file", "size": 4}]

    def test_empty_content_creates_an_empty_file(self, tmp_path: Path) -> None:
        executor = make_executor(enabled=(Capability.FILESYSTEM,))
        target = tmp_path / "empty.txt"

        outcome = executor.execute("write_file", {"path": str(target), "content": ""})

        assert outcome.success
        assert target.read_text() == ""

    def test_read_missing_file(self, tmp_path: Path) -> None:
        executor = make_executor(enabled=(Capability.FILESYSTEM,))

        outcome = executor.execute("read_file", {"path": str(tmp_path / "nope.txt")})

        assert outcome.kind == ErrorKind.EXECUTION_FAILURE
        assert "File not found" in outcome.error

    def test_shell_runs_commands(self, tmp_path: Path) -> None:
        executor = make_executor(enabled=(Capability.PROCESS_EXECUTION,))

        outcome = executor.execute("shell", {"command": "echo hello", "cwd": str(tmp_path)})

        assert outcome.success
        assert outcome.result["stdout"].strip() == "hello"
        assert outcome.result["exit_code"] == 0

    def test_non_zero_exit_is_execution_failure(self) -> None:
        executor = make_executor(enabled=(Capability.PROCESS_EXECUTION,))

        outcome = executor.execute("shell", {"command": "exit 3"})

        assert outcome.kind == ErrorKind.EXECUTION_FAILURE
        assert "code 3" in outcome.error

    def test_open_browser_rejects_non_web_urls(self) -> None:
        outcome = make_executor().execute("open_browser", {"url": "file:///etc/passwd"})

        assert outcome.kind == ErrorKind.VALIDATION_ERROR


class TestAutonomousTaskTool:
    def test_unavailable_without_runner(self) -> None:
        outcome = make_executor().execute("run_autonomous_task", {"goal": "open settings"})

        assert outcome.kind == ErrorKind.CAPABILITY_UNAVAILABLE

    def test_runner_outcome_is_returned(self) -> None:
        executor = make_executor()
        executor.task_runner = lambda goal, surface, max_steps: ToolOutcome.ok({"goal": goal, "surface": surface})

        outcome = executor.execute("run_autonomous_task", {"goal": "open settings"})

        assert outcome.result == {"goal": "open settings", "surface": "screen"}


def weather_client(handler) -> WeatherClient:
    return WeatherClient(http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def open_meteo(request: httpx.Request) -> httpx.Response:
    if request.url.host == "geocoding-api.open-meteo.com":
        return httpx.Response(200, json={"results": [
            {"name": "Paris", "country": "France", "latitude": 48.85, "longitude": 2.35},
        ]})
    return httpx.Response(200, json={"current": {
        "temperature_2m": 61.6, "weathercode": 3, "windspeed_10m": 7.2,
    }})


class TestAssistantTools:
    """Notes, arithmetic, weather and timers."""

    def test_notes(self) -> None:
        executor = make_executor()

        assert executor.execute("save_note", {"filename": "groceries", "content": "milk"}).success
        assert executor.execute("read_note", {"filename": "groceries"}).result["content"] == "milk"
        assert executor.execute("list_notes", {}).result == {"notes": ["groceries"], "count": 1}

    def test_missing_note(self) -> None:
        outcome = make_executor().execute("read_note", {"filename": "nope"})

        assert outcome.kind == ErrorKind.EXECUTION_FAILURE
        assert outcome.error == 'Note "nope" not found'

    @pytest.mark.parametrize("expression, expected", [
        ("15% of 250", 37.5),
        ("2^10", 1024),
        ("sqrt(144) + 1", 13),
    ])
    def test_calculate(self, expression: str, expected: float) -> None:
        outcome = make_executor().execute("calculate", {"expression": expression})

        assert outcome.success
        assert outcome.result["result"] == expected

    def test_calculate_rejects_code(self) -> None:
        outcome = make_executor().execute("calculate", {"expression": "__import__('os').getcwd()"})

        assert outcome.kind == ErrorKind.VALIDATION_ERROR

    def test_weather_for_a_city(self) -> None:
        executor = make_executor()
        executor.weather = weather_client(open_meteo)

        outcome = executor.execute("get_weather", {"location": "Paris"})

        assert outcome.result == {
            "temperature": 62,
            "unit": "°F",
            "condition": "Overcast",
            "wind_speed": 7,
            "location": "Paris, France",
        }

    def test_weather_for_current_location(self) -> None:
        geo = FakeDevice({"get": {"success": True, "latitude": 40.7, "longitude": -74.0}})
        executor = make_executor({"geolocation": geo})
        executor.weather = weather_client(open_meteo)

        outcome = executor.execute("get_weather", {"location": "current", "units": "celsius"})

        assert outcome.result["location"] == "your location"
        assert outcome.result["unit"] == "°C"

    def test_weather_current_location_failure_is_passed_on(self) -> None:
        geo = FakeDevice({"get": {"success": False, "error": "Location permission denied"}})
        executor = make_executor({"geolocation": geo})

        outcome = executor.execute("get_weather", {"location": "current"})

        assert outcome.error == "Location permission denied"

    def test_weather_current_location_without_geolocation(self) -> None:
        outcome = make_executor().execute("get_weather", {"location": "current"})

        assert outcome.kind == ErrorKind.CAPABILITY_UNAVAILABLE

    def test_weather_service_down(self) -> None:
        executor = make_executor()
        executor.weather = weather_client(lambda request: httpx.Response(500))

        outcome = executor.execute("get_weather", {"location": "Paris"})

        assert outcome.kind == ErrorKind.EXECUTION_FAILURE
        assert outcome.error == "Weather service unavailable"

    def test_timer_notifies_through_device(self) -> None:
        notifications = FakeDevice()
        executor = make_executor({"notifications": notifications})

        outcome = executor.execute("set_timer", {"duration": "5 minutes", "label": "tea"})
        try:
            assert outcome.success
            assert outcome.result["duration_seconds"] == 300
            assert outcome.result["message"] == "Timer set for 5 minutes (tea)"
            executor.timers._fire(outcome.result["id"])
        finally:
            executor.timers.cancel_all()

        assert notifications.calls == [("send", {"title": "Timer Complete", "body": "tea"})]
        assert executor.timers.active == []

    def test_timer_bad_duration(self) -> None:
        outcome = make_executor().execute("set_timer", {"duration": "a while"})

        assert outcome.kind == ErrorKind.VALIDATION_ERROR
