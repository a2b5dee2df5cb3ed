"""
Tests for the Assistant facade - the whole runtime wired together.
"""

from palagent.agent import Assistant
from palagent.backend import BackendResponse, ScriptedBackend
from palagent.capabilities import Capability
from palagent.config import (
    AgentConfig,
    ApprovalConfig,
    ExecutorConfig,
    LLMConfig,
    LoopConfig,
    PlannerConfig,
    RelayConfig,
)
from palagent.memory import MemoryStore
from palagent.planner import PlannerStatus
from palagent.types import AutonomyLevel, Role, ToolCall

HOME_SCREEN = {
    "packageName": "com.android.launcher",
    "elements": [{"text": "Calculator", "clickable": True}],
}


class FakeDevice:
    def __init__(self, result=None):
        self.result = result
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, action: str, args: dict):
        self.calls.append((action, dict(args)))
        return self.result if self.result is not None else "ok"


def make_config(autonomy: AutonomyLevel = AutonomyLevel.FULL, platform: str = "mobile") -> AgentConfig:
    return AgentConfig(
        backend="relay",
        llm=LLMConfig(base_url="http://llm.test/v1", api_key="", model=""),
        relay=RelayConfig(url="http://relay.test", user_id="user-1"),
        loop=LoopConfig(),
        approval=ApprovalConfig(autonomy=autonomy),
        planner=PlannerConfig(max_steps=5, settle_seconds=0.0, idle_seconds=0.0),
        executor=ExecutorConfig(platform=platform),
    )


def make_assistant(responses, devices=None, **kwargs) -> tuple[Assistant, ScriptedBackend]:
    backend = ScriptedBackend(responses)
    assistant = Assistant(
        config=kwargs.pop("config", make_config()),
        backend=backend,
        device_primitives=devices,
        memory=MemoryStore(None),
        sleep=lambda seconds: None,
        **kwargs,
    )
    return assistant, backend


class TestAssistant:
    def test_plain_reply(self) -> None:
        assistant, backend = make_assistant(["Hi, I'm PAL."])

        assert assistant.send_message("hello") == "Hi, I'm PAL."
        request = backend.requests[0]
        assert request.user_id == "user-1"
        assert request.system_prompt.startswith("You are PAL")

    def test_tools_follow_platform(self) -> None:
        assistant, _ = make_assistant([], devices={"contacts": FakeDevice()})

        names = {tool.name.value for tool in assistant.available_tools()}

        assert "search_contacts" in names
        assert "shell" not in names

    def test_permission_change_updates_offered_tools(self) -> None:
        assistant, backend = make_assistant(["one", "two"])
        assistant.send_message("first")

        assistant.on_permission_change(Capability.GEOLOCATION, granted=True)
        assistant.send_message("second")

        first = {tool["name"] for tool in backend.requests[0].tools}
        second = {tool["name"] for tool in backend.requests[1].tools}
        assert "get_location" not in first
        assert "get_location" in second

    def test_autonomy_and_reset(self) -> None:
        assistant, _ = make_assistant(["hi"], config=make_config(AutonomyLevel.ASK))
        assistant.send_message("hello")

        assistant.set_autonomy("allowlist")
        assistant.reset()

        assert assistant.autonomy == AutonomyLevel.ALLOWLIST
        assert assistant.session.message_count == 0

    def test_approval_callback_can_be_swapped(self) -> None:
        prompts: list[str] = []
        process = FakeDevice({"exit_code": 0})
        shell = BackendResponse.calls([ToolCall(id="c1", name="shell", arguments={"command": "ls"})])
        assistant, backend = make_assistant(
            [shell, "Done."],
            devices={"process": process},
            config=make_config(AutonomyLevel.ASK),
        )

        assistant.set_approval_callback(lambda name, args: prompts.append(name) or True)
        assistant.send_message("list files")

        assert prompts == ["shell"]
        assert process.calls == [("shell", {"command": "ls"})]

    def test_allowlist_approvals_survive_a_restart(self, tmp_path) -> None:
        config = make_config(AutonomyLevel.ALLOWLIST)
        config.approval.allowlist_path = tmp_path / "allowlist.json"
        shell = BackendResponse.calls([ToolCall(id="c1", name="shell", arguments={"command": "ls"})])
        first_prompts: list[str] = []
        first, _ = make_assistant(
            [shell, "Done."],
            devices={"process": FakeDevice({"exit_code": 0})},
            config=config,
            approval_callback=lambda name, args: first_prompts.append(name) or True,
        )
        first.send_message("list files")

        second_prompts: list[str] = []
        second, _ = make_assistant(
            [shell, "Done again."],
            devices={"process": FakeDevice({"exit_code": 0})},
            config=config,
            approval_callback=lambda name, args: second_prompts.append(name) or False,
        )

        assert second.send_message("list files") == "Done again."
        assert first_prompts == ["shell"]
        assert second_prompts == []


class TestAutonomousTaskThroughConversation:
    """The model can hand a multi-step goal to the planner."""

    def test_run_autonomous_task_tool(self) -> None:
        apps = FakeDevice()
        assistant, backend = make_assistant(
            [
                BackendResponse.calls([ToolCall(
                    id="t1",
                    name="run_autonomous_task",
                    arguments={"goal": "open the calculator", "surface": "screen"},
                )]),
                "open calculator",
                "GOAL COMPLETE: calculator is open",
                "The calculator is open.",
            ],
            devices={"screen": FakeDevice(HOME_SCREEN), "apps": apps},
        )

        reply = assistant.send_message("open the calculator for me")

        assert reply == "The calculator is open."
        assert apps.calls == [("open", {"app": "calculator", "package": "com.google.android.calculator"})]
        result = backend.requests[3].tool_results[0]
        assert result.tool_call_id == "t1"
        assert result.output.result["status"] == "completed"
        assert result.output.result["steps"] == 2
        assert [m.role for m in assistant.session.history] == [
            Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT,
        ]

    def test_run_task_directly(self) -> None:
        assistant, _ = make_assistant(
            ["GOAL FAILED: nothing to do"],
            devices={"screen": FakeDevice(HOME_SCREEN)},
        )

        result = assistant.run_task("do nothing", surface="screen")

        assert result.status == PlannerStatus.FAILED
        assert result.message == "nothing to do"
