"""
palagent CLI - talk to the assistant from a terminal.

Commands:
- palagent chat: interactive conversation; dangerous tools ask on stdin
- palagent task "<goal>": run the autonomous planner once
- palagent tools: list the tools available on this machine

Plain input()/print(); no TUI library.
"""

import json
import logging
import sys
from collections.abc import Callable
from typing import Any

from palagent.agent import Assistant
from palagent.approval import ApprovalCallback
from palagent.backend import BackendError
from palagent.config import AgentConfig
from palagent.planner import StepRecord
from palagent.types import AutonomyLevel

logger = logging.getLogger(__name__)

InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]


def console_approval(input_fn: InputFn = input, output: OutputFn = print) -> ApprovalCallback:
    """Approval callback that asks on the terminal. Anything but y/yes denies."""

    def ask(tool_name: str, arguments: dict[str, Any]) -> bool:
        rendered = json.dumps(arguments, ensure_ascii=False)
        if len(rendered) > 300:
            rendered = rendered[:300] + "..."
        try:
            answer = input_fn(f"Allow {tool_name} {rendered}? [y/N] ")
        except EOFError:
            output("")
            return False
        return answer.strip().lower() in ("y", "yes")

    return ask


class ChatConsole:
    """
    Read-eval-print loop around an Assistant.

    Lines starting with "/" are console commands; everything else is sent
    to the assistant.
    """

    def __init__(self, assistant: Assistant, input_fn: InputFn = input, output: OutputFn = print):
        self.assistant = assistant
        self.input_fn = input_fn
        self.output = output

    def handle_line(self, line: str) -> bool:
        """Process one line. Returns False when the console should exit."""
        line = line.strip()
        if not line:
            return True
        if line in ("/quit", "/exit"):
            return False
        if line == "/reset":
            self.assistant.reset()
            self.output("Conversation cleared.")
            return True
        if line.startswith("/autonomy"):
            parts = line.split(maxsplit=1)
            if len(parts) == 1:
                self.output(f"Autonomy: {self.assistant.autonomy.value}")
                return True
            try:
                self.assistant.set_autonomy(parts[1])
            except ValueError as e:
                self.output(str(e))
                return True
            self.output(f"Autonomy set to {self.assistant.autonomy.value}")
            return True
        if line == "/tools":
            self.output(format_tools(self.assistant))
            return True
        if line == "/help":
            self.output("Commands: /reset, /autonomy [ask|allowlist|full], /tools, /quit")
            return True

        try:
            reply = self.assistant.send_message(line)
        except BackendError as e:
            logger.error(f"Model backend error: {e}")
            self.output(f"[error] The model backend is unavailable: {e}")
            return True
        self.output(reply)
        return True

    def run(self) -> None:
        self.output(
            f"palagent chat (autonomy: {self.assistant.autonomy.value}). "
            "Type /help for commands, /quit to exit."
        )
        while True:
            try:
                line = self.input_fn("> ")
            except (EOFError, KeyboardInterrupt):
                self.output("")
                return
            if not self.handle_line(line):
                return


def format_tools(assistant: Assistant) -> str:
    tools = assistant.available_tools()
    if not tools:
        return "No tools available on this platform."
    lines = [f"{len(tools)} tool(s) available on {assistant.detector.detect().platform.value}:"]
    for tool in tools:
        marker = "!" if tool.dangerous else " "
        lines.append(f" {marker} {tool.name.value:24} {tool.description[:70]}")
    lines.append("(! = asks for approval unless autonomy is full)")
    return "\n".join(lines)


def _print_step(record: StepRecord) -> None:
    if record.action is None:
        print(f"  step {record.step}: (no action recognised)")
        return
    status = ""
    if record.outcome is not None:
        status = " ok" if record.outcome.success else f" failed: {record.outcome.error}"
    print(f"  step {record.step}: {record.action.type.value} {record.action.params}{status}")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(prog="palagent", description="PAL personal assistant runtime")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level")
    parser.add_argument("--autonomy", choices=[level.value for level in AutonomyLevel],
                        help="Override PAL_AUTONOMY for this run")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("chat", help="Interactive conversation")

    task_parser = subparsers.add_parser("task", help="Run one autonomous task")
    task_parser.add_argument("goal", help="What should be accomplished")
    task_parser.add_argument("--surface", choices=["desktop", "screen"], default="desktop",
                             help="What the planner controls")
    task_parser.add_argument("--max-steps", type=int, default=None, help="Step budget")

    subparsers.add_parser("tools", help="List tools available on this machine")

    args = parser.parse_args(argv)

    config = AgentConfig.from_env()
    log_level = "DEBUG" if config.verbose and args.log_level == "WARNING" else args.log_level
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.autonomy:
        config.approval.autonomy = AutonomyLevel.parse(args.autonomy)

    if args.command is None:
        parser.print_help()
        return 1

    assistant = Assistant(
        config=config,
        approval_callback=console_approval(),
        on_step=_print_step if args.command == "task" else None,
    )

    if args.command == "chat":
        ChatConsole(assistant).run()
        return 0
    if args.command == "tools":
        print(format_tools(assistant))
        return 0
    if args.command == "task":
        try:
            result = assistant.run_task(args.goal, surface=args.surface, max_steps=args.max_steps)
        except KeyboardInterrupt:
            assistant.cancel_task()
            print("Cancelled.")
            return 130
        print(f"{result.status.value} after {result.steps} step(s): {result.message}")
        return 0 if result.success else 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
