"""
Conversation Driver - the turn-based runtime.

One user message runs this loop:

1. Append the user turn and send it to the model backend
2. If the backend returns text: append it and return
3. If it returns tool calls: append the tool-call turn, run each call
   in order through the executor, append one tool turn with every
   result, send the results back, goto 2

Calls in a batch never run concurrently; later calls may depend on the
side effects of earlier ones. The number of tool-call round trips per
message is capped, and hitting the cap returns a fallback message
instead of raising.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from palagent.backend import BackendRequest, BackendResponse, ModelBackend
from palagent.config import LoopConfig
from palagent.executor import ToolExecutor
from palagent.session import AgentSession
from palagent.types import ToolCall, ToolResult

logger = logging.getLogger(__name__)

COMPLETED = "completed"
ITERATION_EXHAUSTED = "iteration_exhausted"


@dataclass
class TurnResult:
    """Outcome of one send_message call."""
    response: str
    iterations: int
    stopped_reason: str = COMPLETED
    tool_results: list[ToolResult] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.stopped_reason == ITERATION_EXHAUSTED


class ConversationDriver:
    """
    Multi-turn orchestrator for one session.

    Tool failures come back as failed results and the loop carries on.
    A BackendError is not a tool failure and propagates to the caller.
    """

    def __init__(
        self,
        session: AgentSession,
        backend: ModelBackend,
        executor: ToolExecutor,
        config: LoopConfig | None = None,
        user_id: str | None = None,
        on_tool_call: Callable[[ToolCall], None] | None = None,
        on_tool_result: Callable[[ToolCall, ToolResult], None] | None = None,
    ) -> None:
        self.session = session
        self.backend = backend
        self.executor = executor
        self.config = config or LoopConfig()
        self.user_id = user_id
        self.on_tool_call = on_tool_call
        self.on_tool_result = on_tool_result

    def send_message(self, text: str) -> str:
        """Run one user message to completion and return the final text."""
        return self.run(text).response

    def run(self, text: str) -> TurnResult:
        self.session.add_user_message(text)
        tools = self.executor.registry.get_declarations()

        response = self._send(BackendRequest(
            history=self.session.history_before_last(),
            prompt=text,
            tools=tools,
        ))

        iterations = 0
        all_results: list[ToolResult] = []

        while response.is_tool_calls:
            if iterations >= self.config.max_iterations:
                logger.warning(
                    f"Conversation hit the iteration cap ({self.config.max_iterations}); "
                    f"dropping {len(response.tool_calls)} pending tool call(s)"
                )
                self.session.add_assistant_message(self.config.fallback_message)
                return TurnResult(
                    response=self.config.fallback_message,
                    iterations=iterations,
                    stopped_reason=ITERATION_EXHAUSTED,
                    tool_results=all_results,
                )

            iterations += 1
            logger.info(
                f"Iteration {iterations}/{self.config.max_iterations}: "
                f"{len(response.tool_calls)} tool call(s)"
            )
            self.session.add_assistant_message(response.content, tool_calls=response.tool_calls)

            results = [self._execute(call) for call in response.tool_calls]
            all_results.extend(results)
            self.session.add_tool_results(results)

            response = self._send(BackendRequest(
                history=self.session.history_before_last(),
                tool_results=results,
                tools=tools,
            ))

        self.session.add_assistant_message(response.content)
        return TurnResult(
            response=response.content,
            iterations=iterations,
            tool_results=all_results,
        )

    def _send(self, request: BackendRequest) -> BackendResponse:
        request.user_id = self.user_id
        request.system_prompt = self.session.system_prompt or None
        return self.backend.send(request)

    def _execute(self, call: ToolCall) -> ToolResult:
        if self.on_tool_call:
            self.on_tool_call(call)
        result = self.executor.execute_call(call)
        if not result.success:
            logger.info(f"Tool {call.name} ({call.id}) failed: {result.output.error}")
        if self.on_tool_result:
            self.on_tool_result(call, result)
        return result

    def reset(self) -> None:
        self.session.reset()
