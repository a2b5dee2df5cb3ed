"""
Configuration for the assistant runtime.

All configuration is loaded from environment variables so the same code
runs against a relay server, a local OpenAI-compatible model, or a test
double without edits.

The iteration cap and the planner step budget are hard limits, not hints.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from palagent.types import AutonomyLevel


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class LLMConfig:
    """Configuration for the OpenAI-compatible chat-completions backend."""
    base_url: str
    api_key: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096

    @classmethod
    def from_env(cls) -> "LLMConfig":
        return cls(
            base_url=os.getenv("LLM_BASE_URL", "http://localhost:8000/v1"),
            api_key=os.getenv("LLM_API_KEY", ""),
            model=os.getenv("LLM_MODEL", ""),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4096")),
        )


@dataclass
class RelayConfig:
    """
    Configuration for the relay backend.

    The relay speaks the {prompt | toolResults, history} protocol and
    hides which model actually answers.
    """
    url: str = "http://localhost:3000"
    user_id: str | None = None
    timeout_seconds: float = 120.0

    @classmethod
    def from_env(cls) -> "RelayConfig":
        return cls(
            url=os.getenv("PAL_RELAY_URL", "http://localhost:3000").rstrip("/"),
            user_id=os.getenv("PAL_USER_ID") or None,
            timeout_seconds=float(os.getenv("PAL_RELAY_TIMEOUT", "120")),
        )


@dataclass
class LoopConfig:
    """
    Configuration for the conversation driver.

    max_iterations bounds the number of tool-call round trips for a
    single user message.
    """
    max_iterations: int = 10
    fallback_message: str = (
        "I've completed several steps. Let me know if you need anything else!"
    )

    @classmethod
    def from_env(cls) -> "LoopConfig":
        return cls(
            max_iterations=int(os.getenv("PAL_MAX_ITERATIONS", "10")),
        )


@dataclass
class ApprovalConfig:
    """
    Initial autonomy level, and where allowlist approvals are kept.

    allowlist_path of None keeps approvals for the process only.
    PAL_ALLOWLIST_PATH set to an empty string does the same.
    """
    autonomy: AutonomyLevel = AutonomyLevel.ASK
    allowlist_path: Path | None = None

    @classmethod
    def from_env(cls) -> "ApprovalConfig":
        path = os.getenv("PAL_ALLOWLIST_PATH", "~/.palagent/allowlist.json").strip()
        return cls(
            autonomy=AutonomyLevel.parse(os.getenv("PAL_AUTONOMY", "ask")),
            allowlist_path=Path(path).expanduser() if path else None,
        )


@dataclass
class PlannerConfig:
    """
    Configuration for the autonomous step planner.

    settle_seconds is the pause after each executed action so the
    controlled surface can update; idle_seconds is the pause when nothing
    could be observed or parsed.
    """
    max_steps: int = 20
    settle_seconds: float = 0.5
    idle_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "PlannerConfig":
        return cls(
            max_steps=int(os.getenv("PAL_PLANNER_MAX_STEPS", "20")),
            settle_seconds=float(os.getenv("PAL_PLANNER_SETTLE_SECONDS", "0.5")),
            idle_seconds=float(os.getenv("PAL_PLANNER_IDLE_SECONDS", "1.0")),
        )


@dataclass
class ExecutorConfig:
    """Limits applied to local primitives."""
    command_timeout: float = 60.0
    output_limit: int = 20_000
    memory_path: Path = field(
        default_factory=lambda: Path("~/.palagent/memory.json").expanduser()
    )
    notes_dir: Path = field(
        default_factory=lambda: Path("~/.palagent/notes").expanduser()
    )
    platform: str | None = None
    app_launch_settle_seconds: float = 2.0

    @classmethod
    def from_env(cls) -> "ExecutorConfig":
        return cls(
            command_timeout=float(os.getenv("PAL_COMMAND_TIMEOUT", "60")),
            output_limit=int(os.getenv("PAL_OUTPUT_LIMIT", "20000")),
            memory_path=Path(
                os.getenv("PAL_MEMORY_PATH", "~/.palagent/memory.json")
            ).expanduser(),
            notes_dir=Path(os.getenv("PAL_NOTES_DIR", "~/.palagent/notes")).expanduser(),
            platform=os.getenv("PAL_PLATFORM") or None,
            app_launch_settle_seconds=float(os.getenv("PAL_APP_SETTLE_SECONDS", "2.0")),
        )


@dataclass
class AgentConfig:
    """Combined configuration for the entire runtime."""
    backend: str
    llm: LLMConfig
    relay: RelayConfig
    loop: LoopConfig
    approval: ApprovalConfig
    planner: PlannerConfig
    executor: ExecutorConfig
    verbose: bool = False

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load all configuration from environment variables."""
        return cls(
            backend=os.getenv("PAL_BACKEND", "relay").strip().lower(),
            llm=LLMConfig.from_env(),
            relay=RelayConfig.from_env(),
            loop=LoopConfig.from_env(),
            approval=ApprovalConfig.from_env(),
            planner=PlannerConfig.from_env(),
            executor=ExecutorConfig.from_env(),
            verbose=_env_bool("PAL_VERBOSE"),
        )
