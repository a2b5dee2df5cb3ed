"""
Approval Gate - the autonomy state machine for dangerous tools.

Three autonomy levels:
- ASK: every dangerous call goes to the human, every time
- ALLOWLIST: the human is asked once per signature and the approval is remembered
- FULL: dangerous calls run without asking

Allowlist keys. A signature is the tool name joined to its arguments
serialized as canonical JSON ("write_file:{"content": "x", "path": "a"}").
A bare tool name is also a valid key, but it only enters the allowlist
through allow_tool(); the gate itself only ever records full signatures.
Lookup checks the bare name first, then the signature, so an explicit
whole-tool approval always covers every argument set.

The gate owns its allowlist. Nothing else mutates it. When the gate has a
path, the allowlist is loaded from that JSON file at start and rewritten
after every change, so approvals survive a restart.
"""

import json
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from palagent.types import AutonomyLevel

logger = logging.getLogger(__name__)

# (tool_name, arguments) -> approved?
ApprovalCallback = Callable[[str, dict[str, Any]], bool]

DENIED_MESSAGE = "User denied permission"


def signature_for(tool_name: str, arguments: dict[str, Any] | None) -> str:
    """Normalized allowlist key for a tool call."""
    canonical = json.dumps(arguments or {}, sort_keys=True, separators=(", ", ": "), default=str)
    return f"{tool_name}:{canonical}"


class ApprovalGate:
    """
    Decides whether a dangerous tool call may proceed.

    One gate per session; pass it to the executor rather than sharing
    module-level state.
    """

    def __init__(
        self,
        autonomy: "AutonomyLevel | str" = AutonomyLevel.ASK,
        callback: ApprovalCallback | None = None,
        path: Path | None = None,
    ) -> None:
        self._autonomy = AutonomyLevel.parse(autonomy)
        self._callback = callback
        self.path = path
        self._allowlist: set[str] = self._load()
        self._lock = threading.Lock()

    def _load(self) -> set[str]:
        if self.path is None or not self.path.exists():
            return set()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read allowlist {self.path}, starting empty: {e}")
            return set()
        entries = data.get("allowlist", []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            logger.error(f"Ignoring malformed allowlist file {self.path}")
            return set()
        logger.info(f"Loaded {len(entries)} allowlist entries from {self.path}")
        return {str(entry) for entry in entries}

    def _save(self) -> None:
        """Write the allowlist. Called with the lock held."""
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(
                json.dumps({"allowlist": sorted(self._allowlist)}, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            tmp.replace(self.path)
        except OSError as e:
            logger.error(f"Could not write allowlist {self.path}: {e}")

    @property
    def autonomy(self) -> AutonomyLevel:
        return self._autonomy

    def set_autonomy(self, level: "AutonomyLevel | str") -> None:
        self._autonomy = AutonomyLevel.parse(level)
        logger.info(f"Autonomy level set to {self._autonomy.value}")

    def set_callback(self, callback: ApprovalCallback | None) -> None:
        self._callback = callback

    @property
    def allowlist(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._allowlist)

    def allow_tool(self, tool_name: str) -> None:
        """Approve every future call of a tool, whatever its arguments."""
        with self._lock:
            self._allowlist.add(tool_name)
            self._save()

    def allow_call(self, tool_name: str, arguments: dict[str, Any] | None) -> None:
        """Approve one exact tool-plus-arguments signature."""
        with self._lock:
            self._allowlist.add(signature_for(tool_name, arguments))
            self._save()

    def revoke(self, key: str) -> None:
        with self._lock:
            self._allowlist.discard(key)
            self._save()

    def clear(self) -> None:
        with self._lock:
            self._allowlist.clear()
            self._save()

    def is_allowed(self, tool_name: str, arguments: dict[str, Any] | None) -> bool:
        with self._lock:
            return (
                tool_name in self._allowlist
                or signature_for(tool_name, arguments) in self._allowlist
            )

    def request_approval(self, tool_name: str, arguments: dict[str, Any] | None = None) -> bool:
        """
        Return True when the call may run.

        FULL approves immediately. ALLOWLIST consults the allowlist before
        asking. ASK always asks. Without a callback the answer is no.
        """
        arguments = arguments or {}

        if self._autonomy == AutonomyLevel.FULL:
            return True

        if self._autonomy == AutonomyLevel.ALLOWLIST and self.is_allowed(tool_name, arguments):
            logger.debug(f"Allowlisted: {tool_name}")
            return True

        if self._callback is None:
            logger.warning(f"No approval callback registered, denying {tool_name}")
            return False

        try:
            approved = bool(self._callback(tool_name, arguments))
        except Exception as e:
            logger.error(f"Approval callback failed for {tool_name}, treating as denial: {e}")
            return False

        if approved and self._autonomy == AutonomyLevel.ALLOWLIST:
            self.allow_call(tool_name, arguments)

        if not approved:
            logger.warning(f"Approval denied for {tool_name}")
        return approved
