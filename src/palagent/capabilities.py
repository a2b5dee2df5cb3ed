"""
Capability Detection - which primitives actually work here.

The tool catalog is static, but a browser tab cannot run shell commands
and a phone has no pointer to move. The detector inspects the
environment once, caches the answer, and lets the registry offer the
model only tools that can really run.

Capabilities come from three places:
- local probes (a shell on PATH, Playwright importable, a display)
- device primitives injected by the host application
- explicit enable/disable overrides from the caller

The cache is dropped by invalidate(), which the host must call whenever
a permission grant changes.
"""

import importlib.util
import logging
import os
import shutil
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """Primitive capabilities a tool may depend on."""
    PROCESS_EXECUTION = "process_execution"
    FILESYSTEM = "filesystem"
    POINTER_KEYBOARD = "pointer_keyboard"
    SCREEN_READING = "screen_reading"
    BROWSER_AUTOMATION = "browser_automation"
    CLIPBOARD = "clipboard"
    APP_LAUNCH = "app_launch"
    GEOLOCATION = "geolocation"
    NOTIFICATIONS = "notifications"
    CALENDAR = "calendar"
    CONTACTS = "contacts"


class PlatformKind(str, Enum):
    """Host platform family."""
    BROWSER = "browser"
    DESKTOP = "desktop"
    MOBILE = "mobile"


# Injected device primitive name -> capability it provides
PRIMITIVE_CAPABILITIES: dict[str, Capability] = {
    "process": Capability.PROCESS_EXECUTION,
    "filesystem": Capability.FILESYSTEM,
    "input": Capability.POINTER_KEYBOARD,
    "screen": Capability.SCREEN_READING,
    "browser": Capability.BROWSER_AUTOMATION,
    "clipboard": Capability.CLIPBOARD,
    "apps": Capability.APP_LAUNCH,
    "geolocation": Capability.GEOLOCATION,
    "notifications": Capability.NOTIFICATIONS,
    "calendar": Capability.CALENDAR,
    "contacts": Capability.CONTACTS,
}


@dataclass(frozen=True)
class PlatformCapabilities:
    """Snapshot of what the current environment can do."""
    platform: PlatformKind
    flags: frozenset[Capability] = field(default_factory=frozenset)

    def has(self, capability: Capability) -> bool:
        return capability in self.flags

    def supports_all(self, required: Iterable[Capability]) -> bool:
        return all(cap in self.flags for cap in required)

    def missing(self, required: Iterable[Capability]) -> list[Capability]:
        return [cap for cap in required if cap not in self.flags]

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform.value,
            **{cap.value: cap in self.flags for cap in Capability},
        }


def detect_platform(override: "str | PlatformKind | None" = None) -> PlatformKind:
    """Work out the platform family, honouring an explicit override."""
    if override:
        return PlatformKind(str(override.value if isinstance(override, PlatformKind) else override).lower())
    if sys.platform in ("emscripten", "wasi"):
        return PlatformKind.BROWSER
    if sys.platform in ("android", "ios") or "ANDROID_ROOT" in os.environ:
        return PlatformKind.MOBILE
    return PlatformKind.DESKTOP


def _module_available(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def _has_display() -> bool:
    if sys.platform in ("win32", "darwin"):
        return True
    return bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))


def _has_shell() -> bool:
    if os.name == "nt":
        return bool(os.environ.get("COMSPEC") or shutil.which("cmd"))
    return shutil.which("sh") is not None


class CapabilityDetector:
    """
    Detects and caches platform capabilities.

    Detection runs once; later calls return the cached snapshot until
    invalidate() is called.
    """

    def __init__(
        self,
        device_primitives: Mapping[str, Any] | None = None,
        platform: "str | PlatformKind | None" = None,
        enabled: Iterable[Capability] = (),
        disabled: Iterable[Capability] = (),
        probe_local: bool = True,
    ) -> None:
        self._device_primitives = device_primitives if device_primitives is not None else {}
        self._platform_override = platform
        self._enabled = frozenset(enabled)
        self._disabled = frozenset(disabled)
        self._probe_local = probe_local
        self._cached: PlatformCapabilities | None = None

    def detect(self) -> PlatformCapabilities:
        """Return the capability snapshot, probing the environment on first use."""
        if self._cached is not None:
            return self._cached

        platform = detect_platform(self._platform_override)
        flags: set[Capability] = set()

        if self._probe_local and platform == PlatformKind.DESKTOP:
            flags.update(self._probe_desktop())

        for name in self._device_primitives:
            capability = PRIMITIVE_CAPABILITIES.get(name)
            if capability is not None:
                flags.add(capability)
            else:
                logger.debug(f"Ignoring unknown device primitive: {name}")

        flags |= self._enabled
        flags -= self._disabled

        self._cached = PlatformCapabilities(platform=platform, flags=frozenset(flags))
        logger.info(
            f"Detected platform {platform.value} with capabilities: "
            f"{sorted(cap.value for cap in flags)}"
        )
        return self._cached

    def has(self, capability: Capability) -> bool:
        return self.detect().has(capability)

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next detect() probes again."""
        if self._cached is not None:
            logger.debug("Capability cache invalidated")
        self._cached = None

    def on_permission_change(self, capability: Capability | None = None, granted: bool = True) -> None:
        """
        Hook for the host application after a permission prompt resolves.

        A grant or revoke can switch a capability on or off, so the cache
        is always invalidated. When a specific capability is named, the
        override sets are adjusted too.
        """
        if capability is not None:
            if granted:
                self._enabled = self._enabled | {capability}
                self._disabled = self._disabled - {capability}
            else:
                self._disabled = self._disabled | {capability}
                self._enabled = self._enabled - {capability}
        self.invalidate()

    def _probe_desktop(self) -> set[Capability]:
        found: set[Capability] = set()
        if _has_shell():
            found.add(Capability.PROCESS_EXECUTION)
            found.add(Capability.APP_LAUNCH)
        if os.access(Path.home(), os.R_OK):
            found.add(Capability.FILESYSTEM)
        display = _has_display()
        if display and _module_available("pyautogui"):
            found.add(Capability.POINTER_KEYBOARD)
        if display and _module_available("pyperclip"):
            found.add(Capability.CLIPBOARD)
        if _module_available("playwright"):
            found.add(Capability.BROWSER_AUTOMATION)
        return found
