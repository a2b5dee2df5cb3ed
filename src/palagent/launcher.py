"""
Application launching by common name.

"Open the calculator" names an app the way a person would. Resolving it
is a bounded chain of strategies, tried in order, each once:

1. literal: the alias candidates as commands on PATH
2. suffix: the platform's executable form (name.exe on Windows, open -a on macOS)
3. search: a fixed set of well-known installation directories
4. give up with CapabilityError

No strategy retries and no strategy recurses, so launch() always ends.
"""

import logging
import os
import shutil
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from palagent.primitives import CapabilityError

logger = logging.getLogger(__name__)


# Common name -> commands that usually provide it, across platforms
APP_ALIASES: dict[str, list[str]] = {
    "calculator": ["calc", "gnome-calculator", "kcalc", "galculator", "Calculator"],
    "calc": ["calc", "gnome-calculator", "kcalc", "Calculator"],
    "notepad": ["notepad", "gedit", "gnome-text-editor", "kate", "TextEdit"],
    "text editor": ["gedit", "gnome-text-editor", "kate", "notepad", "TextEdit"],
    "terminal": ["wt", "gnome-terminal", "konsole", "xterm", "Terminal"],
    "files": ["explorer", "nautilus", "dolphin", "thunar", "Finder"],
    "file explorer": ["explorer", "nautilus", "dolphin", "thunar", "Finder"],
    "explorer": ["explorer", "nautilus", "Finder"],
    "chrome": ["chrome", "google-chrome", "google-chrome-stable", "chromium", "Google Chrome"],
    "google chrome": ["chrome", "google-chrome", "google-chrome-stable", "Google Chrome"],
    "firefox": ["firefox", "Firefox"],
    "edge": ["msedge", "microsoft-edge", "Microsoft Edge"],
    "vscode": ["code", "Visual Studio Code"],
    "visual studio code": ["code", "Visual Studio Code"],
    "task manager": ["taskmgr", "gnome-system-monitor", "Activity Monitor"],
    "paint": ["mspaint", "pinta", "kolourpaint"],
    "settings": ["gnome-control-center", "System Settings", "System Preferences"],
    "telegram": ["telegram", "telegram-desktop", "Telegram"],
    "discord": ["discord", "Discord"],
    "spotify": ["spotify", "Spotify"],
    "slack": ["slack", "Slack"],
    "vlc": ["vlc", "VLC"],
    "zoom": ["zoom", "zoom.us"],
    "steam": ["steam", "Steam"],
    "obs": ["obs64", "obs", "OBS"],
}

# Common name -> Android package, for hosts with an injected "apps" primitive
COMMON_APPS: dict[str, str] = {
    "chrome": "com.android.chrome",
    "youtube": "com.google.android.youtube",
    "gmail": "com.google.android.gm",
    "maps": "com.google.android.apps.maps",
    "calendar": "com.google.android.calendar",
    "calculator": "com.google.android.calculator",
    "messages": "com.google.android.apps.messaging",
    "phone": "com.google.android.dialer",
    "camera": "com.android.camera",
    "settings": "com.android.settings",
    "twitter": "com.twitter.android",
    "x": "com.twitter.android",
    "instagram": "com.instagram.android",
    "whatsapp": "com.whatsapp",
    "telegram": "org.telegram.messenger",
    "spotify": "com.spotify.music",
    "netflix": "com.netflix.mediaclient",
}


def app_package(name: str) -> str:
    """Android package for a common app name; unknown names pass through."""
    return COMMON_APPS.get(name.strip().lower(), name.strip())


def default_search_dirs(os_name: str = sys.platform) -> list[Path]:
    """Well-known installation directories for the platform."""
    home = Path.home()
    if os_name == "win32":
        dirs = [
            os.environ.get("ProgramFiles", r"C:\Program Files"),
            os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)"),
            str(Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local")) / "Programs"),
        ]
        return [Path(d) for d in dirs]
    if os_name == "darwin":
        return [Path("/Applications"), Path("/System/Applications"), home / "Applications"]
    return [
        Path("/usr/bin"),
        Path("/usr/local/bin"),
        Path("/snap/bin"),
        Path("/var/lib/flatpak/exports/bin"),
        home / ".local" / "bin",
        Path("/opt"),
    ]


@dataclass
class LaunchResult:
    """Which strategy worked, and everything tried before it."""
    app: str
    strategy: str
    command: list[str]
    attempts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "app": self.app,
            "strategy": self.strategy,
            "command": self.command,
            "attempts": self.attempts,
        }


def _spawn_detached(argv: Sequence[str]) -> bool:
    kwargs: dict[str, object] = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if os.name == "nt":
        kwargs["creationflags"] = getattr(subprocess, "DETACHED_PROCESS", 0)
    else:
        kwargs["start_new_session"] = True
    try:
        subprocess.Popen(list(argv), **kwargs)
    except OSError as e:
        logger.debug(f"Spawn failed for {argv}: {e}")
        return False
    return True


def _run_checked(argv: Sequence[str]) -> bool:
    try:
        return subprocess.run(list(argv), capture_output=True, timeout=15).returncode == 0
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Command failed for {argv}: {e}")
        return False


class AppLauncher:
    """Resolves a common application name and starts it."""

    def __init__(
        self,
        os_name: str = sys.platform,
        search_dirs: Sequence[Path] | None = None,
        which: Callable[[str], str | None] = shutil.which,
        spawn: Callable[[Sequence[str]], bool] = _spawn_detached,
        run: Callable[[Sequence[str]], bool] = _run_checked,
        settle_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.os_name = os_name
        self.search_dirs = list(search_dirs) if search_dirs is not None else default_search_dirs(os_name)
        self._which = which
        self._spawn = spawn
        self._run = run
        self.settle_seconds = settle_seconds
        self._sleep = sleep

    def candidates(self, name: str) -> list[str]:
        key = name.strip().lower()
        names = list(APP_ALIASES.get(key, []))
        if name.strip() not in names:
            names.append(name.strip())
        return names

    def launch(self, name: str) -> LaunchResult:
        """Try each strategy once, in order. Raises CapabilityError on exhaustion."""
        if not name or not name.strip():
            raise CapabilityError("No application name given")

        candidates = self.candidates(name)
        attempts: list[str] = []
        strategies: list[tuple[str, Callable[[list[str], list[str]], list[str] | None]]] = [
            ("literal", self._try_literal),
            ("suffix", self._try_suffix),
            ("search", self._try_search),
        ]
        for label, strategy in strategies:
            command = strategy(candidates, attempts)
            if command is not None:
                logger.info(f"Launched {name} via {label}: {command}")
                if self.settle_seconds > 0:
                    self._sleep(self.settle_seconds)
                return LaunchResult(app=name, strategy=label, command=command, attempts=attempts)

        logger.warning(f"Could not launch {name} after {len(attempts)} attempts")
        raise CapabilityError(f"Could not find application: {name}")

    def _try_literal(self, candidates: list[str], attempts: list[str]) -> list[str] | None:
        for candidate in candidates:
            attempts.append(f"literal:{candidate}")
            path = self._which(candidate)
            if path and self._spawn([path]):
                return [path]
        return None

    def _try_suffix(self, candidates: list[str], attempts: list[str]) -> list[str] | None:
        if self.os_name == "win32":
            for candidate in candidates:
                exe = candidate if candidate.lower().endswith(".exe") else f"{candidate}.exe"
                attempts.append(f"suffix:{exe}")
                path = self._which(exe)
                if path and self._spawn([path]):
                    return [path]
        elif self.os_name == "darwin":
            for candidate in candidates:
                argv = ["open", "-a", candidate]
                attempts.append(f"suffix:open -a {candidate}")
                if self._run(argv):
                    return argv
        return None

    def _try_search(self, candidates: list[str], attempts: list[str]) -> list[str] | None:
        wanted = {c.lower() for c in candidates}
        if self.os_name == "win32":
            wanted |= {f"{c.lower()}.exe" for c in candidates}
        elif self.os_name == "darwin":
            wanted |= {f"{c.lower()}.app" for c in candidates}

        for directory in self.search_dirs:
            attempts.append(f"search:{directory}")
            if not directory.is_dir():
                continue
            match = self._find_in(directory, wanted)
            if match is None:
                continue
            argv = ["open", "-a", str(match)] if match.suffix == ".app" else [str(match)]
            if self._spawn(argv):
                return argv
        return None

    def _find_in(self, directory: Path, wanted: set[str]) -> Path | None:
        # Two levels: "C:\Program Files\Vendor\app.exe" or "/opt/app/app"
        try:
            for child in directory.iterdir():
                if child.name.lower() in wanted:
                    return child
                if child.is_dir() and child.suffix != ".app":
                    for grandchild in child.iterdir():
                        if grandchild.name.lower() in wanted and not grandchild.is_dir():
                            return grandchild
        except OSError:
            return None
        return None
