"""
Primitives - the concrete actions tools bottom out in.

Two sources:
- DevicePrimitive: injected by the host application, one per device
  capability, with a uniform (action, args) -> result shape.
- LocalPrimitives: what this process can do by itself on a desktop
  (subprocess, pathlib, pyautogui, pyperclip, psutil, httpx).

Primitives raise. PrimitiveError means the action ran and failed;
CapabilityError means the environment cannot perform it at all. The
executor turns both into failed outcomes.
"""

import importlib
import logging
import os
import platform
import shlex
import subprocess
import sys
import webbrowser
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
import psutil

logger = logging.getLogger(__name__)


class PalAgentError(Exception):
    """Base class for all runtime errors."""
    pass


class PrimitiveError(PalAgentError):
    """A primitive ran and failed (non-zero exit, I/O error, ...)."""
    pass


class CapabilityError(PalAgentError):
    """The environment lacks what a primitive needs."""
    pass


class ArgumentError(PalAgentError):
    """Arguments passed schema validation but are still unusable."""
    pass


class DevicePrimitive(Protocol):
    """Host-supplied primitive: (action, args) -> result."""
    def __call__(self, action: str, args: dict[str, Any]) -> Any: ...


def truncate(text: str, limit: int) -> str:
    """Cap text returned to the model."""
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} characters]"


@dataclass
class CommandResult:
    """Outcome of a process primitive."""
    command: str
    exit_code: int
    stdout: str
    stderr: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


DUCKDUCKGO_URL = "https://api.duckduckgo.com/"


class LocalPrimitives:
    """
    Primitives implemented in-process for desktop hosts.

    GUI libraries are imported on first use so a headless machine can
    still run the rest.
    """

    def __init__(
        self,
        command_timeout: float = 60.0,
        output_limit: int = 20_000,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.command_timeout = command_timeout
        self.output_limit = output_limit
        self._http = http_client

    # --- process ---------------------------------------------------------

    def shell(self, command: str, cwd: str | None = None) -> CommandResult:
        """Run a command line through the system shell."""
        if os.name == "nt":
            argv = ["cmd", "/C", command]
        else:
            argv = ["sh", "-c", command]
        return self._run(argv, command, cwd)

    def run_command(self, command: str, cwd: str | None = None) -> CommandResult:
        """Run a single program without a shell."""
        argv = shlex.split(command, posix=os.name != "nt")
        if not argv:
            raise ArgumentError("Empty command")
        return self._run(argv, command, cwd)

    def _run(self, argv: list[str], command: str, cwd: str | None) -> CommandResult:
        workdir = Path(cwd).expanduser() if cwd else None
        if workdir is not None and not workdir.is_dir():
            raise PrimitiveError(f"Working directory does not exist: {cwd}")

        logger.info(f"Running command: {command}")
        try:
            completed = subprocess.run(
                argv,
                cwd=workdir,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except subprocess.TimeoutExpired:
            raise PrimitiveError(
                f"Command timed out after {self.command_timeout:g}s: {command}"
            ) from None
        except FileNotFoundError as e:
            raise PrimitiveError(f"Command not found: {e.filename or argv[0]}") from e
        except OSError as e:
            raise PrimitiveError(f"Could not run command: {e}") from e

        result = CommandResult(
            command=command,
            exit_code=completed.returncode,
            stdout=truncate(completed.stdout or "", self.output_limit),
            stderr=truncate(completed.stderr or "", self.output_limit),
        )
        if completed.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise PrimitiveError(
                f"Command exited with code {completed.returncode}"
                + (f": {detail}" if detail else "")
            )
        return result

    # --- filesystem ------------------------------------------------------

    def read_file(self, path: str) -> str:
        target = Path(path).expanduser()
        if not target.exists():
            raise PrimitiveError(f"File not found: {path}")
        if target.is_dir():
            raise PrimitiveError(f"Path is a directory: {path}")
        try:
            content = target.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise PrimitiveError(f"Could not read {path}: {e}") from e
        return truncate(content, self.output_limit)

    def write_file(self, path: str, content: str) -> str:
        target = Path(path).expanduser()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PrimitiveError(f"Could not write {path}: {e}") from e
        return f"Wrote {len(content)} characters to {target}"

    def list_dir(self, path: str) -> list[dict[str, Any]]:
        target = Path(path).expanduser()
        if not target.is_dir():
            raise PrimitiveError(f"Not a directory: {path}")
        entries = []
        try:
            for child in sorted(target.iterdir(), key=lambda p: p.name.lower()):
                is_dir = child.is_dir()
                entries.append({
                    "name": child.name,
                    "type": "directory" if is_dir else "file",
                    "size": None if is_dir else child.stat().st_size,
                })
        except OSError as e:
            raise PrimitiveError(f"Could not list {path}: {e}") from e
        return entries

    # --- browser / network -------------------------------------------------

    def open_url(self, url: str) -> str:
        if not url.startswith(("http://", "https://")):
            raise ArgumentError("URL must start with http:// or https://")
        if not webbrowser.open(url):
            raise CapabilityError("No web browser available")
        return f"Opened {url}"

    def web_search(self, query: str) -> dict[str, Any]:
        """
        Instant-answer search through DuckDuckGo.

        Network failures are reported as an empty, flagged result so the
        model can suggest searching manually.
        """
        client = self._http or httpx.Client(timeout=15.0)
        try:
            response = client.get(
                DUCKDUCKGO_URL,
                params={"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Web search failed for '{query}': {e}")
            return {
                "results": [],
                "message": f"Search is not available right now. Try searching for \"{query}\" manually.",
                "fallback": True,
            }
        finally:
            if self._http is None:
                client.close()

        results = []
        if data.get("AbstractText"):
            results.append({
                "title": data.get("Heading") or query,
                "snippet": data["AbstractText"],
                "url": data.get("AbstractURL", ""),
            })
        for topic in data.get("RelatedTopics", []):
            # Grouped topics nest their entries one level down
            for item in topic.get("Topics", [topic]):
                if item.get("Text"):
                    results.append({
                        "title": item["Text"].split(" - ")[0],
                        "snippet": item["Text"],
                        "url": item.get("FirstURL", ""),
                    })
        results = results[:8]
        return {
            "results": results,
            "message": f"Found {len(results)} results for \"{query}\"",
        }

    # --- system ------------------------------------------------------------

    def system_info(self) -> dict[str, Any]:
        memory = psutil.virtual_memory()
        return {
            "os": platform.system(),
            "os_release": platform.release(),
            "machine": platform.machine(),
            "hostname": platform.node(),
            "python": sys.version.split()[0],
            "cpu_count": psutil.cpu_count(logical=True),
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory_total_mb": memory.total // (1024 * 1024),
            "memory_available_mb": memory.available // (1024 * 1024),
            "boot_time": datetime.fromtimestamp(psutil.boot_time()).isoformat(),
        }

    def get_datetime(self, timezone: str | None = None) -> dict[str, Any]:
        if timezone and timezone != "local":
            try:
                now = datetime.now(ZoneInfo(timezone))
            except (ZoneInfoNotFoundError, ValueError):
                raise ArgumentError(f"Unknown timezone: {timezone}") from None
        else:
            now = datetime.now().astimezone()
        return {
            "date": now.strftime("%A, %B %d, %Y"),
            "time": now.strftime("%I:%M:%S %p").lstrip("0"),
            "timestamp": now.isoformat(),
            "timezone": timezone if timezone and timezone != "local" else str(now.tzinfo),
        }

    # --- clipboard -----------------------------------------------------------

    def clipboard_read(self) -> str:
        pyperclip = _require("pyperclip", "clipboard access")
        try:
            return pyperclip.paste()
        except pyperclip.PyperclipException as e:
            raise CapabilityError(f"Clipboard not available: {e}") from e

    def clipboard_write(self, text: str) -> str:
        pyperclip = _require("pyperclip", "clipboard access")
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as e:
            raise CapabilityError(f"Clipboard not available: {e}") from e
        return f"Copied {len(text)} characters to clipboard"

    # --- pointer / keyboard ----------------------------------------------------

    def mouse_click(self, x: float, y: float, button: str = "left") -> str:
        pyautogui = _require("pyautogui", "pointer control")
        pyautogui.click(int(x), int(y), button=button)
        return f"Clicked {button} at ({int(x)}, {int(y)})"

    def type_text(self, text: str) -> str:
        pyautogui = _require("pyautogui", "keyboard control")
        pyautogui.write(text, interval=0.02)
        return f"Typed {len(text)} characters"

    def press_key(self, key: str) -> str:
        pyautogui = _require("pyautogui", "keyboard control")
        keys = [k.strip().lower() for k in key.split("+") if k.strip()]
        if not keys:
            raise ArgumentError("No key given")
        if len(keys) == 1:
            pyautogui.press(_KEY_ALIASES.get(keys[0], keys[0]))
        else:
            pyautogui.hotkey(*[_KEY_ALIASES.get(k, k) for k in keys])
        return f"Pressed {key}"

    def scroll(self, direction: str, amount: int = 5) -> str:
        pyautogui = _require("pyautogui", "pointer control")
        if direction in ("up", "down"):
            pyautogui.scroll(amount if direction == "up" else -amount)
        else:
            pyautogui.hscroll(amount if direction == "right" else -amount)
        return f"Scrolled {direction}"

    def screenshot(self, region: str | None = None, directory: Path | None = None) -> dict[str, Any]:
        pyautogui = _require("pyautogui", "screen capture")
        box = None
        if region and region != "full":
            try:
                box = tuple(int(float(part)) for part in region.split(","))
            except ValueError:
                raise ArgumentError('region must be "full" or "x,y,width,height"') from None
            if len(box) != 4:
                raise ArgumentError('region must be "full" or "x,y,width,height"')
        image = pyautogui.screenshot(region=box)
        out_dir = directory or Path.home() / ".palagent" / "screenshots"
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / f"screenshot-{datetime.now().strftime('%Y%m%d-%H%M%S-%f')}.png"
        image.save(path)
        return {"path": str(path), "width": image.width, "height": image.height}


# Key names the model tends to use -> pyautogui names
_KEY_ALIASES = {
    "return": "enter",
    "esc": "escape",
    "back": "browserback",
    "home": "home",
    "control": "ctrl",
    "cmd": "command",
    "option": "alt",
}


def _require(module: str, purpose: str) -> Any:
    try:
        return importlib.import_module(module)
    except ImportError:
        raise CapabilityError(
            f"{module} is required for {purpose}. Install it with: pip install 'palagent[desktop]'"
        ) from None
    except Exception as e:
        # pyautogui raises on import when no display is reachable
        raise CapabilityError(f"{module} is not usable here: {e}") from e
