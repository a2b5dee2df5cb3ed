"""
Browser Automation - Playwright scripts for the browser_automation tool.

The model describes what to do on a page as a URL plus ordered steps
(click, fill, press, wait, extract, screenshot). This module turns those
steps into:
- a standalone Playwright script the user can read, keep, or rerun
- an actual run through BrowserService, when Playwright is installed

Playwright is imported lazily; generating a script never needs it.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from palagent.primitives import ArgumentError, CapabilityError

logger = logging.getLogger(__name__)


class BrowserMode(Enum):
    """Browser execution mode."""
    HEADLESS = "headless"
    HEADFUL = "headful"


class BrowserEngine(Enum):
    """Supported browser engines."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


STEP_ACTIONS = ("click", "fill", "press", "wait", "extract", "screenshot")


@dataclass
class BrowserConfig:
    """Configuration for browser runs."""
    mode: BrowserMode = BrowserMode.HEADLESS
    engine: BrowserEngine = BrowserEngine.CHROMIUM
    viewport_width: int = 1280
    viewport_height: int = 720
    timeout_ms: int = 30000
    screenshot_dir: str = str(Path.home() / ".palagent" / "screenshots")


@dataclass
class BrowserStep:
    """One step on the page."""
    action: str
    selector: str | None = None
    value: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BrowserStep":
        action = str(data.get("action", "")).strip().lower()
        if action not in STEP_ACTIONS:
            raise ArgumentError(
                f"Unknown browser step '{action}' (expected one of: {', '.join(STEP_ACTIONS)})"
            )
        step = cls(
            action=action,
            selector=data.get("selector") or None,
            value=None if data.get("value") is None else str(data["value"]),
        )
        if action in ("click", "fill") and not step.selector:
            raise ArgumentError(f"Browser step '{action}' needs a selector")
        if action in ("fill", "press") and step.value is None:
            raise ArgumentError(f"Browser step '{action}' needs a value")
        return step


@dataclass
class BrowserAction:
    """Result of one executed step."""
    success: bool
    action_type: str
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "success": self.success,
            "action_type": self.action_type,
            "details": self.details,
        }
        if self.error:
            result["error"] = self.error
        return result


def parse_steps(raw_steps: list[dict[str, Any]] | None) -> list[BrowserStep]:
    if not raw_steps:
        return []
    if not isinstance(raw_steps, list):
        raise ArgumentError("steps must be a list")
    return [BrowserStep.from_dict(step if isinstance(step, dict) else {}) for step in raw_steps]


def generate_script(url: str, steps: list[BrowserStep], config: BrowserConfig | None = None) -> str:
    """Render steps as a standalone synchronous Playwright script."""
    config = config or BrowserConfig()
    headless = config.mode == BrowserMode.HEADLESS
    lines = [
        "from playwright.sync_api import sync_playwright",
        "",
        "with sync_playwright() as p:",
        f"    browser = p.{config.engine.value}.launch(headless={headless})",
        "    page = browser.new_page(viewport={"
        f"'width': {config.viewport_width}, 'height': {config.viewport_height}}})",
        f"    page.set_default_timeout({config.timeout_ms})",
        f"    page.goto({url!r})",
    ]
    for step in steps:
        if step.action == "click":
            lines.append(f"    page.click({step.selector!r})")
        elif step.action == "fill":
            lines.append(f"    page.fill({step.selector!r}, {step.value!r})")
        elif step.action == "press":
            target = step.selector or "body"
            lines.append(f"    page.press({target!r}, {step.value!r})")
        elif step.action == "wait":
            if step.selector:
                lines.append(f"    page.wait_for_selector({step.selector!r})")
            else:
                lines.append(f"    page.wait_for_timeout({_wait_ms(step.value)})")
        elif step.action == "extract":
            target = step.selector or "body"
            lines.append(f"    print(page.inner_text({target!r}))")
        elif step.action == "screenshot":
            path = step.value or "screenshot.png"
            lines.append(f"    page.screenshot(path={path!r})")
    lines.append("    browser.close()")
    return "\n".join(lines) + "\n"


def _wait_ms(value: str | None) -> int:
    try:
        return max(0, int(float(value))) if value else 1000
    except ValueError:
        return 1000


class BrowserService:
    """
    Runs browser steps with Playwright's async API.

    One browser per run; nothing is kept between tool calls.
    """

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()

    async def run(self, url: str, steps: list[BrowserStep]) -> list[BrowserAction]:
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise CapabilityError(
                "Playwright is required for browser automation. "
                "Install it with: pip install playwright && playwright install"
            ) from e

        results: list[BrowserAction] = []
        async with async_playwright() as playwright:
            browser_type = getattr(playwright, self.config.engine.value)
            browser = await browser_type.launch(headless=self.config.mode == BrowserMode.HEADLESS)
            try:
                page = await browser.new_page(viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                })
                page.set_default_timeout(self.config.timeout_ms)
                await page.goto(url)
                results.append(BrowserAction(
                    success=True,
                    action_type="navigate",
                    details={"url": page.url, "title": await page.title()},
                ))
                for step in steps:
                    action = await self._run_step(page, step)
                    results.append(action)
                    if not action.success:
                        break
            finally:
                await browser.close()
        logger.info(f"Browser run finished: {len(results)} actions on {url}")
        return results

    async def _run_step(self, page: Any, step: BrowserStep) -> BrowserAction:
        try:
            details: dict[str, Any] = {}
            if step.action == "click":
                await page.click(step.selector)
            elif step.action == "fill":
                await page.fill(step.selector, step.value or "")
            elif step.action == "press":
                await page.press(step.selector or "body", step.value or "")
            elif step.action == "wait":
                if step.selector:
                    await page.wait_for_selector(step.selector)
                else:
                    await page.wait_for_timeout(_wait_ms(step.value))
            elif step.action == "extract":
                text = await page.inner_text(step.selector or "body")
                details["text"] = text[:5000]
            elif step.action == "screenshot":
                directory = Path(self.config.screenshot_dir)
                directory.mkdir(parents=True, exist_ok=True)
                path = directory / (step.value or f"{uuid.uuid4().hex[:8]}.png")
                await page.screenshot(path=str(path))
                details["path"] = str(path)
            if step.selector:
                details["selector"] = step.selector
            return BrowserAction(success=True, action_type=step.action, details=details)
        except Exception as e:
            logger.error(f"Browser step {step.action} failed: {e}")
            return BrowserAction(success=False, action_type=step.action, error=str(e))


class SyncBrowserService:
    """Synchronous wrapper around BrowserService for non-async code."""

    def __init__(self, config: BrowserConfig | None = None):
        self._async_service = BrowserService(config)

    def run(self, url: str, steps: list[BrowserStep]) -> list[BrowserAction]:
        return asyncio.run(self._async_service.run(url, steps))


def automate(
    url: str,
    raw_steps: list[dict[str, Any]] | None,
    run: bool = True,
    service: SyncBrowserService | None = None,
    config: BrowserConfig | None = None,
) -> dict[str, Any]:
    """Entry point for the browser_automation tool."""
    if not url.startswith(("http://", "https://")):
        raise ArgumentError("URL must start with http:// or https://")
    steps = parse_steps(raw_steps)
    script = generate_script(url, steps, config)
    result: dict[str, Any] = {"script": script}
    if run:
        actions = (service or SyncBrowserService(config)).run(url, steps)
        result["actions"] = [action.to_dict() for action in actions]
        result["completed"] = all(action.success for action in actions)
    return result
