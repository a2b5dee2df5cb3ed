"""
Tests for application launching by common name.
"""

from pathlib import Path

import pytest

from palagent.launcher import AppLauncher, app_package
from palagent.primitives import CapabilityError


class FakeSystem:
    """Stands in for shutil.which, Popen and subprocess.run."""

    def __init__(self, on_path: dict[str, str] | None = None, runnable: set[str] | None = None):
        self.on_path = on_path or {}
        self.runnable = runnable or set()
        self.spawned: list[list[str]] = []
        self.ran: list[list[str]] = []

    def which(self, name: str) -> str | None:
        return self.on_path.get(name)

    def spawn(self, argv) -> bool:
        self.spawned.append(list(argv))
        return True

    def run(self, argv) -> bool:
        self.ran.append(list(argv))
        return argv[-1] in self.runnable


def launcher(system: FakeSystem, os_name: str = "linux", search_dirs=()) -> AppLauncher:
    return AppLauncher(
        os_name=os_name,
        search_dirs=list(search_dirs),
        which=system.which,
        spawn=system.spawn,
        run=system.run,
    )


class TestCandidates:
    def test_aliases_then_literal_name(self) -> None:
        names = launcher(FakeSystem()).candidates("Calculator")

        assert names[0] == "calc"
        assert "gnome-calculator" in names
        assert names.count("Calculator") == 1

    def test_unknown_name_is_its_own_candidate(self) -> None:
        assert launcher(FakeSystem()).candidates("blender") == ["blender"]

    def test_app_package(self) -> None:
        assert app_package("Calculator") == "com.google.android.calculator"
        assert app_package("com.example.app") == "com.example.app"


class TestLaunch:
    def test_literal_on_path(self) -> None:
        system = FakeSystem(on_path={"gnome-calculator": "/usr/bin/gnome-calculator"})

        result = launcher(system).launch("calculator")

        assert result.strategy == "literal"
        assert result.command == ["/usr/bin/gnome-calculator"]
        assert system.spawned == [["/usr/bin/gnome-calculator"]]
        assert result.attempts[:2] == ["literal:calc", "literal:gnome-calculator"]

    def test_windows_exe_suffix(self) -> None:
        system = FakeSystem(on_path={"spotify.exe": r"C:\Apps\spotify.exe"})

        result = launcher(system, os_name="win32").launch("spotify")

        assert result.strategy == "suffix"
        assert result.command == [r"C:\Apps\spotify.exe"]

    def test_macos_open_a(self) -> None:
        system = FakeSystem(runnable={"Calculator"})

        result = launcher(system, os_name="darwin").launch("calculator")

        assert result.strategy == "suffix"
        assert result.command == ["open", "-a", "Calculator"]

    def test_search_two_levels_deep(self, tmp_path: Path) -> None:
        vendor = tmp_path / "blender-4.0"
        vendor.mkdir()
        (vendor / "blender").write_text("")
        system = FakeSystem()

        result = launcher(system, search_dirs=[tmp_path / "missing", tmp_path]).launch("blender")

        assert result.strategy == "search"
        assert result.command == [str(vendor / "blender")]
        assert f"search:{tmp_path / 'missing'}" in result.attempts

    def test_exhaustion_raises(self, tmp_path: Path) -> None:
        system = FakeSystem()

        with pytest.raises(CapabilityError, match="Could not find application: teleporter"):
            launcher(system, search_dirs=[tmp_path]).launch("teleporter")
        assert system.spawned == []

    def test_blank_name(self) -> None:
        with pytest.raises(CapabilityError):
            launcher(FakeSystem()).launch("  ")

    def test_settle_delay(self) -> None:
        sleeps: list[float] = []
        system = FakeSystem(on_path={"firefox": "/usr/bin/firefox"})
        app_launcher = AppLauncher(
            os_name="linux", search_dirs=[], which=system.which, spawn=system.spawn,
            run=system.run, settle_seconds=2.0, sleep=sleeps.append,
        )

        app_launcher.launch("firefox")

        assert sleeps == [2.0]
