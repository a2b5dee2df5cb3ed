"""
Tests for capability detection and tool filtering.
"""

from unittest.mock import patch

from palagent.capabilities import (
    Capability,
    CapabilityDetector,
    PlatformKind,
    detect_platform,
)
from palagent.tools import ToolName, ToolRegistry


def noop_primitive(action, args):
    return None


class TestDetectPlatform:
    """Test platform family detection."""

    def test_override_wins(self) -> None:
        assert detect_platform("mobile") == PlatformKind.MOBILE
        assert detect_platform(PlatformKind.BROWSER) == PlatformKind.BROWSER

    def test_regular_cpython_is_desktop(self) -> None:
        with patch("palagent.capabilities.sys.platform", "linux"), \
                patch.dict("os.environ", {}, clear=True):
            assert detect_platform() == PlatformKind.DESKTOP


class TestCapabilityDetector:
    """Test detection, caching and invalidation."""

    def test_injected_primitives_switch_capabilities_on(self) -> None:
        detector = CapabilityDetector(
            {"geolocation": noop_primitive, "contacts": noop_primitive},
            platform="mobile",
        )

        caps = detector.detect()

        assert caps.platform == PlatformKind.MOBILE
        assert caps.has(Capability.GEOLOCATION)
        assert caps.has(Capability.CONTACTS)
        assert not caps.has(Capability.PROCESS_EXECUTION)

    def test_browser_platform_has_no_local_probes(self) -> None:
        detector = CapabilityDetector(platform="browser")

        assert detector.detect().flags == frozenset()

    def test_disabled_overrides_everything(self) -> None:
        detector = CapabilityDetector(
            {"process": noop_primitive},
            platform="desktop",
            probe_local=False,
            disabled=[Capability.PROCESS_EXECUTION],
        )

        assert not detector.has(Capability.PROCESS_EXECUTION)

    def test_detection_is_cached(self) -> None:
        detector = CapabilityDetector(platform="desktop")
        with patch.object(detector, "_probe_desktop", return_value={Capability.FILESYSTEM}) as probe:
            first = detector.detect()
            second = detector.detect()

        assert first is second
        assert probe.call_count == 1

    def test_invalidate_forces_new_probe(self) -> None:
        detector = CapabilityDetector(platform="desktop")
        with patch.object(detector, "_probe_desktop", return_value=set()) as probe:
            detector.detect()
            detector.invalidate()
            detector.detect()

        assert probe.call_count == 2

    def test_permission_grant_invalidates_and_enables(self) -> None:
        detector = CapabilityDetector(platform="mobile")
        assert not detector.has(Capability.CALENDAR)

        detector.on_permission_change(Capability.CALENDAR, granted=True)

        assert detector.has(Capability.CALENDAR)

    def test_permission_revoke_disables(self) -> None:
        detector = CapabilityDetector({"calendar": noop_primitive}, platform="mobile")
        assert detector.has(Capability.CALENDAR)

        detector.on_permission_change(Capability.CALENDAR, granted=False)

        assert not detector.has(Capability.CALENDAR)

    def test_to_dict_lists_every_flag(self) -> None:
        data = CapabilityDetector(platform="browser").detect().to_dict()

        assert data["platform"] == "browser"
        assert data["process_execution"] is False
        assert set(data) == {"platform", *(cap.value for cap in Capability)}


class TestAvailableTools:
    """The model must only be offered tools that can run here."""

    def test_browser_platform_offers_no_process_tools(self) -> None:
        registry = ToolRegistry(CapabilityDetector(platform="browser"))

        names = {tool.name for tool in registry.get_available_tools()}

        assert ToolName.SHELL not in names
        assert ToolName.RUN_COMMAND not in names
        assert ToolName.WEB_SEARCH in names
        assert ToolName.REMEMBER in names

    def test_declarations_follow_capabilities(self) -> None:
        detector = CapabilityDetector(platform="mobile")
        registry = ToolRegistry(detector)
        assert "get_location" not in [d["name"] for d in registry.get_declarations()]

        detector.on_permission_change(Capability.GEOLOCATION, granted=True)

        assert "get_location" in [d["name"] for d in registry.get_declarations()]
