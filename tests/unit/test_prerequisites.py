"""Unit tests for prerequisites module."""

import pytest

from devhost.modules.prerequisites import (
    PrerequisiteChecker,
    PrerequisiteError,
    PrerequisiteResult,
)


def which_from(available):
    return lambda tool: f"/usr/bin/{tool}" if tool in available else None


class TestCheckTool:
    def test_tool_found(self):
        assert PrerequisiteChecker.check_tool("tmux", which_from({"tmux"})) is True

    def test_tool_missing(self):
        assert PrerequisiteChecker.check_tool("tmux", which_from(set())) is False


class TestCheck:
    """Tests for PrerequisiteChecker.check."""

    def test_all_available(self, macos):
        tools = PrerequisiteChecker.BOOTSTRAP_TOOLS
        result = PrerequisiteChecker.check(tools, which_from(set(tools)))

        assert isinstance(result, PrerequisiteResult)
        assert result.all_available is True
        assert result.missing == []
        assert result.available == tools
        assert result.platform_name == "macos"

    def test_reports_missing_in_order(self, macos):
        result = PrerequisiteChecker.check(["sudo", "pmset", "curl"], which_from({"sudo"}))

        assert result.all_available is False
        assert result.missing == ["pmset", "curl"]
        assert result.available == ["sudo"]


class TestRequire:
    def test_passes_when_present(self):
        PrerequisiteChecker.require(["tmux"], which_from({"tmux"}))

    def test_raises_with_install_hint(self, macos):
        with pytest.raises(PrerequisiteError) as exc_info:
            PrerequisiteChecker.require(["tmux"], which_from(set()))

        message = str(exc_info.value)
        assert "  - tmux" in message
        assert "brew install tmux" in message


class TestDetectPlatform:
    @pytest.mark.parametrize(
        "system, expected",
        [("Darwin", "macos"), ("Linux", "linux"), ("Windows", "unknown")],
    )
    def test_detect_platform(self, monkeypatch, system, expected):
        monkeypatch.setattr("platform.system", lambda: system)
        assert PrerequisiteChecker.detect_platform() == expected


class TestFormatMissingMessage:
    def test_nothing_missing(self):
        assert PrerequisiteChecker.format_missing_message([], "macos") == (
            "All prerequisites are installed."
        )

    def test_lists_tools_and_platform(self):
        message = PrerequisiteChecker.format_missing_message(["pmset", "tmux"], "linux")

        assert message.startswith("Missing required tools:")
        assert "  - pmset" in message
        assert "Platform: linux" in message
        assert "sudo apt-get install tmux" in message
        # pmset has no hint
        assert "pmset:" not in message
