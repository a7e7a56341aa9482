"""
Prerequisites Checker Module

Verifies the external tools each devhost command relies on are installed
before any mutating step runs.

Security Requirements:
- Read-only system checks
- No shell=True in subprocess calls
"""

import logging
import platform
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar

logger = logging.getLogger(__name__)


@dataclass
class PrerequisiteResult:
    """Result of prerequisite checks."""

    all_available: bool
    missing: list[str]
    available: list[str]
    platform_name: str


class PrerequisiteError(Exception):
    """Raised when prerequisites are missing."""

    pass


class PrerequisiteChecker:
    """
    Check required external tools are installed.

    Bootstrap tools (stock macOS):
    - sudo, pmset, xcode-select, systemsetup, curl

    Session tools:
    - tmux (installed by the bootstrap run)
    """

    BOOTSTRAP_TOOLS: ClassVar[list[str]] = ["sudo", "pmset", "xcode-select", "systemsetup", "curl"]
    SESSION_TOOLS: ClassVar[list[str]] = ["tmux"]

    INSTALL_HINTS: ClassVar[dict[str, dict[str, str]]] = {
        "tmux": {"macos": "brew install tmux", "linux": "sudo apt-get install tmux"},
        "curl": {"macos": "Ships with macOS; reinstall the OS tools", "linux": "sudo apt-get install curl"},
        "sudo": {"macos": "Ships with macOS", "linux": "Install sudo with your package manager"},
    }

    @classmethod
    def check_tool(cls, tool_name: str, which: Callable[[str], str | None] = shutil.which) -> bool:
        """
        Check if a single tool is available in PATH.

        Args:
            tool_name: Name of the tool to check
            which: PATH lookup function (injectable for tests)

        Returns:
            bool: True if tool is available
        """
        result = which(tool_name)
        if result:
            logger.debug(f"Found {tool_name} at {result}")
            return True
        logger.debug(f"Tool not found: {tool_name}")
        return False

    @classmethod
    def check(
        cls, tools: list[str], which: Callable[[str], str | None] = shutil.which
    ) -> PrerequisiteResult:
        """
        Check a list of tools and return a comprehensive result.

        Example:
            >>> result = PrerequisiteChecker.check(["tmux"])
            >>> if not result.all_available:
            ...     print(f"Missing: {result.missing}")
        """
        missing: list[str] = []
        available: list[str] = []

        for tool in tools:
            if cls.check_tool(tool, which):
                available.append(tool)
            else:
                missing.append(tool)

        platform_name = cls.detect_platform()
        result = PrerequisiteResult(
            all_available=(len(missing) == 0),
            missing=missing,
            available=available,
            platform_name=platform_name,
        )

        if result.all_available:
            logger.debug(f"All prerequisites available ({platform_name})")
        else:
            logger.error(f"Missing prerequisites: {', '.join(missing)}")

        return result

    @classmethod
    def require(cls, tools: list[str], which: Callable[[str], str | None] = shutil.which) -> None:
        """Raise PrerequisiteError with install guidance if any tool is missing."""
        result = cls.check(tools, which)
        if not result.all_available:
            raise PrerequisiteError(cls.format_missing_message(result.missing, result.platform_name))

    @classmethod
    def detect_platform(cls) -> str:
        """
        Detect the operating system platform.

        Returns:
            str: Platform name (macos, linux, unknown)
        """
        system = platform.system().lower()
        if system == "darwin":
            return "macos"
        if system == "linux":
            return "linux"
        return "unknown"

    @classmethod
    def format_missing_message(cls, missing: list[str], platform_name: str) -> str:
        """
        Format user-friendly installation instructions for missing tools.

        Example:
            >>> print(PrerequisiteChecker.format_missing_message(["tmux"], "macos"))
            Missing required tools:
            ...
        """
        if not missing:
            return "All prerequisites are installed."

        lines: list[str] = ["Missing required tools:", ""]
        lines.extend(f"  - {tool}" for tool in missing)
        lines.append("")
        lines.append(f"Platform: {platform_name}")

        hints = []
        for tool in missing:
            hint = cls.INSTALL_HINTS.get(tool, {}).get(platform_name)
            if hint:
                hints.append(f"  {tool}: {hint}")
        if hints:
            lines.append("")
            lines.append("Installation instructions:")
            lines.extend(hints)

        lines.append("")
        lines.append("After installing, run 'devhost' again.")
        return "\n".join(lines)


__all__ = [
    "PrerequisiteChecker",
    "PrerequisiteError",
    "PrerequisiteResult",
]
