"""System facade over the macOS host.

Every question devhost asks about the host goes through HostFacade, which
turns command exit codes into answers. A non-zero exit from a query is an
expected-negative signal ("not installed", "not running", "no session") and
is returned as False/None, never raised.

Nothing here mutates the host; mutations live in the bootstrapper and the
session launcher so each step can be reasoned about on its own.
"""

import logging
import os
import platform
from pathlib import Path

from devhost.modules.command_runner import CommandRunner

logger = logging.getLogger(__name__)

BREW_FALLBACK_PATHS = (Path("/opt/homebrew/bin/brew"), Path("/usr/local/bin/brew"))
TAILSCALE_APP_BINARY = Path("/Applications/Tailscale.app/Contents/MacOS/Tailscale")
TAILSCALED_PLIST = Path("/Library/LaunchDaemons/com.tailscale.tailscaled.plist")

RUNNING_SERVICE_STATUS = "started"


class HostFacade:
    """Read-only queries against the host, backed by a CommandRunner."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    # Platform -----------------------------------------------------------

    def is_macos(self) -> bool:
        return platform.system() == "Darwin"

    @staticmethod
    def _executable(path: Path) -> bool:
        return path.is_file() and os.access(path, os.X_OK)

    def user_shell(self, user: str) -> str | None:
        """Login shell recorded in Directory Services, if dscl is available."""
        if not self.runner.which("dscl"):
            return None
        result = self.runner.run(["dscl", ".", "-read", f"/Users/{user}", "UserShell"])
        if not result.ok:
            return None
        # "UserShell: /bin/zsh"
        parts = result.stdout.split()
        return parts[1] if len(parts) > 1 else None

    # Toolchain ----------------------------------------------------------

    def tool_present(self) -> bool:
        """True when the Xcode command line tools are installed."""
        return self.runner.run(["xcode-select", "--print-path"]).ok

    # Homebrew -----------------------------------------------------------

    def brew_path(self) -> str | None:
        """Locate brew on PATH or at the standard install prefixes."""
        found = self.runner.which("brew")
        if found:
            return found
        for candidate in BREW_FALLBACK_PATHS:
            if self._executable(candidate):
                return str(candidate)
        return None

    def brew_prefix(self, brew: str) -> str | None:
        result = self.runner.run([brew, "--prefix"])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def package_installed(self, brew: str, package: str) -> bool:
        return self.runner.run([brew, "list", package]).ok

    def service_status(self, brew: str, service: str) -> str | None:
        """Status column from `brew services list` for service.

        Returns None when the listing fails or the service is unregistered.
        """
        result = self.runner.run([brew, "services", "list"])
        if not result.ok:
            logger.debug(f"brew services list failed; treating {service} as unregistered")
            return None

        # Columns: Name Status User File
        for line in result.stdout.splitlines()[1:]:
            columns = line.split()
            if columns and columns[0] == service:
                return columns[1] if len(columns) > 1 else "none"
        return None

    def service_running(self, brew: str, service: str) -> bool:
        return self.service_status(brew, service) == RUNNING_SERVICE_STATUS

    # Tailscale ----------------------------------------------------------

    def tailscale_path(self, brew: str | None = None) -> str | None:
        """Locate the tailscale CLI (PATH, Homebrew prefix, then Tailscale.app)."""
        found = self.runner.which("tailscale")
        if found:
            return found

        if brew:
            result = self.runner.run([brew, "--prefix", "tailscale"])
            if result.ok and result.stdout.strip():
                candidate = Path(result.stdout.strip()) / "bin" / "tailscale"
                if self._executable(candidate):
                    return str(candidate)

        if self._executable(TAILSCALE_APP_BINARY):
            return str(TAILSCALE_APP_BINARY)
        return None

    def tailscaled_path(self) -> str | None:
        return self.runner.which("tailscaled")

    def tailscale_daemon_installed(self) -> bool:
        return TAILSCALED_PLIST.exists()

    def tailscale_connected(self, tailscale: str) -> bool:
        return self.runner.run([tailscale, "status"]).ok

    # Remote login -------------------------------------------------------

    def remote_login_enabled(self) -> bool:
        result = self.runner.run(["systemsetup", "-getremotelogin"], privileged=True)
        return result.ok and result.stdout.strip().endswith("On")

    # tmux ---------------------------------------------------------------

    def tmux_path(self) -> str | None:
        return self.runner.which("tmux")

    def session_exists(self, name: str) -> bool:
        """tmux has-session: exit 0 when a session with this exact name exists."""
        return self.runner.run(["tmux", "has-session", "-t", f"={name}"]).ok


__all__ = ["HostFacade", "RUNNING_SERVICE_STATUS", "TAILSCALE_APP_BINARY", "TAILSCALED_PLIST"]
