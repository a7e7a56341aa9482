"""Session Launcher.

Guarantees a named, persistent tmux session exists and attaches the caller
to it, so a remote user always lands back in their work instead of a fresh
shell:

    UNKNOWN --has-session ok--------------------------> ATTACH
    UNKNOWN --has-session failed--> CREATE --new-session--> ATTACH

The probe and the create run under a per-name file lock, so two launchers
started at the same moment cannot both create the session.
"""

import logging
from enum import Enum
from pathlib import Path

from devhost.config_manager import SESSION_NAME_RE, ConfigManager
from devhost.file_lock_manager import acquire_file_lock
from devhost.host_facade import HostFacade
from devhost.modules.command_runner import CommandRunner
from devhost.modules.prerequisites import PrerequisiteChecker

logger = logging.getLogger(__name__)


class LaunchState(Enum):
    """States of the launcher state machine."""

    UNKNOWN = "unknown"
    CREATE = "create"
    ATTACH = "attach"


class SessionLauncherError(Exception):
    """Raised when a session name is invalid or tmux cannot create it."""

    pass


class SessionLauncher:
    """Create-if-absent then attach for tmux sessions."""

    def __init__(
        self,
        facade: HostFacade,
        runner: CommandRunner,
        lock_dir: Path | None = None,
        lock_timeout: float = 10.0,
    ):
        self.facade = facade
        self.runner = runner
        self.lock_dir = lock_dir or ConfigManager.lock_dir()
        self.lock_timeout = lock_timeout

    @staticmethod
    def validate_name(name: str) -> str:
        """
        Validate a session name.

        Raises:
            SessionLauncherError: If the name is empty or contains characters
                tmux interprets as target syntax
        """
        if not name or not SESSION_NAME_RE.fullmatch(name):
            raise SessionLauncherError(
                f"Invalid session name: {name!r}. "
                "Use letters, digits, '-' and '_' only."
            )
        return name

    def lock_path(self, name: str) -> Path:
        return self.lock_dir / f"session-{name}.lock"

    def ensure_session(self, name: str) -> LaunchState:
        """
        Make sure a session called name exists.

        Returns:
            LaunchState.CREATE if this call created the session,
            LaunchState.ATTACH if it already existed

        Raises:
            PrerequisiteError: If tmux is not installed
            SessionLauncherError: If tmux fails to create the session
        """
        self.validate_name(name)
        PrerequisiteChecker.require(PrerequisiteChecker.SESSION_TOOLS, self.runner.which)

        with acquire_file_lock(
            self.lock_path(name), timeout=self.lock_timeout, operation=f"session '{name}'"
        ):
            if self.facade.session_exists(name):
                logger.debug(f"Session '{name}' exists")
                return LaunchState.ATTACH

            logger.info(f"Creating tmux session '{name}'")
            result = self.runner.run(["tmux", "new-session", "-d", "-s", name])
            if not result.ok:
                raise SessionLauncherError(
                    f"Failed to create tmux session '{name}' (exit {result.returncode}):\n"
                    f"{result.output}"
                )
            return LaunchState.CREATE

    def attach(self, name: str) -> int:
        """Hand the terminal to tmux; returns tmux's exit code on detach."""
        return self.runner.run_interactive(["tmux", "attach", "-t", f"={name}"])

    def launch(self, name: str, attach: bool = True) -> int:
        """
        Ensure the session exists, then attach to it.

        Args:
            name: Session name
            attach: Attach after ensuring (False for non-interactive callers)

        Returns:
            Exit code (0 on success)
        """
        state = self.ensure_session(name)
        logger.debug(f"Session '{name}': {LaunchState.UNKNOWN.value} -> {state.value}")
        if not attach:
            return 0
        return self.attach(name)


def build_launcher(runner: CommandRunner | None = None) -> SessionLauncher:
    runner = runner or CommandRunner()
    return SessionLauncher(HostFacade(runner), runner)


__all__ = ["LaunchState", "SessionLauncher", "SessionLauncherError", "build_launcher"]
