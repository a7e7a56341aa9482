"""Host command execution with invocation logging.

Philosophy:
- Single responsibility: Run external host commands
- Standard library only (no external dependencies)
- Every invocation recorded, secrets redacted
- Zero-BS: No stubs or placeholders

Public API (the "studs"):
    CommandResult: Result dataclass
    CommandError: Raised for unrecoverable command failures
    Invocation: One recorded command
    InvocationLog: Append-only record of commands run
    CommandRunner: Captured and interactive execution
    SudoKeepAlive: Keep sudo credentials fresh during long runs
"""

import logging
import shutil
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType

from devhost.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

# Standard shell exit code for "command not found"
COMMAND_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Result of a host command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Combined stdout/stderr, used as the diagnostic for failures."""
        parts = [self.stdout.strip(), self.stderr.strip()]
        return "\n".join(p for p in parts if p)


class CommandError(Exception):
    """Raised when a mutating command exits non-zero."""

    def __init__(self, message: str, result: CommandResult | None = None):
        super().__init__(message)
        self.result = result

    @property
    def output(self) -> str:
        return self.result.output if self.result else ""


@dataclass(frozen=True)
class Invocation:
    """A single recorded command invocation."""

    command: tuple[str, ...]
    returncode: int
    privileged: bool = False

    def __str__(self) -> str:
        return " ".join(self.command)


@dataclass
class InvocationLog:
    """Append-only, ordered record of commands run during a session.

    Only tests and verbose output read this; automation logic never does.
    """

    entries: list[Invocation] = field(default_factory=list)

    def record(self, command: Sequence[str], returncode: int, privileged: bool = False) -> None:
        redacted = tuple(LogSanitizer.sanitize(part) for part in command)
        self.entries.append(Invocation(redacted, returncode, privileged))

    def commands(self) -> list[str]:
        return [str(entry) for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


class CommandRunner:
    """
    Run host commands, optionally behind a privilege-escalation wrapper.

    Captured runs drain stdout/stderr on background threads to avoid
    pipe deadlocks. Interactive runs hand the terminal to the child.
    With default_timeout=None a run blocks until the command exits.

    Example:
        >>> runner = CommandRunner()
        >>> result = runner.run(["tmux", "has-session", "-t", "dev"])
        >>> result.ok
        False
    """

    def __init__(
        self,
        privilege_wrapper: Sequence[str] = ("sudo",),
        log: InvocationLog | None = None,
        default_timeout: int | None = None,
    ):
        self.privilege_wrapper = list(privilege_wrapper)
        self.log = log if log is not None else InvocationLog()
        self.default_timeout = default_timeout

    def _build(self, cmd: Sequence[str], privileged: bool) -> list[str]:
        if not cmd:
            raise ValueError("Command must not be empty")
        if privileged:
            return [*self.privilege_wrapper, *cmd]
        return list(cmd)

    def which(self, tool: str) -> str | None:
        """Locate tool on PATH (no subprocess)."""
        return shutil.which(tool)

    def run(
        self,
        cmd: Sequence[str],
        *,
        privileged: bool = False,
        timeout: int | None = None,
        cwd: Path | None = None,
        env: dict | None = None,
    ) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            cmd: Command and arguments
            privileged: Prefix with the privilege wrapper (sudo)
            timeout: Timeout in seconds (None uses the runner default)
            cwd: Working directory
            env: Environment variables

        Returns:
            CommandResult; a missing executable yields returncode 127
        """
        full_cmd = self._build(cmd, privileged)
        logger.debug(f"Running: {LogSanitizer.sanitize(' '.join(full_cmd))}")
        result = self._capture(full_cmd, timeout or self.default_timeout, cwd, env)
        self.log.record(full_cmd, result.returncode, privileged)
        if result.timed_out:
            logger.warning(f"Command timed out: {full_cmd[0]}")
        return result

    def run_checked(self, cmd: Sequence[str], *, privileged: bool = False, **kwargs) -> CommandResult:
        """Run a mutating command; raise CommandError on non-zero exit."""
        result = self.run(cmd, privileged=privileged, **kwargs)
        if not result.ok:
            shown = LogSanitizer.sanitize(" ".join(self._build(cmd, privileged)))
            raise CommandError(f"Command failed (exit {result.returncode}): {shown}", result)
        return result

    def run_interactive(self, cmd: Sequence[str], *, privileged: bool = False) -> int:
        """Run a command attached to the caller's terminal and return its exit code."""
        full_cmd = self._build(cmd, privileged)
        logger.debug(f"Running interactively: {LogSanitizer.sanitize(' '.join(full_cmd))}")
        try:
            returncode = subprocess.run(full_cmd, check=False).returncode  # noqa: S603
        except FileNotFoundError:
            returncode = COMMAND_NOT_FOUND
        self.log.record(full_cmd, returncode, privileged)
        return returncode

    @staticmethod
    def _capture(
        cmd: list[str], timeout: int | None, cwd: Path | None, env: dict | None
    ) -> CommandResult:
        try:
            process = subprocess.Popen(  # noqa: S603
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError:
            return CommandResult(COMMAND_NOT_FOUND, "", f"Command not found: {cmd[0]}")
        except (PermissionError, OSError) as e:
            return CommandResult(1, "", f"Error executing command: {e!s}")

        stdout_data: list[bytes] = []
        stderr_data: list[bytes] = []

        def drain_pipe(pipe, storage):
            """Read from pipe until EOF, store in list."""
            try:
                data = pipe.read()
                if data:
                    storage.append(data)
            except OSError:
                # Pipe closed during termination
                pass

        threads = [
            threading.Thread(target=drain_pipe, args=(process.stdout, stdout_data), daemon=True),
            threading.Thread(target=drain_pipe, args=(process.stderr, stderr_data), daemon=True),
        ]
        for thread in threads:
            thread.start()

        timed_out = False
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()

        for thread in threads:
            thread.join(timeout=1)

        returncode = process.returncode if process.returncode is not None else -1
        stdout = stdout_data[0].decode("utf-8", errors="replace") if stdout_data else ""
        stderr = stderr_data[0].decode("utf-8", errors="replace") if stderr_data else ""
        return CommandResult(returncode, stdout, stderr, timed_out)


class SudoKeepAlive:
    """Pre-authorise sudo, then refresh the timestamp until exit.

    Example:
        >>> with SudoKeepAlive(runner):
        ...     bootstrapper.run()
    """

    def __init__(self, runner: CommandRunner, interval: float = 30.0):
        self.runner = runner
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> "SudoKeepAlive":
        logger.info("==> Refreshing sudo credentials (you may be prompted once)")
        returncode = self.runner.run_interactive(["sudo", "-v"])
        if returncode != 0:
            raise CommandError(
                "Unable to obtain sudo credentials", CommandResult(returncode, "", "sudo -v failed")
            )
        self._thread = threading.Thread(target=self._refresh, daemon=True)
        self._thread.start()
        return self

    def _refresh(self) -> None:
        while not self._stop.wait(self.interval):
            result = self.runner.run(["sudo", "-n", "true"], timeout=30)
            if not result.ok:
                logger.debug("sudo timestamp could not be refreshed; stopping keep-alive")
                return

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1)


__all__ = [
    "COMMAND_NOT_FOUND",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "Invocation",
    "InvocationLog",
    "SudoKeepAlive",
]
