"""Host Bootstrapper.

Brings a macOS host from an arbitrary starting state to one that can reliably
serve remote development sessions:

    platform -> prerequisites -> toolchain -> power -> homebrew ->
    shell-profile -> packages -> tailscale-cli -> services -> remote-login ->
    tailscale-daemon -> tailscale-up

Each step re-queries the host through HostFacade and only acts on the gap,
so running the bootstrapper any number of times converges to the same state
without duplicate installs, service starts, or Tailscale logins.
"""

import logging
import os
import time
from collections.abc import Callable, Mapping
from pathlib import Path

from devhost.config_manager import ConfigManager, DevhostConfig
from devhost.host_facade import RUNNING_SERVICE_STATUS, HostFacade
from devhost.modules.command_runner import CommandRunner, SudoKeepAlive
from devhost.modules.prerequisites import PrerequisiteChecker
from devhost.reconciler import (
    ProgressCallback,
    ReconcileError,
    ReconcileReport,
    Reconciler,
    ReconcileStep,
    StepResult,
)

logger = logging.getLogger(__name__)

HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
PROFILE_MARKER = "# Added by devhost to expose Homebrew on PATH"
PMSET_COMMANDS = (
    ["pmset", "-a", "sleep", "0", "displaysleep", "0", "disksleep", "0"],
    ["pmset", "-a", "disablesleep", "1"],
)
SHELL_PROFILES = {"zsh": ".zprofile", "bash": ".bash_profile"}


class HostBootstrapper:
    """Reconcile a macOS host toward the desired remote-development state.

    Example:
        >>> runner = CommandRunner()
        >>> bootstrapper = HostBootstrapper(HostFacade(runner), runner, ConfigManager.resolve())
        >>> report = bootstrapper.run()
        >>> report.changed_steps
        ['power', 'packages']
    """

    def __init__(
        self,
        facade: HostFacade,
        runner: CommandRunner,
        config: DevhostConfig,
        auth_key: str | None = None,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.facade = facade
        self.runner = runner
        self.config = config
        self.auth_key = auth_key
        self.env = os.environ if env is None else env
        self._home = home
        self._sleep = sleep
        self._clock = clock
        self._brew: str | None = None
        self._tailscale: str | None = None

    # Identity -----------------------------------------------------------

    @property
    def target_user(self) -> str:
        """The human user, even when invoked through sudo."""
        sudo_user = self.env.get("SUDO_USER")
        if sudo_user and sudo_user != "root":
            return sudo_user
        return self.env.get("USER") or "root"

    @property
    def target_home(self) -> Path:
        if self._home is not None:
            return self._home
        sudo_user = self.env.get("SUDO_USER")
        if sudo_user and sudo_user != "root":
            return Path(f"~{sudo_user}").expanduser()
        return Path.home()

    def shell_profile(self) -> Path:
        shell = self.facade.user_shell(self.target_user) or self.env.get("SHELL") or "/bin/zsh"
        name = SHELL_PROFILES.get(Path(shell).name, ".profile")
        return self.target_home / name

    # Steps --------------------------------------------------------------

    def steps(self) -> list[ReconcileStep]:
        return [
            ReconcileStep("platform", "Checking host platform", self.check_platform),
            ReconcileStep("prerequisites", "Checking required system tools", self.check_prerequisites),
            ReconcileStep("toolchain", "Installing Xcode command line tools (if missing)", self.ensure_toolchain),
            ReconcileStep("power", "Ensuring the Mac stays awake", self.ensure_power_settings),
            ReconcileStep("homebrew", "Installing Homebrew (if missing)", self.ensure_homebrew),
            ReconcileStep("shell-profile", "Exposing Homebrew on the login shell PATH", self.ensure_shell_profile),
            ReconcileStep("packages", f"Installing {' and '.join(self.config.packages) or 'packages'}", self.ensure_packages),
            ReconcileStep("tailscale-cli", "Ensuring Tailscale CLI is available", self.ensure_tailscale_cli),
            ReconcileStep("services", "Enabling Homebrew services", self.ensure_services),
            ReconcileStep("remote-login", "Enabling remote login (SSH)", self.ensure_remote_login),
            ReconcileStep("tailscale-daemon", "Installing tailscaled system daemon", self.ensure_tailscale_daemon),
            ReconcileStep("tailscale-up", "Bringing the host onto your tailnet", self.ensure_tailscale_up),
        ]

    def check_platform(self) -> StepResult:
        if not self.facade.is_macos():
            return StepResult.failed("platform", "This bootstrap is intended for macOS hosts only.")
        return StepResult.satisfied("platform", "macOS")

    def check_prerequisites(self) -> StepResult:
        result = PrerequisiteChecker.check(PrerequisiteChecker.BOOTSTRAP_TOOLS, self.runner.which)
        if not result.all_available:
            return StepResult.failed(
                "prerequisites",
                PrerequisiteChecker.format_missing_message(result.missing, result.platform_name),
            )
        return StepResult.satisfied("prerequisites")

    def ensure_toolchain(self) -> StepResult:
        if self.facade.tool_present():
            return StepResult.satisfied("toolchain", "command line tools present")

        # Non-zero when an install is already pending; the poll below decides.
        self.runner.run(["xcode-select", "--install"])

        deadline = self._clock() + self.config.toolchain_timeout
        while not self.facade.tool_present():
            if self._clock() >= deadline:
                return StepResult.failed(
                    "toolchain",
                    f"Command line tools not installed after {self.config.toolchain_timeout}s. "
                    "Confirm the installer prompt and rerun.",
                )
            logger.info("Waiting for command line tools...")
            self._sleep(self.config.toolchain_poll_interval)

        return StepResult.changed("toolchain", "command line tools installed")

    def ensure_power_settings(self) -> StepResult:
        # Plain set operations; repeating them is harmless.
        for cmd in PMSET_COMMANDS:
            self.runner.run_checked(cmd, privileged=True)
        return StepResult.changed("power", "sleep disabled")

    def ensure_homebrew(self) -> StepResult:
        self._brew = self.facade.brew_path()
        if self._brew:
            return StepResult.satisfied("homebrew", self._brew)

        script = self.runner.run_checked(["curl", "-fsSL", HOMEBREW_INSTALL_URL]).stdout
        returncode = self.runner.run_interactive(["/bin/bash", "-c", script])
        if returncode != 0:
            return StepResult.failed("homebrew", f"Homebrew installer exited {returncode}")

        self._brew = self.facade.brew_path()
        if not self._brew:
            return StepResult.failed("homebrew", "Unable to locate Homebrew binary after installation.")
        return StepResult.changed("homebrew", self._brew)

    def ensure_shell_profile(self) -> StepResult:
        prefix = self.facade.brew_prefix(self._require_brew())
        if not prefix:
            return StepResult.failed("shell-profile", "brew --prefix returned nothing")

        snippet = f'eval "$({prefix}/bin/brew shellenv)"'
        profile = self.shell_profile()
        try:
            # Profiles are user-edited; tolerate non-UTF-8 bytes.
            existing = (
                profile.read_text(encoding="utf-8", errors="replace") if profile.exists() else ""
            )
            if snippet in existing:
                return StepResult.satisfied("shell-profile", str(profile))

            profile.parent.mkdir(parents=True, exist_ok=True)
            with open(profile, "a", encoding="utf-8") as f:
                f.write(f"\n{PROFILE_MARKER}\n{snippet}\n")
        except OSError as e:
            return StepResult.failed(
                "shell-profile",
                f"Unable to update {profile}: {e}. Add this line manually:\n  {snippet}",
            )
        logger.info(f"Appended Homebrew shellenv to {profile}")
        return StepResult.changed("shell-profile", str(profile))

    def ensure_packages(self) -> StepResult:
        brew = self._require_brew()
        self.runner.run_checked([brew, "update"])

        installed = []
        for package in self.config.packages:
            if self.facade.package_installed(brew, package):
                continue
            self.runner.run_checked([brew, "install", package])
            installed.append(package)

        if installed:
            return StepResult.changed("packages", f"installed {', '.join(installed)}")
        return StepResult.satisfied("packages", "all packages present")

    def ensure_tailscale_cli(self) -> StepResult:
        brew = self._require_brew()
        self._tailscale = self.facade.tailscale_path(brew)
        if self._tailscale:
            return StepResult.satisfied("tailscale-cli", self._tailscale)

        logger.info("Installing Tailscale via Homebrew (CLI formula)")
        self.runner.run_checked([brew, "install", "tailscale"])
        self._tailscale = self.facade.tailscale_path(brew)
        if not self._tailscale:
            return StepResult.failed(
                "tailscale-cli",
                "Tailscale CLI not found. Install it manually with one of:\n"
                "  brew install tailscale\n"
                "  brew install --cask tailscale\n"
                "Then rerun this command.",
            )
        return StepResult.changed("tailscale-cli", self._tailscale)

    def ensure_services(self) -> StepResult:
        brew = self._require_brew()
        acted = []
        for service in self.config.services:
            status = self.facade.service_status(brew, service)
            if status == RUNNING_SERVICE_STATUS:
                continue
            # Unregistered services are started; registered but stopped ones restarted.
            action = "start" if status is None else "restart"
            self.runner.run_checked([brew, "services", action, service], privileged=True)
            acted.append(f"{action} {service}")

        if acted:
            return StepResult.changed("services", ", ".join(acted))
        return StepResult.satisfied("services", "all services running")

    def ensure_remote_login(self) -> StepResult:
        if self.facade.remote_login_enabled():
            return StepResult.satisfied("remote-login", "already on")
        self.runner.run_checked(["systemsetup", "-setremotelogin", "on"], privileged=True)
        return StepResult.changed("remote-login", "enabled")

    def ensure_tailscale_daemon(self) -> StepResult:
        tailscaled = self.facade.tailscaled_path()
        if not tailscaled:
            return StepResult.satisfied("tailscale-daemon", "no tailscaled binary; app-managed")
        if self.facade.tailscale_daemon_installed():
            return StepResult.satisfied("tailscale-daemon", "already installed")
        self.runner.run_checked([tailscaled, "install-system-daemon"], privileged=True)
        return StepResult.changed("tailscale-daemon", "installed")

    def tailscale_up_command(self) -> list[str]:
        tailscale = self._tailscale or "tailscale"
        operator = self.config.tailscale_operator or self.target_user
        cmd = [tailscale, "up", "--ssh", "--accept-dns"]
        if self.config.tailscale_tags:
            cmd.append(f"--advertise-tags={','.join(self.config.tailscale_tags)}")
        cmd.append(f"--operator={operator}")
        if self.auth_key:
            cmd.append(f"--authkey={self.auth_key}")
        return cmd

    def ensure_tailscale_up(self) -> StepResult:
        tailscale = self._tailscale or self.facade.tailscale_path(self._brew)
        if not tailscale:
            return StepResult.failed("tailscale-up", "Tailscale CLI not available")
        self._tailscale = tailscale

        if self.facade.tailscale_connected(tailscale):
            return StepResult.satisfied("tailscale-up", "already connected")

        if self.auth_key:
            logger.info("Using provided Tailscale auth key for unattended login")
        else:
            logger.info("Tailscale will prompt for login in your browser.")
            logger.info("Set TAILSCALE_AUTH_KEY for fully unattended bootstrap.")

        returncode = self.runner.run_interactive(self.tailscale_up_command(), privileged=True)
        if returncode != 0:
            manual = [arg for arg in self.tailscale_up_command() if not arg.startswith("--authkey")]
            return StepResult.failed(
                "tailscale-up",
                f"tailscale up exited {returncode}. Complete authentication manually with:\n"
                f"  sudo {' '.join(manual)}",
            )
        return StepResult.changed("tailscale-up", "logged in")

    def _require_brew(self) -> str:
        if not self._brew:
            self._brew = self.facade.brew_path()
        if not self._brew:
            raise RuntimeError("Homebrew step must run before steps that use brew")
        return self._brew

    # Driver -------------------------------------------------------------

    def reconcile(self, progress: ProgressCallback | None = None) -> ReconcileReport:
        """Run every step once; stops at the first failure."""
        return Reconciler(self.steps(), progress).run()

    def run(
        self, keep_sudo_alive: bool = False, progress: ProgressCallback | None = None
    ) -> ReconcileReport:
        """Reconcile the host, raising ReconcileError if any step failed."""
        if keep_sudo_alive and self.facade.is_macos():
            with SudoKeepAlive(self.runner):
                report = self.reconcile(progress)
        else:
            report = self.reconcile(progress)

        if not report.succeeded:
            raise ReconcileError(report)
        return report


def build_bootstrapper(
    config_path: str | None = None, runner: CommandRunner | None = None
) -> HostBootstrapper:
    """Wire a bootstrapper from the on-disk config and environment."""
    runner = runner or CommandRunner()
    return HostBootstrapper(
        HostFacade(runner),
        runner,
        ConfigManager.resolve(config_path),
        auth_key=ConfigManager.get_tailscale_auth_key(),
    )


__all__ = ["HostBootstrapper", "build_bootstrapper"]
