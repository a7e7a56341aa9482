"""Post-flight verification of a bootstrapped host.

Read-only checks that confirm the host can serve remote sessions. Nothing
here changes host state.
"""

import logging
from dataclasses import dataclass, field

from devhost.host_facade import HostFacade
from devhost.modules.command_runner import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass
class VerificationReport:
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def failures(self) -> list[CheckResult]:
        return [check for check in self.checks if not check.passed]


class HostVerifier:
    """Run the post-flight checks."""

    def __init__(self, facade: HostFacade, runner: CommandRunner, packages: list[str] | None = None):
        self.facade = facade
        self.runner = runner
        self.packages = packages if packages is not None else ["tmux", "fail2ban"]

    def check_tailscale(self) -> CheckResult:
        tailscale = self.facade.tailscale_path(self.facade.brew_path())
        if not tailscale:
            return CheckResult("tailscale status", False, "tailscale CLI not found on PATH")
        result = self.runner.run([tailscale, "status"])
        if not result.ok:
            return CheckResult(
                "tailscale status",
                False,
                "not ready; complete authentication and rerun 'tailscale status'",
            )
        first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else "connected"
        return CheckResult("tailscale status", True, first_line)

    def check_tmux(self) -> CheckResult:
        result = self.runner.run(["tmux", "-V"])
        if not result.ok:
            return CheckResult("tmux -V", False, result.output or "tmux not runnable")
        return CheckResult("tmux -V", True, result.stdout.strip())

    def check_packages(self) -> list[CheckResult]:
        brew = self.facade.brew_path()
        checks = []
        for package in self.packages:
            name = f"brew list {package}"
            if not brew:
                checks.append(CheckResult(name, False, "Homebrew not found"))
            elif self.facade.package_installed(brew, package):
                checks.append(CheckResult(name, True, f"{package} installed via Homebrew"))
            else:
                checks.append(CheckResult(name, False, f"{package} not installed"))
        return checks

    def run(self) -> VerificationReport:
        report = VerificationReport()
        report.checks.append(self.check_tailscale())
        report.checks.append(self.check_tmux())
        report.checks.extend(self.check_packages())

        for check in report.failures:
            logger.warning(f"Check failed: {check.name}: {check.detail}")
        return report


__all__ = ["CheckResult", "HostVerifier", "VerificationReport"]
