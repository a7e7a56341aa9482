"""
Shared test fixtures for devhost tests.

This module provides common fixtures used across all test types:
- A scripted fake host and the runner that drives it
- A macOS platform override
- Wired-up bootstrapper / launcher instances
"""

import pytest

from devhost.bootstrapper import HostBootstrapper
from devhost.config_manager import DevhostConfig
from devhost.host_facade import HostFacade
from devhost.session_launcher import SessionLauncher
from tests.mocks.command_mock import FakeCommandRunner, FakeHost

# ============================================================================
# PLATFORM FIXTURES
# ============================================================================


@pytest.fixture
def macos(monkeypatch):
    """Make platform.system() report Darwin."""
    monkeypatch.setattr("platform.system", lambda: "Darwin")


@pytest.fixture
def linux(monkeypatch):
    monkeypatch.setattr("platform.system", lambda: "Linux")


# ============================================================================
# HOST FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_host_paths(tmp_path, monkeypatch):
    """Hide the real /opt/homebrew, Tailscale.app and launchd plist from tests."""
    monkeypatch.setattr("devhost.host_facade.BREW_FALLBACK_PATHS", ())
    monkeypatch.setattr("devhost.host_facade.TAILSCALE_APP_BINARY", tmp_path / "no-tailscale-app")
    monkeypatch.setattr("devhost.host_facade.TAILSCALED_PLIST", tmp_path / "no-tailscaled.plist")


@pytest.fixture
def fresh_host():
    """A Mac with nothing installed beyond the stock system tools."""
    return FakeHost()


@pytest.fixture
def converged_host():
    """A Mac that a previous bootstrap already provisioned."""
    return FakeHost.converged()


@pytest.fixture
def make_bootstrapper(tmp_path, macos):
    """Factory building a bootstrapper over a FakeHost.

    Example:
        def test_x(make_bootstrapper, fresh_host):
            bootstrapper, runner = make_bootstrapper(fresh_host)
    """
    home = tmp_path / "home"
    home.mkdir()

    def _make(host: FakeHost, config: DevhostConfig | None = None, auth_key: str | None = None):
        runner = FakeCommandRunner(host)
        bootstrapper = HostBootstrapper(
            HostFacade(runner),
            runner,
            config or DevhostConfig(toolchain_poll_interval=1, toolchain_timeout=60),
            auth_key=auth_key,
            env={"USER": "tester", "SHELL": "/bin/zsh"},
            home=home,
            sleep=lambda _seconds: None,
        )
        return bootstrapper, runner

    return _make


@pytest.fixture
def make_launcher(tmp_path):
    """Factory building a session launcher over a FakeHost."""

    def _make(host: FakeHost):
        runner = FakeCommandRunner(host)
        launcher = SessionLauncher(HostFacade(runner), runner, lock_dir=tmp_path / "locks")
        return launcher, runner

    return _make
