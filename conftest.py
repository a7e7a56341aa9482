"""Pytest configuration and fixtures for devhost tests.

CRITICAL: Protects the real host from test side effects.
"""

import pytest

from devhost.config_manager import ConfigManager

HOST_ENV_VARS = (
    "DEVHOST_CONFIG",
    "DEVHOST_SESSION_NAME",
    "SESSION_NAME",
    "DEVHOST_SERVICES",
    "DEVHOST_PACKAGES",
    "TAILSCALE_AUTH_KEY",
    "SUDO_USER",
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point ConfigManager at a temporary ~/.devhost.

    CRITICAL PROTECTION: Tests should NEVER touch ~/.devhost/config.toml
    or create lock files in the real home directory.

    Example:
        def test_something(isolated_config):
            ConfigManager.save_config(DevhostConfig())  # lands in tmp_path
    """
    config_dir = tmp_path / ".devhost"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_dir / "config.toml")
    return config_dir


@pytest.fixture(autouse=True)
def clean_host_environment(monkeypatch):
    """Keep the developer's own overrides (SESSION_NAME, auth keys...) out of tests."""
    for name in HOST_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("USER", "tester")
    monkeypatch.setenv("SHELL", "/bin/zsh")
