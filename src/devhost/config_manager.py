"""Configuration management module.

This module handles persistent configuration storage using TOML format and
layers environment overrides on top of it. Stores the desired host state:
default session name, Homebrew packages and services, Tailscale tags.

Precedence (highest first): CLI flag, environment, config file, defaults.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
- Auth keys are read from the environment only, never persisted
"""

import logging
import os
import re
import tempfile
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Python 3.11+ ships the same parser as tomllib
    try:
        import tomllib as tomli  # type: ignore[import]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

try:
    import tomlkit
except ImportError as e:
    raise ImportError("tomlkit library not available. Install with: pip install tomlkit") from e

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "dev"
DEFAULT_PACKAGES = ["tmux", "fail2ban"]
DEFAULT_SERVICES = ["fail2ban"]
DEFAULT_TAILSCALE_TAGS = ["tag:devhost"]

# Environment variable names
ENV_CONFIG = "DEVHOST_CONFIG"
ENV_SESSION_NAME = "DEVHOST_SESSION_NAME"
ENV_SESSION_NAME_LEGACY = "SESSION_NAME"
ENV_SERVICES = "DEVHOST_SERVICES"
ENV_PACKAGES = "DEVHOST_PACKAGES"
ENV_TAILSCALE_AUTH_KEY = "TAILSCALE_AUTH_KEY"

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9@._+-]*$")
# tmux reads ":" and "." as target separators
SESSION_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class DevhostConfig:
    """devhost configuration data."""

    session_name: str = DEFAULT_SESSION_NAME
    packages: list[str] = field(default_factory=lambda: list(DEFAULT_PACKAGES))
    services: list[str] = field(default_factory=lambda: list(DEFAULT_SERVICES))
    tailscale_tags: list[str] = field(default_factory=lambda: list(DEFAULT_TAILSCALE_TAGS))
    tailscale_operator: str | None = None
    toolchain_timeout: int = 1800
    toolchain_poll_interval: int = 20

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DevhostConfig":
        """Create from dictionary, validating types."""
        defaults = cls()
        config = cls(
            session_name=_as_session_name(
                data.get("session_name", defaults.session_name), "session_name"
            ),
            packages=_as_name_list(data.get("packages", defaults.packages), "packages"),
            services=_as_name_list(data.get("services", defaults.services), "services"),
            tailscale_tags=_as_name_list(
                data.get("tailscale_tags", defaults.tailscale_tags), "tailscale_tags"
            ),
            tailscale_operator=data.get("tailscale_operator"),
            toolchain_timeout=_as_positive_int(
                data.get("toolchain_timeout", defaults.toolchain_timeout), "toolchain_timeout"
            ),
            toolchain_poll_interval=_as_positive_int(
                data.get("toolchain_poll_interval", defaults.toolchain_poll_interval),
                "toolchain_poll_interval",
            ),
        )
        return config


def _as_session_name(value: Any, key: str) -> str:
    name = str(value).strip()
    if not SESSION_NAME_RE.fullmatch(name):
        raise ConfigError(f"Invalid {key}: {name!r}. Use letters, digits, '-' and '_' only.")
    return name


def _as_name_list(value: Any, key: str) -> list[str]:
    if isinstance(value, str):
        value = [item.strip() for item in value.split(",")]
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of names, got {type(value).__name__}")
    names = [str(item).strip() for item in value if str(item).strip()]
    for name in names:
        # tags carry a "tag:" prefix
        if not _NAME_RE.match(name.removeprefix("tag:")):
            raise ConfigError(f"Invalid entry in {key}: {name!r}")
    return names


def _as_positive_int(value: Any, key: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e
    if parsed < 1:
        raise ConfigError(f"{key} must be >= 1")
    return parsed


class ConfigManager:
    """Manage devhost configuration file.

    Configuration is stored at ~/.devhost/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".devhost"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Ensure a custom path lives under ~/.devhost, the cwd, or the temp dir.

        Raises:
            ConfigError: If path is outside allowed directories
        """
        resolved_path = path.resolve()
        allowed_dirs = [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),
        ]
        for allowed_dir in allowed_dirs:
            if resolved_path.is_relative_to(allowed_dir):
                return resolved_path

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {cls.DEFAULT_CONFIG_DIR}\n"
            f"  - {Path.cwd()}"
        )

    @classmethod
    def get_config_path(
        cls, custom_path: str | None = None, env: Mapping[str, str] | None = None
    ) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional, overrides DEVHOST_CONFIG)
            env: Environment mapping (defaults to os.environ)

        Raises:
            ConfigError: If a custom path is invalid or missing
        """
        env = os.environ if env is None else env
        custom_path = custom_path or env.get(ENV_CONFIG)
        if custom_path:
            path = cls._validate_config_path(Path(custom_path).expanduser())
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions (0700)."""
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR
        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def lock_dir(cls) -> Path:
        """Directory holding devhost lock files."""
        return cls.DEFAULT_CONFIG_DIR / "locks"

    @classmethod
    def load_config(
        cls, custom_path: str | None = None, env: Mapping[str, str] | None = None
    ) -> DevhostConfig:
        """Load configuration from file (no environment overrides applied).

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path, env)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return DevhostConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)  # type: ignore[attr-defined]
        except (OSError, tomli.TOMLDecodeError) as e:  # type: ignore[attr-defined]
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return DevhostConfig.from_dict(data)

    @classmethod
    def resolve(
        cls, custom_path: str | None = None, env: Mapping[str, str] | None = None
    ) -> DevhostConfig:
        """Load configuration and apply environment overrides."""
        env = os.environ if env is None else env
        config = cls.load_config(custom_path, env)

        if env.get(ENV_SESSION_NAME):
            config.session_name = _as_session_name(env[ENV_SESSION_NAME], ENV_SESSION_NAME)
        elif env.get(ENV_SESSION_NAME_LEGACY):
            config.session_name = _as_session_name(
                env[ENV_SESSION_NAME_LEGACY], ENV_SESSION_NAME_LEGACY
            )
        if env.get(ENV_SERVICES):
            config.services = _as_name_list(env[ENV_SERVICES], ENV_SERVICES)
        if env.get(ENV_PACKAGES):
            config.packages = _as_name_list(env[ENV_PACKAGES], ENV_PACKAGES)

        return config

    @classmethod
    def save_config(cls, config: DevhostConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file, preserving comments in an existing file.

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = cls._validate_config_path(Path(custom_path).expanduser())
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.ensure_config_dir()
                config_path = cls.DEFAULT_CONFIG_FILE

            temp_path = config_path.with_suffix(".tmp")

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()
            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except OSError as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> DevhostConfig:
        """Update configuration values and persist them.

        Raises:
            ConfigError: On unknown keys, invalid values, or write failure
        """
        data = cls.load_config(custom_path).to_dict()
        for key, value in updates.items():
            if key not in DevhostConfig.__dataclass_fields__:
                raise ConfigError(f"Unknown config key: {key}")
            data[key] = value

        config = DevhostConfig.from_dict(data)
        cls.save_config(config, custom_path)
        return config

    @classmethod
    def get_session_name(
        cls,
        cli_value: str | None = None,
        custom_path: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Get session name with CLI override."""
        if cli_value:
            return cli_value
        return cls.resolve(custom_path, env).session_name

    @staticmethod
    def get_tailscale_auth_key(env: Mapping[str, str] | None = None) -> str | None:
        """Tailscale auth key for unattended login (environment only)."""
        env = os.environ if env is None else env
        return env.get(ENV_TAILSCALE_AUTH_KEY) or None


__all__ = [
    "DEFAULT_SESSION_NAME",
    "SESSION_NAME_RE",
    "ConfigError",
    "ConfigManager",
    "DevhostConfig",
]
