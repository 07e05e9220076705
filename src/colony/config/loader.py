"""Configuration loading and management."""

import os
import shlex
import warnings
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from ..utils.logging import ConfigurationError

# Suppress Pydantic serialization warnings globally for config operations
warnings.filterwarnings("ignore", message=".*Pydantic serializer warnings.*")

SUPPORTED_SUPERVISORS = ("tmux", "pm2", "process")


class ColonyConfig(BaseModel):
    """Configuration model for the colony orchestrator."""

    # Source repository
    repo_path: str = Field(
        default=".", description="Repository whose branches are the species"
    )
    clone_url: str | None = Field(
        default=None,
        description="Clone source (defaults to the repo's origin URL, then repo_path)",
    )

    # Colony layout
    colony_dir: str = Field(
        default="colony", description="Directory holding the registry and instances"
    )
    base_port: int = Field(default=3001, description="Lowest port handed to instances")
    public_host: str = Field(default="localhost", description="Host used in instance URLs")
    url_scheme: str = Field(default="http", description="Scheme used in instance URLs")

    # Process supervision
    supervisor: str = Field(default="tmux", description="tmux, pm2 or process")
    session_prefix: str = Field(
        default="colony", description="Prefix for tmux session names"
    )
    pm2_path: str = Field(default="pm2", description="pm2 executable")

    # Provisioning toolchain
    install_command: list[str] = Field(default_factory=lambda: ["npm", "install"])
    build_command: list[str] = Field(default_factory=lambda: ["npm", "run", "build"])
    start_command: list[str] = Field(default_factory=lambda: ["npm", "run", "start"])
    execution_mode: str = Field(default="production", description="NODE_ENV value")
    database_url: str = Field(
        default="file:./amoeba.db", description="Private data store of each instance"
    )
    env_file_name: str = Field(default=".env", description="Instance config artifact")
    command_timeout: int = Field(
        default=1800, description="Timeout in seconds for each external command"
    )
    cleanup_failed_spawns: bool = Field(
        default=True, description="Remove the checkout of a failed spawn"
    )
    purge_on_kill: bool = Field(
        default=False, description="Delete instance files on kill instead of freezing"
    )

    # Web interface
    web_host: str = Field(default="127.0.0.1", description="Web interface host")
    web_port: int = Field(default=8000, description="Web interface port")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")
    structured_logs: bool = Field(default=True, description="Emit JSON log lines")

    @field_validator("base_port", "web_port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        """Ports must be valid TCP ports."""
        if not 1 <= value <= 65535:
            raise ValueError("must be between 1 and 65535")
        return value

    @field_validator("supervisor")
    @classmethod
    def validate_supervisor(cls, value: str) -> str:
        """Only known supervisor backends are accepted."""
        value = value.lower()
        if value not in SUPPORTED_SUPERVISORS:
            raise ValueError(f"must be one of {', '.join(SUPPORTED_SUPERVISORS)}")
        return value

    @field_validator("install_command", "build_command", "start_command", mode="before")
    @classmethod
    def split_command(cls, value: Any) -> Any:
        """Accept commands written as a single shell-style string."""
        if isinstance(value, str):
            return shlex.split(value)
        return value

    @field_validator("start_command")
    @classmethod
    def validate_start_command(cls, value: list[str]) -> list[str]:
        """An instance needs something to run."""
        if not value:
            raise ValueError("start_command must not be empty")
        return value

    @property
    def colony_path(self) -> Path:
        """Absolute colony directory."""
        return Path(self.colony_dir).expanduser().resolve()

    @property
    def instances_path(self) -> Path:
        """Directory holding one checkout per instance."""
        return self.colony_path / "instances"

    @property
    def registry_path(self) -> Path:
        """The persisted registry file."""
        return self.colony_path / "registry.json"


def find_config_file(custom_path: str | None = None) -> Path | None:
    """Find configuration file in standard locations."""
    if custom_path:
        path = Path(custom_path).expanduser()
        if path.exists():
            return path
        raise FileNotFoundError(f"Config file not found: {custom_path}")

    search_paths = [
        Path.cwd() / "colony.yaml",
        Path.cwd() / "colony.yml",
        Path.home() / ".config" / "colony" / "config.yaml",
        Path.home() / ".colony.yaml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


_INT_KEYS = {"base_port", "web_port", "command_timeout"}
_BOOL_KEYS = {"cleanup_failed_spawns", "purge_on_kill", "structured_logs"}
_LIST_KEYS = {"cors_origins"}


def load_env_vars() -> dict[str, Any]:
    """Load configuration from ``COLONY_*`` environment variables."""
    config: dict[str, Any] = {}
    prefix = "COLONY_"

    for config_key in ColonyConfig.model_fields:
        env_var = f"{prefix}{config_key.upper()}"
        if env_var not in os.environ:
            continue

        env_value = os.environ[env_var]
        if config_key in _INT_KEYS:
            try:
                config[config_key] = int(env_value)
            except ValueError:
                continue
        elif config_key in _BOOL_KEYS:
            config[config_key] = env_value.lower() in ("true", "1", "yes", "on")
        elif config_key in _LIST_KEYS:
            config[config_key] = [v.strip() for v in env_value.split(",") if v.strip()]
        else:
            config[config_key] = env_value

    return config


def load_config(
    config_path: str | None = None,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ColonyConfig:
    """Load configuration from file and environment variables.

    Precedence order (highest to lowest):
    1. CLI flag overrides
    2. Environment variables
    3. Configuration file (with profile support)
    4. Default values
    """
    config_data: dict[str, Any] = {}

    config_file = find_config_file(config_path)
    if config_file:
        file_data = load_config_file(config_file)
        config_data.update({k: v for k, v in file_data.items() if k != "profiles"})

        profiles = file_data.get("profiles") or {}
        if profile:
            if profile not in profiles:
                raise ConfigurationError(
                    f"Profile '{profile}' not found in {config_file}"
                )
            config_data.update(profiles[profile] or {})

    config_data.update(load_env_vars())

    if cli_overrides:
        config_data.update(cli_overrides)

    try:
        return ColonyConfig(**config_data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def save_config(config: ColonyConfig, config_path: str | None = None) -> Path:
    """Save configuration to file."""
    if config_path:
        path = Path(config_path).expanduser()
    else:
        path = Path.home() / ".config" / "colony" / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", message=".*Pydantic serializer warnings.*")
        config_dict = config.model_dump()
    with open(path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=True)

    return path
