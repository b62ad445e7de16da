"""Configuration management for termbridge.

Loads settings from a YAML configuration file with environment variable
overrides. Supports .env files and the legacy ``BRIDGE_PORT`` variable.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/termbridge.yaml")
DEFAULT_PORT = 9876


def _default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/bash"


def _default_cwd() -> str:
    return str(Path.home())


class BridgeConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    max_pending_messages: int = Field(
        default=1000, gt=0,
        description="Per-observer backlog before a slow observer is dropped",
    )


class TerminalConfig(BaseModel):
    shell_command: str = Field(default_factory=_default_shell)
    shell_args: list[str] = Field(default_factory=list)
    default_cwd: str = Field(default_factory=_default_cwd)
    default_session_name: str = Field(default="Terminal")
    rows: int = Field(default=30, gt=0)
    cols: int = Field(default=120, gt=0)
    term: str = Field(default="xterm-256color")
    idle_timeout: float = Field(
        default=2.0, gt=0,
        description="Seconds of output silence that mark a command complete",
    )
    kill_grace: float = Field(default=0.5, ge=0)
    env: dict[str, str] = Field(default_factory=dict)


class ScreenshotConfig(BaseModel):
    timeout: float = Field(default=30.0, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)
    auto_paste: bool = Field(default=False)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the termbridge service.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "TERMBRIDGE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    screenshot: ScreenshotConfig = Field(default_factory=ScreenshotConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Constructor values carry the YAML file, so they rank below the environment.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars."""
    bridge_port = os.environ.get("BRIDGE_PORT", "")
    shell = os.environ.get("SHELL", "")

    if bridge_port:
        try:
            port = int(bridge_port)
        except ValueError:
            logger.warning("Ignoring non-numeric BRIDGE_PORT=%r", bridge_port)
        else:
            yaml_data.setdefault("bridge", {})["port"] = port

    if shell:
        terminal = yaml_data.setdefault("terminal", {})
        if not terminal.get("shell_command"):
            terminal["shell_command"] = shell
