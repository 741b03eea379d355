from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_TRUTHY = ("1", "true", "yes")


class BrowserConfig(BaseModel):
    browser_name: Literal["chromium", "firefox", "webkit"] = "chromium"
    headless: bool = True
    launch_options: dict = Field(default_factory=dict)
    context_options: dict = Field(default_factory=dict)
    blank_url: str = "about:blank"


class DaemonConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PATCHRIGHT_DAEMON_",
        env_nested_delimiter="__",
    )

    socket_path: str | None = None
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: str | None = None
    max_message_bytes: int = 16 * 1024 * 1024

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("max_message_bytes")
    @classmethod
    def check_max_message_bytes(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_message_bytes must be positive, got {v}")
        return v

    def launch_kwargs(self) -> dict:
        """Keyword arguments for ``BrowserType.launch``."""
        opts = dict(self.browser.launch_options)
        opts["headless"] = self.browser.headless
        return opts


def apply_env_overrides(config: DaemonConfig) -> DaemonConfig:
    """Apply the short-form PATCHRIGHT_DAEMON_* variables.

    These don't follow the pydantic-settings field naming, so they are read
    by hand and take precedence over everything else.
    """

    # PATCHRIGHT_DAEMON_HEADLESS -> browser.headless
    headless = os.environ.get("PATCHRIGHT_DAEMON_HEADLESS")
    if headless is not None:
        config.browser.headless = headless.strip().lower() in _TRUTHY

    # PATCHRIGHT_DAEMON_ENGINE -> browser.browser_name
    browser_name = os.environ.get("PATCHRIGHT_DAEMON_ENGINE")
    if browser_name:
        name = browser_name.strip().lower()
        if name not in ("chromium", "firefox", "webkit"):
            raise ValueError(
                f"PATCHRIGHT_DAEMON_ENGINE must be chromium, firefox or webkit, got '{browser_name}'"
            )
        config.browser.browser_name = name

    return config


def get_version() -> str:
    """Return the package version string."""
    try:
        from importlib.metadata import version

        return version("patchright-daemon")
    except Exception:
        return "0.1.0"


def load_config(config_path: str | None = None) -> DaemonConfig:
    """Load daemon configuration from a JSON file and/or environment variables.

    Priority (highest to lowest):
        1. Short-form overrides (PATCHRIGHT_DAEMON_HEADLESS, _ENGINE)
        2. Explicitly provided config_path JSON file
        3. Default config file ``.patchright-daemon.json`` in cwd
        4. Remaining PATCHRIGHT_DAEMON_* variables (pydantic-settings)
        5. Built-in defaults
    """
    file_values: dict = {}

    if config_path is not None:
        config_file = Path(config_path)
        if config_file.is_file():
            file_values = json.loads(config_file.read_text(encoding="utf-8"))
    else:
        default_config = Path.cwd() / ".patchright-daemon.json"
        if default_config.is_file():
            file_values = json.loads(default_config.read_text(encoding="utf-8"))

    # pydantic-settings fills fields the file leaves unset from the environment
    config = DaemonConfig(**file_values)
    return apply_env_overrides(config)
