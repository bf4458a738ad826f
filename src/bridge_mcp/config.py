"""Configuration management for the bridge MCP server."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os
import re
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_APPROVAL_PATTERNS: tuple[str, ...] = (
    r"Do you want to proceed\?",
    r"\[y/N\]",
    r"\[Y/n\]",
    r"Continue\?",
    r"Approve\?",
)


def _config_file_candidates() -> list[Path]:
    candidates = [
        Path("~/.config/bridge-mcp/config.yaml"),
        Path("bridge.yaml"),
    ]
    explicit = os.environ.get("BRIDGE_CONFIG")
    if explicit:
        # Later files override earlier ones.
        candidates.append(Path(explicit))
    return candidates


class BridgeSettings(BaseSettings):
    """Runtime configuration sourced from environment variables, .env and an optional YAML file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    allowed_roots: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(), validation_alias="BRIDGE_ALLOWED_ROOTS"
    )
    default_timeout_seconds: int = Field(default=3600, validation_alias="BRIDGE_DEFAULT_TIMEOUT")
    task_history_size: int = Field(default=20, validation_alias="BRIDGE_TASK_HISTORY_SIZE")
    session_shell: str = Field(default="/bin/bash", validation_alias="BRIDGE_SHELL")
    claude_command: str = Field(default="claude", validation_alias="BRIDGE_CLAUDE_COMMAND")
    auto_approve_patterns: tuple[str, ...] = Field(
        default=DEFAULT_APPROVAL_PATTERNS, validation_alias="BRIDGE_AUTO_APPROVE_PATTERNS"
    )
    approval_delay_seconds: float = Field(default=0.1, validation_alias="BRIDGE_APPROVAL_DELAY")
    kill_grace_seconds: float = Field(default=5.0, validation_alias="BRIDGE_KILL_GRACE")
    output_buffer_chars: int = Field(default=10240, validation_alias="BRIDGE_OUTPUT_BUFFER_CHARS")
    status_tail_chars: int = Field(default=500, validation_alias="BRIDGE_STATUS_TAIL_CHARS")
    terminal_cols: int = Field(default=120, validation_alias="BRIDGE_TERMINAL_COLS")
    terminal_rows: int = Field(default=30, validation_alias="BRIDGE_TERMINAL_ROWS")
    log_level: str = Field(default="INFO", validation_alias="BRIDGE_LOG_LEVEL")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=_config_file_candidates())
        return (init_settings, env_settings, dotenv_settings, yaml_settings, file_secret_settings)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized == "WARN":
            normalized = "WARNING"
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "BRIDGE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("allowed_roots", mode="before")
    @classmethod
    def _parse_allowed_roots(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            separators = f"[{re.escape(os.pathsep)},]"
            parts = [part.strip() for part in re.split(separators, value) if part.strip()]
            return tuple(Path(part) for part in parts)
        raise TypeError("BRIDGE_ALLOWED_ROOTS must be a list of paths or a separated string")

    @field_validator("auto_approve_patterns")
    @classmethod
    def _validate_patterns(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for pattern in value:
            try:
                re.compile(pattern, re.IGNORECASE)
            except re.error as exc:
                raise ValueError(f"Invalid auto-approve pattern {pattern!r}: {exc}") from exc
        return value

    @field_validator(
        "default_timeout_seconds",
        "task_history_size",
        "output_buffer_chars",
        "status_tail_chars",
        "terminal_cols",
        "terminal_rows",
    )
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("approval_delay_seconds", "kill_grace_seconds")
    @classmethod
    def _validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delay must be >= 0")
        return value

    def compiled_approval_patterns(self) -> list[re.Pattern[str]]:
        """Return the approval prompt patterns compiled case-insensitively, in order."""

        return [re.compile(pattern, re.IGNORECASE) for pattern in self.auto_approve_patterns]


@lru_cache(maxsize=1)
def get_settings() -> BridgeSettings:
    """Return cached settings instance."""

    settings = BridgeSettings()
    settings.allowed_roots = tuple(path.expanduser().resolve() for path in settings.allowed_roots)
    return settings


__all__ = ["BridgeSettings", "DEFAULT_APPROVAL_PATTERNS", "get_settings"]
