"""Configuration system for ruleauth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.ruleauth] section (project-level)
3. ./ruleauth.toml (project-level, explicit)
4. ~/.config/ruleauth/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use RULEAUTH_ prefix with nested delimiter __.
Example: RULEAUTH_PROVIDER__URL, RULEAUTH_REFRESH__INTERVAL_SECONDS
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .scheduler import check_refresh_timing


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    ruleauth_toml = Path("ruleauth.toml")
    if ruleauth_toml.exists():
        files.append(ruleauth_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "ruleauth" / "config.toml"
    else:
        user_config = Path("~/.config/ruleauth/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("RULEAUTH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue  # unreadable config files are skipped

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("ruleauth", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {"anon_key"}

_REDACTED = "********"

_SECTIONS: list[tuple[str, str]] = [
    ("PROVIDER", "provider"),
    ("LOGIN", "login"),
    ("REFRESH", "refresh"),
    ("STORAGE", "storage"),
    ("LOG", "log"),
]


class ProviderSettings(BaseSettings):
    """Identity provider connection settings.

    Environment prefix: RULEAUTH_PROVIDER__
    Example: RULEAUTH_PROVIDER__URL=https://project.supabase.co
    """

    model_config = SettingsConfigDict(
        env_prefix="RULEAUTH_PROVIDER__",
        extra="ignore",
    )

    url: str = Field(
        default="",
        description="Identity provider base URL",
    )
    anon_key: str = Field(
        default="",
        description="Public API key sent with every provider request",
    )
    timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="HTTP timeout for provider calls",
    )


class LoginSettings(BaseSettings):
    """Redirect login settings.

    Environment prefix: RULEAUTH_LOGIN__
    """

    model_config = SettingsConfigDict(
        env_prefix="RULEAUTH_LOGIN__",
        extra="ignore",
    )

    login_url: str = Field(
        default="https://codingrules.ai/auth/extension",
        description="External login page that redirects back with tokens",
    )
    profile_url: str = Field(
        default="https://codingrules.ai/profile",
        description="Profile page opened for signed-in users",
    )
    callback_scheme: str = Field(
        default="vscode",
        description="URI scheme of the host that receives the callback",
    )
    extension_id: str = Field(
        default="codingrules-ai.ruleauth",
        description="Authority component of the callback URI",
    )
    callback_path: str = Field(
        default="/auth/callback",
        description="Registered callback path",
    )
    callback_uri: str = Field(
        default="",
        description="Explicit callback URI (overrides scheme/extension_id)",
    )
    timeout_seconds: float = Field(
        default=300.0,
        ge=10.0,
        description="How long the CLI waits for the redirect to complete",
    )


class RefreshSettings(BaseSettings):
    """Background refresh timing.

    Environment prefix: RULEAUTH_REFRESH__

    ``interval_seconds`` must not exceed ``staleness_threshold_seconds``,
    and the threshold plus two intervals must fit within
    ``token_lifetime_seconds``.
    """

    model_config = SettingsConfigDict(
        env_prefix="RULEAUTH_REFRESH__",
        extra="ignore",
    )

    interval_seconds: float = Field(default=5 * 60, gt=0)
    staleness_threshold_seconds: float = Field(default=50 * 60, gt=0)
    token_lifetime_seconds: float = Field(default=60 * 60, gt=0)

    @model_validator(mode="after")
    def _check_timing(self) -> RefreshSettings:
        check_refresh_timing(
            self.interval_seconds,
            self.staleness_threshold_seconds,
            self.token_lifetime_seconds,
        )
        return self


class StorageSettings(BaseSettings):
    """Session persistence settings.

    Environment prefix: RULEAUTH_STORAGE__
    """

    model_config = SettingsConfigDict(
        env_prefix="RULEAUTH_STORAGE__",
        extra="ignore",
    )

    backend: Literal["memory", "keyring"] = Field(
        default="keyring",
        description="Storage backend: memory or keyring",
    )
    service_name: str = Field(default="ruleauth")
    session_key: str = Field(default="ruleauth.authSession")
    pending_key: str = Field(default="ruleauth.authState")


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: RULEAUTH_LOG__
    Example: RULEAUTH_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="RULEAUTH_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class RuleAuthSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: RULEAUTH__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.ruleauth] section
    3. ./ruleauth.toml (project-level)
    4. ~/.config/ruleauth/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="RULEAUTH__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    login: LoginSettings = Field(default_factory=LoginSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()
        merged = _deep_merge(toml_config, data)
        super().__init__(**merged)

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# ruleauth Configuration", "# Generated by: ruleauth config --toml", ""]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, attr in _SECTIONS},
        )

        for _, section_name in _SECTIONS:
            section_data = all_data.get(section_name, {})
            lines.append(f"[{section_name}]")
            for field_name, field_value in section_data.items():
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, str):
                    value_str = f'"{field_value}"'
                else:
                    value_str = str(field_value)
                lines.append(f"{field_name} = {value_str}")
            section_cls = type(getattr(self, section_name))
            lines.extend(
                f'{rn} = "{_REDACTED}"'
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )
            lines.append("")

        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# ruleauth Environment Variables",
            "# Generated by: ruleauth config --env",
            "",
        ]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, attr in _SECTIONS},
        )

        for env_prefix, attr_name in _SECTIONS:
            section_data = all_data.get(attr_name, {})
            for field_name, field_value in section_data.items():
                env_name = f"RULEAUTH_{env_prefix}__{field_name.upper()}"
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
            section_cls = type(getattr(self, attr_name))
            for redacted_name in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys()):
                env_name = f"RULEAUTH_{env_prefix}__{redacted_name.upper()}"
                lines.append(f'export {env_name}="{_REDACTED}"')

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["ruleauth Configuration", "=" * 60, ""]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, attr in _SECTIONS},
        )

        for _, attr_name in _SECTIONS:
            section_data = all_data.get(attr_name, {})
            lines.append(f"\n{attr_name.title()}")
            lines.append("-" * 40)
            for field_name, field_value in section_data.items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:28} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:28} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> RuleAuthSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return RuleAuthSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> RuleAuthSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
