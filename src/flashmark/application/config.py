from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from flashmark.domain.constants import REQUEST_TIMEOUT

CONFIG_FILES = [
    Path.home() / ".config/flashmark/config.toml",
    Path.home() / ".flashmark.toml",
]


class AppConfig(BaseSettings):
    """
    Runtime configuration for the flashmark CLI and server.
    Supports loading from:
    1. Config file (~/.config/flashmark/config.toml or ~/.flashmark.toml)
    2. Environment variables (FLASHMARK_*)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASHMARK_",
        extra="ignore",
    )

    # Storage
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/flashmark/flashmark.db"
    )
    authority_database_path: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/flashmark/authority.db"
    )
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".config/flashmark/logs")

    # Vault
    watched_paths: list[Path] = Field(default_factory=list)

    # Remote
    remote_url: str = "http://localhost:8787"
    device_id: str | None = None
    device_token: str | None = None
    request_timeout: float = REQUEST_TIMEOUT

    # Server
    host: str = "127.0.0.1"
    port: int = 8787

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        # First source wins: CLI overrides, then env, then the TOML file.
        sources: tuple[PydanticBaseSettingsSource, ...] = (init_settings, env_settings)
        if toml_file:
            sources += (TomlConfigSettingsSource(settings_cls, toml_file=toml_file),)
        return sources

    @field_validator("database_path", "authority_database_path", "log_dir", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("watched_paths", mode="before")
    @classmethod
    def resolve_watched_paths(cls, v: Any) -> list[Path]:
        if v is None:
            return []
        if isinstance(v, (str, Path)):
            v = [v]
        return [Path(p).expanduser().resolve() for p in v]

    @field_validator("remote_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/flashmark/config.toml (if exists)
    3. Environment variables (FLASHMARK_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if not config.watched_paths:
        config.watched_paths = [Path.cwd()]

    return config
