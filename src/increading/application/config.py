from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from increading.domain.constants import (
    ARTICLE_DIRECTORY,
    CARD_DIRECTORY,
    DATA_DIR_NAME,
    DATABASE_FILE_NAME,
    DEFAULT_PRIORITY,
    DEFAULT_QUEUE_LIMIT,
    DEFAULT_ROLLOVER_HOURS,
    MAX_PRIORITY,
    MIN_PRIORITY,
    SNIPPET_DIRECTORY,
)


class AppConfig(BaseSettings):
    """
    Configuration model for increading.
    Supports loading from:
    1. Environment variables (INCREADING_*)
    2. Config file (~/.config/increading/config.toml)
    3. Manual overrides (CLI / HTTP)
    """

    model_config = SettingsConfigDict(
        env_prefix="INCREADING_",
        extra="ignore",
    )

    # Paths
    vault_root: Path | None = None
    data_dir: Path | None = None
    database_file: str = DATABASE_FILE_NAME
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".config/increading/logs")

    # Managed folders (vault-relative)
    snippet_dir: str = SNIPPET_DIRECTORY
    article_dir: str = ARTICLE_DIRECTORY
    card_dir: str = CARD_DIRECTORY

    # Scheduling
    rollover_hours: int = DEFAULT_ROLLOVER_HOURS
    default_priority: int = DEFAULT_PRIORITY
    default_limit: int = DEFAULT_QUEUE_LIMIT
    desired_retention: float = 0.9
    enable_fuzzing: bool = False

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

        # First existing file wins; Path.home() is re-read so tests can move HOME.
        toml_file = None
        for f in [
            Path.home() / ".config/increading/config.toml",
            Path.home() / ".increading.toml",
        ]:
            if f.exists():
                toml_file = f
                break

        # Earlier sources take precedence: overrides, then env, then the file.
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("vault_root", "data_dir", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path | None:
        if v is None:
            return None
        return Path(v).expanduser().resolve()

    @field_validator("rollover_hours")
    @classmethod
    def check_rollover(cls, v: int) -> int:
        if not 0 <= v < 24:
            raise ValueError("rollover_hours must be between 0 and 23")
        return v

    @field_validator("default_priority")
    @classmethod
    def check_priority(cls, v: int) -> int:
        if not MIN_PRIORITY <= v <= MAX_PRIORITY:
            raise ValueError(f"default_priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")
        return v

    @field_validator("default_limit")
    @classmethod
    def check_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("default_limit must be positive")
        return v

    @property
    def database_path(self) -> Path:
        assert self.data_dir is not None
        return self.data_dir / self.database_file


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/increading/config.toml (if exists)
    3. Environment variables (INCREADING_*)
    4. cli_overrides (non-None values passed from Typer or the HTTP layer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.vault_root is None:
        config.vault_root = Path.cwd().resolve()

    if config.data_dir is None:
        config.data_dir = config.vault_root / DATA_DIR_NAME

    return config
