"""Configuration management for the library engine.

Settings come from the environment (``LIBRARY_ENGINE_`` prefix) or a local
``.env`` file, validated with Pydantic v2:
1. Library identity - the name printed on reports
2. Storage - where the binary collections, text export and report live
3. Id allocation - the reserved base for principal ids
4. Logging - level and debug mode for the CLI
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .ids import DEFAULT_ID_BASE


class LibrarySettings(BaseSettings):
    """Library engine configuration.

    Paths for the text export and the report are resolved against
    ``data_directory`` when they are relative.
    """

    model_config = SettingsConfigDict(
        # LIBRARY_ENGINE_DATA_DIRECTORY, LIBRARY_ENGINE_LOG_LEVEL, ...
        env_prefix="LIBRARY_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Library Metadata ===

    library_name: str = Field(
        default="City Library",
        description="Library name printed on reports",
        min_length=1,
    )

    # === Storage ===

    data_directory: Path = Field(
        default=Path("data"),
        description="Directory holding the persisted collections",
    )

    books_text_file: Path = Field(
        default=Path("books.txt"),
        description="Pipe-delimited book export, relative to the data directory",
    )

    report_file: Path = Field(
        default=Path("library_report.txt"),
        description="Report output file, relative to the data directory",
    )

    # === Id Allocation ===

    id_base: int = Field(
        default=DEFAULT_ID_BASE,
        description="Reserved id base; the first principal gets id_base + 1",
        ge=0,
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    # === Validation Methods ===

    @field_validator("data_directory")
    @classmethod
    def validate_data_directory(cls, v: Path) -> Path:
        """Ensure the data directory exists."""
        abs_path = v.absolute()
        abs_path.mkdir(parents=True, exist_ok=True)
        if not abs_path.is_dir():
            raise ValueError(f"Data directory {abs_path} is not accessible")
        return abs_path

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    # === Computed Properties ===

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug or self.log_level == "DEBUG"

    @property
    def books_text_path(self) -> Path:
        return self._resolve(self.books_text_file)

    @property
    def report_path(self) -> Path:
        return self._resolve(self.report_file)

    def _resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.data_directory / path


# === Global Settings Instance ===


class _SettingsStore:
    """Internal storage for the settings singleton."""

    _instance: LibrarySettings | None = None


def get_settings() -> LibrarySettings:
    """Get or create the global settings instance."""
    if _SettingsStore._instance is None:  # type: ignore[reportPrivateUsage]
        _SettingsStore._instance = LibrarySettings()  # type: ignore[reportPrivateUsage]
    return _SettingsStore._instance  # type: ignore[reportPrivateUsage]


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    _SettingsStore._instance = None  # type: ignore[reportPrivateUsage]
