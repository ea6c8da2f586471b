from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from tuberesolve.app.services.content_classifier import DEFAULT_SENSITIVE_TERMS
from tuberesolve.app.services.provider_registry import (
    DEFAULT_MIRROR_BASE_URLS,
    DEFAULT_OEMBED_PROXY_URL,
    DEFAULT_YOUTUBE_API_BASE_URL,
)

DEFAULT_DATA_DIR = ".tuberesolve"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("overrides_path", Path("overrides.yaml")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{TUBERESOLVE_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return value


class AppSettings(BaseSettings):
    """
    Runtime configuration for the resolver.

    Every option is read from `TUBERESOLVE_*` environment variables (or a
    `.env` file). The mirror list and sensitive terms are static for the life
    of the process; only the credential override lives in a separate local
    file (see `overrides_path`).
    """

    model_config = SettingsConfigDict(
        env_prefix="TUBERESOLVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root directory for local state and logs.",
    )
    overrides_path: Path = Field(
        default=_default_in_data_dir(Path("overrides.yaml")),
        description=(
            "YAML file holding the user-supplied API key override (`api_key`). "
            f"{_data_dir_default_note(Path('overrides.yaml'))}"
        ),
    )

    # Providers.
    default_api_key: str | None = Field(
        default=None,
        description="Built-in YouTube Data API key used when no local override is saved.",
    )
    youtube_api_base_url: str = Field(
        default=DEFAULT_YOUTUBE_API_BASE_URL,
        description="YouTube Data API v3 base URL.",
    )
    mirror_base_urls: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_MIRROR_BASE_URLS,
        description="Ordered Invidious instance base URLs (comma-separated in env).",
    )
    oembed_proxy_url: str | None = Field(
        default=DEFAULT_OEMBED_PROXY_URL,
        description="CORS proxy used for the title-only oEmbed fallback. Empty disables it.",
    )
    provider_timeout_seconds: float = Field(
        default=6.0,
        description="Per-provider attempt timeout.",
    )
    search_max_results: int = Field(
        default=16,
        ge=1,
        le=50,
        description="Maximum items returned per search page.",
    )
    channel_videos_max_results: int = Field(
        default=15,
        ge=1,
        le=50,
        description="Maximum items returned per channel videos page.",
    )

    # Content screening.
    sensitive_terms: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_SENSITIVE_TERMS,
        description="Terms that flag a search result as sensitive (comma-separated in env).",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("youtube_api_base_url", mode="before")
    @classmethod
    def _normalize_api_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("TUBERESOLVE_YOUTUBE_API_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("TUBERESOLVE_YOUTUBE_API_BASE_URL must not be empty.")
        return normalized

    @field_validator("mirror_base_urls", mode="before")
    @classmethod
    def _normalize_mirror_base_urls(cls, value: Any) -> tuple[str, ...]:
        raw_values = _split_csv(value)
        if not isinstance(raw_values, list | tuple):
            raise ValueError("TUBERESOLVE_MIRROR_BASE_URLS must be a comma-separated list.")
        normalized: list[str] = []
        for raw_value in raw_values:
            if not isinstance(raw_value, str) or not raw_value.strip().rstrip("/"):
                raise ValueError("TUBERESOLVE_MIRROR_BASE_URLS must not contain empty URLs.")
            url = raw_value.strip().rstrip("/")
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Mirror URL must be http(s): {url}")
            if url not in normalized:
                normalized.append(url)
        return tuple(normalized)

    @field_validator("sensitive_terms", mode="before")
    @classmethod
    def _normalize_sensitive_terms(cls, value: Any) -> tuple[str, ...]:
        raw_values = _split_csv(value)
        if not isinstance(raw_values, list | tuple):
            raise ValueError("TUBERESOLVE_SENSITIVE_TERMS must be a comma-separated list.")
        return tuple(
            term.strip().lower()
            for term in raw_values
            if isinstance(term, str) and term.strip()
        )

    @field_validator("oembed_proxy_url", mode="before")
    @classmethod
    def _normalize_oembed_proxy_url(cls, value: Any) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            return None
        return normalized.rstrip("/")

    @field_validator("provider_timeout_seconds", mode="after")
    @classmethod
    def _clamp_timeout(cls, value: float) -> float:
        return max(0.5, value)

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("TUBERESOLVE_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("TUBERESOLVE_TELEMETRY_SINK must be set to: none, log.")

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("default_api_key", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
