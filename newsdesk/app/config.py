from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".newsdesk"
SLUG_LOCALES: frozenset[str] = frozenset({"fr", "en"})
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (("log_dir", Path("logs")),)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


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


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from a `NEWSDESK_*` environment variable (or `.env`)
    and the instance is frozen once built, so components receive it by
    injection and never mutate it.
    """

    model_config = SettingsConfigDict(
        env_prefix="NEWSDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # CMS backend.
    cms_base_url: str | None = Field(
        default=None,
        description="Base URL of the CMS (asset and document endpoints live under `/api`).",
    )
    cms_token: str | None = Field(
        default=None,
        description="Bearer token used for every CMS call.",
    )
    cms_content_type: str = Field(
        default="news",
        description="Collection path segment documents are created in (`/api/<type>`).",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for remote image downloads and CMS requests.",
    )
    image_upload_concurrency: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Worker pool size for per-image re-hosting. 1 keeps strict document order.",
    )
    slug_locale: str = Field(
        default="fr",
        description="Locale used for slug symbol transliteration.",
    )

    # Webhook authentication.
    structured_webhook_token: str | None = Field(
        default=None,
        description="Bearer token expected on `/webhook/provider1` (structured JSON payloads).",
    )
    freeform_webhook_token: str | None = Field(
        default=None,
        description="Bearer token expected on `/webhook/make` (plain-text form payloads).",
    )

    # Paths and logging.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs.",
    )
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description="Directory for log files. Defaults to `${NEWSDESK_DATA_DIR}/logs`.",
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

    @field_validator("cms_base_url", mode="before")
    @classmethod
    def _normalize_cms_base_url(cls, value: Any) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            return None
        return normalized.rstrip("/")

    @field_validator("cms_content_type", mode="before")
    @classmethod
    def _normalize_cms_content_type(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("NEWSDESK_CMS_CONTENT_TYPE must be a string.")
        normalized = value.strip().strip("/")
        if not normalized:
            raise ValueError("NEWSDESK_CMS_CONTENT_TYPE must not be empty.")
        return normalized

    @field_validator("slug_locale", mode="before")
    @classmethod
    def _normalize_slug_locale(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("NEWSDESK_SLUG_LOCALE must be a string.")
        normalized = value.strip().lower()
        if normalized in SLUG_LOCALES:
            return normalized
        raise ValueError("NEWSDESK_SLUG_LOCALE must be set to: en, fr.")

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("NEWSDESK_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("NEWSDESK_TELEMETRY_SINK must be set to: none, log.")

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

    @field_validator(
        "cms_token",
        "structured_webhook_token",
        "freeform_webhook_token",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_cms_configuration(*, cms_base_url: str | None, cms_token: str | None) -> None:
    errors: list[str] = []

    if cms_base_url is None:
        errors.append("NEWSDESK_CMS_BASE_URL is required.")
    elif not cms_base_url.startswith(("http://", "https://")):
        errors.append(f"NEWSDESK_CMS_BASE_URL must be an absolute http/https URL: {cms_base_url}")
    if cms_token is None:
        errors.append("NEWSDESK_CMS_TOKEN is required.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid CMS configuration:\n{bullets}")


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


def load_settings(*, validate_cms: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_cms:
        _validate_cms_configuration(
            cms_base_url=settings.cms_base_url,
            cms_token=settings.cms_token,
        )

    return settings
