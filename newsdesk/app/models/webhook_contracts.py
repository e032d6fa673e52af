from __future__ import annotations

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


class StructuredArticlePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str | None = None
    content_html: str | None = None
    content_markdown: str | None = None
    meta_description: str | None = Field(default=None, alias="metaDescription")
    keywords: str | None = None
    hero_image_url: str | None = Field(default=None, alias="heroImageUrl")
    test: bool = False

    @field_validator("title", "meta_description", "keywords", mode="before")
    @classmethod
    def _normalize_optional_fields(cls, value: object) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("hero_image_url", mode="before")
    @classmethod
    def _validate_hero_image_url(cls, value: object) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            return None
        parsed = urlparse(normalized)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("heroImageUrl must be an absolute http/https URL")
        return normalized


class FreeformArticleFields(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str | None = Field(default=None, alias="Title")
    content: str | None = Field(default=None, alias="Content")

    @field_validator("title", mode="before")
    @classmethod
    def _normalize_title(cls, value: object) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("content", mode="before")
    @classmethod
    def _normalize_content(cls, value: object) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        return value


class ImageStatsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total: int
    success: int
    failed: int


class PublicationResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str
    article_id: int | str | None = Field(default=None, serialization_alias="articleId")
    slug: str | None = None
    images_uploaded: int = Field(default=0, serialization_alias="imagesUploaded")
    image_stats: ImageStatsPayload | None = Field(default=None, serialization_alias="imageStats")

