from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class RemoteImage:
    url: str
    filename: str


@dataclass(frozen=True)
class BufferedImage:
    content: bytes
    filename: str
    declared_mime: str | None = None


ImageSource = RemoteImage | BufferedImage


@dataclass(frozen=True)
class UploadedAsset:
    asset_id: int | str
    url: str
    mime: str | None = None


@dataclass(frozen=True)
class ImageStats:
    total: int = 0
    success: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"total": self.total, "success": self.success, "failed": self.failed}


@dataclass(frozen=True)
class RewriteResult:
    html: str
    assets: tuple[UploadedAsset, ...]
    stats: ImageStats


@dataclass(frozen=True)
class SeoMetadata:
    meta_description: str | None = None
    keywords: str | None = None


@dataclass(frozen=True)
class ArticleSubmission:
    """One incoming article, as handed over by an ingress adapter."""

    title: str
    content: str
    meta_description: str | None = None
    keywords: str | None = None
    hero_image: ImageSource | None = None


@dataclass(frozen=True)
class Document:
    title: str
    slug: str
    content: str
    cover: UploadedAsset | None = None
    seo: dict[str, Any] | None = None

    def to_envelope(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "title": self.title,
            "slug": self.slug,
            "content": self.content,
        }
        if self.cover is not None:
            data["cover"] = self.cover.asset_id
        if self.seo is not None:
            data["seo"] = dict(self.seo)
        return {"data": data}


@dataclass(frozen=True)
class PublicationResult:
    article_id: int | str
    slug: str
    images_uploaded: int
    image_stats: ImageStats = field(default_factory=ImageStats)
    cover_id: int | str | None = None
