from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from newsdesk.app.models.publication import Document, SeoMetadata, UploadedAsset
from newsdesk.app.services.cms_client import CmsApiError, CmsClient
from newsdesk.app.services.slugs import generate_slug
from newsdesk.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("newsdesk.document_assembler")

META_TITLE_MAX_LENGTH = 60


class DocumentCreationError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None) -> None:
        super().__init__(message)
        self.status_code = status_code


def select_cover(
    hero: UploadedAsset | None,
    content_assets: Sequence[UploadedAsset],
) -> UploadedAsset | None:
    if hero is not None:
        return hero
    if content_assets:
        return content_assets[0]
    return None


def build_seo_block(
    *,
    title: str,
    seo: SeoMetadata,
    cover: UploadedAsset | None,
) -> dict[str, Any]:
    block: dict[str, Any] = {
        "metaTitle": title[:META_TITLE_MAX_LENGTH],
        "metaDescription": seo.meta_description or "",
        "keywords": seo.keywords or "",
    }
    if cover is not None:
        block["metaImage"] = cover.asset_id
    return block


class DocumentAssembler:
    def __init__(
        self,
        *,
        cms_client: CmsClient,
        slug_locale: str = "fr",
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._cms_client = cms_client
        self._slug_locale = slug_locale
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def new_slug(self, title: str) -> str:
        return generate_slug(title, locale=self._slug_locale)

    def assemble(
        self,
        title: str,
        content: str,
        *,
        slug: str | None = None,
        hero: UploadedAsset | None = None,
        content_assets: Sequence[UploadedAsset] = (),
        seo: SeoMetadata | None = None,
    ) -> Document:
        cover = select_cover(hero, content_assets)
        if cover is not None:
            source = "explicit" if cover is hero else "content"
            LOGGER.info("cover selected asset_id=%s source=%s", cover.asset_id, source)
        return Document(
            title=title,
            slug=slug if slug is not None else self.new_slug(title),
            content=content,
            cover=cover,
            seo=build_seo_block(title=title, seo=seo, cover=cover) if seo is not None else None,
        )

    def submit(self, document: Document) -> int | str:
        """Create the document in one call; the only failure that aborts a submission."""
        try:
            document_id = self._cms_client.create_document(document.to_envelope())
        except CmsApiError as exc:
            LOGGER.error(
                "document creation failed slug=%s status=%s error=%s",
                document.slug,
                exc.status_code,
                exc,
            )
            self._telemetry.emit(
                "document.create.failure",
                slug=document.slug,
                status_code=exc.status_code,
            )
            raise DocumentCreationError(str(exc), status_code=exc.status_code) from exc

        LOGGER.info("document created id=%s slug=%s", document_id, document.slug)
        self._telemetry.emit(
            "document.create.success",
            document_id=str(document_id),
            slug=document.slug,
            has_cover=document.cover is not None,
        )
        return document_id
