from __future__ import annotations

import logging
from dataclasses import replace

from newsdesk.app.models.publication import (
    ArticleSubmission,
    PublicationResult,
    RewriteResult,
    SeoMetadata,
    UploadedAsset,
)
from newsdesk.app.services.document_assembler import DocumentAssembler
from newsdesk.app.services.html_normalizer import normalize_html
from newsdesk.app.services.image_rewriter import ContentImageRewriter
from newsdesk.app.services.image_transport import ImageTransport
from newsdesk.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("newsdesk.publication")

COVER_FILENAME_PREFIX = "cover"


class SubmissionValidationError(ValueError):
    pass


def text_to_paragraphs(text: str) -> str:
    """One `<p>` per non-blank line, joined by `<br>`. Lines are not escaped."""
    lines = (line.strip() for line in text.split("\n"))
    return "<br>".join(f"<p>{line}</p>" for line in lines if line)


def first_non_empty(*values: str | None) -> str | None:
    for value in values:
        if value is not None and value.strip():
            return value
    return None


class PublicationService:
    def __init__(
        self,
        *,
        transport: ImageTransport,
        rewriter: ContentImageRewriter,
        assembler: DocumentAssembler,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._transport = transport
        self._rewriter = rewriter
        self._assembler = assembler
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def publish_structured(
        self,
        submission: ArticleSubmission,
        *,
        content_is_html: bool = True,
    ) -> PublicationResult:
        """Publish pre-formed HTML (normalized first) or Markdown.

        Markdown is kept byte for byte apart from the `src` of re-hosted inline images.
        """
        _validate(submission)
        content = normalize_html(submission.content) if content_is_html else submission.content
        return self._publish(
            replace(submission, content=content),
            seo=SeoMetadata(
                meta_description=submission.meta_description,
                keywords=submission.keywords,
            ),
            variant="structured",
            preserve_markup=not content_is_html,
        )

    def publish_freeform(self, submission: ArticleSubmission) -> PublicationResult:
        """Publish plain multi-line text; no heading or hero stripping applies."""
        _validate(submission)
        return self._publish(
            replace(submission, content=text_to_paragraphs(submission.content)),
            seo=None,
            variant="freeform",
        )

    def _publish(
        self,
        submission: ArticleSubmission,
        *,
        seo: SeoMetadata | None,
        variant: str,
        preserve_markup: bool = False,
    ) -> PublicationResult:
        slug = self._assembler.new_slug(submission.title)
        LOGGER.info("processing article variant=%s slug=%s", variant, slug)

        telemetry = self._telemetry.bind(variant=variant, slug=slug)
        with telemetry.timed("publication") as outcome:
            rewritten: RewriteResult = self._rewriter.rewrite_images(
                submission.content,
                preserve_markup=preserve_markup,
            )
            outcome.update(
                images_total=rewritten.stats.total,
                images_uploaded=rewritten.stats.success,
                images_failed=rewritten.stats.failed,
            )
            hero = self._host_hero(submission, slug=slug)
            outcome["explicit_cover"] = hero is not None

            document = self._assembler.assemble(
                submission.title,
                rewritten.html,
                slug=slug,
                hero=hero,
                content_assets=rewritten.assets,
                seo=seo,
            )
            document_id = self._assembler.submit(document)
            outcome["document_id"] = str(document_id)

        return PublicationResult(
            article_id=document_id,
            slug=document.slug,
            images_uploaded=len(rewritten.assets),
            image_stats=rewritten.stats,
            cover_id=document.cover.asset_id if document.cover is not None else None,
        )

    def _host_hero(self, submission: ArticleSubmission, *, slug: str) -> UploadedAsset | None:
        hero_source = submission.hero_image
        if hero_source is None:
            return None
        hero_source = replace(hero_source, filename=f"{COVER_FILENAME_PREFIX}-{slug}")
        hero = self._transport.fetch_and_host(hero_source)
        if hero is None:
            LOGGER.warning("explicit cover upload failed; falling back to content images")
        return hero


def _validate(submission: ArticleSubmission) -> None:
    missing: list[str] = []
    if not submission.title.strip():
        missing.append("title")
    if not submission.content.strip():
        missing.append("content")
    if missing:
        raise SubmissionValidationError(f"Missing required fields: {', '.join(missing)}")
