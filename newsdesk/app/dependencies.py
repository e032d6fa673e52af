from __future__ import annotations

from functools import lru_cache

from newsdesk.app.config import AppSettings, load_settings
from newsdesk.app.services.cms_client import CmsClient
from newsdesk.app.services.document_assembler import DocumentAssembler
from newsdesk.app.services.image_rewriter import ContentImageRewriter
from newsdesk.app.services.image_transport import ImageTransport
from newsdesk.app.services.publication_service import PublicationService
from newsdesk.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_cms_client() -> CmsClient:
    settings = get_settings()
    assert settings.cms_base_url is not None
    assert settings.cms_token is not None
    return CmsClient(
        base_url=settings.cms_base_url,
        token=settings.cms_token,
        content_type=settings.cms_content_type,
        timeout_seconds=settings.request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_publication_service() -> PublicationService:
    settings = get_settings()
    telemetry = get_telemetry()
    cms_client = get_cms_client()
    transport = ImageTransport(cms_client=cms_client, telemetry=telemetry)

    return PublicationService(
        transport=transport,
        rewriter=ContentImageRewriter(
            transport=transport,
            max_workers=settings.image_upload_concurrency,
        ),
        assembler=DocumentAssembler(
            cms_client=cms_client,
            slug_locale=settings.slug_locale,
            telemetry=telemetry,
        ),
        telemetry=telemetry,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_publication_service.cache_clear()
    get_cms_client.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
