from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass

from newsdesk.app.models.publication import (
    BufferedImage,
    ImageSource,
    RemoteImage,
    UploadedAsset,
)
from newsdesk.app.services.cms_client import CmsApiError, CmsClient
from newsdesk.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("newsdesk.image_transport")

DEFAULT_DECLARED_MIME = "application/octet-stream"
DEFAULT_EXTENSION = "png"


@dataclass(frozen=True)
class DetectedImageType:
    mime: str
    extension: str


_IMAGE_SIGNATURES: tuple[tuple[bytes, DetectedImageType], ...] = (
    (b"\x89PNG", DetectedImageType(mime="image/png", extension="png")),
    (b"\xff\xd8\xff", DetectedImageType(mime="image/jpeg", extension="jpg")),
    (b"GIF", DetectedImageType(mime="image/gif", extension="gif")),
    (b"RIFF", DetectedImageType(mime="image/webp", extension="webp")),
)


def detect_image_type(content: bytes) -> DetectedImageType | None:
    """Classify an image from its leading bytes, ignoring any declared type."""
    for signature, detected in _IMAGE_SIGNATURES:
        if content.startswith(signature):
            return detected
    return None


def extension_for_mime(mime: str | None) -> str:
    if not mime:
        return DEFAULT_EXTENSION
    guessed = mimetypes.guess_extension(mime, strict=False)
    if guessed:
        return guessed.lstrip(".")
    _, _, subtype = mime.partition("/")
    subtype = subtype.strip()
    return subtype or DEFAULT_EXTENSION


def ensure_extension(filename: str, extension: str) -> str:
    if "." in filename:
        return filename
    return f"{filename}.{extension}"


class ImageTransport:
    """Downloads or accepts image bytes and re-hosts them in the CMS asset store.

    Every failure is soft: the caller gets ``None`` and keeps going.
    """

    def __init__(
        self,
        *,
        cms_client: CmsClient,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._cms_client = cms_client
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def cms_client(self) -> CmsClient:
        return self._cms_client

    def fetch_and_host(self, source: ImageSource) -> UploadedAsset | None:
        if isinstance(source, RemoteImage):
            return self._fetch_remote(source)
        return self.host_buffer(source)

    def host_buffer(self, source: BufferedImage) -> UploadedAsset | None:
        declared_mime = source.declared_mime or DEFAULT_DECLARED_MIME
        detected = detect_image_type(source.content)
        if detected is not None:
            mime = detected.mime
            extension = detected.extension
        else:
            mime = declared_mime
            extension = extension_for_mime(declared_mime)
        filename = ensure_extension(source.filename, extension)

        LOGGER.info(
            "uploading image filename=%s mime=%s bytes=%s",
            filename,
            mime,
            len(source.content),
        )
        try:
            asset = self._cms_client.upload_asset(
                content=source.content,
                filename=filename,
                mime_type=mime,
            )
        except CmsApiError as exc:
            LOGGER.warning(
                "image upload failed filename=%s status=%s error=%s",
                filename,
                exc.status_code,
                exc,
            )
            self._telemetry.emit(
                "image.host.failure",
                stage="upload",
                filename=filename,
                status_code=exc.status_code,
            )
            return None

        LOGGER.info("image uploaded asset_id=%s url=%s", asset.asset_id, asset.url)
        self._telemetry.emit(
            "image.host.success",
            filename=filename,
            asset_id=str(asset.asset_id),
            mime=mime,
        )
        return asset

    def _fetch_remote(self, source: RemoteImage) -> UploadedAsset | None:
        LOGGER.info("downloading image url=%s", source.url)
        try:
            downloaded = self._cms_client.download(source.url)
        except CmsApiError as exc:
            LOGGER.warning(
                "image download failed url=%s status=%s error=%s",
                source.url,
                exc.status_code,
                exc,
            )
            self._telemetry.emit(
                "image.host.failure",
                stage="download",
                url=source.url,
                status_code=exc.status_code,
            )
            return None

        return self.host_buffer(
            BufferedImage(
                content=downloaded.content,
                filename=source.filename,
                declared_mime=downloaded.content_type,
            )
        )
