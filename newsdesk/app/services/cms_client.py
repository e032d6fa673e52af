from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import requests

from newsdesk.app.models.publication import UploadedAsset

LOGGER = logging.getLogger("newsdesk.cms")

_ERROR_SNIPPET_LENGTH = 300


class CmsApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class DownloadedImage:
    content: bytes
    content_type: str | None


class CmsClient:
    """Thin HTTP client for the CMS asset and document endpoints.

    Every call opens its own session and closes it before returning, so no
    pooled connection outlives the call.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        content_type: str = "news",
        timeout_seconds: float = 30.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._content_type = content_type.strip("/")
        self._timeout_seconds = max(1.0, float(timeout_seconds))
        self._session_factory = session_factory

    @property
    def base_url(self) -> str:
        return self._base_url

    def public_url(self, relative_url: str) -> str:
        return f"{self._base_url}{relative_url}"

    def download(self, url: str) -> DownloadedImage:
        try:
            with self._session_factory() as session:
                response = session.get(url, timeout=self._timeout_seconds)
        except requests.RequestException as exc:
            raise CmsApiError(f"Image download failed: {exc}", status_code=None) from exc

        if not 200 <= response.status_code < 300:
            raise CmsApiError(
                f"Image download failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return DownloadedImage(
            content=response.content,
            content_type=_strip_mime_parameters(response.headers.get("Content-Type")),
        )

    def upload_asset(self, *, content: bytes, filename: str, mime_type: str) -> UploadedAsset:
        response = self._send(
            "POST",
            "/api/upload",
            files={"files": (filename, content, mime_type)},
        )
        payload = _decode_json(response)
        if not isinstance(payload, list) or not payload:
            raise CmsApiError(
                "CMS upload response is not a non-empty list.",
                status_code=response.status_code,
            )
        first = cast(list[Any], payload)[0]
        if not isinstance(first, dict):
            raise CmsApiError(
                "CMS upload response entry is not an object.",
                status_code=response.status_code,
            )
        record = cast(dict[str, Any], first)
        asset_id = record.get("id")
        asset_url = record.get("url")
        if asset_id is None or not isinstance(asset_url, str) or not asset_url:
            raise CmsApiError(
                "CMS upload response is missing `id` or `url`.",
                status_code=response.status_code,
            )
        mime = record.get("mime")
        return UploadedAsset(
            asset_id=asset_id,
            url=asset_url,
            mime=mime if isinstance(mime, str) else mime_type,
        )

    def create_document(self, envelope: dict[str, Any]) -> int | str:
        response = self._send("POST", f"/api/{self._content_type}", json=envelope)
        payload = _decode_json(response)
        data = payload.get("data") if isinstance(payload, dict) else None
        document_id = data.get("id") if isinstance(data, dict) else None
        if document_id is None:
            raise CmsApiError(
                "CMS document response is missing `data.id`.",
                status_code=response.status_code,
            )
        return cast(int | str, document_id)

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}
        try:
            with self._session_factory() as session:
                response = session.request(
                    method,
                    url,
                    headers=headers,
                    timeout=self._timeout_seconds,
                    **kwargs,
                )
        except requests.RequestException as exc:
            raise CmsApiError(f"CMS request failed: {exc}", status_code=None) from exc

        if not 200 <= response.status_code < 300:
            message = _extract_error_message(response)
            LOGGER.debug(
                "cms request rejected method=%s path=%s status=%s",
                method,
                path,
                response.status_code,
            )
            raise CmsApiError(
                f"CMS API request failed: {message}",
                status_code=response.status_code,
            )
        return response


def _decode_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise CmsApiError(
            "CMS response is not valid JSON.",
            status_code=response.status_code,
        ) from exc


def _extract_error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = cast(dict[str, Any], payload).get("error")
        if isinstance(error, dict):
            message = cast(dict[str, Any], error).get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        if isinstance(error, str) and error.strip():
            return error.strip()
    text = (response.text or "").strip()
    if text:
        return text[:_ERROR_SNIPPET_LENGTH]
    return f"HTTP {response.status_code}"


def _strip_mime_parameters(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.split(";", 1)[0].strip().lower()
    return normalized or None
