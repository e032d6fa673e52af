from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Callable
from typing import Annotated, Any, cast

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import TypeAdapter, ValidationError
from starlette.datastructures import UploadFile
from structlog.contextvars import bind_contextvars, reset_contextvars

from newsdesk.app.config import AppSettings
from newsdesk.app.dependencies import get_publication_service, get_settings
from newsdesk.app.models.publication import (
    ArticleSubmission,
    BufferedImage,
    PublicationResult,
    RemoteImage,
)
from newsdesk.app.models.webhook_contracts import (
    FreeformArticleFields,
    ImageStatsPayload,
    PublicationResponse,
    StructuredArticlePayload,
)
from newsdesk.app.services.document_assembler import DocumentCreationError
from newsdesk.app.services.publication_service import (
    PublicationService,
    SubmissionValidationError,
    first_non_empty,
)

LOGGER = logging.getLogger("newsdesk.api")

FREEFORM_IMAGE_FIELD = "Image"

_TEST_FLAG = TypeAdapter(bool)

router = APIRouter()


def verify_bearer_token(authorization: str | None, expected_token: str | None) -> bool:
    """Compare the token after the first space; the scheme word itself is not checked."""
    if not expected_token or not authorization:
        return False
    parts = authorization.split()
    if len(parts) < 2:
        return False
    return secrets.compare_digest(parts[1].encode("utf-8"), expected_token.encode("utf-8"))


def parse_json_object(raw_body: bytes) -> dict[str, Any]:
    """Parse a webhook body, tolerating raw control characters inside strings."""
    text = raw_body.decode("utf-8", errors="replace")
    try:
        parsed: object = json.loads(text)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(text, strict=False)
        except json.JSONDecodeError as exc:
            raise HTTPException(
                status_code=400,
                detail={"error": "Invalid JSON", "message": str(exc)},
            ) from exc
        LOGGER.info("recovered webhook body containing raw control characters")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return cast(dict[str, Any], parsed)


def is_test_payload(raw_payload: dict[str, Any]) -> bool:
    """Read the `test` flag on its own, so a ping is acknowledged even when
    the rest of the payload would not validate."""
    flag = raw_payload.get("test")
    if flag is None:
        return False
    try:
        return _TEST_FLAG.validate_python(flag)
    except ValidationError:
        return False


def _require_token(request: Request, expected_token: str | None) -> None:
    if not verify_bearer_token(request.headers.get("Authorization"), expected_token):
        LOGGER.warning("webhook rejected: invalid bearer token path=%s", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _run_publication(
    publish: Callable[..., PublicationResult],
    submission: ArticleSubmission,
    **kwargs: Any,
) -> PublicationResult:
    context_tokens = bind_contextvars(article_title=submission.title[:80])
    try:
        return await run_in_threadpool(publish, submission, **kwargs)
    except SubmissionValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DocumentCreationError as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": "Document creation failed", "message": str(exc)},
        ) from exc
    finally:
        reset_contextvars(**context_tokens)


def _to_response(result: PublicationResult) -> PublicationResponse:
    return PublicationResponse(
        success=True,
        message="Article published",
        article_id=result.article_id,
        slug=result.slug,
        images_uploaded=result.images_uploaded,
        image_stats=ImageStatsPayload(**result.image_stats.as_dict()),
    )


@router.post(
    "/webhook/provider1",
    response_model=PublicationResponse,
    tags=["webhooks"],
    operation_id="webhook_structured",
)
async def structured_webhook(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_settings)],
    service: Annotated[PublicationService, Depends(get_publication_service)],
) -> PublicationResponse:
    _require_token(request, settings.structured_webhook_token)

    raw_payload = parse_json_object(await request.body())
    if is_test_payload(raw_payload):
        LOGGER.info("structured webhook test payload acknowledged")
        return PublicationResponse(
            success=True,
            message="Test payload acknowledged; nothing was published",
        )

    try:
        payload = StructuredArticlePayload.model_validate(raw_payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc

    content = first_non_empty(payload.content_html, payload.content_markdown)
    if payload.title is None or content is None:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: title and content_html or content_markdown",
        )

    submission = ArticleSubmission(
        title=payload.title,
        content=content,
        meta_description=payload.meta_description,
        keywords=payload.keywords,
        hero_image=(
            RemoteImage(url=payload.hero_image_url, filename="cover")
            if payload.hero_image_url is not None
            else None
        ),
    )
    result = await _run_publication(
        service.publish_structured,
        submission,
        content_is_html=first_non_empty(payload.content_html) is not None,
    )
    return _to_response(result)


@router.post(
    "/webhook/make",
    response_model=PublicationResponse,
    tags=["webhooks"],
    operation_id="webhook_freeform",
)
async def freeform_webhook(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_settings)],
    service: Annotated[PublicationService, Depends(get_publication_service)],
) -> PublicationResponse:
    _require_token(request, settings.freeform_webhook_token)

    image: BufferedImage | None = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        raw_fields: dict[str, Any] = parse_json_object(await request.body())
    else:
        form = await request.form()
        raw_fields = {key: value for key, value in form.items() if isinstance(value, str)}
        upload = form.get(FREEFORM_IMAGE_FIELD)
        if isinstance(upload, UploadFile):
            image_bytes = await upload.read()
            if image_bytes:
                LOGGER.info("cover attachment received bytes=%s", len(image_bytes))
                image = BufferedImage(
                    content=image_bytes,
                    filename=upload.filename or "cover",
                    declared_mime=upload.content_type,
                )

    fields = FreeformArticleFields.model_validate(raw_fields)
    if fields.title is None or fields.content is None:
        raise HTTPException(status_code=400, detail="Missing required fields: Title and Content")

    submission = ArticleSubmission(title=fields.title, content=fields.content, hero_image=image)
    result = await _run_publication(service.publish_freeform, submission)
    return _to_response(result)
