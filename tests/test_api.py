from __future__ import annotations

import json
import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest
from fakes import (
    CMS_BASE_URL,
    FIXED_TIMESTAMP_MS,
    FREEFORM_TOKEN,
    JPEG_BYTES,
    PNG_BYTES,
    STRUCTURED_TOKEN,
    FakeCmsSession,
    FakeResponse,
    build_publication_service,
)
from fastapi.testclient import TestClient

from newsdesk.app.api.routes import parse_json_object, verify_bearer_token
from newsdesk.app.dependencies import get_publication_service, reset_cached_dependencies
from newsdesk.app.main import create_app

STRUCTURED_HEADERS = {"Authorization": f"Bearer {STRUCTURED_TOKEN}"}
FREEFORM_HEADERS = {"Authorization": f"Bearer {FREEFORM_TOKEN}"}


@contextmanager
def _client_with_env(
    cms_session: FakeCmsSession,
    monkeypatch: pytest.MonkeyPatch,
    env: dict[str, str],
) -> Iterator[TestClient]:
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    reset_cached_dependencies()
    app = create_app()
    app.dependency_overrides[get_publication_service] = lambda: build_publication_service(
        cms_session
    )
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        reset_cached_dependencies()


def _post_structured(client: TestClient, payload: dict[str, Any]) -> Any:
    return client.post("/webhook/provider1", json=payload, headers=STRUCTURED_HEADERS)


def test_verify_bearer_token() -> None:
    assert verify_bearer_token("Bearer secret", "secret")
    assert verify_bearer_token("Token secret", "secret")
    assert not verify_bearer_token("Bearer other", "secret")
    assert not verify_bearer_token("secret", "secret")
    assert not verify_bearer_token(None, "secret")
    assert not verify_bearer_token("Bearer secret", None)
    assert not verify_bearer_token("Bearer ", "")


def test_parse_json_object_recovers_raw_control_characters() -> None:
    parsed = parse_json_object(b'{"title": "T", "content_html": "<p>a\nb\tc</p>"}')

    assert parsed == {"title": "T", "content_html": "<p>a\nb\tc</p>"}


@pytest.mark.parametrize("path", ["/ping", "/health"])
def test_health_endpoints(client: TestClient, path: str) -> None:
    response = client.get(path, headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "message": "Webhook news endpoint is running"}
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer wrong-token"},
        {"Authorization": STRUCTURED_TOKEN},
        {"Authorization": f"Bearer {FREEFORM_TOKEN}"},
    ],
)
def test_structured_webhook_rejects_bad_tokens(
    client: TestClient, cms_session: FakeCmsSession, headers: dict[str, str]
) -> None:
    response = client.post(
        "/webhook/provider1",
        json={"title": "T", "content_html": "<p>x</p>"},
        headers=headers,
    )

    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized"}
    assert cms_session.request_headers == []


def test_structured_webhook_publishes_article(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    cms_session.add_image("http://h/chart.png", PNG_BYTES, "image/png")

    response = _post_structured(
        client,
        {
            "title": "Rates fall in 2025",
            "content_html": (
                "<h1>Rates fall in 2025</h1><img src='http://h/hero.jpg'><p>body</p>"
                "<h2>Section</h2><p>more</p><img src='http://h/chart.png'>"
            ),
            "metaDescription": "Mortgage rates keep falling",
            "keywords": "rates,mortgage",
            "provider_internal_id": "ignored",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert re.fullmatch(r"rates-fall-in-2025-[0-9a-z]{6}", body["slug"])
    assert body == {
        "success": True,
        "message": "Article published",
        "articleId": 42,
        "slug": body["slug"],
        "imagesUploaded": 1,
        "imageStats": {"total": 1, "success": 1, "failed": 0},
    }
    assert cms_session.downloaded_urls == ["http://h/chart.png"]
    data = cms_session.documents[0]["data"]
    assert data["title"] == "Rates fall in 2025"
    assert data["content"] == (
        "<p>body</p><br><h2>Section</h2><p>more</p>"
        f'<img src="{CMS_BASE_URL}/uploads/content_{FIXED_TIMESTAMP_MS}_0_chart.png">'
    )
    assert data["cover"] == 100
    assert data["seo"] == {
        "metaTitle": "Rates fall in 2025",
        "metaDescription": "Mortgage rates keep falling",
        "keywords": "rates,mortgage",
        "metaImage": 100,
    }


def test_structured_webhook_uses_hero_image_url(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    cms_session.add_image("https://h/hero.jpg", JPEG_BYTES)

    response = _post_structured(
        client,
        {
            "title": "Hero",
            "content_html": "<p>text only</p>",
            "heroImageUrl": "https://h/hero.jpg",
        },
    )

    assert response.status_code == 200
    assert response.json()["imagesUploaded"] == 0
    slug = response.json()["slug"]
    assert cms_session.uploads[0]["filename"] == f"cover-{slug}.jpg"
    assert cms_session.documents[0]["data"]["cover"] == 100


def test_structured_webhook_accepts_markdown(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    response = _post_structured(
        client,
        {"title": "Markdown", "content_markdown": "# Heading\n\nBody", "content_html": "  "},
    )

    assert response.status_code == 200
    assert cms_session.documents[0]["data"]["content"] == "# Heading\n\nBody"


def test_structured_webhook_keeps_markdown_text_around_inline_images(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    cms_session.add_image("https://img.example.com/chart.png", PNG_BYTES, "image/png")
    markdown = (
        "# Rates\n\n> quoted & cited\n\n"
        '<img src="https://img.example.com/chart.png" alt="Chart">\n\n1 < 2'
    )

    response = _post_structured(client, {"title": "Rates", "content_markdown": markdown})

    assert response.status_code == 200
    assert response.json()["imagesUploaded"] == 1
    hosted = f"{CMS_BASE_URL}/uploads/content_{FIXED_TIMESTAMP_MS}_0_chart.png"
    assert cms_session.documents[0]["data"]["content"] == markdown.replace(
        "https://img.example.com/chart.png", hosted
    )


def test_structured_webhook_acknowledges_test_payload(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    response = _post_structured(client, {"test": True})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["articleId"] is None
    assert cms_session.request_headers == []
    assert cms_session.downloaded_urls == []


@pytest.mark.parametrize("flag", [True, "true", 1])
def test_structured_webhook_acknowledges_test_payload_before_validation(
    client: TestClient, cms_session: FakeCmsSession, flag: object
) -> None:
    response = _post_structured(
        client,
        {"test": flag, "title": 7, "heroImageUrl": "ftp://h/hero.jpg"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert cms_session.opened == 0


@pytest.mark.parametrize(
    "payload",
    [
        {"content_html": "<p>x</p>"},
        {"title": "Title"},
        {"title": "   ", "content_html": "<p>x</p>"},
        {"title": "Title", "content_html": "", "content_markdown": "  "},
    ],
)
def test_structured_webhook_requires_title_and_content(
    client: TestClient, cms_session: FakeCmsSession, payload: dict[str, Any]
) -> None:
    response = _post_structured(client, payload)

    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Missing required fields: title and content_html or content_markdown"
    )
    assert cms_session.documents == []


def test_structured_webhook_rejects_invalid_hero_url(client: TestClient) -> None:
    response = _post_structured(
        client,
        {"title": "T", "content_html": "<p>x</p>", "heroImageUrl": "ftp://h/hero.jpg"},
    )

    assert response.status_code == 400
    assert response.json()["detail"][0]["loc"] == ["heroImageUrl"]


def test_structured_webhook_recovers_raw_control_characters(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    raw = '{"title": "Line\tbreak", "content_html": "<p>first\nsecond</p>"}'.encode()

    response = client.post(
        "/webhook/provider1",
        content=raw,
        headers={**STRUCTURED_HEADERS, "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert cms_session.documents[0]["data"]["content"] == "<p>first\nsecond</p>"


@pytest.mark.parametrize(
    ("raw", "expected_detail"),
    [
        (b'{"title": "T", ', {"error": "Invalid JSON"}),
        (b'["not", "an", "object"]', "Request body must be a JSON object"),
    ],
)
def test_structured_webhook_rejects_unparseable_bodies(
    client: TestClient, raw: bytes, expected_detail: Any
) -> None:
    response = client.post(
        "/webhook/provider1",
        content=raw,
        headers={**STRUCTURED_HEADERS, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    if isinstance(expected_detail, dict):
        assert detail["error"] == expected_detail["error"]
        assert detail["message"]
    else:
        assert detail == expected_detail


def test_structured_webhook_reports_document_failure(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    cms_session.document_response = FakeResponse(
        400,
        json_data={"error": {"message": "slug must be unique"}},
    )

    response = _post_structured(client, {"title": "T", "content_html": "<p>x</p>"})

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["error"] == "Document creation failed"
    assert "slug must be unique" in detail["message"]


def test_freeform_webhook_publishes_multipart_with_attachment(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    response = client.post(
        "/webhook/make",
        data={"Title": "Bonjour à tous", "Content": "Premier\n\nSecond\n"},
        files={"Image": ("photo", JPEG_BYTES, "application/octet-stream")},
        headers=FREEFORM_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert re.fullmatch(r"bonjour-a-tous-[0-9a-z]{6}", body["slug"])
    assert body["imagesUploaded"] == 0
    assert cms_session.uploads[0]["filename"] == f"cover-{body['slug']}.jpg"
    assert cms_session.uploads[0]["mime"] == "image/jpeg"
    data = cms_session.documents[0]["data"]
    assert data["content"] == "<p>Premier</p><br><p>Second</p>"
    assert data["cover"] == 100
    assert "seo" not in data


def test_freeform_webhook_accepts_json_without_attachment(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    response = client.post(
        "/webhook/make",
        json={"Title": "Plain", "Content": "only line"},
        headers=FREEFORM_HEADERS,
    )

    assert response.status_code == 200
    assert cms_session.uploads == []
    assert "cover" not in cms_session.documents[0]["data"]


def test_freeform_webhook_ignores_empty_attachment(
    client: TestClient, cms_session: FakeCmsSession
) -> None:
    response = client.post(
        "/webhook/make",
        data={"Title": "Empty", "Content": "text"},
        files={"Image": ("empty.png", b"", "image/png")},
        headers=FREEFORM_HEADERS,
    )

    assert response.status_code == 200
    assert cms_session.uploads == []


@pytest.mark.parametrize(
    "fields",
    [
        {"Title": "Only title"},
        {"Content": "Only content"},
        {"Title": "  ", "Content": "text"},
    ],
)
def test_freeform_webhook_requires_title_and_content(
    client: TestClient, cms_session: FakeCmsSession, fields: dict[str, str]
) -> None:
    response = client.post("/webhook/make", data=fields, headers=FREEFORM_HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing required fields: Title and Content"
    assert cms_session.request_headers == []


def test_freeform_webhook_rejects_structured_token(client: TestClient) -> None:
    response = client.post(
        "/webhook/make",
        json={"Title": "T", "Content": "c"},
        headers=STRUCTURED_HEADERS,
    )

    assert response.status_code == 401


def test_unset_webhook_token_rejects_every_request(
    runtime_env: Path,
    cms_session: FakeCmsSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _ = runtime_env
    with _client_with_env(
        cms_session, monkeypatch, {"NEWSDESK_FREEFORM_WEBHOOK_TOKEN": ""}
    ) as client:
        response = client.post(
            "/webhook/make",
            json={"Title": "T", "Content": "c"},
            headers={"Authorization": "Bearer anything"},
        )

    assert response.status_code == 401
    assert cms_session.documents == []


def test_request_telemetry_is_written_to_log_sink(
    runtime_env: Path,
    cms_session: FakeCmsSession,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    with _client_with_env(
        cms_session, monkeypatch, {"NEWSDESK_TELEMETRY_SINK": "log"}
    ) as client:
        response = client.get("/ping", headers={"X-Request-ID": "req-telemetry"})
        assert response.status_code == 200

    telemetry_file = runtime_env / "logs" / "newsdesk-telemetry.log"
    events = [
        json.loads(line)
        for line in telemetry_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    finished = [
        event for event in events if event.get("telemetry_event") == "http.request.success"
    ]
    assert finished
    assert finished[-1]["request_id"] == "req-telemetry"
    assert finished[-1]["status_code"] == 200
