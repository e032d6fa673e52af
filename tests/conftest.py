from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fakes import (
    CMS_BASE_URL,
    CMS_TOKEN,
    FREEFORM_TOKEN,
    STRUCTURED_TOKEN,
    FakeCmsSession,
    build_publication_service,
)
from fastapi.testclient import TestClient

from newsdesk.app.dependencies import get_publication_service, reset_cached_dependencies
from newsdesk.app.main import create_app
from newsdesk.app.services.cms_client import CmsClient
from newsdesk.app.services.image_transport import ImageTransport


@pytest.fixture
def cms_session() -> FakeCmsSession:
    return FakeCmsSession()


@pytest.fixture
def cms_client(cms_session: FakeCmsSession) -> CmsClient:
    return CmsClient(
        base_url=CMS_BASE_URL,
        token=CMS_TOKEN,
        session_factory=cms_session.open,  # pyright: ignore[reportArgumentType]
    )


@pytest.fixture
def transport(cms_client: CmsClient) -> ImageTransport:
    return ImageTransport(cms_client=cms_client)


@pytest.fixture
def runtime_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("NEWSDESK_DATA_DIR", str(data_dir))
    monkeypatch.setenv("NEWSDESK_CMS_BASE_URL", CMS_BASE_URL)
    monkeypatch.setenv("NEWSDESK_CMS_TOKEN", CMS_TOKEN)
    monkeypatch.setenv("NEWSDESK_STRUCTURED_WEBHOOK_TOKEN", STRUCTURED_TOKEN)
    monkeypatch.setenv("NEWSDESK_FREEFORM_WEBHOOK_TOKEN", FREEFORM_TOKEN)
    monkeypatch.setenv("NEWSDESK_TELEMETRY_SINK", "none")
    return data_dir


@pytest.fixture
def client(runtime_env: Path, cms_session: FakeCmsSession) -> Iterator[TestClient]:
    _ = runtime_env
    reset_cached_dependencies()

    app = create_app()
    app.dependency_overrides[get_publication_service] = lambda: build_publication_service(
        cms_session
    )
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
