from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from bs4 import Tag

from newsdesk.app.models.publication import ImageStats, RemoteImage, RewriteResult, UploadedAsset
from newsdesk.app.services.html_normalizer import fragment_root, parse_fragment, serialize_fragment
from newsdesk.app.services.image_transport import ImageTransport

LOGGER = logging.getLogger("newsdesk.image_rewriter")

DEFAULT_IMAGE_EXTENSION = ".jpg"
CONTENT_FILENAME_PREFIX = "content"
_UNSAFE_FILENAME_CHARACTERS = re.compile(r"[^a-zA-Z0-9.-]")
_IMG_TAG = re.compile(r"""<img\b(?:"[^"]*"|'[^']*'|[^'">])*>""", re.IGNORECASE)
_SRC_ATTRIBUTE = re.compile(
    r"""\ssrc\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class _ImageJob:
    element: Tag
    src: str
    filename: str


@dataclass(frozen=True)
class _ImageOutcome:
    job: _ImageJob
    asset: UploadedAsset | None


def _current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def is_remote_image_url(src: str | None) -> bool:
    if not src:
        return False
    return src.startswith("http://") or src.startswith("https://")


def build_content_filename(src: str, *, index: int, timestamp_ms: int) -> str:
    """`content_<timestamp>_<index>_<sanitized last path segment>`."""
    last_segment = src.split("/")[-1]
    filename = last_segment.split("?", 1)[0].split("#", 1)[0]
    if "." not in filename:
        filename += DEFAULT_IMAGE_EXTENSION
    filename = _UNSAFE_FILENAME_CHARACTERS.sub("_", filename)
    return f"{CONTENT_FILENAME_PREFIX}_{timestamp_ms}_{index}_{filename}"


class ContentImageRewriter:
    def __init__(
        self,
        *,
        transport: ImageTransport,
        max_workers: int = 1,
        clock_ms: Callable[[], int] = _current_timestamp_ms,
    ) -> None:
        self._transport = transport
        self._max_workers = max(1, max_workers)
        self._clock_ms = clock_ms

    def rewrite_images(self, html: str, *, preserve_markup: bool = False) -> RewriteResult:
        """Re-host every remote ``<img>`` and point its ``src`` at the CMS copy.

        With ``preserve_markup`` the input is not re-serialized: only the ``src``
        values are swapped inside the original text. Markdown with inline
        ``<img>`` tags goes this way so its ``>``, ``&`` and ``<`` survive.
        """
        soup = parse_fragment(html)
        images = fragment_root(soup).find_all("img")
        timestamp_ms = self._clock_ms()

        jobs: list[_ImageJob] = []
        for index, element in enumerate(images):
            src = element.get("src")
            if not isinstance(src, str) or not is_remote_image_url(src):
                continue
            jobs.append(
                _ImageJob(
                    element=element,
                    src=src,
                    filename=build_content_filename(src, index=index, timestamp_ms=timestamp_ms),
                )
            )

        LOGGER.info("found images in content total=%s remote=%s", len(images), len(jobs))
        if not jobs:
            return RewriteResult(html=html, assets=(), stats=ImageStats())

        outcomes = self._host_all(jobs)

        assets: list[UploadedAsset] = []
        replacements: list[tuple[Tag, str]] = []
        for position, outcome in enumerate(outcomes, start=1):
            if outcome.asset is None:
                LOGGER.info(
                    "image %s/%s not uploaded, keeping original src=%s",
                    position,
                    len(outcomes),
                    outcome.job.src,
                )
                continue
            hosted_url = self._transport.cms_client.public_url(outcome.asset.url)
            replacements.append((outcome.job.element, hosted_url))
            assets.append(outcome.asset)

        stats = ImageStats(
            total=len(outcomes),
            success=len(assets),
            failed=len(outcomes) - len(assets),
        )
        LOGGER.info(
            "image upload summary success=%s failed=%s total=%s",
            stats.success,
            stats.failed,
            stats.total,
        )
        if not assets:
            return RewriteResult(html=html, assets=(), stats=stats)
        if preserve_markup:
            rewritten = _replace_sources_in_place(html, replacements)
        else:
            for element, hosted_url in replacements:
                element["src"] = hosted_url
            rewritten = serialize_fragment(soup)
        return RewriteResult(html=rewritten, assets=tuple(assets), stats=stats)

    def _host_all(self, jobs: list[_ImageJob]) -> list[_ImageOutcome]:
        if self._max_workers == 1 or len(jobs) == 1:
            return [self._host_one(job) for job in jobs]
        workers = min(self._max_workers, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="image-host") as pool:
            # map() yields in submission order, whatever the completion order.
            return list(pool.map(self._host_one, jobs))

    def _host_one(self, job: _ImageJob) -> _ImageOutcome:
        try:
            asset = self._transport.fetch_and_host(RemoteImage(url=job.src, filename=job.filename))
        except Exception:
            LOGGER.exception("unexpected error while re-hosting image src=%s", job.src)
            asset = None
        return _ImageOutcome(job=job, asset=asset)


def _replace_sources_in_place(text: str, replacements: list[tuple[Tag, str]]) -> str:
    line_starts = [0]
    for line in text.split("\n")[:-1]:
        line_starts.append(line_starts[-1] + len(line) + 1)

    spans: list[tuple[tuple[int, int], str]] = []
    for element, hosted_url in replacements:
        span = _locate_src_value(text, element, line_starts)
        if span is None:
            LOGGER.warning("image tag not found in source, keeping original src=%s", element.get("src"))
            continue
        spans.append((span, hosted_url))

    pieces: list[str] = []
    cursor = 0
    for (start, end), hosted_url in sorted(spans):
        pieces.append(text[cursor:start])
        pieces.append(hosted_url)
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)


def _locate_src_value(text: str, element: Tag, line_starts: list[int]) -> tuple[int, int] | None:
    # html.parser records the 1-based line and 0-based column of each start tag.
    line, column = element.sourceline, element.sourcepos
    if line is None or column is None or not 0 < line <= len(line_starts):
        return None
    tag = _IMG_TAG.match(text, line_starts[line - 1] + column)
    if tag is None:
        return None
    attribute = _SRC_ATTRIBUTE.search(text, tag.start(), tag.end())
    if attribute is None:
        return None
    for group in (1, 2, 3):
        if attribute.group(group) is not None:
            return attribute.span(group)
    return None
