"""Cleanup of provider HTML before images are re-hosted."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from bs4 import BeautifulSoup, Tag
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

HTML_PARSER = "html.parser"
NBSP = "\xa0"


def _substitute_fragment_text(value: str) -> str:
    # html.parser decodes &nbsp; to U+00A0; emit it as the entity again.
    return EntitySubstitution.substitute_xml(value).replace(NBSP, "&nbsp;")


class _FragmentFormatter(HTMLFormatter):
    """Escapes only &, <, > and U+00A0; void elements render as <br>, not <br/>.

    Attributes keep their source order; the stock formatter sorts them.
    """

    def attributes(self, tag: Tag) -> Iterable[tuple[str, Any]]:
        if tag.attrs is None:
            return []
        return list(tag.attrs.items())


FRAGMENT_FORMATTER = _FragmentFormatter(
    entity_substitution=_substitute_fragment_text,
    void_element_close_prefix=None,
)


def parse_fragment(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, HTML_PARSER)


def fragment_root(soup: BeautifulSoup) -> Tag:
    """Full documents are reduced to their <body>; bare fragments are their own root."""
    body = soup.body
    if body is not None:
        return body
    return soup


def serialize_fragment(soup: BeautifulSoup) -> str:
    root = fragment_root(soup)
    if root is soup:
        return soup.decode(formatter=FRAGMENT_FORMATTER)
    return root.decode_contents(formatter=FRAGMENT_FORMATTER)


def normalize_html(html: str) -> str:
    """Strip a leading title/hero pattern and structured data, mark section breaks.

    Running it twice adds a second ``<br>`` before every ``<h2>``; normalize once.
    """
    soup = parse_fragment(html)
    root = fragment_root(soup)

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        script.decompose()

    first = _first_element(root)
    if first is not None and first.name == "h1":
        first.decompose()
        following = _first_element(root)
        if following is not None and _is_standalone_image(following):
            following.decompose()

    for heading in root.find_all("h2"):
        heading.insert_before(soup.new_tag("br"))

    return serialize_fragment(soup)


def _first_element(root: Tag) -> Tag | None:
    for child in root.children:
        if isinstance(child, Tag):
            return child
    return None


def _is_standalone_image(element: Tag) -> bool:
    if element.name == "img":
        return True
    if element.name == "p":
        return element.find("img") is not None and not element.get_text().strip()
    return False
