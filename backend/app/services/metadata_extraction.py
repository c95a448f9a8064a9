from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from html import unescape
from html.parser import HTMLParser
from urllib.parse import urljoin

from backend.app.services.link_metadata import PartialMetadata

LOGGER = logging.getLogger("link_shelf.metadata_extraction")


@dataclass(frozen=True)
class PageSnapshot:
    """Everything the extraction rules may read, captured in one parser pass."""

    meta: Mapping[str, str] = field(default_factory=dict)
    document_title: str | None = None
    first_heading: str | None = None
    link_hrefs: Mapping[str, str] = field(default_factory=dict)
    image_sources: tuple[str, ...] = ()

    def meta_value(self, key: str) -> str | None:
        return self.meta.get(key.lower())


ExtractionRule = Callable[[PageSnapshot], str | None]


class _PageSnapshotParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._meta: dict[str, str] = {}
        self._link_hrefs: dict[str, str] = {}
        self._image_sources: list[str] = []
        self._title_parts: list[str] = []
        self._heading_parts: list[str] = []
        self._in_title = False
        self._title_done = False
        self._heading_depth = 0
        self._heading_done = False

    def snapshot(self) -> PageSnapshot:
        return PageSnapshot(
            meta=dict(self._meta),
            document_title=_clean_text("".join(self._title_parts)),
            first_heading=_clean_text(" ".join(self._heading_parts)),
            link_hrefs=dict(self._link_hrefs),
            image_sources=tuple(self._image_sources),
        )

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag_name = tag.lower()
        attrs_map = {name.lower(): (value or "").strip() for name, value in attrs}
        if tag_name == "title" and not self._title_done:
            self._in_title = True
        elif tag_name == "h1" and not self._heading_done:
            self._heading_depth += 1
        elif tag_name == "meta":
            self._record_meta(attrs_map)
        elif tag_name == "link":
            self._record_link(attrs_map)
        elif tag_name == "img":
            source = attrs_map.get("src")
            if source:
                self._image_sources.append(source)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        # Self-closing <title/> or <h1/> must not open a capture region.
        if tag.lower() in {"title", "h1"}:
            return
        self.handle_starttag(tag, attrs)

    def handle_endtag(self, tag: str) -> None:
        tag_name = tag.lower()
        if tag_name == "title" and self._in_title:
            self._in_title = False
            self._title_done = True
        elif tag_name == "h1" and self._heading_depth > 0:
            self._heading_depth -= 1
            if self._heading_depth == 0:
                self._heading_done = True

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self._title_parts.append(data)
        elif self._heading_depth > 0:
            self._heading_parts.append(data)

    def _record_meta(self, attrs_map: dict[str, str]) -> None:
        itemprop = attrs_map.get("itemprop")
        key = (
            attrs_map.get("property")
            or attrs_map.get("name")
            or (f"itemprop:{itemprop}" if itemprop else None)
        )
        value = _clean_text(attrs_map.get("content"))
        if not key or value is None:
            return
        lowered = key.lower()
        if lowered not in self._meta:
            self._meta[lowered] = value

    def _record_link(self, attrs_map: dict[str, str]) -> None:
        href = attrs_map.get("href")
        if not href:
            return
        for rel in attrs_map.get("rel", "").lower().split():
            self._link_hrefs.setdefault(rel, href)


def parse_page(markup: str) -> PageSnapshot:
    parser = _PageSnapshotParser()
    parser.feed(markup)
    parser.close()
    return parser.snapshot()


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    compact = " ".join(unescape(value).split())
    return compact or None


def meta_rule(key: str) -> ExtractionRule:
    def _rule(page: PageSnapshot) -> str | None:
        return page.meta_value(key)

    _rule.__name__ = f"meta[{key}]"
    return _rule


def document_title_rule(page: PageSnapshot) -> str | None:
    return page.document_title


def first_heading_rule(page: PageSnapshot) -> str | None:
    return page.first_heading


def image_src_link_rule(page: PageSnapshot) -> str | None:
    return page.link_hrefs.get("image_src")


def first_image_rule(page: PageSnapshot) -> str | None:
    for source in page.image_sources:
        if not source.lower().startswith("data:"):
            return source
    return None


# Most structured source first, generic document fallbacks last.
TITLE_RULES: tuple[ExtractionRule, ...] = (
    meta_rule("og:title"),
    meta_rule("twitter:title"),
    meta_rule("sailthru.title"),
    meta_rule("title"),
    meta_rule("itemprop:name"),
    meta_rule("itemprop:headline"),
    document_title_rule,
    first_heading_rule,
)
DESCRIPTION_RULES: tuple[ExtractionRule, ...] = (
    meta_rule("og:description"),
    meta_rule("twitter:description"),
    meta_rule("description"),
    meta_rule("itemprop:description"),
    meta_rule("sailthru.description"),
)
IMAGE_RULES: tuple[ExtractionRule, ...] = (
    meta_rule("og:image:secure_url"),
    meta_rule("og:image"),
    meta_rule("og:image:url"),
    meta_rule("twitter:image"),
    meta_rule("twitter:image:src"),
    meta_rule("itemprop:image"),
    image_src_link_rule,
    first_image_rule,
)


def first_match(rules: tuple[ExtractionRule, ...], page: PageSnapshot) -> str | None:
    for rule in rules:
        try:
            value = rule(page)
        except Exception:
            LOGGER.debug("extraction rule failed rule=%s", rule.__name__, exc_info=True)
            continue
        cleaned = _clean_text(value)
        if cleaned is not None:
            return cleaned
    return None


def extract_metadata(markup: str, url: str) -> PartialMetadata:
    """Run every field family's rules over one parse of `markup`."""
    try:
        page = parse_page(markup)
    except Exception:
        LOGGER.debug("markup could not be parsed url=%s", url, exc_info=True)
        return PartialMetadata()

    image = first_match(IMAGE_RULES, page)
    return PartialMetadata(
        title=first_match(TITLE_RULES, page),
        description=first_match(DESCRIPTION_RULES, page),
        image=_resolve_image_url(image, url),
    )


def _resolve_image_url(image: str | None, page_url: str) -> str | None:
    if image is None:
        return None
    try:
        return urljoin(page_url, image)
    except ValueError:
        return image
