from __future__ import annotations

from dataclasses import dataclass

from backend.app.services.url_normalizer import url_hostname

UNPARSEABLE_URL_DESCRIPTION = "No description available"
UNTITLED_LINK_TITLE = "Untitled link"


@dataclass(frozen=True)
class PartialMetadata:
    """Extraction output; a field is None when no rule matched it."""

    title: str | None = None
    description: str | None = None
    image: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.title is None and self.description is None and self.image is None


@dataclass(frozen=True)
class LinkMetadata:
    title: str
    description: str
    image: str | None = None


def synthesize_fallback_metadata(url: str) -> LinkMetadata:
    host = url_hostname(url)
    if host is None:
        return LinkMetadata(title=url, description=UNPARSEABLE_URL_DESCRIPTION, image=None)
    return LinkMetadata(title=host, description=f"Content from {host}", image=None)


def merge_metadata(
    extracted: PartialMetadata,
    fallback: LinkMetadata,
    url: str,
) -> LinkMetadata:
    """Field by field: extracted value, then fallback value, then the default.

    Blank strings count as missing so the merged title is never empty.
    """
    title = _first_present(extracted.title, fallback.title, url) or UNTITLED_LINK_TITLE
    description = _first_present(extracted.description, fallback.description) or ""
    image = _first_present(extracted.image, fallback.image)
    return LinkMetadata(title=title, description=description, image=image)


def _first_present(*candidates: str | None) -> str | None:
    for candidate in candidates:
        if candidate is None:
            continue
        normalized = candidate.strip()
        if normalized:
            return normalized
    return None
