from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Literal, Protocol

from backend.app.services.link_metadata import (
    LinkMetadata,
    PartialMetadata,
    merge_metadata,
    synthesize_fallback_metadata,
)
from backend.app.services.metadata_extraction import extract_metadata
from backend.app.services.page_fetcher import (
    DEFAULT_TIMEOUT_MS,
    FetchedPage,
    FetchFailure,
    FetchOutcome,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("link_shelf.metadata")

AcquisitionOutcome = Literal["ok", "timeout", "error"]


class PageFetcherLike(Protocol):
    def fetch_page(self, url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> FetchOutcome:
        ...


@dataclass(frozen=True)
class MetadataAcquisition:
    url: str
    metadata: LinkMetadata
    outcome: AcquisitionOutcome
    detail: str | None = None
    extracted_fields: tuple[str, ...] = ()

    @property
    def timed_out(self) -> bool:
        return self.outcome == "timeout"


class MetadataService:
    def __init__(
        self,
        *,
        fetcher: PageFetcherLike,
        telemetry: TelemetryClient | None = None,
        enabled: bool = True,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._fetcher = fetcher
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._enabled = enabled
        self._timeout_ms = max(1, timeout_ms)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def acquire(self, url: str) -> MetadataAcquisition:
        """Fetch, extract and merge metadata for `url`; never raises.

        Any failure degrades to metadata synthesized from the URL, and the
        outcome keeps timeouts distinguishable from other errors.
        """
        started_at = perf_counter()
        fallback = synthesize_fallback_metadata(url)
        if not self._enabled:
            result = MetadataAcquisition(url=url, metadata=fallback, outcome="ok")
            self._record(result, started_at=started_at)
            return result

        try:
            fetched = self._fetcher.fetch_page(url, self._timeout_ms)
            if isinstance(fetched, FetchFailure):
                result = _failed_acquisition(url, fallback, fetched)
            else:
                result = _extracted_acquisition(url, fallback, fetched)
        except Exception as exc:
            LOGGER.exception("metadata acquisition crashed url=%s", url)
            result = MetadataAcquisition(
                url=url,
                metadata=fallback,
                outcome="error",
                detail=f"{type(exc).__name__}: {exc}",
            )

        self._record(result, started_at=started_at)
        return result

    def _record(self, result: MetadataAcquisition, *, started_at: float) -> None:
        duration_ms = int((perf_counter() - started_at) * 1000)
        LOGGER.info(
            "metadata acquired url=%s outcome=%s extracted_fields=%s duration_ms=%s",
            result.url,
            result.outcome,
            ",".join(result.extracted_fields) or "-",
            duration_ms,
        )
        self._telemetry.emit(
            "metadata.acquire",
            url=result.url,
            outcome=result.outcome,
            extracted_fields=",".join(result.extracted_fields),
            has_image=result.metadata.image is not None,
            duration_ms=duration_ms,
        )


def _failed_acquisition(
    url: str,
    fallback: LinkMetadata,
    failure: FetchFailure,
) -> MetadataAcquisition:
    return MetadataAcquisition(
        url=url,
        metadata=merge_metadata(PartialMetadata(), fallback, url),
        outcome="timeout" if failure.is_timeout else "error",
        detail=failure.detail,
    )


def _extracted_acquisition(
    url: str,
    fallback: LinkMetadata,
    page: FetchedPage,
) -> MetadataAcquisition:
    extracted = extract_metadata(page.markup, page.final_url or url)
    present = tuple(
        name
        for name, value in (
            ("title", extracted.title),
            ("description", extracted.description),
            ("image", extracted.image),
        )
        if value is not None
    )
    return MetadataAcquisition(
        url=url,
        metadata=merge_metadata(extracted, fallback, url),
        outcome="ok",
        extracted_fields=present,
    )
