from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from backend.app.repositories.link_repository import (
    LinkRecord,
    LinkStore,
    StaleLinkBatchError,
)
from backend.app.services.errors import (
    InvalidLinkInputError,
    LinkNotFoundError,
    LinkValidationError,
)
from backend.app.services.metadata_service import MetadataAcquisition, MetadataService
from backend.app.services.position_reconciler import (
    assign_positions,
    complete_order,
    reorder,
)
from backend.app.services.url_normalizer import normalize_url
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("link_shelf.links")


@dataclass(frozen=True)
class LinkCreateResult:
    link: LinkRecord
    acquisition: MetadataAcquisition


@dataclass(frozen=True)
class LinkMoveResult:
    moved: bool
    ordered_ids: list[int]


class LinkService:
    def __init__(
        self,
        *,
        store: LinkStore,
        metadata_service: MetadataService,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._store = store
        self._metadata_service = metadata_service
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def create_link(self, *, url: str, list_id: int) -> LinkCreateResult:
        if not isinstance(url, str) or not url.strip():
            raise InvalidLinkInputError("url must not be empty")

        normalized_url = normalize_url(url)
        acquisition = self._metadata_service.acquire(normalized_url)
        metadata = acquisition.metadata
        link = self._store.insert(
            list_id=list_id,
            url=normalized_url,
            title=metadata.title,
            description=metadata.description,
            image=metadata.image,
        )
        self._telemetry.emit(
            "links.created",
            link_id=link.link_id,
            list_id=list_id,
            metadata_outcome=acquisition.outcome,
        )
        return LinkCreateResult(link=link, acquisition=acquisition)

    def get_link(self, link_id: int) -> LinkRecord:
        link = self._store.get(link_id)
        if link is None:
            raise LinkNotFoundError(link_id)
        return link

    def list_links(self, list_id: int) -> list[LinkRecord]:
        return self._store.list_links(list_id)

    def update_link(
        self,
        link_id: int,
        *,
        url: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> LinkRecord:
        existing = self.get_link(link_id)

        next_url = existing.url
        next_title = existing.title
        next_description = existing.description
        next_image = existing.image

        if url is not None:
            if not url.strip():
                raise InvalidLinkInputError("url must not be empty")
            normalized_url = normalize_url(url)
            if normalized_url != existing.url:
                acquisition = self._metadata_service.acquire(normalized_url)
                next_url = normalized_url
                next_title = acquisition.metadata.title
                next_description = acquisition.metadata.description
                next_image = acquisition.metadata.image

        if title is not None and title.strip():
            next_title = title.strip()
        if description is not None:
            next_description = description.strip()

        updated = self._store.update_metadata(
            link_id=link_id,
            url=next_url,
            title=next_title,
            description=next_description,
            image=next_image,
        )
        if updated is None:
            raise LinkNotFoundError(link_id)
        return updated

    def delete_link(self, link_id: int) -> LinkRecord:
        deleted = self._store.delete(link_id)
        if deleted is None:
            raise LinkNotFoundError(link_id)
        self._telemetry.emit("links.deleted", link_id=link_id, list_id=deleted.list_id)
        return deleted

    def reorder_links(self, *, list_id: int, ordered_ids: Sequence[int]) -> list[int]:
        """Persist `ordered_ids` as the manual order of `list_id`.

        Identifiers outside the list, or repeated ones, reject the whole batch
        before anything is written.
        """
        current_ids = [link.link_id for link in self._store.list_links(list_id)]
        current_set = set(current_ids)

        seen: set[int] = set()
        for link_id in ordered_ids:
            if link_id in seen:
                raise LinkValidationError(f"orderedIds contains duplicate id {link_id}")
            if link_id not in current_set:
                raise LinkValidationError(
                    f"orderedIds contains id {link_id} which is not part of list {list_id}"
                )
            seen.add(link_id)

        final_order = complete_order(ordered_ids, current_ids)
        self._persist_order(list_id=list_id, order=final_order)
        return final_order

    def move_link(
        self,
        *,
        list_id: int,
        link_id: int,
        from_index: int,
        to_index: int,
    ) -> LinkMoveResult:
        current_ids = [link.link_id for link in self._store.list_links(list_id)]
        new_order = reorder(current_ids, link_id, from_index, to_index)
        if new_order == current_ids:
            return LinkMoveResult(moved=False, ordered_ids=current_ids)
        self._persist_order(list_id=list_id, order=new_order)
        return LinkMoveResult(moved=True, ordered_ids=new_order)

    def _persist_order(self, *, list_id: int, order: Sequence[int]) -> None:
        try:
            self._store.apply_positions(list_id=list_id, assignments=assign_positions(order))
        except StaleLinkBatchError as exc:
            LOGGER.warning(
                "reorder batch rolled back list_id=%s stale_link_id=%s",
                list_id,
                exc.link_id,
            )
            raise LinkValidationError(str(exc)) from exc
        LOGGER.info("links reordered list_id=%s count=%s", list_id, len(order))
        self._telemetry.emit("links.reorder", list_id=list_id, count=len(order))
