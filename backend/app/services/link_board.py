from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from backend.app.repositories.link_repository import LinkRecord
from backend.app.services.position_reconciler import reorder

LOGGER = logging.getLogger("link_shelf.link_board")

PersistOrder = Callable[[int, list[int]], object]


@dataclass(frozen=True)
class BoardMoveResult:
    moved: bool
    persisted: bool
    ordered_ids: list[int]
    error: str | None = None


class LinkBoard:
    """Links of one list as the caller currently displays them.

    Moves are applied locally first and then handed to `persist`. A failed
    persist restores the previous order, since the batch write is all or nothing.
    """

    def __init__(self, *, list_id: int, persist: PersistOrder) -> None:
        self._list_id = list_id
        self._persist = persist
        self._links: list[LinkRecord] = []

    @property
    def list_id(self) -> int:
        return self._list_id

    @property
    def links(self) -> tuple[LinkRecord, ...]:
        return tuple(self._links)

    @property
    def ordered_ids(self) -> list[int]:
        return [link.link_id for link in self._links]

    def load(self, links: Iterable[LinkRecord]) -> None:
        self._links = [link for link in links if link.list_id == self._list_id]

    def add(self, link: LinkRecord) -> None:
        if link.list_id != self._list_id:
            raise ValueError(f"link {link.link_id} belongs to list {link.list_id}")
        self._links = [existing for existing in self._links if existing.link_id != link.link_id]
        self._links.append(link)

    def replace(self, link: LinkRecord) -> bool:
        for index, existing in enumerate(self._links):
            if existing.link_id == link.link_id:
                self._links[index] = link
                return True
        return False

    def remove(self, link_id: int) -> bool:
        remaining = [link for link in self._links if link.link_id != link_id]
        removed = len(remaining) != len(self._links)
        self._links = _renumbered(remaining) if removed else remaining
        return removed

    def move(self, link_id: int, to_index: int) -> BoardMoveResult:
        current_ids = self.ordered_ids
        from_index = current_ids.index(link_id) if link_id in current_ids else -1
        new_ids = reorder(current_ids, link_id, from_index, to_index)
        if new_ids == current_ids:
            return BoardMoveResult(moved=False, persisted=False, ordered_ids=current_ids)

        previous = list(self._links)
        by_id = {link.link_id: link for link in self._links}
        self._links = _renumbered(by_id[item] for item in new_ids)
        try:
            self._persist(self._list_id, new_ids)
        except Exception as exc:
            LOGGER.warning(
                "board move not persisted; restoring order list_id=%s link_id=%s error=%s",
                self._list_id,
                link_id,
                exc,
            )
            self._links = previous
            return BoardMoveResult(
                moved=False,
                persisted=False,
                ordered_ids=self.ordered_ids,
                error=str(exc),
            )
        return BoardMoveResult(moved=True, persisted=True, ordered_ids=new_ids)


def _renumbered(links: Iterable[LinkRecord]) -> list[LinkRecord]:
    return [replace(link, position=index + 1) for index, link in enumerate(links)]
