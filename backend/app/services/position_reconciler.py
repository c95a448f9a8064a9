from __future__ import annotations

from collections.abc import Hashable, Sequence
from typing import TypeVar

from backend.app.repositories.link_repository import PositionAssignment

IdT = TypeVar("IdT", bound=Hashable)


def reorder(
    current_order: Sequence[IdT],
    moved_id: IdT,
    from_index: int,
    to_index: int,
) -> list[IdT]:
    """Move `moved_id` from `from_index` to `to_index`.

    Equal indices, an index outside the list, or a `from_index` that does not
    hold `moved_id` leave the order unchanged.
    """
    order = list(current_order)
    if from_index == to_index:
        return order
    if not (0 <= from_index < len(order)) or not (0 <= to_index < len(order)):
        return order
    if order[from_index] != moved_id:
        return order

    item = order.pop(from_index)
    order.insert(to_index, item)
    return order


def assign_positions(order: Sequence[int]) -> list[PositionAssignment]:
    return [
        PositionAssignment(link_id=link_id, position=index + 1)
        for index, link_id in enumerate(order)
    ]


def complete_order(requested: Sequence[int], current: Sequence[int]) -> list[int]:
    """Requested ids first, then any current ids the request left out, in their old order."""
    requested_ids = set(requested)
    return [*requested, *(link_id for link_id in current if link_id not in requested_ids)]
