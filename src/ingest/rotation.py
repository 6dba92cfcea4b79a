"""Wrap-around rotation batches over the prioritized symbol list."""

from __future__ import annotations

from typing import Sequence, TypeVar

T = TypeVar("T")


def select_batch(items: Sequence[T], batch_size: int, cursor: int) -> tuple[list[T], int]:
    """
    Take one run's batch out of the prioritized list.

    Args:
        items: Prioritized list
        batch_size: Maximum batch length
        cursor: Rotation cursor from the previous run

    Returns:
        (batch, new_cursor). Lists no longer than batch_size come back whole
        with the cursor unchanged.
    """
    total = len(items)
    if total <= batch_size:
        return list(items), cursor

    start = cursor % total
    batch = [items[(start + offset) % total] for offset in range(batch_size)]
    return batch, (start + batch_size) % total
