"""Splitting entity id lists into fixed-size batches."""

from collections.abc import Sequence

DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 500

Batch = tuple[str, ...]


def resolve_batch_size(
    requested: int | None,
    default: int = DEFAULT_BATCH_SIZE,
    ceiling: int = MAX_BATCH_SIZE,
) -> int:
    """
    Requested batch size capped at the ceiling.

    Missing or non-positive means default. The ceiling itself never exceeds
    MAX_BATCH_SIZE.
    """
    if not requested or requested < 1:
        requested = default
    return min(requested, ceiling, MAX_BATCH_SIZE)


def split_batches(entity_ids: Sequence[str], batch_size: int) -> list[Batch]:
    """Partition ids into order-preserving batches; only the last may be short."""
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    return [tuple(entity_ids[i:i + batch_size]) for i in range(0, len(entity_ids), batch_size)]
