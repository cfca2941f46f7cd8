"""Fixed-size document batching.

This module groups documents into ordered batches whose source ranges tile
the input without gaps, so completed ranges can be reconciled against the
checkpoint even when rows in between were skipped.
"""

from __future__ import annotations

from typing import Callable, Iterable, Iterator

from core.types import Batch, Document


def iter_batches(
    documents: Iterable[Document],
    batch_size: int,
    start_index: int,
    source_position: Callable[[], int] | None = None,
) -> Iterator[Batch]:
    """Yield batches of documents in source order.

    Args:
        documents: Documents ordered by ``source_index``.
        batch_size: Maximum documents per batch.
        start_index: Source index the first batch range starts at.
        source_position: Returns the source rows consumed; read once the
            documents are exhausted to cover trailing skipped rows.

    Returns:
        Iterator of batches; each range starts where the previous one ended.

    Raises:
        ValueError: If ``batch_size`` is not positive.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    pending: list[Document] = []
    range_start = start_index
    batch_number = 0
    for document in documents:
        pending.append(document)
        if len(pending) >= batch_size:
            range_end = document.source_index + 1
            yield Batch(batch_number, range_start, range_end, tuple(pending))
            batch_number += 1
            range_start = range_end
            pending = []
    range_end = range_start
    if pending:
        range_end = pending[-1].source_index + 1
    if source_position is not None:
        range_end = max(range_end, source_position())
    if pending or range_end > range_start:
        yield Batch(batch_number, range_start, range_end, tuple(pending))
