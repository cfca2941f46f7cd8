"""Bulk-write contract consumed by the writer pool.

A sink accepts ``(document_id, body)`` pairs and answers per item with
``indexed``, ``rejected`` (with a reason) or ``not_attempted``. Whole-request
transport failures raise ``SluiceSinkTransportError``; a request the sink
refuses outright raises ``SluiceSinkRequestError``.
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence

from core.types import SinkItemResult

BulkItem = tuple[str, Mapping[str, object]]


class BulkSink(Protocol):
    """Destination supporting batch upsert by stable document id."""

    def check_health(self, index_name: str) -> None:
        """Raise ``SluiceSinkError`` when the sink cannot accept writes."""
        ...

    def bulk_upsert(self, index_name: str, items: Sequence[BulkItem]) -> list[SinkItemResult]:
        """Upsert items and return one result per item, in request order."""
        ...
