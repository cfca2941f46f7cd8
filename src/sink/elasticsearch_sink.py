"""Elasticsearch implementation of the bulk-write contract.

This module sends ``index`` actions keyed by document id to the ``_bulk``
API, so re-writing a document replaces it instead of duplicating it.
Client-side retries are disabled; the bulk writer owns retry policy.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from elasticsearch import ApiError, Elasticsearch, TransportError

from core.config import SluiceConfig
from core.constants import RETRYABLE_SINK_STATUSES
from core.errors import SluiceSinkError, SluiceSinkRequestError, SluiceSinkTransportError
from core.logging_config import get_logger
from core.types import SinkItemResult
from sink.bulk_sink import BulkItem

_LOGGER = get_logger(__name__)


class ElasticsearchSink:
    """Bulk sink backed by an Elasticsearch client."""

    def __init__(self, client: Elasticsearch) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: SluiceConfig) -> "ElasticsearchSink":
        """Build a sink from runtime configuration.

        Args:
            config: Runtime configuration with endpoint, auth, and timeout.

        Returns:
            Sink with a client that never retries on its own.
        """
        client_kwargs: dict[str, Any] = {
            "request_timeout": config.request_timeout_seconds,
            "max_retries": 0,
            "retry_on_timeout": False,
        }
        if config.sink_username:
            client_kwargs["basic_auth"] = (config.sink_username, config.sink_password or "")
        return cls(Elasticsearch(config.sink_url, **client_kwargs))

    def check_health(self, index_name: str) -> None:
        """Verify the cluster answers and report the destination index state.

        Raises:
            SluiceSinkError: If the cluster is unreachable or reports red health.
        """
        try:
            health = _response_body(self._client.cluster.health())
            index_exists = bool(self._client.indices.exists(index=index_name))
        except (ApiError, TransportError) as error:
            raise SluiceSinkError(
                f"Elasticsearch is not reachable: {error}. "
                "Check SLUICE_SINK_URL and that the cluster is running."
            ) from error
        status = health.get("status")
        if status == "red":
            raise SluiceSinkError(
                "Elasticsearch cluster health is red. Resolve cluster issues before migrating."
            )
        if not index_exists:
            _LOGGER.warning(
                "sink_index_missing",
                index_name=index_name,
                detail="index will be created with dynamic mappings on first write",
            )
        _LOGGER.info("sink_connected", cluster_status=status, index_name=index_name)

    def bulk_upsert(self, index_name: str, items: Sequence[BulkItem]) -> list[SinkItemResult]:
        """Index items by id and classify each item's outcome.

        Raises:
            SluiceSinkTransportError: For connection errors, timeouts, 429 and 5xx.
            SluiceSinkRequestError: For any other whole-request HTTP error.
        """
        if not items:
            return []
        operations: list[Mapping[str, object]] = []
        for document_id, body in items:
            operations.append({"index": {"_index": index_name, "_id": document_id}})
            operations.append(body)
        try:
            response = self._client.bulk(operations=operations)
        except ApiError as error:
            status = error.meta.status
            if status in RETRYABLE_SINK_STATUSES:
                raise SluiceSinkTransportError(
                    f"bulk request failed with HTTP {status}: {error.message}"
                ) from error
            raise SluiceSinkRequestError(
                f"bulk request refused with HTTP {status}: {error.message}. "
                "Check sink credentials and the destination index."
            ) from error
        except TransportError as error:
            raise SluiceSinkTransportError(f"bulk request transport failure: {error}") from error
        return parse_bulk_items(items, _response_body(response))


def parse_bulk_items(
    items: Sequence[BulkItem],
    response_body: Mapping[str, Any],
) -> list[SinkItemResult]:
    """Map a ``_bulk`` response onto the request items.

    Args:
        items: Request items in submission order.
        response_body: Decoded bulk response.

    Returns:
        One result per request item; items missing from the response are
        reported as ``not_attempted``.
    """
    response_items = list(response_body.get("items") or [])
    results: list[SinkItemResult] = []
    for position, (document_id, _) in enumerate(items):
        if position >= len(response_items):
            results.append(
                SinkItemResult(document_id, "not_attempted", "missing from bulk response")
            )
            continue
        action_result = _action_result(response_items[position])
        status = int(action_result.get("status", 0))
        error = action_result.get("error")
        if error is None and 200 <= status < 300:
            results.append(SinkItemResult(document_id, "indexed"))
        elif status in RETRYABLE_SINK_STATUSES:
            results.append(
                SinkItemResult(document_id, "not_attempted", _format_item_error(status, error))
            )
        else:
            results.append(
                SinkItemResult(document_id, "rejected", _format_item_error(status, error))
            )
    return results


def _action_result(response_item: Mapping[str, Any]) -> Mapping[str, Any]:
    for action_result in response_item.values():
        if isinstance(action_result, Mapping):
            return action_result
    return {}


def _format_item_error(status: int, error: object) -> str:
    if isinstance(error, Mapping):
        error_type = error.get("type", "error")
        reason = error.get("reason", "")
        return f"{status} {error_type}: {reason}".strip()
    if error is None:
        return f"status {status}"
    return f"{status} {error}"


def _response_body(response: Any) -> Mapping[str, Any]:
    body = getattr(response, "body", response)
    return body if isinstance(body, Mapping) else {}
