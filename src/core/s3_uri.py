"""S3 URI parsing helpers.

This module validates ``s3://bucket/key`` source locations so the record
source and checkpoint naming agree on one parsing rule.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import SluiceSourceError


@dataclass(frozen=True)
class S3Location:
    """Parsed S3 object location."""

    bucket: str
    key: str


def is_s3_uri(uri: str) -> bool:
    """Return whether a source location points at S3."""
    return uri.startswith("s3://")


def parse_s3_uri(uri: str) -> S3Location:
    """Parse and validate an S3 object URI.

    Args:
        uri: URI in format ``s3://bucket/key``.

    Returns:
        Parsed bucket and key pair.

    Raises:
        SluiceSourceError: If bucket or key is missing.
    """
    stripped_uri = uri.removeprefix("s3://")
    bucket, _, key = stripped_uri.partition("/")
    if not bucket or not key or key.endswith("/"):
        raise SluiceSourceError(
            f"Invalid S3 URI '{uri}': expected s3://bucket/key of one CSV object. "
            "Provide both bucket and object key."
        )
    return S3Location(bucket=bucket, key=key)
