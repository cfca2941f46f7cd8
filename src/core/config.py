"""Runtime configuration model for Sluice.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_DATA_ROOT,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SINK_URL,
)
from core.errors import SluiceConfigError


@dataclass(frozen=True)
class SluiceConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for checkpoint files.
        sink_url: Elasticsearch endpoint receiving bulk writes.
        sink_username: Optional basic-auth user for the sink.
        sink_password: Optional basic-auth password for the sink.
        request_timeout_seconds: Per-request timeout for sink calls.
        s3_region: Optional default AWS region for S3 sources.
        s3_profile: Optional AWS profile for boto3 session initialization.
    """

    data_root: Path
    sink_url: str
    sink_username: str | None
    sink_password: str | None
    request_timeout_seconds: float
    s3_region: str | None
    s3_profile: str | None

    @classmethod
    def from_env(cls) -> "SluiceConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            SluiceConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("SLUICE_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        sink_url = os.getenv("SLUICE_SINK_URL", DEFAULT_SINK_URL).rstrip("/")
        timeout_value = os.getenv(
            "SLUICE_REQUEST_TIMEOUT_SECS", str(DEFAULT_REQUEST_TIMEOUT_SECONDS)
        )
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            sink_url=_parse_sink_url(sink_url),
            sink_username=os.getenv("SLUICE_SINK_USERNAME") or None,
            sink_password=os.getenv("SLUICE_SINK_PASSWORD") or None,
            request_timeout_seconds=_parse_timeout(timeout_value),
            s3_region=os.getenv("SLUICE_S3_REGION") or None,
            s3_profile=os.getenv("SLUICE_S3_PROFILE") or None,
        )


def _parse_sink_url(raw_value: str) -> str:
    if raw_value.startswith(("http://", "https://")):
        return raw_value
    raise SluiceConfigError(
        f"Invalid SLUICE_SINK_URL value '{raw_value}': expected an http(s) URL. "
        "Set SLUICE_SINK_URL to e.g. http://localhost:9200."
    )


def _parse_timeout(raw_value: str) -> float:
    """Parse the request timeout environment value.

    Args:
        raw_value: Raw string from environment.

    Returns:
        Parsed positive timeout in seconds.

    Raises:
        SluiceConfigError: If value is not a positive number.
    """
    try:
        timeout = float(raw_value)
    except ValueError as error:
        raise SluiceConfigError(
            "Invalid SLUICE_REQUEST_TIMEOUT_SECS value: "
            f"expected number, got '{raw_value}'. "
            "Set SLUICE_REQUEST_TIMEOUT_SECS to a positive number of seconds."
        ) from error
    if timeout <= 0:
        raise SluiceConfigError(
            f"Invalid SLUICE_REQUEST_TIMEOUT_SECS value {raw_value}: must be positive."
        )
    return timeout
