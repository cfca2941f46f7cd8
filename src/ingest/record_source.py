"""Streaming CSV record source.

This module lazily reads delimited rows from a local file or an S3 object.
Resuming re-parses and discards already-processed rows instead of seeking
bytes, so quoted multi-line fields parse identically on every run.
"""

from __future__ import annotations

import codecs
import csv
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Sequence, TextIO

from core.config import SluiceConfig
from core.errors import RecordMalformedError, SluiceDependencyError, SluiceSourceError
from core.logging_config import get_logger
from core.s3_uri import S3Location, is_s3_uri, parse_s3_uri
from core.types import RawRecord

_LOGGER = get_logger(__name__)
_FIELD_SIZE_LIMIT = 64 * 1024 * 1024

MalformedHandler = Callable[[RecordMalformedError], None]


class RecordCursor:
    """Lazy, single-pass cursor over the data rows of one source.

    Attributes:
        source_uri: Location the rows are read from.
        header: Column names from the first row.
    """

    def __init__(
        self,
        source_uri: str,
        header: Sequence[str],
        rows: Iterator[list[str]],
        resume_from_index: int,
        closer: Callable[[], None],
        on_malformed: MalformedHandler | None = None,
    ) -> None:
        self.source_uri = source_uri
        self.header = tuple(header)
        self._rows = rows
        self._resume_from_index = resume_from_index
        self._closer = closer
        self._on_malformed = on_malformed
        self._position = 0
        self._skipped_count = 0
        self._closed = False

    @property
    def position(self) -> int:
        """Data rows consumed so far, including resumed-over and skipped rows."""
        return self._position

    @property
    def skipped_count(self) -> int:
        """Malformed rows skipped after the resume offset."""
        return self._skipped_count

    def __iter__(self) -> Iterator[RawRecord]:
        try:
            while True:
                row = self._next_row()
                if row is None:
                    return
                index = self._position
                self._position += 1
                if isinstance(row, RecordMalformedError):
                    if index >= self._resume_from_index:
                        self._skip(RecordMalformedError(str(row), index))
                    continue
                if index < self._resume_from_index:
                    continue
                if len(row) != len(self.header):
                    self._skip(
                        RecordMalformedError(
                            f"expected {len(self.header)} columns, got {len(row)}", index
                        )
                    )
                    continue
                yield RawRecord(index=index, fields=dict(zip(self.header, row)))
        finally:
            self.close()

    def close(self) -> None:
        """Release the underlying file or stream."""
        if self._closed:
            return
        self._closed = True
        self._closer()

    def __enter__(self) -> "RecordCursor":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _next_row(self) -> list[str] | RecordMalformedError | None:
        """Return the next non-blank row, a parse failure, or None at the end."""
        while True:
            try:
                row = next(self._rows)
            except StopIteration:
                return None
            except csv.Error as error:
                return RecordMalformedError(f"csv parse error: {error}", self._position)
            except (OSError, UnicodeDecodeError) as error:
                raise SluiceSourceError(
                    f"Failed while reading {self.source_uri} after row {self._position}: "
                    f"{error}. Check the source medium and rerun to resume."
                ) from error
            if row:
                return row

    def _skip(self, error: RecordMalformedError) -> None:
        self._skipped_count += 1
        _LOGGER.warning(
            "record_skipped",
            source_uri=self.source_uri,
            index=error.index,
            reason=str(error),
        )
        if self._on_malformed is not None:
            self._on_malformed(error)


def open_record_source(
    source_uri: str,
    resume_from_index: int,
    config: SluiceConfig,
    required_columns: Iterable[str] = (),
    on_malformed: MalformedHandler | None = None,
) -> RecordCursor:
    """Open a CSV source positioned at a data-row offset.

    Args:
        source_uri: Local CSV path or ``s3://bucket/key``.
        resume_from_index: Number of leading data rows to parse and discard.
        config: Runtime configuration for S3 session defaults.
        required_columns: Columns the header must contain.
        on_malformed: Optional callback for each skipped malformed row.

    Returns:
        Cursor yielding raw records in source order.

    Raises:
        SluiceSourceError: If the source cannot be opened or lacks a usable header.
    """
    if resume_from_index < 0:
        raise SluiceSourceError(f"Resume offset must be >= 0, got {resume_from_index}.")
    csv.field_size_limit(_FIELD_SIZE_LIMIT)
    if is_s3_uri(source_uri):
        lines, closer = _open_s3_lines(parse_s3_uri(source_uri), config)
    else:
        lines, closer = _open_local_lines(Path(source_uri).expanduser())
    rows = csv.reader(lines)
    try:
        header = _read_header(source_uri, rows, required_columns)
    except SluiceSourceError:
        closer()
        raise
    _LOGGER.info(
        "source_opened",
        source_uri=source_uri,
        columns=len(header),
        resume_from_index=resume_from_index,
    )
    return RecordCursor(
        source_uri=source_uri,
        header=header,
        rows=rows,
        resume_from_index=resume_from_index,
        closer=closer,
        on_malformed=on_malformed,
    )


def _read_header(
    source_uri: str,
    rows: Iterator[list[str]],
    required_columns: Iterable[str],
) -> list[str]:
    """Read and validate the header row.

    Raises:
        SluiceSourceError: If the header is missing, unparsable, or incomplete.
    """
    try:
        header = next(rows, None)
    except (csv.Error, OSError, UnicodeDecodeError) as error:
        raise SluiceSourceError(
            f"Failed to read header of {source_uri}: {error}. Provide a UTF-8 CSV file."
        ) from error
    if not header:
        raise SluiceSourceError(
            f"Source {source_uri} is empty: expected a header row. Provide a CSV with a header."
        )
    header = [column.strip().lstrip("\ufeff") for column in header]
    missing_columns = [column for column in required_columns if column not in header]
    if missing_columns:
        raise SluiceSourceError(
            f"Source {source_uri} is missing required columns: {', '.join(missing_columns)}. "
            "Check --id-field/--payload-field against the CSV header."
        )
    return header


def _open_local_lines(source_path: Path) -> tuple[TextIO, Callable[[], None]]:
    """Open a local CSV file for streaming.

    Raises:
        SluiceSourceError: If the path is missing or unreadable.
    """
    if not source_path.exists():
        raise SluiceSourceError(
            f"Failed to read source at {source_path}: path does not exist. "
            "Provide an existing CSV file."
        )
    if not source_path.is_file():
        raise SluiceSourceError(
            f"Failed to read source at {source_path}: not a regular file. "
            "Provide a single CSV file."
        )
    try:
        handle = source_path.open("r", encoding="utf-8", newline="")
    except OSError as error:
        raise SluiceSourceError(
            f"Failed to open source at {source_path}: {error}. Check file permissions."
        ) from error
    return handle, handle.close


def _open_s3_lines(
    location: S3Location,
    config: SluiceConfig,
) -> tuple[Iterable[str], Callable[[], None]]:
    """Open an S3 object as a decoded line stream.

    Raises:
        SluiceSourceError: If the object cannot be fetched.
    """
    s3_client = _create_s3_client(config)
    from botocore.exceptions import BotoCoreError, ClientError

    try:
        response = s3_client.get_object(Bucket=location.bucket, Key=location.key)
    except (BotoCoreError, ClientError) as error:
        raise SluiceSourceError(
            f"Failed to open s3://{location.bucket}/{location.key}: {error}. "
            "Check the object key and AWS credentials."
        ) from error
    body = response["Body"]
    return codecs.getreader("utf-8")(body), body.close


def _create_s3_client(config: SluiceConfig) -> Any:
    """Create a boto3 S3 client.

    Args:
        config: Runtime config containing optional profile/region.

    Returns:
        Boto3 S3 client.

    Raises:
        SluiceDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise SluiceDependencyError(
            "S3 support requires boto3, but it is not installed. "
            "Install boto3 to migrate from s3:// sources."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")
