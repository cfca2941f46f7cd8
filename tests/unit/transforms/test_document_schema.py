"""Unit tests for fixed column coercion."""

from __future__ import annotations

import pytest

from transforms.document_schema import CoercionError, coerce_field


@pytest.mark.parametrize(
    ("raw_value", "kind", "expected"),
    [
        (" 0xabc ", "keyword", "0xabc"),
        ("12.5", "float", 12.5),
        ("1700000000", "integer", 1700000000),
        ("T", "boolean", True),
        ("false", "boolean", False),
        ("", "integer", None),
        (None, "keyword", None),
    ],
)
def test_coerce_field_parses_values(raw_value: str | None, kind: str, expected: object) -> None:
    """Raw strings should be coerced to their column kind; empty becomes absent."""
    assert coerce_field(raw_value, kind) == expected  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("raw_value", "kind"),
    [("12.5", "integer"), ("cheap", "float"), ("inf", "float"), ("yes", "boolean")],
)
def test_coerce_field_rejects_invalid_values(raw_value: str, kind: str) -> None:
    """Unparsable values should raise a coercion error."""
    with pytest.raises(CoercionError):
        coerce_field(raw_value, kind)  # type: ignore[arg-type]
