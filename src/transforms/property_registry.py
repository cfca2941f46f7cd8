"""First-seen property type registry.

This module fixes each property key's kind to the first kind observed in a
migration run. Registration is an atomic insert-if-absent per key, so
concurrent transforms never serialize on a global lock.
"""

from __future__ import annotations

from typing import Mapping

from core.types import PropertyKind


class PropertyTypeRegistry:
    """Concurrent key to kind map where the first registration sticks."""

    def __init__(
        self,
        index_name: str,
        initial_kinds: Mapping[str, PropertyKind] | None = None,
    ) -> None:
        self.index_name = index_name
        self._kinds: dict[str, PropertyKind] = dict(initial_kinds or {})

    def claim(self, key: str, kind: PropertyKind) -> bool:
        """Register ``kind`` for ``key`` if absent and report whether it matches.

        Args:
            key: Property key.
            kind: Kind inferred for the current value.

        Returns:
            True when the registered kind equals ``kind``.
        """
        # dict.setdefault is a single atomic operation under the GIL.
        registered = self._kinds.setdefault(key, kind)
        return registered == kind

    def kind_of(self, key: str) -> PropertyKind | None:
        """Return the registered kind for a key, or None when unseen."""
        return self._kinds.get(key)

    def snapshot(self) -> dict[str, PropertyKind]:
        """Return a point-in-time copy of all registrations."""
        return self._kinds.copy()

    def __len__(self) -> int:
        return len(self._kinds)
