"""Per-run identity tracking for aggregated catalog records."""

from __future__ import annotations


class Deduplicator:
    """Admit each record identifier at most once during a single run.

    Identifiers are compared by their string form so the integer ``550`` and
    the string ``"550"`` refer to the same movie. The seen set only grows.
    """

    __slots__ = ("_seen",)

    def __init__(self) -> None:
        self._seen: set[str] = set()

    @staticmethod
    def _key(record_id: int | str) -> str:
        return str(record_id).strip()

    def admit(self, record_id: int | str) -> bool:
        """Return ``True`` the first time ``record_id`` is seen, else ``False``."""

        key = self._key(record_id)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __contains__(self, record_id: object) -> bool:
        if not isinstance(record_id, (int, str)):
            return False
        return self._key(record_id) in self._seen

    def __len__(self) -> int:
        return len(self._seen)
