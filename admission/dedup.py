from __future__ import annotations


class Deduplicator:
    """Remembers every admitted event id for the life of the process."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def admit(self, event_id: str) -> bool:
        key = str(event_id)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __contains__(self, event_id: object) -> bool:
        return str(event_id) in self._seen

    def __len__(self) -> int:
        return len(self._seen)
