"""
Deduplication

Set-union of business records keyed on (name, formatted_address,
phone_number). The fetcher's own ``source_id`` is not used by default: the
same business can surface under different ids across nearby searches.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

DEFAULT_KEY_FIELDS = ("name", "formatted_address", "phone_number")


class Deduplicator:
    """Keeps the first occurrence of every identity key, in original order."""

    def __init__(self, key_fields: Sequence[str] = DEFAULT_KEY_FIELDS):
        if not key_fields:
            raise ValueError("key_fields must not be empty")
        self.key_fields = tuple(key_fields)

    def key(self, record: Dict) -> Tuple[str, ...]:
        """Identity key; missing or null fields count as empty strings."""
        values = []
        for name in self.key_fields:
            value = record.get(name)
            values.append("" if value is None else str(value).strip())
        return tuple(values)

    def merge(self, existing: Iterable[Dict], incoming: Iterable[Dict]) -> List[Dict]:
        """Return ``existing`` followed by unseen ``incoming`` records, without duplicates."""
        seen = set()
        merged = []
        for batch in (existing, incoming):
            for record in batch:
                key = self.key(record)
                if key in seen:
                    continue
                seen.add(key)
                merged.append(record)
        return merged


class ResultAccumulator:
    """
    Append-only, deduplicated record list.

    Not thread-safe on its own; the orchestrator guards it with its lock.
    """

    def __init__(self, deduplicator: Optional[Deduplicator] = None, records: Iterable[Dict] = ()):
        self.deduplicator = deduplicator or Deduplicator()
        self._records: List[Dict] = []
        self._seen = set()
        self.add(records)

    def add(self, records: Iterable[Dict]) -> int:
        """Add unseen records; returns how many were new."""
        added = 0
        for record in records:
            key = self.deduplicator.key(record)
            if key in self._seen:
                continue
            self._seen.add(key)
            self._records.append(record)
            added += 1
        return added

    @property
    def records(self) -> List[Dict]:
        return list(self._records)

    def __len__(self):
        return len(self._records)
