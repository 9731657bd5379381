"""
Session-scoped keyed collection for canonical records.

A store is created at session start and passed to the services that need it;
discarding it ends the session's records.
"""

from typing import Dict, Generic, Iterator, List, Optional, TypeVar

RecordT = TypeVar("RecordT")


class RecordStore(Generic[RecordT]):
    """Insertion-ordered records keyed by their `id` attribute."""

    def __init__(self) -> None:
        self._records: Dict[str, RecordT] = {}

    def add(self, record: RecordT) -> None:
        """Insert or overwrite by id."""
        self._records[record.id] = record

    def get(self, record_id: str) -> Optional[RecordT]:
        return self._records.get(record_id)

    def all(self) -> List[RecordT]:
        return list(self._records.values())

    def remove(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[RecordT]:
        return iter(list(self._records.values()))
