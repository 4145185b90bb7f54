"""Journal of compensations that could not be applied."""

from .document_store import DocumentCollection
from .models import ReconciliationEntry, _utc_now


class ReconciliationJournal(DocumentCollection):
    """Failed compensations, kept until an operator replays them."""

    collection = "reconciliation"

    def record(self, entry: ReconciliationEntry) -> ReconciliationEntry:
        with self._lock():
            data = self._load_data()
            data[self.collection].append(entry.to_dict())
            self._save_data(data)
        return entry

    def list_entries(self, include_resolved: bool = False) -> list[ReconciliationEntry]:
        entries = [ReconciliationEntry.from_dict(e) for e in self._documents()]
        if include_resolved:
            return entries
        return [e for e in entries if not e.resolved]

    def mark_resolved(self, entry_id: str) -> bool:
        """Flag an entry as handled. Returns False if the ID is unknown."""
        with self._lock():
            data = self._load_data()
            entries = data[self.collection]
            idx = self._index_of(entries, "id", entry_id)
            if idx is None:
                return False
            entries[idx]["resolved"] = True
            entries[idx]["updated_at"] = _utc_now()
            self._save_data(data)
        return True
