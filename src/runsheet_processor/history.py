"""History Tracker: ledger snapshots per approved row."""

import logging
from typing import Optional

from .models import OngoingOwnership

logger = logging.getLogger(__name__)


class HistoryTracker:
    """
    Ledger state as of each approved row, keyed by row number.

    Snapshots are immutable OngoingOwnership values, so handing one back
    out can never let later edits leak into it.
    """

    def __init__(self, snapshots: dict[int, OngoingOwnership] = None):
        self._snapshots: dict[int, OngoingOwnership] = dict(snapshots or {})

    def __len__(self) -> int:
        return len(self._snapshots)

    def __contains__(self, row_number: int) -> bool:
        return row_number in self._snapshots

    def snapshot(self, row_number: int, state: OngoingOwnership) -> None:
        self._snapshots[row_number] = state
        logger.debug(f"Snapshot stored for row {row_number} ({len(state.owners)} owners)")

    def get(self, row_number: int) -> Optional[OngoingOwnership]:
        return self._snapshots.get(row_number)

    def nearest_before(self, row_number: int) -> Optional[OngoingOwnership]:
        """Latest snapshot strictly before a row, or None when there is none."""
        earlier = [n for n in self._snapshots if n < row_number]
        if not earlier:
            return None
        return self._snapshots[max(earlier)]

    def discard_from(self, row_number: int) -> int:
        """Drop snapshots at or after a row. Returns how many were dropped."""
        stale = [n for n in self._snapshots if n >= row_number]
        for n in stale:
            del self._snapshots[n]
        if stale:
            logger.info(f"Discarded {len(stale)} ownership snapshots from row {row_number} on")
        return len(stale)

    def clear(self) -> None:
        self._snapshots.clear()

    def to_dict(self) -> dict:
        return {str(n): state.to_dict() for n, state in sorted(self._snapshots.items())}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'HistoryTracker':
        return cls({int(n): OngoingOwnership.from_dict(s) for n, s in (data or {}).items()})
