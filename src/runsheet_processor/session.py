"""
Row-by-Row Analysis Session

Walks a runsheet one row at a time:

    pending -> analyzing -> analyzed <-> corrected -> approved -> next row

Only the current row can be analyzed, and only one analysis or ledger
update runs at a time. Each approval snapshots the ledger so that going
back and re-analyzing a row rebuilds from the nearest earlier snapshot
instead of applying the same conveyance twice.
"""

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Union

from .analyzer import AnalysisProvider
from .checkpoint import CheckpointStore
from .exceptions import AnalysisFailedError, CheckpointError, InvalidTransitionError, SessionBusyError
from .history import HistoryTracker
from .ledger import OwnershipLedger
from .models import Analysis, AnalysisRequest, DocumentRow, GranteeMatches, OngoingOwnership
from .segmenter import parse_document_into_rows

logger = logging.getLogger(__name__)


# Confirmation port: gets the candidate matches, returns {grantee: owner name}
# for the pairs the user accepted, or None to treat every grantee as new.
ConfirmMatches = Callable[[list[GranteeMatches]], Awaitable[Optional[dict]]]
CompletionCallback = Callable[[OngoingOwnership], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class PendingNameMatches:
    """An analysis held back until its grantee matches are confirmed."""

    row_id: str
    row_index: int
    analysis: Analysis
    matches: tuple[GranteeMatches, ...]

    def to_dict(self) -> dict:
        return {
            "rowId": self.row_id,
            "rowIndex": self.row_index,
            "analysis": self.analysis.to_dict(),
            "matches": [m.to_dict() for m in self.matches],
        }


class RowAnalysisSession:
    """One user's pass through one runsheet."""

    def __init__(
        self,
        document_text: str,
        prospect: str,
        total_acres: float = 0.0,
        provider: AnalysisProvider = None,
        confirm_matches: ConfirmMatches = None,
        store: CheckpointStore = None,
        session_key: str = None,
        on_complete: CompletionCallback = None,
        name_match_mode: str = None,
    ):
        self.document_text = document_text
        self.prospect = prospect
        self.total_acres = float(total_acres or 0)
        self.provider = provider
        self.confirm_matches = confirm_matches
        self.store = store
        self.session_key = session_key
        self.on_complete = on_complete

        self.rows: list[DocumentRow] = parse_document_into_rows(document_text)
        self.current_row_index = 0
        self.ledger = OwnershipLedger(self.total_acres, mode=name_match_mode)
        self.history = HistoryTracker()
        self.pending_name_matches: Optional[PendingNameMatches] = None
        self.complete = False

        self.rows_analyzed = 0
        self.errors = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def current_row(self) -> Optional[DocumentRow]:
        if 0 <= self.current_row_index < len(self.rows):
            return self.rows[self.current_row_index]
        return None

    @property
    def ownership(self) -> OngoingOwnership:
        return self.ledger.state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def ownership_at(self, row_number: int) -> Optional[OngoingOwnership]:
        """Ledger as it stood when a row was approved."""
        return self.history.get(row_number)

    @asynccontextmanager
    async def _exclusive(self):
        if self._lock.locked():
            raise SessionBusyError("An analysis is already in progress for this session")
        async with self._lock:
            yield

    def _require_row(self) -> DocumentRow:
        if self.complete:
            raise InvalidTransitionError("Session is complete; start fresh to analyze again")
        row = self.current_row
        if row is None:
            raise InvalidTransitionError("No rows to analyze")
        return row

    def _set_row(self, row: DocumentRow) -> None:
        self.rows[row.row_number - 1] = row

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def to_checkpoint(self) -> dict:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "currentRowIndex": self.current_row_index,
            "ongoingOwnership": self.ledger.state.to_dict(),
            "ownershipHistory": self.history.to_dict(),
        }

    def restore_checkpoint(self, payload: dict) -> bool:
        """Resume from saved progress. Returns False when the payload has no rows."""
        rows = payload.get("rows") or []
        if not rows:
            return False
        self.rows = [DocumentRow.from_dict(row) for row in rows]
        self.current_row_index = int(payload.get("currentRowIndex") or 0)
        ownership = payload.get("ongoingOwnership")
        if ownership:
            self.ledger.restore(OngoingOwnership.from_dict(ownership))
        self.history = HistoryTracker.from_dict(payload.get("ownershipHistory"))
        # An interrupted analysis never finished
        self.rows = [
            replace(row, status="analyzed" if row.analysis else "pending")
            if row.status == "analyzing" else row
            for row in self.rows
        ]
        self._restore_holds()
        self.complete = bool(self.rows) and all(row.status == "approved" for row in self.rows)
        return True

    def _restore_holds(self) -> None:
        """
        Re-establish rows that were analyzed but never reached the ledger.

        A row held for name-match confirmation is saved as analyzed with no
        ledger effect. The first such row is held again (or applied when it
        no longer has candidate matches); any later one must be re-analyzed.
        """
        self.pending_name_matches = None
        applied = set(self.ledger.state.applied_rows)
        for row in self.rows:
            if row.status not in ("analyzed", "corrected") or row.id in applied or row.analysis is None:
                continue
            if self.pending_name_matches is not None:
                logger.warning(f"Row {row.row_number} was never applied, returning it to pending")
                self._set_row(replace(row, status="pending"))
                continue
            matches = self.ledger.check_for_name_matches(row.analysis)
            if matches:
                self.pending_name_matches = PendingNameMatches(
                    row.id, row.row_number - 1, row.analysis, tuple(matches)
                )
                logger.info(f"Row {row.row_number} restored waiting on name-match confirmation")
            else:
                logger.info(f"Applying restored row {row.row_number} to the ledger")
                self._apply(row, row.analysis, {})

    async def start(self) -> bool:
        """Load saved progress once at session start. Returns True if restored."""
        if not (self.store and self.session_key):
            return False
        try:
            payload = await self.store.load(self.session_key)
        except CheckpointError as e:
            logger.error(f"Failed to restore progress: {e}")
            return False
        if payload and self.restore_checkpoint(payload):
            logger.info(f"Progress restored for {self.session_key} at row {self.current_row_index + 1}")
            return True
        return False

    async def _save(self) -> None:
        if not (self.store and self.session_key):
            return
        try:
            await self.store.save(self.session_key, self.to_checkpoint())
        except CheckpointError as e:
            logger.error(f"Failed to save progress for {self.session_key}: {e}")

    # ------------------------------------------------------------------
    # Ledger updates
    # ------------------------------------------------------------------

    def _base_state_for(self, row: DocumentRow) -> tuple[OngoingOwnership, bool]:
        """
        Ledger a row should be applied on top of.

        A row whose conveyance is already in the ledger is re-applied on the
        nearest snapshot before it, never on top of itself.
        """
        state = self.ledger.state
        if row.id not in state.applied_rows:
            return state, False
        snapshot = self.history.nearest_before(row.row_number)
        return snapshot or OngoingOwnership.empty(self.total_acres), True

    def _rewind_to(self, row: DocumentRow, base: OngoingOwnership) -> None:
        logger.info(f"Row {row.row_number} was already applied, rebuilding ledger from prior snapshot")
        # Rows whose effect the rewind drops, including earlier unapproved ones
        dropped = set(self.ledger.state.applied_rows) - set(base.applied_rows)
        self.ledger.restore(base)
        self.history.discard_from(row.row_number)
        for other in self.rows:
            if other.id == row.id or other.status == "pending":
                continue
            if other.row_number > row.row_number or other.id in dropped:
                self._set_row(replace(other, status="pending"))
                if other.row_number < row.row_number:
                    logger.warning(f"Row {other.row_number} was never approved, returning it to pending")

    def _drop_hold(self, row: DocumentRow) -> None:
        """Discard a name-match hold; a held row other than this one goes back to pending."""
        hold = self.pending_name_matches
        self.pending_name_matches = None
        if hold is None or hold.row_id == row.id:
            return
        held = self.rows[hold.row_index]
        if held.status != "approved":
            logger.warning(f"Row {held.row_number} name matches were never confirmed, returning it to pending")
            self._set_row(replace(held, status="pending"))

    async def _commit(self, row: DocumentRow, analysis: Analysis) -> None:
        """Apply an analysis to the ledger, pausing for name-match confirmation if needed."""
        index = row.row_number - 1
        matches = self.ledger.check_for_name_matches(analysis)
        if matches:
            if self.confirm_matches is None:
                self.pending_name_matches = PendingNameMatches(row.id, index, analysis, tuple(matches))
                logger.info(f"Row {row.row_number} waiting on confirmation of {len(matches)} possible name match(es)")
                return
            confirmed = await self.confirm_matches(matches)
            self._apply(row, analysis, confirmed or {})
            return
        self._apply(row, analysis, {})

    def _apply(self, row: DocumentRow, analysis: Analysis, confirmed: dict) -> None:
        self.ledger.apply(
            analysis,
            total_acres=self.total_acres,
            confirmed_matches=confirmed,
            row_index=row.row_number - 1,
            row_id=row.id,
        )
        self.pending_name_matches = None

    # ------------------------------------------------------------------
    # Row actions
    # ------------------------------------------------------------------

    async def analyze_current_row(self) -> DocumentRow:
        """
        Send the current row to the analysis provider and apply the result.

        Raises:
            AnalysisFailedError: provider failed; row and ledger are unchanged
            SessionBusyError: another action is in flight
        """
        if self.provider is None:
            raise InvalidTransitionError("No analysis provider configured")

        async with self._exclusive():
            row = self._require_row()
            base, rewind = self._base_state_for(row)
            self._set_row(replace(row, status="analyzing"))

            request = AnalysisRequest(
                row_content=row.content,
                row_number=row.row_number,
                prospect=self.prospect,
                total_acres=self.total_acres,
                current_ownership=base,
            )
            try:
                analysis = await self.provider.analyze(request)
            except asyncio.CancelledError:
                self._set_row(row)
                raise
            except Exception as e:
                self._set_row(row)
                self.errors += 1
                logger.error(f"Error analyzing row {row.row_number}: {e}", exc_info=True)
                raise AnalysisFailedError(row.row_number, str(e)) from e

            if rewind:
                self._rewind_to(row, base)
            analyzed = replace(row, status="analyzed", analysis=analysis)
            self._set_row(analyzed)
            self._drop_hold(row)
            self.rows_analyzed += 1

            await self._commit(analyzed, analysis)
            await self._save()
            return self.current_row

    async def confirm_name_matches(self, confirmed: Optional[dict]) -> OngoingOwnership:
        """
        Finish applying a row held for name-match confirmation.

        Args:
            confirmed: {grantee: chosen owner name} for accepted pairs, or
                None/{} to add every grantee as a new owner
        """
        async with self._exclusive():
            pending = self.pending_name_matches
            if pending is None:
                raise InvalidTransitionError("No name matches awaiting confirmation")

            candidates = {m.new_name: {c.owner_name for c in m.matches} | {c.owner_id for c in m.matches}
                          for m in pending.matches}
            accepted = {}
            for grantee, owner in (confirmed or {}).items():
                if owner in candidates.get(grantee, ()):
                    accepted[grantee] = owner
                else:
                    logger.warning(f"Ignoring confirmation {grantee!r} -> {owner!r}: not a suggested match")

            row = self.rows[pending.row_index]
            self._apply(row, pending.analysis, accepted)
            await self._save()
            return self.ledger.state

    async def correct_current_row(self, analysis: Analysis) -> DocumentRow:
        """Replace the current row's analysis with a human correction and re-apply it."""
        async with self._exclusive():
            row = self._require_row()
            if row.analysis is None:
                raise InvalidTransitionError(f"Row {row.row_number} has not been analyzed")

            base, rewind = self._base_state_for(row)
            if rewind:
                self._rewind_to(row, base)
            corrected = replace(row, status="corrected", analysis=analysis, user_correction=analysis)
            self._set_row(corrected)
            self._drop_hold(row)

            await self._commit(corrected, analysis)
            await self._save()
            return self.current_row

    async def approve_current_row(self) -> Optional[OngoingOwnership]:
        """
        Commit the current row and advance.

        Returns:
            The final ownership when this completes the session, else None
        """
        async with self._exclusive():
            row = self._require_row()
            if row.status not in ("analyzed", "corrected"):
                raise InvalidTransitionError(f"Row {row.row_number} is {row.status}, analyze it before approving")
            if self.pending_name_matches and self.pending_name_matches.row_id == row.id:
                raise InvalidTransitionError(f"Row {row.row_number} has name matches awaiting confirmation")
            if row.id not in self.ledger.state.applied_rows:
                raise InvalidTransitionError(f"Row {row.row_number} has not been applied to the ledger, re-analyze it")

            self.history.snapshot(row.row_number, self.ledger.state)
            self._set_row(replace(row, status="approved"))

            if self.current_row_index < len(self.rows) - 1:
                self.current_row_index += 1
                await self._save()
                return None

            self.complete = True
            await self._save()
            final = self.ledger.state
            logger.info(f"Runsheet analysis complete for {self.prospect}: {len(final.owners)} owners, "
                        f"{len(final.pending_transfers)} unresolved pending transfers")
            if self.on_complete:
                result = self.on_complete(final)
                if inspect.isawaitable(result):
                    await result
            return final

    async def go_to_previous_row(self) -> int:
        async with self._exclusive():
            if self.current_row_index > 0:
                self.current_row_index -= 1
                await self._save()
            return self.current_row_index

    async def go_to_next_row(self) -> int:
        async with self._exclusive():
            if self.current_row_index < len(self.rows) - 1:
                self.current_row_index += 1
                await self._save()
            return self.current_row_index

    async def start_fresh(self) -> None:
        """Reset every row to pending and clear the ledger, history and pending transfers."""
        async with self._exclusive():
            if self.store and self.session_key:
                try:
                    await self.store.delete(self.session_key)
                except CheckpointError as e:
                    logger.error(f"Failed to clear saved progress for {self.session_key}: {e}")
            self.rows = parse_document_into_rows(self.document_text)
            self.current_row_index = 0
            self.ledger.reset()
            self.history.clear()
            self.pending_name_matches = None
            self.complete = False
            logger.info(f"Analysis reset to start fresh for {self.prospect}")
            await self._save()

    def view(self) -> dict:
        """Session state for display."""
        return {
            **self.to_checkpoint(),
            "sessionKey": self.session_key,
            "prospect": self.prospect,
            "totalAcres": self.total_acres,
            "previousOwnership": self.ledger.previous.to_dict(),
            "pendingNameMatches": self.pending_name_matches.to_dict() if self.pending_name_matches else None,
            "complete": self.complete,
        }
