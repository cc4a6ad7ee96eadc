"""
Ownership Ledger

apply_analysis() is the whole state transition for one analyzed row:

1. dispatch the conveyance to its transfer rule (or queue it as pending)
2. record lease status on the lessor/owner named in the row
3. resolve any pending transfers the change unblocked
4. drop owners with nothing left, recompute net acres and totals

It is a pure function of (state, analysis, confirmed matches): the input
OngoingOwnership is never modified and a row already applied is ignored.
"""

import logging
from typing import Optional

from .config import CONFIG
from .draft import LedgerDraft
from .models import Analysis, GranteeMatches, OngoingOwnership, Owner
from .name_matching import check_for_name_matches
from .pending import resolve_pending_transfers
from .transfers import DEFAULT_PATENT_GRANTOR, PATENT, apply_transfer, classify_transfer

logger = logging.getLogger(__name__)


LEASE_STATUS_MAP = {
    "active": "leased",
    "expired": "expired_hbp",
}


def effective_acres(state: OngoingOwnership, total_acres: Optional[float] = None) -> float:
    """Acreage for net-acre math: explicit, then ledger, then the configured default."""
    if total_acres and total_acres > 0:
        return float(total_acres)
    if state.total_acres > 0:
        return state.total_acres
    return CONFIG.DEFAULT_TOTAL_ACRES


def update_lease_status(draft: LedgerDraft, analysis: Analysis) -> None:
    """Mark the first grantor (or grantee) as leased, expired/HBP or open."""
    if analysis.lease_status == "none":
        return
    name = (analysis.grantors or analysis.grantees or (None,))[0]
    if not name:
        return
    index = draft.find(name)
    if index < 0:
        logger.debug(f"Lease party {name} is not an owner, lease status not recorded")
        return
    status = LEASE_STATUS_MAP.get(analysis.lease_status, "open")
    draft.update(index, current_lease_status=status, lease_details=analysis.lease_details)
    logger.info(f"Lease status for {draft.owners[index].name}: {status}")


def has_ownership_change(analysis: Analysis) -> bool:
    return bool(analysis.ownership_change and analysis.grantees)


def apply_analysis(state: OngoingOwnership, analysis: Analysis,
                   total_acres: Optional[float] = None,
                   confirmed_matches: Optional[dict] = None,
                   row_index: Optional[int] = None,
                   row_id: Optional[str] = None,
                   mode: str = None) -> OngoingOwnership:
    """
    Produce the ledger state after one analyzed row.

    Args:
        state: Ledger before the row
        analysis: The row's analysis
        total_acres: Tract size; 0/None falls back to the ledger, then the default
        confirmed_matches: {grantee name: owner name or id} the user confirmed
        row_index: 0-based row position, recorded as lastUpdatedRow
        row_id: Idempotency key; a row id already applied leaves state unchanged
        mode: Identity rule override ("exact" or "substring")

    Returns:
        New OngoingOwnership
    """
    if row_id and row_id in state.applied_rows:
        logger.warning(f"Row {row_id} already applied to ledger, ignoring repeat application")
        return state

    index = row_index if row_index is not None else state.last_updated_row
    changed = has_ownership_change(analysis)
    acres = effective_acres(state, total_acres)

    draft = LedgerDraft(state, acres, mode)
    if changed:
        apply_transfer(draft, analysis, confirmed_matches, index)
    update_lease_status(draft, analysis)
    resolve_pending_transfers(draft)
    draft.prune()

    if changed or (total_acres and total_acres > 0):
        new_total = acres
    else:
        new_total = state.total_acres

    applied_rows = state.applied_rows + (row_id,) if row_id else state.applied_rows
    return draft.build(new_total, index, applied_rows)


def patent_origin_state(analysis: Analysis, total_acres: float) -> OngoingOwnership:
    """The grantor of a first patent shown as the prior 100%/100% owner."""
    grantor = analysis.grantors[0] if analysis.grantors else DEFAULT_PATENT_GRANTOR
    origin = Owner(
        owner_id="owner-0",
        name=grantor,
        surface_percentage=100.0,
        mineral_percentage=100.0,
        acquisition_document="Original Government Ownership",
    ).with_acres(total_acres)
    return OngoingOwnership(
        owners=(origin,),
        total_surface_percentage=100.0,
        total_mineral_percentage=100.0,
        total_acres=total_acres,
    )


class OwnershipLedger:
    """
    Holds the current OngoingOwnership for one runsheet session.

    Every apply() swaps in a new immutable state; `previous` keeps the one
    before it for before/after display.
    """

    def __init__(self, total_acres: float = 0.0, state: OngoingOwnership = None, mode: str = None):
        self.total_acres = float(total_acres or 0)
        self.mode = mode
        self.state = state or OngoingOwnership.empty(self.total_acres)
        self.previous = self.state

    def check_for_name_matches(self, analysis: Analysis) -> list[GranteeMatches]:
        """Grantees of an ownership change that resemble existing owners."""
        if not has_ownership_change(analysis):
            return []
        return check_for_name_matches(analysis.grantees, self.state.owners)

    def apply(self, analysis: Analysis, total_acres: Optional[float] = None,
              confirmed_matches: Optional[dict] = None, row_index: Optional[int] = None,
              row_id: Optional[str] = None) -> OngoingOwnership:
        acres = total_acres if total_acres is not None else self.total_acres
        new_state = apply_analysis(self.state, analysis, acres, confirmed_matches,
                                   row_index, row_id, self.mode)
        if new_state is self.state:
            return new_state

        previous = self.state
        if (has_ownership_change(analysis) and not previous.owners
                and classify_transfer(analysis) == PATENT):
            previous = patent_origin_state(analysis, effective_acres(previous, acres))
        self.previous = previous
        self.state = new_state
        return new_state

    def restore(self, state: OngoingOwnership) -> None:
        """Replace the current state, e.g. from a history snapshot."""
        self.previous = self.state
        self.state = state

    def reset(self) -> None:
        self.state = OngoingOwnership.empty(self.total_acres)
        self.previous = self.state
