"""
Pending Transfer Queue

Conveyances whose grantor was unknown when recorded wait here until an
owner with that name appears. After every ledger change the queue is
scanned again; one resolution can introduce a grantee that is itself a
waiting grantor, so scanning repeats until nothing more resolves.
"""

import logging

from .draft import LedgerDraft
from .models import PendingTransfer
from .name_matching import owner_matches

logger = logging.getLogger(__name__)


def _resolve_one(draft: LedgerDraft, grantor_id: str, transfer: PendingTransfer,
                 base_surface: float, base_mineral: float) -> None:
    """Move one pending transfer's share from its grantor to its grantee."""
    surface_move = transfer.surface_percentage / 100 * base_surface
    mineral_move = transfer.mineral_percentage / 100 * base_mineral

    grantor_index = draft.index_of(grantor_id)
    grantor = draft.owners[grantor_index]
    surface_move = min(surface_move, grantor.surface_percentage)
    mineral_move = min(mineral_move, grantor.mineral_percentage)
    draft.adjust(grantor_index, surface=-surface_move, mineral=-mineral_move)

    grantee_index = draft.find_exact(transfer.grantee_name)
    if grantee_index >= 0:
        draft.adjust(grantee_index, surface_move, mineral_move, transfer.document_reference)
    else:
        draft.new_owner(transfer.grantee_name, surface_move, mineral_move, transfer.document_reference)

    logger.info(
        f"Resolved pending {transfer.transfer_type} transfer {transfer.document_reference}: "
        f"{grantor.name} -> {transfer.grantee_name} "
        f"({surface_move:.4f}% surface, {mineral_move:.4f}% minerals)"
    )


def resolve_pending_transfers(draft: LedgerDraft) -> int:
    """
    Apply every pending transfer whose grantor is now an owner.

    Amounts are fractions of the grantor's holdings at the moment its
    transfers are picked up, so several grantees of one deed each get
    their share of the same whole.

    Returns:
        Number of pending transfers resolved
    """
    resolved = 0

    while draft.pending:
        progressed = False
        for owner in list(draft.owners):
            waiting = [p for p in draft.pending if owner_matches(owner, p.grantor_name, draft.mode)]
            if not waiting:
                continue

            current = draft.owners[draft.index_of(owner.owner_id)]
            base_surface = current.surface_percentage
            base_mineral = current.mineral_percentage
            logger.info(f"Found {len(waiting)} pending transfers for {owner.name}")

            for transfer in waiting:
                _resolve_one(draft, owner.owner_id, transfer, base_surface, base_mineral)
                draft.pending.remove(transfer)
                resolved += 1
            progressed = True

        if not progressed:
            break

    return resolved
