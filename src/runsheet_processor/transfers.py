"""
Transfer Classifier

Routes an analyzed conveyance to one of four allocation rules and applies
it to a LedgerDraft:

- Patent: origin of title, the patentee takes the whole tract
- Mineral deed (MD): grantor's minerals pass, surface stays
- Surface-only deed (WD described as surface only): mirror of MD
- General/full deed (everything else): surface and minerals pass, less any
  reserved minerals

When the named grantor is not yet an owner, the conveyance is queued as
PendingTransfers instead of being applied.
"""

import logging
from typing import Optional

from .clauses import describes_surface_only, minerals_reserved, parse_mineral_reservation
from .draft import EPSILON, LedgerDraft
from .models import Analysis, PendingTransfer

logger = logging.getLogger(__name__)


PATENT = "patent"
MINERAL_DEED = "mineral_deed"
SURFACE_DEED = "surface_deed"
FULL_DEED = "full_deed"

DEFAULT_PATENT_GRANTOR = "USA"


def classify_transfer(analysis: Analysis) -> str:
    """Pick the allocation rule for a conveyance."""
    doc_type = (analysis.document_type or "").strip().upper()

    if doc_type == "PATENT":
        return PATENT
    if doc_type == "MD":
        return MINERAL_DEED
    if doc_type == "WD" and describes_surface_only(analysis.description):
        return SURFACE_DEED
    if not doc_type:
        logger.info("No document type on ownership change, using full deed rules")
    return FULL_DEED


def document_reference(analysis: Analysis, row_index: int) -> str:
    return analysis.document_reference or f"Row {row_index + 1}"


def per_grantee_share(available: float, grantee_count: int,
                      percentage_change: Optional[float] = None) -> float:
    """
    Percentage each grantee receives out of what the grantor can convey.

    Equal division by default. An explicit percentage change from the
    analysis is used instead, but never lets the grantees receive more
    than the grantor holds.
    """
    if grantee_count <= 0 or available <= EPSILON:
        return 0.0
    even = available / grantee_count
    if percentage_change is None or percentage_change <= 0:
        return even
    if percentage_change * grantee_count > available + EPSILON:
        logger.warning(
            f"Percentage change {percentage_change}% x {grantee_count} grantees exceeds "
            f"grantor's {available:.4f}%, splitting evenly instead"
        )
        return even
    return percentage_change


def _queue_pending(draft: LedgerDraft, analysis: Analysis, grantor: str, row_index: int,
                   transfer_type: str, surface: float, mineral: float,
                   reserved: Optional[float] = None) -> None:
    reference = document_reference(analysis, row_index)
    for grantee in analysis.grantees:
        draft.pending.append(PendingTransfer(
            grantor_name=grantor,
            grantee_name=grantee,
            surface_percentage=surface,
            mineral_percentage=mineral,
            document_reference=reference,
            row_index=row_index,
            transfer_type=transfer_type,
            reserved_mineral_percentage=reserved,
        ))
    logger.info(
        f"Grantor {grantor} not found - queued {len(analysis.grantees)} pending "
        f"{transfer_type} transfer(s) from {reference}"
    )


# ============================================================================
# RULES
# ============================================================================

def apply_patent(draft: LedgerDraft, analysis: Analysis, confirmed_matches: dict = None,
                 row_index: int = -1) -> None:
    """Original grant: the patentee holds the surface and, unless reserved, the minerals."""
    patentee = analysis.grantees[0]
    grantor = analysis.grantors[0] if analysis.grantors else DEFAULT_PATENT_GRANTOR
    if len(analysis.grantees) > 1:
        logger.warning(f"Patent lists {len(analysis.grantees)} grantees, using {patentee}")

    share = 100.0
    if analysis.percentage_change and 0 < analysis.percentage_change < 100:
        share = analysis.percentage_change
    mineral = 0.0 if minerals_reserved(analysis.description) else share
    reference = analysis.document_reference
    logger.info(f"Processing patent for {patentee} from {grantor} (minerals reserved: {mineral == 0})")

    chosen = (confirmed_matches or {}).get(patentee)
    index = draft.find_confirmed(chosen) if chosen else draft.find(patentee)
    if index >= 0:
        draft.update(
            index,
            surface_percentage=share,
            mineral_percentage=mineral,
            acquisition_document=reference or draft.owners[index].acquisition_document,
        )
    else:
        draft.new_owner(patentee, share, mineral, reference)


def apply_mineral_deed(draft: LedgerDraft, analysis: Analysis, confirmed_matches: dict = None,
                       row_index: int = -1) -> None:
    """Grantor keeps the surface; its minerals are divided among the grantees."""
    grantor = analysis.grantors[0] if analysis.grantors else None
    available = 100.0

    if grantor:
        index = draft.find(grantor)
        if index < 0:
            _queue_pending(draft, analysis, grantor, row_index, "mineral_only",
                           surface=0.0, mineral=100.0 / len(analysis.grantees))
            return
        available = draft.owners[index].mineral_percentage
    else:
        logger.warning("Mineral deed has no grantor, treating grantees as taking 100% of minerals")

    per_grantee = per_grantee_share(available, len(analysis.grantees), analysis.percentage_change)
    logger.info(f"Processing mineral deed - {per_grantee:.4f}% minerals to each of {len(analysis.grantees)} grantee(s)")

    if grantor:
        draft.adjust(index, mineral=-per_grantee * len(analysis.grantees),
                     document=analysis.document_reference)
    for grantee in analysis.grantees:
        draft.credit_grantee(grantee, 0.0, per_grantee, analysis.document_reference, confirmed_matches)


def apply_surface_deed(draft: LedgerDraft, analysis: Analysis, confirmed_matches: dict = None,
                       row_index: int = -1) -> None:
    """Grantor's surface is divided among the grantees; its minerals stay put."""
    grantor = analysis.grantors[0] if analysis.grantors else None
    available = 100.0

    if grantor:
        index = draft.find(grantor)
        if index < 0:
            _queue_pending(draft, analysis, grantor, row_index, "surface_only",
                           surface=100.0 / len(analysis.grantees), mineral=0.0)
            return
        available = draft.owners[index].surface_percentage
    else:
        logger.warning("Surface deed has no grantor, treating grantees as taking 100% of surface")

    per_grantee = per_grantee_share(available, len(analysis.grantees), analysis.percentage_change)
    logger.info(f"Processing surface deed - {per_grantee:.4f}% surface to each of {len(analysis.grantees)} grantee(s)")

    if grantor:
        draft.adjust(index, surface=-per_grantee * len(analysis.grantees),
                     document=analysis.document_reference)
    for grantee in analysis.grantees:
        draft.credit_grantee(grantee, per_grantee, 0.0, analysis.document_reference, confirmed_matches)


def apply_full_deed(draft: LedgerDraft, analysis: Analysis, confirmed_matches: dict = None,
                    row_index: int = -1) -> None:
    """Surface and minerals pass to the grantees, less any mineral reservation."""
    grantor = analysis.grantors[0] if analysis.grantors else None
    reserved = parse_mineral_reservation(analysis.description)
    grantee_count = len(analysis.grantees)
    surface_available = 100.0
    mineral_available = 100.0 - reserved

    if grantor:
        index = draft.find(grantor)
        if index < 0:
            _queue_pending(draft, analysis, grantor, row_index, "full",
                           surface=100.0 / grantee_count,
                           mineral=(100.0 - reserved) / grantee_count,
                           reserved=reserved)
            return
        owner = draft.owners[index]
        retained = reserved / 100 * owner.mineral_percentage
        surface_available = owner.surface_percentage
        mineral_available = owner.mineral_percentage - retained
        if retained > 0:
            logger.info(f"{owner.name} retains {retained:.4f}% minerals by reservation")
    else:
        logger.warning("Deed has no grantor, treating grantees as taking the whole tract")

    surface_each = per_grantee_share(surface_available, grantee_count, analysis.percentage_change)
    mineral_each = per_grantee_share(mineral_available, grantee_count, analysis.percentage_change)
    logger.info(
        f"Processing full deed - {surface_each:.4f}% surface / {mineral_each:.4f}% minerals "
        f"to each of {grantee_count} grantee(s)"
    )

    if grantor:
        draft.adjust(index, surface=-surface_each * grantee_count,
                     mineral=-mineral_each * grantee_count,
                     document=analysis.document_reference)
    for grantee in analysis.grantees:
        draft.credit_grantee(grantee, surface_each, mineral_each,
                             analysis.document_reference, confirmed_matches)


RULES = {
    PATENT: apply_patent,
    MINERAL_DEED: apply_mineral_deed,
    SURFACE_DEED: apply_surface_deed,
    FULL_DEED: apply_full_deed,
}


def apply_transfer(draft: LedgerDraft, analysis: Analysis, confirmed_matches: dict = None,
                   row_index: int = -1) -> str:
    """Dispatch a conveyance to its rule. Returns the rule applied."""
    rule = classify_transfer(analysis)
    RULES[rule](draft, analysis, confirmed_matches, row_index)
    return rule
