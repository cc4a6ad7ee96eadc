"""
Ownership Summary

Readable rendering of a ledger state for the completion report:
- Owners ordered by mineral interest, then surface interest
- Totals, and how far each estate is from being fully accounted for
- Conveyances still waiting on their grantor, as "Grantor to Grantee"
"""

from typing import Optional

from .models import OngoingOwnership, PendingTransfer


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

COMPANY_SUFFIXES = ['LLC', 'L.L.C.', 'Inc', 'Inc.', 'Corp', 'Corp.', 'Corporation',
                    'Company', 'Co.', 'Co', 'Ltd', 'Ltd.', 'LP', 'L.P.', 'LLP',
                    'L.L.P.', 'Trust', 'Estate', 'Partners', 'Partnership',
                    'Associates', 'Group', 'Holdings', 'Energy', 'Resources',
                    'Oil', 'Gas', 'Petroleum', 'Operating', 'Production', 'USA']

NAME_SUFFIXES = ['jr', 'jr.', 'sr', 'sr.', 'ii', 'iii', 'iv']


def extract_last_name(full_name: str) -> str:
    """Last name of a person, or the leading word(s) of a company name."""
    if not full_name:
        return ""

    # "William Johnson AKA Bill Johnson" -> "William Johnson"
    name = str(full_name).split(" AKA ")[0].strip()
    words = name.split()
    if not words:
        return name

    is_company = any(word.strip(',').lower() in [s.lower() for s in COMPANY_SUFFIXES] for word in words)
    if ' & ' in name or ' and ' in name.lower():
        is_company = True

    if is_company:
        meaningful_words = [w for w in words if w.lower() not in ('the', 'a', 'an')]
        if not meaningful_words:
            return name[:20]
        first_word = meaningful_words[0]
        # Initials like "XYZ" read better with the next word
        if len(first_word) <= 3 and len(meaningful_words) > 1:
            return f"{first_word} {meaningful_words[1]}"
        return first_word

    last = words[-1]
    if last.lower() in NAME_SUFFIXES and len(words) > 1:
        return words[-2]
    return last


def format_party_transfer(grantor: str, grantee: str, use_last_names: bool = True) -> Optional[str]:
    """Format 'Grantor to Grantee', optionally using last names only."""
    if not grantor and not grantee:
        return None

    if use_last_names:
        grantor_name = extract_last_name(grantor) if grantor else "Unknown"
        grantee_name = extract_last_name(grantee) if grantee else "Unknown"
    else:
        grantor_name = grantor or "Unknown"
        grantee_name = grantee or "Unknown"

    return f"{grantor_name} to {grantee_name}"


def format_percentage(value: float) -> str:
    """12.5 -> '12.5%', 33.333333 -> '33.3333%'."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return f"{text}%"


def _describe_pending(transfer: PendingTransfer) -> dict:
    if transfer.transfer_type == "mineral_only":
        share = f"{format_percentage(transfer.mineral_percentage)} of minerals"
    elif transfer.transfer_type == "surface_only":
        share = f"{format_percentage(transfer.surface_percentage)} of surface"
    else:
        share = (f"{format_percentage(transfer.surface_percentage)} of surface, "
                 f"{format_percentage(transfer.mineral_percentage)} of minerals")
    return {
        "label": format_party_transfer(transfer.grantor_name, transfer.grantee_name),
        "grantor": transfer.grantor_name,
        "grantee": transfer.grantee_name,
        "share": share,
        "documentReference": transfer.document_reference,
        "row": transfer.row_index + 1,
        "transferType": transfer.transfer_type,
    }


# ============================================================================
# SUMMARY
# ============================================================================

def summarize_ownership(state: OngoingOwnership) -> dict:
    """Structured summary of a ledger state."""
    owners = sorted(
        state.owners,
        key=lambda o: (-o.mineral_percentage, -o.surface_percentage, o.name.lower()),
    )
    return {
        "totalAcres": state.total_acres,
        "owners": [
            {
                "name": owner.name,
                "surface": format_percentage(owner.surface_percentage),
                "minerals": format_percentage(owner.mineral_percentage),
                "netSurfaceAcres": round(owner.net_surface_acres, 4),
                "netMineralAcres": round(owner.net_mineral_acres, 4),
                "leaseStatus": owner.current_lease_status,
                "acquisitionDocument": owner.acquisition_document,
            }
            for owner in owners
        ],
        "totalSurface": format_percentage(state.total_surface_percentage),
        "totalMinerals": format_percentage(state.total_mineral_percentage),
        "unaccountedSurface": format_percentage(max(100 - state.total_surface_percentage, 0)),
        "unaccountedMinerals": format_percentage(max(100 - state.total_mineral_percentage, 0)),
        "unresolvedTransfers": [_describe_pending(p) for p in state.pending_transfers],
    }


def format_ownership_summary(state: OngoingOwnership) -> str:
    """Plain-text version of summarize_ownership for logs and emails."""
    summary = summarize_ownership(state)
    lines = [f"Ownership ({summary['totalAcres']:g} acres):"]
    for owner in summary["owners"]:
        lines.append(
            f"  {owner['name']}: surface {owner['surface']} ({owner['netSurfaceAcres']:g} ac), "
            f"minerals {owner['minerals']} ({owner['netMineralAcres']:g} ac), lease {owner['leaseStatus']}"
        )
    lines.append(f"Totals: surface {summary['totalSurface']}, minerals {summary['totalMinerals']}")
    if summary["unresolvedTransfers"]:
        lines.append("Unresolved pending transfers:")
        for pending in summary["unresolvedTransfers"]:
            lines.append(f"  {pending['label']} ({pending['share']}, {pending['documentReference']})")
    return "\n".join(lines)
