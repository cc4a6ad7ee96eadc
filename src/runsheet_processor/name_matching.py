"""
Name Resolver

Two jobs:
- Silent identity: deciding whether a grantor or grantee named in a row is
  an owner already in the ledger (exact by default, legacy substring mode
  available through NAME_MATCH_MODE).
- Suggestions: nickname and middle-name variants that might be the same
  person. These are never applied without confirmation.
"""

import logging
import re
from typing import Iterable, Optional

from .config import CONFIG
from .models import GranteeMatches, NameMatch, Owner

logger = logging.getLogger(__name__)


# ============================================================================
# NICKNAMES
# ============================================================================

COMMON_NICKNAMES = {
    'william': ['bill', 'billy', 'will'],
    'robert': ['bob', 'bobby', 'rob'],
    'james': ['jim', 'jimmy'],
    'john': ['jack', 'johnny'],
    'elizabeth': ['beth', 'liz', 'betty'],
    'margaret': ['maggie', 'peggy', 'meg'],
    'catherine': ['kate', 'cathy', 'katie'],
    'patricia': ['pat', 'patty', 'tricia'],
    'michael': ['mike', 'mick'],
    'richard': ['rick', 'dick', 'rich'],
    'joseph': ['joe', 'joey'],
    'charles': ['chuck', 'charlie'],
    'edward': ['ed', 'eddie', 'ted'],
    'thomas': ['tom', 'tommy'],
}


def _build_nickname_table() -> dict[str, set[str]]:
    """Bidirectional lookup: formal name <-> nicknames."""
    table: dict[str, set[str]] = {}
    for formal, nicknames in COMMON_NICKNAMES.items():
        table.setdefault(formal, set()).update(nicknames)
        for nickname in nicknames:
            table.setdefault(nickname, set()).add(formal)
    return table


NICKNAME_TABLE = _build_nickname_table()


# ============================================================================
# SILENT IDENTITY
# ============================================================================

def normalize_name(name: Optional[str]) -> str:
    """Lowercase, trim and collapse whitespace."""
    if not name:
        return ""
    return re.sub(r'\s+', ' ', str(name)).strip().lower()


def names_match(a: str, b: str, mode: str = None) -> bool:
    """
    Whether two names denote the same party without asking anyone.

    "exact" compares normalized names. "substring" accepts either name
    containing the other, which can merge distinct people ("Jon" and
    "Jonathan") and is kept only for legacy runsheets.
    """
    mode = mode or CONFIG.NAME_MATCH_MODE
    left, right = normalize_name(a), normalize_name(b)
    if not left or not right:
        return False
    if mode == "substring":
        return left in right or right in left
    return left == right


def owner_matches(owner: Owner, name: str, mode: str = None) -> bool:
    """Whether a name refers to this owner, including its AKA aliases."""
    return any(names_match(known, name, mode) for known in owner.names)


def find_owner_index(owners: Iterable[Owner], name: str, mode: str = None) -> int:
    """Index of the first owner the name refers to, or -1."""
    for index, owner in enumerate(owners):
        if owner_matches(owner, name, mode):
            return index
    return -1


# ============================================================================
# VARIANTS AND SUGGESTIONS
# ============================================================================

def _middle_elided(tokens: list[str]) -> Optional[str]:
    if len(tokens) > 2:
        return f"{tokens[0]} {tokens[-1]}"
    return None


def _nickname_variants(tokens: list[str]) -> list[str]:
    variants = []
    for position, token in enumerate(tokens):
        for substitute in sorted(NICKNAME_TABLE.get(token, ())):
            swapped = tokens[:position] + [substitute] + tokens[position + 1:]
            variants.append(" ".join(swapped))
    return variants


def get_name_variations(name: str) -> list[str]:
    """
    Spellings under which a name might appear on other instruments.

    Includes the normalized name itself, a first+last form when a middle
    name or initial is present, and nickname substitutions in both
    directions ("william" <-> "bill").
    """
    cleaned = normalize_name(name)
    if not cleaned:
        return []

    tokens = cleaned.split(" ")
    variations = [cleaned]

    elided = _middle_elided(tokens)
    if elided:
        variations.append(elided)

    variations.extend(_nickname_variants(tokens))
    if elided:
        variations.extend(_nickname_variants(elided.split(" ")))

    return list(dict.fromkeys(variations))


def _classify(new_name: str, owner_name: str) -> Optional[tuple[str, str]]:
    """Best (confidence, reason) for one candidate pair, or None."""
    new_clean = normalize_name(new_name)
    owner_clean = normalize_name(owner_name)
    if not new_clean or not owner_clean:
        return None

    if new_clean == owner_clean:
        return ("high", "Exact name match")

    new_parts = new_clean.split(" ")
    owner_parts = owner_clean.split(" ")

    new_nicknames = set(_nickname_variants(new_parts))
    owner_nicknames = set(_nickname_variants(owner_parts))
    if new_clean in owner_nicknames or owner_clean in new_nicknames or new_nicknames & owner_nicknames:
        return ("medium", "Nickname variation")

    if len(new_parts) != len(owner_parts):
        shorter, longer = sorted((new_parts, owner_parts), key=len)
        if shorter[0] == longer[0] and shorter[-1] == longer[-1]:
            return ("medium", "Missing middle name or initial")

    # Variants on both sides (e.g. "Bill A. Smith" vs "William Smith")
    if set(get_name_variations(new_name)) & set(get_name_variations(owner_name)):
        return ("medium", "Nickname variation")

    if len(new_parts) >= 2 and len(owner_parts) >= 2 and new_parts[0] == owner_parts[0]:
        if new_parts[-1] != owner_parts[-1]:
            return ("medium", "Same first name, different last name (possible name change)")

    return None


def find_potential_matches(new_name: str, existing_owners: Iterable[Owner]) -> list[NameMatch]:
    """
    Existing owners a new grantee might be, at most one entry per owner.

    Confidence is "high" for an exact name match and "medium" for nickname,
    missing-middle-name and possible-name-change matches. Aliases recorded
    on an owner are compared too.
    """
    matches: dict[str, NameMatch] = {}

    for owner in existing_owners:
        for known in owner.names:
            result = _classify(new_name, known)
            if result is None:
                continue
            confidence, reason = result
            current = matches.get(owner.name)
            if current is None or (current.confidence != "high" and confidence == "high"):
                matches[owner.name] = NameMatch(
                    owner_id=owner.owner_id,
                    owner_name=owner.name,
                    confidence=confidence,
                    reason=reason,
                )

    return list(matches.values())


def check_for_name_matches(grantees: Iterable[str], owners: Iterable[Owner]) -> list[GranteeMatches]:
    """Candidate sets for every grantee that resembles an existing owner."""
    owners = list(owners)
    results = []
    for grantee in grantees:
        matches = find_potential_matches(grantee, owners)
        if matches:
            logger.info(f"Grantee {grantee!r} may be an existing owner: "
                        f"{[(m.owner_name, m.confidence) for m in matches]}")
            results.append(GranteeMatches(new_name=grantee, matches=tuple(matches)))
    return results


def merged_owner_name(owner_name: str, grantee: str) -> str:
    """Display name for an owner merged with a confirmed grantee."""
    if normalize_name(owner_name) == normalize_name(grantee):
        return owner_name
    return f"{owner_name} AKA {grantee}"
