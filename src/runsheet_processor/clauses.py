"""
Reservation Clause Parser

Best-effort detection of mineral reservations in a deed description, e.g.
"reserving unto grantor 1/2 of the oil, gas and other minerals". This is a
heuristic over the analysis provider's summary, not a legal parser.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


# Checked in this order; the first pattern that matches wins.
RESERVATION_PATTERNS = [
    ("reserving", re.compile(r'reserving.*?(\d+\s*/\s*\d+).*?mineral', re.IGNORECASE | re.DOTALL)),
    ("except", re.compile(r'except.*?(\d+\s*/\s*\d+).*?mineral', re.IGNORECASE | re.DOTALL)),
    ("saving", re.compile(r'saving.*?(\d+\s*/\s*\d+).*?mineral', re.IGNORECASE | re.DOTALL)),
    ("mineral_reserved", re.compile(r'mineral.*?(\d+\s*/\s*\d+).*?reserved', re.IGNORECASE | re.DOTALL)),
    ("undivided_reserved", re.compile(r'undivided\s+(\d+\s*/\s*\d+).*?mineral.*?reserved', re.IGNORECASE | re.DOTALL)),
]

# Reservation language without a fraction (patents reserving all minerals)
BLANKET_RESERVATION_PATTERNS = [
    r'\breserv(?:ing|es|ed|ation)\b.*\bminerals?\b',
    r'\bminerals?\b.*\breserved\b',
    r'\bmineral\s+rights\s+reserved\b',
    r'\bexcept(?:ing)?\b.*\bminerals?\b',
]

SURFACE_ONLY_PATTERNS = [
    r'\bsurface\s+only\b',
    r'\bonly\s+the\s+surface\b',
    r'\bminerals\s+(?:were\s+)?previously\s+conveyed\b',
]


@dataclass(frozen=True)
class ReservationMatch:
    """One reservation pattern hit in a description."""

    pattern: str
    fraction: str
    percentage: float


def fraction_to_percentage(fraction: str) -> float:
    """Convert "1/2" to 50.0. Malformed or zero-denominator fractions give 0."""
    try:
        numerator, denominator = (int(part) for part in fraction.replace(" ", "").split("/"))
    except ValueError:
        return 0.0
    if denominator == 0:
        return 0.0
    return min(numerator / denominator * 100, 100.0)


def find_mineral_reservations(description: Optional[str]) -> list[ReservationMatch]:
    """Return every reservation pattern that matches, in priority order."""
    if not description:
        return []

    matches = []
    for name, pattern in RESERVATION_PATTERNS:
        match = pattern.search(description)
        if match:
            fraction = match.group(1).replace(" ", "")
            matches.append(ReservationMatch(name, fraction, fraction_to_percentage(fraction)))
    return matches


def parse_mineral_reservation(description: Optional[str]) -> float:
    """
    Percentage of the grantor's minerals reserved by a deed description.

    Args:
        description: Free-text description of the conveyance

    Returns:
        Reserved percentage (e.g. "reserving 1/2 mineral interest" -> 50.0),
        or 0.0 when no reservation is found
    """
    matches = find_mineral_reservations(description)
    if not matches:
        return 0.0

    first = matches[0]
    others = {m.fraction for m in matches[1:] if m.fraction != first.fraction}
    if others:
        logger.warning(
            f"Ambiguous mineral reservation: using {first.fraction} ({first.pattern}), "
            f"also found {sorted(others)}"
        )
    logger.info(f"Found mineral reservation: {first.fraction} = {first.percentage}%")
    return first.percentage


def minerals_reserved(description: Optional[str]) -> bool:
    """Whether a patent or grant holds back the minerals."""
    if not description:
        return False
    if find_mineral_reservations(description):
        return True
    text = description.lower()
    return any(re.search(pattern, text) for pattern in BLANKET_RESERVATION_PATTERNS)


def describes_surface_only(description: Optional[str]) -> bool:
    """Whether a deed description conveys the surface estate alone."""
    if not description:
        return False
    text = description.lower()
    if any(re.search(pattern, text) for pattern in SURFACE_ONLY_PATTERNS):
        return True
    # "surface" with no mention of minerals at all
    return bool(re.search(r'\bsurface\b', text)) and "mineral" not in text
