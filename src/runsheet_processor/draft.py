"""Mutable working copy of the ledger used while one row is being applied."""

import logging
from dataclasses import replace
from typing import Optional

from .models import OngoingOwnership, Owner, PendingTransfer
from .name_matching import find_owner_index, merged_owner_name, normalize_name

logger = logging.getLogger(__name__)

# Percentages below this are treated as zero
EPSILON = 1e-9


class LedgerDraft:
    """
    Scratch state for a single ledger transition.

    Built from an immutable OngoingOwnership, mutated by the transfer rules
    and the pending-transfer pass, then frozen again by build(). The input
    state is never touched.
    """

    def __init__(self, state: OngoingOwnership, total_acres: float, mode: str = None):
        self.owners: list[Owner] = list(state.owners)
        self.pending: list[PendingTransfer] = list(state.pending_transfers)
        self.next_owner_number = state.next_owner_number
        self.total_acres = total_acres
        self.mode = mode

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find(self, name: str) -> int:
        """Owner index for a grantor/lessor name under the configured identity rule."""
        return find_owner_index(self.owners, name, self.mode)

    def find_exact(self, name: str) -> int:
        """Owner index for a grantee name; grantees only merge on exact names."""
        return find_owner_index(self.owners, name, "exact")

    def index_of(self, owner_id: str) -> int:
        for index, owner in enumerate(self.owners):
            if owner.owner_id == owner_id:
                return index
        return -1

    def find_confirmed(self, chosen: str) -> int:
        """Owner picked by a confirmation: by id, display name or alias."""
        index = self.index_of(chosen)
        if index >= 0:
            return index
        for index, owner in enumerate(self.owners):
            if owner.name == chosen or normalize_name(owner.name) == normalize_name(chosen):
                return index
        return self.find_exact(chosen)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def new_owner(self, name: str, surface: float = 0.0, mineral: float = 0.0,
                  document: Optional[str] = None) -> int:
        owner = Owner(
            owner_id=f"owner-{self.next_owner_number}",
            name=name,
            surface_percentage=surface,
            mineral_percentage=mineral,
            acquisition_document=document,
        )
        self.next_owner_number += 1
        self.owners.append(owner.with_acres(self.total_acres))
        return len(self.owners) - 1

    def update(self, index: int, **changes) -> Owner:
        owner = replace(self.owners[index], **changes).with_acres(self.total_acres)
        self.owners[index] = owner
        return owner

    def adjust(self, index: int, surface: float = 0.0, mineral: float = 0.0,
               document: Optional[str] = None) -> Owner:
        """Add (or with negative amounts, remove) interest on an owner."""
        owner = self.owners[index]
        return self.update(
            index,
            surface_percentage=max(owner.surface_percentage + surface, 0.0),
            mineral_percentage=max(owner.mineral_percentage + mineral, 0.0),
            acquisition_document=document or owner.acquisition_document,
        )

    def credit_grantee(self, grantee: str, surface: float, mineral: float,
                       document: Optional[str], confirmed_matches: Optional[dict] = None) -> Owner:
        """
        Give a grantee its share, merging into an existing owner when the
        names are identical or the caller confirmed the match.
        """
        chosen = (confirmed_matches or {}).get(grantee)
        index = self.find_confirmed(chosen) if chosen else -1

        if index >= 0:
            owner = self.owners[index]
            name = merged_owner_name(owner.name, grantee)
            aliases = owner.aliases
            if name != owner.name:
                aliases = tuple(dict.fromkeys(aliases + (owner.name, grantee)))
                logger.info(f"Merging grantee {grantee!r} into confirmed owner {owner.name!r}")
            self.update(index, name=name, aliases=aliases)
        else:
            if chosen:
                logger.warning(f"Confirmed owner {chosen!r} for {grantee!r} not in ledger, adding as new owner")
            index = self.find_exact(grantee)

        if index < 0:
            index = self.new_owner(grantee, surface, mineral, document)
            return self.owners[index]
        return self.adjust(index, surface, mineral, document)

    def prune(self) -> None:
        """Drop owners left with no surface and no mineral interest."""
        kept = []
        for owner in self.owners:
            if owner.surface_percentage <= EPSILON and owner.mineral_percentage <= EPSILON:
                logger.info(f"Removing {owner.name} from ledger (no remaining interest)")
                continue
            kept.append(owner)
        self.owners = kept

    def build(self, total_acres: float, last_updated_row: int,
              applied_rows: tuple[str, ...]) -> OngoingOwnership:
        acres = total_acres if total_acres > 0 else self.total_acres
        owners = tuple(owner.with_acres(acres) for owner in self.owners)
        # Keep the acreage the shares were priced with once anyone owns something
        stored = acres if owners and total_acres <= 0 else total_acres
        return OngoingOwnership(
            owners=owners,
            pending_transfers=tuple(self.pending),
            total_surface_percentage=sum(o.surface_percentage for o in owners),
            total_mineral_percentage=sum(o.mineral_percentage for o in owners),
            total_acres=stored,
            last_updated_row=last_updated_row,
            applied_rows=applied_rows,
            next_owner_number=self.next_owner_number,
        )
