"""
Ownership Ledger Tests.

Transfer rules, lease status, idempotency and the before/after display
state, exercised through apply_analysis and OwnershipLedger.
"""

from dataclasses import replace

import pytest

from conftest import make_analysis, patent
from runsheet_processor.ledger import OwnershipLedger, apply_analysis
from runsheet_processor.models import Analysis, OngoingOwnership
from runsheet_processor.transfers import (
    FULL_DEED,
    MINERAL_DEED,
    PATENT,
    SURFACE_DEED,
    classify_transfer,
    per_grantee_share,
)


def by_name(state: OngoingOwnership) -> dict:
    return {o.name: o for o in state.owners}


@pytest.fixture
def patented():
    """John Smith holding the whole 80 acre tract."""
    return apply_analysis(OngoingOwnership.empty(), patent("John Smith"), 80, row_index=0, row_id="row-0")


class TestClassifyTransfer:

    def test_rules(self):
        assert classify_transfer(make_analysis("Patent")) == PATENT
        assert classify_transfer(make_analysis("md")) == MINERAL_DEED
        assert classify_transfer(make_analysis("WD", description="Surface only")) == SURFACE_DEED
        assert classify_transfer(make_analysis("WD", description="Warranty deed")) == FULL_DEED
        assert classify_transfer(make_analysis("QCD")) == FULL_DEED

    def test_missing_type_uses_full_deed(self):
        assert classify_transfer(make_analysis(None)) == FULL_DEED


class TestPatent:

    def test_patent_baseline(self, patented):
        assert len(patented.owners) == 1
        owner = patented.owners[0]
        assert owner.name == "John Smith"
        assert owner.surface_percentage == 100
        assert owner.mineral_percentage == 100
        assert owner.net_surface_acres == 80
        assert owner.net_mineral_acres == 80
        assert patented.total_surface_percentage == 100
        assert patented.total_mineral_percentage == 100

    def test_reserved_minerals(self):
        state = apply_analysis(
            OngoingOwnership.empty(),
            patent("John Smith", description="Patent, all minerals reserved to the United States"),
            80,
        )

        owner = state.owners[0]
        assert owner.surface_percentage == 100
        assert owner.mineral_percentage == 0

    def test_unknown_acres_defaults(self):
        state = apply_analysis(OngoingOwnership.empty(), patent("John Smith"), 0)

        assert state.total_acres == 80
        assert state.owners[0].net_surface_acres == 80

    def test_previous_state_shows_grantor(self):
        ledger = OwnershipLedger(80)

        ledger.apply(patent("John Smith"), row_index=0, row_id="row-0")

        assert [o.name for o in ledger.previous.owners] == ["USA"]
        assert ledger.previous.owners[0].surface_percentage == 100
        assert ledger.previous.owners[0].mineral_percentage == 100


class TestFullDeed:

    @pytest.mark.parametrize("grantee_count", [1, 2, 3, 7])
    def test_conservation(self, patented, grantee_count):
        grantees = [f"Heir Number{i}" for i in range(grantee_count)]

        state = apply_analysis(patented, make_analysis("WD", ["John Smith"], grantees), 80)

        owners = by_name(state)
        assert "John Smith" not in owners
        assert sum(owners[g].surface_percentage for g in grantees) == pytest.approx(100)
        assert sum(owners[g].mineral_percentage for g in grantees) == pytest.approx(100)
        assert state.total_surface_percentage == pytest.approx(100)
        assert state.total_mineral_percentage == pytest.approx(100)

    def test_reservation(self, patented):
        deed = make_analysis("WD", ["John Smith"], ["Mary Jones"],
                             description="Warranty deed reserving 1/2 of the mineral interest")

        state = apply_analysis(patented, deed, 80)

        owners = by_name(state)
        assert owners["John Smith"].mineral_percentage == pytest.approx(50)
        assert owners["John Smith"].surface_percentage == pytest.approx(0)
        assert owners["Mary Jones"].mineral_percentage == pytest.approx(50)
        assert owners["Mary Jones"].surface_percentage == pytest.approx(100)
        assert owners["Mary Jones"].net_mineral_acres == pytest.approx(40)

    def test_grantee_exact_name_adds_to_existing_owner(self, patented):
        state = apply_analysis(patented, make_analysis("WD", ["John Smith"], ["Mary Jones"],
                                                       percentageChange=25), 80)
        state = apply_analysis(state, make_analysis("WD", ["John Smith"], ["mary jones"]), 80)

        owners = by_name(state)
        assert len(state.owners) == 1
        assert owners["Mary Jones"].surface_percentage == pytest.approx(100)

    def test_percentage_change_per_grantee(self, patented):
        deed = make_analysis("WD", ["John Smith"], ["Mary Jones", "Ann Brown"], percentageChange=25)

        owners = by_name(apply_analysis(patented, deed, 80))

        assert owners["Mary Jones"].surface_percentage == pytest.approx(25)
        assert owners["Ann Brown"].mineral_percentage == pytest.approx(25)
        assert owners["John Smith"].surface_percentage == pytest.approx(50)

    def test_percentage_change_never_exceeds_grantor(self):
        assert per_grantee_share(50, 2, 40) == pytest.approx(25)
        assert per_grantee_share(50, 2, 20) == pytest.approx(20)
        assert per_grantee_share(0, 2, 20) == 0

    def test_owner_ids_are_stable(self, patented):
        state = apply_analysis(patented, make_analysis("WD", ["John Smith"], ["Mary Jones"],
                                                       percentageChange=50), 80)

        owners = by_name(state)
        assert owners["John Smith"].owner_id == "owner-1"
        assert owners["Mary Jones"].owner_id == "owner-2"


class TestMineralAndSurfaceDeeds:

    def test_mineral_deed_leaves_surface_alone(self, patented):
        before = {o.name: o.surface_percentage for o in patented.owners}

        state = apply_analysis(patented, make_analysis("MD", ["John Smith"], ["Acme Oil LLC", "Zed Energy"]), 80)

        owners = by_name(state)
        assert owners["John Smith"].surface_percentage == before["John Smith"]
        assert owners["John Smith"].mineral_percentage == pytest.approx(0)
        assert owners["Acme Oil LLC"].surface_percentage == 0
        assert owners["Acme Oil LLC"].mineral_percentage == pytest.approx(50)
        assert owners["Zed Energy"].mineral_percentage == pytest.approx(50)

    def test_surface_deed_mirrors_mineral_deed(self, patented):
        state = apply_analysis(
            patented, make_analysis("WD", ["John Smith"], ["Mary Jones"], description="Surface only"), 80
        )

        owners = by_name(state)
        assert owners["John Smith"].surface_percentage == pytest.approx(0)
        assert owners["John Smith"].mineral_percentage == pytest.approx(100)
        assert owners["Mary Jones"].surface_percentage == pytest.approx(100)
        assert owners["Mary Jones"].mineral_percentage == 0


class TestApplyAnalysis:

    def test_input_state_not_modified(self, patented):
        snapshot = patented.to_dict()

        apply_analysis(patented, make_analysis("WD", ["John Smith"], ["Mary Jones"]), 80)

        assert patented.to_dict() == snapshot

    def test_deterministic(self, patented):
        deed = make_analysis("WD", ["John Smith"], ["Mary Jones", "Ann Brown"])

        assert apply_analysis(patented, deed, 80, row_index=1) == apply_analysis(patented, deed, 80, row_index=1)

    def test_repeat_row_ignored(self, patented):
        deed = make_analysis("WD", ["John Smith"], ["Mary Jones"], percentageChange=50)

        once = apply_analysis(patented, deed, 80, row_index=1, row_id="row-1")
        twice = apply_analysis(once, deed, 80, row_index=1, row_id="row-1")

        assert twice is once
        assert by_name(twice)["Mary Jones"].surface_percentage == pytest.approx(50)

    def test_no_ownership_change_keeps_owners(self, patented):
        note = make_analysis("Affidavit", ["John Smith"], [], ownership_change=False)

        state = apply_analysis(patented, note, row_index=3)

        assert state.owners == patented.owners
        assert state.last_updated_row == 3

    def test_lease_status(self, patented):
        lease = Analysis.from_dict({
            "documentType": "OGL",
            "grantors": ["John Smith"],
            "grantees": ["Acme Oil LLC"],
            "ownershipChange": False,
            "leaseStatus": "active",
            "leaseDetails": {"lessee": "Acme Oil LLC", "term": "3 years", "clauses": ["Pugh"]},
        })

        state = apply_analysis(patented, lease, 80)

        owner = state.owners[0]
        assert owner.current_lease_status == "leased"
        assert owner.lease_details.term == "3 years"
        assert owner.lease_details.clauses == ("Pugh",)

    def test_expired_lease_is_hbp(self, patented):
        lease = make_analysis("OGL", ["John Smith"], ["Acme Oil LLC"], ownership_change=False,
                              leaseStatus="expired")

        assert apply_analysis(patented, lease, 80).owners[0].current_lease_status == "expired_hbp"

    def test_unknown_acres_stored_with_owners(self, patented):
        """The acreage used for net acres is the acreage recorded on the ledger."""
        lease = make_analysis("OGL", ["John Smith"], ["Acme Oil LLC"], ownership_change=False,
                              leaseStatus="active")

        state = apply_analysis(replace(patented, total_acres=0), lease, row_index=1, row_id="row-1")

        assert state.total_acres == 80
        assert state.owners[0].net_mineral_acres == 80

    def test_substring_mode_matches_partial_grantor(self, patented):
        deed = make_analysis("WD", ["Smith"], ["Mary Jones"])

        exact = apply_analysis(patented, deed, 80, mode="exact")
        legacy = apply_analysis(patented, deed, 80, mode="substring")

        assert len(exact.pending_transfers) == 1
        assert "Mary Jones" not in by_name(exact)
        assert by_name(legacy)["Mary Jones"].surface_percentage == pytest.approx(100)


class TestNameMatchMerge:

    def test_confirmed_nickname_merges(self):
        state = apply_analysis(OngoingOwnership.empty(), patent("William Johnson"), 80)
        state = apply_analysis(state, make_analysis("MD", ["William Johnson"], ["Sam Ray"],
                                                    percentageChange=50), 80)
        ledger = OwnershipLedger(80, state)

        deed = make_analysis("WD", ["Sam Ray"], ["Bill Johnson"])
        matches = ledger.check_for_name_matches(deed)
        assert [(m.new_name, m.matches[0].confidence, m.matches[0].reason) for m in matches] == [
            ("Bill Johnson", "medium", "Nickname variation"),
        ]

        ledger.apply(deed, confirmed_matches={"Bill Johnson": "William Johnson"})

        owners = by_name(ledger.state)
        merged = owners["William Johnson AKA Bill Johnson"]
        assert merged.surface_percentage == pytest.approx(100)
        assert merged.mineral_percentage == pytest.approx(100)
        assert set(merged.aliases) == {"William Johnson", "Bill Johnson"}
        assert len(ledger.state.owners) == 1

    def test_unconfirmed_grantee_is_new_owner(self):
        state = apply_analysis(OngoingOwnership.empty(), patent("William Johnson"), 80)
        deed = make_analysis("WD", ["William Johnson"], ["Bill Johnson"], percentageChange=50)

        owners = by_name(apply_analysis(state, deed, 80, confirmed_matches={}))

        assert owners["William Johnson"].surface_percentage == pytest.approx(50)
        assert owners["Bill Johnson"].surface_percentage == pytest.approx(50)


class TestOwnershipLedger:

    def test_restore_and_reset(self, patented):
        ledger = OwnershipLedger(80)
        ledger.restore(patented)

        assert ledger.state is patented

        ledger.reset()
        assert ledger.state.owners == ()
        assert ledger.state.total_acres == 80
