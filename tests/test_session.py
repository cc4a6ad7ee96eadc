"""
Row-by-Row Analysis Session Tests.
"""

import asyncio

import pytest

from conftest import ScriptedProvider, make_analysis, patent
from runsheet_processor.exceptions import AnalysisFailedError, InvalidTransitionError, SessionBusyError
from runsheet_processor.session import RowAnalysisSession


def by_name(state):
    return {o.name: o for o in state.owners}


@pytest.fixture
def session(runsheet_text, runsheet_analyses, store):
    return RowAnalysisSession(
        document_text=runsheet_text,
        prospect="Smith 1-H",
        total_acres=80,
        provider=ScriptedProvider(runsheet_analyses),
        store=store,
        session_key="smith-1h",
    )


async def analyze_and_approve(session, count):
    for _ in range(count):
        await session.analyze_current_row()
        await session.approve_current_row()


class TestWalkthrough:
    """Analyzing and approving every row."""

    async def test_full_runsheet(self, runsheet_text, runsheet_analyses):
        completed = []

        async def on_complete(final):
            completed.append(final)

        session = RowAnalysisSession(runsheet_text, "Smith 1-H", 80,
                                     provider=ScriptedProvider(runsheet_analyses),
                                     on_complete=on_complete)

        await analyze_and_approve(session, 3)

        assert session.complete
        assert all(row.status == "approved" for row in session.rows)
        assert completed == [session.ownership]
        owners = by_name(session.ownership)
        assert owners["Mary Jones"].surface_percentage == pytest.approx(100)
        assert owners["Mary Jones"].mineral_percentage == pytest.approx(0)
        assert owners["Acme Oil LLC"].mineral_percentage == pytest.approx(100)
        assert "John Smith" not in owners

    async def test_provider_request(self, session):
        await session.analyze_current_row()

        request = session.provider.requests[0]
        assert request.row_number == 1
        assert request.prospect == "Smith 1-H"
        assert request.total_acres == 80
        assert request.current_ownership.owners == ()
        assert request.row_content.startswith("Patent\n• USA")

    async def test_analyzed_row(self, session):
        row = await session.analyze_current_row()

        assert row.status == "analyzed"
        assert row.analysis.document_type == "Patent"
        assert session.ownership.owners[0].name == "John Smith"
        assert session.rows_analyzed == 1

    async def test_approve_requires_analysis(self, session):
        with pytest.raises(InvalidTransitionError):
            await session.approve_current_row()

    async def test_complete_session_rejects_analysis(self, session):
        await analyze_and_approve(session, 3)

        with pytest.raises(InvalidTransitionError):
            await session.analyze_current_row()

    async def test_navigation_bounds(self, session):
        assert await session.go_to_previous_row() == 0
        assert await session.go_to_next_row() == 1
        assert await session.go_to_next_row() == 2
        assert await session.go_to_next_row() == 2


class TestProviderFailures:

    async def test_failure_leaves_row_and_ledger(self, runsheet_text):
        session = RowAnalysisSession(runsheet_text, "Smith 1-H", 80,
                                     provider=ScriptedProvider({1: RuntimeError("provider down")}))

        with pytest.raises(AnalysisFailedError) as excinfo:
            await session.analyze_current_row()

        assert excinfo.value.row_number == 1
        assert session.current_row.status == "pending"
        assert session.ownership.owners == ()
        assert session.errors == 1
        assert not session.busy

    async def test_retry_after_failure(self, runsheet_text, runsheet_analyses):
        provider = ScriptedProvider({1: RuntimeError("provider down")})
        session = RowAnalysisSession(runsheet_text, "Smith 1-H", 80, provider=provider)
        with pytest.raises(AnalysisFailedError):
            await session.analyze_current_row()

        provider.analyses[1] = runsheet_analyses[1]
        row = await session.analyze_current_row()

        assert row.status == "analyzed"
        assert len(session.ownership.owners) == 1

    async def test_cancellation_restores_row(self, session):
        session.provider.gate = asyncio.Event()
        task = asyncio.create_task(session.analyze_current_row())
        while not session.provider.requests:
            await asyncio.sleep(0)
        assert session.current_row.status == "analyzing"

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.current_row.status == "pending"
        assert session.ownership.owners == ()
        assert not session.busy


class TestSerialization:
    """One analysis or ledger update at a time."""

    async def test_busy_session_rejects_actions(self, session):
        session.provider.gate = asyncio.Event()
        task = asyncio.create_task(session.analyze_current_row())
        while not session.provider.requests:
            await asyncio.sleep(0)

        assert session.busy
        with pytest.raises(SessionBusyError):
            await session.analyze_current_row()
        with pytest.raises(SessionBusyError):
            await session.approve_current_row()

        session.provider.gate.set()
        await task
        assert session.current_row.status == "analyzed"
        assert len(session.provider.requests) == 1


class TestNameMatchConfirmation:

    @pytest.fixture
    def analyses(self):
        return {
            1: patent("William Johnson"),
            2: make_analysis("WD", ["William Johnson"], ["Bill Johnson"], percentageChange=50),
        }

    async def test_two_phase_confirmation(self, analyses):
        session = RowAnalysisSession("Patent\nWD", "Johnson", 80, provider=ScriptedProvider(analyses))
        await analyze_and_approve(session, 1)

        await session.analyze_current_row()

        pending = session.pending_name_matches
        assert pending is not None
        assert pending.matches[0].new_name == "Bill Johnson"
        assert pending.matches[0].matches[0].reason == "Nickname variation"
        assert len(session.ownership.owners) == 1
        with pytest.raises(InvalidTransitionError):
            await session.approve_current_row()

        await session.confirm_name_matches(None)

        owners = by_name(session.ownership)
        assert owners["William Johnson"].surface_percentage == pytest.approx(50)
        assert owners["Bill Johnson"].surface_percentage == pytest.approx(50)
        assert session.pending_name_matches is None
        await session.approve_current_row()
        assert session.complete

    async def test_in_process_port(self, analyses):
        seen = []

        async def confirm(matches):
            seen.append(matches)
            return {"Bill Johnson": "William Johnson"}

        session = RowAnalysisSession("Patent\nWD", "Johnson", 80,
                                     provider=ScriptedProvider(analyses), confirm_matches=confirm)
        await analyze_and_approve(session, 2)

        assert [m.new_name for m in seen[0]] == ["Bill Johnson"]
        owners = by_name(session.ownership)
        assert list(owners) == ["William Johnson AKA Bill Johnson"]
        assert owners["William Johnson AKA Bill Johnson"].surface_percentage == pytest.approx(100)

    async def test_unsuggested_pair_ignored(self, analyses):
        session = RowAnalysisSession("Patent\nWD", "Johnson", 80, provider=ScriptedProvider(analyses))
        await analyze_and_approve(session, 1)
        await session.analyze_current_row()

        await session.confirm_name_matches({"Bill Johnson": "Somebody Else"})

        assert "Bill Johnson" in by_name(session.ownership)

    async def test_unapplied_row_cannot_be_approved(self, analyses):
        session = RowAnalysisSession("Patent\nWD", "Johnson", 80, provider=ScriptedProvider(analyses))
        await analyze_and_approve(session, 1)
        await session.analyze_current_row()
        session.pending_name_matches = None

        with pytest.raises(InvalidTransitionError, match="not been applied"):
            await session.approve_current_row()
        assert session.current_row.status == "analyzed"

    async def test_going_back_releases_held_row(self, analyses):
        session = RowAnalysisSession("Patent\nWD", "Johnson", 80, provider=ScriptedProvider(analyses))
        await analyze_and_approve(session, 1)
        await session.analyze_current_row()
        await session.go_to_previous_row()

        await session.analyze_current_row()

        assert session.pending_name_matches is None
        assert session.rows[1].status == "pending"
        assert list(by_name(session.ownership)) == ["William Johnson"]

    async def test_confirm_without_pending_matches(self, session):
        with pytest.raises(InvalidTransitionError):
            await session.confirm_name_matches({})


class TestReanalysis:
    """Going back never applies a conveyance twice."""

    async def test_reanalyzing_applied_row_rebuilds_from_snapshot(self, session):
        await analyze_and_approve(session, 2)
        await session.go_to_previous_row()
        assert session.current_row.row_number == 2

        session.provider.analyses[2] = make_analysis("WD", ["John Smith"], ["Mary Jones"],
                                                     percentageChange=50)
        await session.analyze_current_row()

        owners = by_name(session.ownership)
        assert owners["John Smith"].surface_percentage == pytest.approx(50)
        assert owners["Mary Jones"].surface_percentage == pytest.approx(50)
        assert 2 not in session.history
        assert 1 in session.history
        assert session.rows[2].status == "pending"

    async def test_reanalysis_request_sees_prior_ledger(self, session):
        await analyze_and_approve(session, 2)
        await session.go_to_previous_row()

        await session.analyze_current_row()

        request = session.provider.requests[-1]
        assert [o.name for o in request.current_ownership.owners] == ["John Smith"]
        assert by_name(session.ownership)["Mary Jones"].surface_percentage == pytest.approx(100)

    async def test_correction_replaces_analysis(self, session):
        await analyze_and_approve(session, 1)
        await session.analyze_current_row()

        correction = make_analysis("WD", ["John Smith"], ["Mary Jones", "Ann Brown"])
        row = await session.correct_current_row(correction)

        assert row.status == "corrected"
        assert row.user_correction == correction
        owners = by_name(session.ownership)
        assert owners["Mary Jones"].surface_percentage == pytest.approx(50)
        assert owners["Ann Brown"].surface_percentage == pytest.approx(50)
        assert "John Smith" not in owners

    async def test_reanalysis_drops_unapproved_earlier_rows(self, session):
        """Rows skipped without approval lose their ledger effect and go back to pending."""
        await session.analyze_current_row()
        await session.go_to_next_row()
        await session.analyze_current_row()

        await session.analyze_current_row()

        assert session.rows[0].status == "pending"
        assert session.rows[1].status == "analyzed"
        assert session.rows[0].id not in session.ownership.applied_rows
        assert session.ownership.owners == ()
        assert len(session.ownership.pending_transfers) == 1

        await session.go_to_previous_row()
        await session.analyze_current_row()

        owners = by_name(session.ownership)
        assert list(owners) == ["Mary Jones"]
        assert owners["Mary Jones"].surface_percentage == pytest.approx(100)
        assert session.ownership.pending_transfers == ()

    async def test_correct_requires_analysis(self, session):
        with pytest.raises(InvalidTransitionError):
            await session.correct_current_row(make_analysis())

    async def test_navigation_does_not_drift(self, session):
        await analyze_and_approve(session, 2)
        snapshot = session.ownership_at(2)

        await session.go_to_previous_row()
        await session.go_to_next_row()

        assert session.ownership_at(2) == snapshot
        assert session.ownership == snapshot


class TestCheckpoints:

    async def test_progress_saved_and_restored(self, session, store, runsheet_text, runsheet_analyses):
        await analyze_and_approve(session, 1)
        await session.analyze_current_row()

        payload = store.checkpoints["smith-1h"]
        assert payload["currentRowIndex"] == 1
        assert set(payload) == {"rows", "currentRowIndex", "ongoingOwnership", "ownershipHistory"}

        resumed = RowAnalysisSession(runsheet_text, "Smith 1-H", 80,
                                     provider=ScriptedProvider(runsheet_analyses),
                                     store=store, session_key="smith-1h")
        assert await resumed.start()

        assert resumed.current_row_index == 1
        assert resumed.current_row.status == "analyzed"
        assert resumed.ownership == session.ownership
        assert resumed.ownership_at(1) == session.ownership_at(1)

    async def test_interrupted_analysis_restored_as_pending(self, session, store, runsheet_text):
        await session.start()
        payload = session.to_checkpoint()
        payload["rows"][0]["status"] = "analyzing"
        await store.save("smith-1h", payload)

        resumed = RowAnalysisSession(runsheet_text, "Smith 1-H", 80, store=store, session_key="smith-1h")
        await resumed.start()

        assert resumed.current_row.status == "pending"

    async def test_nothing_saved(self, session):
        assert not await session.start()

    async def test_start_fresh(self, session, store):
        await analyze_and_approve(session, 2)

        await session.start_fresh()

        assert session.current_row_index == 0
        assert all(row.status == "pending" for row in session.rows)
        assert session.ownership.owners == ()
        assert len(session.history) == 0
        assert store.checkpoints["smith-1h"]["currentRowIndex"] == 0

    async def test_name_match_hold_restored(self, store):
        analyses = {
            1: patent("William Johnson"),
            2: make_analysis("WD", ["William Johnson"], ["Bill Johnson"], percentageChange=50),
        }
        session = RowAnalysisSession("Patent\nWD", "Johnson", 80, provider=ScriptedProvider(analyses),
                                     store=store, session_key="johnson")
        await analyze_and_approve(session, 1)
        await session.analyze_current_row()

        resumed = RowAnalysisSession("Patent\nWD", "Johnson", 80, provider=ScriptedProvider(analyses),
                                     store=store, session_key="johnson")
        assert await resumed.start()

        assert resumed.current_row.status == "analyzed"
        assert resumed.pending_name_matches.matches[0].new_name == "Bill Johnson"
        assert list(by_name(resumed.ownership)) == ["William Johnson"]
        with pytest.raises(InvalidTransitionError):
            await resumed.approve_current_row()

        await resumed.confirm_name_matches(None)
        final = await resumed.approve_current_row()

        owners = by_name(final)
        assert owners["William Johnson"].surface_percentage == pytest.approx(50)
        assert owners["Bill Johnson"].surface_percentage == pytest.approx(50)

    async def test_unapplied_row_applied_on_restore(self, session, store, runsheet_text, runsheet_analyses):
        await analyze_and_approve(session, 1)
        await session.analyze_current_row()
        store.checkpoints["smith-1h"]["ongoingOwnership"] = session.ownership_at(1).to_dict()

        resumed = RowAnalysisSession(runsheet_text, "Smith 1-H", 80,
                                     provider=ScriptedProvider(runsheet_analyses),
                                     store=store, session_key="smith-1h")
        await resumed.start()

        assert resumed.pending_name_matches is None
        assert resumed.current_row.id in resumed.ownership.applied_rows
        assert list(by_name(resumed.ownership)) == ["Mary Jones"]
        await resumed.approve_current_row()
        assert resumed.current_row_index == 2
