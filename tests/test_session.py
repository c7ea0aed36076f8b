"""Unit tests for session.py: run identity, stale-run guards, and
hand-edited report bodies.

Run with: python3 -m pytest tests/test_session.py -v
"""

import asyncio

import pytest

from conftest import FakeTracker
from iteration_report.grouping import group_items
from iteration_report.report_data import PeriodContext, WorkItem
from iteration_report.session import ReportSession, StaleRunError


def _items():
    return [
        WorkItem(id=1, iid=1, title="A", state="opened", tags=["Assignee::Ana"]),
        WorkItem(id=2, iid=2, title="B", state="closed", tags=["Assignee::Ben"]),
        WorkItem(id=3, iid=3, title="C", state="opened"),
    ]


def _loaded_session(name="Sprint 1", existing=""):
    session = ReportSession()
    run = session.begin(PeriodContext(display_name=name, existing_report_id=existing))
    items = _items()
    session.load(run, items, group_items(items))
    return session, run


async def _ok(name, titles, phase):
    return f"summary of {name}"


class TestRunIdentity:

    def test_new_run_makes_old_stale(self):
        session = ReportSession()
        first = session.begin(PeriodContext(display_name="One"))
        second = session.begin(PeriodContext(display_name="Two"))
        assert not first.is_current()
        assert second.is_current()
        assert session.context.display_name == "Two"

    def test_load_from_stale_run_ignored(self):
        session = ReportSession()
        old = session.begin(PeriodContext(display_name="One"))
        session.begin(PeriodContext(display_name="Two"))
        assert session.load(old, _items(), group_items(_items())) is False
        assert session.items == []
        assert session.body == ""

    def test_load_renders_initial_report(self):
        session, _ = _loaded_session()
        assert session.body.startswith("## Sprint 1")
        assert "**Ana** (1 issues):" in session.body


class TestEnrich:

    def test_snapshots_update_body(self):
        session, run = _loaded_session()

        async def _go():
            return [s async for s in session.enrich(run, _ok)]

        snapshots = asyncio.run(_go())
        assert len(snapshots) == 3
        assert session.body == snapshots[-1].body
        assert "*summary of Ben*" in session.body

    def test_stale_run_stops_enrichment(self):
        session, run = _loaded_session()
        calls = []

        async def switching(name, titles, phase):
            calls.append(name)
            if name == "Ana":
                # user picks another period while the first call is in flight
                session.begin(PeriodContext(display_name="Sprint 2"))
            return "text"

        async def _go():
            return [s async for s in session.enrich(run, switching)]

        snapshots = asyncio.run(_go())
        assert snapshots == []
        assert calls == ["Ana"]
        assert session.latest_generated is None
        assert session.context.display_name == "Sprint 2"

    def test_stale_run_cannot_start_enrichment(self):
        session, run = _loaded_session()
        session.begin(PeriodContext(display_name="Sprint 2"))

        async def _go():
            return [s async for s in session.enrich(run, _ok)]

        assert asyncio.run(_go()) == []

    def test_edited_body_not_overwritten(self):
        session, run = _loaded_session()
        session.edit_body("my own words")

        async def _go():
            return [s async for s in session.enrich(run, _ok)]

        snapshots = asyncio.run(_go())
        assert session.body == "my own words"
        assert session.body_edited
        assert session.latest_generated == snapshots[-1]


class TestPublish:

    def test_publishes_edited_body(self):
        session, run = _loaded_session(existing="9")
        session.edit_body("edited")
        tracker = FakeTracker()
        result = asyncio.run(session.publish(run, tracker))
        assert tracker.descriptions[9] == "edited"
        assert result.linked_count == 3

    def test_stale_run_refused(self):
        session, run = _loaded_session(existing="9")
        session.begin(PeriodContext(display_name="Sprint 2"))
        tracker = FakeTracker()
        with pytest.raises(StaleRunError, match="Sprint 1"):
            asyncio.run(session.publish(run, tracker))
        assert tracker.calls == []
