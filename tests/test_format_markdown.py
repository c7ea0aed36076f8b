"""Unit tests for format_markdown.py: format_report(), render_report(),
status_glyph().

Run with: python3 -m pytest tests/test_format_markdown.py -v
"""

from datetime import date

import pytest

from iteration_report.format_markdown import (
    CLOSED_GLYPH,
    OPEN_GLYPH,
    format_report,
    render_report,
    status_glyph,
)
from iteration_report.grouping import group_items
from iteration_report.report_data import Group, GroupedItem, PeriodContext, WorkItem


def _context(**kwargs) -> PeriodContext:
    defaults = dict(
        display_name="Sprint 12",
        start=date(2024, 1, 1),
        end=date(2024, 1, 14),
    )
    defaults.update(kwargs)
    return PeriodContext(**defaults)


def _scenario_groups():
    return group_items([
        WorkItem(id=11, iid=1, title="Fix bug", state="opened", url="https://gl/1"),
        WorkItem(id=12, iid=2, title="Add docs", state="closed", url="https://gl/2",
                 tags=["Assignee::Ana"]),
    ])


class TestFormatReport:

    def test_exact_layout_without_summaries(self):
        text = format_report(_context(), _scenario_groups())
        assert text == (
            "## Sprint 12\n"
            "\n"
            "**Start Date:** 1/1/2024\n"
            "**Due Date:** 1/14/2024\n"
            "\n"
            "### Work by Assignee:\n"
            "\n"
            "**Backlog** (1 issues):\n"
            f"- {OPEN_GLYPH} [Fix bug](https://gl/1)\n"
            "\n"
            "**Ana** (1 issues):\n"
            f"- {CLOSED_GLYPH} [Add docs](https://gl/2)\n"
            "\n"
            "### All Issues:\n"
            f"- {OPEN_GLYPH} [Fix bug](https://gl/1)\n"
            f"- {CLOSED_GLYPH} [Add docs](https://gl/2)"
        )

    def test_scenario_headings_and_closed_line(self):
        text = format_report(_context(), _scenario_groups())
        assert "**Backlog** (1 issues):" in text
        assert "**Ana** (1 issues):" in text
        assert f"- {CLOSED_GLYPH} [Add docs](https://gl/2)" in text

    def test_summary_line_in_italics_followed_by_blank(self):
        text = format_report(_context(), _scenario_groups(), {"Ana": "Wrote the docs."})
        assert "**Ana** (1 issues):\n*Wrote the docs.*\n\n- " in text

    def test_missing_and_empty_summaries_render_nothing(self):
        text = format_report(_context(), _scenario_groups(), {"Ana": None, "Backlog": ""})
        assert "*" not in text.replace("**", "")

    def test_item_without_url_is_plain(self):
        groups = [Group(name="Ana", items=[GroupedItem(iid=3, title="Offline", state="opened")])]
        text = format_report(_context(), groups)
        assert f"- {OPEN_GLYPH} Offline" in text
        assert "[Offline]" not in text

    def test_no_groups_omits_assignee_section(self):
        text = format_report(_context(), [])
        assert "### Work by Assignee:" not in text
        assert text.endswith("### All Issues:")

    def test_all_issues_lists_fanned_out_item_once(self):
        groups = group_items([
            WorkItem(id=1, iid=1, title="Pair", state="opened", tags=["Assignee::A", "Assignee::B"]),
            WorkItem(id=2, iid=2, title="Solo", state="opened", tags=["Assignee::B"]),
        ])
        text = format_report(_context(), groups)
        all_issues = text.split("### All Issues:\n", 1)[1]
        assert all_issues.count("Pair") == 1
        assert all_issues.splitlines() == [f"- {OPEN_GLYPH} Pair", f"- {OPEN_GLYPH} Solo"]

    def test_all_issues_follow_fetch_order(self):
        groups = group_items([
            WorkItem(id=1, iid=1, title="A", state="opened", tags=["Assignee::Ana"]),
            WorkItem(id=2, iid=2, title="B", state="opened"),
            WorkItem(id=3, iid=3, title="C", state="opened", tags=["Assignee::Ana"]),
        ])
        text = format_report(_context(), groups)
        assert [g.name for g in groups] == ["Ana", "Backlog"]
        all_issues = text.split("### All Issues:\n", 1)[1]
        assert all_issues.splitlines() == [
            f"- {OPEN_GLYPH} A", f"- {OPEN_GLYPH} B", f"- {OPEN_GLYPH} C",
        ]
        assert render_report(_context(), groups).iids == (1, 2, 3)

    def test_missing_dates_render_empty(self):
        text = format_report(_context(start=None, end=None), [])
        assert "**Start Date:** \n**Due Date:** \n" in text

    def test_idempotent(self):
        ctx = _context()
        groups = _scenario_groups()
        summaries = {"Ana": "Docs", "Backlog": "Bugs"}
        assert format_report(ctx, groups, summaries) == format_report(ctx, groups, summaries)


class TestStatusGlyph:

    def test_closed(self):
        assert status_glyph("closed") == CLOSED_GLYPH

    def test_opened(self):
        assert status_glyph("opened") == OPEN_GLYPH

    def test_unknown_state_is_open(self):
        assert status_glyph("locked") == OPEN_GLYPH
        assert status_glyph("") == OPEN_GLYPH
        assert status_glyph("CLOSED") == OPEN_GLYPH


class TestRenderReport:

    def test_iids_in_fetch_order(self):
        report = render_report(_context(), _scenario_groups())
        assert report.iids == (1, 2)

    def test_body_matches_format_report(self):
        ctx, groups = _context(), _scenario_groups()
        assert render_report(ctx, groups, {"Ana": "x"}).body == format_report(ctx, groups, {"Ana": "x"})

    def test_summaries_snapshot_is_read_only_copy(self):
        source = {"Ana": "x"}
        report = render_report(_context(), _scenario_groups(), source)
        source["Ana"] = "changed"
        assert report.summaries["Ana"] == "x"
        with pytest.raises(TypeError):
            report.summaries["Ana"] = "y"
