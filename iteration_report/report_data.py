"""Structured report data model, shared by every pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple


# Report kinds and the title suffix / label used when a report issue is created
KIND_ITERATION = "iteration"
KIND_MILESTONE = "milestone"
KIND_TIME_PERIOD = "time_period"

REPORT_TITLES = {
    KIND_ITERATION: "Iteration Report",
    KIND_MILESTONE: "Milestone Report",
    KIND_TIME_PERIOD: "Time Period Report",
}

REPORT_LABELS = {
    KIND_ITERATION: "iteration-report",
    KIND_MILESTONE: "milestone-report",
    KIND_TIME_PERIOD: "time-period-report",
}


@dataclass
class WorkItem:
    """A GitLab issue as fetched for one reporting request."""
    id: int
    iid: int                 # project-scoped number used for linking
    title: str
    state: str               # "opened" or "closed"
    url: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "WorkItem":
        """Build a WorkItem from a GitLab REST issue payload."""
        labels = raw.get("labels") or []
        return cls(
            id=int(raw.get("id", 0)),
            iid=int(raw.get("iid", 0)),
            title=raw.get("title", "") or "",
            state=raw.get("state", "") or "",
            url=raw.get("web_url") or None,
            tags=[label for label in labels if isinstance(label, str)],
        )


@dataclass(frozen=True)
class GroupedItem:
    """The projection of a WorkItem kept inside a Group (tags dropped)."""
    iid: int
    title: str
    state: str
    url: Optional[str] = None
    # index of the item in the fetched sequence
    position: int = field(default=0, compare=False)


@dataclass
class Group:
    """A named bucket of items sharing one assignee value."""
    name: str
    items: List[GroupedItem] = field(default_factory=list)


@dataclass
class PeriodContext:
    """The scope one report covers: an iteration, a milestone, or a date range."""
    display_name: str
    start: Optional[date] = None
    end: Optional[date] = None
    existing_report_id: str = ""
    kind: str = KIND_ITERATION
    scope_id: Optional[int] = None
    state: Optional[str] = None      # GitLab iteration state when known

    @property
    def report_title(self) -> str:
        suffix = REPORT_TITLES.get(self.kind, REPORT_TITLES[KIND_ITERATION])
        return f"{self.display_name} – {suffix}"

    @property
    def report_label(self) -> str:
        return REPORT_LABELS.get(self.kind, REPORT_LABELS[KIND_ITERATION])


@dataclass(frozen=True)
class RenderedReport:
    """One complete Markdown rendering plus the issue iids it describes.

    ``summaries`` is a read-only view of the AI summaries the text was
    rendered with, so a snapshot never changes after it is emitted.
    """
    body: str
    iids: Tuple[int, ...] = ()
    summaries: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}),
    )


@dataclass
class CreatedRecord:
    """The identifiers GitLab returns for a newly created report issue."""
    id: int
    iid: int
    url: str


@dataclass
class ReconcileResult:
    """Outcome of publishing a report to GitLab."""
    record_iid: int
    record_url: str
    linked_count: int
    created: bool
    failed_links: List[int] = field(default_factory=list)

    @property
    def message(self) -> str:
        """Human-readable status line, e.g. for a CLI or a UI banner."""
        if self.created:
            head = f"Report created: {self.record_url}"
        else:
            head = f"Report #{self.record_iid} updated"
        text = f"{head} | Linked {self.linked_count} issues to report #{self.record_iid}"
        if self.failed_links:
            failed = ", ".join(f"#{iid}" for iid in self.failed_links)
            text += f" (failed to link {failed})"
        return text


DRAFT_OK = "ok"
DRAFT_PARSE_FAILED = "parse_failed"


@dataclass
class IssueDraft:
    """AI-drafted issue or epic text.

    ``status`` distinguishes a draft the model legitimately left empty
    (DRAFT_OK) from a response that could not be parsed at all
    (DRAFT_PARSE_FAILED); in the latter case ``raw`` keeps the model output.
    """
    status: str
    title: str = ""
    description: str = ""
    acceptance_criteria: str = ""
    dependencies: str = ""
    raw: str = ""

    @property
    def parse_failed(self) -> bool:
        return self.status == DRAFT_PARSE_FAILED


def parse_api_date(value: Optional[str]) -> Optional[date]:
    """Parse a GitLab ``YYYY-MM-DD`` (or ISO timestamp) string into a date.

    Returns None for missing or malformed values.
    """
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d").date()
    except (ValueError, TypeError):
        return None


def format_local_date(value: Optional[date]) -> str:
    """Format a date the way en-US short dates read (``1/14/2024``)."""
    if value is None:
        return ""
    return f"{value.month}/{value.day}/{value.year}"


def format_period_name(
    title: Optional[str],
    start: Optional[str],
    end: Optional[str],
    fallback_id: object = "",
) -> str:
    """Pick a display name for an iteration.

    The title wins when it has visible content. Otherwise the date range is
    used, and when either date is missing or invalid, ``Iteration <id>``.
    """
    if title and title.strip():
        return title
    start_date = parse_api_date(start)
    end_date = parse_api_date(end)
    if start_date is None or end_date is None:
        return f"Iteration {fallback_id}"
    return f"{format_local_date(start_date)} - {format_local_date(end_date)}"
