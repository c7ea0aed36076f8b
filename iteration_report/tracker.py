"""Interface between the report pipeline and the issue tracker.

The reconciler and the CLI only talk to a Tracker; gitlab_client provides the
GitLab implementation and the tests provide an in-memory one.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence, Set

from iteration_report.report_data import CreatedRecord, PeriodContext, WorkItem


class LinkError(RuntimeError):
    """Linking the report issue to one target issue failed."""

    def __init__(self, record_iid: int, target_iid: int, reason: str = "") -> None:
        self.record_iid = record_iid
        self.target_iid = target_iid
        message = f"Failed to link issue #{target_iid} to #{record_iid}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class Tracker(Protocol):
    async def fetch_items(self, context: PeriodContext) -> List[WorkItem]:
        """Issues belonging to the context's iteration, milestone or date range."""
        ...

    async def fetch_existing_links(self, record_iid: int) -> Set[int]:
        """iids of issues already linked to the report issue."""
        ...

    async def create_record(
        self,
        title: str,
        body: str,
        labels: Sequence[str],
        context: PeriodContext,
    ) -> CreatedRecord:
        ...

    async def update_record(self, record_iid: int, body: str) -> None:
        ...

    async def link_records(self, record_iid: int, target_iid: int) -> None:
        """Link one issue to the report issue; raises LinkError on failure."""
        ...

    def record_url(self, record_iid: int) -> str:
        ...
