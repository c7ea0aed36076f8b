"""Run bookkeeping for a host that lets the user switch periods mid-flight.

Every report generation is a ReportRun tied to the PeriodContext it was
started for. Starting a new run makes all older runs stale: their enrichment
snapshots are dropped and they may no longer publish. The session also keeps
a hand-edited body authoritative over generated snapshots.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

from iteration_report.content import SummaryGenerator
from iteration_report.enrich import enrich_summaries
from iteration_report.format_markdown import render_report
from iteration_report.reconcile import reconcile
from iteration_report.report_data import (
    Group,
    PeriodContext,
    ReconcileResult,
    RenderedReport,
    WorkItem,
)
from iteration_report.tracker import Tracker

logger = logging.getLogger("iteration_report.session")


class StaleRunError(RuntimeError):
    """A run tried to act after a newer run replaced it."""


@dataclass(frozen=True)
class ReportRun:
    run_id: int
    context: PeriodContext
    session: "ReportSession"

    def is_current(self) -> bool:
        return self.session.current_run_id == self.run_id


class ReportSession:
    """Holds the current run and the report text it has produced."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.current_run_id: Optional[int] = None
        self.context: Optional[PeriodContext] = None
        self.items: list[WorkItem] = []
        self.groups: list[Group] = []
        self.latest_generated: Optional[RenderedReport] = None
        self._edited_body: Optional[str] = None

    def begin(self, context: PeriodContext) -> ReportRun:
        """Start a run for ``context``; any earlier run becomes stale."""
        run = ReportRun(run_id=next(self._ids), context=context, session=self)
        self.current_run_id = run.run_id
        self.context = context
        self.items = []
        self.groups = []
        self.latest_generated = None
        self._edited_body = None
        logger.debug("Started run %d for %r", run.run_id, context.display_name)
        return run

    @property
    def body(self) -> str:
        """The text to publish: the user's edit if any, else the latest render."""
        if self._edited_body is not None:
            return self._edited_body
        if self.latest_generated is not None:
            return self.latest_generated.body
        return ""

    @property
    def body_edited(self) -> bool:
        return self._edited_body is not None

    def edit_body(self, text: str) -> None:
        """Replace the report text by hand; later snapshots will not override it."""
        self._edited_body = text

    def load(self, run: ReportRun, items: Sequence[WorkItem], groups: Sequence[Group]) -> bool:
        """Store fetched items and their initial render for ``run``.

        Returns False (and stores nothing) when the run is stale.
        """
        if not run.is_current():
            logger.debug("Dropping items from stale run %d", run.run_id)
            return False
        self.items = list(items)
        self.groups = list(groups)
        self.latest_generated = render_report(run.context, self.groups)
        return True

    async def enrich(
        self,
        run: ReportRun,
        generate: SummaryGenerator,
        phase: Optional[str] = None,
    ) -> AsyncIterator[RenderedReport]:
        """Forward enrichment snapshots while ``run`` is still current."""
        if not run.is_current():
            return
        stream = enrich_summaries(run.context, list(self.groups), generate, phase)
        try:
            async for snapshot in stream:
                if not run.is_current():
                    logger.debug("Run %d is stale, stopping enrichment", run.run_id)
                    return
                self.latest_generated = snapshot
                yield snapshot
        finally:
            await stream.aclose()

    async def publish(self, run: ReportRun, tracker: Tracker) -> ReconcileResult:
        """Reconcile the current body against the tracker for ``run``.

        Raises:
            StaleRunError: If a newer run has started.
        """
        if not run.is_current():
            raise StaleRunError(
                f"Report for {run.context.display_name!r} was replaced by a newer one"
            )
        return await reconcile(tracker, run.context, self.body, self.items)
