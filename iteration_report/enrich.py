"""Progressive AI enrichment of a rendered report.

Each assignee group gets one summary call, strictly one at a time and in
group order. After every call the report is re-rendered from scratch and
yielded, so a caller can show progress while later groups are still pending.
A failed call marks that group with FAILED_SUMMARY and the loop moves on.
"""

from __future__ import annotations

import logging
from datetime import date
from types import MappingProxyType
from typing import AsyncIterator, Mapping, Optional, Sequence

from iteration_report.content import PHASE_TENSES, SummaryGenerator
from iteration_report.format_markdown import render_report
from iteration_report.report_data import Group, PeriodContext, RenderedReport

logger = logging.getLogger("iteration_report.enrich")

FAILED_SUMMARY = "Failed to generate AI summary"


class SummaryAccumulator:
    """Summaries collected by a single enrichment run.

    Owned by the run that created it; readers only ever see the read-only
    copies returned by snapshot().
    """

    def __init__(self) -> None:
        self._summaries: dict[str, str] = {}
        self.failed: list[str] = []

    def record(self, name: str, text: str) -> None:
        self._summaries[name] = text

    def record_failure(self, name: str) -> None:
        self._summaries[name] = FAILED_SUMMARY
        self.failed.append(name)

    def snapshot(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self._summaries))

    def __len__(self) -> int:
        return len(self._summaries)


def period_phase(context: PeriodContext, today: Optional[date] = None) -> str:
    """Work out whether a period is upcoming, in progress, or finished.

    An explicit GitLab iteration state wins; otherwise the period's dates are
    compared with ``today``.

    Returns:
        "opened", "current" or "closed".
    """
    if context.state in PHASE_TENSES:
        return context.state
    today = today or date.today()
    if context.start is not None and today < context.start:
        return "opened"
    if context.end is not None and today > context.end:
        return "closed"
    return "current"


async def enrich_summaries(
    context: PeriodContext,
    groups: Sequence[Group],
    generate: SummaryGenerator,
    phase: Optional[str] = None,
) -> AsyncIterator[RenderedReport]:
    """Generate one summary per group and yield a fresh report after each.

    Groups without items are skipped and get no summary entry. When no call
    is made at all, the plain report is yielded once so the last value of
    the stream is always the final report.

    Args:
        context: Period the report covers.
        groups: Assignee groups in display order.
        generate: Awaitable text generator (name, titles, phase) -> text.
        phase: Reporting phase; derived from ``context`` when omitted.

    Yields:
        RenderedReport snapshots, the last one being the final report.
    """
    phase = phase or period_phase(context)
    accumulator = SummaryAccumulator()
    calls = 0

    for group in groups:
        if not group.items:
            continue
        titles = [item.title for item in group.items]
        calls += 1
        try:
            text = await generate(group.name, titles, phase)
        except Exception as e:
            logger.warning("Failed to generate AI summary for %s: %s", group.name, e)
            accumulator.record_failure(group.name)
        else:
            logger.debug("AI summary for %s: %d chars", group.name, len(text or ""))
            accumulator.record(group.name, text)
        yield render_report(context, groups, accumulator.snapshot())

    if calls == 0:
        yield render_report(context, groups)
    elif accumulator.failed:
        logger.info(
            "AI summaries done: %d of %d groups failed",
            len(accumulator.failed), calls,
        )


async def enrich_report(
    context: PeriodContext,
    groups: Sequence[Group],
    generate: SummaryGenerator,
    phase: Optional[str] = None,
) -> RenderedReport:
    """Run the enrichment loop to completion and return the final report."""
    final: Optional[RenderedReport] = None
    async for snapshot in enrich_summaries(context, groups, generate, phase):
        final = snapshot
    if final is None:
        raise RuntimeError(f"No report produced for {context.display_name}")
    return final
