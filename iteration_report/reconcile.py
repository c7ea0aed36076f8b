"""Publish a rendered report to GitLab and link it to its issues.

reconcile() either updates the description of an existing report issue or
creates a new one, then links every report issue that is not linked yet.
Running it twice against the same report issue links nothing the second
time, because already-linked iids are subtracted up front.
"""

from __future__ import annotations

import logging
from typing import Sequence

from iteration_report.report_data import PeriodContext, ReconcileResult, WorkItem
from iteration_report.tracker import LinkError, Tracker

logger = logging.getLogger("iteration_report.reconcile")


class ReconcileError(RuntimeError):
    """Creating or updating the report issue failed."""


def parse_report_id(raw: str) -> int | None:
    """Parse the existing-report field; None means "create a new report".

    Raises:
        ReconcileError: If the field is non-empty but not a positive integer.
    """
    text = (raw or "").strip().lstrip("#")
    if not text:
        return None
    try:
        value = int(text)
    except ValueError:
        raise ReconcileError(f"Invalid report issue number: {raw!r}") from None
    if value <= 0:
        raise ReconcileError(f"Invalid report issue number: {raw!r}")
    return value


def missing_links(
    items: Sequence[WorkItem], linked: set[int], record_iid: int,
) -> list[int]:
    """iids to link, in item order, skipping linked ones and the report itself."""
    result: list[int] = []
    seen: set[int] = set()
    for item in items:
        iid = item.iid
        if iid in linked or iid == record_iid or iid in seen:
            continue
        seen.add(iid)
        result.append(iid)
    return result


async def reconcile(
    tracker: Tracker,
    context: PeriodContext,
    body: str,
    items: Sequence[WorkItem],
) -> ReconcileResult:
    """Create or update the report issue, then link the missing issues.

    Args:
        tracker: Issue tracker to publish to.
        context: Period the report covers; ``existing_report_id`` selects
            update mode when set.
        body: Report Markdown; used verbatim as the issue description.
        items: Issues the report covers, in link order.

    Returns:
        ReconcileResult with the report iid/url and the number of new links.

    Raises:
        ReconcileError: If the report issue cannot be created or updated.
        RuntimeError: If fetching the existing links fails.
    """
    record_iid = parse_report_id(context.existing_report_id)

    if record_iid is not None:
        created = False
        logger.debug("Updating report issue #%d (%d chars)", record_iid, len(body))
        try:
            await tracker.update_record(record_iid, body)
        except Exception as e:
            raise ReconcileError(
                f"Failed to update existing report #{record_iid}: {e}"
            ) from e
        record_url = tracker.record_url(record_iid)
    else:
        created = True
        title = context.report_title
        logger.debug("Creating report issue %r", title)
        try:
            record = await tracker.create_record(
                title, body, [context.report_label], context,
            )
        except Exception as e:
            raise ReconcileError(f"Failed to create report issue: {e}") from e
        record_iid = record.iid
        record_url = record.url

    already = await tracker.fetch_existing_links(record_iid)
    to_link = missing_links(items, set(already), record_iid)
    logger.debug(
        "Report #%d: %d already linked, %d to link",
        record_iid, len(already), len(to_link),
    )

    linked_count = 0
    failed: list[int] = []
    for iid in to_link:
        try:
            await tracker.link_records(record_iid, iid)
        except LinkError as e:
            logger.warning("%s", e)
            failed.append(iid)
        except Exception as e:
            logger.warning("Failed to link issue #%d: %s", iid, e)
            failed.append(iid)
        else:
            linked_count += 1

    return ReconcileResult(
        record_iid=record_iid,
        record_url=record_url,
        linked_count=linked_count,
        created=created,
        failed_links=failed,
    )
