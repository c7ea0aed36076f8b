"""Markdown formatter for iteration reports."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from iteration_report.report_data import (
    Group,
    GroupedItem,
    PeriodContext,
    RenderedReport,
    format_local_date,
)

CLOSED_GLYPH = "\u2705"          # white heavy check mark
OPEN_GLYPH = "\U0001F7E2"       # large green circle


def format_report(
    context: PeriodContext,
    groups: Sequence[Group],
    summaries: Optional[Mapping[str, Optional[str]]] = None,
) -> str:
    """Render a report as a Markdown string.

    Args:
        context: The period the report covers.
        groups: Assignee groups in display order.
        summaries: Optional AI summary per group name. Missing or empty
            entries render no summary line.

    Returns:
        The full Markdown report as a single string.
    """
    summaries = summaries or {}
    lines: list[str] = [
        f"## {context.display_name}",
        "",
        f"**Start Date:** {format_local_date(context.start)}",
        f"**Due Date:** {format_local_date(context.end)}",
        "",
    ]

    if groups:
        lines.append("### Work by Assignee:")
        lines.append("")
        for group in groups:
            lines.append(f"**{group.name}** ({len(group.items)} issues):")
            summary = summaries.get(group.name)
            if summary:
                lines.append(f"*{summary}*")
                lines.append("")
            for item in group.items:
                lines.append(_render_item(item))
            lines.append("")

    lines.append("### All Issues:")
    for item in _distinct_items(groups):
        lines.append(_render_item(item))

    return "\n".join(lines)


def render_report(
    context: PeriodContext,
    groups: Sequence[Group],
    summaries: Optional[Mapping[str, Optional[str]]] = None,
) -> RenderedReport:
    """Render a report and wrap it with the iids it describes."""
    frozen = {name: text for name, text in (summaries or {}).items() if text}
    return RenderedReport(
        body=format_report(context, groups, frozen),
        iids=tuple(item.iid for item in _distinct_items(groups)),
        summaries=MappingProxyType(frozen),
    )


def status_glyph(state: str) -> str:
    """Map an issue state to its marker; anything but ``closed`` is open."""
    return CLOSED_GLYPH if state == "closed" else OPEN_GLYPH


def _render_item(item: GroupedItem) -> str:
    """Render one issue as a Markdown bullet."""
    glyph = status_glyph(item.state)
    if item.url:
        return f"- {glyph} [{item.title}]({item.url})"
    return f"- {glyph} {item.title}"


def _distinct_items(groups: Sequence[Group]) -> list[GroupedItem]:
    """Flatten groups, keeping each issue once, in fetch order."""
    seen: set[int] = set()
    result: list[GroupedItem] = []
    for group in groups:
        for item in group.items:
            if item.iid in seen:
                continue
            seen.add(item.iid)
            result.append(item)
    return sorted(result, key=lambda item: item.position)
