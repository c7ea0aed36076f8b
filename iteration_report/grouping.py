"""Assignee classification and grouping.

Issues carry their assignee as a scoped label (``Assignee::Ana``). The
classifier turns a label set into assignee names; the grouping engine fans
each issue out to every assignee it names, falling back to the Backlog group
when it names none.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from iteration_report.report_data import Group, GroupedItem, WorkItem

logger = logging.getLogger("iteration_report.grouping")

ASSIGNEE_PREFIX = "Assignee"
BACKLOG = "Backlog"

_LABEL_SEPARATOR = "::"
_ASSIGNEE_MARKER = ASSIGNEE_PREFIX + _LABEL_SEPARATOR


def classify_ordered(tags: Iterable[str]) -> List[str]:
    """Return assignee names from scoped labels, in label order, deduplicated.

    Returns ``[BACKLOG]`` when no label carries the assignee prefix.
    """
    names: List[str] = []
    for tag in tags or ():
        if not isinstance(tag, str) or not tag.startswith(_ASSIGNEE_MARKER):
            continue
        name = tag[len(_ASSIGNEE_MARKER):]
        if name not in names:
            names.append(name)
    return names or [BACKLOG]


def classify(tags: Iterable[str]) -> set[str]:
    """Return the set of assignee names named by ``tags``.

    Matching is case-sensitive. Multiple assignee labels yield multiple
    names; callers must place the issue under each of them.
    """
    return set(classify_ordered(tags))


def group_items(items: Iterable[WorkItem]) -> List[Group]:
    """Group issues by assignee, preserving first-seen group order.

    Items inside a group keep their input order. An issue with two assignee
    labels appears in both groups.
    """
    groups: dict[str, Group] = {}
    count = 0
    for position, item in enumerate(items):
        count += 1
        projected = GroupedItem(
            iid=item.iid,
            title=item.title,
            state=item.state,
            url=item.url,
            position=position,
        )
        for name in classify_ordered(item.tags):
            group = groups.get(name)
            if group is None:
                group = groups[name] = Group(name=name)
            group.items.append(projected)

    logger.debug("Grouped %d issues into %d assignee groups", count, len(groups))
    return list(groups.values())
