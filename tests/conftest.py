"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import json
import os

import pytest

from iteration_report.report_data import CreatedRecord
from iteration_report.tracker import LinkError


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "requires_ai: mark test as requiring a Claude AI backend "
        "(ANTHROPIC_API_KEY, CLAUDE_CODE_OAUTH_TOKEN, or claude-agent-sdk with auth)",
    )


def _ai_backend_available() -> bool:
    """Check whether any AI backend is available for tests."""
    if os.environ.get("ANTHROPIC_API_KEY"):
        return True
    if os.environ.get("CLAUDE_CODE_OAUTH_TOKEN"):
        return True
    return not os.environ.get("CLAUDECODE") and _claude_has_credentials()


def _claude_has_credentials() -> bool:
    """Check whether Claude Code has stored credentials."""
    creds_path = os.path.expanduser("~/.claude/.credentials.json")
    try:
        with open(creds_path) as f:
            creds = json.load(f)
        token = creds.get("claudeAiOauth", {}).get("accessToken")
        return bool(token)
    except (FileNotFoundError, json.JSONDecodeError, AttributeError):
        return False


def pytest_collection_modifyitems(config, items):
    if _ai_backend_available():
        return
    skip_ai = pytest.mark.skip(
        reason="No AI backend available (need ANTHROPIC_API_KEY, "
        "CLAUDE_CODE_OAUTH_TOKEN, or claude-agent-sdk)",
    )
    for item in items:
        if "requires_ai" in item.keywords:
            item.add_marker(skip_ai)


class FakeTracker:
    """In-memory Tracker that records every call.

    ``links`` maps a report iid to the set of iids linked to it, so linking
    twice against the same report behaves like GitLab does.
    """

    def __init__(self, items=None, links=None, next_iid=100):
        self.items = list(items or [])
        self.links: dict[int, set[int]] = {k: set(v) for k, v in (links or {}).items()}
        self.next_iid = next_iid
        self.calls: list[tuple] = []
        self.descriptions: dict[int, str] = {}
        self.fail_link: set[int] = set()
        self.fail_update = False
        self.fail_create = False
        self.fail_fetch_links = False

    async def fetch_items(self, context):
        self.calls.append(("fetch_items", context.display_name))
        return list(self.items)

    async def fetch_existing_links(self, record_iid):
        self.calls.append(("fetch_existing_links", record_iid))
        if self.fail_fetch_links:
            raise RuntimeError("links unavailable")
        return set(self.links.get(record_iid, set()))

    async def create_record(self, title, body, labels, context):
        self.calls.append(("create_record", title, tuple(labels)))
        if self.fail_create:
            raise RuntimeError("403 Forbidden")
        iid = self.next_iid
        self.next_iid += 1
        self.descriptions[iid] = body
        return CreatedRecord(id=iid * 10, iid=iid, url=f"https://gitlab.example/p/-/issues/{iid}")

    async def update_record(self, record_iid, body):
        self.calls.append(("update_record", record_iid))
        if self.fail_update:
            raise RuntimeError("404 Not Found")
        self.descriptions[record_iid] = body

    async def link_records(self, record_iid, target_iid):
        self.calls.append(("link_records", record_iid, target_iid))
        if target_iid in self.fail_link:
            raise LinkError(record_iid, target_iid, "409 Conflict")
        self.links.setdefault(record_iid, set()).add(target_iid)

    def record_url(self, record_iid):
        return f"https://gitlab.example/p/-/issues/{record_iid}"

    def linked_targets(self):
        return [call[2] for call in self.calls if call[0] == "link_records"]

