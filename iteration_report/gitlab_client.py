"""GitLab REST client via the glab CLI.

All requests go through ``glab api`` so authentication (token or OAuth login)
is whatever glab already has configured. Endpoint helpers return parsed JSON;
GitLabTracker adapts them to the async Tracker interface used by the
reconciler.
"""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import time
from datetime import date
from typing import List, Optional, Sequence, Set
from urllib.parse import quote, urlencode

from iteration_report.report_data import (
    KIND_ITERATION,
    KIND_MILESTONE,
    KIND_TIME_PERIOD,
    CreatedRecord,
    PeriodContext,
    WorkItem,
    parse_api_date,
)
from iteration_report.tracker import LinkError

logger = logging.getLogger("iteration_report.gitlab_client")

DEFAULT_HOST = "gitlab.com"
PER_PAGE = 100
MAX_PAGES = 50


class GitLabError(RuntimeError):
    """A glab api call failed."""


class _RateLimitError(GitLabError):
    """Internal error raised when GitLab answers HTTP 429."""


def glab_api(
    endpoint: str,
    method: str = "GET",
    fields: Optional[dict] = None,
    hostname: Optional[str] = None,
) -> object:
    """Execute one REST call via ``glab api`` and return the parsed JSON.

    Args:
        endpoint: Path relative to /api/v4, e.g. ``projects/42/issues``.
        method: HTTP method.
        fields: Request body, sent to glab as JSON on stdin. None values are
            dropped.
        hostname: GitLab host; glab's default host when omitted.

    Raises:
        GitLabError: If glab is missing, the call fails, or the output is
            not JSON.
    """
    cmd = ["glab", "api", endpoint, "--method", method]
    if hostname:
        cmd.extend(["--hostname", hostname])
    payload = None
    body = {key: value for key, value in (fields or {}).items() if value is not None}
    if body:
        # report bodies can exceed the per-argument size limit of the OS
        payload = json.dumps(body)
        cmd.extend(["--input", "-", "--header", "Content-Type: application/json"])

    logger.debug("glab api %s %s", method, endpoint)
    try:
        result = subprocess.run(
            cmd,
            input=payload,
            capture_output=True,
            text=True,
            check=True,
            timeout=60,
        )
    except FileNotFoundError:
        raise GitLabError("glab CLI is not installed.") from None
    except subprocess.TimeoutExpired:
        raise GitLabError(f"glab api timed out: {method} {endpoint}") from None
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "")[:500]
        if "429" in stderr or "Too Many Requests" in stderr:
            raise _RateLimitError(stderr.strip() or "Rate limited") from e
        raise GitLabError(f"glab api {method} {endpoint} failed:\n{stderr}") from e

    output = result.stdout.strip()
    if not output:
        return None
    try:
        return json.loads(output)
    except json.JSONDecodeError as e:
        raise GitLabError(f"glab api returned invalid JSON for {endpoint}: {e}") from e


def glab_with_retry(
    endpoint: str,
    method: str = "GET",
    fields: Optional[dict] = None,
    hostname: Optional[str] = None,
    max_retries: int = 3,
) -> object:
    """Execute a REST call with retry on rate limiting.

    Retries with exponential backoff (1s, 2s, 4s) on HTTP 429.

    Raises:
        GitLabError: After exhausting retries or on any other failure.
    """
    for attempt in range(max_retries):
        try:
            return glab_api(endpoint, method, fields, hostname)
        except _RateLimitError:
            if attempt == max_retries - 1:
                raise GitLabError("GitLab rate limit exceeded after retries")
            wait = 2 ** attempt
            logger.warning("Rate limited, retrying in %ds...", wait)
            time.sleep(wait)
    raise GitLabError("GitLab rate limit exceeded after retries")


def glab_paginate(
    endpoint: str,
    params: Optional[dict] = None,
    hostname: Optional[str] = None,
) -> list:
    """GET every page of a list endpoint and concatenate the results."""
    results: list = []
    for page in range(1, MAX_PAGES + 1):
        query = dict(params or {})
        query.update({"per_page": PER_PAGE, "page": page})
        data = glab_with_retry(f"{endpoint}?{urlencode(query)}", hostname=hostname)
        if not isinstance(data, list):
            raise GitLabError(f"Expected a list from {endpoint}, got {type(data).__name__}")
        results.extend(data)
        if len(data) < PER_PAGE:
            break
    return results


# ---------------------------------------------------------------------------
# Endpoint helpers
# ---------------------------------------------------------------------------

def project_path(project_id: object) -> str:
    """Build the ``projects/<id>`` prefix; full paths are URL-encoded."""
    return f"projects/{quote(str(project_id), safe='')}"


def group_path(group_id: object) -> str:
    return f"groups/{quote(str(group_id), safe='')}"


def fetch_issues_by_iteration(
    project_id: object, iteration_id: int, hostname: Optional[str] = None,
) -> list[dict]:
    return glab_paginate(
        f"{project_path(project_id)}/issues",
        {"iteration_id": iteration_id},
        hostname,
    )


def fetch_issues_by_milestone(
    project_id: object,
    milestone: str,
    state: Optional[str] = "opened",
    hostname: Optional[str] = None,
) -> list[dict]:
    """Issues in a milestone; open ones only unless ``state`` says otherwise."""
    params = {"milestone": milestone}
    if state:
        params["state"] = state
    return glab_paginate(f"{project_path(project_id)}/issues", params, hostname)


def fetch_closed_issues_in_range(
    project_id: object,
    start: date,
    end: date,
    hostname: Optional[str] = None,
) -> list[dict]:
    """Issues closed between ``start`` and ``end`` (both inclusive)."""
    raw = glab_paginate(
        f"{project_path(project_id)}/issues",
        {
            "state": "closed",
            "updated_after": f"{start.isoformat()}T00:00:00Z",
        },
        hostname,
    )
    result = []
    for issue in raw:
        closed = parse_api_date(issue.get("closed_at"))
        if closed is not None and start <= closed <= end:
            result.append(issue)
    return result


def fetch_milestones(project_id: object, hostname: Optional[str] = None) -> list[dict]:
    return glab_paginate(f"{project_path(project_id)}/milestones", None, hostname)


def fetch_iterations(
    project_id: object = None,
    group_id: object = None,
    state: str = "opened",
    hostname: Optional[str] = None,
) -> list[dict]:
    """Iterations of a project (preferred) or group, newest start date first.

    Args:
        state: "opened", "current", "closed" or "all".
    """
    if project_id:
        endpoint = f"{project_path(project_id)}/iterations"
        params = {"state": state, "include_ancestors": "true"}
    elif group_id:
        endpoint = f"{group_path(group_id)}/iterations"
        params = {"state": state}
    else:
        raise GitLabError("A project or group id is required to list iterations")
    iterations = glab_paginate(endpoint, params, hostname)
    iterations.sort(key=lambda it: it.get("start_date") or "", reverse=True)
    return iterations


def create_issue(
    project_id: object,
    title: str,
    description: str,
    labels: Sequence[str] = (),
    milestone_id: Optional[int] = None,
    hostname: Optional[str] = None,
) -> dict:
    fields = {
        "title": title,
        "description": description,
        "labels": ",".join(labels),
        "milestone_id": milestone_id,
    }
    data = glab_with_retry(
        f"{project_path(project_id)}/issues", "POST", fields, hostname,
    )
    if not isinstance(data, dict):
        raise GitLabError("Unexpected response when creating issue")
    return data


def update_issue(
    project_id: object, iid: int, description: str, hostname: Optional[str] = None,
) -> dict:
    data = glab_with_retry(
        f"{project_path(project_id)}/issues/{int(iid)}",
        "PUT",
        {"description": description},
        hostname,
    )
    return data if isinstance(data, dict) else {}


def fetch_issue_links(
    project_id: object, iid: int, hostname: Optional[str] = None,
) -> list[int]:
    """iids of the issues linked to issue ``iid``."""
    data = glab_with_retry(
        f"{project_path(project_id)}/issues/{int(iid)}/links", hostname=hostname,
    )
    if not isinstance(data, list):
        raise GitLabError(f"Failed to fetch issue links for #{iid}")
    return [link["iid"] for link in data if isinstance(link, dict) and "iid" in link]


def link_issues(
    project_id: object,
    source_iid: int,
    target_iid: int,
    hostname: Optional[str] = None,
) -> None:
    """Link ``target_iid`` to ``source_iid`` within one project.

    Raises:
        LinkError: Carrying both iids when GitLab rejects the link.
    """
    try:
        glab_with_retry(
            f"{project_path(project_id)}/issues/{int(source_iid)}/links",
            "POST",
            {"target_project_id": project_id, "target_issue_iid": int(target_iid)},
            hostname,
        )
    except GitLabError as e:
        raise LinkError(source_iid, target_iid, str(e)) from e


# ---------------------------------------------------------------------------
# Tracker adapter
# ---------------------------------------------------------------------------

class GitLabTracker:
    """Tracker implementation backed by one GitLab project."""

    def __init__(self, project_id: object, hostname: Optional[str] = None) -> None:
        if not project_id:
            raise GitLabError("A GitLab project id is required")
        self.project_id = project_id
        self.hostname = hostname
        self._urls: dict[int, str] = {}

    async def fetch_items(self, context: PeriodContext) -> List[WorkItem]:
        if context.kind == KIND_ITERATION:
            if context.scope_id is None:
                raise GitLabError("Iteration report requires an iteration id")
            raw = await asyncio.to_thread(
                fetch_issues_by_iteration, self.project_id, context.scope_id, self.hostname,
            )
        elif context.kind == KIND_MILESTONE:
            raw = await asyncio.to_thread(
                fetch_issues_by_milestone,
                self.project_id, context.display_name, "opened", self.hostname,
            )
        elif context.kind == KIND_TIME_PERIOD:
            if context.start is None or context.end is None:
                raise GitLabError("Time period report requires start and end dates")
            raw = await asyncio.to_thread(
                fetch_closed_issues_in_range,
                self.project_id, context.start, context.end, self.hostname,
            )
        else:
            raise GitLabError(f"Unknown report kind: {context.kind!r}")
        return [WorkItem.from_api(issue) for issue in raw]

    async def fetch_existing_links(self, record_iid: int) -> Set[int]:
        links = await asyncio.to_thread(
            fetch_issue_links, self.project_id, record_iid, self.hostname,
        )
        return set(links)

    async def create_record(
        self,
        title: str,
        body: str,
        labels: Sequence[str],
        context: PeriodContext,
    ) -> CreatedRecord:
        milestone_id = context.scope_id if context.kind == KIND_MILESTONE else None
        data = await asyncio.to_thread(
            create_issue,
            self.project_id, title, body, list(labels), milestone_id, self.hostname,
        )
        record = CreatedRecord(
            id=int(data.get("id", 0)),
            iid=int(data.get("iid", 0)),
            url=data.get("web_url", "") or "",
        )
        if record.url:
            self._urls[record.iid] = record.url
        return record

    async def update_record(self, record_iid: int, body: str) -> None:
        data = await asyncio.to_thread(
            update_issue, self.project_id, record_iid, body, self.hostname,
        )
        if data.get("web_url"):
            self._urls[record_iid] = data["web_url"]

    async def link_records(self, record_iid: int, target_iid: int) -> None:
        await asyncio.to_thread(
            link_issues, self.project_id, record_iid, target_iid, self.hostname,
        )

    def record_url(self, record_iid: int) -> str:
        known = self._urls.get(record_iid)
        if known:
            return known
        host = self.hostname or DEFAULT_HOST
        return f"https://{host}/{project_path(self.project_id)}/-/issues/{record_iid}"
