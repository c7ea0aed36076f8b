#!/usr/bin/env python3
"""GitLab iteration / milestone / time-period report generator.

Pipeline:
  1. Fetch the issues of one iteration, milestone, or closed date range
  2. Group them by ``Assignee::<Name>`` label and render Markdown
  3. Optionally add one AI summary per assignee (--summaries)
  4. Optionally publish: create or update the report issue and link every
     issue to it (--publish)
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime

from iteration_report.config import load_config
from iteration_report.content import DEFAULT_MODEL
from iteration_report.gitlab_client import GitLabTracker, fetch_iterations, fetch_milestones
from iteration_report.grouping import group_items
from iteration_report.report_data import (
    KIND_ITERATION,
    KIND_MILESTONE,
    KIND_TIME_PERIOD,
    PeriodContext,
    format_local_date,
    format_period_name,
    parse_api_date,
)
from iteration_report.session import ReportSession

_ITERATION_STATES = ("opened", "current", "closed", "all")


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _find_by_id(entries: list, entry_id: int, what: str) -> dict:
    for entry in entries:
        if entry.get("id") == entry_id:
            return entry
    _fail(f"{what} {entry_id} not found.")


def iteration_context(raw: dict, existing_report_id: str = "") -> PeriodContext:
    """Build a PeriodContext from a GitLab iteration payload."""
    state = raw.get("state")
    # GitLab reports iteration state as 1/2/3 in older versions
    state = {1: "opened", 2: "current", 3: "closed"}.get(state, state)
    return PeriodContext(
        display_name=format_period_name(
            raw.get("title"), raw.get("start_date"), raw.get("due_date"), raw.get("id", ""),
        ),
        start=parse_api_date(raw.get("start_date")),
        end=parse_api_date(raw.get("due_date")),
        existing_report_id=existing_report_id,
        kind=KIND_ITERATION,
        scope_id=raw.get("id"),
        state=state if isinstance(state, str) else None,
    )


def milestone_context(raw: dict, existing_report_id: str = "") -> PeriodContext:
    """Build a PeriodContext from a GitLab milestone payload."""
    return PeriodContext(
        display_name=raw.get("title", "") or f"Milestone {raw.get('id', '')}",
        start=parse_api_date(raw.get("start_date")),
        end=parse_api_date(raw.get("due_date")),
        existing_report_id=existing_report_id,
        kind=KIND_MILESTONE,
        scope_id=raw.get("id"),
        state="closed" if raw.get("state") == "closed" else None,
    )


async def _run_report(args, tracker, context, model, summary_prompt):
    session = ReportSession()
    run = session.begin(context)

    items = await tracker.fetch_items(context)
    if not items:
        print(f"Warning: no issues found for {context.display_name}.", file=sys.stderr)
    session.load(run, items, group_items(items))

    if args.summaries and session.groups:
        from iteration_report.content import make_summary_generator
        generate = make_summary_generator(model=model, prompt=summary_prompt)
        total = sum(1 for g in session.groups if g.items)
        done = 0
        async for snapshot in session.enrich(run, generate):
            done += 1
            print(f"AI summaries: {done}/{total}", file=sys.stderr)

    if args.body_file:
        with open(args.body_file, "r", encoding="utf-8") as f:
            session.edit_body(f.read())

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(session.body)
            f.write("\n")
        print(f"Report written to {args.output}", file=sys.stderr)
    else:
        print(session.body)

    if args.publish:
        result = await session.publish(run, tracker)
        print(result.message, file=sys.stderr)


def main():
    parser = argparse.ArgumentParser(
        description="Generate a GitLab iteration, milestone, or time-period report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Exactly one of --iteration, --milestone, or --from/--to selects the report scope.",
    )
    parser.add_argument("--config", dest="config_path", default=None, help="path to YAML config file (default: ~/.config/iteration-report/config.yaml)")
    parser.add_argument("--host", default=None, help="GitLab host (default: GITLAB_HOST env var, config file, or glab default)")
    parser.add_argument("--project", default=None, help="GitLab project id or path (default: GITLAB_PROJECT_ID env var or config file)")
    parser.add_argument("--group", default=None, help="GitLab group id, used to list group iterations when no project is set")
    parser.add_argument("--iteration", type=int, default=None, help="report on the iteration with this id")
    parser.add_argument("--milestone", type=int, default=None, help="report on the open issues of the milestone with this id")
    parser.add_argument("--from", dest="date_from", default=None, help="start of closed-issue date range, YYYY-MM-DD (requires --to)")
    parser.add_argument("--to", dest="date_to", default=None, help="end of closed-issue date range, YYYY-MM-DD (requires --from)")
    parser.add_argument(
        "--list-iterations", dest="list_iterations", nargs="?", const="opened", default=None,
        choices=_ITERATION_STATES,
        help="list iterations in the given state and exit (default state: opened)",
    )
    parser.add_argument("--list-milestones", dest="list_milestones", action="store_true", default=False, help="list project milestones and exit")
    parser.add_argument("--summaries", action="store_true", default=False, help="add an AI-generated summary for each assignee")
    parser.add_argument("--model", default=None, help=f"Claude model for --summaries/--draft-* (default: {DEFAULT_MODEL})")
    parser.add_argument("--publish", action="store_true", default=False, help="create or update the report issue and link its issues")
    parser.add_argument("--update", dest="update_iid", default=None, help="existing report issue iid to update (requires --publish)")
    parser.add_argument("--body-file", dest="body_file", default=None, help="publish this hand-edited Markdown instead of the generated report (requires --publish)")
    parser.add_argument("--output", default=None, help="write the report to this file instead of stdout")
    parser.add_argument("--draft-issue", dest="draft_issue", default=None, help="draft an issue from this text with AI, print JSON, and exit")
    parser.add_argument("--draft-epic", dest="draft_epic", default=None, help="draft an epic from this text with AI, print JSON, and exit")
    parser.add_argument("--verbose", "-v", action="store_true", default=False, help="enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    drafting = args.draft_issue is not None or args.draft_epic is not None
    if args.draft_issue is not None and args.draft_epic is not None:
        _fail("--draft-issue and --draft-epic are mutually exclusive.")
    if args.model and not (args.summaries or drafting):
        _fail("--model requires --summaries, --draft-issue or --draft-epic.")
    if (args.date_from is None) != (args.date_to is None):
        _fail("--from and --to must be used together.")
    if args.update_iid and not args.publish:
        _fail("--update requires --publish.")
    if args.body_file and not args.publish:
        _fail("--body-file requires --publish.")
    if args.body_file and not os.path.isfile(args.body_file):
        _fail(f"--body-file {args.body_file} does not exist.")

    date_range = None
    if args.date_from is not None:
        dates = []
        for value, label in ((args.date_from, "--from"), (args.date_to, "--to")):
            try:
                dates.append(datetime.strptime(value, "%Y-%m-%d").date())
            except ValueError:
                _fail(f"Invalid date format '{value}' for {label}. Use YYYY-MM-DD.")
        if dates[0] > dates[1]:
            _fail(f"--from date ({args.date_from}) must be <= --to date ({args.date_to}).")
        date_range = tuple(dates)

    cfg = load_config(args.config_path)
    model = args.model or cfg.model or DEFAULT_MODEL

    if drafting:
        from iteration_report.content import generate_issue_draft
        kind = "issue" if args.draft_issue is not None else "epic"
        text = args.draft_issue if kind == "issue" else args.draft_epic
        try:
            draft = asyncio.run(generate_issue_draft(text, kind=kind, model=model))
        except RuntimeError as e:
            _fail(f"AI draft failed: {e}")
        if draft.parse_failed:
            print("Warning: AI response was not a valid draft; raw output follows.", file=sys.stderr)
            print(draft.raw)
            return
        payload = {"title": draft.title, "description": draft.description}
        if kind == "issue":
            payload["acceptanceCriteria"] = draft.acceptance_criteria
            payload["dependencies"] = draft.dependencies
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    host = args.host or cfg.gitlab_host or None
    project_id = args.project or cfg.project_id
    group_id = args.group or cfg.group_id

    try:
        if args.list_iterations:
            iterations = fetch_iterations(project_id, group_id, args.list_iterations, host)
            for it in iterations:
                name = format_period_name(it.get("title"), it.get("start_date"), it.get("due_date"), it.get("id", ""))
                start = format_local_date(parse_api_date(it.get("start_date")))
                due = format_local_date(parse_api_date(it.get("due_date")))
                print(f"{it.get('id')}\t{name}\t{start} - {due}")
            return
        if args.list_milestones:
            if not project_id:
                _fail("--list-milestones requires a project (--project or config).")
            for ms in fetch_milestones(project_id, host):
                print(f"{ms.get('id')}\t{ms.get('title', '')}\t{ms.get('state', '')}")
            return
    except RuntimeError as e:
        _fail(str(e))

    scopes = sum(1 for s in (args.iteration, args.milestone, args.date_from) if s is not None)
    if scopes != 1:
        _fail("choose exactly one of --iteration, --milestone, or --from/--to.")
    if not project_id:
        _fail("a GitLab project is required (--project, GITLAB_PROJECT_ID, or config file).")

    existing = args.update_iid or ""

    try:
        if args.iteration is not None:
            iterations = fetch_iterations(project_id, group_id, "all", host)
            context = iteration_context(_find_by_id(iterations, args.iteration, "Iteration"), existing)
        elif args.milestone is not None:
            milestones = fetch_milestones(project_id, host)
            context = milestone_context(_find_by_id(milestones, args.milestone, "Milestone"), existing)
        else:
            start, end = date_range
            context = PeriodContext(
                display_name=f"{format_local_date(start)} - {format_local_date(end)}",
                start=start,
                end=end,
                existing_report_id=existing,
                kind=KIND_TIME_PERIOD,
            )

        tracker = GitLabTracker(project_id, host)
        asyncio.run(_run_report(args, tracker, context, model, cfg.summary_prompt or None))
    except RuntimeError as e:
        _fail(str(e))


if __name__ == "__main__":
    main()
