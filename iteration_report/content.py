"""AI text generation for iteration reports.

Two jobs run through the same Claude backend:

- generate_assignee_summary(): a 2-3 sentence summary of one assignee's issues
- generate_issue_draft(): a JSON issue/epic draft from a free-text request

Authentication (resolution order):
1. ANTHROPIC_API_KEY env var  → uses the anthropic Python SDK directly
2. claude-agent-sdk          → uses whatever auth Claude Code has configured
   (subscription, CLAUDE_CODE_OAUTH_TOKEN, etc.)
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Awaitable, Callable, Sequence

import jsonschema

from iteration_report.report_data import (
    DRAFT_OK,
    DRAFT_PARSE_FAILED,
    IssueDraft,
)

logger = logging.getLogger("iteration_report.content")

DEFAULT_MODEL = "claude-haiku-4-5-20251001"

# Reporting phase → the tense the summary is written in
PHASE_TENSES = {
    "opened": "will be working",
    "current": "is working",
    "closed": "worked",
}

_SUMMARY_FORMAT = (
    "Respond with plain text only, nothing else — no JSON, no quotes, no labels."
)

_DRAFT_FORMATS = {
    "issue": (
        "Respond ONLY with valid JSON with keys \"title\", \"description\", "
        "\"acceptanceCriteria\", and \"dependencies\". No markdown fences, "
        "no explanation."
    ),
    "epic": (
        "Respond ONLY with valid JSON with keys \"title\" and \"description\". "
        "No markdown fences, no explanation."
    ),
}

# Generator signature consumed by the summary enricher:
# (assignee name, issue titles in group order, reporting phase) -> summary text
SummaryGenerator = Callable[[str, Sequence[str], str], Awaitable[str]]


_prompt_cache: dict[str, str] = {}


def _load_prompt(name: str) -> str:
    """Load and cache a behavioral prompt from ``prompts/{name}.md``."""
    if name not in _prompt_cache:
        prompt_path = Path(__file__).parent / "prompts" / f"{name}.md"
        with open(prompt_path, encoding="utf-8") as f:
            _prompt_cache[name] = f.read().strip()
    return _prompt_cache[name]


_schema_cache: dict[str, dict] = {}


def _load_schema(kind: str) -> dict:
    """Load and cache the JSON schema for an issue or epic draft."""
    if kind not in _schema_cache:
        schema_path = Path(__file__).parent / "schemas" / f"{kind}_draft.json"
        with open(schema_path, encoding="utf-8") as f:
            _schema_cache[kind] = json.load(f)
    return _schema_cache[kind]


def phase_tense(phase: str) -> str:
    """Return the verb phrase for a reporting phase (``worked`` if unknown)."""
    return PHASE_TENSES.get(phase, "worked")


def build_summary_message(assignee: str, titles: Sequence[str]) -> str:
    """Build the user message listing one assignee's issue titles."""
    listing = "\n".join(f"- {title}" for title in titles)
    return f"Assignee: {assignee}\n\nIssue titles:\n{listing}"


async def generate_assignee_summary(
    assignee: str,
    titles: Sequence[str],
    phase: str = "current",
    model: str = DEFAULT_MODEL,
    prompt: str | None = None,
) -> str:
    """Generate a short summary of what one assignee worked on.

    Args:
        assignee: Group name (assignee value or Backlog).
        titles: Issue titles in group order.
        phase: Reporting phase — "opened", "current" or "closed".
        model: Claude model ID or alias.
        prompt: Custom system prompt; ``{tense}`` is substituted when present.

    Returns:
        The stripped summary text.

    Raises:
        RuntimeError: If the backend fails or returns an empty response.
    """
    tense = phase_tense(phase)
    template = prompt or _load_prompt("assignee_summary")
    system_prompt = [
        {"type": "text", "text": template.replace("{tense}", tense)},
        {"type": "text", "text": _SUMMARY_FORMAT},
    ]
    user_message = build_summary_message(assignee, titles)

    api_key = os.environ.get("ANTHROPIC_API_KEY", "")
    logger.debug(
        "Assignee summary for %r: auth=%s, model=%s, %d titles, tense=%r",
        assignee,
        "ANTHROPIC_API_KEY" if api_key else "claude-agent-sdk",
        model,
        len(titles),
        tense,
    )
    text = (await _call_backend(api_key, model, system_prompt, user_message)).strip()
    if not text:
        raise RuntimeError(f"Empty AI summary for {assignee}")
    return text


def make_summary_generator(
    model: str = DEFAULT_MODEL,
    prompt: str | None = None,
) -> SummaryGenerator:
    """Bind model and prompt into the callable the enricher awaits."""

    async def _generate(assignee: str, titles: Sequence[str], phase: str) -> str:
        return await generate_assignee_summary(
            assignee, titles, phase, model=model, prompt=prompt,
        )

    return _generate


async def generate_issue_draft(
    request: str,
    kind: str = "issue",
    model: str = DEFAULT_MODEL,
) -> IssueDraft:
    """Draft an issue or epic from a free-text request.

    Backend failures raise. A response that is not valid JSON, or does not
    match the draft schema, never raises: it comes back as an IssueDraft with
    status DRAFT_PARSE_FAILED and the raw text attached.

    Raises:
        ValueError: If ``kind`` is neither "issue" nor "epic".
        RuntimeError: If the AI backend call fails.
    """
    if kind not in _DRAFT_FORMATS:
        raise ValueError(f"Unknown draft kind: {kind!r}")

    system_prompt = [
        {"type": "text", "text": _load_prompt(f"{kind}_draft")},
        {"type": "text", "text": _DRAFT_FORMATS[kind]},
    ]
    api_key = os.environ.get("ANTHROPIC_API_KEY", "")
    text = await _call_backend(api_key, model, system_prompt, request)
    return parse_draft(text, kind)


def parse_draft(text: str, kind: str = "issue") -> IssueDraft:
    """Parse a model response into an IssueDraft (never raises on bad JSON)."""
    stripped = _extract_json(text)
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse %s draft JSON: %s", kind, e)
        return IssueDraft(status=DRAFT_PARSE_FAILED, raw=text)

    if not isinstance(parsed, dict):
        logger.warning(
            "%s draft is not a JSON object (got %s)", kind, type(parsed).__name__,
        )
        return IssueDraft(status=DRAFT_PARSE_FAILED, raw=text)

    try:
        jsonschema.validate(instance=parsed, schema=_load_schema(kind))
    except jsonschema.ValidationError as e:
        logger.warning("%s draft failed schema validation: %s", kind, e.message)
        return IssueDraft(status=DRAFT_PARSE_FAILED, raw=text)

    return IssueDraft(
        status=DRAFT_OK,
        title=str(parsed.get("title", "")),
        description=str(parsed.get("description", "")),
        acceptance_criteria=str(parsed.get("acceptanceCriteria", "") or ""),
        dependencies=str(parsed.get("dependencies", "") or ""),
        raw=text,
    )


async def _call_via_sdk(
    api_key: str, model: str, system_prompt: str | list[dict], user_message: str,
) -> str:
    """Call Claude via the anthropic Python SDK (API key auth)."""
    import anthropic  # lazy import

    logger.debug("Calling Claude SDK (anthropic) with model=%s", model)
    client = anthropic.AsyncAnthropic(api_key=api_key)
    try:
        response = await client.messages.create(
            model=model,
            max_tokens=1024,
            timeout=120.0,
            messages=[{"role": "user", "content": user_message}],
            system=system_prompt,
        )
    except anthropic.APIError as e:
        logger.debug("Claude SDK API error: %s (%s)", type(e).__name__, e)
        raise RuntimeError(f"Claude API call failed: {e}") from e

    text = ""
    for block in response.content:
        if block.type == "text":
            text += block.text
    logger.debug(
        "Claude SDK response: model=%s, stop=%s, usage=%s, %d chars",
        response.model,
        response.stop_reason,
        f"in={response.usage.input_tokens}/out={response.usage.output_tokens}",
        len(text),
    )
    return text


async def _call_via_sdk_agent(
    model: str, system_prompt: str | list[dict], user_message: str,
) -> str:
    """Call Claude via ``claude-agent-sdk`` (subscription / OAuth auth)."""
    logger.debug("Calling Claude Agent SDK with model=%s", model)
    from claude_agent_sdk import (  # lazy import
        ClaudeAgentOptions,
        ResultMessage,
        query,
    )

    if isinstance(system_prompt, list):
        system_text = "\n\n".join(block["text"] for block in system_prompt)
    else:
        system_text = system_prompt
    full_prompt = f"{system_text}\n\n{user_message}"
    options = ClaudeAgentOptions(
        model=model,
        max_turns=1,
        allowed_tools=[],
    )

    result_text = ""
    try:
        async for message in query(prompt=full_prompt, options=options):
            logger.debug("Agent SDK message: %s", type(message).__name__)
            if isinstance(message, ResultMessage):
                result_text = message.result or ""
    except Exception as e:
        logger.debug("Agent SDK error: %s (%s)", type(e).__name__, e)
        raise RuntimeError(f"Claude Agent SDK call failed: {e}") from e

    if not result_text:
        raise RuntimeError("Claude Agent SDK returned empty response")
    logger.debug("Agent SDK response: %d chars", len(result_text))
    return result_text


async def _call_backend(
    api_key: str, model: str, system_prompt: str | list[dict], user_message: str,
) -> str:
    """Call the AI backend (SDK or agent SDK) and return the raw text."""
    if api_key:
        return await _call_via_sdk(api_key, model, system_prompt, user_message)
    logger.debug("No ANTHROPIC_API_KEY — falling back to Claude Agent SDK")
    return await _call_via_sdk_agent(model, system_prompt, user_message)


_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL | re.IGNORECASE)


def _extract_json(text: str) -> str:
    """Extract a JSON object from an AI response.

    Tries in order:
    1. Direct parse of the full text (clean JSON response).
    2. Extract content from markdown code fences (```json ... ```).
    3. Find the first ``{`` and last ``}`` and use that substring.
    """
    stripped = (text or "").strip()

    try:
        json.loads(stripped)
        return stripped
    except (json.JSONDecodeError, ValueError):
        pass

    match = _FENCED_JSON_RE.search(stripped)
    if match:
        return match.group(1).strip()

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start:end + 1]

    return stripped
