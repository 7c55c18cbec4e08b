"""Rendering and summarization helpers for working memory."""

from __future__ import annotations

import re
from datetime import datetime

from .models import MAX_CONTEXT_LENGTH, SessionHandoff

_COMPLETED = re.compile(r"completed:?\s*([^.!?\n]+)", re.IGNORECASE)
_DECIDED = re.compile(r"decided?\s*to\s*([^.!?\n]+)", re.IGNORECASE)


def extract_key_points(text: str, *, limit: int = 5) -> list[str]:
    """Pull short phrases following 'completed' and 'decided to'."""

    points = [match.strip() for match in _COMPLETED.findall(text)[:2]]
    points.extend(match.strip() for match in _DECIDED.findall(text)[:2])
    return [point for point in points if point][:limit]


def fold_into_narrative(
    current: str,
    addition: str,
    *,
    limit: int = MAX_CONTEXT_LENGTH,
    keep_sections: int = 3,
) -> str:
    """Append to the narrative, folding older sections into a summary once over ``limit``.

    The last ``keep_sections`` blank-line separated sections are always kept verbatim.
    """

    combined = f"{current}\n\n{addition}".strip()
    if len(combined) <= limit:
        return combined

    sections = combined.split("\n\n")
    recent = sections[-keep_sections:]
    older = sections[:-keep_sections]
    if not older:
        return combined

    key_points = extract_key_points(" ".join(older))
    summary = (
        "[Previous Context Summary]\n"
        f"- {len(older)} older sections summarized\n"
        f"- Key points: {', '.join(key_points) if key_points else 'none recorded'}"
    )
    return "\n\n".join([summary, *recent])


def relative_age(moment: datetime, now: datetime) -> str:
    seconds = int((now - moment).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def format_duration(started_at: datetime, ended_at: datetime) -> str:
    minutes = int((ended_at - started_at).total_seconds() // 60)
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{minutes // 60}h {minutes % 60}m"


def format_handoff(handoff: SessionHandoff) -> str:
    lines = [
        f"### Session {handoff.session_id}",
        f"**Task**: {handoff.task_description}",
        f"**Duration**: {format_duration(handoff.started_at, handoff.ended_at)}",
        "",
    ]
    groups = [
        ("Completed", handoff.completed, "- {}"),
        ("Blocked", handoff.blocked, "- BLOCKED: {}"),
        ("Remaining TODOs", handoff.todos, "- [ ] {}"),
        ("Recommended Next Steps", handoff.next_steps, "1. {}"),
    ]
    for title, items, template in groups:
        if items:
            lines.append(f"**{title}**:")
            lines.extend(template.format(item) for item in items)
            lines.append("")
    if handoff.tests_status:
        lines.append(f"**Tests**: {handoff.tests_status}")
    if handoff.build_status:
        lines.append(f"**Build**: {handoff.build_status}")
    return "\n".join(lines).strip() + "\n"


__all__ = [
    "extract_key_points",
    "fold_into_narrative",
    "format_duration",
    "format_handoff",
    "relative_age",
]
