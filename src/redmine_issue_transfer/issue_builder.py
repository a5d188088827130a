"""Build target-side payloads (issue body, notes, upload filenames) from source data."""

from __future__ import annotations

import datetime as dt
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import Classification, SourceIssue, TransferConfig

# ASCII word characters, dot, hyphen, parentheses, Cyrillic and Latin-1 letters
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.\-()\u0400-\u04FF\u00C0-\u00FF]")


def _now() -> dt.datetime:
    return dt.datetime.now().astimezone()


def format_timestamp(iso_timestamp: str) -> str:
    """Format ISO 8601 timestamp to human-readable format.

    Args:
        iso_timestamp: ISO 8601 formatted timestamp string

    Returns:
        Formatted timestamp (e.g., "2024-01-15 10:30:45Z").
        Returns original value if parsing fails.
    """
    if not iso_timestamp:
        return iso_timestamp

    try:
        timestamp_dt = dt.datetime.fromisoformat(iso_timestamp)
        formatted = timestamp_dt.isoformat(sep=" ", timespec="seconds")
        return formatted.replace("+00:00", "Z")
    except (ValueError, AttributeError, TypeError):
        return iso_timestamp


def build_description(source_issue: SourceIssue, source_url: str, *, transferred_at: dt.datetime | None = None) -> str:
    """Original description followed by a provenance footer."""
    when = (transferred_at or _now()).strftime("%Y-%m-%d %H:%M:%S")
    footer = (
        "\n\n---\n*Issue transferred from external Redmine*\n"
        f"*Source ID: {source_issue['id']}*\n"
        f"*Source URL: {source_url}*\n"
        f"*Transfer Date: {when}*"
    )
    return (source_issue.get("description") or "") + footer


def build_issue_payload(
    source_issue: SourceIssue,
    config: TransferConfig,
    classification: Classification,
    *,
    transferred_at: dt.datetime | None = None,
) -> dict[str, Any]:
    """JSON body for POST /issues.json. Fields without a value are omitted.

    The parent is deliberately absent: parent links are set after every issue exists.
    """
    fields: dict[str, Any] = {
        "subject": source_issue.get("subject"),
        "description": build_description(source_issue, config.source_url, transferred_at=transferred_at),
        "project_id": config.target_project_id,
        "tracker_id": classification.tracker_id,
        "status_id": classification.status_id,
        "priority_id": classification.priority_id,
        "fixed_version_id": config.target_version_id,
        "assigned_to_id": classification.assigned_to_id,
        "category_id": classification.category_id,
        "done_ratio": source_issue.get("done_ratio") or 0,
        "estimated_hours": source_issue.get("estimated_hours"),
        "start_date": source_issue.get("start_date"),
        "due_date": source_issue.get("due_date"),
    }
    return {"issue": {key: value for key, value in fields.items() if value is not None}}


def build_note_text(text: str, author_name: str | None, created_on: str | None) -> str:
    """Journal text with a provenance line naming the original author and time."""
    when = format_timestamp(created_on) if created_on else _now().strftime("%Y-%m-%d %H:%M:%S")
    return f"{text}\n\n[Note from {author_name or 'Unknown'} on {when}]"


def sanitize_filename(filename: str) -> str:
    """Replace characters the upload endpoint's query parameter should not carry."""
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)
