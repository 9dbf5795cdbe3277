"""Plain-text Slack messages for Jira issue lifecycle events."""
from __future__ import annotations

from .issue_models import ChangelogItem, IssueComment, IssueSnapshot, normalize_field_id

ASSIGNED_EVENT_TYPE = "issue_assigned"

# Changelog field ids rendered with a fixed label, in display order.
TRACKED_FIELDS: dict[str, str] = {
    "status": "Status",
    "priority": "Priority",
    "assignee": "Assignee",
}


def format_new_issue(issue: IssueSnapshot) -> str:
    lines = [
        f"🆕 [{issue.key}] New Issue Created: {issue.summary}",
        f"Priority: {issue.priority or 'Not set'}",
        f"Status: {issue.status or 'Unknown'}",
    ]
    if issue.assignee:
        lines.append(f"Assignee: {issue.assignee}")
    lines.append(f"Description: {issue.description or 'No description provided'}")
    return "\n".join(lines)


def format_issue_update(
    issue: IssueSnapshot,
    changelog: list[ChangelogItem],
    *,
    event_type: str | None = None,
    correlation_field_id: str | None = None,
) -> str:
    if event_type == ASSIGNED_EVENT_TYPE:
        return f"👤 [{issue.key}] Issue assigned to {issue.assignee or 'Unassigned'}"

    changes = describe_changes(changelog, correlation_field_id=correlation_field_id)
    if not changes:
        return f"📝 [{issue.key}] Issue updated"
    return f"📝 [{issue.key}] Updated\n" + "\n".join(changes)


def describe_changes(
    changelog: list[ChangelogItem],
    *,
    correlation_field_id: str | None = None,
) -> list[str]:
    skip_id = normalize_field_id(correlation_field_id) if correlation_field_id else None
    tracked: dict[str, str] = {}
    other: list[str] = []
    for item in changelog:
        if skip_id and item.matches_field(skip_id):
            continue
        key = item.field_id.lower() or item.field.lower()
        before = item.from_string or "None"
        after = item.to_string or ("Unassigned" if key == "assignee" else "None")
        if key in TRACKED_FIELDS:
            tracked[key] = f"{TRACKED_FIELDS[key]}: {before} → {after}"
            continue
        other.append(f"{item.label}: {before} → {after}")
    return [tracked[key] for key in TRACKED_FIELDS if key in tracked] + other


def format_comment(comment: IssueComment, issue_key: str) -> str:
    return f"💬 [{issue_key}] Comment by {comment.author}:\n{comment.body}"


def format_link_failure(issue_key: str) -> str:
    return (
        f"⚠️ [{issue_key}] This thread could not be linked to the issue. "
        "Updates and comments will not be posted here."
    )
