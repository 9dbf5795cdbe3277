"""Issue, comment and changelog snapshots parsed from Jira JSON."""
from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field

CUSTOM_FIELD_PREFIX = "customfield_"


def normalize_field_id(field_id: str) -> str:
    """Return a Jira custom field id with the ``customfield_`` prefix."""
    value = str(field_id or "").strip()
    if not value:
        raise ValueError("custom field id must be non-empty")
    if value.startswith(CUSTOM_FIELD_PREFIX):
        return value
    return f"{CUSTOM_FIELD_PREFIX}{value}"


def adf_to_text(value: Any) -> str:
    """Flatten Atlassian Document Format (or plain text) into a string."""
    if value is None:
        return ""
    if isinstance(value, str):
        stripped = value.strip()
        if not (stripped.startswith("{") and '"type"' in stripped):
            return value
        try:
            value = json.loads(stripped)
        except json.JSONDecodeError:
            return value

    paragraphs: list[str] = []

    def _walk(node: Any, parts: list[str]) -> None:
        if isinstance(node, list):
            for item in node:
                _walk(item, parts)
            return
        if not isinstance(node, dict):
            return
        if node.get("type") == "text" and "text" in node:
            parts.append(str(node["text"]))
            return
        if node.get("type") == "hardBreak":
            parts.append("\n")
            return
        for child in node.get("content", []) or []:
            _walk(child, parts)

    if isinstance(value, dict) and value.get("type") == "doc":
        for block in value.get("content", []) or []:
            parts: list[str] = []
            _walk(block, parts)
            text = "".join(parts).strip()
            if text:
                paragraphs.append(text)
        return "\n".join(paragraphs)

    parts = []
    _walk(value, parts)
    return "".join(parts).strip()


def _name_of(raw: Any, *keys: str) -> str | None:
    if not isinstance(raw, dict):
        return None
    for key in keys:
        value = raw.get(key)
        if value:
            return str(value)
    return None


class IssueSnapshot(BaseModel):
    key: str
    summary: str = ""
    status: str | None = None
    priority: str | None = None
    assignee: str | None = None
    description: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    def correlation_value(self, field_id: str) -> str | None:
        raw = self.custom_fields.get(normalize_field_id(field_id))
        if raw is None:
            return None
        value = str(raw).strip()
        return value or None

    @classmethod
    def from_jira(cls, raw: dict[str, Any] | None) -> "IssueSnapshot":
        raw = raw or {}
        key = str(raw.get("key") or "").strip()
        if not key:
            raise ValueError("Jira issue payload is missing 'key'.")
        fields = raw.get("fields")
        if not isinstance(fields, dict):
            fields = {}
        description = fields.get("description")
        return cls(
            key=key,
            summary=str(fields.get("summary") or ""),
            status=_name_of(fields.get("status"), "name"),
            priority=_name_of(fields.get("priority"), "name"),
            assignee=_name_of(fields.get("assignee"), "displayName", "name"),
            description=adf_to_text(description) if description else None,
            custom_fields={
                str(name): value
                for name, value in fields.items()
                if str(name).startswith(CUSTOM_FIELD_PREFIX)
            },
        )


class IssueComment(BaseModel):
    author: str = "Unknown"
    body: str = ""

    @classmethod
    def from_jira(cls, raw: dict[str, Any] | None) -> "IssueComment":
        if not isinstance(raw, dict):
            raw = {}
        return cls(
            author=_name_of(raw.get("author"), "displayName", "name") or "Unknown",
            body=adf_to_text(raw.get("body")),
        )


class ChangelogItem(BaseModel):
    field: str = ""
    field_id: str = ""
    from_string: str | None = None
    to_string: str | None = None

    @property
    def label(self) -> str:
        return self.field or self.field_id

    def matches_field(self, field_id: str) -> bool:
        return field_id in {self.field_id, self.field}

    @classmethod
    def from_jira(cls, raw: dict[str, Any]) -> "ChangelogItem":
        field = str(raw.get("field") or "")
        return cls(
            field=field,
            field_id=str(raw.get("fieldId") or field),
            from_string=raw.get("fromString"),
            to_string=raw.get("toString"),
        )


def parse_changelog(raw: Any) -> list[ChangelogItem]:
    """Accept either ``{"items": [...]}`` or a bare list of change records."""
    items = raw.get("items") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        return []
    return [ChangelogItem.from_jira(item) for item in items if isinstance(item, dict)]
