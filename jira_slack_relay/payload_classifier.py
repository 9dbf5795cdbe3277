"""Classify inbound webhook bodies into chat relays or Jira events."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class PayloadKind(str, Enum):
    CHAT_FORMATTED = "CHAT_FORMATTED"
    ISSUE_CREATED = "ISSUE_CREATED"
    ISSUE_UPDATED = "ISSUE_UPDATED"
    COMMENT_CREATED = "COMMENT_CREATED"
    UNKNOWN = "UNKNOWN"


JIRA_EVENT_KINDS: dict[str, PayloadKind] = {
    "jira:issue_created": PayloadKind.ISSUE_CREATED,
    "jira:issue_updated": PayloadKind.ISSUE_UPDATED,
    "comment_created": PayloadKind.COMMENT_CREATED,
}

CHAT_SOURCES = {"slack", "chat"}


@dataclass(frozen=True)
class PayloadClassification:
    kind: PayloadKind
    event_name: str = ""

    @property
    def is_tracker_event(self) -> bool:
        return self.kind not in {PayloadKind.CHAT_FORMATTED, PayloadKind.UNKNOWN}


def classify_payload(raw: dict[str, Any]) -> PayloadClassification:
    source = str(raw.get("source") or "").strip().lower()
    if source in CHAT_SOURCES or is_slack_formatted(raw):
        return PayloadClassification(kind=PayloadKind.CHAT_FORMATTED, event_name="chat")
    return _classify_tracker_event(raw)


def is_slack_formatted(raw: dict[str, Any]) -> bool:
    """A body with both ``channel`` and ``blocks`` is always a chat payload."""
    return "channel" in raw and "blocks" in raw


def _classify_tracker_event(raw: dict[str, Any]) -> PayloadClassification:
    event_name = str(raw.get("webhookEvent") or "").strip()
    kind = JIRA_EVENT_KINDS.get(event_name, PayloadKind.UNKNOWN)
    return PayloadClassification(kind=kind, event_name=event_name)
