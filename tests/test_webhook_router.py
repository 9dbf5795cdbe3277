from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jira_slack_relay.issue_models import IssueSnapshot
from jira_slack_relay.retry import RetryPolicy
from jira_slack_relay.tools.jira_tools import TrackerError
from jira_slack_relay.tools.slack_tools import TransportError
from jira_slack_relay.webhook_router import WebhookRouter

FIELD_ID = "customfield_10039"


@dataclass
class _FakeSlack:
    calls: list[tuple[str, ...]]
    next_ts: str = "167.001"
    fail_with: Exception | None = None

    def post_message(self, text: str) -> str:
        self.calls.append(("post_message", text))
        if self.fail_with:
            raise self.fail_with
        return self.next_ts

    def post_thread_reply(self, text: str, thread_ts: str) -> None:
        self.calls.append(("post_thread_reply", text, thread_ts))
        if self.fail_with:
            raise self.fail_with


@dataclass
class _FakeJira:
    calls: list[tuple[str, ...]]
    threads: dict[str, str] = field(default_factory=dict)
    write_errors: list[Exception] = field(default_factory=list)

    def get_issue(self, issue_key: str) -> IssueSnapshot:
        self.calls.append(("get_issue", issue_key))
        custom_fields: dict[str, Any] = {}
        if issue_key in self.threads:
            custom_fields[FIELD_ID] = self.threads[issue_key]
        return IssueSnapshot(
            key=issue_key,
            summary="Fix bug",
            status="Done",
            priority="High",
            assignee="Ada Lovelace",
            custom_fields=custom_fields,
        )

    def set_custom_field(self, issue_key: str, field_id: str, value: str) -> None:
        self.calls.append(("set_custom_field", issue_key, field_id, value))
        if self.write_errors:
            raise self.write_errors.pop(0)
        self.threads[issue_key] = value


def _router(
    *,
    threads: dict[str, str] | None = None,
    guard_duplicate_creates: bool = True,
    write_errors: list[Exception] | None = None,
    slack_error: Exception | None = None,
) -> tuple[WebhookRouter, list[tuple[str, ...]]]:
    calls: list[tuple[str, ...]] = []
    router = WebhookRouter(
        slack_gateway=_FakeSlack(calls=calls, fail_with=slack_error),
        jira_gateway=_FakeJira(calls=calls, threads=dict(threads or {}), write_errors=list(write_errors or [])),
        correlation_field_id=FIELD_ID,
        write_retry=RetryPolicy(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0),
        guard_duplicate_creates=guard_duplicate_creates,
        sleep=lambda _seconds: None,
    )
    return router, calls


def _created_body(key: str = "KAN-1") -> dict:
    return {
        "webhookEvent": "jira:issue_created",
        "issue": {
            "key": key,
            "fields": {
                "summary": "Fix bug",
                "status": {"name": "Open"},
                "priority": None,
                "assignee": None,
                "description": None,
            },
        },
    }


def _downstream(calls: list[tuple[str, ...]]) -> list[str]:
    return [call[0] for call in calls]


def test_empty_body_is_rejected_without_downstream_calls() -> None:
    router, calls = _router()

    for body in (None, {}, b""):
        result = router.route(body)
        assert result.status_code == 400
        assert result.message == "No payload received"
    assert calls == []


def test_non_object_body_is_a_client_error() -> None:
    router, calls = _router()

    result = router.route(["not", "an", "object"])

    assert result.status_code == 400
    assert calls == []


def test_chat_payload_without_thread_posts_new_message() -> None:
    router, calls = _router()

    result = router.route({"channel": "C_OTHER", "blocks": [], "text": "deploy finished"})

    assert (result.status_code, result.message) == (200, "Slack payload processed")
    assert calls == [("post_message", "deploy finished")]


def test_chat_payload_with_thread_replies_in_thread() -> None:
    router, calls = _router()

    router.route({"channel": "C_OTHER", "blocks": [], "text": "follow-up", "thread_ts": "171.5"})

    assert calls == [("post_thread_reply", "follow-up", "171.5")]


def test_chat_payload_falls_back_to_block_text() -> None:
    router, calls = _router()

    router.route(
        {
            "channel": "C_OTHER",
            "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": "*from blocks*"}}],
        }
    )

    assert calls == [("post_message", "*from blocks*")]


def test_chat_payload_without_any_text_is_a_client_error() -> None:
    router, calls = _router()

    result = router.route({"channel": "C_OTHER", "blocks": []})

    assert result.status_code == 400
    assert calls == []


def test_chat_transport_error_becomes_server_error() -> None:
    router, _calls = _router(slack_error=TransportError("Slack API chat.postMessage failed: invalid_auth"))

    result = router.route({"channel": "C_OTHER", "blocks": [], "text": "hi"})

    assert (result.status_code, result.message) == (500, "Internal Server Error")


def test_issue_created_posts_thread_and_stores_correlation() -> None:
    router, calls = _router()

    result = router.route(_created_body())

    assert (result.status_code, result.message) == (200, "OK")
    posts = [call for call in calls if call[0] == "post_message"]
    writes = [call for call in calls if call[0] == "set_custom_field"]
    assert len(posts) == 1
    assert len(writes) == 1
    assert calls.index(posts[0]) < calls.index(writes[0])
    assert "KAN-1" in posts[0][1]
    assert "Fix bug" in posts[0][1]
    assert writes[0] == ("set_custom_field", "KAN-1", FIELD_ID, "167.001")


def test_issue_created_skips_already_linked_issue() -> None:
    router, calls = _router(threads={"KAN-1": "150.000"})

    result = router.route(_created_body())

    assert result.status_code == 200
    assert calls == [("get_issue", "KAN-1")]


def test_issue_created_without_guard_duplicates_threads() -> None:
    router, calls = _router(guard_duplicate_creates=False)

    router.route(_created_body())
    router.route(_created_body())

    assert _downstream(calls) == [
        "post_message",
        "set_custom_field",
        "post_message",
        "set_custom_field",
    ]


def test_issue_created_retries_transient_correlation_write_failure() -> None:
    router, calls = _router(write_errors=[TrackerError("Jira API PUT failed with HTTP 503", status_code=503)])

    result = router.route(_created_body())

    assert result.status_code == 200
    assert _downstream(calls) == ["get_issue", "post_message", "set_custom_field", "set_custom_field"]


def test_issue_created_flags_orphan_thread_when_write_keeps_failing() -> None:
    router, calls = _router(
        write_errors=[TrackerError("Jira API PUT failed with HTTP 400", status_code=400, body="{}")],
    )

    result = router.route(_created_body())

    assert (result.status_code, result.message) == (500, "Internal Server Error")
    assert _downstream(calls) == ["get_issue", "post_message", "set_custom_field", "post_thread_reply"]
    assert calls[-1][2] == "167.001"
    assert "could not be linked" in calls[-1][1]


def test_issue_created_without_issue_key_is_a_client_error() -> None:
    router, calls = _router()

    result = router.route({"webhookEvent": "jira:issue_created", "issue": {"fields": {}}})

    assert result.status_code == 400
    assert calls == []


def test_issue_updated_correlation_only_change_is_noise() -> None:
    router, calls = _router(threads={"KAN-1": "167.001"})

    result = router.route(
        {
            "webhookEvent": "jira:issue_updated",
            "issue": {"key": "KAN-1"},
            "changelog": {
                "items": [
                    {
                        "field": "Slack Thread",
                        "fieldId": FIELD_ID,
                        "fromString": None,
                        "toString": "167.001",
                    }
                ]
            },
        }
    )

    assert (result.status_code, result.message) == (200, "OK")
    assert calls == []


def test_issue_updated_status_change_replies_in_linked_thread() -> None:
    router, calls = _router(threads={"KAN-1": "167.001"})

    result = router.route(
        {
            "webhookEvent": "jira:issue_updated",
            "issue": {"key": "KAN-1"},
            "changelog": {"items": [{"field": "status", "fieldId": "status", "fromString": "Open", "toString": "Done"}]},
        }
    )

    assert result.status_code == 200
    assert calls[0] == ("get_issue", "KAN-1")
    replies = [call for call in calls if call[0] == "post_thread_reply"]
    assert len(replies) == 1
    _name, text, thread_ts = replies[0]
    assert thread_ts == "167.001"
    assert "Status" in text
    assert "Done" in text


def test_issue_updated_correlation_change_alongside_other_fields_is_not_noise() -> None:
    router, calls = _router(threads={"KAN-1": "167.001"})

    router.route(
        {
            "webhookEvent": "jira:issue_updated",
            "issue": {"key": "KAN-1"},
            "changelog": {
                "items": [
                    {"fieldId": FIELD_ID, "toString": "167.001"},
                    {"field": "priority", "fieldId": "priority", "fromString": "Low", "toString": "High"},
                ]
            },
        }
    )

    replies = [call for call in calls if call[0] == "post_thread_reply"]
    assert len(replies) == 1
    assert "Priority: Low → High" in replies[0][1]
    assert "167.001" not in replies[0][1]


def test_issue_assigned_event_uses_assignee_message() -> None:
    router, calls = _router(threads={"KAN-1": "167.001"})

    router.route(
        {
            "webhookEvent": "jira:issue_updated",
            "issue_event_type_name": "issue_assigned",
            "issue": {"key": "KAN-1"},
            "changelog": {"items": [{"field": "assignee", "fieldId": "assignee", "toString": "Ada Lovelace"}]},
        }
    )

    assert calls[-1] == ("post_thread_reply", "👤 [KAN-1] Issue assigned to Ada Lovelace", "167.001")


def test_issue_updated_without_correlation_is_silent_success() -> None:
    router, calls = _router()

    result = router.route(
        {
            "webhookEvent": "jira:issue_updated",
            "issue": {"key": "KAN-1"},
            "changelog": {"items": [{"field": "status", "fieldId": "status", "toString": "Done"}]},
        }
    )

    assert (result.status_code, result.message) == (200, "OK")
    assert "post_thread_reply" not in _downstream(calls)
    assert "set_custom_field" not in _downstream(calls)


def test_comment_without_correlation_is_silent_success() -> None:
    router, calls = _router()

    result = router.route(
        {
            "webhookEvent": "comment_created",
            "issue": {"key": "KAN-1"},
            "comment": {"author": {"displayName": "Grace"}, "body": "Looks good"},
        }
    )

    assert (result.status_code, result.message) == (200, "OK")
    assert _downstream(calls) == ["get_issue"]


def test_comment_event_with_non_object_comment_is_a_client_error() -> None:
    router, calls = _router(threads={"KAN-1": "167.001"})

    for comment in ("oops", ["oops"]):
        result = router.route({"webhookEvent": "comment_created", "issue": {"key": "KAN-1"}, "comment": comment})
        assert result.status_code == 400
    assert calls == []


def test_comment_replies_in_thread_and_is_not_deduplicated() -> None:
    router, calls = _router(threads={"KAN-1": "167.001"})
    body = {
        "webhookEvent": "comment_created",
        "issue": {"key": "KAN-1"},
        "comment": {"author": {"displayName": "Grace"}, "body": "Looks good"},
    }

    router.route(body)
    router.route(body)

    replies = [call for call in calls if call[0] == "post_thread_reply"]
    assert replies == [
        ("post_thread_reply", "💬 [KAN-1] Comment by Grace:\nLooks good", "167.001"),
        ("post_thread_reply", "💬 [KAN-1] Comment by Grace:\nLooks good", "167.001"),
    ]
    assert "set_custom_field" not in _downstream(calls)


def test_tracker_read_failure_becomes_server_error() -> None:
    router, _calls = _router()

    def _broken_get_issue(issue_key: str) -> IssueSnapshot:
        raise TrackerError(f"Jira API GET /rest/api/3/issue/{issue_key} failed with HTTP 404", status_code=404)

    router.jira_gateway.get_issue = _broken_get_issue  # type: ignore[method-assign]

    result = router.route(
        {
            "webhookEvent": "comment_created",
            "issue": {"key": "KAN-404"},
            "comment": {"author": {"displayName": "Grace"}, "body": "?"},
        }
    )

    assert result.status_code == 500


def test_unknown_event_is_acknowledged_without_downstream_calls() -> None:
    router, calls = _router()

    result = router.route({"webhookEvent": "worklog_updated", "issue": {"key": "KAN-1"}})

    assert (result.status_code, result.message) == (200, "OK")
    assert calls == []
