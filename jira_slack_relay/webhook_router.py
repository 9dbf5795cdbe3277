"""Routes inbound webhooks to Slack and keeps issue threads correlated."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .formatting import format_comment, format_issue_update, format_link_failure, format_new_issue
from .issue_models import ChangelogItem, IssueComment, IssueSnapshot, normalize_field_id, parse_changelog
from .payload_classifier import PayloadClassification, PayloadKind, classify_payload
from .retry import RetryPolicy, call_with_retry
from .tools.jira_tools import JiraGateway, TrackerError
from .tools.slack_tools import SlackGateway, SlackRelayInput, TransportError, first_block_text

CHAT_PROCESSED_MESSAGE = "Slack payload processed"
OK_MESSAGE = "OK"
EMPTY_BODY_MESSAGE = "No payload received"
SERVER_ERROR_MESSAGE = "Internal Server Error"


class PayloadValidationError(ValueError):
    """Inbound body is missing or cannot be handled."""


@dataclass(frozen=True)
class RouteResult:
    status_code: int
    message: str


def is_retryable_tracker_error(exc: Exception) -> bool:
    if not isinstance(exc, TrackerError):
        return False
    status_code = exc.status_code
    return status_code is None or status_code == 429 or status_code >= 500


class WebhookRouter:
    """Single entrypoint for Jira events and Slack-formatted relay payloads."""

    def __init__(
        self,
        *,
        slack_gateway: SlackGateway | Any,
        jira_gateway: JiraGateway | Any,
        correlation_field_id: str,
        write_retry: RetryPolicy | None = None,
        guard_duplicate_creates: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.slack_gateway = slack_gateway
        self.jira_gateway = jira_gateway
        self.correlation_field_id = normalize_field_id(correlation_field_id)
        self.write_retry = write_retry or RetryPolicy()
        self.guard_duplicate_creates = guard_duplicate_creates
        self._sleep = sleep
        self.logger = logging.getLogger("webhook_router")

    def route(self, body: Any) -> RouteResult:
        if not body:
            self.logger.warning("rejecting webhook with empty body")
            return RouteResult(400, EMPTY_BODY_MESSAGE)
        try:
            if not isinstance(body, dict):
                raise PayloadValidationError("webhook body must be a JSON object")
            classification = classify_payload(body)
            self.logger.info(
                "webhook received kind=%s event=%s",
                classification.kind.value,
                classification.event_name or "-",
            )
            return self._dispatch(classification, body)
        except PayloadValidationError as exc:
            self.logger.warning("rejecting webhook: %s", exc)
            return RouteResult(400, f"Invalid payload: {exc}")
        except Exception:  # noqa: BLE001
            self.logger.exception("webhook handling failed")
            return RouteResult(500, SERVER_ERROR_MESSAGE)

    def _dispatch(self, classification: PayloadClassification, body: dict[str, Any]) -> RouteResult:
        kind = classification.kind
        if kind == PayloadKind.CHAT_FORMATTED:
            self.handle_chat_payload(body)
            return RouteResult(200, CHAT_PROCESSED_MESSAGE)
        if kind == PayloadKind.ISSUE_CREATED:
            self.handle_issue_created(_issue_from_body(body))
        elif kind == PayloadKind.ISSUE_UPDATED:
            self.handle_issue_updated(
                _issue_key_from_body(body),
                parse_changelog(body.get("changelog")),
                event_type=body.get("issue_event_type_name"),
            )
        elif kind == PayloadKind.COMMENT_CREATED:
            self.handle_comment_created(
                _issue_key_from_body(body),
                _comment_from_body(body),
            )
        else:
            self.logger.info("unhandled webhook event=%s", classification.event_name or "<missing>")
        return RouteResult(200, OK_MESSAGE)

    def handle_chat_payload(self, body: dict[str, Any]) -> None:
        try:
            relay = SlackRelayInput(
                text=str(body.get("text") or first_block_text(body.get("blocks"))),
                thread_ts=body.get("thread_ts"),
            )
        except ValidationError as exc:
            raise PayloadValidationError("chat payload has no text to relay") from exc

        if relay.thread_ts:
            self.slack_gateway.post_thread_reply(relay.text, relay.thread_ts)
        else:
            self.slack_gateway.post_message(relay.text)
        self.logger.info("relayed chat payload thread_ts=%s", relay.thread_ts or "-")

    def handle_issue_created(self, issue: IssueSnapshot) -> str | None:
        """Open a thread for the issue and store its ts in the correlation field.

        Returns the new thread ts, or None when the issue is already linked.
        """
        if self.guard_duplicate_creates:
            existing = self._existing_thread(issue)
            if existing:
                self.logger.info(
                    "skipping duplicate create issue=%s thread_ts=%s",
                    issue.key,
                    existing,
                )
                return None

        thread_ts = self.slack_gateway.post_message(format_new_issue(issue))
        self._store_correlation(issue.key, thread_ts)
        self.logger.info("created thread issue=%s thread_ts=%s", issue.key, thread_ts)
        return thread_ts

    def handle_issue_updated(
        self,
        issue_key: str,
        changelog: list[ChangelogItem],
        *,
        event_type: str | None = None,
    ) -> bool:
        if self.is_correlation_noise(changelog):
            self.logger.info("ignoring correlation field update issue=%s", issue_key)
            return False

        issue = self.jira_gateway.get_issue(issue_key)
        thread_ts = issue.correlation_value(self.correlation_field_id)
        if not thread_ts:
            self.logger.info("no thread linked issue=%s event=update", issue_key)
            return False

        message = format_issue_update(
            issue,
            changelog,
            event_type=event_type,
            correlation_field_id=self.correlation_field_id,
        )
        self.slack_gateway.post_thread_reply(message, thread_ts)
        self.logger.info("posted update issue=%s thread_ts=%s", issue_key, thread_ts)
        return True

    def handle_comment_created(self, issue_key: str, comment: IssueComment) -> bool:
        issue = self.jira_gateway.get_issue(issue_key)
        thread_ts = issue.correlation_value(self.correlation_field_id)
        if not thread_ts:
            self.logger.info("no thread linked issue=%s event=comment", issue_key)
            return False

        self.slack_gateway.post_thread_reply(format_comment(comment, issue_key), thread_ts)
        self.logger.info("posted comment issue=%s thread_ts=%s", issue_key, thread_ts)
        return True

    def is_correlation_noise(self, changelog: list[ChangelogItem]) -> bool:
        """True when the only change is our own write of the correlation field."""
        if len(changelog) != 1:
            return False
        return changelog[0].matches_field(self.correlation_field_id)

    def _existing_thread(self, issue: IssueSnapshot) -> str | None:
        existing = issue.correlation_value(self.correlation_field_id)
        if existing:
            return existing
        current = self.jira_gateway.get_issue(issue.key)
        return current.correlation_value(self.correlation_field_id)

    def _store_correlation(self, issue_key: str, thread_ts: str) -> None:
        def _on_retry(attempt: int, exc: Exception) -> None:
            self.logger.warning(
                "correlation write retry issue=%s attempt=%s error=%s",
                issue_key,
                attempt,
                exc,
            )

        try:
            call_with_retry(
                lambda: self.jira_gateway.set_custom_field(issue_key, self.correlation_field_id, thread_ts),
                policy=self.write_retry,
                retry_on=(TrackerError,),
                should_retry=is_retryable_tracker_error,
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except TrackerError:
            self.logger.error(
                "correlation write failed, thread left unlinked issue=%s thread_ts=%s",
                issue_key,
                thread_ts,
            )
            self._flag_orphan_thread(issue_key, thread_ts)
            raise

    def _flag_orphan_thread(self, issue_key: str, thread_ts: str) -> None:
        try:
            self.slack_gateway.post_thread_reply(format_link_failure(issue_key), thread_ts)
        except TransportError as exc:
            # The correlation write error is the one reported to the caller.
            self.logger.warning("could not flag orphan thread issue=%s error=%s", issue_key, exc)


def _issue_key_from_body(body: dict[str, Any]) -> str:
    issue = body.get("issue")
    key = str(issue.get("key") or "").strip() if isinstance(issue, dict) else ""
    if not key:
        raise PayloadValidationError("Jira event is missing issue.key")
    return key


def _comment_from_body(body: dict[str, Any]) -> IssueComment:
    raw = body.get("comment")
    if not isinstance(raw, dict):
        raise PayloadValidationError("Jira comment event is missing comment")
    return IssueComment.from_jira(raw)


def _issue_from_body(body: dict[str, Any]) -> IssueSnapshot:
    raw = body.get("issue")
    if not isinstance(raw, dict):
        raise PayloadValidationError("Jira event is missing issue")
    try:
        return IssueSnapshot.from_jira(raw)
    except ValueError as exc:
        raise PayloadValidationError(str(exc)) from exc
