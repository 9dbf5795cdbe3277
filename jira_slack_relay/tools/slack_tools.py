"""Slack gateway for the relay channel and chat payload contracts."""
from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError


class TransportError(RuntimeError):
    """Slack Web API call failed."""


class SlackGateway:
    """Posts top-level messages and thread replies into one channel."""

    def __init__(self, *, bot_token: str, channel_id: str, timeout_seconds: float = 15.0):
        self.bot_token = bot_token
        self.channel_id = channel_id
        self.logger = logging.getLogger("slack_gateway")
        self.timeout_seconds = timeout_seconds
        if not self.bot_token:
            raise RuntimeError("SLACK_BOT_TOKEN must be configured for SlackGateway.")
        if not self.channel_id:
            raise RuntimeError("SLACK_CHANNEL_ID must be configured for SlackGateway.")
        self.client = WebClient(token=self.bot_token, timeout=self.timeout_seconds)

    def post_message(self, text: str) -> str:
        """Post a new top-level message and return its ts (the thread id)."""
        try:
            response = self.client.chat_postMessage(channel=self.channel_id, text=text)
        except SlackApiError as exc:
            raise _transport_error_from_slack("chat.postMessage", exc) from exc
        return _message_ts_from_response(response=response, method_name="chat.postMessage")

    def post_thread_reply(self, text: str, thread_ts: str) -> None:
        try:
            response = self.client.chat_postMessage(
                channel=self.channel_id,
                text=text,
                thread_ts=thread_ts,
            )
        except SlackApiError as exc:
            raise _transport_error_from_slack("chat.postMessage", exc) from exc
        _ensure_ok(response=response, method_name="chat.postMessage")

    def delete_message(self, message_ts: str) -> None:
        try:
            response = self.client.chat_delete(channel=self.channel_id, ts=message_ts)
        except SlackApiError as exc:
            raise _transport_error_from_slack("chat.delete", exc) from exc
        _ensure_ok(response=response, method_name="chat.delete")


def _slack_error_code(exc: SlackApiError) -> str:
    response = getattr(exc, "response", None)
    if response is None:
        return str(exc)
    code = response.get("error")
    return str(code or str(exc))


def _transport_error_from_slack(method_name: str, exc: SlackApiError) -> TransportError:
    response = getattr(exc, "response", None)
    if response is None:
        return TransportError(f"Slack API {method_name} failed: {exc}")
    status_code = getattr(response, "status_code", None)
    error_code = _slack_error_code(exc)
    if status_code:
        return TransportError(f"Slack API {method_name} failed with HTTP {status_code}: {error_code}")
    return TransportError(f"Slack API {method_name} failed: {error_code}")


def _ensure_ok(*, response: Any, method_name: str) -> None:
    if not response.get("ok", False):
        raise TransportError(f"Slack API {method_name} failed: {response.get('error') or 'unknown_error'}")


def _message_ts_from_response(*, response: Any, method_name: str) -> str:
    _ensure_ok(response=response, method_name=method_name)
    message_ts = response.get("ts")
    if not message_ts:
        raise TransportError(f"Slack API {method_name} did not return message ts.")
    return str(message_ts)


def first_block_text(blocks: Any) -> str:
    """Return the first non-empty text found in Slack blocks."""
    if not isinstance(blocks, list):
        return ""
    for block in blocks:
        if not isinstance(block, dict):
            continue
        text_obj = block.get("text")
        block_text = text_obj.get("text") if isinstance(text_obj, dict) else None
        if block_text and str(block_text).strip():
            return str(block_text).strip()
        for field in block.get("fields") or []:
            if isinstance(field, dict) and str(field.get("text") or "").strip():
                return str(field["text"]).strip()
    return ""


class SlackRelayInput(BaseModel):
    text: str = Field(..., min_length=1, description="Message body to relay.")
    thread_ts: str | None = Field(default=None, description="Optional thread ts to reply into.")

    @field_validator("text")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must be non-empty")
        return stripped

    @field_validator("thread_ts", mode="before")
    @classmethod
    def _strip_optional_thread_ts(cls, value: Any) -> str | None:
        if value is None:
            return None
        stripped = str(value).strip()
        return stripped or None
