"""Configuration helpers for the Jira to Slack relay."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .issue_models import normalize_field_id
from .retry import RetryPolicy
from .tools.jira_tools import normalize_jira_base_url

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
CONFIG_PATH = PACKAGE_ROOT / "config.yaml"

DEFAULT_THREAD_FIELD_ID = "customfield_10039"
DEFAULT_WEBHOOK_PATH = "/api/jira/webhook"
DEFAULT_PORT = 3000


@dataclass
class RelayConfig:
    slack_bot_token: str
    slack_channel_id: str
    jira_base_url: str
    jira_email: str
    jira_api_token: str
    thread_field_id: str = DEFAULT_THREAD_FIELD_ID
    webhook_path: str = DEFAULT_WEBHOOK_PATH
    port: int = DEFAULT_PORT
    request_timeout_seconds: float = 15.0
    guard_duplicate_creates: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)


def load_config(path: Path | None = None) -> dict:
    """Load the YAML configuration file; a missing file means env-only config."""
    config_path = path or CONFIG_PATH
    if not config_path.exists():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def resolve_env_value(raw_value: str, *, fallback_env_var: str, default: str = "") -> str:
    value = raw_value
    if value.startswith("${") and value.endswith("}"):
        value = os.getenv(value[2:-1], "")
    if not value:
        value = os.getenv(fallback_env_var, "")
    return value or default


def _as_bool(value: object, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in {"0", "false", "no", "off", ""}


def load_relay_config(config: dict) -> RelayConfig:
    slack = config.get("slack") or {}
    jira = config.get("jira") or {}
    server = config.get("server") or {}
    retry = config.get("retry") or {}

    bot_token = resolve_env_value(str(slack.get("bot_token", "")), fallback_env_var="SLACK_BOT_TOKEN")
    channel_id = resolve_env_value(str(slack.get("channel_id", "")), fallback_env_var="SLACK_CHANNEL_ID")
    jira_domain = resolve_env_value(str(jira.get("domain", "")), fallback_env_var="JIRA_DOMAIN")
    if not jira_domain:
        jira_domain = resolve_env_value(str(jira.get("base_url", "")), fallback_env_var="JIRA_BASE_URL")
    jira_email = resolve_env_value(str(jira.get("email", "")), fallback_env_var="JIRA_EMAIL")
    jira_api_token = resolve_env_value(str(jira.get("api_token", "")), fallback_env_var="JIRA_API_TOKEN")
    thread_field_id = resolve_env_value(
        str(jira.get("thread_field_id", "")),
        fallback_env_var="JIRA_THREAD_FIELD_ID",
        default=DEFAULT_THREAD_FIELD_ID,
    )
    port = resolve_env_value(str(server.get("port", "")), fallback_env_var="PORT", default=str(DEFAULT_PORT))

    required = [
        ("slack.bot_token", bot_token),
        ("slack.channel_id", channel_id),
        ("jira.domain", jira_domain),
        ("jira.email", jira_email),
        ("jira.api_token", jira_api_token),
    ]
    missing = [name for name, value in required if not value]
    if missing:
        raise RuntimeError("Missing required configuration: " + ", ".join(missing))

    return RelayConfig(
        slack_bot_token=bot_token,
        slack_channel_id=channel_id,
        jira_base_url=normalize_jira_base_url(jira_domain),
        jira_email=jira_email,
        jira_api_token=jira_api_token,
        thread_field_id=normalize_field_id(thread_field_id),
        webhook_path=str(server.get("webhook_path") or DEFAULT_WEBHOOK_PATH),
        port=int(port),
        request_timeout_seconds=float(server.get("request_timeout_seconds", 15.0)),
        guard_duplicate_creates=_as_bool(jira.get("guard_duplicate_creates"), default=True),
        retry=RetryPolicy(
            max_attempts=int(retry.get("max_attempts", 3)),
            base_delay_seconds=float(retry.get("base_delay_seconds", 0.5)),
            max_delay_seconds=float(retry.get("max_delay_seconds", 2.0)),
        ),
    )
