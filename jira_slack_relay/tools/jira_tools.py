"""Jira gateway adapter for issue reads and correlation writes."""
from __future__ import annotations

import base64
import json
import logging
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from ..issue_models import IssueSnapshot, normalize_field_id


class TrackerError(RuntimeError):
    """Jira API call failed."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def normalize_jira_base_url(domain: str) -> str:
    """Accept ``acme``, ``acme.atlassian.net`` or ``https://acme.atlassian.net``."""
    value = str(domain or "").strip().rstrip("/")
    if not value:
        return ""
    if value.startswith(("http://", "https://")):
        return value
    if "." not in value:
        value = f"{value}.atlassian.net"
    return f"https://{value}"


class JiraGateway:
    """Gateway used by the webhook router and tests."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        email: str | None = None,
        api_token: str | None = None,
        timeout_seconds: float = 15.0,
    ):
        self.base_url = normalize_jira_base_url(base_url or "")
        self.email = email or ""
        self.api_token = api_token or ""
        self.timeout_seconds = timeout_seconds
        self.logger = logging.getLogger("jira_gateway")
        if not self.base_url or not self.email or not self.api_token:
            raise RuntimeError("Jira credentials are missing for JiraGateway.")

    def get_issue(self, issue_key: str) -> IssueSnapshot:
        data = self._request_json(
            method="GET",
            path=f"/rest/api/3/issue/{quote(issue_key, safe='')}",
        )
        return IssueSnapshot.from_jira(data)

    def set_custom_field(self, issue_key: str, field_id: str, value: str) -> None:
        normalized_field_id = normalize_field_id(field_id)
        self.logger.info(
            "storing custom field issue=%s field=%s value=%s",
            issue_key,
            normalized_field_id,
            value,
        )
        self._request_json(
            method="PUT",
            path=f"/rest/api/3/issue/{quote(issue_key, safe='')}",
            payload={"fields": {normalized_field_id: value}},
        )

    def get_myself(self) -> dict[str, Any]:
        data = self._request_json(method="GET", path="/rest/api/3/myself")
        return data if isinstance(data, dict) else {}

    def _request_json(self, *, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        data = json.dumps(payload, ensure_ascii=True).encode("utf-8") if payload is not None else None
        token = f"{self.email}:{self.api_token}".encode("utf-8")
        auth_header = base64.b64encode(token).decode("ascii")
        headers = {
            "Accept": "application/json",
            "Authorization": f"Basic {auth_header}",
        }
        if payload is not None:
            headers["Content-Type"] = "application/json"
        request = Request(url=f"{self.base_url}{path}", data=data, headers=headers, method=method)
        self.logger.debug("jira request method=%s path=%s has_body=%s", method, path, payload is not None)

        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                raw_body = response.read().decode("utf-8")
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            raise TrackerError(
                f"Jira API {method} {path} failed with HTTP {exc.code}: {error_body}",
                status_code=exc.code,
                body=error_body,
            ) from exc
        except URLError as exc:
            raise TrackerError(f"Jira API {method} {path} failed: {exc.reason}") from exc

        if not raw_body.strip():
            return {}
        return json.loads(raw_body)
