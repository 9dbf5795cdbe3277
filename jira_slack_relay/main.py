"""CLI entrypoint for the Jira to Slack relay."""
from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console

from .config_loader import RelayConfig, load_config, load_relay_config
from .tools.jira_tools import JiraGateway, TrackerError
from .tools.slack_tools import SlackGateway, TransportError
from .webhook_ingress import run_webhook_ingress
from .webhook_router import WebhookRouter

app = typer.Typer(help="Relay Jira issue events into Slack threads.")
console = Console()


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _load_relay_config() -> RelayConfig:
    return load_relay_config(load_config())


def _build_gateways(config: RelayConfig) -> tuple[SlackGateway, JiraGateway]:
    slack_gateway = SlackGateway(
        bot_token=config.slack_bot_token,
        channel_id=config.slack_channel_id,
        timeout_seconds=config.request_timeout_seconds,
    )
    jira_gateway = JiraGateway(
        base_url=config.jira_base_url,
        email=config.jira_email,
        api_token=config.jira_api_token,
        timeout_seconds=config.request_timeout_seconds,
    )
    return slack_gateway, jira_gateway


def _build_router(config: RelayConfig) -> WebhookRouter:
    slack_gateway, jira_gateway = _build_gateways(config)
    return WebhookRouter(
        slack_gateway=slack_gateway,
        jira_gateway=jira_gateway,
        correlation_field_id=config.thread_field_id,
        write_retry=config.retry,
        guard_duplicate_creates=config.guard_duplicate_creates,
    )


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Host for webhook HTTP server."),
    port: Optional[int] = typer.Option(None, help="Port for webhook HTTP server (defaults to config/PORT)."),
) -> None:
    """Run the webhook HTTP server."""
    _configure_logging()
    config = _load_relay_config()
    router = _build_router(config)
    listen_port = port if port is not None else config.port
    console.print(
        f"[cyan]Jira relay listening on http://{host}:{listen_port}{config.webhook_path} "
        f"(channel: {config.slack_channel_id}; thread field: {config.thread_field_id})[/]"
    )
    run_webhook_ingress(
        host=host,
        port=listen_port,
        router=router,
        webhook_path=config.webhook_path,
    )


@app.command("check-connections")
def check_connections(
    issue_key: Optional[str] = typer.Option(None, help="Issue key to fetch, e.g. KAN-1."),
) -> None:
    """Verify Jira credentials and Slack posting rights."""
    _configure_logging()
    config = _load_relay_config()
    slack_gateway, jira_gateway = _build_gateways(config)
    failed = False

    try:
        myself = jira_gateway.get_myself()
        console.print(f"[green]Jira authentication successful.[/] Connected as: {myself.get('displayName', '?')}")
    except TrackerError as exc:
        failed = True
        console.print(f"[red]Jira connection failed:[/] {exc}")

    if issue_key and not failed:
        try:
            issue = jira_gateway.get_issue(issue_key)
            thread_ts = issue.correlation_value(config.thread_field_id)
            console.print(
                f"[green]Retrieved issue {issue.key}.[/] "
                f"Linked thread: {thread_ts or 'none'}"
            )
        except TrackerError as exc:
            console.print(f"[yellow]Could not retrieve issue {issue_key}:[/] {exc}")

    try:
        message_ts = slack_gateway.post_message("🔄 Testing Slack integration...")
        slack_gateway.delete_message(message_ts)
        console.print(f"[green]Slack posting works.[/] Channel: {config.slack_channel_id}")
    except TransportError as exc:
        failed = True
        console.print(f"[red]Slack connection failed:[/] {exc}")
        console.print("Check the bot token, chat:write scope and that the bot is in the channel.")

    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
