"""CLI entry point for task-service.

Usage:
    task-service                         # Start the API server
    task-service serve --port 9000       # Start with overrides
    task-service init-config             # Create config file
    task-service check-config            # Validate and summarize configuration
    task-service dead-letters --limit 20 # Inspect failed webhook deliveries
    task-service --version               # Show version
"""

import asyncio
import contextlib
import json
import sys
from pathlib import Path
from typing import Any

import click
import tomli_w
from pydantic import ValidationError

from task_service import __version__
from task_service.config import Settings, get_config_path, load_settings_with_toml


class ErrorCategory:
    """Error categories for CLI messages."""

    CONFIGURATION = "configuration"
    STORAGE = "storage"


def format_error(category: str, message: str, remediation: str) -> str:
    """Format error with category and remediation."""
    return f"""
Error [{category.upper()}]: {message}

Remediation: {remediation}
"""


def get_default_config() -> dict[str, Any]:
    """Default configuration written by init-config."""
    return {
        "server": {
            "host": "127.0.0.1",
            "port": 8080,
            "log_level": "INFO",
            "log_format": "json",
        },
        "auth": {
            "mode": "static",
            "introspection_url": "https://auth.example.com/oauth/introspect",
            "client_id": "task-service",
            "client_secret": "changeme",
            "tokens": {
                "dev-token-change-me": {
                    "subject": "developer",
                    "scopes": [
                        "tasks:read",
                        "tasks:write",
                        "projects:read",
                        "projects:write",
                        "users:read",
                        "users:write",
                        "webhooks:manage",
                    ],
                    "user_id": 1,
                },
            },
        },
        "rate_limit": {
            "requests": 1000,
            "window_seconds": 3600,
        },
        "pagination": {
            "default_limit": 20,
            "max_limit": 100,
        },
        "webhooks": {
            "workers": 4,
            "max_retries": 5,
            "retry_base_delay": 1.0,
            "retry_max_delay": 60.0,
            "dead_letter_path": "~/.local/share/task-service/dead_letters.db",
        },
        "users": [
            {"id": 1, "name": "Developer", "email": "developer@example.com"},
        ],
    }


def load_cli_settings(options: dict[str, Any], **overrides: Any) -> Settings:
    """Settings with precedence CLI > environment > config file > defaults.

    Exits with status 1 when the configuration does not validate.
    """
    config_path = options.get("config_path")
    try:
        settings = load_settings_with_toml(Path(config_path) if config_path else None)
    except ValidationError as e:
        click.echo(
            format_error(
                ErrorCategory.CONFIGURATION,
                "Configuration is invalid",
                f"Fix the values below in {config_path or get_config_path()} or the environment:\n{e}",
            ),
            err=True,
        )
        sys.exit(1)

    updates = {k: v for k, v in overrides.items() if v is not None}
    if options.get("log_level"):
        updates["log_level"] = options["log_level"]
    return settings.model_copy(update=updates) if updates else settings


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    type=click.Path(exists=False),
    help="Override config file path",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Override log level",
)
@click.version_option(version=__version__, prog_name="task-service")
@click.pass_context
def main(ctx: click.Context, config: str | None, log_level: str | None) -> None:
    """Task management REST API.

    Configuration is loaded from (in priority order):
    1. CLI arguments
    2. Environment variables (TASK_SERVICE_*)
    3. Config file (~/.config/task-service/config.toml)
    4. Built-in defaults
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["log_level"] = log_level

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve)


@main.command()
@click.option("--host", type=str, help="Bind address")
@click.option("--port", type=click.IntRange(1, 65535), help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None = None, port: int | None = None) -> None:
    """Start the API server."""
    from task_service.__main__ import run_service
    from task_service.utils.logging import setup_logging

    settings = load_cli_settings(ctx.obj, http_host=host, http_port=port)
    setup_logging(settings)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_service(settings))


@main.command()
@click.pass_context
def init_config(ctx: click.Context) -> None:
    """Create a configuration file with defaults.

    The file is created with restrictive permissions (600) because it holds
    bearer tokens and the introspection client secret.
    """
    config_path = Path(ctx.obj.get("config_path") or get_config_path())

    if config_path.exists():
        click.echo(f"Config file already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            sys.exit(0)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "wb") as f:
        tomli_w.dump(get_default_config(), f)

    # chmod may not be supported on Windows
    with contextlib.suppress(OSError):
        config_path.chmod(0o600)

    click.echo(f"Created config file: {config_path}")
    click.echo()
    click.echo("Next steps:")
    click.echo("  1. Replace the development token under [auth.tokens]")
    click.echo("  2. Or set auth.mode = \"introspection\" and configure the issuer")
    click.echo("  3. Verify: task-service check-config")


@main.command()
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate configuration and print a summary.

    Returns exit code 0 if the configuration is usable, 1 otherwise.
    """
    settings = load_cli_settings(ctx.obj)
    all_ok = True

    click.echo(f"HTTP ................ {settings.http_host}:{settings.http_port}")
    click.echo(f"Auth mode ........... {settings.auth_mode}")
    if settings.auth_mode == "introspection":
        if settings.introspection_url:
            click.echo(f"Introspection URL ... {settings.introspection_url}")
        else:
            click.echo("Introspection URL ... " + click.style("MISSING", fg="red"))
            all_ok = False
    else:
        count = len(settings.static_tokens)
        style = "green" if count else "yellow"
        click.echo("Static tokens ....... " + click.style(str(count), fg=style))

    click.echo(
        f"Rate limit .......... {settings.rate_limit_requests} requests / "
        f"{settings.rate_limit_window_seconds}s"
    )
    click.echo(f"Webhook workers ..... {settings.webhook_workers} (max retries {settings.webhook_max_retries})")
    click.echo(f"Dead letters ........ {settings.dead_letter_path}")
    click.echo(f"Seed users .......... {len(settings.seed_users)}")

    click.echo()
    if all_ok:
        click.echo(click.style("Configuration OK", fg="green"))
        sys.exit(0)
    click.echo(click.style("Configuration incomplete. See above for details.", fg="red"))
    sys.exit(1)


@main.command()
@click.option("--limit", type=click.IntRange(1, 1000), default=50, show_default=True, help="Entries to show")
@click.option("--event", type=str, help="Only entries for this event type")
@click.option("--purge", is_flag=True, help="Delete all entries")
@click.option("--json", "as_json", is_flag=True, help="Print entries as JSON")
@click.pass_context
def dead_letters(ctx: click.Context, limit: int, event: str | None, purge: bool, as_json: bool) -> None:
    """Inspect webhook deliveries that exhausted their retries."""
    from task_service.utils.logging import setup_logging

    settings = load_cli_settings(ctx.obj)
    # Keep stdout for command output so --json stays parseable
    setup_logging(settings, use_stderr=True)
    try:
        entries, removed = asyncio.run(_dead_letter_command(settings.dead_letter_path, limit, event, purge))
    except Exception as e:
        click.echo(
            format_error(
                ErrorCategory.STORAGE,
                f"Cannot read dead-letter store at {settings.dead_letter_path}",
                f"Check the webhooks.dead_letter_path setting.\n\nDetails: {e}",
            ),
            err=True,
        )
        sys.exit(1)

    if purge:
        click.echo(f"Purged {removed} dead-letter entries")
        return

    if as_json:
        click.echo(json.dumps(entries, indent=2))
        return

    if not entries:
        click.echo("No failed deliveries")
        return

    for entry in entries:
        status = entry["last_status"] if entry["last_status"] is not None else "-"
        click.echo(
            f"{entry['failed_at']}  {entry['event']:<18} sub={entry['subscription_id']} "
            f"attempts={entry['attempts']} status={status}  {entry['url']}"
        )
        if entry["last_error"]:
            click.echo(f"    {entry['last_error']}")


async def _dead_letter_command(
    path: str,
    limit: int,
    event: str | None,
    purge: bool,
) -> tuple[list[dict[str, Any]], int]:
    from task_service.storage.dead_letters import DeadLetterStore

    store = DeadLetterStore(path)
    try:
        if purge:
            return [], await store.purge()
        return await store.list_entries(limit=limit, event=event), 0
    finally:
        await store.close()


if __name__ == "__main__":
    main()
