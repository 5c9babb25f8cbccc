"""
Lightup CLI

Click-based command-line interface for Lightup.
Runs the API server and inspects the board, settings and database.
"""

import json
import sys

import click
from rich.console import Console
from rich.table import Table

from lightup import __version__
from lightup.logging import EXIT_RUNTIME_ERROR, get_logger, init_cli_logging, json_logging_from_env

logger = get_logger(__name__)

console = Console()


def get_service_context():
    """Create a ServiceContext for CLI operations."""
    from lightup.config import load_config
    from lightup.services.base import ServiceContext

    return ServiceContext(config=load_config())


def get_db():
    """Get database connection with migrations applied."""
    from lightup.config import load_config
    from lightup.db.database import Database

    db = Database(load_config().db_path)
    db.init_schema()
    return db


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cli(ctx, verbose, json_output):
    """Lightup - AI-assisted kanban board."""
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose
    ctx.obj["JSON"] = json_output

    if verbose:
        init_cli_logging(level="DEBUG")


@cli.command()
def version():
    """Show version information."""
    click.echo(f"Lightup v{__version__}")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: LIGHTUP_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: LIGHTUP_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host, port, reload):
    """Run the API server with the event relay and queue processor."""
    import uvicorn

    from lightup.config import load_config

    config = load_config()
    init_cli_logging(config.log_level, json_output=json_logging_from_env())
    try:
        # Our logging config drives output instead of uvicorn defaults.
        uvicorn.run(
            "lightup.api.app:app",
            host=host or config.host,
            port=port or config.port,
            reload=reload,
            log_config=None,
        )
    except Exception as exc:
        logger.error("api_server_failed", extra={"error": str(exc), "error_type": exc.__class__.__name__})
        sys.exit(EXIT_RUNTIME_ERROR)


@cli.command("init-db")
def init_db():
    """Create or migrate the database."""
    db = get_db()
    click.echo(f"✓ Database ready: {db.db_path}")


@cli.command()
@click.option("--board-id", default=None, help="Only show one board")
@click.pass_context
def board(ctx, board_id):
    """Show cards per stage."""
    from lightup.services.cards import CardService
    from lightup.services.events import get_event_bus

    columns = CardService(get_service_context(), get_db(), get_event_bus()).board_overview(board_id)

    if ctx.obj and ctx.obj.get("JSON"):
        click.echo(
            json.dumps(
                {
                    stage: [{"id": c.id, "title": c.title, "ai_status": c.ai_status} for c in cards]
                    for stage, cards in columns.items()
                }
            )
        )
        return

    table = Table(title=f"Board {board_id}" if board_id else "Board")
    table.add_column("Stage", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="magenta")
    table.add_column("Priority")
    table.add_column("AI", style="green")
    table.add_column("Subtasks", justify="right")

    for stage, cards in columns.items():
        for card in cards:
            table.add_row(
                stage,
                card.id[:8],
                card.title,
                card.priority,
                card.ai_status,
                f"{card.subtask_completed}/{card.subtask_count}",
            )

    console.print(table)


# =============================================================================
# Settings Commands
# =============================================================================

@cli.group()
def settings():
    """Application settings (ai_concurrency, ai_stuck_timeout_minutes, ...)."""
    pass


@settings.command("get")
@click.argument("key")
def settings_get(key):
    """Print a setting value."""
    setting = get_db().get_setting(key)
    if setting is None:
        click.echo(f"✗ Setting not found: {key}", err=True)
        sys.exit(EXIT_RUNTIME_ERROR)
    click.echo(setting.value)


@settings.command("set")
@click.argument("key")
@click.argument("value")
def settings_set(key, value):
    """Set a setting value."""
    setting = get_db().set_setting(key, value)
    click.echo(f"✓ {setting.key} = {setting.value}")


if __name__ == "__main__":
    cli()
