"""
Command-line interface for RTM-Triage.

This module provides the CLI for serving the API and running the triage
batch operations by hand.
"""

import asyncio
import json
import logging
import sys

import click

from rtm_triage import __version__
from rtm_triage.app_initializer import TriageApplication
from rtm_triage.core.exceptions import TriageError


@click.group()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file"
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="INFO",
    help="Logging level"
)
@click.pass_context
def cli(ctx, config, log_level):
    """RTM-Triage: clinical alert risk scoring and triage prioritization."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["log_level"] = log_level
    logging.basicConfig(level=getattr(logging, log_level))


def _run_with_app(ctx, action):
    """Initialize the application, run an async action against it, shut down."""
    async def _run():
        app = TriageApplication(config_path=ctx.obj["config"])
        await app.initialize()
        try:
            return await action(app)
        finally:
            await app.shutdown()

    try:
        return asyncio.run(_run())
    except TriageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", type=int, default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_context
def serve(ctx, host, port, reload):
    """Run the API server."""
    import uvicorn

    from rtm_triage.api.app import create_app

    click.echo("🚀 Starting RTM-Triage API server...")
    click.echo(f"📊 API Documentation: http://{host}:{port}/api/docs")
    click.echo(f"💊 Health check: http://{host}:{port}/api/v1/health")

    if reload:
        # Reload needs an import string; the factory reads RTM_TRIAGE_ENV for its config
        uvicorn.run(
            "rtm_triage.api.app:create_app",
            factory=True, host=host, port=port, reload=True, log_level="info",
        )
    else:
        uvicorn.run(
            create_app(config_path=ctx.obj["config"]),
            host=host, port=port, log_level="info",
        )


@cli.command()
@click.pass_context
def setup_db(ctx):
    """Set up the database schema."""
    from rtm_triage.storage.setup import setup_database

    try:
        success = asyncio.run(setup_database(ctx.obj["config"], echo=click.echo))
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if success:
        click.echo("✅ Database setup completed successfully")
    else:
        click.echo("❌ Database setup failed")
        sys.exit(1)


@cli.command()
@click.argument("organization_id")
@click.pass_context
def recalculate_ranks(ctx, organization_id):
    """Recompute the priority ranks of one organization's queue."""
    count = _run_with_app(
        ctx, lambda app: app.engine.recalculate_priority_ranks(organization_id)
    )
    click.echo(f"✅ Ranked {count} alerts for organization {organization_id}")


@cli.command()
@click.pass_context
def maintenance(ctx):
    """Run one maintenance sweep (snoozes, stale claims, SLA escalation)."""
    report = _run_with_app(ctx, lambda app: app.engine.run_maintenance())
    click.echo(json.dumps(report.model_dump(), indent=2))


@cli.command()
@click.pass_context
def health_check(ctx):
    """Perform application health check."""
    health = _run_with_app(ctx, lambda app: app.health_check())
    if health["healthy"]:
        click.echo("✅ Application is healthy")
        sys.exit(0)
    click.echo("❌ Application is not healthy")
    click.echo(json.dumps(health["components"], indent=2))
    sys.exit(1)


@cli.command()
def version():
    """Show version information."""
    click.echo(f"RTM-Triage v{__version__}")
    click.echo("Clinical alert risk scoring and triage prioritization")


if __name__ == "__main__":
    cli()
