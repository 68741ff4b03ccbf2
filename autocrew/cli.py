import click


@click.group()
def main() -> None:
    """Autocrew - dispatch and observability runtime for autonomous agents."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from AUTOCREW_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from AUTOCREW_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the Agent Runtime server (API, scheduler and dispatcher)."""
    import uvicorn

    from autocrew.agent_runtime.settings import AutocrewSettings

    settings = AutocrewSettings()

    uvicorn.run(
        "autocrew.agent_runtime.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Drain timeout plus a buffer for stream close, tool shutdown and DB dispose.
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 60,
    )


@main.command()
@click.option("--scheduler/--no-scheduler", default=True, help="Run a time scheduler tick.")
@click.option("--dispatcher/--no-dispatcher", default=True, help="Run a task dispatcher tick.")
@click.option("--timeout", default=None, type=float, help="Max seconds to wait for started executions.")
def tick(scheduler: bool, dispatcher: bool, timeout: float | None) -> None:
    """Run one scheduler and dispatcher tick, then wait for what they started."""
    import asyncio

    from autocrew.agent_runtime.log import setup_logging
    from autocrew.agent_runtime.settings import AutocrewSettings

    settings = AutocrewSettings()
    setup_logging(settings.log_level)

    triggered, dispatched = asyncio.run(_run_tick(settings, scheduler, dispatcher, timeout))
    click.echo(f"Triggered {triggered} scheduled units, dispatched {dispatched} work items.")


async def _run_tick(settings, run_scheduler: bool, run_dispatcher: bool, timeout: float | None) -> tuple[int, int]:
    from autocrew.agent_runtime.app import create_store
    from autocrew.agent_runtime.context import build_services

    store, engine = create_store(settings)
    services = build_services(settings, store)
    try:
        await services.coordinator.recover_orphans()
        triggered = await services.time_scheduler.run_once() if run_scheduler else 0
        dispatched = await services.dispatcher.run_once() if run_dispatcher else 0
        if not await services.coordinator.wait_idle(timeout=timeout):
            services.coordinator.cancel_all()
            await services.coordinator.wait_idle(timeout=5.0)
        await services.dispatcher.wait_settled(timeout=5.0)
    finally:
        await services.bridge.shutdown()
        if engine is not None:
            await engine.dispose()
    return triggered, dispatched


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _alembic_config():
    """Build an Alembic Config from the package's alembic.ini.

    Both alembic.ini and the alembic/ directory live inside the package,
    so this works whether running from source or from an installed package.
    """
    from pathlib import Path

    from alembic.config import Config

    ini_path = Path(__file__).parent / "agent_runtime" / "alembic.ini"
    cfg = Config(str(ini_path))
    cfg.set_main_option("script_location", str(ini_path.parent / "alembic"))
    return cfg


@main.group()
def db() -> None:
    """Database migration and management commands."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Run database migrations forward."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: -1, one step back).")
def downgrade(revision: str) -> None:
    """Roll back database migrations."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a new migration from model changes."""
    from alembic import command

    command.revision(_alembic_config(), message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def current() -> None:
    """Show current database revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)


@db.command()
def history() -> None:
    """Show migration history."""
    from alembic import command

    command.history(_alembic_config(), verbose=True)


if __name__ == "__main__":
    main()
