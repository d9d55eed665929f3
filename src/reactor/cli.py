"""Reactor CLI entry point."""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console()

_LEVEL_STYLES = {
    "info": "green",
    "warning": "yellow",
    "error": "red",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Reactor - containerized development with hot reload."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@cli.group()
def hotreload() -> None:
    """Watch a project and sync changes into a running container."""
    pass


@hotreload.command("start")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path), default=".")
@click.option("--container", "-c", help="Target container (defaults to .claude-reactor container_id)")
@click.option("--watch", "-w", multiple=True, help="Include pattern (repeatable)")
@click.option("--ignore", "-i", multiple=True, help="Additional exclude pattern (repeatable)")
@click.option("--debounce", type=int, help="Debounce delay in milliseconds")
@click.option("--no-build", is_flag=True, help="Never run builds")
@click.option("--no-sync", is_flag=True, help="Never sync files into the container")
@click.option("--timeout", type=float, help="Build timeout in seconds")
@click.option("--in-container", is_flag=True, help="Run builds inside the container")
@click.option("--delete", is_flag=True, help="Delete container files when host files are deleted")
def hotreload_start(
    path: Path,
    container: str | None,
    watch: tuple[str, ...],
    ignore: tuple[str, ...],
    debounce: int | None,
    no_build: bool,
    no_sync: bool,
    timeout: float | None,
    in_container: bool,
    delete: bool,
) -> None:
    """Run a hot reload session in the foreground until interrupted."""
    from reactor.docker import DockerCLIManager
    from reactor.events import EventBus, EventType
    from reactor.hotreload import HotReloadError, HotReloadManager, HotReloadOptions
    from reactor.hotreload.models import DEFAULT_EXCLUDE_PATTERNS

    options = HotReloadOptions(
        include_patterns=list(watch) or None,
        exclude_patterns=[*DEFAULT_EXCLUDE_PATTERNS, *ignore] if ignore else None,
        debounce_delay_ms=debounce,
        enable_build=False if no_build else None,
        enable_sync=False if no_sync else None,
        build_timeout_seconds=timeout,
        build_in_container=True if in_container else None,
        delete_extraneous=True if delete else None,
    )

    async def run_session() -> None:
        bus = EventBus()
        manager = HotReloadManager(DockerCLIManager(), event_bus=bus)
        events = await bus.subscribe("cli")

        session = await manager.start_hot_reload(path, container, options)
        info = session.project_info
        console.print(f"[bold green]Hot reload session {session.id} started[/bold green]")
        if info is not None:
            console.print(f"  Project: {info.language} ({info.framework}), confidence {info.confidence:.2f}")
        console.print(f"  Build:   {' '.join(session.build_command) or '-'}")
        console.print(f"  Target:  {session.container_id}")
        console.print("[dim]Press Ctrl-C to stop[/dim]")

        try:
            while True:
                event = await events.get()
                if event.type != EventType.ACTIVITY:
                    continue
                level = event.data.get("level", "info")
                style = _LEVEL_STYLES.get(level, "white")
                console.print(f"[{style}]{event.data.get('type', '')}[/{style}] {event.data.get('message', '')}")
        finally:
            await manager.stop_all()
            await bus.unsubscribe("cli")

    try:
        asyncio.run(run_session())
    except KeyboardInterrupt:
        console.print("\n[yellow]Hot reload stopped[/yellow]")
    except HotReloadError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1) from e


@hotreload.command("detect")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path), default=".")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
def hotreload_detect(path: Path, as_json: bool) -> None:
    """Show the detected project type and build settings."""
    from reactor.hotreload import BuildTrigger

    info = BuildTrigger().detect_project_type(path)

    if as_json:
        click.echo(info.model_dump_json(indent=2))
        return

    table = Table(title=f"Project: {path.resolve()}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Language", info.language)
    table.add_row("Framework", info.framework)
    table.add_row("Confidence", f"{info.confidence:.2f}")
    table.add_row("Build", " ".join(info.build_command) or "-")
    table.add_row("Test", " ".join(info.test_command) or "-")
    table.add_row("Start", " ".join(info.start_command) or "-")
    table.add_row("Watch", ", ".join(info.watch_patterns) or "-")
    table.add_row("Outputs", ", ".join(info.build_outputs) or "-")
    table.add_row("Hot Reload", "yes" if info.supports_hot_reload else "no")

    console.print(table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
