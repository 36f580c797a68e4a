"""CLI interface for playlistdb."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from playlistdb.config import AppConfig, config_exists, ensure_dirs, get_base_dir, load_config, save_config
from playlistdb.errors import ConfigurationError, PlaylistDBError, TransientStoreError
from playlistdb.ingest.pipeline import IngestStats, PlaylistIngestor
from playlistdb.ingest.retry import RetryPolicy
from playlistdb.logging import setup_logging
from playlistdb.storage.database import Database

app = typer.Typer(
    name="playlistdb",
    help="Ingest playlist exports into a relational store and query them over HTTP.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config() -> AppConfig:
    try:
        return load_config()
    except ConfigurationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1) from exc


def _resolve_db_path(cfg: AppConfig, override: str) -> Path:
    path = Path(override).expanduser() if override else cfg.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _print_stats(stats: IngestStats, *, title: str) -> None:
    table = Table(title=title)
    table.add_column("Entity")
    table.add_column("Upserted", justify="right")
    for name, count in stats.as_dict().items():
        table.add_row(name, str(count))
    console.print(table)
    console.print(f"Duration: {stats.duration_seconds:.1f}s")


async def _run_ingest(
    db: Database,
    ingestor: PlaylistIngestor,
    source: Path,
    features: Path | None,
) -> IngestStats:
    await db.connect()
    try:
        return await ingestor.ingest(source, features)
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def ingest(
    source: Path = typer.Option(..., "--from", "-f", help="Path to the playlist JSON file"),
    features: str = typer.Option("", "--features", help="Path to the audio features JSON file"),
    batch_size: int = typer.Option(0, "--batch-size", "-b", min=0, help="Records per batch (default: config)"),
    db_path: str = typer.Option("", "--db", help="SQLite database file (default: config)"),
) -> None:
    """Ingest a playlist export (and optionally audio features) into the database."""
    cfg = _load_config()
    ensure_dirs()
    setup_logging(cfg.logging.level, cfg.log_dir, console=True)

    db = Database(_resolve_db_path(cfg, db_path))
    policy = RetryPolicy(
        max_attempts=cfg.ingest.max_attempts,
        base_delay=cfg.ingest.base_delay_seconds,
        retry_on=(TransientStoreError,),
    )
    ingestor = PlaylistIngestor(db, batch_size=batch_size or cfg.ingest.batch_size, retry_policy=policy)

    try:
        stats = asyncio.run(_run_ingest(db, ingestor, source, Path(features) if features else None))
    except Exception as exc:
        reason = str(exc) if isinstance(exc, PlaylistDBError) else f"{type(exc).__name__}: {exc}"
        console.print(f"[red]Ingestion failed:[/red] {escape(reason)}")
        _print_stats(ingestor.stats, title="Committed before failure")
        raise typer.Exit(1) from exc

    console.print("[green]Ingestion completed.[/green]")
    _print_stats(stats, title="Ingestion summary")


@app.command()
def serve(
    host: str = typer.Option("", "--host", help="Bind address (default: config)"),
    port: int = typer.Option(0, "--port", "-p", help="Bind port (default: config)"),
    db_path: str = typer.Option("", "--db", help="SQLite database file (default: config)"),
) -> None:
    """Serve the read-only query API."""
    import uvicorn

    from playlistdb.server.api import create_api_app

    cfg = _load_config()
    ensure_dirs()
    setup_logging(cfg.logging.level, cfg.log_dir, console=True)

    api = create_api_app(Database(_resolve_db_path(cfg, db_path)), manage_db=True)
    bind_host = host or cfg.api.host
    bind_port = port or cfg.api.port
    console.print(f"API listening on [bold]http://{bind_host}:{bind_port}/api/v1[/bold]")
    uvicorn.run(api, host=bind_host, port=bind_port, log_config=None)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration."""
    cfg = _load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")
    if not config_exists():
        console.print("[dim]No config file yet; showing defaults.[/dim]\n")

    console.print("[bold cyan]\\[database][/bold cyan]")
    console.print(f"  path = {cfg.database.path or '[dim](default)[/dim]'}  [dim]→ {cfg.db_path}[/dim]")

    console.print("\n[bold cyan]\\[ingest][/bold cyan]")
    console.print(f"  batch_size         = {cfg.ingest.batch_size}")
    console.print(f"  max_attempts       = {cfg.ingest.max_attempts}")
    console.print(f"  base_delay_seconds = {cfg.ingest.base_delay_seconds}")

    console.print("\n[bold cyan]\\[api][/bold cyan]")
    console.print(f"  host = {cfg.api.host}")
    console.print(f"  port = {cfg.api.port}")

    console.print("\n[bold cyan]\\[logging][/bold cyan]")
    console.print(f"  level = {cfg.logging.level}")
    console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. ingest.batch_size"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. playlistdb config set ingest.batch_size 500)."""

    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. api.port).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = _load_config()
    section_map = {
        "database": cfg.database,
        "ingest": cfg.ingest,
        "api": cfg.api,
        "logging": cfg.logging,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model).model_validate(section_data)
    except ValueError as exc:
        console.print(f"[red]Invalid value:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)
    console.print(f"[green]Set[/green] {key} = {coerced}")


def _coerce_value(raw: str, field_type: object) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    if field_type is float:
        return float(raw)

    return raw


# ---------------------------------------------------------------------------
# Database inspection
# ---------------------------------------------------------------------------


db_app = typer.Typer(name="db", help="Database inspection commands.", add_completion=False)
app.add_typer(db_app)


@db_app.command(name="status")
def db_status(
    db_path: str = typer.Option("", "--db", help="SQLite database file (default: config)"),
) -> None:
    """Show database location and row counts per table."""
    import sqlite3

    cfg = _load_config()
    path = Path(db_path).expanduser() if db_path else cfg.db_path
    if not path.exists():
        console.print("[yellow]Database not found.[/yellow] Run [bold]playlistdb ingest[/bold] first.")
        raise typer.Exit(1)

    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row

    console.print(f"\n[bold]Database[/bold]  {path}")
    size_kb = path.stat().st_size / 1024
    console.print(f"[dim]Size: {size_kb:.1f} KB[/dim]\n")

    tables = [
        ("artists", "Artists"),
        ("albums", "Albums"),
        ("tracks", "Tracks"),
        ("playlists", "Playlists"),
        ("playlist_tracks", "Tracks in playlists"),
        ("audio_features", "Audio features"),
    ]

    try:
        for table, description in tables:
            try:
                cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")  # noqa: S608
            except sqlite3.OperationalError:
                console.print(f"  [red]{table:20s}[/red]  {'missing':>6}  [dim]{description}[/dim]")
                continue
            count = cur.fetchone()["cnt"]
            style = "green" if count > 0 else "dim"
            console.print(f"  [{style}]{table:20s}[/{style}]  {count:>6}  [dim]{description}[/dim]")
    finally:
        conn.close()

    console.print(f"\n[dim]Logs: {get_base_dir() / 'logs'}[/dim]\n")
