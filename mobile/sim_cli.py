#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import typer
from aioconsole import ainput
from rich.console import Console
from rich.table import Table

from shared.log import configure_root_logging, get_logger
from shared.utils import token_preview
from .config import SimulatorConfig, load_config
from .errors import ConfigError, DebugQueryError, SessionStateError
from .registry import SessionRegistry
from .state import ActivityLog, Severity

app = typer.Typer(help="Aeroduel mobile simulator")
console = Console()
logger = get_logger(__name__)

_SEVERITY_STYLE = {
    Severity.INFO: "cyan",
    Severity.SUCCESS: "green",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}

ConfigOption = typer.Option(None, "--config", "-c", help="YAML config file (or AEROSIM_CONFIG)")
ServerOption = typer.Option(None, "--server", "-s", help="Server base URL (or AEROSIM_SERVER)")


def _load(config_path: Optional[Path], server: Optional[str]) -> SimulatorConfig:
    try:
        return load_config(config_path, server_url=server)
    except ConfigError as e:
        console.print(f"[red]Config error[/]: {e}")
        raise typer.Exit(code=2)


def sessions_table(registry: SessionRegistry) -> Table:
    table = Table(title="Mobiles")
    for column in ("Slot", "Player", "User ID", "Plane ID", "Status", "Channel", "Token", "Match", "Note"):
        table.add_column(column)
    for session in registry:
        rec = session.record
        note = rec.last_reason or rec.last_error or ""
        table.add_row(
            session.label,
            rec.display_name,
            rec.client_id,
            rec.entity_id,
            rec.membership.value,
            rec.channel.value,
            token_preview(rec.auth_token, 12),
            (rec.match_context.match_id or "-") if rec.match_context else "-",
            note,
        )
    return table


def activity_table(activity: ActivityLog) -> Table:
    table = Table(title="Activity Log")
    table.add_column("Time")
    table.add_column("Source")
    table.add_column("Message")
    for entry in activity.entries():
        style = _SEVERITY_STYLE.get(entry.severity, "")
        table.add_row(entry.timestamp.strftime("%H:%M:%S"), entry.source_label, f"[{style}]{entry.message}[/]")
    return table


async def _debug_query(registry: SessionRegistry, title: str, query: Callable[[], Awaitable[Any]]) -> None:
    try:
        data = await query()
    except DebugQueryError as e:
        registry.activity.add("Debug", f"Failed to fetch {title.lower()}: {e}", Severity.ERROR)
        console.print(f"[red]{title} failed[/]: {e}")
        return
    registry.activity.add("Debug", f"Fetched {title.lower()}", Severity.INFO)
    console.rule(title)
    console.print_json(json.dumps(data))


@app.command()
def join(
    slot: Optional[List[int]] = typer.Option(None, "--slot", "-n", help="Slot number(s) to join; all if omitted"),
    name: Optional[str] = typer.Option(None, help="Player name for the (single) selected slot"),
    watch: float = typer.Option(10.0, help="Seconds to keep channels open after joining; 0 = until Ctrl-C"),
    config_path: Optional[Path] = ConfigOption,
    server: Optional[str] = ServerOption,
):
    """Join the match with one or more simulated mobiles and watch their state."""
    config = _load(config_path, server)
    configure_root_logging()

    async def main_loop() -> None:
        registry = SessionRegistry.from_config(config)
        try:
            selected = [registry.by_slot(n) for n in slot] if slot else list(registry)
            if name is not None:
                if len(selected) != 1:
                    console.print("[red]--name needs exactly one --slot[/]")
                    return
                selected[0].rename(name)
            await asyncio.gather(*(s.start_join() for s in selected))
            console.print(sessions_table(registry))
            if watch > 0:
                await asyncio.sleep(watch)
            else:
                await asyncio.Event().wait()
        finally:
            console.print(sessions_table(registry))
            console.print(activity_table(registry.activity))
            await registry.aclose()

    try:
        asyncio.run(main_loop())
    except IndexError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(code=2)
    except KeyboardInterrupt:
        pass


@app.command()
def match(config_path: Optional[Path] = ConfigOption, server: Optional[str] = ServerOption):
    """Fetch and print the server's current match state."""
    config = _load(config_path, server)

    async def main_loop() -> None:
        registry = SessionRegistry.from_config(config)
        try:
            await _debug_query(registry, "Match State", registry.debug.fetch_match_state)
        finally:
            await registry.aclose()

    asyncio.run(main_loop())


@app.command()
def planes(config_path: Optional[Path] = ConfigOption, server: Optional[str] = ServerOption):
    """Fetch and print all planes and their scores."""
    config = _load(config_path, server)

    async def main_loop() -> None:
        registry = SessionRegistry.from_config(config)
        try:
            await _debug_query(registry, "Planes & Scores", registry.debug.fetch_planes)
        finally:
            await registry.aclose()

    asyncio.run(main_loop())


@app.command("config")
def show_config(config_path: Optional[Path] = ConfigOption, server: Optional[str] = ServerOption):
    """Print the effective configuration."""
    config = _load(config_path, server)
    console.print_json(json.dumps(config.to_dict()))


HELP_TEXT = "/join <n>, /name <n> <player name>, /status, /log, /match, /planes, /quit"


async def handle_command(registry: SessionRegistry, line: str, spawn: Callable[[Awaitable[Any]], None]) -> bool:
    """Run one interactive command. Returns False when the loop should stop."""
    line = line.strip()
    if not line:
        return True
    if line in {"/quit", "/exit"}:
        return False
    if line == "/help":
        console.print(HELP_TEXT)
    elif line == "/status":
        console.print(sessions_table(registry))
    elif line == "/log":
        console.print(activity_table(registry.activity))
    elif line == "/match":
        await _debug_query(registry, "Match State", registry.debug.fetch_match_state)
    elif line == "/planes":
        await _debug_query(registry, "Planes & Scores", registry.debug.fetch_planes)
    elif line.startswith("/join"):
        parts = line.split()
        try:
            targets = [registry.by_slot(int(parts[1]))] if len(parts) > 1 else list(registry)
        except (ValueError, IndexError) as e:
            console.print(f"Usage: /join [n] ({e})")
            return True
        for session in targets:
            spawn(session.start_join())
    elif line.startswith("/name"):
        try:
            _, n, new_name = line.split(None, 2)
            registry.by_slot(int(n)).rename(new_name.strip())
        except (ValueError, IndexError):
            console.print("Usage: /name <n> <player name>")
        except SessionStateError as e:
            console.print(f"[red]{e}[/]")
    else:
        console.print(f"Unknown command. {HELP_TEXT}")
    return True


async def cancel_pending(pending: set) -> None:
    """Cancel in-flight join tasks and wait for them to unwind."""
    tasks = list(pending)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


@app.command()
def run(config_path: Optional[Path] = ConfigOption, server: Optional[str] = ServerOption):
    """Interactive loop: join, rename and inspect the mobiles while channels stay live."""
    config = _load(config_path, server)
    configure_root_logging()
    console.print(f"[bold green]Aeroduel mobile simulator[/] against {config.server_url}")
    console.print(HELP_TEXT)

    async def main_loop() -> None:
        registry = SessionRegistry.from_config(config)
        # joins run as tasks so the prompt stays responsive
        pending: set = set()

        def spawn(coro: Awaitable[Any]) -> None:
            task = asyncio.ensure_future(coro)
            pending.add(task)
            task.add_done_callback(pending.discard)

        try:
            while await handle_command(registry, await ainput(": "), spawn):
                pass
        finally:
            await cancel_pending(pending)
            await registry.aclose()

    asyncio.run(main_loop())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
