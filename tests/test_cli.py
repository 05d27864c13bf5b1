import asyncio
import json

import pytest
from rich.console import Console
from typer.testing import CliRunner

from conftest import make_session
from mobile.registry import SessionRegistry
from mobile import sim_cli
from mobile.sim_cli import activity_table, app, cancel_pending, handle_command, sessions_table
from mobile.state import Severity

runner = CliRunner()


def test_config_command_prints_effective_config(tmp_path, monkeypatch):
    monkeypatch.delenv("AEROSIM_CONFIG", raising=False)
    monkeypatch.delenv("AEROSIM_SERVER", raising=False)

    result = runner.invoke(app, ["config", "--server", "http://127.0.0.1:45045"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["server_url"] == "http://127.0.0.1:45045"
    assert [s["client_id"] for s in data["slots"]] == ["sim-user-001", "sim-user-002"]


def test_bad_config_exits_with_code_2(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("slots: []\n")

    result = runner.invoke(app, ["config", "--config", str(bad)])

    assert result.exit_code == 2
    assert "Config error" in result.stdout


def test_tables_render_sessions_and_activity(join_server, connector):
    registry = SessionRegistry()
    session = registry.register(make_session(join_server, connector, label="Mobile 1", activity=registry.activity))
    registry.activity.add("Mobile 1", "Join failed: Match full", Severity.ERROR)

    console = Console(record=True, width=200)
    console.print(sessions_table(registry))
    console.print(activity_table(registry.activity))
    text = console.export_text()

    assert "Mobile 1" in text
    assert session.record.entity_id in text
    assert "Not Joined" in text
    assert "Join failed: Match full" in text


@pytest.fixture
def recorded(monkeypatch):
    console = Console(record=True, width=200)
    monkeypatch.setattr(sim_cli, "console", console)
    return console


@pytest.mark.asyncio
async def test_name_command_renames_or_prints_usage(join_server, connector, recorded):
    registry = SessionRegistry()
    session = registry.register(make_session(join_server, connector, label="Mobile 1", activity=registry.activity))

    assert await handle_command(registry, "/name 1 Ace Pilot", lambda coro: None) is True
    assert session.record.display_name == "Ace Pilot"

    for line in ("/name", "/name 1", "/name x Ace"):
        assert await handle_command(registry, line, lambda coro: None) is True
    text = recorded.export_text()
    assert text.count("Usage: /name <n> <player name>") == 3
    assert "Unknown command" not in text
    await registry.aclose()


@pytest.mark.asyncio
async def test_join_command_spawns_and_quit_stops(join_server, connector, recorded):
    registry = SessionRegistry()
    registry.register(make_session(join_server, connector, label="Mobile 1", activity=registry.activity))
    spawned = []

    def spawn(coro):
        spawned.append(coro)
        coro.close()

    assert await handle_command(registry, "/join 1", spawn) is True
    assert await handle_command(registry, "/join 9", spawn) is True
    assert len(spawned) == 1
    assert "Usage: /join [n]" in recorded.export_text()
    assert await handle_command(registry, "  /quit ", spawn) is False
    await registry.aclose()


@pytest.mark.asyncio
async def test_cancel_pending_waits_for_tasks_to_unwind():
    unwound = []

    async def stuck_join():
        try:
            await asyncio.Event().wait()
        finally:
            unwound.append(True)

    tasks = {asyncio.ensure_future(stuck_join()) for _ in range(2)}
    await asyncio.sleep(0)

    await cancel_pending(tasks)

    assert unwound == [True, True]
    assert all(t.cancelled() for t in tasks)
    await cancel_pending(set())
