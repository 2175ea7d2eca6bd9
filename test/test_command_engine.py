"""
Tests for command parsing and running commands through a map console.
"""

import pytest

from submap_server.backend.command_engine import CommandEngine, CommandStatus, parse_command
from submap_server.backend.map_store import MapStore
from submap_server.backend.vi_map import Vertex

from conftest import make_vi_map


@pytest.fixture
def engine():
    store = MapStore()
    store.add_map("a", make_vi_map("m0", [0, 1, 2]))
    return CommandEngine(store)


class TestParseCommand:
    def test_name_only(self):
        assert parse_command("map_stats") == ("map_stats", {})

    def test_flags(self):
        assert parse_command("cmd --a=1 --verbose") == ("cmd", {"a": "1", "verbose": "true"})

    @pytest.mark.parametrize("command", ["", "cmd positional", "cmd --"])
    def test_invalid(self, command):
        with pytest.raises(ValueError):
            parse_command(command)


class TestMapConsole:
    def test_builtins_registered(self, engine):
        assert engine.command_names() == ["check_consistency", "map_stats", "sort_vertices"]

    def test_success(self, engine):
        assert engine.console("c", "a").run_command("map_stats") is CommandStatus.SUCCESS

    def test_unknown_command(self, engine, caplog):
        assert engine.console("c", "a").run_command("nope") is CommandStatus.UNKNOWN_COMMAND
        assert "available: check_consistency, map_stats, sort_vertices" in caplog.text

    def test_unparsable_command(self, engine):
        assert engine.console("c", "a").run_command("map_stats oops") is CommandStatus.UNKNOWN_COMMAND

    def test_no_map_selected(self, engine):
        assert engine.console("c").run_command("map_stats") is CommandStatus.FAILURE

    def test_missing_map(self, engine):
        assert engine.console("c", "missing").run_command("map_stats") is CommandStatus.FAILURE

    def test_raising_command_is_failure(self, engine):
        def boom(vi_map, flags):
            raise RuntimeError("boom")

        engine.register("boom", boom)
        assert engine.console("c", "a").run_command("boom") is CommandStatus.FAILURE

    def test_flags_are_passed(self, engine):
        seen = {}

        def record(vi_map, flags):
            seen.update(flags)
            return True

        engine.register("record", record)
        engine.console("c", "a").run_command("record --x=3")
        assert seen == {"x": "3"}

    def test_sort_vertices(self, engine):
        with engine.map_store.get_write_access("a") as vi_map:
            mission = vi_map.get_mission("m0")
            mission.vertices.append(Vertex(1, mission.vertices[1].T_M_B))
        assert engine.console("c", "a").run_command("check_consistency") is CommandStatus.FAILURE
        assert engine.console("c", "a").run_command("sort_vertices") is CommandStatus.SUCCESS
        assert engine.console("c", "a").run_command("check_consistency") is CommandStatus.SUCCESS

    def test_require_known_alignment(self, engine):
        console = engine.console("c", "a")
        assert console.run_command("check_consistency") is CommandStatus.SUCCESS
        assert (
            console.run_command("check_consistency --require_known_alignment")
            is CommandStatus.FAILURE
        )
