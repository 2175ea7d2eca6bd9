"""
Tests for keyed map storage and its read/write access handles.
"""

import os
import threading
import time

import pytest

from submap_server.common import constants
from submap_server.backend.errors import MapKeyCollisionError, MapLoadError, MapNotFoundError
from submap_server.backend.map_store import MapSaveConfig, MapStore, ReadWriteLock, read_map_folder

from conftest import make_vi_map


class TestLoadSave:
    def test_load_from_folder(self, submap_factory):
        store = MapStore()
        store.load_map_from_folder(submap_factory("m0", [0, 10, 20]), "a")
        assert store.has_map("a")
        with store.get_read_access("a") as vi_map:
            assert vi_map.get_mission("m0").num_vertices() == 3

    def test_missing_folder_raises(self, tmp_path):
        with pytest.raises(MapLoadError):
            MapStore().load_map_from_folder(str(tmp_path / "nope"), "a")

    def test_invalid_yaml_raises(self, tmp_path):
        folder = tmp_path / "broken"
        folder.mkdir()
        (folder / constants.MAP_FILE_NAME).write_text("missions: [{id: m0, vertices: [[1, 2]]}]\n")
        with pytest.raises(MapLoadError):
            MapStore().load_map_from_folder(str(folder), "a")

    def test_key_collision_raises(self, submap_factory):
        store = MapStore()
        path = submap_factory("m0", [0])
        store.load_map_from_folder(path, "a")
        with pytest.raises(MapKeyCollisionError):
            store.load_map_from_folder(path, "a")

    def test_save_and_reload(self, tmp_path):
        store = MapStore()
        store.add_map("a", make_vi_map("m0", [0, 5]))
        out = str(tmp_path / "out")
        assert store.save_map_to_folder("a", out, MapSaveConfig())
        assert read_map_folder(out).get_mission("m0").time_range_ns() == (0, 5)

    def test_save_without_overwrite_fails_on_existing(self, tmp_path):
        store = MapStore()
        store.add_map("a", make_vi_map("m0", [0]))
        out = str(tmp_path / "out")
        assert store.save_map_to_folder("a", out, MapSaveConfig())
        assert not store.save_map_to_folder("a", out, MapSaveConfig(overwrite_existing_map=False))
        assert os.path.isfile(os.path.join(out, constants.MAP_FILE_NAME))

    def test_save_missing_map_fails(self, tmp_path):
        assert not MapStore().save_map_to_folder("a", str(tmp_path / "out"), MapSaveConfig())


class TestKeyOperations:
    def test_rename(self):
        store = MapStore()
        store.add_map("a", make_vi_map("m0", [0]))
        store.rename_map("a", "b")
        assert not store.has_map("a")
        assert store.has_map("b")

    def test_rename_onto_existing_raises(self):
        store = MapStore()
        store.add_map("a", make_vi_map("m0", [0]))
        store.add_map("b", make_vi_map("m1", [0]))
        with pytest.raises(MapKeyCollisionError):
            store.rename_map("a", "b")

    def test_merge_and_delete(self):
        store = MapStore()
        store.add_map("base", make_vi_map("m0", [0, 1]))
        store.add_map("sub", make_vi_map("m0", [1, 2]))
        assert store.merge_submap_into_base_map("base", "sub")
        store.delete_map("sub")
        assert store.get_all_map_keys() == ["base"]
        with store.get_read_access("base") as vi_map:
            assert vi_map.get_mission("m0").time_range_ns() == (0, 2)

    def test_merge_missing_submap_returns_false(self):
        store = MapStore()
        store.add_map("base", make_vi_map("m0", [0]))
        assert not store.merge_submap_into_base_map("base", "missing")

    def test_access_to_missing_map_raises(self):
        with pytest.raises(MapNotFoundError):
            with MapStore().get_read_access("missing"):
                pass


class TestReadWriteLock:
    def test_readers_share(self):
        lock = ReadWriteLock()
        lock.acquire_read()
        acquired = threading.Event()

        def reader():
            with lock.read_locked():
                acquired.set()

        t = threading.Thread(target=reader)
        t.start()
        assert acquired.wait(1.0)
        t.join()
        lock.release_read()

    def test_writer_waits_for_reader(self):
        lock = ReadWriteLock()
        lock.acquire_read()
        acquired = threading.Event()

        def writer():
            with lock.write_locked():
                acquired.set()

        t = threading.Thread(target=writer)
        t.start()
        time.sleep(0.05)
        assert not acquired.is_set()
        lock.release_read()
        assert acquired.wait(1.0)
        t.join()

    def test_reader_blocked_during_merge(self):
        store = MapStore()
        store.add_map("a", make_vi_map("m0", [0]))
        observed = []

        with store.get_write_access("a") as vi_map:
            def reader():
                with store.get_read_access("a") as view:
                    observed.append(view.get_mission("m0").num_vertices())

            t = threading.Thread(target=reader)
            t.start()
            time.sleep(0.05)
            assert observed == []
            vi_map.merge(make_vi_map("m0", [1, 2]))
        t.join(1.0)
        assert observed == [3]
