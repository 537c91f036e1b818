"""Tests for the RemoteStorageClient against the fake device."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from pixelbridge.config import DeviceSettings
from pixelbridge.core.rate_limit import CancelToken
from pixelbridge.core.remote_storage import (
    RemoteStorageClient,
    critical_directories,
    dir_path,
    file_path,
    is_protected,
    upload_dir,
)
from pixelbridge.errors import (
    ProtectedPathError,
    RemoteNotFound,
    RemoteRejected,
    RemoteUnavailable,
)
from pixelbridge.models.remote_entry import RemoteEntry, SaveSubtree, is_directory_entry


class TestPathForms:
    @pytest.mark.parametrize("raw", ["downloads", "/downloads", "downloads/", "/downloads/", " downloads "])
    def test_dir_path(self, raw: str) -> None:
        assert dir_path(raw) == "/downloads/"
        assert upload_dir(raw) == "downloads/"

    def test_nested_paths(self) -> None:
        assert dir_path("saves/snes9x") == "/saves/snes9x/"
        assert upload_dir("/saves/snes9x/") == "saves/snes9x/"
        assert file_path("downloads/mario.sfc") == "/downloads/mario.sfc"
        assert file_path("/downloads/mario.sfc") == "/downloads/mario.sfc"

    def test_root(self) -> None:
        assert dir_path("/") == "/"
        assert dir_path("") == "/"

    def test_protected(self) -> None:
        assert is_protected("/downloads/")
        assert is_protected("Saves")
        assert is_protected("/")
        assert not is_protected("/downloads/mario.sfc")
        assert not is_protected("saves/snes9x")

    def test_critical_directories_follow_settings(self) -> None:
        settings = DeviceSettings(rom_directory="roms", playlist_directory="lists")
        assert critical_directories(settings) == ("roms", "lists", "saves", "states")


class TestDirectoryClassification:
    @pytest.mark.parametrize(
        "item",
        [
            {"name": "snes9x", "isDirectory": True},
            {"name": "snes9x", "is_directory": True},
            {"name": "snes9x", "dir": True},
            {"name": "snes9x", "type": "directory"},
            {"name": "snes9x", "type": "DIR"},
            {"name": "snes9x", "path": "/saves/snes9x/"},
            {"name": "snes9x/"},
        ],
    )
    def test_any_signal_marks_a_directory(self, item: dict) -> None:
        assert is_directory_entry(item)

    def test_plain_file(self) -> None:
        assert not is_directory_entry({"name": "mario.srm", "path": "/saves/snes9x/mario.srm", "size": 8})

    def test_explicit_false_does_not_override_other_signals(self) -> None:
        assert is_directory_entry({"name": "snes9x/", "isDirectory": False})

    def test_from_listing_strips_trailing_slash(self) -> None:
        entry = RemoteEntry.from_listing({"name": "snes9x/"}, SaveSubtree.SAVES)
        assert entry.name == "snes9x"
        assert entry.is_directory
        assert entry.source_subtree == SaveSubtree.SAVES

    def test_hidden_and_special(self) -> None:
        assert RemoteEntry(name=".DS_Store").is_hidden
        assert RemoteEntry(name="..").is_special
        assert not RemoteEntry(name="mario.sfc").is_hidden


class TestListDirectory:
    def test_lists_files_and_directories(self, client: RemoteStorageClient, device) -> None:
        for core in ("mgba", "nestopia", "snes9x"):
            device.add_dir(f"saves/{core}")
        device.add_file("saves/mario.srm", b"12345")

        entries = {e.name: e for e in client.list_directory("saves")}
        assert {n for n, e in entries.items() if e.is_directory} == {"mgba", "nestopia", "snes9x"}
        assert not entries["mario.srm"].is_directory
        assert entries["mario.srm"].size == 5

    def test_uses_leading_slash_form(self, client: RemoteStorageClient, device) -> None:
        client.list_directory("downloads")
        assert device.calls[-1] == ("GET", "/list", "/downloads/")

    def test_missing_directory(self, client: RemoteStorageClient) -> None:
        with pytest.raises(RemoteNotFound):
            client.list_directory("/nowhere/")

    def test_unreachable(self, client: RemoteStorageClient, device) -> None:
        device.unreachable.add("downloads")
        with pytest.raises(RemoteUnavailable):
            client.list_directory("downloads")

    def test_server_error_is_unavailable(self, client: RemoteStorageClient, device) -> None:
        device.failures[("/list", "downloads")] = 503
        with pytest.raises(RemoteUnavailable):
            client.list_directory("downloads")

    def test_other_status_is_rejected(self, client: RemoteStorageClient, device) -> None:
        device.failures[("/list", "downloads")] = 403
        with pytest.raises(RemoteRejected) as exc_info:
            client.list_directory("downloads")
        assert exc_info.value.status_code == 403

    def test_non_json_body_is_empty(self, settings: DeviceSettings) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        client = RemoteStorageClient(settings, transport=transport)
        assert client.list_directory("downloads") == []

    def test_list_playlists(self, client: RemoteStorageClient, device) -> None:
        device.add_file("playlists/Nintendo - Game Boy.lpl")
        device.add_file("playlists/notes.txt")
        assert client.list_playlists() == ["Nintendo - Game Boy.lpl"]


class TestCreateDirectory:
    def test_creates_missing_directory(self, client: RemoteStorageClient, device) -> None:
        assert client.create_directory("saves/snes9x") is True
        assert "saves/snes9x" in device.dirs
        assert device.calls[-1] == ("POST", "/create", "/saves/snes9x/")

    def test_twice_makes_no_duplicate(self, client: RemoteStorageClient, device) -> None:
        client.create_directory("saves/snes9x")
        assert client.create_directory("/saves/snes9x/") is False
        assert device.subdirs_of("saves") == ["snes9x"]
        assert device.count("/create") == 1

    def test_existing_directory_is_not_touched(self, client: RemoteStorageClient, device) -> None:
        assert client.create_directory("downloads") is False
        assert device.count("/create") == 0
        assert "downloads (1)" not in device.dirs

    def test_unreachable_listing_is_not_absence(self, client: RemoteStorageClient, device) -> None:
        device.unreachable.add("saves/snes9x")
        with pytest.raises(RemoteUnavailable):
            client.create_directory("saves/snes9x")
        assert device.count("/create") == 0

    def test_rejected_create(self, client: RemoteStorageClient, device) -> None:
        device.failures[("/create", "saves/snes9x")] = 403
        with pytest.raises(RemoteRejected):
            client.create_directory("saves/snes9x")


class TestDeleteFile:
    @pytest.mark.parametrize(
        "path",
        ["downloads", "/downloads/", "playlists", "/saves/", "states/", "/config/", "system", "/", ""],
    )
    def test_protected_paths_never_reach_the_device(
        self, client: RemoteStorageClient, device, path: str
    ) -> None:
        with pytest.raises(ProtectedPathError):
            client.delete_file(path)
        assert device.calls == []
        assert "downloads" in device.dirs

    def test_deletes_file(self, client: RemoteStorageClient, device) -> None:
        device.add_file("downloads/mario.sfc")
        device.add_file("downloads/zelda.sfc")
        client.delete_file("downloads/mario.sfc")
        assert device.names_in("downloads") == ["zelda.sfc"]
        assert device.calls[-1] == ("POST", "/delete", "/downloads/mario.sfc")

    def test_missing_file_is_rejected(self, client: RemoteStorageClient) -> None:
        with pytest.raises(RemoteRejected) as exc_info:
            client.delete_file("downloads/nothing.sfc")
        assert exc_info.value.status_code == 404


class TestTransfers:
    def test_upload_file(self, client: RemoteStorageClient, device, tmp_path: Path) -> None:
        rom = tmp_path / "mario.sfc"
        rom.write_bytes(b"rom bytes")
        client.upload_file(rom, "/downloads/")
        assert device.files["downloads/mario.sfc"] == b"rom bytes"
        method, endpoint, path = device.calls[-1]
        assert (method, endpoint, path) == ("POST", "/upload", "downloads/")

    def test_upload_file_with_other_name(self, client: RemoteStorageClient, device, tmp_path: Path) -> None:
        rom = tmp_path / "local-copy.sfc"
        rom.write_bytes(b"rom bytes")
        client.upload_file(rom, "downloads", filename="mario.sfc")
        assert device.names_in("downloads") == ["mario.sfc"]

    def test_upload_bytes(self, client: RemoteStorageClient, device) -> None:
        client.upload_bytes(b'{"version": "1.5"}', "playlists", "Nintendo - Game Boy.lpl", "application/json")
        assert device.files["playlists/Nintendo - Game Boy.lpl"] == b'{"version": "1.5"}'

    def test_upload_into_missing_directory_is_rejected(self, client: RemoteStorageClient) -> None:
        with pytest.raises(RemoteRejected) as exc_info:
            client.upload_bytes(b"x", "saves/snes9x", "mario.srm")
        assert exc_info.value.status_code == 500

    def test_download_file(self, client: RemoteStorageClient, device, tmp_path: Path) -> None:
        device.add_file("saves/snes9x/mario.srm", b"sram")
        target = tmp_path / "out" / "mario.srm"
        assert client.download_file("saves/snes9x/mario.srm", target) == target
        assert target.read_bytes() == b"sram"
        assert not (tmp_path / "out" / "mario.srm.part").exists()
        assert device.calls[-1] == ("GET", "/download", "/saves/snes9x/mario.srm")

    def test_download_missing_leaves_nothing_behind(
        self, client: RemoteStorageClient, tmp_path: Path
    ) -> None:
        target = tmp_path / "mario.srm"
        with pytest.raises(RemoteNotFound):
            client.download_file("saves/snes9x/mario.srm", target)
        assert list(tmp_path.iterdir()) == []


class TestClearDirectory:
    def test_clear_downloads_resurrects_directory(self, client: RemoteStorageClient, device) -> None:
        device.add_file("downloads/mario.sfc")
        device.add_file("downloads/zelda.sfc")

        result = client.clear_downloads()
        assert sorted(result.deleted) == ["mario.sfc", "zelda.sfc"]
        assert result.repaired
        assert result.errors == []
        assert "downloads" in device.dirs
        assert "downloads (1)" not in device.dirs
        assert client.list_directory("downloads") == []

    def test_base_directories_survive_clearing(self, client: RemoteStorageClient, device) -> None:
        device.add_file("downloads/mario.sfc")
        device.add_file("playlists/Nintendo - Super Nintendo Entertainment System.lpl")
        client.clear_downloads()
        client.clear_playlists()
        for directory in ("downloads", "playlists", "saves", "states"):
            client.list_directory(directory)

    def test_skips_hidden_files_and_directories(self, client: RemoteStorageClient, device) -> None:
        device.add_file("downloads/.hidden")
        device.add_file("downloads/mario.sfc")
        device.add_dir("downloads/extras")

        result = client.clear_downloads()
        assert result.deleted == ["mario.sfc"]
        assert sorted(result.skipped) == [".hidden", "extras"]
        assert "downloads/.hidden" in device.files

    def test_clear_playlists_keeps_other_files(self, client: RemoteStorageClient, device) -> None:
        device.add_file("playlists/Nintendo - Game Boy.lpl")
        device.add_file("playlists/readme.txt")
        result = client.clear_playlists()
        assert result.deleted == ["Nintendo - Game Boy.lpl"]
        assert result.skipped == ["readme.txt"]
        assert device.names_in("playlists") == ["readme.txt"]

    def test_missing_directory_is_created(self, client: RemoteStorageClient, device) -> None:
        device.dirs.discard("downloads")
        result = client.clear_downloads()
        assert result.deleted == []
        assert result.repaired
        assert "downloads" in device.dirs

    def test_unreachable_listing_is_collected(self, client: RemoteStorageClient, device) -> None:
        device.unreachable.add("downloads")
        result = client.clear_downloads()
        assert result.deleted == []
        assert not result.repaired
        assert any("Could not list" in e for e in result.errors)

    def test_failed_delete_is_collected(self, client: RemoteStorageClient, device) -> None:
        device.add_file("downloads/mario.sfc")
        device.add_file("downloads/zelda.sfc")
        device.failures[("/delete", "downloads/mario.sfc")] = 403

        result = client.clear_downloads()
        assert result.deleted == ["zelda.sfc"]
        assert result.failed == ["mario.sfc"]
        assert len(result.errors) == 1

    def test_cancel_stops_deleting_but_still_repairs(
        self, settings: DeviceSettings, device
    ) -> None:
        cancel = CancelToken()
        client = RemoteStorageClient(settings, cancel=cancel, transport=device.transport)
        device.add_file("downloads/a.sfc")
        device.add_file("downloads/b.sfc")
        device.on_delete = lambda path: cancel.cancel()

        result = client.clear_downloads()
        assert result.cancelled
        assert result.deleted == ["a.sfc"]
        assert result.repaired
        assert device.names_in("downloads") == ["b.sfc"]


class TestConnection:
    def test_online(self, client: RemoteStorageClient) -> None:
        status = client.check_connection()
        assert status.online
        assert status.url == "http://retroarch.test:80"

    def test_offline(self, client: RemoteStorageClient, device) -> None:
        device.offline = True
        status = client.check_connection()
        assert not status.online
        assert status.error
