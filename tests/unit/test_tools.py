"""
Tests for agent tools: path confinement, queued destructive operations, and
file helpers
"""

import asyncio
import json

import pytest
from openpyxl import load_workbook

from triageq.actions.pending import PendingActionsQueue, PendingKind
from triageq.errors import PathNotAllowedError
from triageq.files.trash import TrashBin
from triageq.observability.signals import HostSignals
from triageq.router.tools import TOOL_DECLARATIONS, TOOL_NAMES, ToolExecutor


@pytest.fixture
def folder(tmp_path):
    granted = tmp_path / "granted"
    granted.mkdir()
    return granted


@pytest.fixture
def queue(tmp_path):
    return PendingActionsQueue(TrashBin(tmp_path / "trash"))


@pytest.fixture
def tools(folder, queue):
    return ToolExecutor([folder], queue, signals=HostSignals())


def _call(tools, name, **args):
    return asyncio.run(tools.execute(name, args))


class TestDispatch:
    def test_unknown_tool(self, tools):
        assert _call(tools, "format_disk") == {"error": "Unknown tool: format_disk"}

    def test_invalid_arguments(self, tools):
        result = _call(tools, "move_file", source_path="a.txt")
        assert result["error"].startswith("Invalid arguments for move_file")

    def test_declarations_match_executor(self, tools):
        assert TOOL_NAMES == {d["name"] for d in TOOL_DECLARATIONS}
        for name in TOOL_NAMES:
            assert callable(getattr(tools, f"_{name}"))


class TestPathConfinement:
    def test_path_outside_granted_folders(self, tools, tmp_path):
        outside = tmp_path / "secret.txt"
        outside.write_text("no")

        result = _call(tools, "read_file", path=str(outside))

        assert "outside the granted folders" in result["error"]

    def test_parent_traversal_is_refused(self, tools):
        with pytest.raises(PathNotAllowedError):
            tools.resolve("../secret.txt")

    def test_relative_paths_use_first_folder(self, tools, folder):
        assert tools.resolve("notes/today.md") == (folder / "notes" / "today.md").resolve()


class TestDestructiveTools:
    def test_delete_is_queued_not_performed(self, tools, folder, queue):
        target = folder / "old.zip"
        target.write_bytes(b"zip")

        result = _call(tools, "delete_file", path=str(target))

        assert result["queued"] is True
        assert target.exists()
        (action,) = queue.list()
        assert action.kind is PendingKind.DELETE
        assert action.reason == "Requested by AI assistant"

    def test_move_onto_existing_file_is_queued(self, tools, folder, queue):
        (folder / "a.txt").write_text("new")
        (folder / "Archive").mkdir()
        (folder / "Archive" / "a.txt").write_text("old")

        result = _call(tools, "move_file", source_path="a.txt", destination_path="Archive")

        assert result["queued"] is True
        assert (folder / "Archive" / "a.txt").read_text() == "old"
        assert queue.list()[0].kind is PendingKind.OVERWRITE

    def test_move_into_folder(self, tools, folder):
        (folder / "a.txt").write_text("a")
        (folder / "Archive").mkdir()
        seen = []
        tools.signals.subscribe(lambda s: seen.append(s.channel))

        result = _call(tools, "move_file", source_path="a.txt", destination_path="Archive")

        assert result["success"]
        assert (folder / "Archive" / "a.txt").exists()
        assert "fs:changed" in seen

    def test_move_into_own_folder_is_a_no_op(self, tools, folder, queue):
        (folder / "a.txt").write_text("keep me")
        seen = []
        tools.signals.subscribe(lambda s: seen.append(s.channel))

        result = _call(tools, "move_file", source_path="a.txt", destination_path=str(folder))

        assert result["unchanged"] is True
        assert (folder / "a.txt").read_text() == "keep me"
        assert queue.count() == 0
        assert "fs:changed" not in seen

    def test_rename_refuses_existing_name(self, tools, folder):
        (folder / "a.txt").write_text("a")
        (folder / "b.txt").write_text("b")

        result = _call(tools, "rename_file", path="a.txt", new_name="b.txt")

        assert "already exists" in result["error"]
        assert (folder / "a.txt").exists()

    def test_rename_rejects_paths_in_new_name(self, tools, folder):
        (folder / "a.txt").write_text("a")
        result = _call(tools, "rename_file", path="a.txt", new_name="../b.txt")
        assert result["error"].startswith("Invalid arguments")


class TestFileTools:
    def test_write_file_never_overwrites(self, tools, folder):
        (folder / "notes.md").write_text("original")

        result = _call(tools, "write_file", path="notes.md", content="second")

        assert result["path"].endswith("notes (1).md")
        assert (folder / "notes.md").read_text() == "original"

    def test_copy_file_suffixes(self, tools, folder):
        (folder / "a.txt").write_text("a")

        result = _call(tools, "copy_file", source_path="a.txt", destination_path="a.txt")

        assert result["destination"].endswith("a (1).txt")

    def test_list_directory_hides_dotfiles(self, tools, folder):
        (folder / ".hidden").write_text("x")
        (folder / "visible.txt").write_text("x")

        result = _call(tools, "list_directory", path=str(folder))

        assert [i["name"] for i in result["items"]] == ["visible.txt"]

    def test_read_binary_file(self, tools, folder):
        (folder / "blob.bin").write_bytes(b"\x00\x01\x02")
        assert "binary" in _call(tools, "read_file", path="blob.bin")["error"]

    def test_create_spreadsheet_accepts_json_strings(self, tools, folder):
        result = _call(
            tools,
            "create_spreadsheet",
            path="expenses",
            columns=json.dumps([{"header": "Vendor", "key": "vendor"}, {"header": "Total", "key": "total"}]),
            rows=json.dumps([{"vendor": "Acme", "total": 12.5}]),
        )

        assert result["success"]
        workbook = load_workbook(folder / "expenses.xlsx")
        values = list(workbook.active.iter_rows(values_only=True))
        assert values == [("Vendor", "Total"), ("Acme", 12.5)]

    def test_spreadsheet_is_readable_as_text(self, tools, folder):
        _call(
            tools,
            "create_spreadsheet",
            path="people.xlsx",
            columns=[{"header": "Name", "key": "name"}],
            rows=[{"name": "Ada"}],
        )

        result = _call(tools, "read_file", path="people.xlsx")

        assert "Ada" in result["content"]

    def test_analyze_storage(self, tools, folder):
        (folder / "movie.mp4").write_bytes(b"x" * 4096)
        (folder / "doc.pdf").write_bytes(b"x" * 1024)

        result = _call(tools, "analyze_storage", path=str(folder))

        assert result["data"]["total_files"] == 2
        assert result["data"]["by_category"][0]["category"] == "Videos"

    def test_analyze_image_without_client(self, tools, folder):
        (folder / "p.png").write_bytes(b"\x89PNG")
        assert _call(tools, "analyze_image", path="p.png")["error"] == "Image analysis is not available"

    def test_list_pending_actions(self, tools, folder):
        target = folder / "x.log"
        target.write_text("x" * 10)
        _call(tools, "delete_file", path="x.log")

        result = _call(tools, "list_pending_actions")

        assert result["count"] == 1
        assert result["actions"][0]["file_name"] == "x.log"


class TestToolFailures:
    """Library errors come back as results instead of escaping the loop"""

    def test_corrupt_workbook(self, tools, folder):
        (folder / "bad.xlsx").write_text("not really a workbook")

        result = _call(tools, "read_file", path="bad.xlsx")

        assert "error" in result

    def test_spreadsheet_with_nested_value(self, tools, folder):
        result = _call(
            tools,
            "create_spreadsheet",
            path="report.xlsx",
            columns=[{"key": "items", "header": "Items"}],
            rows=[{"items": {"nested": ["a", "b"]}}],
        )

        assert "error" in result

    def test_spreadsheet_with_invalid_sheet_name(self, tools, folder):
        result = _call(
            tools,
            "create_spreadsheet",
            path="report.xlsx",
            columns=[{"key": "a", "header": "A"}],
            rows=[{"a": 1}],
            sheet_name="Q1/Q2",
        )

        assert "error" in result
        assert not (folder / "report.xlsx").exists()
