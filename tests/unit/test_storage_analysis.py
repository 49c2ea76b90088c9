"""Tests for the storage analyzer."""

import os
import time

import pytest

from triageq.analysis.storage import analyze_storage, category_for


def _write(path, size, age_days=0):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    if age_days:
        stamp = time.time() - age_days * 86400
        os.utime(path, (stamp, stamp))
    return path


class TestCategoryFor:
    @pytest.mark.parametrize(
        ("name", "category"),
        [
            ("clip.MOV", "Videos"),
            ("photo.heic", "Images"),
            ("backup.tar", "Archives"),
            ("budget.xlsx", "Spreadsheets"),
            ("setup.dmg", "Executables"),
            ("README", "Other"),
        ],
    )
    def test_extensions(self, name, category):
        assert category_for(name) == category


class TestAnalyzeStorage:
    def test_totals_and_categories(self, tmp_path):
        _write(tmp_path / "a.mp4", 3000)
        _write(tmp_path / "b.pdf", 1000)
        _write(tmp_path / "docs" / "c.pdf", 1000)

        analysis = analyze_storage(tmp_path)

        assert analysis.total_files == 3
        assert analysis.total_size == 5000
        assert [c.category for c in analysis.by_category] == ["Videos", "Documents"]
        assert analysis.by_category[0].percentage == pytest.approx(60.0)
        assert analysis.largest_files[0].name == "a.mp4"

    def test_hidden_and_system_entries_are_skipped(self, tmp_path):
        _write(tmp_path / ".git" / "objects" / "blob", 500)
        _write(tmp_path / "node_modules" / "pkg" / "index.js", 500)
        _write(tmp_path / ".env", 10)
        _write(tmp_path / "keep.txt", 10)

        analysis = analyze_storage(tmp_path)

        assert [f.name for f in analysis.largest_files] == ["keep.txt"]

    def test_depth_limit(self, tmp_path):
        _write(tmp_path / "top.txt", 1)
        _write(tmp_path / "l1" / "l2" / "deep.txt", 1)

        shallow = analyze_storage(tmp_path, max_depth=1)
        deep = analyze_storage(tmp_path, max_depth=2)

        assert shallow.total_files == 1
        assert deep.total_files == 2

    def test_old_files(self, tmp_path):
        _write(tmp_path / "ancient.zip", 100, age_days=400)
        _write(tmp_path / "fresh.zip", 100)

        analysis = analyze_storage(tmp_path)

        assert [f.name for f in analysis.old_files] == ["ancient.zip"]
        assert analysis.old_files_size == 100
        assert analysis.old_files[0].age_days >= 399

    def test_dominant_category_suggestion(self, tmp_path):
        _write(tmp_path / "movie.mkv", 9000)
        _write(tmp_path / "note.txt", 100)

        analysis = analyze_storage(tmp_path)

        assert any("Videos" in s for s in analysis.suggestions)
        assert "Suggestions:" in analysis.summary()

    def test_not_a_directory(self, tmp_path):
        target = _write(tmp_path / "file.txt", 1)
        with pytest.raises(NotADirectoryError):
            analyze_storage(target)
