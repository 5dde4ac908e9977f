"""
Tests for repository file collection and path filtering.
"""

import os

import pytest

from engine.file_filter import collect_file_data, is_blacklisted, is_whitelisted
from engine.types import ArchetypeSettings


def _settings(blacklist=(), whitelist=(r".*",)):
    return ArchetypeSettings.from_dict({
        "blacklistPatterns": list(blacklist),
        "whitelistPatterns": list(whitelist),
    })


def _write(root, relative, content="x"):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


class TestPatterns:
    """Patterns see the repository-relative path with a leading slash."""

    def test_checkout_location_does_not_affect_matching(self, tmp_path):
        repo = tmp_path / "build" / "repo"
        path = _write(repo, "src/index.ts")
        assert not is_blacklisted(str(path), str(repo), [r"/build/"])
        assert is_blacklisted(str(path), str(repo), [r"^/src/"])
        assert is_whitelisted(str(path), str(repo), [r"^/src/index\.ts$"])

    def test_paths_outside_repository(self, tmp_path, caplog):
        repo = tmp_path / "repo"
        repo.mkdir()
        outside = str(repo / ".." / "secrets.txt")
        assert is_blacklisted(outside, str(repo), [])
        assert not is_whitelisted(outside, str(repo), [r".*"])
        assert "path traversal" in caplog.text


class TestCollect:
    def test_whitelist_and_blacklist(self, tmp_path):
        _write(tmp_path, "src/app.ts")
        _write(tmp_path, "src/app.test.ts")
        _write(tmp_path, "docs/notes.txt")
        _write(tmp_path, "dist/bundle.ts")
        settings = _settings(blacklist=[r"^/dist/", r"\.test\.ts$"], whitelist=[r"\.ts$"])
        files = collect_file_data(str(tmp_path), settings)
        assert [f.relative_path for f in files] == [os.path.join("src", "app.ts")]
        assert files[0].content == "x"
        assert files[0].file_name == "app.ts"

    def test_excluded_directories_are_pruned(self, tmp_path):
        _write(tmp_path, "node_modules/lib/index.js")
        _write(tmp_path, ".git/config")
        _write(tmp_path, "index.js")
        files = collect_file_data(str(tmp_path), _settings())
        assert [f.file_name for f in files] == ["index.js"]

    def test_large_files_are_skipped(self, tmp_path, monkeypatch):
        monkeypatch.setattr("engine.file_filter.MAX_FILE_BYTES", 4)
        _write(tmp_path, "small.js", "abc")
        _write(tmp_path, "large.js", "abcdefgh")
        files = collect_file_data(str(tmp_path), _settings())
        assert [f.file_name for f in files] == ["small.js"]

    def test_empty_whitelist_collects_nothing(self, tmp_path):
        _write(tmp_path, "a.js")
        assert collect_file_data(str(tmp_path), _settings(whitelist=())) == []


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
class TestSymlinks:
    """Links are followed only while they stay inside the repository."""

    def test_link_outside_repository_is_skipped(self, tmp_path, caplog):
        repo = tmp_path / "repo"
        secret = _write(tmp_path, "outside/secret.js")
        _write(repo, "inside.js")
        os.symlink(secret, repo / "linked.js")
        files = collect_file_data(str(repo), _settings())
        assert [f.file_name for f in files] == ["inside.js"]
        assert "resolves outside the repository" in caplog.text

    def test_directory_cycle_is_visited_once(self, tmp_path):
        repo = tmp_path / "repo"
        _write(repo, "pkg/mod.js")
        os.symlink(repo / "pkg", repo / "pkg" / "loop")
        files = collect_file_data(str(repo), _settings())
        assert [f.file_name for f in files] == ["mod.js"]
