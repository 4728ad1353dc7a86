"""Tests for vault_sync.vault -- filesystem primitives and entry helpers.

Covers:
- walk(): ordering, skipped names, conflict backups, config folder
- write_local / create_folder_local / delete_local and their suppression
- Trash handling
- Path helpers in vault.entries
"""

import pytest

from vault_sync.sync.models import OperationKind
from vault_sync.vault.entries import (
    UnsafePathError,
    VaultFile,
    VaultFolder,
    base_name,
    depth,
    is_folder,
    is_safe_path,
    parent_path,
)
from vault_sync.vault.local import (
    LocalVault,
    conflict_backup_path,
    is_conflict_backup,
)


@pytest.mark.parametrize(
    ("path", "expected_depth", "expected_parent", "expected_name"),
    [
        ("a.md", 1, "", "a.md"),
        ("docs/a.md", 2, "docs", "a.md"),
        ("docs/sub/", 2, "docs", "sub"),
    ],
)
def test_path_helpers(path, expected_depth, expected_parent, expected_name):
    assert depth(path) == expected_depth
    assert parent_path(path) == expected_parent
    assert base_name(path) == expected_name


@pytest.mark.parametrize(
    ("path", "safe"),
    [
        ("a.md", True),
        ("docs/sub/a.md", True),
        ("..hidden/a.md", True),
        ("", False),
        ("../escaped.md", False),
        ("docs/../../x.md", False),
        ("/etc/passwd", False),
        ("docs//a.md", False),
        ("docs/./a.md", False),
    ],
)
def test_is_safe_path(path, safe):
    assert is_safe_path(path) is safe


@pytest.mark.parametrize("path", ["../x.md", "/etc/x.md", "", "a/./b"])
def test_path_of_refuses_paths_outside_vault(vault, vault_dir, path):
    with pytest.raises(UnsafePathError):
        vault.path_of(path)
    assert not (vault_dir.parent / "x.md").exists()


def test_is_folder():
    assert is_folder(VaultFolder("docs"))
    assert not is_folder(VaultFile("a.md", 0, 0))


def test_conflict_backup_names():
    backup = conflict_backup_path("docs/a.md", 1700000000000)
    assert backup == "docs/a.md.conflict-1700000000000.backup"
    assert is_conflict_backup(backup.rpartition("/")[2])
    assert not is_conflict_backup("a.backup")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestWalk:
    def test_parents_before_children(self, vault, write_file):
        write_file("b.md", b"b")
        write_file("docs/sub/c.md", b"c")
        write_file("docs/a.md", b"a")

        paths = [e.path for e in vault.walk()]

        assert paths.index("docs") < paths.index("docs/a.md")
        assert paths.index("docs/sub") < paths.index("docs/sub/c.md")
        assert set(paths) == {"b.md", "docs", "docs/a.md", "docs/sub", "docs/sub/c.md"}

    def test_skips_noise(self, vault, write_file):
        write_file(".git/HEAD")
        write_file(".trash/old.md")
        write_file("docs/.DS_Store")
        write_file("a.md.conflict-1.backup")
        write_file("a.md")

        assert [e.path for e in vault.walk()] == ["docs", "a.md"]

    def test_config_folder_optional(self, vault, write_file):
        write_file(".obsidian/app.json", b"{}")
        write_file("a.md")

        assert ".obsidian/app.json" not in [e.path for e in vault.walk()]
        with_config = [e.path for e in vault.walk(include_config=True)]
        assert ".obsidian" in with_config
        assert ".obsidian/app.json" in with_config

    def test_entry_details(self, vault, write_file):
        write_file("a.md", b"hello", mtime=1_700_000_000_123)
        entry = vault.get_entry("a.md")
        assert entry == VaultFile("a.md", 5, 1_700_000_000_123)
        assert vault.get_entry("missing.md") is None
        assert vault.get_entry("") == VaultFolder("")

    def test_list_children(self, vault, write_file):
        write_file("docs/b.md")
        write_file("docs/a.md")
        assert vault.list_children("docs") == ["docs/a.md", "docs/b.md"]
        assert vault.list_children("docs/a.md") == []


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    def test_write_creates_parents_without_queueing(self, vault, state):
        vault.write_local("new/deep/a.md", b"x", mtime=1_600_000_000_000)

        assert vault.read_bytes("new/deep/a.md") == b"x"
        assert vault.get_entry("new/deep/a.md").mtime == 1_600_000_000_000
        assert len(state.operations) == 0

    def test_write_keeps_existing_pending_op(self, vault, state, write_file):
        write_file("a.md", b"old")
        state.operations.set("a.md", OperationKind.MODIFY)
        vault.write_local("a.md", b"new")
        assert state.operations.get("a.md") is OperationKind.MODIFY

    def test_set_mtime(self, vault, write_file):
        write_file("a.md")
        vault.set_mtime("a.md", 1_650_000_000_000)
        assert vault.get_entry("a.md").mtime == 1_650_000_000_000

    def test_hard_delete_drops_pending_op(self, vault, state, write_file):
        write_file("docs/a.md")
        state.operations.set("docs", OperationKind.MODIFY)

        vault.delete_local("docs")

        assert not vault.exists("docs")
        assert "docs" not in state.operations

    def test_delete_missing_is_noop(self, vault):
        vault.delete_local("nothing.md")

    def test_trash_option(self, vault_dir, write_file):
        vault = LocalVault(vault_dir, trash_option="local")
        write_file("docs/a.md", b"1")
        vault.delete_local("docs/a.md")
        write_file("docs/a.md", b"2")
        vault.delete_local("docs/a.md")

        trashed = vault_dir / ".trash" / "docs" / "a.md"
        assert trashed.read_bytes() == b"2"
        assert not vault.exists("docs/a.md")

    def test_trash_override(self, vault, vault_dir, write_file):
        write_file("a.md")
        vault.delete_local("a.md", trash_option="local")
        assert (vault_dir / ".trash" / "a.md").exists()
