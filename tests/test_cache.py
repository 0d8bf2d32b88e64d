import io
import tarfile

import pytest

from polyci.cache import MANIFEST_MEMBER, cache_key, hash_files, pack_paths, unpack_paths


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestCacheKey:

    def test_same_inputs_same_key(self):
        args = ("Linux", "rust", "1.74.0", "v1", "abc123")
        assert cache_key(*args) == cache_key(*args)
        assert cache_key(*args) == "Linux-rust-1.74.0-v1-abc123"

    def test_lock_hash_alone_changes_key(self):
        assert cache_key("Linux", "go", "1.21", "v1", "aaa") != cache_key("Linux", "go", "1.21", "v1", "bbb")

    def test_schema_version_invalidates(self):
        assert cache_key("Linux", "node", "20", "v1", "h") != cache_key("Linux", "node", "20", "v2", "h")

    def test_missing_tool_version(self):
        assert cache_key("macOS", "python", "", "v1", "h") == "macOS-python-any-v1-h"


class TestHashFiles:

    def test_deterministic_across_calls(self, tmp_path):
        _write(tmp_path / "smart-contracts" / "Cargo.lock", "serde = 1")
        _write(tmp_path / "tools" / "Cargo.lock", "anyhow = 1")
        d1, files1 = hash_files(tmp_path, ["**/Cargo.lock"])
        d2, files2 = hash_files(tmp_path, ["**/Cargo.lock"])
        assert d1 == d2
        assert [rel for rel, _ in files1] == ["smart-contracts/Cargo.lock", "tools/Cargo.lock"]
        assert files1 == files2

    def test_changed_lockfile_changes_digest(self, tmp_path):
        lock = _write(tmp_path / "backend" / "go.sum", "mod v1")
        before, _ = hash_files(tmp_path, ["**/go.sum"])
        lock.write_text("mod v2")
        after, _ = hash_files(tmp_path, ["**/go.sum"])
        assert before != after

    def test_root_level_lockfile_is_matched(self, tmp_path):
        _write(tmp_path / "package-lock.json", "{}")
        _, files = hash_files(tmp_path, ["**/package-lock.json"])
        assert [rel for rel, _ in files] == ["package-lock.json"]

    def test_vendored_dirs_are_excluded(self, tmp_path):
        _write(tmp_path / "frontend" / "yarn.lock", "a")
        _write(tmp_path / "frontend" / "node_modules" / "dep" / "yarn.lock", "b")
        _, files = hash_files(tmp_path, ["**/yarn.lock"])
        assert [rel for rel, _ in files] == ["frontend/yarn.lock"]

    def test_no_matches_is_stable(self, tmp_path):
        d1, files = hash_files(tmp_path, ["**/Cargo.lock"])
        d2, _ = hash_files(tmp_path, [])
        assert files == []
        assert d1 == d2


class TestPackPaths:

    def test_restores_dirs_and_files(self, tmp_path):
        src_dir = tmp_path / "src" / "registry"
        _write(src_dir / "index" / "a.txt", "A")
        _write(src_dir / "b.txt", "B")
        single = _write(tmp_path / "src" / "app", "binary")

        blob, count = pack_paths([src_dir, single, tmp_path / "missing"])
        assert count == 3

        dest_dir = tmp_path / "dest" / "registry"
        dest_file = tmp_path / "dest" / "app"
        written = unpack_paths(blob, [dest_dir, dest_file, tmp_path / "dest" / "missing"])
        assert written == 3
        assert (dest_dir / "index" / "a.txt").read_text() == "A"
        assert (dest_dir / "b.txt").read_text() == "B"
        assert dest_file.read_text() == "binary"
        assert not (tmp_path / "dest" / "missing").exists()

    def test_refuses_escaping_members(self, tmp_path):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for name, payload in ((MANIFEST_MEMBER, b'{"entries": [{"index": 0, "type": "dir"}]}'),
                                  ("0/../../evil.txt", b"x")):
                info = tarfile.TarInfo(name=name)
                info.size = len(payload)
                tar.addfile(info, fileobj=io.BytesIO(payload))

        with pytest.raises(ValueError):
            unpack_paths(buf.getvalue(), [tmp_path / "dest"])
        assert not (tmp_path.parent / "evil.txt").exists()

    def test_links_inside_a_dir_survive_and_escaping_links_are_dropped(self, tmp_path):
        _write(tmp_path / "outside.txt", "secret")
        deps = tmp_path / "deps"
        _write(deps / "lib" / "real.js", "code")
        (deps / "bin").mkdir()
        (deps / "bin" / "tool").symlink_to("../lib/real.js")
        (deps / "escape").symlink_to("../outside.txt")

        blob, count = pack_paths([deps])
        assert count == 2

        dest = tmp_path / "restored"
        assert unpack_paths(blob, [dest]) == 2
        assert (dest / "bin" / "tool").is_symlink()
        assert (dest / "bin" / "tool").read_text() == "code"
        assert not (dest / "escape").exists() and not (dest / "escape").is_symlink()

    def test_refuses_links_leaving_their_directory(self, tmp_path):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            payload = b'{"entries": [{"index": 0, "type": "dir"}]}'
            info = tarfile.TarInfo(name=MANIFEST_MEMBER)
            info.size = len(payload)
            tar.addfile(info, fileobj=io.BytesIO(payload))
            link = tarfile.TarInfo(name="0/passwd")
            link.type = tarfile.SYMTYPE
            link.linkname = "/etc/passwd"
            tar.addfile(link)

        with pytest.raises(ValueError):
            unpack_paths(buf.getvalue(), [tmp_path / "dest"])
        assert not (tmp_path / "dest" / "passwd").is_symlink()


class TestHashFilesLinks:

    def test_linked_lockfile_hashes_under_its_own_path(self, tmp_path):
        _write(tmp_path / "shared" / "Cargo.lock", "lock")
        repo = tmp_path / "repo"
        repo.mkdir()
        (repo / "Cargo.lock").symlink_to(tmp_path / "shared" / "Cargo.lock")

        _, files = hash_files(repo, ["**/Cargo.lock"])
        assert [rel for rel, _ in files] == ["Cargo.lock"]
