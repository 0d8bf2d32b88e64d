# cache.py
from __future__ import annotations

import hashlib
import io
import json
import os
import tarfile
import time
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Dependency caching per toolchain:
#   cache_key = "{platform}-{namespace}-{tool_version}-{schema_version}-{lock_hash}"
#
#   lock_hash = sha256 over the sorted (relpath, content digest) pairs of
#               every file matched by the lock-file globs
#               (e.g. "**/Cargo.lock", "**/requirements.txt")
#
# Cache blob:
#   a tar.gz of the declared paths (dirs or files, "~" allowed), with a
#   manifest member mapping archive prefixes back to destinations.
#
# Storage lives in store.py; this module only derives keys and packs blobs.
# ---------------------------------------------------------------------


DEFAULT_HASH_EXCLUDES = [
    ".git/**",
    ".polyci/**",
    "**/node_modules/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]

MANIFEST_MEMBER = ".polyci_manifest.json"


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    # lexical: a symlink under root keeps its own path, not its target's
    return str(p.relative_to(root)).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal; symlinks are yielded as entries, never followed
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath)
        entries = list(filenames) + [d for d in dirnames if (base / d).is_symlink()]
        for name in sorted(entries):
            p = base / name
            if p.is_symlink() or p.is_file():
                yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    # fnmatch's "*" crosses "/", so "**/x/**" behaves like a path glob;
    # a leading "**/" may also match zero directories.
    for g in globs:
        if fnmatch(rel, g):
            return True
        if g.startswith("**/") and fnmatch(rel, g[3:]):
            return True
    return False


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(root: Path, patterns: Sequence[str]) -> List[Path]:
    """
    Expand lock-file patterns into concrete files.
    Supports:
      - file path: "Cargo.lock"
      - glob:      "**/go.sum", "frontend/*.lock"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if pat.startswith("./"):
            pat = pat[2:]
        if not pat:
            continue
        p = root / pat
        if p.is_file():
            out.append(p)
            continue
        out.extend(m for m in sorted(root.glob(pat)) if m.is_file())

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def hash_files(
    root: str | Path,
    patterns: Sequence[str],
    *,
    excludes: Optional[List[str]] = None,
) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Hash every file matched by `patterns` under `root`.

    Returns (digest, [(relpath, file_digest), ...]). The digest depends on
    relative paths and contents only, never on traversal order or mtimes.
    """
    root_p = Path(root).resolve()
    exclude_globs = list(DEFAULT_HASH_EXCLUDES) + list(excludes or [])

    fps: List[Tuple[str, str]] = []
    for p in _resolve_globs(root_p, patterns):
        rel = _relpath(p, root_p)
        if _matches_any_glob(rel, exclude_globs):
            continue
        fps.append((rel, _hash_file_contents(p)))

    fps.sort(key=lambda t: t[0])  # stable ordering by relpath
    return _sha256_str(_json_dumps_stable({"files": fps})), fps


def cache_key(
    platform: str,
    namespace: str,
    tool_version: str,
    schema_version: str,
    lock_hash: str,
) -> str:
    """
    Deterministic cache key. Same inputs -> same key; any changed part
    (notably the lock-file hash) -> a different key.
    """
    parts = [platform, namespace, tool_version or "any", schema_version, lock_hash]
    return "-".join(str(p).strip().replace("/", "_") for p in parts)


def _link_stays_inside(rel: PurePosixPath, target: str) -> bool:
    """True if a link at `rel` pointing to relative `target` stays under the packed root."""
    t = PurePosixPath(target)
    if t.is_absolute():
        return False
    depth = len(rel.parts) - 1
    for part in t.parts:
        if part == "..":
            depth -= 1
            if depth < 0:
                return False
        elif part != ".":
            depth += 1
    return True


# ---------------------------------------------------------------------
# Packing paths into blobs
# ---------------------------------------------------------------------

def pack_paths(paths: Sequence[Path], *, excludes: Optional[List[str]] = None) -> Tuple[bytes, int]:
    """
    Pack files/dirs into an in-memory tar.gz.

    Entry i is stored under the archive prefix "i/". Symlinks inside a
    directory are kept as links when they point inside it and skipped
    otherwise. Returns (blob, file_count).
    """
    exclude_globs = list(excludes or [])
    manifest: List[Dict] = []
    count = 0
    buf = io.BytesIO()

    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for i, src in enumerate(paths):
            if not src.exists():
                manifest.append({"index": i, "path": str(src), "type": "missing"})
                continue

            if src.is_file():
                manifest.append({"index": i, "path": str(src), "type": "file"})
                tar.add(str(src.resolve()), arcname=f"{i}/{src.name}", recursive=False)
                count += 1
                continue

            manifest.append({"index": i, "path": str(src), "type": "dir"})
            for f in _iter_files_under(src):
                rel = _relpath(f, src)
                if exclude_globs and _matches_any_glob(rel, exclude_globs):
                    continue
                if f.is_symlink() and not _link_stays_inside(PurePosixPath(rel), os.readlink(f)):
                    continue
                tar.add(str(f), arcname=f"{i}/{rel}", recursive=False)
                count += 1

        payload = json.dumps({"entries": manifest}, sort_keys=True).encode("utf-8")
        info = tarfile.TarInfo(name=MANIFEST_MEMBER)
        info.size = len(payload)
        info.mtime = int(time.time())
        tar.addfile(info, fileobj=io.BytesIO(payload))

    return buf.getvalue(), count


def unpack_paths(blob: bytes, paths: Sequence[Path]) -> int:
    """
    Restore a blob produced by pack_paths onto `paths` (same order).

    Members that would escape their destination are refused.
    Returns the number of files written.
    """
    written = 0
    with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
        manifest_member = tar.getmember(MANIFEST_MEMBER)
        manifest = json.loads(tar.extractfile(manifest_member).read().decode("utf-8"))
        kinds = {e["index"]: e["type"] for e in manifest.get("entries", [])}

        for member in tar.getmembers():
            if member.name == MANIFEST_MEMBER or not (member.isfile() or member.issym()):
                continue

            index_s, _, rest = member.name.partition("/")
            index = int(index_s)
            if index >= len(paths) or not rest:
                continue

            rest_p = PurePosixPath(rest)
            if rest_p.is_absolute() or ".." in rest_p.parts:
                raise ValueError(f"refusing to extract unsafe archive member: {member.name}")

            dest = paths[index] if kinds.get(index) == "file" else paths[index].joinpath(*rest_p.parts)
            dest.parent.mkdir(parents=True, exist_ok=True)
            if member.issym():
                if kinds.get(index) != "dir" or not _link_stays_inside(rest_p, member.linkname):
                    raise ValueError(f"refusing to extract link leaving its directory: {member.name}")
                if dest.is_symlink() or dest.exists():
                    dest.unlink()
                os.symlink(member.linkname, dest)
                written += 1
                continue

            src = tar.extractfile(member)
            dest.write_bytes(src.read())
            written += 1

    return written
