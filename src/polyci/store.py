# store.py
from __future__ import annotations

import json
import os
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

SECONDS_PER_DAY = 24 * 60 * 60

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_name(name: str) -> str:
    """Filesystem-safe form of a namespace/key ("test-python (3.10)" -> "test-python_3.10_")."""
    cleaned = _UNSAFE.sub("_", name).strip(".")
    return cleaned or "_"


class BlobStore:
    """
    File-based keyed blob store:
      root/
        <namespace>/
          <key>.blob

    Lookups that miss return None (never an error). Writes go to a temp
    file first and are renamed into place, so concurrent readers only ever
    see complete blobs.
    """

    suffix = ".blob"

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _ns_dir(self, namespace: str) -> Path:
        return self.root / safe_name(namespace)

    def path_for(self, namespace: str, key: str) -> Path:
        return self._ns_dir(namespace) / f"{safe_name(key)}{self.suffix}"

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        p = self.path_for(namespace, key)
        try:
            return p.read_bytes()
        except FileNotFoundError:
            return None

    def exists(self, namespace: str, key: str) -> bool:
        return self.path_for(namespace, key).is_file()

    def put(self, namespace: str, key: str, blob: bytes) -> Path:
        p = self.path_for(namespace, key)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(f"{p.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            tmp.write_bytes(blob)
            os.replace(tmp, p)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)
        return p

    def delete(self, namespace: str, key: str) -> None:
        self.path_for(namespace, key).unlink(missing_ok=True)

    def namespaces(self) -> List[str]:
        return sorted(d.name for d in self.root.iterdir() if d.is_dir())

    def keys(self, namespace: str) -> List[str]:
        d = self._ns_dir(namespace)
        if not d.is_dir():
            return []
        return sorted(p.name[: -len(self.suffix)] for p in d.glob(f"*{self.suffix}"))

    def purge(self, retention_days: int, *, now: Optional[float] = None) -> List[Path]:
        """Delete entries whose mtime is older than the retention window."""
        now = time.time() if now is None else now
        cutoff = now - retention_days * SECONDS_PER_DAY
        removed: List[Path] = []
        for ns in self.root.iterdir():
            if not ns.is_dir():
                continue
            for p in ns.iterdir():
                if p.is_file() and p.stat().st_mtime < cutoff:
                    p.unlink(missing_ok=True)
                    removed.append(p)
            if not any(ns.iterdir()):
                ns.rmdir()
        return removed


class CacheStore(BlobStore):
    """
    Dependency cache, namespaced per job class (toolchain: rust, python, ...).

    At most one writer per (namespace, key) per run: the first job to
    reserve a key saves it, later writers skip.
    """

    suffix = ".tar.gz"

    def __init__(self, root: str | Path):
        super().__init__(root)
        self._lock = threading.Lock()
        self._reserved: Set[Tuple[str, str]] = set()

    def reserve(self, namespace: str, key: str) -> bool:
        with self._lock:
            if (namespace, key) in self._reserved:
                return False
            self._reserved.add((namespace, key))
            return True


@dataclass(frozen=True)
class ArtifactInfo:
    job: str
    name: str
    files: int
    size: int
    retention_days: int
    created_at: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.retention_days * SECONDS_PER_DAY

    def to_dict(self) -> Dict:
        return {
            "job": self.job,
            "name": self.name,
            "files": self.files,
            "size": self.size,
            "retention_days": self.retention_days,
            "created_at": self.created_at,
        }


class ArtifactStore(BlobStore):
    """
    Build outputs (logs, coverage, binaries, bundles), namespaced per job:
      root/<job>/<artifact>.tar.gz
      root/<job>/<artifact>.manifest.json
    Each artifact carries its own retention window.
    """

    suffix = ".tar.gz"

    def manifest_path(self, job: str, name: str) -> Path:
        return self._ns_dir(job) / f"{safe_name(name)}.manifest.json"

    def save(self, job: str, name: str, blob: bytes, *, files: int, retention_days: int) -> ArtifactInfo:
        self.put(job, name, blob)
        info = ArtifactInfo(
            job=job,
            name=name,
            files=files,
            size=len(blob),
            retention_days=retention_days,
            created_at=time.time(),
        )
        self.manifest_path(job, name).write_text(
            json.dumps(info.to_dict(), sort_keys=True, indent=2), encoding="utf-8"
        )
        return info

    def info(self, job: str, name: str) -> Optional[ArtifactInfo]:
        try:
            data = json.loads(self.manifest_path(job, name).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        return ArtifactInfo(**data)

    def purge_expired(self, *, now: Optional[float] = None) -> List[Path]:
        """Delete artifacts past their own retention window."""
        now = time.time() if now is None else now
        removed: List[Path] = []
        for man in sorted(self.root.glob("*/*.manifest.json")):
            try:
                data = json.loads(man.read_text(encoding="utf-8"))
                expires = float(data["created_at"]) + int(data["retention_days"]) * SECONDS_PER_DAY
            except (ValueError, KeyError):
                continue
            if expires < now:
                blob = man.with_name(man.name.replace(".manifest.json", self.suffix))
                blob.unlink(missing_ok=True)
                man.unlink(missing_ok=True)
                removed.append(blob)
        return removed
