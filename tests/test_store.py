import os
import threading
import time

from polyci.model import JobStatus
from polyci.results import ResultStore, RunResult, StepResult
from polyci.store import SECONDS_PER_DAY, ArtifactStore, BlobStore, CacheStore, safe_name


def _age(path, days):
    t = time.time() - days * SECONDS_PER_DAY
    os.utime(path, (t, t))


class TestBlobStore:

    def setup_method(self):
        self.now = time.time()

    def test_miss_returns_none(self, tmp_path):
        store = BlobStore(tmp_path / "blobs")
        assert store.get("rust", "Linux-rust-1.74.0-v1-abc") is None
        assert not store.exists("rust", "Linux-rust-1.74.0-v1-abc")

    def test_put_then_get(self, tmp_path):
        store = BlobStore(tmp_path / "blobs")
        store.put("rust", "key-1", b"payload")
        assert store.get("rust", "key-1") == b"payload"
        assert store.keys("rust") == ["key-1"]
        assert store.namespaces() == ["rust"]

    def test_put_replaces_atomically_and_leaves_no_temp_files(self, tmp_path):
        store = BlobStore(tmp_path / "blobs")
        store.put("go", "k", b"old")
        store.put("go", "k", b"new")
        assert store.get("go", "k") == b"new"
        assert [p.name for p in (tmp_path / "blobs" / "go").iterdir()] == ["k.blob"]

    def test_purge_removes_only_expired_entries(self, tmp_path):
        store = BlobStore(tmp_path / "blobs")
        old = store.put("node", "old", b"1")
        store.put("node", "fresh", b"2")
        _age(old, 8)

        removed = store.purge(7)
        assert removed == [old]
        assert store.keys("node") == ["fresh"]

    def test_purge_drops_empty_namespaces(self, tmp_path):
        store = BlobStore(tmp_path / "blobs")
        _age(store.put("python", "k", b"1"), 30)
        store.purge(7)
        assert store.namespaces() == []

    def test_safe_name(self):
        assert safe_name("test-python (3.10)") == "test-python_3.10_"
        assert "/" not in safe_name("../../etc/passwd")


class TestCacheStore:

    def test_single_writer_per_key(self, tmp_path):
        store = CacheStore(tmp_path / "cache")
        assert store.reserve("python", "k")
        assert not store.reserve("python", "k")
        assert store.reserve("python", "other")
        assert store.reserve("go", "k")

    def test_concurrent_reservations_admit_one_writer(self, tmp_path):
        store = CacheStore(tmp_path / "cache")
        winners = []
        lock = threading.Lock()

        def _try():
            if store.reserve("rust", "same-key"):
                with lock:
                    winners.append(threading.get_ident())

        threads = [threading.Thread(target=_try) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(winners) == 1

    def test_blob_suffix(self, tmp_path):
        store = CacheStore(tmp_path / "cache")
        assert store.put("rust", "k", b"x").name == "k.tar.gz"


class TestArtifactStore:

    def test_save_writes_manifest(self, tmp_path):
        store = ArtifactStore(tmp_path / "artifacts")
        info = store.save("test-go", "go-app", b"binary", files=1, retention_days=7)
        assert store.get("test-go", "go-app") == b"binary"
        loaded = store.info("test-go", "go-app")
        assert loaded == info
        assert loaded.expires_at == info.created_at + 7 * SECONDS_PER_DAY

    def test_purge_expired_honours_each_retention(self, tmp_path):
        store = ArtifactStore(tmp_path / "artifacts")
        store.save("test-rust", "rust-test-logs", b"logs", files=2, retention_days=7)
        store.save("test-go", "go-app", b"bin", files=1, retention_days=30)

        removed = store.purge_expired(now=time.time() + 8 * SECONDS_PER_DAY)
        assert [p.name for p in removed] == ["rust-test-logs.tar.gz"]
        assert store.info("test-rust", "rust-test-logs") is None
        assert store.get("test-rust", "rust-test-logs") is None
        assert store.get("test-go", "go-app") == b"bin"

    def test_info_for_unknown_artifact(self, tmp_path):
        assert ArtifactStore(tmp_path / "a").info("job", "nope") is None


class TestResultStore:

    def _results(self):
        return {
            "test-python (3.10)": RunResult(
                job="test-python (3.10)",
                status=JobStatus.FAILURE,
                group="test-python",
                matrix={"python-version": "3.10"},
                steps=[
                    StepResult(name="Run tests", status=JobStatus.FAILURE, error="exit 1"),
                    StepResult(name="Notify on failure", status=JobStatus.SUCCESS, best_effort=True),
                ],
                notifications=1,
                log="$ pytest\n1 failed\n",
            ),
            "ci-summary": RunResult(job="ci-summary", status=JobStatus.FAILURE),
        }

    def test_save_and_load(self, tmp_path):
        store = ResultStore(tmp_path / "runs")
        store.save("run1", self._results(), meta={"workflow": "ci"})

        assert (tmp_path / "runs" / "run1" / "results.json").exists()
        assert (tmp_path / "runs" / "run1" / "test-python_3.10_.log").exists()

        loaded = store.load("run1")
        cell = loaded["test-python (3.10)"]
        assert cell.status is JobStatus.FAILURE
        assert cell.group_name == "test-python"
        assert cell.failed_step().name == "Run tests"
        assert cell.log.endswith("1 failed\n")
        assert loaded["ci-summary"].log == ""
        assert store.runs() == ["run1"]

    def test_purge_old_runs(self, tmp_path):
        store = ResultStore(tmp_path / "runs")
        store.save("old", self._results())
        store.save("new", self._results())
        _age(tmp_path / "runs" / "old" / "results.json", 10)

        assert store.purge(7) == ["old"]
        assert store.runs() == ["new"]
