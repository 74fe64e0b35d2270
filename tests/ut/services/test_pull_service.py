"""PullService 单元测试 — 定位/tag/下载均为注入的 fake"""

from __future__ import annotations

import http.client
import io
import json
import os
import tarfile
import threading
from pathlib import Path

import pytest

from upsource.core.exceptions import ExecutionError, RepositoryNotFoundError
from upsource.core.manifest import ProjectManifest
from upsource.core.models import (
    CacheKey,
    OutcomeKind,
    ProgressEvent,
    ProgressStatus,
    RepositoryDescriptor,
)
from upsource.core.store import CacheStore
from upsource.services.pull_service import KeyedLocks, PullService
from upsource.services.source.acquirer import AcquiredSource, SourceAcquirer
from upsource.services.source.locator import parse_repository
from upsource.services.source.sources import SparseGitSource, TarballSource
from upsource.services.source.tags import TagResult
from upsource.utils.net import HttpResponse, RetryingFetcher
from upsource.utils.shell import CommandResult


def _write_json(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def _install(project: Path, name: str, version: str, repository: object = None) -> None:
    data = {"name": name, "version": version}
    if repository is not None:
        data["repository"] = repository
    _write_json(project / "node_modules" / name / "package.json", data)


class FakeLocator:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def locate(self, package_name, version, known_repository=None):
        self.calls.append((package_name, version))
        return parse_repository(known_repository)


class FakeTags:
    def __init__(self, tag: str | None = "v1.0.0") -> None:
        self.tag = tag
        self.calls: list[str] = []

    def resolve(self, repo, version, package_name):
        self.calls.append(package_name)
        return TagResult(self.tag, self.tag is None)


class FakeAcquirer:
    def __init__(self, store: CacheStore, fail: set[str] | None = None) -> None:
        self.store = store
        self.fail = fail or set()
        self.calls: list[tuple[CacheKey, str | None]] = []
        self._lock = threading.Lock()

    def download(self, repo: RepositoryDescriptor, key: CacheKey, tag: str | None) -> AcquiredSource:
        with self._lock:
            self.calls.append((key, tag))
        if key.package_name in self.fail:
            raise ExecutionError(f"git clone 失败: {key}")
        path = self.store.entry_path(key)
        target = path / repo.subdirectory if repo.subdirectory else path
        target.mkdir(parents=True, exist_ok=True)
        (target / "index.js").write_text("x", encoding="utf-8")
        return AcquiredSource(path=path, from_fallback=tag is None, source="fake")


class FakeGit:
    def execute(self, cmd, *, cwd=None, env=None, timeout=None) -> CommandResult:
        raise AssertionError(f"unexpected git call: {cmd}")


def _tarball() -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        info = tarfile.TarInfo("repo-main/index.js")
        info.size = 1
        tf.addfile(info, io.BytesIO(b"x"))
    return buf.getvalue()


@pytest.fixture()
def project(tmp_path) -> Path:
    p = tmp_path / "project"
    p.mkdir()
    return p


@pytest.fixture()
def store(tmp_path) -> CacheStore:
    return CacheStore(tmp_path / "global")


def _service(project: Path, store: CacheStore, **kwargs) -> tuple[PullService, FakeLocator, FakeTags, FakeAcquirer]:
    locator = FakeLocator()
    tags = kwargs.pop("tags", None) or FakeTags()
    acquirer = FakeAcquirer(store, kwargs.pop("fail", None))
    svc = PullService(store, ProjectManifest(project), locator, tags, acquirer, **kwargs)
    return svc, locator, tags, acquirer


class TestPullOne:
    def test_acquires_and_links(self, project, store) -> None:
        _install(project, "pkg", "1.0.0", "github:o/pkg")
        events: list[ProgressEvent] = []
        svc, _, tags, acquirer = _service(project, store, listener=events.append)

        outcome = svc.pull_one("pkg")
        assert outcome.kind == OutcomeKind.ACQUIRED
        assert not outcome.from_fallback
        assert acquirer.calls == [(CacheKey("pkg", "1.0.0"), "v1.0.0")]
        assert outcome.path == project.resolve() / ".upsource" / "packages" / "pkg@1.0.0"
        assert outcome.path.is_symlink()
        assert [e.status for e in events] == [
            ProgressStatus.FETCHING, ProgressStatus.FINDING_TAG,
            ProgressStatus.DOWNLOADING, ProgressStatus.COMPLETE,
        ]

    def test_cache_hit_makes_no_calls(self, project, store) -> None:
        _install(project, "pkg", "1.0.0", "github:o/pkg")
        store.entry_path(CacheKey("pkg", "1.0.0")).mkdir(parents=True)
        events: list[ProgressEvent] = []
        svc, locator, tags, acquirer = _service(project, store, listener=events.append)

        outcome = svc.pull_one("pkg")
        assert outcome.kind == OutcomeKind.CACHED
        assert outcome.from_cache
        assert locator.calls == [] and tags.calls == [] and acquirer.calls == []
        assert events[-1].from_cache

    def test_second_pull_is_cached(self, project, store) -> None:
        _install(project, "pkg", "1.0.0", "github:o/pkg")
        svc, _, _, acquirer = _service(project, store)
        assert svc.pull_one("pkg").kind == OutcomeKind.ACQUIRED
        assert svc.pull_one("pkg").kind == OutcomeKind.CACHED
        assert len(acquirer.calls) == 1

    def test_workspace_specifier_skipped(self, project, store) -> None:
        svc, locator, _, _ = _service(project, store)
        outcome = svc.pull_one("internal", "workspace:*")
        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.reason == "workspace"
        assert locator.calls == []

    def test_local_source_skipped(self, project, store, tmp_path) -> None:
        local = tmp_path / "libs" / "lib"
        _write_json(local / "package.json", {"name": "lib", "version": "0.1.0"})
        (project / "node_modules").mkdir()
        os.symlink(local, project / "node_modules" / "lib", target_is_directory=True)
        svc, locator, _, _ = _service(project, store)

        outcome = svc.pull_one("lib")
        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.reason == "workspace"
        assert outcome.version == "0.1.0"
        assert locator.calls == []

    def test_private_package_skipped(self, project, store) -> None:
        _install(project, "secret", "1.0.0")
        events: list[ProgressEvent] = []
        svc, _, _, acquirer = _service(project, store, listener=events.append)
        outcome = svc.pull_one("secret")
        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.reason == "private"
        assert acquirer.calls == []
        assert events[-1].skip_reason == "private"

    def test_not_installed_fails(self, project, store) -> None:
        svc, _, _, _ = _service(project, store)
        outcome = svc.pull_one("missing")
        assert outcome.kind == OutcomeKind.FAILED
        assert "missing" in outcome.error

    def test_types_monorepo_skips_tag_lookup(self, project, store) -> None:
        _install(project, "@types/node", "20.0.0", {
            "type": "git", "url": "https://github.com/DefinitelyTyped/DefinitelyTyped.git",
            "directory": "types/node",
        })
        events: list[ProgressEvent] = []
        svc, _, tags, acquirer = _service(project, store, listener=events.append)

        outcome = svc.pull_one("@types/node")
        assert outcome.kind == OutcomeKind.ACQUIRED
        assert outcome.from_fallback
        assert tags.calls == []
        assert acquirer.calls == [(CacheKey("@types/node", "20.0.0"), None)]
        assert ProgressStatus.FINDING_TAG not in [e.status for e in events]


class TestSync:
    def test_failure_isolated(self, project, store) -> None:
        _write_json(project / "package.json", {
            "dependencies": {"a": "^1.0.0", "b": "^2.0.0", "c": "workspace:*"},
            "devDependencies": {"d": "^1.0.0"},
        })
        _install(project, "a", "1.0.0", "github:o/a")
        _install(project, "b", "2.0.0", "github:o/b")
        _install(project, "d", "1.0.0")
        svc, _, _, _ = _service(project, store, fail={"b"}, max_workers=4)

        result = svc.sync()
        kinds = {o.package_name: o.kind for o in result.outcomes}
        assert result.packages == ["a", "b", "c", "d"]
        assert kinds == {
            "a": OutcomeKind.ACQUIRED,
            "b": OutcomeKind.FAILED,
            "c": OutcomeKind.SKIPPED,
            "d": OutcomeKind.SKIPPED,
        }
        assert "git clone" in result.outcomes[1].error
        assert result.count(OutcomeKind.FAILED) == 1
        assert result.store_dir == store.root

    def test_pull_names_dedup_and_sequential(self, project, store) -> None:
        _install(project, "a", "1.0.0", "github:o/a")
        svc, _, _, acquirer = _service(project, store, max_workers=1)
        result = svc.pull(["a", "a"])
        assert result.packages == ["a"]
        assert len(acquirer.calls) == 1

    def test_pending_emitted_first(self, project, store) -> None:
        _install(project, "a", "1.0.0", "github:o/a")
        events: list[ProgressEvent] = []
        svc, _, _, _ = _service(project, store, listener=events.append)
        svc.pull(["a"])
        assert events[0].status == ProgressStatus.PENDING
        assert events[-1].status == ProgressStatus.COMPLETE

    def test_concurrent_same_key_downloads_once(self, project, store) -> None:
        svc, _, _, acquirer = _service(project, store)
        barrier = threading.Barrier(4)
        outcomes = []

        def worker() -> None:
            barrier.wait()
            outcomes.append(svc.acquire("pkg", "1.0.0", "github:o/pkg"))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(acquirer.calls) == 1
        assert sorted(o.kind.value for o in outcomes) == ["acquired", "cached", "cached", "cached"]

    @pytest.mark.parametrize("error", [
        http.client.IncompleteRead(b"partial"),
        http.client.BadStatusLine("garbage"),
        ConnectionRefusedError("connection refused"),
    ])
    def test_transport_error_isolated(self, project, store, error) -> None:
        _write_json(project / "package.json", {"dependencies": {"bad": "^1.0.0", "good": "^1.0.0"}})
        _install(project, "bad", "1.0.0", "github:o/bad")
        _install(project, "good", "1.0.0", "github:o/good")

        def opener(url: str, timeout: float) -> HttpResponse:
            if "/o/bad/" in url:
                raise error
            return HttpResponse(url=url, status=200, body=_tarball())

        fetcher = RetryingFetcher(opener=opener, sleep=lambda _: None)
        acquirer = SourceAcquirer(TarballSource(fetcher, store), SparseGitSource(store, FakeGit()))
        svc = PullService(
            store, ProjectManifest(project), FakeLocator(), FakeTags(), acquirer, max_workers=2,
        )

        result = svc.sync()
        kinds = {o.package_name: o.kind for o in result.outcomes}
        assert kinds == {"bad": OutcomeKind.FAILED, "good": OutcomeKind.ACQUIRED}
        assert type(error).__name__ in result.outcomes[0].error
        assert not store.exists(CacheKey("bad", "1.0.0"))
        assert (store.entry_path(CacheKey("good", "1.0.0")) / "index.js").is_file()


class TestEnsureSource:
    def test_monorepo_package_path(self, project, store) -> None:
        _install(project, "@s/core", "1.0.0", {
            "type": "git", "url": "https://github.com/s/mono", "directory": "packages/core",
        })
        svc, _, _, _ = _service(project, store)

        first = svc.ensure_source("@s/core")
        assert not first.from_cache
        assert first.package_subdirectory == "packages/core"
        assert first.package_path == first.repository_path / "packages" / "core"
        assert (first.package_path / "index.js").is_file()

        second = svc.ensure_source("@s/core")
        assert second.from_cache
        assert second.package_path == first.package_path

    def test_local_source_served_in_place(self, project, store, tmp_path) -> None:
        repo_root = tmp_path / "workspace"
        (repo_root / ".git").mkdir(parents=True)
        local = repo_root / "packages" / "lib"
        _write_json(local / "package.json", {"name": "lib", "version": "0.1.0"})
        (project / "node_modules").mkdir()
        os.symlink(local, project / "node_modules" / "lib", target_is_directory=True)
        svc, _, _, acquirer = _service(project, store)

        result = svc.ensure_source("lib")
        assert result.repository_path == repo_root.resolve()
        assert result.package_subdirectory == "packages/lib"
        assert result.package_path == local.resolve()
        assert acquirer.calls == []

    def test_private_raises(self, project, store) -> None:
        _install(project, "secret", "1.0.0")
        svc, _, _, _ = _service(project, store)
        with pytest.raises(RepositoryNotFoundError, match="secret@1.0.0"):
            svc.ensure_source("secret")


def test_keyed_locks_distinct_keys_independent() -> None:
    locks = KeyedLocks()
    with locks.hold(CacheKey("a", "1")):
        acquired = threading.Event()

        def other() -> None:
            with locks.hold(CacheKey("b", "1")):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        t.join(timeout=5)
        assert acquired.is_set()
