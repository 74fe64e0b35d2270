"""ServiceContainer 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

import upsource.core.config as cfgmod
from upsource.services.container import ServiceContainer
from upsource.services.source.registry import DEFAULT_REGISTRY


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """用户目录指向临时目录，避免读到真实的 ~/.npmrc"""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(cfgmod, "user_home", lambda: home)
    monkeypatch.setenv("HOME", str(home))
    return home


class TestServiceContainer:
    def test_lazy_loading(self, tmp_path) -> None:
        c = ServiceContainer(cwd=tmp_path)
        assert len(c._instances) == 0
        _ = c.store
        assert list(c._instances) == ["store"]

    def test_shared_instances(self, tmp_path) -> None:
        c = ServiceContainer(cwd=tmp_path)
        assert c.store is c.store
        assert c.pull.store is c.store
        assert c.prune.store is c.store
        assert c.registry._fetcher is c.fetcher

    def test_default_store_is_project_local(self, tmp_path) -> None:
        c = ServiceContainer(cwd=tmp_path)
        assert c.store.root == (tmp_path / ".upsource" / "packages").resolve()

    def test_global_store(self, tmp_path, _isolated_home) -> None:
        c = ServiceContainer(cfgmod.Config(use_global_store=True), cwd=tmp_path)
        assert c.store_dir == (_isolated_home / ".upsource" / "packages").resolve()

    def test_explicit_store_dir(self, tmp_path) -> None:
        c = ServiceContainer(cfgmod.Config(store_dir=str(tmp_path / "cache")), cwd=tmp_path)
        assert c.store_dir == (tmp_path / "cache").resolve()

    def test_registry_url_from_config(self, tmp_path) -> None:
        c = ServiceContainer(cfgmod.Config(registry_url="https://npm.corp.example/"), cwd=tmp_path)
        assert c.registry.registry_url == "https://npm.corp.example"

    def test_registry_url_from_npmrc(self, tmp_path) -> None:
        (tmp_path / ".npmrc").write_text("registry=https://mirror.example/\n", encoding="utf-8")
        c = ServiceContainer(cwd=tmp_path)
        assert c.registry.registry_url == "https://mirror.example"

    def test_registry_default(self, tmp_path) -> None:
        c = ServiceContainer(cwd=tmp_path)
        assert c.registry.registry_url == DEFAULT_REGISTRY

    def test_pull_uses_config(self, tmp_path) -> None:
        seen = []
        c = ServiceContainer(cfgmod.Config(max_workers=3), cwd=tmp_path, listener=seen.append)
        assert c.pull.max_workers == 3
        assert c.pull.project_dir == tmp_path.resolve()
        assert c.pull.listener == seen.append

    def test_containers_independent(self, tmp_path) -> None:
        a = ServiceContainer(cwd=tmp_path / "a")
        b = ServiceContainer(cwd=tmp_path / "b")
        assert a.store is not b.store
        assert a.store.root != b.store.root
