"""Tag 解析单元测试"""

from __future__ import annotations

import pytest

from upsource.core.models import Host, RepositoryDescriptor
from upsource.services.source.tags import (
    TagResolver,
    parse_ls_remote,
    pick_tag,
    should_skip_tag_lookup,
)
from upsource.utils.shell import CommandResult

REPO = RepositoryDescriptor(Host.GITHUB, "o", "r")


class FakeExecutor:
    def __init__(self, result: CommandResult) -> None:
        self.result = result
        self.calls: list[list[str]] = []

    def execute(self, cmd, *, cwd=None, env=None, timeout=None) -> CommandResult:
        self.calls.append(cmd)
        return self.result


def _ls_remote(*tags: str) -> str:
    lines = []
    for i, tag in enumerate(tags):
        lines.append(f"{i:040d}\trefs/tags/{tag}")
        lines.append(f"{i:040d}\trefs/tags/{tag}^{{}}")
    return "\n".join(lines) + "\n"


class TestPickTag:
    def test_v_prefix_wins(self) -> None:
        assert pick_tag(["1.2.0", "v1.2.0", "pkg@1.2.0"], "1.2.0", "pkg") == "v1.2.0"

    def test_plain_version_before_named(self) -> None:
        assert pick_tag(["pkg@1.2.0", "1.2.0"], "1.2.0", "pkg") == "1.2.0"

    def test_scoped_full_name(self) -> None:
        tags = ["core@1.2.0", "@scope/core@1.2.0"]
        assert pick_tag(tags, "1.2.0", "@scope/core") == "@scope/core@1.2.0"

    def test_scoped_unscoped_name(self) -> None:
        assert pick_tag(["core@1.2.0"], "1.2.0", "@scope/core") == "core@1.2.0"

    def test_fuzzy_substring(self) -> None:
        assert pick_tag(["release-1.2.0-rc"], "1.2.0", "pkg") == "release-1.2.0-rc"

    def test_dots_literal(self) -> None:
        assert pick_tag(["v1x2x0"], "1.2.0", "pkg") is None

    def test_no_match(self) -> None:
        assert pick_tag(["v2.0.0"], "1.2.0", "pkg") is None


class TestParseLsRemote:
    def test_dedup_and_peeled(self) -> None:
        assert parse_ls_remote(_ls_remote("v1.0.0", "v1.1.0")) == ["v1.0.0", "v1.1.0"]

    def test_empty(self) -> None:
        assert parse_ls_remote("") == []


class TestSkipTagLookup:
    def test_types_monorepo(self) -> None:
        repo = RepositoryDescriptor(Host.GITHUB, "DefinitelyTyped", "DefinitelyTyped", "types/node")
        assert should_skip_tag_lookup("@types/node", repo)

    def test_other_types_repo(self) -> None:
        assert not should_skip_tag_lookup("@types/node", REPO)

    def test_normal_package(self) -> None:
        repo = RepositoryDescriptor(Host.GITHUB, "DefinitelyTyped", "DefinitelyTyped")
        assert not should_skip_tag_lookup("node", repo)


class TestTagResolver:
    def test_resolves_from_remote(self) -> None:
        ex = FakeExecutor(CommandResult(0, _ls_remote("v0.9.0", "v1.0.0"), ""))
        result = TagResolver(ex).resolve(REPO, "1.0.0", "pkg")
        assert result.tag == "v1.0.0"
        assert not result.used_fallback
        assert ex.calls == [["git", "ls-remote", "--tags", "https://github.com/o/r.git"]]

    @pytest.mark.parametrize("result", [
        CommandResult(128, "", "fatal: could not read from remote"),
        CommandResult(0, "", ""),
        CommandResult(0, _ls_remote("v2.0.0"), ""),
    ])
    def test_falls_back(self, result: CommandResult) -> None:
        tag = TagResolver(FakeExecutor(result)).resolve(REPO, "1.0.0", "pkg")
        assert tag.tag is None
        assert tag.used_fallback
