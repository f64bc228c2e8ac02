"""Tests for code reference search."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

from bye_bye_flag.core.code_search import CodeReferenceFinder, build_flag_pattern
from bye_bye_flag.models.task import FlagTask
from bye_bye_flag.services.exceptions import GitServiceError


def _factory(hits):
    """Git factory whose grep_ref returns files when (repo, key-in-pattern) is in hits."""
    calls = []

    def make(repo_path):
        git = MagicMock()

        async def grep_ref(pattern, ref):
            calls.append((repo_path.name, pattern, ref))
            result = hits.get(repo_path.name, {})
            if isinstance(result, Exception):
                raise result
            return ["src/a.ts"] if any(key in pattern for key in result) else []

        git.grep_ref = AsyncMock(side_effect=grep_ref)
        return git

    make.calls = calls
    return make


class TestBuildFlagPattern:
    """Test cases for build_flag_pattern."""

    def test_quotes_and_escapes(self):
        """Test that the key is quoted and regex characters escaped."""
        assert build_flag_pattern("my.flag") == "[\"'`]my\\.flag[\"'`]"

    def test_plain_key(self):
        """Test that a plain key is unchanged apart from quoting."""
        assert build_flag_pattern("new-checkout") == "[\"'`]new-checkout[\"'`]"


class TestCodeReferenceFinder:
    """Test cases for CodeReferenceFinder."""

    def test_repos_with_match(self, config_context):
        """Test that matching repos are reported and base branches used."""
        factory = _factory({"svc-b": {"flag-x"}})
        finder = CodeReferenceFinder(config_context, git_factory=factory)

        repos = asyncio.run(finder.repos_with_match("flag-x"))

        assert repos == frozenset({"svc-b"})
        refs = {name: ref for name, _, ref in factory.calls}
        assert refs == {"svc-a": "origin/main", "svc-b": "origin/develop"}

    def test_search_error_counts_as_no_match(self, config_context, caplog):
        """Test that a failing repo is recorded, logged as an error and treated as no match."""
        factory = _factory({"svc-a": GitServiceError("bad ref"), "svc-b": {"flag-x"}})
        finder = CodeReferenceFinder(config_context, git_factory=factory)

        with caplog.at_level(logging.ERROR, logger="bye_bye_flag.core.code_search"):
            repos = asyncio.run(finder.repos_with_match("flag-x"))

        assert repos == frozenset({"svc-b"})
        assert finder.search_errors == {"flag-x": {"svc-a": "bad ref"}}
        assert finder.failure_detail("flag-x") == "svc-a: bad ref"
        assert finder.failure_detail("other") is None
        assert "Code search for flag-x failed in svc-a: bad ref" in caplog.text

    def test_annotate_preserves_order(self, config_context):
        """Test that annotate keeps input order across batches."""
        factory = _factory({"svc-a": {"f1", "f3"}, "svc-b": {"f3"}})
        tasks = [FlagTask(key=f"f{i}", keep_branch="enabled") for i in range(5)]

        annotated = asyncio.run(
            CodeReferenceFinder(config_context, git_factory=factory).annotate(tasks, batch_size=2)
        )

        assert [t.key for t in annotated] == ["f0", "f1", "f2", "f3", "f4"]
        assert annotated[1].repos_with_match == frozenset({"svc-a"})
        assert annotated[3].reservation == 2
        assert annotated[0].repos_with_match == frozenset()
