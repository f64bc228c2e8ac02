import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from bye_bye_flag.core.config_context import ConfigContext
from bye_bye_flag.core.process import CommandResult
from bye_bye_flag.models.config import parse_config


@pytest.fixture
def cli_runner():
    """Provides a Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def config_data(tmp_path):
    """Raw config with two repos and a worktree base inside tmp_path."""
    return {
        "fetcher": {"type": "manual"},
        "worktrees": {"basePath": str(tmp_path / "worktrees")},
        "orchestrator": {"concurrency": 2, "maxPrs": 5, "logDir": str(tmp_path / "logs")},
        "repoDefaults": {"baseBranch": "main", "setup": []},
        "repos": {
            "svc-a": {},
            "svc-b": {"baseBranch": "develop", "setup": ["npm ci"]},
        },
    }


@pytest.fixture
def repos_dir(tmp_path, config_data):
    """Repos root with a config file and an (empty) directory per repo."""
    root = tmp_path / "repos"
    root.mkdir()
    for name in config_data["repos"]:
        (root / name).mkdir()
    (root / "bye-bye-flag-config.json").write_text(json.dumps(config_data))
    return root


@pytest.fixture
def config_context(repos_dir, config_data):
    """ConfigContext for the repos_dir fixture."""
    return ConfigContext(
        repos_dir=repos_dir,
        config_path=repos_dir / "bye-bye-flag-config.json",
        config=parse_config(config_data),
    )


@pytest.fixture
def ok_result():
    """Factory for successful CommandResults."""
    def make(stdout="", stderr="", returncode=0, timed_out=False):
        return CommandResult(args=(), returncode=returncode, stdout=stdout, stderr=stderr, timed_out=timed_out)
    return make
