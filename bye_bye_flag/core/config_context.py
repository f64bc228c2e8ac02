"""Config loading. The loaded context is passed explicitly to every component."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..exceptions import ConfigError
from ..models.config import ByeByeFlagConfig, parse_config
from .constants import (
    CONFIG_FILENAME,
    DEFAULT_CONCURRENCY,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_PRS,
    DEFAULT_WORKTREE_BASE_PATH,
)


@dataclass(frozen=True)
class RuntimeSettings:
    """Orchestrator settings with defaults applied."""
    concurrency: int
    max_prs: int
    log_dir: Path


@dataclass(frozen=True)
class ConfigContext:
    """Resolved repos root plus its validated config."""
    repos_dir: Path
    config_path: Path
    config: ByeByeFlagConfig

    @property
    def repo_names(self) -> List[str]:
        return self.config.repo_names

    def repo_path(self, repo_name: str) -> Path:
        return self.repos_dir / repo_name

    @property
    def worktree_base_path(self) -> Path:
        worktrees = self.config.worktrees
        if worktrees and worktrees.base_path:
            return Path(worktrees.base_path)
        return Path(DEFAULT_WORKTREE_BASE_PATH)

    def runtime_settings(self) -> RuntimeSettings:
        orchestrator = self.config.orchestrator
        concurrency = orchestrator.concurrency if orchestrator and orchestrator.concurrency else None
        max_prs = orchestrator.max_prs if orchestrator else None
        log_dir = orchestrator.log_dir if orchestrator and orchestrator.log_dir else None
        return RuntimeSettings(
            concurrency=concurrency or DEFAULT_CONCURRENCY,
            max_prs=DEFAULT_MAX_PRS if max_prs is None else max_prs,
            log_dir=Path(log_dir or DEFAULT_LOG_DIR),
        )

    def require_fetcher(self):
        """Return the fetcher config.

        Raises:
            ConfigError: If no fetcher is configured
        """
        fetcher = self.config.fetcher
        if fetcher is None:
            raise ConfigError(
                'Missing "fetcher" config in bye-bye-flag-config.json. Add fetcher.type and '
                "(for PostHog) fetcher.projectIds, or use --input."
            )
        return fetcher


def read_config(config_path: Path) -> ByeByeFlagConfig:
    """Read and validate a config file.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    try:
        content = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Missing required config file: {config_path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {config_path}\n{e}") from e
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid config file: {config_path}\n(root): {e}") from e
    return parse_config(data, source=str(config_path))


def load_config_context(target_repos: Path) -> ConfigContext:
    """Load ``bye-bye-flag-config.json`` from the repos root."""
    repos_dir = Path(target_repos).resolve()
    config_path = repos_dir / CONFIG_FILENAME
    return ConfigContext(repos_dir=repos_dir, config_path=config_path, config=read_config(config_path))
