"""Configuration models for bye-bye-flag-config.json."""

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    NonNegativeInt,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..exceptions import ConfigError


class _ConfigModel(BaseModel):
    """Base for config sections: camelCase keys, unknown keys rejected."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RepoSettings(_ConfigModel):
    """Per-repository settings, also used for repoDefaults."""

    shell_init: Optional[str] = None
    base_branch: Optional[str] = Field(default=None, min_length=1)
    main_setup: Optional[List[str]] = None
    setup: Optional[List[str]] = None


class PostHogFetcherConfig(_ConfigModel):
    """PostHog fetcher settings."""

    type: Literal["posthog"]
    project_ids: List[str] = Field(min_length=1)
    stale_days: Optional[PositiveInt] = None
    host: Optional[str] = None

    @field_validator("project_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        if isinstance(value, list):
            return [str(item) if isinstance(item, int) and not isinstance(item, bool) else item for item in value]
        return value


class ManualFetcherConfig(_ConfigModel):
    """Manual fetcher: flags come from --input."""

    type: Literal["manual"]


FetcherConfig = Annotated[
    Union[PostHogFetcherConfig, ManualFetcherConfig],
    Field(discriminator="type"),
]


class ResumeTemplates(_ConfigModel):
    """Resume command templates rendered into pull request bodies."""

    with_session_id: Optional[str] = Field(default=None, min_length=1)
    without_session_id: Optional[str] = Field(default=None, min_length=1)


class AgentConfig(_ConfigModel):
    """Agent settings. Built-in presets exist for "claude" and "codex"."""

    type: str = Field(min_length=1)
    command: Optional[str] = Field(default=None, min_length=1)
    args: Optional[List[str]] = None
    timeout_minutes: Optional[PositiveInt] = None
    prompt_mode: Optional[Literal["stdin", "arg"]] = None
    prompt_arg: Optional[str] = Field(default=None, min_length=1)
    version_args: Optional[List[str]] = None
    session_id_regex: Optional[str] = Field(default=None, min_length=1)
    resume: Optional[ResumeTemplates] = None

    @model_validator(mode="after")
    def _require_prompt_arg(self) -> "AgentConfig":
        if self.prompt_mode == "arg" and not (self.prompt_arg or "").strip():
            raise ValueError('promptArg is required when promptMode is "arg".')
        return self


class WorktreeSettings(_ConfigModel):
    base_path: Optional[str] = None


class OrchestratorSettings(_ConfigModel):
    concurrency: Optional[PositiveInt] = None
    max_prs: Optional[NonNegativeInt] = None
    log_dir: Optional[str] = None


class ByeByeFlagConfig(_ConfigModel):
    """Top-level configuration read from the repos root."""

    fetcher: Optional[FetcherConfig] = None
    agent: Optional[AgentConfig] = None
    worktrees: Optional[WorktreeSettings] = None
    orchestrator: Optional[OrchestratorSettings] = None
    repo_defaults: Optional[RepoSettings] = None
    repos: Dict[str, RepoSettings]

    @model_validator(mode="after")
    def _require_repo_essentials(self) -> "ByeByeFlagConfig":
        defaults = self.repo_defaults or RepoSettings()
        issues = []
        for repo_name, repo in self.repos.items():
            if repo.setup is None and defaults.setup is None:
                issues.append(
                    f"repos.{repo_name}.setup: Missing setup commands. "
                    "Set repos.<name>.setup or repoDefaults.setup."
                )
            if not _non_blank(repo.base_branch) and not _non_blank(defaults.base_branch):
                issues.append(
                    f"repos.{repo_name}.baseBranch: Missing baseBranch. "
                    "Set repos.<name>.baseBranch or repoDefaults.baseBranch."
                )
        if issues:
            raise ValueError("\n".join(issues))
        return self

    @property
    def repo_names(self) -> List[str]:
        return list(self.repos)

    def _repo(self, repo_name: str) -> RepoSettings:
        repo = self.repos.get(repo_name)
        if repo is None:
            raise ConfigError(f'No config entry for repo "{repo_name}" in bye-bye-flag-config.json')
        return repo

    def resolve_base_branch(self, repo_name: str) -> str:
        """Resolve the base branch for a repo, falling back to repoDefaults.

        Raises:
            ConfigError: If the repo is unknown or no baseBranch is set
        """
        repo = self._repo(repo_name)
        defaults = self.repo_defaults or RepoSettings()
        base_branch = repo.base_branch if repo.base_branch is not None else defaults.base_branch
        if not _non_blank(base_branch):
            raise ConfigError(
                f'Missing baseBranch for repo "{repo_name}". '
                f"Set repos.{repo_name}.baseBranch or repoDefaults.baseBranch."
            )
        return base_branch

    def setup_for(self, repo_name: str) -> List[str]:
        repo = self._repo(repo_name)
        setup = repo.setup if repo.setup is not None else (self.repo_defaults or RepoSettings()).setup
        if setup is None:
            raise ConfigError(
                f'Missing setup commands for repo "{repo_name}". '
                f"Add repos.{repo_name}.setup or repoDefaults.setup to bye-bye-flag-config.json"
            )
        return list(setup)

    def main_setup_for(self, repo_name: str) -> List[str]:
        repo = self._repo(repo_name)
        if repo.main_setup is not None:
            return list(repo.main_setup)
        return list((self.repo_defaults or RepoSettings()).main_setup or [])

    def shell_init_for(self, repo_name: Optional[str] = None) -> Optional[str]:
        """Per-repo shellInit takes precedence over repoDefaults."""
        if repo_name is not None:
            repo = self.repos.get(repo_name)
            if repo is not None and repo.shell_init is not None:
                return repo.shell_init
        return (self.repo_defaults or RepoSettings()).shell_init


def _non_blank(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(value.strip())


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic issues as ``path: message`` lines."""
    lines = []
    for issue in error.errors():
        path = ".".join(str(part) for part in issue["loc"]) or "(root)"
        message = issue["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        lines.append(f"{path}: {message}")
    return "\n".join(lines)


def parse_config(data: object, source: str = "bye-bye-flag-config.json") -> ByeByeFlagConfig:
    """Validate raw config data.

    Raises:
        ConfigError: If the data does not match the schema
    """
    try:
        return ByeByeFlagConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config file: {source}\n{format_validation_error(e)}") from e
