"""Flag task and removal result models."""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ..exceptions import ConfigError


KeepBranch = Literal["enabled", "disabled"]


class FlagTask(BaseModel):
    """A flag to remove. Immutable once created."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    key: str = Field(min_length=1)
    keep_branch: KeepBranch
    reason: Optional[str] = None
    last_modified: Optional[str] = None
    created_by: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    # Repos where the key occurs on the base branch; only used for budgeting
    repos_with_match: FrozenSet[str] = Field(default_factory=frozenset, exclude=True)

    @property
    def reservation(self) -> int:
        return max(1, len(self.repos_with_match))

    def with_matches(self, repo_names) -> "FlagTask":
        return self.model_copy(update={"repos_with_match": frozenset(repo_names)})


_FLAG_LIST = TypeAdapter(List[FlagTask])


def load_flag_list(path: Path) -> List[FlagTask]:
    """Load a candidate list from a JSON file.

    Raises:
        ConfigError: If the file cannot be read or is not a valid flag list
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read flag list {path}: {e}") from e
    try:
        flags = _FLAG_LIST.validate_python(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid flag list {path}:\n{e}") from e
    seen = set()
    duplicates = []
    for flag in flags:
        if flag.key in seen and flag.key not in duplicates:
            duplicates.append(flag.key)
        seen.add(flag.key)
    if duplicates:
        raise ConfigError(f"Duplicate flag key(s) in {path}: {', '.join(duplicates)}")
    return flags


class RemovalStatus(Enum):
    """Outcome of one removal attempt."""
    SUCCESS = "success"
    REFUSED = "refused"
    FAILED = "failed"


class RepoStatus(Enum):
    """Outcome for one repository within a removal attempt."""
    SUCCESS = "success"
    NO_CHANGES = "no-changes"
    FAILED = "failed"
    DEFERRED = "deferred"


@dataclass
class RemovalRequest:
    """Parameters for removing one flag."""
    flag_key: str
    keep_branch: KeepBranch
    dry_run: bool = False
    keep_worktree: bool = False
    created_by: Optional[str] = None
    # Orchestrated runs fetch, check reviews and search code up front
    skip_preflight: bool = False
    # Maximum pull requests this attempt may open
    artifact_limit: Optional[int] = None

    @classmethod
    def from_task(cls, task: FlagTask, dry_run: bool, artifact_limit: Optional[int] = None) -> "RemovalRequest":
        return cls(
            flag_key=task.key,
            keep_branch=task.keep_branch,
            dry_run=dry_run,
            created_by=task.created_by,
            skip_preflight=True,
            artifact_limit=artifact_limit,
        )


@dataclass
class RepoResult:
    """Per-repository result of publishing changes."""
    repo_name: str
    repo_path: str
    status: RepoStatus
    pr_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result = {
            "repoName": self.repo_name,
            "repoPath": self.repo_path,
            "status": self.status.value,
        }
        if self.pr_url:
            result["prUrl"] = self.pr_url
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class RemovalResult:
    """Result of one removal attempt."""
    status: RemovalStatus
    branch_name: Optional[str] = None
    summary: Optional[str] = None
    files_changed: List[str] = field(default_factory=list)
    repo_results: List[RepoResult] = field(default_factory=list)
    refusal_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def pr_urls(self) -> List[str]:
        return [r.pr_url for r in self.repo_results if r.status is RepoStatus.SUCCESS and r.pr_url]

    @property
    def produced(self) -> int:
        return len(self.pr_urls)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result: Dict[str, Any] = {"status": self.status.value}
        if self.branch_name:
            result["branchName"] = self.branch_name
        if self.summary is not None:
            result["summary"] = self.summary
        if self.files_changed:
            result["filesChanged"] = list(self.files_changed)
        if self.repo_results:
            result["repoResults"] = [r.to_dict() for r in self.repo_results]
        if self.refusal_reason:
            result["refusalReason"] = self.refusal_reason
        if self.error:
            result["error"] = self.error
        return result
