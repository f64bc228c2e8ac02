"""Review-history safety resolver backed by ``gh pr list``."""

import asyncio
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..exceptions import ReviewDiscoveryError
from ..models.review import ReviewRecord, ReviewState, reduce_review_records
from ..services.exceptions import GitHubServiceError
from ..services.github_service import GitHubService
from .constants import BRANCH_PREFIX

logger = logging.getLogger(__name__)


class ReviewHistoryResolver:
    """Decides from pull request history whether a flag may be (re)attempted.

    Every failure to read history raises ``ReviewDiscoveryError``; callers
    must treat that as fatal rather than assume there is no history.
    """

    def __init__(self, github_factory=GitHubService, branch_prefix: str = BRANCH_PREFIX):
        self._github_factory = github_factory
        self.branch_prefix = branch_prefix

    def branch_for(self, flag_key: str) -> str:
        return f"{self.branch_prefix}{flag_key}"

    async def _records(self, repo_path: Path, head: Optional[str] = None) -> List[ReviewRecord]:
        github = self._github_factory(repo_path)
        try:
            raw = await github.list_pull_requests(head=head)
            return [ReviewRecord.from_dict(item) for item in raw]
        except (GitHubServiceError, ValueError, TypeError, AttributeError) as e:
            raise ReviewDiscoveryError(f"Failed to fetch PRs for {repo_path}: {e}") from e

    async def resolve(self, repo_path: Path, flag_key: str) -> ReviewState:
        """Review state of one flag in one repository.

        Raises:
            ReviewDiscoveryError: If history cannot be retrieved
        """
        branch = self.branch_for(flag_key)
        records = [r for r in await self._records(repo_path, head=branch) if r.head_ref in ("", branch)]
        return reduce_review_records(flag_key, records)

    async def fetch_all(self, repo_path: Path) -> Dict[str, ReviewState]:
        """Review states for every flag branch in one repository, from a single query.

        Raises:
            ReviewDiscoveryError: If history cannot be retrieved
        """
        grouped: Dict[str, List[ReviewRecord]] = defaultdict(list)
        for record in await self._records(repo_path):
            if record.head_ref.startswith(self.branch_prefix):
                grouped[record.head_ref[len(self.branch_prefix):]].append(record)
        return {key: reduce_review_records(key, records) for key, records in grouped.items()}

    async def fetch_all_repos(self, repo_paths: Iterable[Path]) -> Dict[str, ReviewState]:
        """Merge histories across repositories and reduce per flag.

        Raises:
            ReviewDiscoveryError: If any repository fails
        """
        repo_paths = list(repo_paths)
        per_repo = await asyncio.gather(*(self.fetch_all(path) for path in repo_paths))

        merged: Dict[str, List[ReviewRecord]] = defaultdict(list)
        for repo_path, states in zip(repo_paths, per_repo):
            if states:
                logger.info(f"  {Path(repo_path).name}: {len(states)} flag PR(s) on record")
            for key, state in states.items():
                merged[key].extend(state.history)
        return {key: reduce_review_records(key, records) for key, records in merged.items()}
