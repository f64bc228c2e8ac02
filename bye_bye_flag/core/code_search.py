"""Find which repositories reference a flag key on their base branch."""

import asyncio
import logging
import re
from typing import Dict, FrozenSet, List, Optional, Sequence

from ..models.task import FlagTask
from ..services.exceptions import GitServiceError
from ..services.git_service import GitService
from .config_context import ConfigContext
from .constants import CODE_SEARCH_BATCH_SIZE

logger = logging.getLogger(__name__)

_ERE_SPECIAL = re.compile(r"[.*+?^${}()|[\]\\]")


def build_flag_pattern(flag_key: str) -> str:
    """Extended regex matching the key inside single, double or back quotes.

    Quoting avoids false positives such as ``my-flag-2`` for ``my-flag``.
    """
    escaped = _ERE_SPECIAL.sub(lambda m: "\\" + m.group(0), flag_key)
    return f"[\"'`]{escaped}[\"'`]"


class CodeReferenceFinder:
    """Searches ``origin/<baseBranch>`` of every configured repository.

    Repositories whose search fails are recorded in ``search_errors``
    (flag key -> repo name -> message) and count as having no match.
    """

    def __init__(self, context: ConfigContext, git_factory=GitService):
        self.context = context
        self._git_factory = git_factory
        self.search_errors: Dict[str, Dict[str, str]] = {}

    async def _repo_matches(self, repo_name: str, flag_key: str, pattern: str) -> bool:
        base_branch = self.context.config.resolve_base_branch(repo_name)
        git = self._git_factory(self.context.repo_path(repo_name))
        try:
            return bool(await git.grep_ref(pattern, f"origin/{base_branch}"))
        except GitServiceError as e:
            logger.error(f"Code search for {flag_key} failed in {repo_name}: {e}")
            self.search_errors.setdefault(flag_key, {})[repo_name] = str(e)
            return False

    def failure_detail(self, flag_key: str) -> Optional[str]:
        """``repo: message`` pairs for repos whose search for ``flag_key`` failed, or None."""
        errors = self.search_errors.get(flag_key)
        if not errors:
            return None
        return "; ".join(f"{repo}: {message}" for repo, message in sorted(errors.items()))

    async def repos_with_match(self, flag_key: str) -> FrozenSet[str]:
        pattern = build_flag_pattern(flag_key)
        repo_names = self.context.repo_names
        found = await asyncio.gather(*(self._repo_matches(name, flag_key, pattern) for name in repo_names))
        return frozenset(name for name, hit in zip(repo_names, found) if hit)

    async def annotate(self, tasks: Sequence[FlagTask], batch_size: int = CODE_SEARCH_BATCH_SIZE) -> List[FlagTask]:
        """Return the tasks with ``repos_with_match`` filled in, in input order."""
        annotated = []
        for start in range(0, len(tasks), batch_size):
            batch = tasks[start:start + batch_size]
            matches = await asyncio.gather(*(self.repos_with_match(task.key) for task in batch))
            annotated.extend(task.with_matches(repos) for task, repos in zip(batch, matches))
        return annotated
