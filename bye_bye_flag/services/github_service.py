"""GitHub operations through the gh CLI."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from ..core.constants import PR_JSON_FIELDS, PR_LIST_LIMIT
from ..core.process import CommandResult, run_command
from .exceptions import GitHubServiceError

logger = logging.getLogger(__name__)


class GitHubService:
    """Handle pull request operations for one repository."""

    def __init__(self, repo_path: Path, runner=run_command):
        self.repo_path = Path(repo_path)
        self._runner = runner

    async def _run_gh_command(self, args: List[str], check: bool = True) -> CommandResult:
        """Run a gh command.

        Raises:
            GitHubServiceError: If gh is missing or the command fails
        """
        cmd = ["gh"] + args
        try:
            result = await self._runner(cmd, self.repo_path)
        except OSError as e:
            raise GitHubServiceError(f"Could not run gh: {e}") from e
        if check and not result.ok:
            error_msg = result.stderr.strip() or f"exit code {result.returncode}"
            raise GitHubServiceError(f"gh {' '.join(args[:2])} failed: {error_msg}")
        return result

    async def list_pull_requests(self, head: Optional[str] = None, state: str = "all") -> List[dict]:
        """List pull requests as raw ``gh --json`` dictionaries.

        Args:
            head: Only PRs from this head branch
            state: open, closed, merged or all

        Raises:
            GitHubServiceError: If gh fails or returns malformed JSON
        """
        args = [
            "pr", "list",
            "--state", state,
            "--limit", str(PR_LIST_LIMIT),
            "--json", PR_JSON_FIELDS,
        ]
        if head:
            args.extend(["--head", head])
        result = await self._run_gh_command(args)
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise GitHubServiceError(f"Unexpected gh output in {self.repo_path}: {e}") from e
        if not isinstance(data, list):
            raise GitHubServiceError(f"Unexpected gh output in {self.repo_path}: expected a list")
        return data

    async def create_pull_request(self, title: str, body: str, base: str, head: str) -> str:
        """Create a pull request and return its URL."""
        result = await self._run_gh_command([
            "pr", "create",
            "--title", title,
            "--body", body,
            "--base", base,
            "--head", head,
        ])
        # The URL is the last line of stdout
        lines = [line for line in result.stdout.strip().splitlines() if line.strip()]
        if not lines:
            raise GitHubServiceError("gh pr create did not return a URL")
        return lines[-1].strip()

    async def update_pr_description(self, pr: str, description: str) -> None:
        """Replace the body of an existing pull request (number or URL)."""
        await self._run_gh_command(["pr", "edit", pr, "--body", description])

    async def auth_ok(self) -> bool:
        result = await self._run_gh_command(["auth", "status"], check=False)
        return result.ok
