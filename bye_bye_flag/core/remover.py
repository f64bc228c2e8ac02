"""Removal of one flag: workspace, agent, commits and pull requests."""

import logging
from typing import List, Optional

from ..agents.runtime import AgentRuntime
from ..exceptions import ReviewBlocked, RunAbortError
from ..models.agent import AgentInvocationResult, AgentOutput
from ..models.task import RemovalRequest, RemovalResult, RemovalStatus, RepoResult, RepoStatus
from ..services.exceptions import ServiceError
from ..services.git_service import GitService
from ..services.github_service import GitHubService
from .code_search import CodeReferenceFinder
from .config_context import ConfigContext
from .constants import BRANCH_PREFIX
from .preflight import fetch_all_repos
from .prompt import generate_prompt, read_context_files
from .review_history import ReviewHistoryResolver
from .workspace import Workspace, WorkspaceManager, WorkspaceRepo

logger = logging.getLogger(__name__)


def commit_message(flag_key: str) -> str:
    return f"bye-bye-flag: Remove `{flag_key}`"


def _check(passed: bool) -> str:
    return "pass" if passed else "FAIL"


def build_pull_request_body(
    flag_key: str,
    keep_branch: str,
    output: AgentOutput,
    invocation: AgentInvocationResult,
    created_by: Optional[str] = None,
) -> str:
    """Markdown body for a flag removal pull request."""
    details = output.verification_details
    lines = [
        "## Summary",
        "",
        output.summary,
        "",
        "## Flag",
        "",
        f"- Key: `{flag_key}`",
        f"- Kept branch: `{keep_branch}`",
    ]
    if created_by:
        lines.append(f"- Created by: {created_by}")
    lines += ["", "## Files changed", ""]
    lines += [f"- `{path}`" for path in output.files_changed] or ["- (none reported)"]
    lines += [
        "",
        "## Verification",
        "",
        f"- Tests: {_check(output.tests_pass)}" + (f" ({details.tests})" if details and details.tests else ""),
        f"- Lint: {_check(output.lint_pass)}" + (f" ({details.lint})" if details and details.lint else ""),
        f"- Typecheck: {_check(output.typecheck_pass)}"
        + (f" ({details.typecheck})" if details and details.typecheck else ""),
        "",
        "## Resume",
        "",
        f"Agent: `{invocation.kind}`",
    ]
    if invocation.session_id:
        lines.append(f"Session: `{invocation.session_id}`")
    lines += [
        "",
        "```bash",
        invocation.resume_command,
        "```",
        "",
        "_Generated by bye-bye-flag._",
    ]
    return "\n".join(lines)


class FlagRemover:
    """Runs one removal attempt end to end."""

    def __init__(
        self,
        context: ConfigContext,
        agent_runtime: AgentRuntime,
        workspace_manager: Optional[WorkspaceManager] = None,
        review_resolver: Optional[ReviewHistoryResolver] = None,
        code_finder: Optional[CodeReferenceFinder] = None,
        git_factory=GitService,
        github_factory=GitHubService,
    ):
        self.context = context
        self.agent_runtime = agent_runtime
        self.workspaces = workspace_manager or WorkspaceManager(context, git_factory=git_factory)
        self.review_resolver = review_resolver or ReviewHistoryResolver(github_factory=github_factory)
        self.code_finder = code_finder or CodeReferenceFinder(context, git_factory=git_factory)
        self._git_factory = git_factory
        self._github_factory = github_factory

    async def _ensure_not_blocked(self, flag_key: str) -> None:
        for repo_name in self.context.repo_names:
            state = await self.review_resolver.resolve(self.context.repo_path(repo_name), flag_key)
            if state.blocked:
                raise ReviewBlocked(state.describe(), record=state.representative)

    async def remove(self, request: RemovalRequest, log: logging.Logger = logger) -> RemovalResult:
        """Remove one flag.

        Task-level problems come back as a failed result. Run-level problems
        (``RunAbortError``) propagate.
        """
        flag_key = request.flag_key
        branch_name = f"{BRANCH_PREFIX}{flag_key}"

        log.info("=" * 60)
        log.info(f"Removing flag: {flag_key} (keep: {request.keep_branch})")
        log.info(f"Repos directory: {self.context.repos_dir}")
        log.info("=" * 60)

        if not request.skip_preflight:
            log.info("Fetching latest from origin...")
            await fetch_all_repos(self.context, git_factory=self._git_factory, log=log)
            if not request.dry_run:
                log.info("Checking for existing PRs...")
                try:
                    await self._ensure_not_blocked(flag_key)
                except ReviewBlocked as e:
                    return RemovalResult(RemovalStatus.REFUSED, branch_name=branch_name, refusal_reason=str(e))

            log.info(f'Checking if flag "{flag_key}" exists in codebase...')
            if not await self.code_finder.repos_with_match(flag_key):
                search_failure = self.code_finder.failure_detail(flag_key)
                if search_failure:
                    log.error(f"Code search failed, not treating the flag as unused: {search_failure}")
                    return RemovalResult(
                        RemovalStatus.FAILED, branch_name=branch_name, error=f"Code search failed: {search_failure}"
                    )
                log.info(f'Flag "{flag_key}" not found in any repository. Safe to remove from feature flag system.')
                return RemovalResult(
                    RemovalStatus.SUCCESS,
                    branch_name=branch_name,
                    summary=(
                        f'Flag "{flag_key}" was not found anywhere in the codebase. '
                        "It can be safely removed from the feature flag system."
                    ),
                )

        workspace: Optional[Workspace] = None
        repo_results: List[RepoResult] = []
        try:
            log.info("Setting up worktrees...")
            workspace = await self.workspaces.create(
                branch_name, delete_remote_branch=not request.dry_run, log=log
            )
            prompt = generate_prompt(flag_key, request.keep_branch, global_context=read_context_files(workspace.path))

            log.info(f"Launching agent ({self.agent_runtime.kind}) to remove the flag...")
            invocation = await self.agent_runtime.invoke(workspace.path, branch_name, prompt, log=log)
            output = invocation.output

            if output.status == "refused":
                log.info(f"Agent refused: {output.summary}")
                return RemovalResult(RemovalStatus.REFUSED, branch_name=branch_name, refusal_reason=output.summary)

            if request.dry_run:
                await self._log_dry_run(workspace, output, log)
                return RemovalResult(
                    RemovalStatus.SUCCESS,
                    branch_name=branch_name,
                    summary=output.summary,
                    files_changed=list(output.files_changed),
                )

            log.info("Committing and creating PRs...")
            repo_results = await self._publish(workspace, request, invocation, log)
            return self._combine(branch_name, output, repo_results, log)
        except RunAbortError:
            raise
        except Exception as e:
            log.error(f"Error removing flag: {e}")
            return RemovalResult(RemovalStatus.FAILED, branch_name=branch_name, error=str(e))
        finally:
            if workspace is not None:
                await self._retain_or_destroy(workspace, request, repo_results, log)

    async def _log_dry_run(self, workspace: Workspace, output: AgentOutput, log: logging.Logger) -> None:
        log.info("--- DRY RUN MODE ---")
        log.info("Agent completed successfully.")
        log.info(f"Summary: {output.summary}")
        log.info(f"Files changed: {', '.join(output.files_changed)}")
        log.info("Repos with changes:")
        for repo in workspace.repos:
            git = self._git_factory(repo.worktree_path)
            changed = await git.has_changes()
            log.info(f"  {repo.name}: {'HAS CHANGES' if changed else 'no changes'}")
            if changed:
                await git.stage_all()
                log.info(f"--- {repo.name} DIFF ---")
                log.info(await git.staged_diff())
                log.info(f"--- END {repo.name} DIFF ---")

    async def _publish(
        self,
        workspace: Workspace,
        request: RemovalRequest,
        invocation: AgentInvocationResult,
        log: logging.Logger,
    ) -> List[RepoResult]:
        """Commit, push and open a pull request per changed repository.

        Once ``artifact_limit`` pull requests exist, further changed
        repositories are marked deferred.
        """
        results = []
        produced = 0
        for repo in workspace.repos:
            result = await self._publish_repo(repo, workspace.branch_name, request, invocation, produced, log)
            if result.status is RepoStatus.SUCCESS:
                produced += 1
            results.append(result)
        return results

    async def _publish_repo(
        self,
        repo: WorkspaceRepo,
        branch_name: str,
        request: RemovalRequest,
        invocation: AgentInvocationResult,
        produced: int,
        log: logging.Logger,
    ) -> RepoResult:
        git = self._git_factory(repo.worktree_path)
        repo_path = str(repo.original_path)
        try:
            if not await git.has_changes():
                log.info(f"[{repo.name}] No changes")
                return RepoResult(repo.name, repo_path, RepoStatus.NO_CHANGES)
            if request.artifact_limit is not None and produced >= request.artifact_limit:
                log.info(f"[{repo.name}] Deferred: PR budget for this flag is used up")
                return RepoResult(repo.name, repo_path, RepoStatus.DEFERRED)

            await git.stage_all()
            await git.commit(commit_message(request.flag_key))
            await git.push_branch(branch_name, set_upstream=True)

            body = build_pull_request_body(
                request.flag_key, request.keep_branch, invocation.output, invocation, request.created_by
            )
            github = self._github_factory(repo.worktree_path)
            existing = [
                pr for pr in await github.list_pull_requests(head=branch_name, state="open")
                if pr.get("url")
            ]
            if existing:
                pr_url = existing[0]["url"]
                await github.update_pr_description(pr_url, body)
                log.info(f"[{repo.name}] Updated existing PR: {pr_url}")
            else:
                pr_url = await github.create_pull_request(
                    title=commit_message(request.flag_key),
                    body=body,
                    base=self.context.config.resolve_base_branch(repo.name),
                    head=branch_name,
                )
                log.info(f"[{repo.name}] Created PR: {pr_url}")
            return RepoResult(repo.name, repo_path, RepoStatus.SUCCESS, pr_url=pr_url)
        except ServiceError as e:
            log.error(f"[{repo.name}] {e}")
            return RepoResult(repo.name, repo_path, RepoStatus.FAILED, error=str(e))

    def _combine(
        self,
        branch_name: str,
        output: AgentOutput,
        repo_results: List[RepoResult],
        log: logging.Logger,
    ) -> RemovalResult:
        """At least one PR is a success; only failures and no PRs is a failure."""
        def count(status: RepoStatus) -> int:
            return sum(1 for r in repo_results if r.status is status)

        failed = [r for r in repo_results if r.status is RepoStatus.FAILED]
        log.info(
            f"Results: {count(RepoStatus.SUCCESS)} PRs created, {count(RepoStatus.NO_CHANGES)} repos unchanged, "
            f"{count(RepoStatus.DEFERRED)} deferred, {len(failed)} failed"
        )
        result = RemovalResult(
            RemovalStatus.SUCCESS,
            branch_name=branch_name,
            summary=output.summary,
            files_changed=list(output.files_changed),
            repo_results=repo_results,
        )
        if failed:
            log.info("Failed repos:")
            for r in failed:
                log.info(f"  - {r.repo_name}: {r.error or 'unknown error'}")
            if count(RepoStatus.SUCCESS) == 0:
                result.status = RemovalStatus.FAILED
                result.error = (
                    f"Failed to create PRs in {len(failed)} repo(s): {', '.join(r.repo_name for r in failed)}"
                )
        return result

    async def _retain_or_destroy(
        self,
        workspace: Workspace,
        request: RemovalRequest,
        repo_results: List[RepoResult],
        log: logging.Logger,
    ) -> None:
        pr_created = not request.dry_run and any(r.status is RepoStatus.SUCCESS for r in repo_results)
        if request.keep_worktree or pr_created:
            log.info(f"Worktree preserved at: {workspace.path}")
            log.info("The worktree will be cleaned up automatically once the PR is merged or closed.")
            log.info("To resume, see the PR description for the resume command.")
            return
        await self.workspaces.destroy(workspace, log=log)
