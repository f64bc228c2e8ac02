"""Run driver: safety and code-reference admission, then scheduled removals."""

from datetime import datetime, timezone
from typing import Callable, List, Optional

import click

from ..agents.runtime import AgentRuntime
from ..exceptions import RunAbortError
from ..models.review import ReviewStatus
from ..models.summary import FlagResult, FlagStatus, RunSummary
from ..models.task import FlagTask, RemovalRequest, RemovalStatus
from ..services.git_service import GitService
from ..services.github_service import GitHubService
from .code_search import CodeReferenceFinder
from .config_context import ConfigContext, RuntimeSettings
from .constants import NO_CODE_REFERENCES_REASON
from .preflight import check_prerequisites, fetch_all_repos, run_main_setup
from .remover import FlagRemover
from .review_history import ReviewHistoryResolver
from .run_logger import RunLogger
from .scheduler import CircuitBreaker, OutputBudget, Scheduler, TaskOutcome
from .workspace import WorkspaceManager


class Orchestrator:
    """Processes a list of flags under the configured concurrency and PR budget."""

    def __init__(
        self,
        context: ConfigContext,
        settings: RuntimeSettings,
        agent_runtime: AgentRuntime,
        dry_run: bool = False,
        git_factory=GitService,
        github_factory=GitHubService,
        echo: Callable[[str], None] = click.echo,
        remover: Optional[FlagRemover] = None,
        check_tools: bool = True,
    ):
        self.context = context
        self.settings = settings
        self.agent_runtime = agent_runtime
        self.dry_run = dry_run
        self.echo = echo
        self.check_tools = check_tools
        self.git_factory = git_factory
        self.review_resolver = ReviewHistoryResolver(github_factory=github_factory)
        self.code_finder = CodeReferenceFinder(context, git_factory=git_factory)
        self.workspaces = WorkspaceManager(context, git_factory=git_factory)
        self.remover = remover or FlagRemover(
            context,
            agent_runtime,
            workspace_manager=self.workspaces,
            review_resolver=self.review_resolver,
            code_finder=self.code_finder,
            git_factory=git_factory,
            github_factory=github_factory,
        )
        self.run_logger: Optional[RunLogger] = None

    def _banner(self, title: str) -> None:
        self.echo("=" * 60)
        self.echo(f"{title:^60}".rstrip())
        self.echo("=" * 60)

    async def run(self, flags: List[FlagTask], fetcher_type: str = "manual") -> RunSummary:
        """Process ``flags`` and return the run summary (also written to summary.json).

        Raises:
            RunAbortError: On configuration, prerequisite or review-discovery failure
        """
        start_time = datetime.now(timezone.utc)
        settings = self.settings

        self._banner("bye-bye-flag Orchestrator")
        self.echo(f"Repos directory: {self.context.repos_dir}")
        self.echo(f"Concurrency: {settings.concurrency}")
        self.echo(f"Max PRs: {settings.max_prs}")
        self.echo(f"Dry run: {self.dry_run}")
        self.echo(f"Input: {fetcher_type} ({len(flags)} flags)")
        self.echo("=" * 60)

        self.run_logger = RunLogger(settings.log_dir, start_time)
        self.echo(f"Logs: {self.run_logger.run_dir}\n")

        if self.check_tools:
            await check_prerequisites(self.context, self.agent_runtime, self.dry_run)
        if not self.dry_run:
            self.echo("Fetching latest from origin...")
            await fetch_all_repos(self.context, git_factory=self.git_factory)
            await run_main_setup(self.context)

        unique = self._dedupe(flags)
        results: List[FlagResult] = []
        remaining = 0
        if not unique:
            self.echo("No flags in input. Nothing to do.")
        else:
            to_search = await self._filter_reviewed(unique, results)
            with_code = await self._filter_without_code(to_search, results)
            if with_code:
                remaining = await self._schedule(with_code, results)
            else:
                self.echo("No flags with code references to process. Nothing to do.")

        summary = RunSummary.build(
            start_time=start_time,
            end_time=datetime.now(timezone.utc),
            concurrency=settings.concurrency,
            max_prs=settings.max_prs,
            dry_run=self.dry_run,
            fetcher_type=fetcher_type,
            total_fetched=len(flags),
            flags=results,
            log_dir=str(self.run_logger.run_dir),
            remaining=remaining,
        )
        self.run_logger.write_summary(summary.to_dict())
        return summary

    def _dedupe(self, flags: List[FlagTask]) -> List[FlagTask]:
        """Keep the first task for each key; a key maps to one workspace and branch."""
        unique = {}
        for flag in flags:
            if flag.key in unique:
                self.echo(f"  - {flag.key}: duplicate in input (ignored)")
            else:
                unique[flag.key] = flag
        return list(unique.values())

    async def _filter_reviewed(self, flags: List[FlagTask], results: List[FlagResult]) -> List[FlagTask]:
        """Drop flags with an OPEN or DECLINED review. Fails closed."""
        self.echo("Checking for existing PRs...")
        states = await self.review_resolver.fetch_all_repos(
            self.context.repo_path(name) for name in self.context.repo_names
        )

        if not self.dry_run:
            reclaimed = await self.workspaces.reclaim(states)
            if reclaimed:
                self.echo(f"  Reclaimed {len(reclaimed)} stale workspace(s)")

        admitted = []
        for flag in flags:
            state = states.get(flag.key)
            if state is not None and state.blocked:
                label = "Open PR" if state.status is ReviewStatus.OPEN else "Declined"
                self.echo(f"  - {flag.key}: {label} (skipping)")
                results.append(FlagResult(
                    key=flag.key,
                    status=FlagStatus.SKIPPED,
                    skipped_reason=f"{label}: {state.representative.url}",
                    created_by=flag.created_by,
                ))
            else:
                admitted.append(flag)
        self.echo(f"  {len(admitted)} flags passed PR check ({len(flags) - len(admitted)} skipped)\n")
        return admitted

    async def _filter_without_code(self, flags: List[FlagTask], results: List[FlagResult]) -> List[FlagTask]:
        if not flags:
            return []
        self.echo("Checking for code references...")
        annotated = await self.code_finder.annotate(flags)
        with_code = []
        for flag in annotated:
            search_failure = self.code_finder.failure_detail(flag.key)
            if flag.repos_with_match:
                with_code.append(flag)
            elif search_failure:
                # Unsearched repos may still reference the flag
                self.echo(f"  x {flag.key}: Code search failed ({search_failure})")
                results.append(FlagResult(
                    key=flag.key,
                    status=FlagStatus.FAILED,
                    error=f"Code search failed: {search_failure}",
                    created_by=flag.created_by,
                ))
            else:
                self.echo(f"  o {flag.key}: No code references")
                results.append(FlagResult(
                    key=flag.key,
                    status=FlagStatus.COMPLETE,
                    skipped_reason=NO_CODE_REFERENCES_REASON,
                    created_by=flag.created_by,
                ))
        self.echo(
            f"  {len(with_code)} flags have code references ({len(annotated) - len(with_code)} have no code or failed)\n"
        )
        return with_code

    async def _schedule(self, flags: List[FlagTask], results: List[FlagResult]) -> int:
        settings = self.settings
        self.echo(f"Processing up to {settings.max_prs} PRs with concurrency {settings.concurrency}...\n")
        scheduler = Scheduler(
            self._execute,
            concurrency=settings.concurrency,
            budget=OutputBudget(settings.max_prs),
            breaker=CircuitBreaker(),
            dry_run=self.dry_run,
        )
        report = await scheduler.run(flags)
        for outcome in report.outcomes:
            results.append(FlagResult(
                key=outcome.task.key,
                status=outcome.status,
                result=outcome.result,
                pr_urls=outcome.result.pr_urls if outcome.result else [],
                error=outcome.error,
                duration_ms=outcome.duration_ms,
                skipped_reason=outcome.skipped_reason,
                created_by=outcome.task.created_by,
            ))

        if report.remaining and report.breaker_tripped:
            self.echo(f"\n{len(report.remaining)} flags not attempted due to consecutive failures.")
        elif report.remaining:
            self.echo(f"\nReached {settings.max_prs} PRs limit. {len(report.remaining)} flags remaining for next run.")
        return len(report.remaining)

    async def _execute(self, flag: FlagTask, artifact_limit: int) -> TaskOutcome:
        flag_log = self.run_logger.flag_log(flag.key)
        log = flag_log.logger
        self.echo(f"> Starting: {flag.key} (keep: {flag.keep_branch}, budget: {artifact_limit})")
        self.echo(f"    Log: {flag_log.path}")
        log.info(f"Starting removal of flag: {flag.key}")
        log.info(f"Keep branch: {flag.keep_branch}")
        if flag.reason:
            log.info(f"Reason: {flag.reason}")

        try:
            result = await self.remover.remove(
                RemovalRequest.from_task(flag, self.dry_run, artifact_limit), log=log
            )
        except RunAbortError as e:
            log.error(str(e))
            flag_log.finish(FlagStatus.FAILED, str(e))
            raise

        if result.status is RemovalStatus.SUCCESS:
            prs = result.pr_urls
            summary = f"{len(prs)} PR(s) created" if prs else "No changes needed"
            self.echo(f"+ Complete: {flag.key} ({summary})")
            flag_log.finish(FlagStatus.COMPLETE, summary)
            return TaskOutcome(flag, FlagStatus.COMPLETE, produced=len(prs), result=result)
        if result.status is RemovalStatus.REFUSED:
            self.echo(f"- Skipped: {flag.key} ({result.refusal_reason})")
            flag_log.finish(FlagStatus.SKIPPED, result.refusal_reason)
            return TaskOutcome(flag, FlagStatus.SKIPPED, result=result, skipped_reason=result.refusal_reason)

        self.echo(f"x Failed: {flag.key} ({result.error})")
        flag_log.finish(FlagStatus.FAILED, result.error)
        return TaskOutcome(flag, FlagStatus.FAILED, produced=result.produced, result=result, error=result.error)
