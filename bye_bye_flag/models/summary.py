"""Run summary models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .task import RemovalResult


class FlagStatus(Enum):
    """Final status of a flag within a run. Also used as the log suffix."""
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class FlagResult:
    """Per-flag outcome for reporting."""
    key: str
    status: FlagStatus
    result: Optional[RemovalResult] = None
    pr_urls: List[str] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    skipped_reason: Optional[str] = None
    created_by: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {"key": self.key, "status": self.status.value}
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.pr_urls:
            data["prUrls"] = list(self.pr_urls)
        if self.error:
            data["error"] = self.error
        if self.duration_ms is not None:
            data["durationMs"] = self.duration_ms
        if self.skipped_reason:
            data["skippedReason"] = self.skipped_reason
        if self.created_by:
            data["createdBy"] = self.created_by
        return data


@dataclass
class RunCounts:
    prs_created: int = 0
    no_changes: int = 0
    failed: int = 0
    skipped: int = 0
    remaining: int = 0

    def to_dict(self) -> dict:
        return {
            "prsCreated": self.prs_created,
            "noChanges": self.no_changes,
            "failed": self.failed,
            "skipped": self.skipped,
            "remaining": self.remaining,
        }


@dataclass
class RunSummary:
    """Everything persisted to summary.json for one run."""
    start_time: datetime
    end_time: datetime
    concurrency: int
    max_prs: int
    dry_run: bool
    fetcher_type: str
    total_fetched: int
    results: RunCounts
    flags: List[FlagResult]
    log_dir: str

    @property
    def processed(self) -> int:
        return len(self.flags) - self.results.skipped

    @property
    def duration_ms(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    @classmethod
    def build(
        cls,
        start_time: datetime,
        end_time: datetime,
        concurrency: int,
        max_prs: int,
        dry_run: bool,
        fetcher_type: str,
        total_fetched: int,
        flags: List[FlagResult],
        log_dir: str,
        remaining: int,
    ) -> "RunSummary":
        """Count outcomes and assemble the summary."""
        complete = [f for f in flags if f.status is FlagStatus.COMPLETE]
        counts = RunCounts(
            prs_created=sum(1 for f in complete if f.pr_urls),
            no_changes=sum(1 for f in complete if not f.pr_urls),
            failed=sum(1 for f in flags if f.status is FlagStatus.FAILED),
            skipped=sum(1 for f in flags if f.status is FlagStatus.SKIPPED),
            remaining=remaining,
        )
        return cls(
            start_time=start_time,
            end_time=end_time,
            concurrency=concurrency,
            max_prs=max_prs,
            dry_run=dry_run,
            fetcher_type=fetcher_type,
            total_fetched=total_fetched,
            results=counts,
            flags=list(flags),
            log_dir=log_dir,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "config": {
                "concurrency": self.concurrency,
                "maxPrs": self.max_prs,
                "dryRun": self.dry_run,
            },
            "input": {
                "fetcherType": self.fetcher_type,
                "totalFetched": self.total_fetched,
                "skippedExisting": self.results.skipped,
                "processed": self.processed,
            },
            "results": self.results.to_dict(),
            "flags": [f.to_dict() for f in self.flags],
            "logDir": self.log_dir,
        }
