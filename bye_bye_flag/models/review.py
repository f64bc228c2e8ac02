"""Review history models and the safety reduction."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Tuple

from ..core.constants import DECLINED_MARKER


class ReviewStatus(Enum):
    """Reduced review verdict for a flag key."""
    OPEN = "open"
    DECLINED = "declined"
    CLEAR = "clear"


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class ReviewRecord:
    """One historical pull request for a flag branch."""
    url: str
    state: str  # "OPEN" or "CLOSED"
    declined: bool
    created_at: datetime
    title: str = ""
    head_ref: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewRecord":
        """Create from a ``gh pr list --json`` entry.

        MERGED is reported as CLOSED; a declined PR carries the marker in its title.
        """
        raw_state = str(data.get("state", "")).upper()
        state = "OPEN" if raw_state == "OPEN" else "CLOSED"
        title = data.get("title") or ""
        return cls(
            url=data.get("url") or "",
            state=state,
            declined=title.startswith(DECLINED_MARKER),
            created_at=_parse_timestamp(data.get("createdAt")),
            title=title,
            head_ref=data.get("headRefName") or "",
        )

    @property
    def is_open(self) -> bool:
        return self.state == "OPEN"

    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, self.url)


@dataclass(frozen=True)
class ReviewState:
    """Reduction of every review record for a flag across repositories."""
    key: str
    status: ReviewStatus
    representative: Optional[ReviewRecord] = None
    history: Tuple[ReviewRecord, ...] = field(default_factory=tuple)

    @property
    def blocked(self) -> bool:
        return self.status in (ReviewStatus.OPEN, ReviewStatus.DECLINED)

    def describe(self) -> str:
        if self.status is ReviewStatus.OPEN:
            return f"Open PR exists: {self.representative.url}"
        if self.status is ReviewStatus.DECLINED:
            return f"Declined PR exists: {self.representative.url}"
        return "No blocking review"


def reduce_review_records(key: str, records: Iterable[ReviewRecord]) -> ReviewState:
    """Reduce review records to a single verdict.

    OPEN wins over DECLINED, DECLINED wins over closed history. The result does
    not depend on the order of ``records``.

    Args:
        key: Flag key the records belong to
        records: Records from any number of repositories

    Returns:
        ReviewState with the representative record for the verdict
    """
    # Newest first, url breaks ties so input order never matters
    history = tuple(sorted(set(records), key=ReviewRecord.sort_key, reverse=True))

    open_records = [r for r in history if r.is_open]
    if open_records:
        return ReviewState(key, ReviewStatus.OPEN, open_records[0], history)

    declined_records = [r for r in history if r.declined]
    if declined_records:
        return ReviewState(key, ReviewStatus.DECLINED, declined_records[0], history)

    representative = history[0] if history else None
    return ReviewState(key, ReviewStatus.CLEAR, representative, history)
