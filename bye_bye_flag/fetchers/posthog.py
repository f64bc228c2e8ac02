"""PostHog feature-flag fetcher.

A flag is a removal candidate when, in every project it exists in:

- it is not deleted,
- it was last updated more than ``staleDays`` ago (default 30),
- it is inactive, or active at a plain 0% or 100% rollout,
- it has no payload and no multivariate variants,

and all projects agree on which branch to keep.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import requests

from ..core.constants import (
    POSTHOG_API_KEY_ENV,
    POSTHOG_DEFAULT_HOST,
    POSTHOG_DEFAULT_STALE_DAYS,
    POSTHOG_REQUEST_TIMEOUT,
)
from ..exceptions import ConfigError, FetchError
from ..models.config import PostHogFetcherConfig
from ..models.task import FlagTask

logger = logging.getLogger(__name__)


@dataclass
class FlagInfo:
    """One flag as seen in one project."""
    key: str
    project_id: str
    updated_at: datetime
    rollout_percentage: Optional[int]
    has_payload: bool
    has_variants: bool
    active: bool
    deleted: bool
    created_by: Optional[str]

    @property
    def keep_branch(self) -> str:
        if not self.active:
            return "disabled"
        return "enabled" if self.rollout_percentage == 100 else "disabled"

    def is_stale(self, threshold: datetime) -> bool:
        if self.deleted:
            return False
        if not self.active:
            return self.updated_at <= threshold
        if self.rollout_percentage not in (0, 100):
            return False
        if self.has_payload or self.has_variants:
            return False
        return self.updated_at <= threshold


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def rollout_percentage(flag: dict) -> Optional[int]:
    """Single untargeted rollout, or None for anything more complex."""
    groups = (flag.get("filters") or {}).get("groups") or []
    if not groups:
        return 100 if flag.get("active") else 0
    if len(groups) == 1:
        group = groups[0]
        if not group.get("properties") and group.get("rollout_percentage") is not None:
            return group["rollout_percentage"]
    return None


def has_payload(flag: dict) -> bool:
    payloads = (flag.get("filters") or {}).get("payloads") or {}
    return any(value not in (None, "") for value in payloads.values())


def has_variants(flag: dict) -> bool:
    multivariate = (flag.get("filters") or {}).get("multivariate") or {}
    return bool(multivariate.get("variants"))


def creator_identifier(user: Optional[dict]) -> Optional[str]:
    """Email local part, falling back to the user's name."""
    if not user:
        return None
    email = user.get("email")
    if email:
        return email.split("@")[0] or email
    name = " ".join(part for part in (user.get("first_name"), user.get("last_name")) if part)
    return name or None


def flag_info(flag: dict, project_id: str) -> FlagInfo:
    return FlagInfo(
        key=flag["key"],
        project_id=project_id,
        updated_at=_parse_timestamp(flag["updated_at"]),
        rollout_percentage=rollout_percentage(flag),
        has_payload=has_payload(flag),
        has_variants=has_variants(flag),
        active=bool(flag.get("active")),
        deleted=bool(flag.get("deleted")),
        created_by=creator_identifier(flag.get("created_by")),
    )


def analyze_flags(
    flags_by_project: Dict[str, List[dict]],
    stale_days: int,
    now: Optional[datetime] = None,
) -> List[FlagTask]:
    """Pick flags that are stale and consistent across projects, oldest first."""
    now = now or datetime.now(timezone.utc)
    threshold = now - timedelta(days=stale_days)

    by_key: Dict[str, List[FlagInfo]] = {}
    for project_id, flags in flags_by_project.items():
        for flag in flags:
            info = flag_info(flag, project_id)
            by_key.setdefault(info.key, []).append(info)

    candidates = []
    for key, infos in by_key.items():
        if not infos or not all(info.is_stale(threshold) for info in infos):
            continue
        keep_branches = {info.keep_branch for info in infos}
        if len(keep_branches) != 1:
            logger.debug(f"Skipping {key}: projects disagree on the branch to keep")
            continue

        latest = max(info.updated_at for info in infos)
        days = (now - latest).days
        rollout = infos[0].rollout_percentage
        if any(not info.active for info in infos):
            reason = f"Inactive for {days} days"
        else:
            reason = f"{rollout}% rollout for {days} days"

        creators = []
        for info in infos:
            if info.created_by and info.created_by not in creators:
                creators.append(info.created_by)

        candidates.append(FlagTask(
            key=key,
            keep_branch=keep_branches.pop(),
            reason=reason,
            last_modified=latest.isoformat(),
            created_by=", ".join(creators) or None,
            metadata={
                "rolloutPercentage": rollout or 0,
                "projects": [info.project_id for info in infos],
            },
        ))

    candidates.sort(key=lambda task: task.last_modified)
    return candidates


class PostHogClient:
    """Minimal client for the feature flags endpoint."""

    def __init__(self, api_key: str, host: str = POSTHOG_DEFAULT_HOST, session=None):
        self.host = host.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def feature_flags(self, project_id: str) -> List[dict]:
        """All flags of a project, following pagination.

        Raises:
            FetchError: On a transport error or non-2xx response
        """
        flags: List[dict] = []
        url: Optional[str] = f"{self.host}/api/projects/{project_id}/feature_flags/"
        while url:
            try:
                response = self.session.get(url, timeout=POSTHOG_REQUEST_TIMEOUT)
            except requests.RequestException as e:
                raise FetchError(f"PostHog request failed for project {project_id}: {e}") from e
            if response.status_code >= 300:
                raise FetchError(
                    f"PostHog API error for project {project_id}: {response.status_code} {response.reason}\n"
                    f"{response.text[:500]}"
                )
            data = response.json()
            flags.extend(data.get("results", []))
            url = data.get("next")
        return flags


def fetch_flags(config: PostHogFetcherConfig, client: Optional[PostHogClient] = None) -> List[FlagTask]:
    """Fetch stale flag candidates from every configured project.

    Raises:
        ConfigError: If ``POSTHOG_API_KEY`` is not set
        FetchError: If the PostHog API cannot be queried
    """
    if client is None:
        api_key = os.environ.get(POSTHOG_API_KEY_ENV)
        if not api_key:
            raise ConfigError(f"Missing {POSTHOG_API_KEY_ENV} environment variable")
        client = PostHogClient(api_key, config.host or POSTHOG_DEFAULT_HOST)

    stale_days = config.stale_days or POSTHOG_DEFAULT_STALE_DAYS
    logger.info(f"Fetching feature flags from PostHog (projects: {', '.join(config.project_ids)})")

    flags_by_project = {}
    for project_id in config.project_ids:
        flags = client.feature_flags(project_id)
        logger.info(f"  Project {project_id}: {len(flags)} flags")
        flags_by_project[project_id] = flags

    candidates = analyze_flags(flags_by_project, stale_days)
    logger.info(
        f"Found {len(candidates)} stale flags (>{stale_days} days, 0% or 100% rollout, no payload, "
        "consistent across projects)"
    )
    return candidates
