"""Client-side generation limits.

During the beta every account may generate at most BETA_LIMIT diagrams and
BETA_LIMIT READMEs in total, and at most HOURLY_LIMIT of each per rolling
hour. The counters live on the profile row; this module only reads them and
derives what the user may do next. The Edge Functions enforce the same
limits server-side.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from mivna.backend import BackendClient, BackendError
from mivna.logging_config import get_logger

logger = get_logger(__name__)

HOURLY_LIMIT = 5
BETA_LIMIT = 10

HOUR = timedelta(hours=1)

PROFILE_LIMIT_COLUMNS = (
    "diagrams_generated, readmes_generated, last_diagram_at, "
    "diagrams_this_hour, last_readme_at, readmes_this_hour"
)


class RateLimitExceededError(Exception):
    """Raised when a generation would exceed the account's limits."""

    def __init__(self, message: str, cooldown_ends_at: Optional[datetime] = None):
        super().__init__(message)
        self.cooldown_ends_at = cooldown_ends_at


@dataclass(frozen=True)
class RateLimitState:
    """Usage counters and what they allow."""

    diagrams_total: int = 0
    diagrams_total_limit: int = BETA_LIMIT
    readmes_total: int = 0
    readmes_total_limit: int = BETA_LIMIT
    diagrams_this_hour: int = 0
    diagrams_hourly_limit: int = HOURLY_LIMIT
    readmes_this_hour: int = 0
    readmes_hourly_limit: int = HOURLY_LIMIT
    can_generate_diagram: bool = True
    can_generate_readme: bool = True
    diagram_cooldown_ends_at: Optional[datetime] = None
    readme_cooldown_ends_at: Optional[datetime] = None
    loading: bool = True

    def diagram_cooldown_remaining(self, now: Optional[datetime] = None) -> str:
        return format_cooldown_time(self.diagram_cooldown_ends_at, now)

    def readme_cooldown_remaining(self, now: Optional[datetime] = None) -> str:
        return format_cooldown_time(self.readme_cooldown_ends_at, now)


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _hourly_count(count: Optional[int], last_at: Optional[datetime], hour_ago: datetime) -> int:
    if last_at is None or last_at < hour_ago:
        return 0
    return count or 0


def compute_rate_limits(profile: Dict[str, Any], now: Optional[datetime] = None) -> RateLimitState:
    """Derive the limit state from a profile row.

    Hourly counters only count while the last generation is within the past
    hour. Once a counter hits the hourly limit, the cooldown ends one hour
    after that last generation.

    Args:
        profile: Row with the columns in PROFILE_LIMIT_COLUMNS
        now: Reference time (default: current UTC time)

    Returns:
        RateLimitState with ``loading=False``
    """
    now = now or datetime.now(timezone.utc)
    hour_ago = now - HOUR

    last_diagram_at = _parse_time(profile.get("last_diagram_at"))
    last_readme_at = _parse_time(profile.get("last_readme_at"))

    diagrams_this_hour = _hourly_count(profile.get("diagrams_this_hour"), last_diagram_at, hour_ago)
    readmes_this_hour = _hourly_count(profile.get("readmes_this_hour"), last_readme_at, hour_ago)

    diagram_cooldown_ends_at = (
        last_diagram_at + HOUR
        if diagrams_this_hour >= HOURLY_LIMIT and last_diagram_at
        else None
    )
    readme_cooldown_ends_at = (
        last_readme_at + HOUR
        if readmes_this_hour >= HOURLY_LIMIT and last_readme_at
        else None
    )

    diagrams_total = profile.get("diagrams_generated") or 0
    readmes_total = profile.get("readmes_generated") or 0

    return RateLimitState(
        diagrams_total=diagrams_total,
        readmes_total=readmes_total,
        diagrams_this_hour=diagrams_this_hour,
        readmes_this_hour=readmes_this_hour,
        can_generate_diagram=diagrams_total < BETA_LIMIT and diagrams_this_hour < HOURLY_LIMIT,
        can_generate_readme=readmes_total < BETA_LIMIT and readmes_this_hour < HOURLY_LIMIT,
        diagram_cooldown_ends_at=diagram_cooldown_ends_at,
        readme_cooldown_ends_at=readme_cooldown_ends_at,
        loading=False,
    )


def format_cooldown_time(ends_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Format the time left in a cooldown as ``"<minutes> min"``.

    Minutes are rounded up. Returns an empty string when there is no
    cooldown or it has already ended.
    """
    if ends_at is None:
        return ""
    now = now or datetime.now(timezone.utc)
    remaining = (ends_at - now).total_seconds()
    if remaining <= 0:
        return ""
    return f"{math.ceil(remaining / 60)} min"


def usage_style(used: int, limit: int) -> str:
    """Get color style based on usage percentage.

    Args:
        used: Amount used
        limit: Maximum limit (-1 for unlimited)

    Returns:
        Color style string
    """
    if limit == -1:
        return "green"

    if limit == 0:
        return "red"

    percentage = (used / limit) * 100

    if percentage >= 100:
        return "red"
    elif percentage >= 80:
        return "yellow"
    else:
        return "green"


class RateLimiter:
    """Reads the current user's counters from the profile row."""

    def __init__(self, backend: BackendClient):
        self.backend = backend
        self.state = RateLimitState()

    async def fetch(self, user_id: Optional[str], now: Optional[datetime] = None) -> RateLimitState:
        """Refresh the state for ``user_id``.

        Missing users and failed lookups leave the previous (initially
        permissive) counters in place; the server still enforces limits.
        """
        if not user_id:
            self.state = replace(self.state, loading=False)
            return self.state

        try:
            profile = await (
                self.backend.table("profiles")
                .select(PROFILE_LIMIT_COLUMNS)
                .eq("id", user_id)
                .single()
                .execute()
            )
        except (BackendError, httpx.HTTPError) as e:
            logger.warning(f"Failed to fetch rate limits: {e}")
            self.state = replace(self.state, loading=False)
            return self.state

        if not profile:
            self.state = replace(self.state, loading=False)
            return self.state

        self.state = compute_rate_limits(profile, now)
        return self.state

    def check_can_generate_diagram(self, now: Optional[datetime] = None) -> None:
        """Raise RateLimitExceededError when no diagram may be generated."""
        state = self.state
        if state.can_generate_diagram:
            return
        if state.diagrams_total >= state.diagrams_total_limit:
            raise RateLimitExceededError(
                f"You've used all {state.diagrams_total_limit} beta diagram generations."
            )
        raise RateLimitExceededError(
            f"Hourly diagram limit reached. Try again in {state.diagram_cooldown_remaining(now)}.",
            cooldown_ends_at=state.diagram_cooldown_ends_at,
        )

    def check_can_generate_readme(self, now: Optional[datetime] = None) -> None:
        """Raise RateLimitExceededError when no README may be generated."""
        state = self.state
        if state.can_generate_readme:
            return
        if state.readmes_total >= state.readmes_total_limit:
            raise RateLimitExceededError(
                f"You've used all {state.readmes_total_limit} beta README generations."
            )
        raise RateLimitExceededError(
            f"Hourly README limit reached. Try again in {state.readme_cooldown_remaining(now)}.",
            cooldown_ends_at=state.readme_cooldown_ends_at,
        )
