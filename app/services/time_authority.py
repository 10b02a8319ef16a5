# app/services/time_authority.py

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from app.core.config import settings
from app.core.errors import SchedulingViolation, TimeWindowViolation

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps coming back from the store are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class SubmitTiming:
    elapsed_seconds: float
    within_limit: bool
    overage_seconds: float = 0.0
    warning: Optional[str] = None


class TimeAuthority:
    """
    Server-side clock for attempts. Client-reported times are only ever
    used as an upper bound that the server can lower, never raise.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        grace_period_seconds: int = settings.SUBMIT_GRACE_PERIOD_SECONDS,
        max_time_spent_seconds: int = settings.MAX_TIME_SPENT_SECONDS,
    ):
        self._clock = clock
        self.grace = timedelta(seconds=grace_period_seconds)
        self.max_time_spent_seconds = max_time_spent_seconds

    def now(self) -> datetime:
        return as_utc(self._clock())

    def elapsed_seconds(self, started_at: Optional[datetime], now: Optional[datetime] = None) -> float:
        if started_at is None:
            return 0.0
        now = now or self.now()
        return max(0.0, (now - as_utc(started_at)).total_seconds())

    def remaining_seconds(self, started_at: Optional[datetime], time_limit_minutes: Optional[int]) -> Optional[int]:
        if not time_limit_minutes:
            return None
        remaining = time_limit_minutes * 60 - self.elapsed_seconds(started_at)
        return max(0, int(remaining))

    # -------------------------------------------------------------------
    # Per answer
    # -------------------------------------------------------------------

    def validate_time_spent(self, client_seconds: Any, started_at: Optional[datetime]) -> int:
        """min(client claim, wall clock since start, 24h), never negative."""
        try:
            claimed = float(client_seconds or 0)
        except (TypeError, ValueError):
            claimed = 0.0
        if claimed != claimed:  # NaN
            claimed = 0.0
        validated = min(max(0.0, claimed), float(self.max_time_spent_seconds))
        if started_at is not None:
            validated = min(validated, self.elapsed_seconds(started_at))
        return int(validated)

    def ensure_can_save(
        self,
        started_at: Optional[datetime],
        time_limit_minutes: Optional[int],
        ends_at: Optional[datetime] = None,
    ) -> None:
        """Saving stops hard at the window end and at the time limit."""
        now = self.now()
        if ends_at is not None and now > as_utc(ends_at):
            raise TimeWindowViolation("Assessment time has expired")
        if time_limit_minutes and started_at is not None:
            if self.elapsed_seconds(started_at, now) > time_limit_minutes * 60:
                raise TimeWindowViolation("Assessment time limit has been exceeded")

    # -------------------------------------------------------------------
    # Per submission
    # -------------------------------------------------------------------

    def ensure_within_schedule(self, starts_at: Optional[datetime], ends_at: Optional[datetime]) -> None:
        """Starting an attempt requires being inside the scheduling window."""
        now = self.now()
        if starts_at is not None and now < as_utc(starts_at):
            raise SchedulingViolation("Assessment not yet started")
        if ends_at is not None and now > as_utc(ends_at):
            raise SchedulingViolation("Assessment has ended")

    def check_submit(
        self,
        started_at: Optional[datetime],
        time_limit_minutes: Optional[int],
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
    ) -> SubmitTiming:
        """
        Submission timing check.

        Before the window opens or after window end + grace: rejected.
        Past the time limit by no more than the grace period: accepted with a
        warning. Saves were already blocked at the limit, so a late submit
        cannot add answers. Any larger overage is rejected.
        """
        now = self.now()
        if starts_at is not None and now < as_utc(starts_at):
            raise TimeWindowViolation("Assessment has not started yet")
        if ends_at is not None:
            deadline = as_utc(ends_at)
            if now > deadline + self.grace:
                raise TimeWindowViolation("Assessment time has expired. Cannot submit after deadline.")
            if now > deadline:
                logger.warning(f"Submission inside deadline grace period ({(now - deadline).total_seconds():.0f}s late)")

        elapsed = self.elapsed_seconds(started_at, now)
        if not time_limit_minutes:
            return SubmitTiming(elapsed_seconds=elapsed, within_limit=True)

        overage = elapsed - time_limit_minutes * 60
        if overage <= 0:
            return SubmitTiming(elapsed_seconds=elapsed, within_limit=True)

        if overage > self.grace.total_seconds():
            logger.warning(
                f"Submit rejected: time limit exceeded by {overage:.0f}s "
                f"(limit={time_limit_minutes}min, grace={self.grace.total_seconds():.0f}s)"
            )
            raise TimeWindowViolation("Assessment time limit has been exceeded")

        warning = (
            f"Time limit exceeded by {overage:.0f}s "
            f"(limit={time_limit_minutes}min, grace={self.grace.total_seconds():.0f}s)"
        )
        logger.warning(warning)
        return SubmitTiming(
            elapsed_seconds=elapsed,
            within_limit=False,
            overage_seconds=overage,
            warning=warning,
        )
