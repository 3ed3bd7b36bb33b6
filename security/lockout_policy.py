"""
Lockout decision logic.

State is never stored: it is re-derived from the attempt log on every read,
relative to ``now``. Lock expiry therefore needs no background job.
"""
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from security.attempt_store import AttemptOutcome, AttemptRecord
from utils.timeutil import isoformat_utc


@dataclass(frozen=True)
class LockoutConfig:
    captcha_threshold: int = 5
    lockout_threshold: int = 10
    window: timedelta = timedelta(minutes=15)
    lockout_duration: timedelta = timedelta(minutes=15)
    warning_threshold: int = 5

    def __post_init__(self):
        if self.lockout_threshold < 2:
            raise ValueError("lockout_threshold must be at least 2")
        if not 1 <= self.captcha_threshold < self.lockout_threshold:
            raise ValueError("captcha_threshold must be between 1 and lockout_threshold - 1")
        if self.window <= timedelta(0) or self.lockout_duration <= timedelta(0):
            raise ValueError("window and lockout_duration must be positive")
        if self.warning_threshold < 0:
            raise ValueError("warning_threshold must not be negative")

    @property
    def lookback(self) -> timedelta:
        # covers the trigger window of an episode that was still running
        # when a later one could have started
        return self.window + 2 * self.lockout_duration

    @classmethod
    def from_app_config(cls, config) -> "LockoutConfig":
        return cls(
            captcha_threshold=int(config.get("LOGIN_CAPTCHA_THRESHOLD", 5)),
            lockout_threshold=int(config.get("LOGIN_LOCKOUT_THRESHOLD", 10)),
            window=timedelta(seconds=int(config.get("LOGIN_ATTEMPT_WINDOW_SECONDS", 900))),
            lockout_duration=timedelta(seconds=int(config.get("LOGIN_LOCKOUT_SECONDS", 900))),
            warning_threshold=int(config.get("LOGIN_WARNING_THRESHOLD", 5)),
        )


@dataclass(frozen=True)
class LockoutState:
    failed_attempts_in_window: int
    is_locked: bool
    lockout_ends_at: Optional[datetime]
    requires_captcha: bool
    attempts_remaining: int
    warning_threshold: int = 5
    degraded: bool = False

    @property
    def show_attempts_warning(self) -> bool:
        if self.is_locked or self.failed_attempts_in_window == 0:
            return False
        return 0 < self.attempts_remaining <= self.warning_threshold

    def seconds_until_unlock(self, now: datetime) -> int:
        if not self.is_locked or self.lockout_ends_at is None:
            return 0
        return max(int((self.lockout_ends_at - now).total_seconds()), 1)

    def to_dict(self) -> dict:
        return {
            "requiresCaptcha": self.requires_captcha,
            "isLocked": self.is_locked,
            "lockoutEndsAt": isoformat_utc(self.lockout_ends_at),
            "attemptsRemaining": self.attempts_remaining,
        }


def clear_state(config: LockoutConfig) -> LockoutState:
    return LockoutState(
        failed_attempts_in_window=0,
        is_locked=False,
        lockout_ends_at=None,
        requires_captcha=False,
        attempts_remaining=config.lockout_threshold,
        warning_threshold=config.warning_threshold,
    )


def evaluate(records: Iterable[AttemptRecord], now: datetime, config: LockoutConfig) -> LockoutState:
    """
    Derive the lockout state of one identity from its attempts (oldest first).

    Whether a failure starts a lockout episode depends only on the failures in
    the window ending at that failure, so an episode, once triggered, lasts its
    full duration no matter how ``now`` moves. A failure landing inside an
    active episode neither starts nor extends one. SUCCESS clears the streak
    but not an active episode; ADMIN_RESET clears both.
    """
    streak = deque()
    episode_end = None

    for record in records:
        if record.outcome is AttemptOutcome.ADMIN_RESET:
            streak.clear()
            episode_end = None
            continue
        if record.outcome is AttemptOutcome.SUCCESS:
            streak.clear()
            continue

        ts = record.timestamp
        streak.append(ts)
        while streak and streak[0] <= ts - config.window:
            streak.popleft()

        if len(streak) >= config.lockout_threshold and (episode_end is None or ts >= episode_end):
            episode_end = ts + config.lockout_duration

    window_start = now - config.window
    failed = sum(1 for ts in streak if ts > window_start)

    is_locked = episode_end is not None and now < episode_end
    return LockoutState(
        failed_attempts_in_window=failed,
        is_locked=is_locked,
        lockout_ends_at=episode_end if is_locked else None,
        requires_captcha=is_locked or failed >= config.captcha_threshold,
        attempts_remaining=max(0, config.lockout_threshold - failed),
        warning_threshold=config.warning_threshold,
    )
