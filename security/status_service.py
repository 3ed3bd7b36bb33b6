import logging
from dataclasses import replace

from flask import current_app

from security.attempt_store import AttemptOutcome, AttemptStore
from security.lockout_policy import LockoutConfig, LockoutState, clear_state, evaluate
from utils.identity import InvalidIdentity, identity_key
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)

EXTENSION_KEY = "security_status"


class SecurityStatusService:
    """
    Reads attempt history and turns it into a lockout snapshot.

    Storage errors surface as StorageUnavailable; callers decide how to fail
    closed. Nothing is cached between calls.
    """

    def __init__(self, store: AttemptStore, config: LockoutConfig, clock=utcnow):
        self.store = store
        self.config = config
        self.clock = clock

    def get_status(self, email) -> LockoutState:
        try:
            key = identity_key(email)
        except InvalidIdentity:
            # same answer as an unknown account, nothing to tell apart
            return clear_state(self.config)
        return self._evaluate(key, self.clock())

    def record_failure(self, email, ip=None, user_agent=None) -> LockoutState:
        return self._record(email, AttemptOutcome.FAILURE, ip, user_agent)

    def record_success(self, email, ip=None, user_agent=None) -> LockoutState:
        return self._record(email, AttemptOutcome.SUCCESS, ip, user_agent)

    def reset(self, email, ip=None, user_agent=None) -> LockoutState:
        """Administrative unlock: ends any episode and clears the streak."""
        return self._record(email, AttemptOutcome.ADMIN_RESET, ip, user_agent)

    def recent_attempts(self, email):
        key = identity_key(email)
        return self.store.attempts_since(key, self.clock() - self.config.lookback)

    def stats(self) -> dict:
        now = self.clock()
        # any identity with a failure in the lookback may still be locked
        candidates = self.store.failure_counts_since(now - self.config.lookback)
        failed = {}
        locked = 0
        for key in candidates:
            state = self._evaluate(key, now)
            if state.is_locked:
                locked += 1
            if state.failed_attempts_in_window:
                failed[key] = state.failed_attempts_in_window
        total = sum(failed.values())
        return {
            "totalAttempts": total,
            "uniqueEmails": len(failed),
            "averageAttempts": (total / len(failed)) if failed else 0,
            "lockedAccounts": locked,
        }

    def fail_closed_status(self) -> LockoutState:
        return replace(clear_state(self.config), requires_captcha=True, degraded=True)

    def _record(self, email, outcome, ip, user_agent) -> LockoutState:
        key = identity_key(email)
        record = self.store.record_attempt(key, outcome, ip=ip, user_agent=user_agent, timestamp=self.clock())
        state = self._evaluate(key, self.clock())
        logger.info(
            "login attempt recorded identity=%s outcome=%s ip=%s failed_in_window=%d locked=%s",
            key, record.outcome.value, ip, state.failed_attempts_in_window, state.is_locked,
        )
        return state

    def _evaluate(self, key: str, now) -> LockoutState:
        records = self.store.attempts_since(key, now - self.config.lookback)
        return evaluate(records, now, self.config)


def init_security_status(app, store: AttemptStore) -> SecurityStatusService:
    config = LockoutConfig.from_app_config(app.config)
    service = SecurityStatusService(store, config)
    app.extensions[EXTENSION_KEY] = service
    return service


def get_status_service() -> SecurityStatusService:
    return current_app.extensions[EXTENSION_KEY]
