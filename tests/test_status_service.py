import unittest
from datetime import timedelta

from security.attempt_store import AttemptOutcome, MemoryAttemptStore, StorageUnavailable
from security.lockout_policy import LockoutConfig
from security.status_service import SecurityStatusService
from tests.base import BrokenStore, FakeClock, T0

EMAIL = "clerk@example.com"


class SecurityStatusServiceTests(unittest.TestCase):
    def setUp(self):
        self.store = MemoryAttemptStore()
        self.clock = FakeClock()
        self.config = LockoutConfig(
            captcha_threshold=3,
            lockout_threshold=5,
            window=timedelta(hours=1),
            lockout_duration=timedelta(minutes=15),
        )
        self.service = SecurityStatusService(self.store, self.config, clock=self.clock)

    def fail(self, times, email=EMAIL):
        state = None
        for _ in range(times):
            self.clock.advance(seconds=1)
            state = self.service.record_failure(email, ip="10.0.0.1", user_agent="pytest")
        return state

    def test_unknown_identity_is_clear(self):
        state = self.service.get_status(EMAIL)
        self.assertFalse(state.is_locked)
        self.assertFalse(state.requires_captcha)
        self.assertEqual(state.attempts_remaining, 5)

    def test_email_is_normalized(self):
        self.fail(2, email="  Clerk@Example.COM ")
        self.assertEqual(self.service.get_status(EMAIL).failed_attempts_in_window, 2)

    def test_malformed_email_gets_generic_answer(self):
        self.fail(5)
        for bad in ("", "not-an-email", None, 42):
            state = self.service.get_status(bad)
            self.assertFalse(state.is_locked)
            self.assertFalse(state.requires_captcha)

    def test_scenario_captcha_then_lockout(self):
        state = self.fail(3)
        self.assertTrue(state.requires_captcha)
        self.assertFalse(state.is_locked)
        self.assertEqual(state.attempts_remaining, 2)

        state = self.fail(2)
        fifth_failure_at = self.clock()
        self.assertTrue(state.is_locked)
        self.assertEqual(state.lockout_ends_at, fifth_failure_at + timedelta(minutes=15))
        self.assertEqual(self.service.get_status(EMAIL), state)

    def test_lockout_expires_with_captcha_still_required(self):
        self.fail(5)
        self.clock.advance(minutes=16)
        state = self.service.get_status(EMAIL)
        self.assertFalse(state.is_locked)
        self.assertIsNone(state.lockout_ends_at)
        self.assertTrue(state.requires_captcha)

    def test_success_after_four_failures_clears_warning(self):
        self.assertTrue(self.fail(4).show_attempts_warning)
        self.clock.advance(seconds=1)
        self.service.record_success(EMAIL)
        state = self.service.get_status(EMAIL)
        self.assertEqual(state.failed_attempts_in_window, 0)
        self.assertFalse(state.show_attempts_warning)
        self.assertFalse(state.requires_captcha)

    def test_get_status_is_idempotent(self):
        self.fail(3)
        first = self.service.get_status(EMAIL)
        second = self.service.get_status(EMAIL)
        self.assertEqual(first, second)
        self.assertEqual(len(self.store.attempts_since(EMAIL, T0 - timedelta(days=1))), 3)

    def test_identities_are_independent(self):
        self.fail(5)
        self.assertFalse(self.service.get_status("other@example.com").requires_captcha)

    def test_reset_unlocks(self):
        self.fail(5)
        self.clock.advance(seconds=1)
        state = self.service.reset(EMAIL, ip="admin")
        self.assertFalse(state.is_locked)
        records = self.service.recent_attempts(EMAIL)
        self.assertEqual(records[-1].outcome, AttemptOutcome.ADMIN_RESET)

    def test_stats(self):
        self.fail(2, email="a@example.com")
        self.fail(5, email="b@example.com")
        stats = self.service.stats()
        self.assertEqual(stats["totalAttempts"], 7)
        self.assertEqual(stats["uniqueEmails"], 2)
        self.assertEqual(stats["averageAttempts"], 3.5)
        self.assertEqual(stats["lockedAccounts"], 1)

    def test_stats_ignores_failures_cleared_by_success(self):
        self.fail(3)
        self.clock.advance(seconds=1)
        self.service.record_success(EMAIL)
        stats = self.service.stats()
        self.assertEqual(stats["totalAttempts"], 0)
        self.assertEqual(stats["uniqueEmails"], 0)
        self.assertEqual(stats["averageAttempts"], 0)
        self.assertEqual(stats["lockedAccounts"], 0)

    def test_stats_counts_lock_outlasting_window(self):
        config = LockoutConfig(
            captcha_threshold=3,
            lockout_threshold=5,
            window=timedelta(minutes=15),
            lockout_duration=timedelta(minutes=60),
        )
        self.service = SecurityStatusService(self.store, config, clock=self.clock)
        self.fail(5)
        self.clock.advance(minutes=20)
        self.assertTrue(self.service.get_status(EMAIL).is_locked)
        stats = self.service.stats()
        self.assertEqual(stats["lockedAccounts"], 1)
        self.assertEqual(stats["totalAttempts"], 0)

    def test_storage_failure_propagates(self):
        service = SecurityStatusService(BrokenStore(), self.config, clock=self.clock)
        with self.assertRaises(StorageUnavailable):
            service.get_status(EMAIL)
        with self.assertRaises(StorageUnavailable):
            service.record_failure(EMAIL)

    def test_fail_closed_status_requires_captcha(self):
        state = self.service.fail_closed_status()
        self.assertTrue(state.requires_captcha)
        self.assertTrue(state.degraded)
        self.assertFalse(state.show_attempts_warning)


if __name__ == "__main__":
    unittest.main()
