import unittest
from datetime import timedelta

from security.attempt_store import AttemptOutcome, AttemptRecord
from security.lockout_policy import LockoutConfig, evaluate
from tests.base import T0

FAILURE = AttemptOutcome.FAILURE
SUCCESS = AttemptOutcome.SUCCESS
RESET = AttemptOutcome.ADMIN_RESET


def records(*events):
    """events: (outcome, seconds after T0) pairs."""
    return [
        AttemptRecord("user@example.com", outcome, T0 + timedelta(seconds=offset), seq=i)
        for i, (outcome, offset) in enumerate(events, start=1)
    ]


def failures(count, start=0, step=1):
    return [(FAILURE, start + i * step) for i in range(count)]


class LockoutPolicyTests(unittest.TestCase):
    def setUp(self):
        self.config = LockoutConfig(
            captcha_threshold=3,
            lockout_threshold=5,
            window=timedelta(minutes=60),
            lockout_duration=timedelta(minutes=15),
        )

    def at(self, seconds):
        return T0 + timedelta(seconds=seconds)

    def test_no_records_is_clear(self):
        state = evaluate([], T0, self.config)
        self.assertEqual(state.failed_attempts_in_window, 0)
        self.assertFalse(state.is_locked)
        self.assertFalse(state.requires_captcha)
        self.assertIsNone(state.lockout_ends_at)
        self.assertEqual(state.attempts_remaining, 5)
        self.assertFalse(state.show_attempts_warning)

    def test_captcha_threshold_before_lockout(self):
        state = evaluate(records(*failures(3)), self.at(3), self.config)
        self.assertTrue(state.requires_captcha)
        self.assertFalse(state.is_locked)
        self.assertEqual(state.attempts_remaining, 2)
        self.assertTrue(state.show_attempts_warning)

    def test_lockout_ends_relative_to_triggering_failure(self):
        state = evaluate(records(*failures(5, step=10)), self.at(41), self.config)
        self.assertTrue(state.is_locked)
        self.assertTrue(state.requires_captcha)
        self.assertEqual(state.attempts_remaining, 0)
        self.assertEqual(state.lockout_ends_at, self.at(40) + timedelta(minutes=15))
        self.assertFalse(state.show_attempts_warning)

    def test_same_instant_burst_counts_every_failure(self):
        burst = records(*[(FAILURE, 0)] * 5)
        state = evaluate(burst, T0, self.config)
        self.assertEqual(state.failed_attempts_in_window, 5)
        self.assertTrue(state.is_locked)
        self.assertEqual(state.lockout_ends_at, T0 + timedelta(minutes=15))

    def test_lockout_expires_without_clearing_the_streak(self):
        history = records(*failures(5))
        state = evaluate(history, self.at(4) + timedelta(minutes=15), self.config)
        self.assertFalse(state.is_locked)
        self.assertIsNone(state.lockout_ends_at)
        self.assertEqual(state.failed_attempts_in_window, 5)
        self.assertTrue(state.requires_captcha)

    def test_failure_after_expiry_relocks_immediately(self):
        relock_at = 4 + 15 * 60 + 30
        history = records(*failures(5), (FAILURE, relock_at))
        state = evaluate(history, self.at(relock_at + 1), self.config)
        self.assertTrue(state.is_locked)
        self.assertEqual(state.lockout_ends_at, self.at(relock_at) + timedelta(minutes=15))

    def test_episode_survives_older_failures_leaving_the_window(self):
        config = LockoutConfig(
            captcha_threshold=3,
            lockout_threshold=5,
            window=timedelta(minutes=20),
            lockout_duration=timedelta(minutes=15),
        )
        relock_at = 15 * 60 + 10
        history = records(*failures(5), (FAILURE, relock_at))
        state = evaluate(history, T0 + timedelta(minutes=25), config)
        self.assertEqual(state.failed_attempts_in_window, 1)
        self.assertTrue(state.is_locked)
        self.assertEqual(state.lockout_ends_at, self.at(relock_at) + timedelta(minutes=15))

    def test_failure_during_episode_does_not_extend_it(self):
        history = records(*failures(5), (FAILURE, 60))
        state = evaluate(history, self.at(61), self.config)
        self.assertTrue(state.is_locked)
        self.assertEqual(state.lockout_ends_at, self.at(4) + timedelta(minutes=15))

    def test_success_resets_streak(self):
        history = records(*failures(4), (SUCCESS, 10))
        state = evaluate(history, self.at(11), self.config)
        self.assertEqual(state.failed_attempts_in_window, 0)
        self.assertEqual(state.attempts_remaining, 5)
        self.assertFalse(state.requires_captcha)
        self.assertFalse(state.show_attempts_warning)

    def test_only_failures_after_success_count(self):
        history = records(*failures(4), (SUCCESS, 10), (FAILURE, 20), (FAILURE, 21))
        state = evaluate(history, self.at(22), self.config)
        self.assertEqual(state.failed_attempts_in_window, 2)
        self.assertEqual(state.attempts_remaining, 3)

    def test_success_during_episode_keeps_lock(self):
        history = records(*failures(5), (SUCCESS, 60))
        state = evaluate(history, self.at(120), self.config)
        self.assertTrue(state.is_locked)
        self.assertEqual(state.lockout_ends_at, self.at(4) + timedelta(minutes=15))
        self.assertEqual(state.failed_attempts_in_window, 0)

        after = evaluate(history, self.at(4) + timedelta(minutes=15), self.config)
        self.assertFalse(after.is_locked)
        self.assertFalse(after.requires_captcha)

    def test_admin_reset_ends_episode(self):
        history = records(*failures(5), (RESET, 60))
        state = evaluate(history, self.at(61), self.config)
        self.assertFalse(state.is_locked)
        self.assertEqual(state.failed_attempts_in_window, 0)
        self.assertFalse(state.requires_captcha)

    def test_failures_outside_window_are_ignored(self):
        history = records(*failures(4, start=-2 * 60 * 60), (FAILURE, 0))
        state = evaluate(history, T0, self.config)
        self.assertEqual(state.failed_attempts_in_window, 1)
        self.assertFalse(state.requires_captcha)

    def test_attempts_remaining_never_increases_or_goes_negative(self):
        events = []
        previous = None
        for i in range(8):
            events.append((FAILURE, i))
            state = evaluate(records(*events), self.at(i), self.config)
            self.assertGreaterEqual(state.attempts_remaining, 0)
            if previous is not None:
                self.assertLessEqual(state.attempts_remaining, previous)
            previous = state.attempts_remaining
        self.assertEqual(previous, 0)

    def test_to_dict_uses_api_field_names(self):
        state = evaluate(records(*failures(5)), self.at(5), self.config)
        payload = state.to_dict()
        self.assertEqual(set(payload), {"requiresCaptcha", "isLocked", "lockoutEndsAt", "attemptsRemaining"})
        self.assertTrue(payload["lockoutEndsAt"].endswith("Z"))


class LockoutConfigTests(unittest.TestCase):
    def test_captcha_threshold_must_be_below_lockout(self):
        with self.assertRaises(ValueError):
            LockoutConfig(captcha_threshold=5, lockout_threshold=5)

    def test_durations_must_be_positive(self):
        with self.assertRaises(ValueError):
            LockoutConfig(window=timedelta(0))

    def test_from_app_config(self):
        config = LockoutConfig.from_app_config({
            "LOGIN_CAPTCHA_THRESHOLD": "2",
            "LOGIN_LOCKOUT_THRESHOLD": "4",
            "LOGIN_ATTEMPT_WINDOW_SECONDS": "600",
            "LOGIN_LOCKOUT_SECONDS": "300",
        })
        self.assertEqual(config.captcha_threshold, 2)
        self.assertEqual(config.lockout_threshold, 4)
        self.assertEqual(config.lookback, timedelta(seconds=1200))

    def test_lookback_reaches_trigger_of_running_episode(self):
        config = LockoutConfig(window=timedelta(minutes=15), lockout_duration=timedelta(minutes=60))
        self.assertEqual(config.lookback, timedelta(minutes=135))


if __name__ == "__main__":
    unittest.main()
