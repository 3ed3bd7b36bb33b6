from datetime import timedelta

from models.login_attempt import LoginAttempt
from models.user import User
from security.attempt_store import AttemptOutcome
from tests.base import AppTestCase
from utils.timeutil import utcnow


class CliTests(AppTestCase):
    def test_create_user_and_make_admin(self):
        runner = self.app.test_cli_runner()
        result = runner.invoke(args=["create-user", "New.Clerk@Example.com", "S3cret-pass", "--role", "supervisor"])
        self.assertEqual(result.exit_code, 0, result.output)

        result = runner.invoke(args=["make-admin", "new.clerk@example.com"])
        self.assertEqual(result.exit_code, 0, result.output)

        with self.app.app_context():
            user = User.query.filter_by(email="new.clerk@example.com").first()
            self.assertEqual({r.name for r in user.roles}, {"SUPERVISOR", "ADMIN"})

    def test_create_user_rejects_duplicates(self):
        self._create_user("dup@example.com")
        result = self.app.test_cli_runner().invoke(args=["create-user", "dup@example.com", "pw"])
        self.assertNotEqual(result.exit_code, 0)

    def test_prune_login_attempts(self):
        with self.app.app_context():
            store = self.service.store
            store.record_attempt("a@example.com", AttemptOutcome.FAILURE, timestamp=utcnow() - timedelta(days=45))
            store.record_attempt("a@example.com", AttemptOutcome.FAILURE, timestamp=utcnow())

        result = self.app.test_cli_runner().invoke(args=["prune-login-attempts", "--days", "30"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Deleted 1", result.output)

        with self.app.app_context():
            self.assertEqual(LoginAttempt.query.count(), 1)
