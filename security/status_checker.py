"""
Debounced security-status lookups for the login form.

This is the client-side helper the login form uses to drive
POST /auth/security-status while the user types; nothing on the server side
imports it.

Every change of the email field bumps a generation counter. A lookup that
finishes after a newer one was requested is dropped, so a slow response can
never overwrite a fresher one.
"""
import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 0.5


class DebouncedStatusChecker:
    def __init__(self, fetch_status, on_status, delay: float = DEFAULT_DELAY_SECONDS, on_error=None):
        """
        fetch_status: coroutine function ``(email) -> status`` (e.g. a call to
        POST /auth/security-status).
        on_status: callback receiving the latest status only.
        on_error: optional callback receiving the exception of a failed lookup,
        if that lookup is still the latest one.
        """
        self._fetch_status = fetch_status
        self._on_status = on_status
        self._on_error = on_error
        self._delay = delay
        self._generation = 0
        self._task = None

    @property
    def generation(self) -> int:
        return self._generation

    def email_changed(self, email: str):
        """Schedule a lookup for the new email value, superseding any pending one."""
        return self._schedule(email)

    def refresh_after_failure(self, email: str):
        """Re-check shortly after a failed login so new friction shows up."""
        return self._schedule(email)

    def cancel(self) -> None:
        self._generation += 1
        self._cancel_pending()

    def _schedule(self, email: str):
        self._generation += 1
        self._cancel_pending()
        if not email or "@" not in email:
            return None
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(email, self._generation))
        return self._task

    def _cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _is_stale(self, generation: int) -> bool:
        if generation != self._generation:
            logger.debug("Dropping stale status for generation %d (latest %d)", generation, self._generation)
            return True
        return False

    async def _run(self, email: str, generation: int):
        await asyncio.sleep(self._delay)
        try:
            status = await self._fetch_status(email)
        except Exception as exc:
            logger.warning("Security status lookup for %s failed: %s", email, exc)
            if not self._is_stale(generation) and self._on_error is not None:
                self._on_error(exc)
            return None
        if self._is_stale(generation):
            return None
        self._on_status(status)
        return status
