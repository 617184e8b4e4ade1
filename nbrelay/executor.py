"""Submit a question to the chat UI and wait for the answer.

The app renders answers asynchronously, so after submitting the executor
polls the newest answer element at a fixed cadence.  Once it has text, the
app's own copy button is pressed and the clipboard read back: that copy keeps
the markdown (lists, links) that the element's plain text loses.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from nbrelay.registry import Session
from nbrelay.target import TargetProfile

log = logging.getLogger(__name__)

TIMEOUT_SENTINEL = "(Timeout)"


@dataclass(frozen=True)
class PollPolicy:
    """Bounded polling with a fixed interval (no backoff)."""

    max_attempts: int = 30
    interval_ms: float = 500

    @classmethod
    def standalone(cls) -> PollPolicy:
        return cls(max_attempts=10, interval_ms=1000)

    @property
    def budget_ms(self) -> float:
        return self.max_attempts * self.interval_ms


class QueryExecutor:
    def __init__(self, profile: TargetProfile, policy: PollPolicy | None = None) -> None:
        self.profile = profile
        self.policy = policy or PollPolicy()

    async def run(self, session: Session, message: str) -> str:
        """Ask *message* in the session's page and return the formatted answer.

        Returns TIMEOUT_SENTINEL when no answer appears within the poll budget.
        Raises (SurfaceError or Playwright errors) only if the question cannot
        be submitted.
        """
        surface = session.surface
        await surface.fill(self.profile.query_input, message)
        await surface.click(self.profile.submit_button)

        for attempt in range(1, self.policy.max_attempts + 1):
            await surface.sleep(self.policy.interval_ms)
            try:
                text = await surface.read_text(self.profile.answer)
            except Exception as exc:
                log.debug("Poll attempt %d failed for thread %s: %s", attempt, session.thread_id, exc)
                continue
            if not text.strip():
                continue
            log.info("Answer ready for thread %s after %d attempt(s)", session.thread_id, attempt)
            return await self._copy_answer(surface, session.thread_id) or text

        log.warning(
            "No answer for thread %s within %d attempts", session.thread_id, self.policy.max_attempts,
        )
        return TIMEOUT_SENTINEL

    async def _copy_answer(self, surface, thread_id: str) -> str:
        """Press the copy button and read the clipboard; "" if either step fails."""
        try:
            await surface.click(self.profile.copy_button)
            return await surface.read_clipboard()
        except Exception as exc:
            log.warning("Copy failed for thread %s, using element text: %s", thread_id, exc)
            return ""
