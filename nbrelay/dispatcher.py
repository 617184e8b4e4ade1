"""Per-message handler: queue body → thread page → answer → Slack reply."""
from __future__ import annotations

import structlog

from nbrelay.executor import QueryExecutor
from nbrelay.message import MessageError, decode
from nbrelay.registry import SessionRegistry
from nbrelay.storage import BlobStore, upload_dump, upload_snapshot
from nbrelay.target import TargetProfile

log = structlog.get_logger(__name__)


class Dispatcher:
    """Compose registry, executor and notifier for a single queue message.

    ``handle`` raises on failure; what happens to the queue message is the
    consumer's decision.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        executor: QueryExecutor,
        notifier,
        profile: TargetProfile,
        store: BlobStore | None = None,
        debug_snapshots: bool = False,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.notifier = notifier
        self.profile = profile
        self.store = store
        self.debug_snapshots = debug_snapshots and store is not None

    async def handle(self, body: str | bytes) -> str:
        """Answer the question in *body* and reply in its Slack thread.

        Returns the answer text (possibly the timeout sentinel).
        """
        msg = decode(body)
        if not msg.text:
            raise MessageError("Message text is empty")
        root = msg.thread.root_id
        log.info("query started", thread=root, author=msg.thread.author, text_len=len(msg.text))

        async with self.registry.session(root) as session:
            try:
                await self._snapshot(session.surface, root)
                answer = await self.executor.run(session, msg.text)
                await self._snapshot(session.surface, root)
            except Exception:
                await self._dump(session.surface, root)
                # Leaving the block with the error closes the page; the next
                # message for this thread re-opens it.
                log.warning("session discarded after failure", thread=root)
                raise

        await self.notifier.send_answer(root, msg.thread.author, answer, self.profile.answer_title)
        log.info("query answered", thread=root, answer_len=len(answer))
        return answer

    async def _snapshot(self, surface, root: str) -> None:
        if not self.debug_snapshots:
            return
        try:
            await upload_snapshot(self.store, surface, f"screenshot/finally-{root}")
        except Exception as e:
            log.warning("snapshot failed", thread=root, error=str(e))

    async def _dump(self, surface, root: str) -> None:
        if not self.debug_snapshots:
            return
        try:
            uri = await upload_dump(self.store, surface, f"dump/failed-{root}")
            log.info("page dumped", thread=root, uri=uri)
        except Exception as e:
            log.warning("page dump failed", thread=root, error=str(e))
