"""nbrelay worker: main orchestrator.

Startup sequence:
1. Blob store / Slack notifier wiring
2. Persisted login state read and Chromium context launch
3. Login (with manual second-factor window) if the app asks for it
4. Session registry, query executor, dispatcher
5. Session reaper schedule
6. Queue polling (one message at a time) until SIGTERM/SIGINT
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

import structlog

from nbrelay import config as config_module
from nbrelay.auth import AuthenticationError, AuthManager
from nbrelay.browser import SharedContext
from nbrelay.config import Config
from nbrelay.consumer import ErrorPolicy, QueueConsumer
from nbrelay.dispatcher import Dispatcher
from nbrelay.executor import PollPolicy, QueryExecutor
from nbrelay.notifier import SlackNotifier
from nbrelay.reaper import SessionReaper
from nbrelay.registry import IdlePolicy, SessionRegistry
from nbrelay.storage import BlobStore, FileBlobStore, S3BlobStore
from nbrelay.target import get_profile

log = structlog.get_logger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


def build_store(cfg: Config) -> BlobStore:
    if cfg.bucket:
        return S3BlobStore(cfg.bucket)
    return FileBlobStore(cfg.blob_dir)


class Worker:
    """Owns every long-lived component of the worker process."""

    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg
        self.profile = get_profile(cfg.profile)

        # Components (initialized in start())
        self._store: Optional[BlobStore] = None
        self._notifier: Optional[SlackNotifier] = None
        self._shared: Optional[SharedContext] = None
        self._auth: Optional[AuthManager] = None
        self._registry: Optional[SessionRegistry] = None
        self._dispatcher: Optional[Dispatcher] = None
        self._reaper: Optional[SessionReaper] = None
        self._consumer: Optional[QueueConsumer] = None
        self._consumer_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Authenticate the browser and wire the message pipeline.

        AuthenticationError (and any browser failure) propagates: the
        process cannot serve questions without a logged-in context.
        """
        cfg = self.cfg
        cfg.runtime_dir.mkdir(parents=True, exist_ok=True)

        self._store = build_store(cfg)
        self._notifier = SlackNotifier(cfg.webhook_url)
        self._shared = SharedContext(
            headless=cfg.headless, locale=cfg.locale, viewport=cfg.viewport,
        )
        self._auth = AuthManager(
            self._shared,
            self._store,
            self._notifier,
            self.profile,
            target_url=cfg.target_url,
            user=cfg.login_user,
            password=cfg.login_password,
            state_key=cfg.state_key,
            grace_seconds=cfg.auth_grace_seconds,
            persist_unverified=cfg.persist_unverified,
            debug_snapshots=cfg.debug_snapshots,
        )

        log.info("browser starting", headless=cfg.headless, locale=cfg.locale)
        state = await self._auth.load_state()
        await self._shared.launch(storage_state=state)
        auth_state = await self._auth.ensure_authenticated()
        log.info("browser authenticated", state=auth_state.value, restored=self._auth.restored)

        self._registry = SessionRegistry(
            self._shared.open_surface,
            cfg.target_url,
            idle_policy=IdlePolicy(cfg.idle_policy),
        )
        self._dispatcher = Dispatcher(
            self._registry,
            QueryExecutor(
                self.profile,
                PollPolicy(max_attempts=cfg.poll_max_attempts, interval_ms=cfg.poll_interval_ms),
            ),
            self._notifier,
            self.profile,
            store=self._store,
            debug_snapshots=cfg.debug_snapshots,
        )

        self._reaper = SessionReaper(
            self._registry,
            ttl_ms=cfg.session_ttl_ms,
            cron=cfg.reaper_cron,
            timezone=cfg.reaper_timezone,
        )
        self._reaper.start()
        log.info("reaper scheduled", cron=cfg.reaper_cron, timezone=cfg.reaper_timezone)

        self._consumer = QueueConsumer(
            cfg.queue_url,
            self._dispatcher.handle,
            on_error=ErrorPolicy(cfg.on_error),
            wait_seconds=cfg.queue_wait_seconds,
            visibility_timeout=cfg.visibility_timeout,
        )
        self._consumer_task = asyncio.get_running_loop().create_task(self._consumer.run())
        log.info("worker started", queue_url=cfg.queue_url)

    async def run(self) -> None:
        """Start the worker and run until SIGTERM/SIGINT."""
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise

        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
        loop.add_signal_handler(signal.SIGINT, stop_event.set)

        stop_waiter = asyncio.ensure_future(stop_event.wait())
        await asyncio.wait([stop_waiter, self._consumer_task], return_when=asyncio.FIRST_COMPLETED)
        stop_waiter.cancel()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await self.stop()

        task = self._consumer_task
        if task.done() and not task.cancelled() and task.exception() is not None:
            raise task.exception()

    async def stop(self) -> None:
        """Graceful shutdown: stop polling and sweeping, close pages and browser."""
        log.info("worker stopping")

        if self._consumer:
            self._consumer.stop()
        if self._consumer_task and not self._consumer_task.done():
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
        if self._reaper:
            self._reaper.stop()
        if self._registry:
            await self._registry.close_all()
        if self._shared:
            await self._shared.close()
        if self._notifier:
            await self._notifier.close()

        log.info("worker stopped")

    # ------------------------------------------------------------------
    # Properties for testing
    # ------------------------------------------------------------------

    @property
    def registry(self) -> Optional[SessionRegistry]:
        return self._registry

    @property
    def dispatcher(self) -> Optional[Dispatcher]:
        return self._dispatcher


# ------------------------------------------------------------------
# Entrypoint
# ------------------------------------------------------------------


def main() -> None:
    """CLI entrypoint: nbrelay"""
    _configure_logging()
    try:
        cfg = config_module.load()
    except ValueError as e:
        log.error("config error", error=str(e))
        sys.exit(1)
    if not cfg.target_url or not cfg.queue_url:
        log.error("NOTEBOOK_URL and SQS_QUEUE_URL are required")
        sys.exit(1)

    try:
        asyncio.run(Worker(cfg).run())
    except AuthenticationError as e:
        log.error("authentication failed; operator action required", error=str(e))
        sys.exit(1)
    except Exception:
        log.exception("worker crashed")
        sys.exit(1)


if __name__ == "__main__":
    main()
