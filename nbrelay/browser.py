"""The process-wide authenticated browser context.

One Chromium instance and one context are created at worker start; every
Slack thread gets its own page inside it, so all pages share the login.

Usage:

    shared = SharedContext(locale="ja")
    await shared.launch(storage_state=previous_state_or_none)
    surface = await shared.open_surface()
    ...
    state = await shared.export_state()
    await shared.close()
"""
from __future__ import annotations

import json
import logging

from playwright.async_api import (
    Browser,
    BrowserContext,
    Playwright,
    async_playwright,
)

from nbrelay.surface import PlaywrightSurface

log = logging.getLogger(__name__)

_LAUNCH_ARGS = ["--disable-gpu", "--no-sandbox", "--disable-dev-shm-usage"]
# Answers are recovered through the app's copy button, so the clipboard must be readable.
_PERMISSIONS = ["clipboard-read", "clipboard-write"]


class SharedContext:
    """Single Chromium context holding the authenticated identity."""

    def __init__(
        self,
        headless: bool = True,
        locale: str = "ja",
        viewport: dict[str, int] | None = None,
    ) -> None:
        self.headless = headless
        self.locale = locale
        self.viewport = viewport or {"width": 1920, "height": 1080}

        self._pw: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    # -- Lifecycle -------------------------------------------------------------

    async def launch(self, storage_state: dict | None = None) -> SharedContext:
        """Launch Chromium and create the context, restoring state if given."""
        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(
            headless=self.headless, args=_LAUNCH_ARGS,
        )

        ctx_kwargs: dict = {
            "locale": self.locale,
            "viewport": self.viewport,
            "permissions": _PERMISSIONS,
        }
        if storage_state is not None:
            ctx_kwargs["storage_state"] = storage_state
            log.info("Restoring browser state (%d cookies)", len(storage_state.get("cookies", [])))

        self._context = await self._browser.new_context(**ctx_kwargs)
        return self

    async def close(self) -> None:
        if self._context:
            try:
                await self._context.close()
            except Exception as exc:
                log.warning("Failed to close browser context: %s", exc)
        if self._browser:
            await self._browser.close()
        if self._pw:
            await self._pw.stop()

        self._context = None
        self._browser = None
        self._pw = None

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("SharedContext not launched")
        return self._context

    # -- Pages & state ---------------------------------------------------------

    async def open_surface(self) -> PlaywrightSurface:
        """Open a new page in the shared context."""
        page = await self.context.new_page()
        return PlaywrightSurface(page)

    async def export_state(self) -> bytes:
        """Serialize cookies and local storage for persistence."""
        state = await self.context.storage_state()
        return json.dumps(state).encode()
