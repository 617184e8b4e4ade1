"""Automatable page abstraction used by the login and query flows.

``AutomationSurface`` is the capability set the rest of the worker relies on;
``PlaywrightSurface`` implements it over a Playwright page.  Tests substitute
an in-memory fake with the same methods.
"""
from __future__ import annotations

import logging
from typing import Protocol

from playwright.async_api import Page

log = logging.getLogger(__name__)

NAVIGATION_TIMEOUT = 30_000
CLICK_TIMEOUT = 5_000


class SurfaceError(RuntimeError):
    """Raised when an element the flow depends on is not on the page."""


class AutomationSurface(Protocol):
    @property
    def closed(self) -> bool: ...

    async def navigate(self, url: str) -> None: ...

    async def wait_settled(self) -> None: ...

    async def exists(self, selector: str) -> bool: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def click_by_label(self, label: str) -> bool: ...

    async def wait_for(self, selector: str) -> None: ...

    async def read_text(self, selector: str) -> str: ...

    async def read_clipboard(self) -> str: ...

    async def sleep(self, ms: float) -> None: ...

    async def snapshot(self) -> bytes: ...

    async def page_html(self) -> str: ...

    async def close(self) -> None: ...


class PlaywrightSurface:
    """AutomationSurface backed by a single Playwright page."""

    def __init__(self, page: Page, timeout: int = NAVIGATION_TIMEOUT) -> None:
        self._page = page
        self._timeout = timeout

    @property
    def page(self) -> Page:
        """Direct access to the Playwright page for advanced operations."""
        return self._page

    @property
    def closed(self) -> bool:
        return self._page.is_closed()

    # -- Navigation ------------------------------------------------------------

    async def navigate(self, url: str) -> None:
        await self._page.goto(url, wait_until="domcontentloaded", timeout=self._timeout)

    async def wait_settled(self) -> None:
        await self._page.wait_for_load_state("domcontentloaded", timeout=self._timeout)

    async def wait_for(self, selector: str) -> None:
        await self._page.wait_for_selector(selector, timeout=self._timeout)

    async def sleep(self, ms: float) -> None:
        await self._page.wait_for_timeout(ms)

    # -- Interaction -----------------------------------------------------------

    async def exists(self, selector: str) -> bool:
        return await self._page.query_selector(selector) is not None

    async def fill(self, selector: str, value: str) -> None:
        element = await self._page.query_selector(selector)
        if element is None:
            raise SurfaceError(f"Element not found: {selector}")
        await element.fill(value)

    async def click(self, selector: str) -> None:
        await self._page.click(selector, timeout=CLICK_TIMEOUT)

    async def click_by_label(self, label: str) -> bool:
        """Click the first button whose trimmed text equals *label*.

        Returns False when no button matches.
        """
        for button in await self._page.query_selector_all("button"):
            text = await button.text_content()
            if (text or "").strip() == label:
                await button.click()
                return True
        return False

    # -- Content ---------------------------------------------------------------

    async def read_text(self, selector: str) -> str:
        """Return the rendered text of *selector*, or "" if it is absent."""
        element = await self._page.query_selector(selector)
        if element is None:
            return ""
        return await element.inner_text()

    async def read_clipboard(self) -> str:
        # Requires the context to grant clipboard-read.
        return await self._page.evaluate("() => navigator.clipboard.readText()")

    async def snapshot(self) -> bytes:
        return await self._page.screenshot()

    async def page_html(self) -> str:
        return await self._page.inner_html("body")

    async def close(self) -> None:
        await self._page.close()
