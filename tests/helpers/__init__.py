"""In-memory stand-ins for the browser, blob store and Slack webhook."""
from __future__ import annotations

import json
from typing import Callable

from nbrelay.surface import SurfaceError


class FakeSurface:
    """Scriptable AutomationSurface that records every call.

    ``texts`` maps a selector to either a string or a list of strings; a list
    is consumed one value per read, the last value repeating.
    """

    def __init__(
        self,
        elements: tuple[str, ...] | set[str] = (),
        texts: dict | None = None,
        clipboard: str = "",
        buttons: tuple[str, ...] = (),
        close_error: Exception | None = None,
        navigate_error: Exception | None = None,
    ) -> None:
        self.elements = set(elements)
        self.texts = dict(texts or {})
        self.clipboard = clipboard
        self.buttons = list(buttons)
        self.close_error = close_error
        self.navigate_error = navigate_error
        self.on_sleep: Callable[[float], None] | None = None
        self.calls: list[tuple] = []
        self.sleeps: list[float] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def calls_to(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    async def navigate(self, url: str) -> None:
        self.calls.append(("navigate", url))
        if self.navigate_error is not None:
            raise self.navigate_error

    async def wait_settled(self) -> None:
        self.calls.append(("wait_settled",))

    async def exists(self, selector: str) -> bool:
        self.calls.append(("exists", selector))
        return selector in self.elements

    async def fill(self, selector: str, value: str) -> None:
        self.calls.append(("fill", selector, value))
        if selector not in self.elements:
            raise SurfaceError(f"Element not found: {selector}")

    async def click(self, selector: str) -> None:
        self.calls.append(("click", selector))
        if selector not in self.elements:
            raise SurfaceError(f"Element not found: {selector}")

    async def click_by_label(self, label: str) -> bool:
        self.calls.append(("click_by_label", label))
        return label in self.buttons

    async def wait_for(self, selector: str) -> None:
        self.calls.append(("wait_for", selector))
        if selector not in self.elements:
            raise SurfaceError(f"Timed out waiting for {selector}")

    async def read_text(self, selector: str) -> str:
        self.calls.append(("read_text", selector))
        value = self.texts.get(selector, "")
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else (value[0] if value else "")
        return value

    async def read_clipboard(self) -> str:
        self.calls.append(("read_clipboard",))
        return self.clipboard

    async def sleep(self, ms: float) -> None:
        self.sleeps.append(ms)
        if self.on_sleep is not None:
            self.on_sleep(ms)

    async def snapshot(self) -> bytes:
        self.calls.append(("snapshot",))
        return b"\x89PNG"

    async def page_html(self) -> str:
        return "<main>page</main>"

    async def close(self) -> None:
        self.calls.append(("close",))
        self._closed = True
        if self.close_error is not None:
            raise self.close_error


class SurfaceFactory:
    """``open_surface`` replacement handing out FakeSurfaces."""

    def __init__(self, make: Callable[[], FakeSurface] = FakeSurface) -> None:
        self._make = make
        self.opened: list[FakeSurface] = []

    async def __call__(self) -> FakeSurface:
        surface = self._make()
        self.opened.append(surface)
        return surface


class FakeShared:
    """SharedContext stand-in: hands out one prepared surface, exports fixed state."""

    def __init__(self, surface: FakeSurface, state: dict | None = None) -> None:
        self.surface = surface
        self.state = state or {"cookies": [{"name": "SID"}], "origins": []}
        self.exported = 0

    async def open_surface(self) -> FakeSurface:
        return self.surface

    async def export_state(self) -> bytes:
        self.exported += 1
        return json.dumps(self.state).encode()


class FakeBlobStore:
    def __init__(self, blobs: dict[str, bytes] | None = None) -> None:
        self.blobs = dict(blobs or {})
        self.content_types: dict[str, str] = {}

    async def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    async def put(self, key: str, body: bytes, content_type: str = "") -> str:
        self.blobs[key] = body
        self.content_types[key] = content_type
        return f"mem://{key}"


class FakeNotifier:
    def __init__(self) -> None:
        self.answers: list[dict] = []
        self.acks: list[dict] = []
        self.alerts: list[str] = []

    async def send_answer(self, thread_ts: str, user: str, answer: str, title: str) -> None:
        self.answers.append(
            {"thread_ts": thread_ts, "user": user, "answer": answer, "title": title}
        )

    async def acknowledge(self, thread_ts: str, text: str) -> None:
        self.acks.append({"thread_ts": thread_ts, "text": text})

    async def alert(self, text: str) -> None:
        self.alerts.append(text)
