"""Slack incoming-webhook client (aiohttp)."""
from __future__ import annotations

import logging

import aiohttp

log = logging.getLogger(__name__)

_TIMEOUT = aiohttp.ClientTimeout(total=15)


class SlackNotifier:
    """Post thread replies and operator alerts to a Slack incoming webhook."""

    def __init__(self, webhook_url: str, session: aiohttp.ClientSession | None = None) -> None:
        self.webhook_url = webhook_url
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=_TIMEOUT)
            self._owns_session = True
        return self._session

    async def post(self, payload: dict) -> None:
        """POST *payload* as JSON; raises aiohttp.ClientResponseError on non-2xx."""
        session = await self._get_session()
        async with session.post(self.webhook_url, json=payload) as resp:
            resp.raise_for_status()

    async def acknowledge(self, thread_ts: str, text: str) -> None:
        """Reply in *thread_ts* that the question has been accepted."""
        await self.post({"thread_ts": thread_ts, "text": text})

    async def send_answer(self, thread_ts: str, user: str, answer: str, title: str) -> None:
        """Reply in *thread_ts*, mentioning *user*, with the answer as a markdown attachment."""
        await self.post({
            "thread_ts": thread_ts,
            "text": f"<@{user}>",
            "attachments": [
                {
                    "title": title,
                    "text": answer,
                    "mrkdwn_in": ["text"],
                },
            ],
        })
        log.info("Answer posted to thread %s", thread_ts)

    async def alert(self, text: str) -> None:
        """Post a channel-level message for the operator."""
        await self.post({"text": text})

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
