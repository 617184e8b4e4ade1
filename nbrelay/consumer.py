"""SQS long-poll consumer, one message at a time.

Messages are handled strictly in order with a single message in flight.
The handler's exception is inspected here: under ``ErrorPolicy.DROP`` a
failed message is deleted like a successful one; under
``ErrorPolicy.REDELIVER`` it is left on the queue so its visibility timeout
and redrive policy decide what happens next.
"""
from __future__ import annotations

import asyncio
import enum
from typing import Awaitable, Callable

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

log = structlog.get_logger(__name__)

RECEIVE_ERROR_DELAY = 5.0


class ErrorPolicy(enum.Enum):
    DROP = "drop"
    REDELIVER = "redeliver"


class QueueConsumer:
    def __init__(
        self,
        queue_url: str,
        handler: Callable[[str], Awaitable[object]],
        on_error: ErrorPolicy = ErrorPolicy.DROP,
        wait_seconds: int = 20,
        visibility_timeout: int = 0,
        client=None,
    ) -> None:
        self.queue_url = queue_url
        self.handler = handler
        self.on_error = on_error
        self.wait_seconds = wait_seconds
        self.visibility_timeout = visibility_timeout
        self._client = client or boto3.client("sqs")
        self._running = False

    async def run(self) -> None:
        """Poll until stop() is called."""
        self._running = True
        log.info("queue polling started", queue_url=self.queue_url, on_error=self.on_error.value)
        while self._running:
            messages = await self.receive()
            for message in messages:
                await self.process(message)

    def stop(self) -> None:
        self._running = False

    async def receive(self) -> list[dict]:
        kwargs = {
            "QueueUrl": self.queue_url,
            "MaxNumberOfMessages": 1,
            "WaitTimeSeconds": self.wait_seconds,
        }
        if self.visibility_timeout:
            kwargs["VisibilityTimeout"] = self.visibility_timeout
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None, lambda: self._client.receive_message(**kwargs)
            )
        except (BotoCoreError, ClientError) as e:
            log.error("queue receive failed", error=str(e))
            await asyncio.sleep(RECEIVE_ERROR_DELAY)
            return []
        return response.get("Messages", [])

    async def process(self, message: dict) -> bool:
        """Handle one message; returns True if it was handled without error."""
        message_id = message.get("MessageId", "")
        log.info("message received", message_id=message_id, body=message.get("Body", ""))
        try:
            await self.handler(message.get("Body", ""))
        except Exception as e:
            log.error(
                "message handling failed",
                message_id=message_id,
                error=repr(e),
                on_error=self.on_error.value,
            )
            if self.on_error is ErrorPolicy.DROP:
                await self._delete(message)
            return False

        await self._delete(message)
        log.info("message processed", message_id=message_id)
        return True

    async def _delete(self, message: dict) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._client.delete_message(
                    QueueUrl=self.queue_url, ReceiptHandle=message["ReceiptHandle"],
                ),
            )
        except (BotoCoreError, ClientError) as e:
            log.error("queue delete failed", message_id=message.get("MessageId", ""), error=str(e))
