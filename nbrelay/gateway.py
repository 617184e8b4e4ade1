"""Slack Events API entry point that feeds the worker's queue.

Deployed as a Lambda function URL.  ``url_verification`` challenges are
echoed; ``event_callback`` mentions are enqueued (deduplicated on the event
ts) and acknowledged in the originating thread.
"""
from __future__ import annotations

import asyncio
import json
import logging

import boto3

from nbrelay import config as config_module
from nbrelay.message import strip_mention
from nbrelay.notifier import SlackNotifier
from nbrelay.target import get_profile

log = logging.getLogger(__name__)

MESSAGE_GROUP_ID = "slackbot-default"


def is_authorized(event: dict, api_key: str) -> bool:
    """Accept Slack's own requests or callers presenting the shared API key."""
    user_agent = event.get("requestContext", {}).get("http", {}).get("userAgent") or ""
    if user_agent.startswith("Slackbot"):
        return True
    return bool(api_key) and (event.get("headers") or {}).get("x-api-key") == api_key


async def handle_event(
    event: dict,
    sqs,
    notifier: SlackNotifier,
    queue_url: str,
    api_key: str = "",
    processing_text: str = "",
) -> dict:
    try:
        data = json.loads(event.get("body") or "{}")
    except json.JSONDecodeError:
        return {"statusCode": 400}

    if not is_authorized(event, api_key):
        return {"statusCode": 400}

    kind = data.get("type", "")
    if kind == "url_verification":
        log.info("Slack challenge request")
        return {
            "statusCode": 200,
            "headers": {"Content-Type": "text/plain"},
            "body": data.get("challenge", ""),
        }

    if kind == "event_callback":
        slack_event = data.get("event", {})
        log.info("Slack event %s from %s", slack_event.get("ts"), slack_event.get("user"))
        sqs.send_message(
            QueueUrl=queue_url,
            MessageGroupId=MESSAGE_GROUP_ID,
            MessageDeduplicationId=slack_event["ts"],
            MessageBody=json.dumps({
                "slack": slack_event,
                "message": strip_mention(slack_event.get("text", "")),
            }),
        )
        if processing_text:
            await notifier.acknowledge(slack_event["ts"], processing_text)
        return {"statusCode": 200}

    return {"statusCode": 400}


def lambda_handler(event: dict, context: object = None) -> dict:
    cfg = config_module.load()
    notifier = SlackNotifier(cfg.webhook_url)

    async def _run() -> dict:
        try:
            return await handle_event(
                event,
                boto3.client("sqs"),
                notifier,
                queue_url=cfg.queue_url,
                api_key=cfg.api_key,
                processing_text=get_profile(cfg.profile).processing_text,
            )
        finally:
            await notifier.close()

    return asyncio.run(_run())
