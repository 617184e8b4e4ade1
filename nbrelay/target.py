"""UI vocabulary of the automated chat application.

The login and query flows only talk to the page through these selectors and
labels, so another chat-style web app can be driven by registering a new
profile.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TargetProfile:
    name: str
    # Login flow
    login_probe: str
    identity_field: str
    credential_field: str
    next_label: str
    # Query flow
    query_input: str
    submit_button: str
    answer: str
    copy_button: str
    # Slack wording
    answer_title: str
    processing_text: str
    verification_alert: str  # formatted with grace_seconds and snapshot_uri


NOTEBOOKLM_JA = TargetProfile(
    name="notebooklm-ja",
    login_probe='input[type="email"]',
    identity_field='input[type="email"]',
    credential_field='input[type="password"]',
    next_label="次へ",
    query_input='textarea[aria-label="クエリボックス"]',
    submit_button='button[aria-label="送信"]',
    # Newest answer only: last message of the last pair, never the echoed query.
    answer=".chat-message-pair:nth-last-child(1) chat-message:last-of-type",
    copy_button=(
        ".chat-message-pair:nth-last-child(1) chat-message:last-of-type "
        'button[aria-label$="コピー"]'
    ),
    answer_title="NotebookLMからの回答",
    processing_text="(NotebookLMに問い合わせ中...)",
    verification_alert=(
        "本人確認が発生しました。{grace_seconds:g}秒以内に対応してください。\n{snapshot_uri}"
    ),
)

PROFILES: dict[str, TargetProfile] = {NOTEBOOKLM_JA.name: NOTEBOOKLM_JA}


def get_profile(name: str) -> TargetProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown target profile {name!r}; known: {', '.join(sorted(PROFILES))}"
        ) from None
