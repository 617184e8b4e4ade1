"""Load and provide nbrelay configuration from nbrelay.toml and the environment."""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

from croniter import croniter

from nbrelay.target import get_profile

_POLICY_NAMES = {
    "idle_policy": ("created", "last_access"),
    "on_error": ("drop", "redeliver"),
}

# Environment keys take precedence over the TOML file.
_ENV_KEYS = {
    "target_url": "NOTEBOOK_URL",
    "login_user": "GOOGLE_USER_NAME",
    "login_password": "GOOGLE_USER_PASSWORD",
    "bucket": "S3_BUCKET",
    "queue_url": "SQS_QUEUE_URL",
    "webhook_url": "SLACK_WEBHOOK_URL",
    "api_key": "API_KEY",
}


@dataclass
class Config:
    target_url: str = ""
    profile: str = "notebooklm-ja"
    login_user: str = ""
    login_password: str = ""
    bucket: str = ""  # empty = blobs kept under runtime_dir/blobs
    state_key: str = "chromium-contexts.json"
    queue_url: str = ""
    queue_wait_seconds: int = 20
    visibility_timeout: int = 0  # 0 = use the queue's own setting
    on_error: str = "drop"
    webhook_url: str = ""
    api_key: str = ""
    poll_max_attempts: int = 30
    poll_interval_ms: int = 500
    reaper_cron: str = "0 */5 * * *"
    reaper_timezone: str = "Asia/Tokyo"
    session_ttl_hours: float = 12
    idle_policy: str = "created"
    auth_grace_seconds: float = 60
    persist_unverified: bool = False
    headless: bool = True
    locale: str = "ja"
    viewport_width: int = 1920
    viewport_height: int = 1080
    runtime_dir: Path = Path("/tmp/nbrelay")
    debug_snapshots: bool = True

    @property
    def session_ttl_ms(self) -> float:
        return self.session_ttl_hours * 60 * 60 * 1000

    @property
    def blob_dir(self) -> Path:
        return self.runtime_dir / "blobs"

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}


def load(project_root: Path | None = None, environ: dict[str, str] | None = None) -> Config:
    """Load config from nbrelay.toml, then apply environment overrides.

    Every field has a default; a missing file is not an error.
    """
    if project_root is None:
        project_root = Path.cwd()
    if environ is None:
        environ = dict(os.environ)

    toml_path = project_root / "nbrelay.toml"
    data: dict = {}
    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)

    target = data.get("target", {})
    login = data.get("login", {})
    storage = data.get("storage", {})
    queue = data.get("queue", {})
    slack = data.get("slack", {})
    poll = data.get("poll", {})
    reaper = data.get("reaper", {})
    auth = data.get("auth", {})
    browser = data.get("browser", {})
    runtime = data.get("runtime", {})
    viewport = browser.get("viewport", [1920, 1080])

    cfg = Config(
        target_url=target.get("url", ""),
        profile=target.get("profile", "notebooklm-ja"),
        login_user=login.get("user", ""),
        login_password=login.get("password", ""),
        bucket=storage.get("bucket", ""),
        state_key=storage.get("state_key", "chromium-contexts.json"),
        queue_url=queue.get("queue_url", ""),
        queue_wait_seconds=queue.get("wait_seconds", 20),
        visibility_timeout=queue.get("visibility_timeout", 0),
        on_error=queue.get("on_error", "drop"),
        webhook_url=slack.get("webhook_url", ""),
        api_key=slack.get("api_key", ""),
        poll_max_attempts=poll.get("max_attempts", 30),
        poll_interval_ms=poll.get("interval_ms", 500),
        reaper_cron=reaper.get("cron", "0 */5 * * *"),
        reaper_timezone=reaper.get("timezone", "Asia/Tokyo"),
        session_ttl_hours=reaper.get("ttl_hours", 12),
        idle_policy=reaper.get("idle_policy", "created"),
        auth_grace_seconds=auth.get("grace_seconds", 60),
        persist_unverified=auth.get("persist_unverified", False),
        headless=browser.get("headless", True),
        locale=browser.get("locale", "ja"),
        viewport_width=viewport[0],
        viewport_height=viewport[1],
        runtime_dir=Path(runtime.get("dir", "/tmp/nbrelay")),
        debug_snapshots=runtime.get("debug_snapshots", True),
    )

    for field_name, env_key in _ENV_KEYS.items():
        value = environ.get(env_key)
        if value:
            setattr(cfg, field_name, value)

    _validate(cfg)
    return cfg


def _validate(cfg: Config) -> None:
    get_profile(cfg.profile)
    if cfg.poll_max_attempts < 1:
        raise ValueError("nbrelay.toml [poll] max_attempts must be >= 1.")
    if cfg.poll_interval_ms <= 0:
        raise ValueError("nbrelay.toml [poll] interval_ms must be > 0.")
    if cfg.session_ttl_hours <= 0:
        raise ValueError("nbrelay.toml [reaper] ttl_hours must be > 0.")
    for field_name, allowed in _POLICY_NAMES.items():
        value = getattr(cfg, field_name)
        if value not in allowed:
            raise ValueError(
                f"nbrelay.toml {field_name} must be one of {', '.join(allowed)}; got {value!r}."
            )
    if not croniter.is_valid(cfg.reaper_cron):
        raise ValueError(f"nbrelay.toml [reaper] cron is not a valid expression: {cfg.reaper_cron!r}")
