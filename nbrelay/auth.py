"""Login bootstrap for the shared browser context.

Runs once at worker start:

1. ``load_state()`` reads the persisted storage state so the context can be
   created with it (absence is normal and just means a login is needed).
2. ``ensure_authenticated()`` opens the target app and, if the login form
   shows up, performs the identity/password steps and then hands over to a
   human for the second factor: a screenshot is posted to Slack and the
   worker waits for a fixed grace window.
3. After the window the app is reloaded; if the login form is gone the
   context state is written back to blob storage.

Failures here are fatal for the process; there is no re-login mid-run.
"""
from __future__ import annotations

import enum
import json
import logging

from nbrelay.storage import BlobStore, upload_snapshot
from nbrelay.target import TargetProfile

log = logging.getLogger(__name__)


class AuthenticationError(RuntimeError):
    """Raised when the login flow cannot complete."""


class AuthState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    RESTORED = "restored"  # persisted state loaded, not yet probed
    AWAITING_MANUAL_VERIFICATION = "awaiting_manual_verification"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"


class AuthManager:
    """Authenticate the shared context and persist its login state."""

    def __init__(
        self,
        shared,
        store: BlobStore,
        notifier,
        profile: TargetProfile,
        target_url: str,
        user: str,
        password: str,
        state_key: str = "chromium-contexts.json",
        grace_seconds: float = 60,
        persist_unverified: bool = False,
        debug_snapshots: bool = True,
    ) -> None:
        self.shared = shared
        self.store = store
        self.notifier = notifier
        self.profile = profile
        self.target_url = target_url
        self.user = user
        self.password = password
        self.state_key = state_key
        self.grace_seconds = grace_seconds
        self.persist_unverified = persist_unverified
        self.debug_snapshots = debug_snapshots

        self.state = AuthState.UNAUTHENTICATED
        self.restored = False

    async def load_state(self) -> dict | None:
        """Return the persisted storage state, or None if there is none usable."""
        body = await self.store.get(self.state_key)
        if body is None:
            log.info("No persisted browser state under %s; login required", self.state_key)
            return None
        try:
            state = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            log.warning("Persisted browser state %s is not valid JSON; ignoring", self.state_key)
            return None
        if not isinstance(state, dict):
            log.warning("Persisted browser state %s is not a JSON object; ignoring", self.state_key)
            return None
        self.restored = True
        self.state = AuthState.RESTORED
        log.info("Loaded persisted browser state from %s", self.state_key)
        return state

    async def ensure_authenticated(self) -> AuthState:
        """Make sure the shared context is logged in to the target app.

        Idempotent: returns immediately once the state is VERIFIED.
        """
        if self.state is AuthState.VERIFIED:
            return self.state

        surface = await self.shared.open_surface()
        try:
            await surface.navigate(self.target_url)
            await surface.wait_settled()

            if not await surface.exists(self.profile.login_probe):
                log.info("Already authenticated (restored=%s)", self.restored)
                self.state = AuthState.VERIFIED
                return self.state

            await self._login(surface)
            await self._await_manual_verification(surface)
            await self._verify(surface)

            if self.state is AuthState.VERIFIED:
                await self.persist()
            elif self.persist_unverified:
                log.error("Manual verification not confirmed; persisting state anyway")
                await self.persist()
            else:
                raise AuthenticationError(
                    f"Login form still present after {self.grace_seconds:g}s verification window"
                )
            return self.state
        finally:
            if self.debug_snapshots:
                try:
                    await upload_snapshot(self.store, surface, "screenshot/initialized")
                except Exception as exc:
                    log.warning("Bootstrap snapshot failed: %s", exc)
            await surface.close()

    async def persist(self) -> str:
        """Write the context's storage state to blob storage."""
        body = await self.shared.export_state()
        uri = await self.store.put(self.state_key, body, "application/json")
        log.info("Persisted browser state to %s", uri)
        return uri

    # -- Login steps -----------------------------------------------------------

    async def _login(self, surface) -> None:
        log.info("Login form detected; signing in as %s", self.user)
        await surface.fill(self.profile.identity_field, self.user)
        await self._click_next(surface)
        await surface.wait_settled()

        await surface.wait_for(self.profile.credential_field)
        await surface.fill(self.profile.credential_field, self.password)
        await self._click_next(surface)

    async def _click_next(self, surface) -> None:
        if not await surface.click_by_label(self.profile.next_label):
            raise AuthenticationError(f"No button labelled {self.profile.next_label!r}")

    async def _await_manual_verification(self, surface) -> None:
        self.state = AuthState.AWAITING_MANUAL_VERIFICATION
        log.info("Waiting %gs for manual verification", self.grace_seconds)
        snapshot_uri = await upload_snapshot(self.store, surface, "screenshot/auth")
        await self.notifier.alert(
            self.profile.verification_alert.format(
                grace_seconds=self.grace_seconds, snapshot_uri=snapshot_uri,
            )
        )
        await surface.sleep(self.grace_seconds * 1000)
        log.info("Manual verification window elapsed")

    async def _verify(self, surface) -> None:
        await surface.navigate(self.target_url)
        await surface.wait_settled()
        if await surface.exists(self.profile.login_probe):
            self.state = AuthState.VERIFICATION_FAILED
            log.error("Verification failed: login form still shown at %s", self.target_url)
        else:
            self.state = AuthState.VERIFIED
            log.info("Verification succeeded")
