"""Token lifecycle for the ecobee API.

Handles PIN pairing, refresh-token rotation and the inline status codes
that signal an expired or revoked grant. Pollers and command relays only
ever ask "is there an access token"; everything else happens here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ecobee_bridge.client import EcobeeClient
from ecobee_bridge.config import Config
from ecobee_bridge.health import HealthReporter
from ecobee_bridge.models.auth import AuthState, ResponseAction, TokenPair, TokenStatus
from ecobee_bridge.token_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TokenStore
from ecobee_bridge.utils.errors import (
    MalformedResponseError,
    StorageUnavailableError,
    TransportError,
    VendorAuthError,
)

logger = logging.getLogger(__name__)

# Inline status codes: expired / invalid token, and revoked authorization
REAUTH_CODES = frozenset({1, 2, 14})
REVOKED_CODE = 16

Publisher = Callable[[str, object], Awaitable[bool]]
Continuation = Callable[[], Awaitable[None]]


def mask_token(token: str | None) -> str:
    """Show only the last four characters of a credential."""
    if not token:
        return "<none>"
    return f"...{token[-4:]}"


class AuthManager:
    """Owns the access/refresh token pair and the PIN pairing cycle."""

    def __init__(
        self,
        config: Config,
        store: TokenStore,
        client: EcobeeClient,
        publish: Publisher | None = None,
        health: HealthReporter | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._publish = publish
        self._health = health
        self._authorized_topic = f"{config.topic_root}/authorized"
        self._pin_delay = config.schedule.pin_confirm_delay

        self._pin_pending = False
        self._provisional_code: str | None = None
        self._refresh_task: asyncio.Task[bool] | None = None
        self.confirmation: asyncio.Task[None] | None = None

    @property
    def awaiting_pin(self) -> bool:
        return self._pin_pending

    async def store_ready(self) -> bool:
        """True if the token store is usable, reconnecting if needed."""
        if self._store.connected:
            return True
        return await self._store.connect()

    async def access_token(self) -> str | None:
        """Read the access token fresh from the store.

        Returns None while a PIN is pending; the stored value is only the
        provisional code then.
        """
        if self._pin_pending:
            return None
        return await self._store.get(ACCESS_TOKEN_KEY)

    async def get_state(self) -> AuthState:
        if self._pin_pending:
            return AuthState.AWAITING_PIN
        if await self._store.get(ACCESS_TOKEN_KEY):
            return AuthState.AUTHENTICATED
        return AuthState.UNAUTHENTICATED

    async def get_status(self) -> TokenStatus:
        """Token presence report for the CLI."""
        if not await self.store_ready():
            return TokenStatus(
                state=AuthState.UNAUTHENTICATED,
                has_access_token=False,
                has_refresh_token=False,
                store_connected=False,
            )
        pair = await self._store.load_pair()
        if self._pin_pending:
            state = AuthState.AWAITING_PIN
        elif pair.access_token:
            state = AuthState.AUTHENTICATED
        else:
            state = AuthState.UNAUTHENTICATED
        return TokenStatus(
            state=state,
            has_access_token=pair.access_token is not None,
            has_refresh_token=pair.refresh_token is not None,
        )

    # ── PIN pairing ───────────────────────────────────────────────────

    async def ensure_authenticated(self) -> AuthState:
        """Return AUTHENTICATED if an access token exists, else start pairing.

        Starting pairing requests a PIN, stores the interim code as the
        provisional access token and schedules a single confirmation after
        the vendor's minimum wait. Only one pairing cycle runs at a time.

        Raises:
            StorageUnavailableError: If the token store cannot be read.
        """
        if self._pin_pending:
            return AuthState.AWAITING_PIN
        if await self._store.get(ACCESS_TOKEN_KEY):
            return AuthState.AUTHENTICATED
        if self._pin_pending:
            return AuthState.AWAITING_PIN

        self._pin_pending = True
        try:
            pin = await self._client.request_pin()
            await self._store.save_pair(TokenPair(access_token=pin.code))
        except (TransportError, VendorAuthError, MalformedResponseError, StorageUnavailableError) as e:
            logger.error(f"PIN request failed: {e}")
            self._pin_pending = False
            self._unhealthy()
            return AuthState.UNAUTHENTICATED

        self._provisional_code = pin.code
        self._log_pin_banner(pin.pin)
        self._healthy()
        self.confirmation = asyncio.create_task(self._confirm_pin(pin.code))
        return AuthState.AWAITING_PIN

    async def _confirm_pin(self, code: str) -> None:
        """Exchange the provisional code for real tokens after the PIN delay."""
        await asyncio.sleep(self._pin_delay)

        if not self._pin_pending or self._provisional_code != code:
            logger.debug("Stale PIN confirmation, ignoring")
            return

        try:
            if await self._store.get(ACCESS_TOKEN_KEY) != code:
                logger.info("Tokens changed while waiting for PIN, skipping confirmation")
                return

            logger.info("... querying tokens")
            try:
                tokens = await self._client.exchange_pin(code)
            except (TransportError, VendorAuthError, MalformedResponseError) as e:
                logger.error(f"PIN confirmation failed: {e}")
                await self._store.clear()
                await self._publish_authorized(0)
                self._unhealthy()
                return

            await self._store.save_pair(tokens.to_pair())
            logger.info(
                f"Loaded tokens - refresh token: {mask_token(tokens.refresh_token)}  "
                f"access token: {mask_token(tokens.access_token)}"
            )
            await self._publish_authorized(1)
            self._healthy()
        except StorageUnavailableError as e:
            logger.error(f"PIN confirmation could not use the token store: {e}")
            self._unhealthy()
        finally:
            if self._provisional_code == code:
                self._provisional_code = None
                self._pin_pending = False

    @staticmethod
    def _log_pin_banner(pin: str) -> None:
        lines = [
            "=" * 60,
            "=     ecobee PIN setup",
            "=",
            f"=        ecobee PIN: {pin}",
            "=",
            "=        Add the app under My Apps in the ecobee portal.",
            "=        Tokens will be requested shortly...",
            "=" * 60,
        ]
        for line in lines:
            logger.warning(line)

    # ── response codes and refresh ────────────────────────────────────

    async def handle_api_response_code(
        self,
        code: int | None,
        on_success: Continuation | None = None,
    ) -> ResponseAction:
        """React to an inline vendor status code.

        Codes 1, 2 and 14 trigger a token refresh; ``on_success`` runs only
        if that refresh succeeds. Code 16 clears both tokens so the next
        poll starts pairing again. Everything else is a no-op.
        """
        if code is None or code == 0:
            return ResponseAction.OK

        if code in REAUTH_CODES:
            logger.info(f"API reported status {code}, refreshing tokens")
            if await self.refresh_tokens(on_success):
                return ResponseAction.REFRESHED
            return ResponseAction.REFRESH_FAILED

        if code == REVOKED_CODE:
            logger.warning("Authorization revoked by ecobee, clearing tokens")
            try:
                await self._store.clear()
            except StorageUnavailableError as e:
                logger.error(f"Could not clear revoked tokens: {e}")
            await self._publish_authorized(0)
            self._unhealthy()
            return ResponseAction.REVOKED

        logger.debug(f"API status {code} needs no auth action")
        return ResponseAction.IGNORED

    async def refresh_tokens(self, on_success: Continuation | None = None) -> bool:
        """Rotate the token pair using the stored refresh token.

        Both tokens are replaced together. A vendor rejection clears both; a
        network failure keeps them for the next attempt. Any failure
        publishes ``authorized=0``.

        Callers arriving while a refresh is in flight wait for that refresh
        instead of starting another, and their ``on_success`` runs if it
        succeeded.

        Returns:
            True if new tokens were stored.
        """
        if self._pin_pending:
            logger.debug("PIN pairing in progress, not refreshing")
            return False

        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._rotate_tokens())
            self._refresh_task = task
        else:
            logger.debug("Token refresh already in flight, waiting for it")

        if not await asyncio.shield(task):
            return False
        if on_success is not None:
            await on_success()
        return True

    async def _rotate_tokens(self) -> bool:
        try:
            refresh_token = await self._store.get(REFRESH_TOKEN_KEY)
            if refresh_token is None:
                logger.warning("No refresh token available, dropping access token")
                await self._store.delete(ACCESS_TOKEN_KEY)
                return False

            logger.info("Renewing tokens")
            try:
                tokens = await self._client.refresh(refresh_token)
            except (TransportError, MalformedResponseError) as e:
                logger.warning(f"Token refresh failed, will retry: {e}")
                await self._publish_authorized(0)
                self._unhealthy()
                return False
            except VendorAuthError as e:
                logger.error(f"Token refresh rejected: {e}")
                await self._store.clear()
                await self._publish_authorized(0)
                self._unhealthy()
                return False

            await self._store.save_pair(tokens.to_pair())
            logger.info(
                f"Reloaded tokens - refresh token: {mask_token(tokens.refresh_token)}  "
                f"access token: {mask_token(tokens.access_token)}"
            )
            await self._publish_authorized(1)
            self._healthy()
            return True
        except StorageUnavailableError as e:
            logger.warning(f"Token refresh skipped: {e}")
            self._unhealthy()
            return False
        finally:
            self._refresh_task = None

    async def has_refresh_token(self) -> bool:
        """True if a refresh token is stored and no PIN is pending."""
        if self._pin_pending or not await self.store_ready():
            return False
        return await self._store.get(REFRESH_TOKEN_KEY) is not None

    async def reset(self) -> None:
        """Forget both tokens so the next poll starts PIN pairing."""
        await self._store.clear()
        self._pin_pending = False
        self._provisional_code = None

    # ── signals ───────────────────────────────────────────────────────

    async def _publish_authorized(self, value: int) -> None:
        if self._publish is not None:
            await self._publish(self._authorized_topic, value)

    def _healthy(self) -> None:
        if self._health is not None:
            self._health.healthy()

    def _unhealthy(self) -> None:
        if self._health is not None:
            self._health.unhealthy()

    async def close(self) -> None:
        """Close the HTTP client and token store connection."""
        await self._client.close()
        await self._store.close()
