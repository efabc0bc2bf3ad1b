"""Tests for relay.py — command dispatch, single bounded retry, skip conditions."""
import asyncio

import pytest

from ecobee_bridge.models.auth import ResponseAction
from ecobee_bridge.relay import CommandKind, CommandRelay, PendingCommand
from ecobee_bridge.token_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY
from ecobee_bridge.utils.errors import TransportError, VendorAuthError

EXPIRED = {"status": {"code": 14, "message": "Authentication token has expired."}}
OK = {"status": {"code": 0, "message": ""}}


@pytest.fixture
def relay(fake_config, auth, mock_client, health):
    return CommandRelay(fake_config, auth, mock_client, health)


@pytest.fixture
def authed(fake_redis):
    fake_redis.data[ACCESS_TOKEN_KEY] = "access-0"
    fake_redis.data[REFRESH_TOKEN_KEY] = "refresh-0"
    return fake_redis


# ── topic dispatch ───────────────────────────────────────────────────

def test_topics(relay):
    assert relay.topics == {
        "/ecobee/mode/set": CommandKind.MODE,
        "/ecobee/hvac/set": CommandKind.HVAC,
    }


@pytest.mark.asyncio
async def test_mode_topic_sets_hold(relay, authed, mock_client):
    await relay.handle_message("/ecobee/mode/set", b"away")
    mock_client.set_hold.assert_awaited_once_with("access-0", "away")
    mock_client.set_hvac_mode.assert_not_called()


@pytest.mark.asyncio
async def test_hvac_topic_sets_hvac_mode(relay, authed, mock_client):
    await relay.handle_message("/ecobee/hvac/set", b" heat\n")
    mock_client.set_hvac_mode.assert_awaited_once_with("access-0", "heat")
    mock_client.set_hold.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_topic_ignored(relay, authed, mock_client):
    await relay.handle_message("/ecobee/set/mode/extra", b"away")
    await relay.handle_message("/other/mode/set", b"away")
    mock_client.set_hold.assert_not_called()
    mock_client.set_hvac_mode.assert_not_called()


@pytest.mark.asyncio
async def test_empty_payload_ignored(relay, authed, mock_client):
    await relay.handle_message("/ecobee/mode/set", b"   ")
    mock_client.set_hold.assert_not_called()


# ── skip conditions ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_command_while_awaiting_pin_is_noop(relay, auth, mock_client):
    auth._pin_delay = 3600
    await auth.ensure_authenticated()

    result = await relay.submit(PendingCommand(kind=CommandKind.MODE, value="away"))

    assert result is None
    mock_client.set_hold.assert_not_called()
    auth.confirmation.cancel()


@pytest.mark.asyncio
async def test_command_without_tokens_is_noop(relay, mock_client):
    await relay.handle_message("/ecobee/mode/set", b"away")
    mock_client.set_hold.assert_not_called()
    mock_client.request_pin.assert_not_called()


@pytest.mark.asyncio
async def test_command_with_storage_down_is_noop(relay, authed, store, mock_client, health):
    authed.down = True
    store._connected = False
    await relay.handle_message("/ecobee/mode/set", b"away")
    mock_client.set_hold.assert_not_called()
    assert not health.is_healthy


@pytest.mark.asyncio
async def test_transport_error_drops_command(relay, authed, mock_client, health):
    mock_client.set_hold.side_effect = TransportError("connection reset")
    assert await relay.submit(PendingCommand(kind=CommandKind.MODE, value="home")) is None
    mock_client.set_hold.assert_awaited_once()
    assert not health.is_healthy


# ── retry ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_success_needs_no_retry(relay, authed, mock_client):
    action = await relay.submit(PendingCommand(kind=CommandKind.MODE, value="home"))
    assert action is ResponseAction.OK
    mock_client.set_hold.assert_awaited_once()
    mock_client.refresh.assert_not_called()


@pytest.mark.asyncio
async def test_expired_token_retries_once_with_new_token(relay, authed, mock_client):
    mock_client.set_hold.side_effect = [EXPIRED, OK]

    action = await relay.submit(PendingCommand(kind=CommandKind.MODE, value="sleep"))

    assert action is ResponseAction.REFRESHED
    assert mock_client.set_hold.await_count == 2
    first, second = mock_client.set_hold.await_args_list
    assert first.args == ("access-0", "sleep")
    assert second.args == ("access-2", "sleep")


@pytest.mark.asyncio
async def test_concurrent_expired_commands_are_both_retried(relay, authed, mock_client):
    async def set_hold(access_token, climate_ref):
        await asyncio.sleep(0)
        return EXPIRED if access_token == "access-0" else OK

    tokens = mock_client.refresh.return_value

    async def slow_refresh(refresh_token):
        await asyncio.sleep(0.05)
        return tokens

    mock_client.set_hold.side_effect = set_hold
    mock_client.refresh.side_effect = slow_refresh

    actions = await asyncio.gather(
        relay.submit(PendingCommand(kind=CommandKind.MODE, value="away")),
        relay.submit(PendingCommand(kind=CommandKind.MODE, value="home")),
    )

    assert actions == [ResponseAction.REFRESHED, ResponseAction.REFRESHED]
    mock_client.refresh.assert_awaited_once()
    calls = sorted(c.args for c in mock_client.set_hold.await_args_list)
    assert calls == [
        ("access-0", "away"), ("access-0", "home"),
        ("access-2", "away"), ("access-2", "home"),
    ]


@pytest.mark.asyncio
async def test_retry_is_never_retried(relay, authed, mock_client):
    mock_client.set_hvac_mode.side_effect = [EXPIRED, EXPIRED, OK, OK]

    await relay.submit(PendingCommand(kind=CommandKind.HVAC, value="cool"))

    assert mock_client.set_hvac_mode.await_count == 2


@pytest.mark.asyncio
async def test_failed_refresh_drops_command(relay, authed, mock_client):
    mock_client.set_hold.return_value = EXPIRED
    mock_client.refresh.side_effect = VendorAuthError("invalid_grant")

    action = await relay.submit(PendingCommand(kind=CommandKind.MODE, value="away"))

    assert action is ResponseAction.REFRESH_FAILED
    mock_client.set_hold.assert_awaited_once()
    assert authed.data == {}


@pytest.mark.asyncio
async def test_revoked_drops_command(relay, authed, mock_client, published):
    mock_client.set_hold.return_value = {"status": {"code": 16}}

    action = await relay.submit(PendingCommand(kind=CommandKind.MODE, value="away"))

    assert action is ResponseAction.REVOKED
    mock_client.set_hold.assert_awaited_once()
    mock_client.refresh.assert_not_called()
    assert authed.data == {}
    assert ("/ecobee/authorized", "0") in published()
