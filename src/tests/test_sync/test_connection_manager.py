"""
Tests for ConnectionManager - room binding, backoff and auth handling.
"""

import asyncio
import logging

import pytest
from conftest import FakeConnector, settle, wait_until

from models.messages import AddMessage, RemoveMessage
from sync.config import SyncConfig
from sync.connection import ConnectionMetrics, ConnectionState, backoff_delay_ms
from sync.connection_manager import ConnectionManager

# =============================================================================
# Backoff policy
# =============================================================================


class TestBackoffDelay:
    """Test the exponential backoff formula."""

    def test_reference_sequence(self):
        """Attempts 1..6 give 4s, 8s, 16s then the 30s cap."""
        delays = [backoff_delay_ms(n) for n in range(1, 7)]

        assert delays == [4000, 8000, 16000, 30000, 30000, 30000]

    def test_zero_attempts_no_delay(self):
        assert backoff_delay_ms(0) == 0

    def test_huge_attempt_count_stays_capped(self):
        assert backoff_delay_ms(10_000) == 30000

    def test_custom_base_and_cap(self):
        assert [backoff_delay_ms(n, 100, 1000) for n in range(1, 5)] == [200, 400, 800, 1000]


class TestConnectionMetrics:
    def test_initial_metrics_are_zeroed(self):
        metrics = ConnectionMetrics()

        assert metrics.to_dict() == {
            "connection_attempts": 0,
            "messages_received": 0,
            "malformed_messages": 0,
            "ignored_messages": 0,
            "dropped_sends": 0,
            "reconnects_scheduled": 0,
            "last_connected_time": None,
            "last_close_code": None,
        }


# =============================================================================
# Binding and handshake
# =============================================================================


def _manager(config, connector):
    return ConnectionManager(config, connect_factory=connector)


class TestBinding:
    """Test bind / join handshake."""

    def test_initial_state_is_idle(self, sync_config, connector):
        manager = _manager(sync_config, connector)

        assert manager.state == ConnectionState.IDLE
        assert manager.room is None
        assert manager.attempts == 0
        assert manager.pending_timer is False

    def test_bind_requires_room(self, sync_config, connector):
        manager = _manager(sync_config, connector)

        with pytest.raises(ValueError):
            manager.bind("")

    @pytest.mark.asyncio
    async def test_bind_sends_join(self, sync_config, connector):
        """Opening the transport sends join with the room key and version 0."""
        manager = _manager(sync_config, connector)

        manager.bind("lobby")
        await settle()

        assert connector.urls == ["ws://test/ws"]
        assert connector.last.messages == [{"type": "join", "key": "lobby", "version": 0}]
        assert manager.state == ConnectionState.CONNECTING
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_join_carries_credential(self, sync_config, connector):
        manager = _manager(sync_config, connector)

        manager.bind("vip", credential="tok-1")
        await settle()

        assert connector.last.messages[0]["token"] == "tok-1"
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_sync_opens_connection(self, sync_config, connector):
        """First sync moves CONNECTING -> OPEN and emits the history."""
        manager = _manager(sync_config, connector)
        histories = []
        states = []
        manager.on("sync", histories.append)
        manager.on("state", lambda old, new: states.append(new))

        manager.bind("lobby")
        await settle()
        connector.last.feed({"type": "sync", "key": "lobby", "history": [1, "00", 0]})
        await settle()

        assert manager.state == ConnectionState.OPEN
        assert histories == [[1, "00", 0]]
        assert states == [ConnectionState.CONNECTING, ConnectionState.OPEN]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_sync_without_history_is_empty(self, sync_config, connector):
        """Servers that omit an empty history still sync to []."""
        manager = _manager(sync_config, connector)
        histories = []
        manager.on("sync", histories.append)

        manager.bind("lobby")
        await settle()
        connector.last.feed({"type": "sync", "key": "lobby"})
        await settle()

        assert histories == [[]]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_rebind_tears_down_previous_binding(self, sync_config, connector):
        manager = _manager(sync_config, connector)

        manager.bind("a")
        await settle()
        first = connector.last
        manager.bind("b")
        await settle()

        assert first.closed_with == (1000, "Client rebinding")
        assert connector.last.messages[0]["key"] == "b"
        assert manager.room == "b"
        await manager.aclose()


# =============================================================================
# Inbound dispatch
# =============================================================================


class TestInbound:
    """Test decoding and filtering of server frames."""

    @pytest.mark.asyncio
    async def test_add_and_remove_events(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        events = []
        manager.on("add", lambda number, nonce: events.append(("add", number, nonce)))
        manager.on("remove", lambda index, nonce: events.append(("remove", index, nonce)))

        manager.bind("lobby")
        await settle()
        connector.last.feed({"type": "sync", "history": []})
        connector.last.feed({"type": "add", "key": "lobby", "number": 17, "nonce": "n1"})
        connector.last.feed({"type": "remove", "key": "lobby", "index": 0})
        await settle()

        assert events == [("add", 17, "n1"), ("remove", 0, None)]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_other_room_messages_ignored(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        events = []
        manager.on("add", lambda number, nonce: events.append(number))

        manager.bind("lobby")
        await settle()
        connector.last.feed({"type": "add", "key": "elsewhere", "number": 3})
        await settle()

        assert events == []
        assert manager.get_metrics().ignored_messages == 1
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_malformed_frames_discarded(self, sync_config, connector, caplog):
        """Bad JSON and bad shapes are dropped without touching state."""
        manager = _manager(sync_config, connector)
        events = []
        manager.on("*", lambda event, *args: events.append(event))

        manager.bind("lobby")
        await settle()
        connector.last.feed({"type": "sync", "history": []})
        await settle()
        events.clear()

        with caplog.at_level(logging.WARNING):
            connector.last.feed("{not json")
            connector.last.feed({"type": "add", "number": 99})
            connector.last.feed({"type": "teleport"})
            await settle()

        assert events == []
        assert manager.state == ConnectionState.OPEN
        assert manager.get_metrics().malformed_messages == 3
        assert "malformed" in caplog.text
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_error_message_emitted(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        errors = []
        manager.on("error", errors.append)

        manager.bind("lobby")
        await settle()
        connector.last.feed({"type": "error", "error": "index out of range"})
        await settle()

        assert errors == ["index out of range"]
        assert manager.state == ConnectionState.CONNECTING
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_listener_exception_does_not_break_dispatch(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        received = []

        def broken(history):
            raise RuntimeError("boom")

        manager.on("sync", broken)
        manager.on("sync", received.append)

        manager.bind("lobby")
        await settle()
        connector.last.feed({"type": "sync", "history": [4]})
        await settle()

        assert received == [[4]]
        assert manager.state == ConnectionState.OPEN
        await manager.aclose()


# =============================================================================
# Reconnection
# =============================================================================


async def _open(manager, connector, room="lobby"):
    manager.bind(room)
    await settle()
    connector.last.feed({"type": "sync", "history": []})
    await settle()


class TestReconnect:
    """Test closure handling and backoff scheduling."""

    @pytest.mark.asyncio
    async def test_abnormal_close_schedules_backoff(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        scheduled = []
        manager.on("reconnect_scheduled", lambda attempt, delay: scheduled.append((attempt, delay)))
        await _open(manager, connector)

        connector.last.drop(1006)
        await settle()

        assert manager.state == ConnectionState.RECONNECTING
        assert manager.attempts == 1
        assert manager.last_delay_ms == 4000
        assert manager.pending_timer is True
        assert scheduled == [(1, 4000)]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_second_close_keeps_single_timer(self, sync_config, connector):
        """A second closure before the timer fires does not add a timer."""
        manager = _manager(sync_config, connector)
        await _open(manager, connector)

        connector.last.drop(1006)
        await settle()
        timer = manager._reconnect_timer

        manager._on_close(manager.generation, 1006, "duplicate")

        assert manager._reconnect_timer is timer
        assert not timer.cancelled()
        assert manager.attempts == 1
        assert manager.get_metrics().reconnects_scheduled == 1
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_normal_close_does_not_reconnect(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        await _open(manager, connector)

        connector.last.drop(1000)
        await settle()

        assert manager.state == ConnectionState.CLOSED
        assert manager.pending_timer is False
        assert manager.attempts == 0
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_server_forced_reconnect_code_backs_off(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        await _open(manager, connector)

        connector.last.drop(4000)
        await settle()

        assert manager.state == ConnectionState.RECONNECTING
        assert manager.attempts == 1
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_connect_failure_counts_as_abnormal(self, sync_config):
        connector = FakeConnector(always_fail=True)
        manager = _manager(sync_config, connector)

        manager.bind("lobby")
        await settle()

        assert manager.state == ConnectionState.RECONNECTING
        assert manager.get_metrics().last_close_code == 1006
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_backoff_grows_until_cap(self):
        """Repeated failures follow delay(n) = min(base * 2**n, cap)."""
        config = SyncConfig(ws_url="ws://test/ws", base_interval_ms=1, max_delay_ms=8)
        manager = ConnectionManager(config, connect_factory=FakeConnector(always_fail=True))
        delays = []
        manager.on("reconnect_scheduled", lambda attempt, delay: delays.append(delay))

        manager.bind("lobby")
        await wait_until(lambda: len(delays) >= 5)
        await manager.aclose()

        assert delays[:5] == [2, 4, 8, 8, 8]

    @pytest.mark.asyncio
    async def test_sync_resets_attempts(self):
        config = SyncConfig(ws_url="ws://test/ws", base_interval_ms=1, max_delay_ms=4)
        connector = FakeConnector(failures=2)
        manager = ConnectionManager(config, connect_factory=connector)

        manager.bind("lobby")
        await wait_until(lambda: len(connector.transports) == 1)
        assert manager.attempts == 2

        connector.last.feed({"type": "sync", "history": [7]})
        await settle()

        assert manager.state == ConnectionState.OPEN
        assert manager.attempts == 0
        assert manager.last_delay_ms is None
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_force_reconnect_cancels_timer(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        await _open(manager, connector)
        connector.last.drop(1006)
        await settle()
        timer = manager._reconnect_timer

        manager.force_reconnect()
        await settle()

        assert timer.cancelled()
        assert manager.attempts == 0
        assert len(connector.transports) == 2
        assert manager.state == ConnectionState.CONNECTING
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_force_reconnect_ignores_old_transport_closure(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        await _open(manager, connector)
        old = connector.last

        manager.force_reconnect()
        await settle()

        assert old.closed_with == (4000, "Manual reconnect")
        assert manager.pending_timer is False
        assert manager.state == ConnectionState.CONNECTING
        assert connector.last is not old
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_unbind_is_deliberate(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        await _open(manager, connector)
        transport = connector.last

        manager.unbind()
        await settle()

        assert transport.closed_with == (1000, "Client unbinding")
        assert manager.state == ConnectionState.CLOSED
        assert manager.room is None
        assert manager.pending_timer is False

    @pytest.mark.asyncio
    async def test_unbind_cancels_pending_timer(self):
        config = SyncConfig(ws_url="ws://test/ws", base_interval_ms=5, max_delay_ms=5)
        connector = FakeConnector(always_fail=True)
        manager = ConnectionManager(config, connect_factory=connector)

        manager.bind("lobby")
        await settle()
        assert manager.pending_timer is True

        manager.unbind()
        await asyncio.sleep(0.03)

        assert len(connector.urls) == 1
        assert manager.state == ConnectionState.CLOSED


# =============================================================================
# Authentication
# =============================================================================


class TestAuthRequired:
    """Test the auth-required path."""

    @pytest.mark.asyncio
    async def test_auth_required_parks_binding(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        errors = []
        manager.on("auth_required", errors.append)

        manager.bind("vip")
        await settle()
        connector.last.feed({"type": "authRequired", "key": "vip"})
        await settle()

        assert manager.state == ConnectionState.AWAITING_AUTH
        assert errors == [None]
        assert connector.last.closed_with == (1000, "Awaiting auth")
        assert manager.pending_timer is False
        assert manager.attempts == 0
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_repeated_auth_failures_do_not_consume_retries(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        manager.bind("vip")
        await settle()

        for i in range(5):
            connector.last.feed({"type": "authRequired", "error": "invalid token"})
            await settle()
            assert manager.state == ConnectionState.AWAITING_AUTH
            manager.set_credential(f"bad-{i}")
            await settle()

        assert manager.attempts == 0
        assert manager.pending_timer is False
        assert manager.get_metrics().reconnects_scheduled == 0
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_credential_reconnects_with_token(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        manager.bind("vip")
        await settle()
        connector.last.feed({"type": "authRequired"})
        await settle()

        manager.set_credential("good")
        await settle()

        assert manager.state == ConnectionState.CONNECTING
        assert connector.last.messages[0] == {
            "type": "join",
            "key": "vip",
            "token": "good",
            "version": 0,
        }

        connector.last.feed({"type": "sync", "history": [2]})
        await settle()
        assert manager.state == ConnectionState.OPEN
        await manager.aclose()


# =============================================================================
# Outbound
# =============================================================================


class TestSend:
    """Test outbound mutations."""

    @pytest.mark.asyncio
    async def test_send_dropped_when_not_open(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        manager.bind("lobby")
        await settle()

        assert manager.send(AddMessage(number=5)) is False
        assert manager.get_metrics().dropped_sends == 1
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_send_stamps_room_and_token(self, sync_config, connector):
        manager = _manager(sync_config, connector)
        manager.bind("lobby", credential="tok")
        await settle()
        connector.last.feed({"type": "sync", "history": []})
        await settle()

        assert manager.send(AddMessage(number="00", nonce="abc")) is True
        assert manager.send(RemoveMessage(index=0)) is True
        await settle()

        assert connector.last.messages[1:] == [
            {"type": "add", "key": "lobby", "token": "tok", "number": "00", "nonce": "abc"},
            {"type": "remove", "key": "lobby", "token": "tok", "index": 0},
        ]
        await manager.aclose()
