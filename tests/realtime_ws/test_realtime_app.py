# tests/realtime_ws/test_realtime_app.py
"""
Тесты для Realtime WebSocket Gateway.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import asyncpg
import pytest
from fastapi.testclient import TestClient

from bus_tracker.common.constants import BusStatus
from bus_tracker.core.tracking.reconciliation import (
    BusSelected,
    InitialFetchFailed,
    InitialFetchResolved,
    LiveViewState,
    reconcile,
)
from bus_tracker.services.realtime_ws import app as gateway
from bus_tracker.services.realtime_ws.connection_manager import ConnectionManager, bus_topic

BUS_ID = "11111111-1111-1111-1111-111111111111"
OTHER_BUS_ID = "22222222-2222-2222-2222-222222222222"


@pytest.fixture
def manager(monkeypatch) -> ConnectionManager:
    fresh = ConnectionManager()
    monkeypatch.setattr(gateway, "manager", fresh)
    return fresh


@pytest.fixture
def repository(active_bus, make_record) -> AsyncMock:
    repo = AsyncMock()
    repo.get_bus.return_value = active_bus
    repo.get_latest_location.return_value = make_record(100)
    return repo


def sent_types(ws: AsyncMock) -> list[str]:
    return [call.args[0]["type"] for call in ws.send_json.await_args_list]


class TestRenderState:
    """Тесты отображения состояния в сообщение клиенту."""

    def test_idle(self) -> None:
        assert gateway.render_state(LiveViewState()) == {"type": "idle"}

    def test_loading_no_data_error(self) -> None:
        loading = reconcile(LiveViewState(), BusSelected(BUS_ID))
        assert gateway.render_state(loading) == {"type": "loading", "bus_id": BUS_ID}

        no_data = reconcile(loading, InitialFetchResolved(BUS_ID, None))
        assert gateway.render_state(no_data) == {"type": "no_data", "bus_id": BUS_ID}

        error = reconcile(loading, InitialFetchFailed(BUS_ID, "Failed to load bus location"))
        assert gateway.render_state(error) == {
            "type": "error", "bus_id": BUS_ID, "message": "Failed to load bus location",
        }

    def test_marker(self, make_record) -> None:
        state = reconcile(LiveViewState(), BusSelected(BUS_ID))
        state = reconcile(state, InitialFetchResolved(BUS_ID, make_record(100, latitude=50.0)))

        message = gateway.render_state(state)

        assert message["type"] == "marker"
        assert message["marker"]["latitude"] == 50.0
        assert message["marker"]["bus_status"] == "active"
        assert message["bus_number"] is None
        assert message["feed_connected"] is True


class TestSelectBus:
    """Тесты выбора автобуса пассажиром."""

    @pytest.mark.asyncio
    async def test_select_sends_loading_then_marker(self, manager, repository) -> None:
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")

        await gateway.select_bus(conn, BUS_ID, repository)

        assert sent_types(ws) == ["loading", "marker"]
        marker_message = ws.send_json.await_args.args[0]
        assert marker_message["bus_number"] == "B-101"
        assert manager.get_topic_subscribers(bus_topic(BUS_ID)) == {"user-1"}

    @pytest.mark.asyncio
    async def test_no_history_is_no_data(self, manager, repository) -> None:
        repository.get_latest_location.return_value = None
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")

        await gateway.select_bus(conn, BUS_ID, repository)

        assert sent_types(ws) == ["loading", "no_data"]

    @pytest.mark.asyncio
    async def test_fetch_failure_is_error(self, manager, repository) -> None:
        repository.get_latest_location.side_effect = asyncpg.PostgresError("timeout")
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")

        await gateway.select_bus(conn, BUS_ID, repository)

        last = ws.send_json.await_args.args[0]
        assert last == {"type": "error", "bus_id": BUS_ID, "message": "Failed to load bus location"}

    @pytest.mark.asyncio
    async def test_unknown_bus(self, manager, repository) -> None:
        repository.get_bus.return_value = None
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")

        await gateway.select_bus(conn, BUS_ID, repository)

        assert ws.send_json.await_args.args[0]["message"] == "Bus not found"

    @pytest.mark.asyncio
    async def test_reselect_moves_subscription(self, manager, repository) -> None:
        conn = await manager.connect(AsyncMock(), "user-1")
        await gateway.select_bus(conn, BUS_ID, repository)

        await gateway.select_bus(conn, None, repository)

        assert conn.subscriptions == set()
        assert conn.view.state == LiveViewState()


class TestHandleChange:
    """Тесты обработки событий канала изменений."""

    @pytest.mark.asyncio
    async def test_location_insert_updates_subscriber(self, manager, repository, make_record) -> None:
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")
        await gateway.select_bus(conn, BUS_ID, repository)

        newer = make_record(200, latitude=48.0)
        await gateway.handle_change("changes:bus_locations", {
            "table": "bus_locations",
            "operation": "INSERT",
            "new_row": newer.model_dump(mode="json"),
        })

        last = ws.send_json.await_args.args[0]
        assert last["marker"]["latitude"] == 48.0

    @pytest.mark.asyncio
    async def test_other_bus_not_delivered(self, manager, repository, make_record) -> None:
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")
        await gateway.select_bus(conn, BUS_ID, repository)
        sent_before = ws.send_json.await_count

        await gateway.handle_change("changes:bus_locations", {
            "table": "bus_locations",
            "operation": "INSERT",
            "new_row": make_record(200, bus_id=OTHER_BUS_ID).model_dump(mode="json"),
        })

        assert ws.send_json.await_count == sent_before

    @pytest.mark.asyncio
    async def test_bus_update(self, manager, repository, active_bus) -> None:
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")
        await gateway.select_bus(conn, BUS_ID, repository)

        await gateway.handle_change("changes:buses", {
            "table": "buses",
            "operation": "UPDATE",
            "new_row": active_bus.model_copy(update={"status": BusStatus.MAINTENANCE}).model_dump(mode="json"),
        })

        assert ws.send_json.await_args.args[0]["marker"]["bus_status"] == "maintenance"

    @pytest.mark.asyncio
    async def test_malformed_event_ignored(self, manager) -> None:
        await gateway.handle_change("changes:bus_locations", {"table": "unknown"})

    @pytest.mark.asyncio
    async def test_drop_keeps_marker(self, manager, repository) -> None:
        ws = AsyncMock()
        conn = await manager.connect(ws, "user-1")
        await gateway.select_bus(conn, BUS_ID, repository)

        await gateway.handle_drop("connection reset")

        last = ws.send_json.await_args.args[0]
        assert last["type"] == "marker"
        assert last["feed_connected"] is False


class TestPassengerWebSocket:
    """Тесты WebSocket пассажира."""

    @pytest.fixture
    def client(self, manager, repository) -> TestClient:
        gateway.set_repository(repository)
        yield TestClient(gateway.app)
        gateway.set_repository(None)

    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json()["status"] == "healthy"

    def test_bus_id_query_selects_immediately(self, client: TestClient) -> None:
        with client.websocket_connect(f"/ws/passenger/user-1?bus_id={BUS_ID}") as ws:
            assert ws.receive_json()["type"] == "loading"
            assert ws.receive_json()["type"] == "marker"

    def test_select_and_ping(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/passenger/user-1") as ws:
            ws.send_json({"action": "select_bus", "bus_id": BUS_ID})
            assert ws.receive_json()["type"] == "loading"
            assert ws.receive_json()["type"] == "marker"

            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"action": "fly"})
            assert ws.receive_json()["type"] == "error"

    def test_stats_after_disconnect(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/passenger/user-1") as ws:
            ws.send_json({"action": "ping"})
            ws.receive_json()

        stats = client.get("/stats").json()
        assert stats["total_connections_ever"] == 1
        assert stats["subscription_drops"] == 0
        assert stats["changes_received"] == 0

    @pytest.mark.parametrize("payload", [[BUS_ID], "select_bus", 7, None])
    def test_non_object_message(self, client: TestClient, payload) -> None:
        """Сообщение, которое не является JSON-объектом, не рвёт соединение."""
        with client.websocket_connect("/ws/passenger/user-1") as ws:
            ws.send_json(payload)
            assert ws.receive_json()["type"] == "error"

            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}
