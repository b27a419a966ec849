# bus_tracker/services/realtime_ws/app.py
"""
FastAPI приложение Realtime WebSocket Gateway для пассажиров.

WebSocket /ws/passenger/{user_id}?bus_id=...
Входящие сообщения:
- {"action": "select_bus", "bus_id": "..."} (bus_id=null — снять выбор)
- {"action": "ping"}
Исходящие:
- {"type": "marker", ...} — местоположение выбранного автобуса
- {"type": "loading" | "no_data" | "error" | "idle", ...}

REST:
- GET /health
- GET /stats
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import asyncpg
from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from bus_tracker import __version__
from bus_tracker.common.constants import ChangeTable, TypeMsg
from bus_tracker.common.logger import log_info, log_warning, setup_logging
from bus_tracker.core.tracking.reconciliation import (
    BusChanged,
    BusSelected,
    InitialFetchFailed,
    InitialFetchResolved,
    LiveViewState,
    LocationPushed,
    SubscriptionDropped,
    ViewStatus,
)
from bus_tracker.services.realtime_ws.connection_manager import ConnectionInfo, bus_topic, manager
from bus_tracker.services.realtime_ws.redis_subscriber import RedisSubscriber
from bus_tracker.services.tracking.repository import BusRepository
from bus_tracker.shared.events.change_events import ChangeEvent
from bus_tracker.shared.models.bus import BusSnapshot, LocationRecord
from bus_tracker.shared.models.common import HealthStatus

SERVICE_NAME = "realtime_ws_gateway"

FETCH_ERROR_MESSAGE = "Failed to load bus location"
BUS_NOT_FOUND_MESSAGE = "Bus not found"


class StatsResponse(BaseModel):
    active_connections: int
    total_topics: int
    total_connections_ever: int
    total_messages_sent: int
    subscription_drops: int
    changes_received: int


# === REPOSITORY SINGLETON ===

_repository: BusRepository | None = None
_redis_subscriber: RedisSubscriber | None = None


def set_repository(repository: BusRepository | None) -> None:
    global _repository
    _repository = repository


def get_repository() -> BusRepository:
    if _repository is None:
        raise RuntimeError("BusRepository не инициализирован")
    return _repository


# === RENDER ===

def render_state(state: LiveViewState) -> dict[str, Any]:
    """Состояние экрана → сообщение клиенту."""
    match state.status:
        case ViewStatus.NO_SELECTION:
            return {"type": "idle"}
        case ViewStatus.LOADING:
            return {"type": "loading", "bus_id": state.bus_id}
        case ViewStatus.NO_DATA:
            return {"type": "no_data", "bus_id": state.bus_id}
        case ViewStatus.ERROR:
            return {"type": "error", "bus_id": state.bus_id, "message": state.error}

    marker = state.marker()
    return {
        "type": "marker",
        "bus_id": state.bus_id,
        "marker": {
            "latitude": marker.latitude,
            "longitude": marker.longitude,
            "bus_status": marker.bus_status.value,
            "heading": marker.heading,
            "speed": marker.speed,
            "recorded_at": marker.recorded_at,
        },
        "bus_number": state.bus.bus_number if state.bus else None,
        "route_name": state.bus.route_name if state.bus else None,
        "feed_connected": state.feed_connected,
    }


# === REDIS HANDLERS ===

async def handle_change(channel: str, data: dict[str, Any]) -> None:
    """Событие из changes:* → сообщение для представлений подписчиков автобуса."""
    try:
        event = ChangeEvent.model_validate(data)
        if event.table == ChangeTable.BUS_LOCATIONS:
            message = LocationPushed(LocationRecord.model_validate(event.new_row))
        else:
            message = BusChanged(BusSnapshot.model_validate(event.new_row))
    except ValidationError as e:
        await log_warning(f"Некорректное событие в канале {channel}: {e}")
        return

    if event.bus_id is None:
        return
    await manager.dispatch_to_topic(bus_topic(event.bus_id), message, render_state)


async def handle_drop(reason: str) -> None:
    """Обрыв канала изменений: данные у всех клиентов могут устаревать."""
    await manager.dispatch_to_all(SubscriptionDropped(reason), render_state)


# === SELECTION ===

async def select_bus(conn: ConnectionInfo, bus_id: str | None, repository: BusRepository) -> None:
    """
    Выбор автобуса пассажиром.

    Подписка на топик оформляется до начальной загрузки, поэтому обновление,
    пришедшее во время загрузки, не теряется: reconcile оставит более свежую точку.
    """
    user_id = conn.user_id
    await manager.unsubscribe_all(user_id)
    await manager.dispatch_to_user(user_id, BusSelected(bus_id), render_state)
    if bus_id is None:
        return

    await manager.subscribe(user_id, bus_topic(bus_id))

    try:
        bus = await repository.get_bus(bus_id)
        record = await repository.get_latest_location(bus_id) if bus is not None else None
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, ValueError) as e:
        await log_warning(f"Не удалось загрузить местоположение автобуса {bus_id}: {e}")
        await manager.dispatch_to_user(user_id, InitialFetchFailed(bus_id, FETCH_ERROR_MESSAGE), render_state)
        return

    if bus is None:
        await manager.dispatch_to_user(user_id, InitialFetchFailed(bus_id, BUS_NOT_FOUND_MESSAGE), render_state)
        return

    conn.view.dispatch(BusChanged(bus))
    conn.view.dispatch(InitialFetchResolved(bus_id, record))
    await manager.send_personal(user_id, render_state(conn.view.state))


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    global _redis_subscriber

    from bus_tracker.config import settings
    from bus_tracker.infra.database import close_db, init_db
    from bus_tracker.infra.redis_client import close_redis, init_redis

    setup_logging()
    db = await init_db(apply_schema=False)
    redis = await init_redis()
    set_repository(BusRepository(db))

    _redis_subscriber = RedisSubscriber(
        redis,
        handle_change,
        drop_handler=handle_drop,
        resubscribe_delay=settings.tracking.RESUBSCRIBE_DELAY,
    )
    await _redis_subscriber.start()
    await log_info(f"{SERVICE_NAME} запущен", type_msg=TypeMsg.INFO)

    yield

    if _redis_subscriber:
        await _redis_subscriber.stop()
        _redis_subscriber = None
    set_repository(None)
    await close_redis()
    await close_db()


# === APP ===

app = FastAPI(
    title="Realtime WebSocket Gateway",
    description="Live-отслеживание автобусов для пассажиров.",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    status = "healthy"
    if _redis_subscriber is not None and not _redis_subscriber.is_running:
        status = "degraded"
    return HealthStatus(service=SERVICE_NAME, status=status, version=__version__)


@app.get("/stats", response_model=StatsResponse, tags=["Stats"])
async def get_stats() -> StatsResponse:
    drops = _redis_subscriber.drop_count if _redis_subscriber else 0
    received = _redis_subscriber.message_count if _redis_subscriber else 0
    return StatsResponse(**manager.get_stats(), subscription_drops=drops, changes_received=received)


# === WEBSOCKET ===

@app.websocket("/ws/passenger/{user_id}")
async def websocket_passenger(
    websocket: WebSocket,
    user_id: str,
    bus_id: str | None = Query(default=None),
) -> None:
    conn = await manager.connect(websocket, user_id)
    repository = get_repository()

    try:
        if bus_id:
            await select_bus(conn, bus_id, repository)

        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                await manager.send_personal(user_id, {"type": "error", "message": "Ожидается JSON-объект"})
                continue
            action = data.get("action")

            if action == "select_bus":
                await select_bus(conn, data.get("bus_id") or None, repository)
            elif action == "ping":
                await manager.send_personal(user_id, {"type": "pong"})
            else:
                await manager.send_personal(user_id, {"type": "error", "message": f"Неизвестное действие: {action}"})

    except WebSocketDisconnect:
        pass
    except ValueError as e:
        await log_warning(f"Некорректное сообщение от пассажира {user_id}: {e}")
    finally:
        await manager.disconnect(user_id, websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8089)
