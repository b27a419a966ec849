# bus_tracker/services/tracking/app.py
"""
FastAPI приложение Tracking Service.

REST (/api/v1): автобусы, поиск маршрутов, поездки, история поиска.

WebSocket /ws/conductor/{user_id} — поток GPS-фиксаций от устройства кондуктора:
- {"action": "fix", "latitude": .., "longitude": .., "accuracy": .., "speed": .., "heading": ..}
- {"action": "error", "code": "permission_denied", "message": "..."}
- {"action": "stop"} — остановить трекинг без завершения поездки
- {"action": "ping"}
"""

from __future__ import annotations

import math
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from bus_tracker import __version__
from bus_tracker.common.constants import MAX_SPEED_KMH, TypeMsg, UserRole
from bus_tracker.common.exceptions import BusTrackerError, PositionErrorCode
from bus_tracker.common.logger import log_info, log_warning, setup_logging
from bus_tracker.services.tracking.dependencies import get_service, resolve_profile, set_service
from bus_tracker.services.tracking.registry import TrackingEntry
from bus_tracker.services.tracking.routes import router
from bus_tracker.shared.models.common import HealthStatus
from bus_tracker.shared.models.position import Position

SERVICE_NAME = "tracking_service"


class StatsResponse(BaseModel):
    sessions: int
    watching: int
    connected: int
    events_published: int


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    from bus_tracker.config import settings
    from bus_tracker.core.routes.search import SearchHistory
    from bus_tracker.core.tracking.sampler import PositionOptions
    from bus_tracker.infra.database import close_db, init_db
    from bus_tracker.infra.event_bus import close_event_bus, init_event_bus
    from bus_tracker.infra.redis_client import close_redis, init_redis
    from bus_tracker.services.tracking.publisher import ChangeFeedPublisher, PublishingLocationSink
    from bus_tracker.services.tracking.registry import SessionRegistry
    from bus_tracker.services.tracking.repository import BusRepository
    from bus_tracker.services.tracking.service import TripService

    setup_logging()
    db = await init_db()
    redis = await init_redis()
    event_bus = await init_event_bus()

    repository = BusRepository(db)
    publisher = ChangeFeedPublisher(redis)
    registry = SessionRegistry(
        sink=PublishingLocationSink(repository, publisher),
        min_interval_ms=settings.tracking.MIN_INTERVAL_MS,
        max_accuracy=settings.tracking.MAX_ACCURACY_METERS,
        options=PositionOptions.from_settings(),
    )
    set_service(TripService(
        repository=repository,
        registry=registry,
        publisher=publisher,
        event_bus=event_bus,
        history=SearchHistory(redis, size=settings.tracking.SEARCH_HISTORY_SIZE),
    ))
    await log_info(f"{SERVICE_NAME} запущен", type_msg=TypeMsg.INFO)

    yield

    await registry.close_all()
    set_service(None)
    await close_event_bus()
    await close_redis()
    await close_db()


# === APP ===

app = FastAPI(
    title="Bus Tracking Service",
    description="Трекинг автобусов: приём GPS от кондукторов, поездки, поиск маршрутов.",
    version=__version__,
    lifespan=lifespan,
)
app.include_router(router, prefix="/api/v1")


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    return HealthStatus(service=SERVICE_NAME, status="healthy", version=__version__)


@app.get("/stats", response_model=StatsResponse, tags=["Stats"])
async def get_stats() -> StatsResponse:
    return StatsResponse(**get_service().get_stats())


# === CONDUCTOR WEBSOCKET ===

def _optional_number(value: Any) -> float | None:
    """Необязательное числовое поле фиксации; нечисловое значение отбрасывается."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def parse_fix(data: dict[str, Any]) -> Position:
    """
    Фиксация из сообщения устройства.

    Координаты обязательны: без них фиксация отклоняется. Некорректные
    необязательные поля (точность, скорость, курс) отбрасываются, а точка
    сохраняется. Скорость приходит в м/с; значение выше MAX_SPEED_KMH
    считается сбоем датчика.
    """
    accuracy = _optional_number(data.get("accuracy"))
    if accuracy is not None and accuracy < 0:
        accuracy = None

    speed = _optional_number(data.get("speed"))
    if speed is not None and not 0 <= speed * 3.6 <= MAX_SPEED_KMH:
        speed = None

    heading = _optional_number(data.get("heading"))
    if heading is not None and not 0 <= heading < 360:
        heading = None

    fields: dict[str, Any] = {
        "latitude": data.get("latitude"),
        "longitude": data.get("longitude"),
        "accuracy": accuracy,
        "speed": speed,
        "heading": heading,
    }
    if data.get("timestamp"):
        fields["captured_at"] = datetime.fromisoformat(str(data["timestamp"]))
    return Position(**fields)


async def _handle_conductor_message(entry: TrackingEntry, websocket: WebSocket, data: dict[str, Any]) -> None:
    action = data.get("action")

    if action == "fix":
        try:
            position = parse_fix(data)
        except (ValidationError, ValueError, TypeError) as e:
            await websocket.send_json({"type": "error", "message": f"Некорректная фиксация: {e}"})
            return
        entry.provider.push_fix(position)

    elif action == "error":
        try:
            code = PositionErrorCode(data.get("code"))
        except ValueError:
            await websocket.send_json({"type": "error", "message": f"Неизвестный код ошибки: {data.get('code')}"})
            return
        entry.provider.push_error(code, data.get("message"))

    elif action == "stop":
        try:
            stopped = await get_service().stop_tracking(entry.conductor_id)
        except BusTrackerError as e:
            await log_warning(f"Не удалось остановить трекинг кондуктора {entry.conductor_id}: {e}")
            await websocket.send_json({"type": "error", "message": "Не удалось остановить трекинг"})
            return
        await websocket.send_json({"type": "tracking", "watching": False, "was_watching": stopped})

    elif action == "ping":
        await websocket.send_json({"type": "pong"})

    else:
        await websocket.send_json({"type": "error", "message": f"Неизвестное действие: {action}"})


@app.websocket("/ws/conductor/{user_id}")
async def websocket_conductor(websocket: WebSocket, user_id: str) -> None:
    """
    Поток координат от кондуктора.

    После подключения сервер отправляет параметры геолокации
    ({"type": "watch", ...}), с которыми устройство должно снимать координаты.
    """
    service = get_service()
    profile = await resolve_profile(user_id, service)
    if profile is None or profile.role != UserRole.CONDUCTOR:
        await websocket.close(code=4403)
        return

    await websocket.accept()
    entry = service.registry.attach(user_id, websocket)

    options = service.registry.options
    await websocket.send_json({
        "type": "watch",
        "options": {
            "high_accuracy": options.high_accuracy,
            "timeout_ms": options.timeout_ms,
            "max_fix_age_ms": options.max_fix_age_ms,
        },
        "watching": entry.session.is_watching,
        "bus_id": entry.session.bus_id,
        "trip_id": entry.session.trip_id,
    })

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "message": "Ожидается JSON-объект"})
                continue
            # Запись берётся заново: после завершения поездки реестр создаёт новую
            entry = service.registry.get_or_create(user_id)
            await _handle_conductor_message(entry, websocket, data)
    except WebSocketDisconnect:
        await log_info(f"Кондуктор {user_id} отключился", type_msg=TypeMsg.DEBUG)
    except ValueError as e:
        await log_warning(f"Некорректное сообщение от кондуктора {user_id}: {e}")
    finally:
        # Сессия продолжает жить до завершения поездки, новых фиксаций просто не будет
        service.registry.detach(user_id, websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8090)
