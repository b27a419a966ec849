# bus_tracker/services/realtime_ws/connection_manager.py
"""
Менеджер WebSocket-соединений пассажиров.

У каждого соединения свой LiveBusView и подписка на топик bus:{id}
выбранного автобуса.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from bus_tracker.common.logger import log_debug
from bus_tracker.core.tracking.reconciliation import LiveBusView, ViewMessage


def bus_topic(bus_id: str) -> str:
    return f"bus:{bus_id}"


@dataclass
class ConnectionInfo:
    """Соединение пассажира."""
    websocket: WebSocket
    user_id: str
    view: LiveBusView = field(default_factory=LiveBusView)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscriptions: set[str] = field(default_factory=set)


class ConnectionManager:
    """
    Подключения, подписки на топики и доставка сообщений.

    На пользователя одно соединение: повторное подключение закрывает старое.
    """

    def __init__(self) -> None:
        # user_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}
        # topic -> user_ids
        self._subscriptions: dict[str, set[str]] = {}

        self._total_connections = 0
        self._total_messages_sent = 0

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    def get(self, user_id: str) -> ConnectionInfo | None:
        return self._connections.get(user_id)

    async def connect(self, websocket: WebSocket, user_id: str) -> ConnectionInfo:
        if user_id in self._connections:
            await self._close_connection(self._connections[user_id])
            await self.disconnect(user_id)

        await websocket.accept()
        conn = ConnectionInfo(websocket=websocket, user_id=user_id)
        self._connections[user_id] = conn
        self._total_connections += 1
        return conn

    async def disconnect(self, user_id: str, websocket: WebSocket | None = None) -> None:
        """
        Удаляет соединение и все его подписки.

        Если передан websocket, удаляется только если это то же самое
        соединение (старый обработчик не должен снести новое подключение).
        """
        conn = self._connections.get(user_id)
        if conn is None:
            return
        if websocket is not None and conn.websocket is not websocket:
            return

        for topic in list(conn.subscriptions):
            self._unsubscribe_from_topic(user_id, topic)
        del self._connections[user_id]

    async def subscribe(self, user_id: str, topic: str) -> None:
        if user_id not in self._connections:
            return
        self._connections[user_id].subscriptions.add(topic)
        self._subscriptions.setdefault(topic, set()).add(user_id)

    async def unsubscribe(self, user_id: str, topic: str) -> None:
        self._unsubscribe_from_topic(user_id, topic)

    async def unsubscribe_all(self, user_id: str) -> None:
        conn = self._connections.get(user_id)
        if conn is None:
            return
        for topic in list(conn.subscriptions):
            self._unsubscribe_from_topic(user_id, topic)

    def _unsubscribe_from_topic(self, user_id: str, topic: str) -> None:
        if user_id in self._connections:
            self._connections[user_id].subscriptions.discard(topic)

        subscribers = self._subscriptions.get(topic)
        if subscribers is not None:
            subscribers.discard(user_id)
            if not subscribers:
                del self._subscriptions[topic]

    def get_topic_subscribers(self, topic: str) -> set[str]:
        return self._subscriptions.get(topic, set()).copy()

    async def send_personal(self, user_id: str, message: dict[str, Any]) -> bool:
        """
        Returns:
            False если пользователь не подключён или отправка не удалась
        """
        conn = self._connections.get(user_id)
        if conn is None:
            return False
        try:
            await conn.websocket.send_json(message)
        except Exception as e:
            await log_debug(f"Соединение {user_id} разорвано при отправке: {e}")
            await self.disconnect(user_id)
            return False
        self._total_messages_sent += 1
        return True

    async def dispatch_to_topic(
        self,
        topic: str,
        message: ViewMessage,
        render,
    ) -> int:
        """
        Применяет сообщение к представлениям подписчиков топика.

        Клиенту отправляется render(state) только если состояние изменилось.

        Returns:
            Количество отправленных сообщений
        """
        sent = 0
        for user_id in self.get_topic_subscribers(topic):
            sent += await self.dispatch_to_user(user_id, message, render)
        return sent

    async def dispatch_to_all(self, message: ViewMessage, render) -> int:
        sent = 0
        for user_id in list(self._connections):
            sent += await self.dispatch_to_user(user_id, message, render)
        return sent

    async def dispatch_to_user(self, user_id: str, message: ViewMessage, render) -> int:
        conn = self._connections.get(user_id)
        if conn is None or not conn.view.dispatch(message):
            return 0
        return int(await self.send_personal(user_id, render(conn.view.state)))

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_connections": len(self._connections),
            "total_topics": len(self._subscriptions),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
        }

    async def _close_connection(self, conn: ConnectionInfo) -> None:
        try:
            await conn.websocket.close()
        except RuntimeError:
            # Уже закрыто
            pass


manager = ConnectionManager()
