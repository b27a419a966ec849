#!/usr/bin/env python3
"""
Entrypoint для Realtime WebSocket Gateway (пассажиры).

Запуск:
    python entrypoints/entrypoint_realtime_ws.py

Порт по умолчанию: 8089
"""

import sys
from pathlib import Path

# Корень проекта в sys.path для запуска без установки пакета
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from bus_tracker.config import settings


def main() -> None:
    uvicorn.run(
        "bus_tracker.services.realtime_ws.app:app",
        host="0.0.0.0",
        port=settings.deployment.REALTIME_WS_GATEWAY_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
