#!/usr/bin/env python3
"""
Entrypoint для Tracking Service (кондукторы, поездки, поиск маршрутов).

Запуск:
    python entrypoints/entrypoint_tracking.py

Порт по умолчанию: 8090
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
        "bus_tracker.services.tracking.app:app",
        host="0.0.0.0",
        port=settings.deployment.TRACKING_SERVICE_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
