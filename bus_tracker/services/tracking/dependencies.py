# bus_tracker/services/tracking/dependencies.py
"""
FastAPI-зависимости: сервис и текущий пользователь.

Аутентификацию выполняет внешний шлюз, который проставляет заголовок
X-User-Id. Здесь идентификатор только сопоставляется с profiles.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from bus_tracker.common.constants import UserRole
from bus_tracker.services.tracking.service import TripService
from bus_tracker.shared.models.bus import Profile

_service: TripService | None = None


def set_service(service: TripService | None) -> None:
    global _service
    _service = service


def get_service() -> TripService:
    if _service is None:
        raise RuntimeError("TripService не инициализирован")
    return _service


async def resolve_profile(user_id: str, service: TripService) -> Profile | None:
    try:
        UUID(user_id)
    except ValueError:
        return None
    return await service.get_profile(user_id)


async def get_optional_user(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    service: TripService = Depends(get_service),
) -> Profile | None:
    if not x_user_id:
        return None
    return await resolve_profile(x_user_id, service)


async def get_current_user(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    service: TripService = Depends(get_service),
) -> Profile:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Требуется авторизация")
    profile = await resolve_profile(x_user_id, service)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Профиль не найден")
    return profile


async def require_conductor(user: Profile = Depends(get_current_user)) -> Profile:
    if user.role != UserRole.CONDUCTOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Доступно только кондукторам")
    return user
