# tests/core/test_sampler.py
"""
Тесты для сэмплера геопозиции и push-провайдера.
"""

from __future__ import annotations

import asyncio

import pytest

from bus_tracker.common.exceptions import PositionError, PositionErrorCode
from bus_tracker.core.tracking.sampler import (
    PositionOptions,
    PositionSampler,
    PushPositionProvider,
)


class TestPositionOptions:
    """Тесты для PositionOptions."""

    def test_defaults(self) -> None:
        """Высокая точность, таймаут 30 с, возраст фиксации до 5 с."""
        options = PositionOptions()
        assert options.high_accuracy is True
        assert options.timeout_ms == 30000
        assert options.max_fix_age_ms == 5000

    def test_from_settings(self) -> None:
        options = PositionOptions.from_settings()
        assert options.timeout_ms == 30000
        assert options.max_fix_age_ms == 5000


class TestPushPositionProvider:
    """Тесты для PushPositionProvider."""

    def test_push_fix_reaches_watchers(self, make_position) -> None:
        provider = PushPositionProvider()
        received = []
        provider.watch(received.append, lambda e: None, PositionOptions())

        position = make_position()
        provider.push_fix(position)

        assert received == [position]

    def test_push_error_reaches_watchers(self) -> None:
        provider = PushPositionProvider()
        errors: list[PositionError] = []
        provider.watch(lambda p: None, errors.append, PositionOptions())

        provider.push_error(PositionErrorCode.PERMISSION_DENIED)

        assert len(errors) == 1
        assert errors[0].code == PositionErrorCode.PERMISSION_DENIED
        assert "denied" in errors[0].message

    def test_push_error_accepts_string_code(self) -> None:
        provider = PushPositionProvider()
        errors: list[PositionError] = []
        provider.watch(lambda p: None, errors.append, PositionOptions())

        provider.push_error("position_unavailable", "GPS off")

        assert errors[0].code == PositionErrorCode.POSITION_UNAVAILABLE
        assert errors[0].message == "GPS off"

    def test_clear_watch(self, make_position) -> None:
        provider = PushPositionProvider()
        received = []
        handle = provider.watch(received.append, lambda e: None, PositionOptions())

        provider.clear_watch(handle)
        provider.clear_watch(handle)  # повторно без ошибки
        provider.push_fix(make_position())

        assert received == []
        assert provider.watcher_count == 0

    def test_active_options(self) -> None:
        provider = PushPositionProvider()
        assert provider.active_options is None

        options = PositionOptions(high_accuracy=False)
        provider.watch(lambda p: None, lambda e: None, options)
        assert provider.active_options == options

    @pytest.mark.asyncio
    async def test_get_position_uses_fresh_cached_fix(self, make_position, fake_clock) -> None:
        """Свежая фиксация отдаётся сразу."""
        clock = fake_clock
        clock.now = 1000
        provider = PushPositionProvider(clock=clock)
        position = make_position()
        provider.push_fix(position)
        clock.advance(4000)

        result = await provider.get_position(PositionOptions(max_fix_age_ms=5000))

        assert result is position

    @pytest.mark.asyncio
    async def test_get_position_waits_for_next_fix(self, make_position, fake_clock) -> None:
        """Устаревшая фиксация не используется: ждём новую."""
        clock = fake_clock
        provider = PushPositionProvider(clock=clock)
        provider.push_fix(make_position(latitude=1.0))
        clock.advance(10_000)

        task = asyncio.create_task(provider.get_position(PositionOptions(max_fix_age_ms=5000)))
        await asyncio.sleep(0)
        fresh = make_position(latitude=2.0)
        provider.push_fix(fresh)

        assert await task is fresh

    @pytest.mark.asyncio
    async def test_get_position_timeout(self) -> None:
        provider = PushPositionProvider()

        with pytest.raises(PositionError) as exc_info:
            await provider.get_position(PositionOptions(timeout_ms=10))

        assert exc_info.value.code == PositionErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_get_position_fails_on_pushed_error(self) -> None:
        provider = PushPositionProvider()

        task = asyncio.create_task(provider.get_position(PositionOptions()))
        await asyncio.sleep(0)
        provider.push_error(PositionErrorCode.PERMISSION_DENIED)

        with pytest.raises(PositionError) as exc_info:
            await task
        assert exc_info.value.code == PositionErrorCode.PERMISSION_DENIED


class TestPositionSampler:
    """Тесты для PositionSampler."""

    def test_unsupported_without_provider(self) -> None:
        sampler = PositionSampler(None)

        assert sampler.is_supported is False
        with pytest.raises(PositionError) as exc_info:
            sampler.start_watching(lambda p: None, lambda e: None)
        assert exc_info.value.code == PositionErrorCode.UNSUPPORTED
        assert sampler.is_watching is False

    @pytest.mark.asyncio
    async def test_get_current_position_unsupported(self) -> None:
        with pytest.raises(PositionError) as exc_info:
            await PositionSampler(None).get_current_position()
        assert exc_info.value.code == PositionErrorCode.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_get_current_position(self, make_position) -> None:
        provider = PushPositionProvider()
        position = make_position()
        provider.push_fix(position)

        assert await PositionSampler(provider).get_current_position() is position

    def test_start_watching_replaces_previous_subscription(self, make_position) -> None:
        """Не больше одной подписки: старый колбэк больше не вызывается."""
        provider = PushPositionProvider()
        sampler = PositionSampler(provider)
        first, second = [], []

        sampler.start_watching(first.append, lambda e: None)
        sampler.start_watching(second.append, lambda e: None)
        provider.push_fix(make_position())

        assert provider.watcher_count == 1
        assert first == []
        assert len(second) == 1

    def test_stop_watching_is_idempotent(self) -> None:
        provider = PushPositionProvider()
        sampler = PositionSampler(provider)
        sampler.start_watching(lambda p: None, lambda e: None)

        sampler.stop_watching()
        sampler.stop_watching()

        assert sampler.is_watching is False
        assert provider.watcher_count == 0

    def test_watch_uses_sampler_options(self) -> None:
        provider = PushPositionProvider()
        options = PositionOptions(high_accuracy=True, timeout_ms=30000, max_fix_age_ms=5000)
        sampler = PositionSampler(provider, options)

        sampler.start_watching(lambda p: None, lambda e: None)

        assert provider.active_options == options
