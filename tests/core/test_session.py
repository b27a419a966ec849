# tests/core/test_session.py
"""
Тесты для сессии трекинга кондуктора.
"""

from __future__ import annotations

import asyncio
import math
from unittest.mock import AsyncMock

import pytest

from bus_tracker.common.exceptions import PositionError, PositionErrorCode, WriteFailedError
from bus_tracker.core.tracking.sampler import PositionOptions, PositionSampler, PushPositionProvider
from bus_tracker.core.tracking.session import (
    SessionStatus,
    TrackingSession,
    build_location_record,
)
from bus_tracker.core.tracking.throttle import LocationUpdateThrottle
from bus_tracker.shared.models.bus import LocationRecord

BUS_ID = "bus-1"
TRIP_ID = "trip-1"


class RecordingSink:
    """Хранилище в памяти; может падать на каждой вставке."""

    def __init__(self, fail_with: Exception | None = None, delay: float = 0.0) -> None:
        self.records: list[LocationRecord] = []
        self.fail_with = fail_with
        self.delay = delay

    async def insert_location(self, record: LocationRecord) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.records.append(record)


@pytest.fixture
def provider() -> PushPositionProvider:
    return PushPositionProvider()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def session(provider, sink, notifier, fake_clock) -> TrackingSession:
    return TrackingSession(
        sampler=PositionSampler(provider),
        sink=sink,
        throttle=LocationUpdateThrottle(5000),
        notifier=notifier,
        clock=fake_clock,
    )


class TestBuildLocationRecord:
    """Тесты для сборки LocationRecord из фиксации."""

    def test_fields_copied(self, make_position) -> None:
        record = build_location_record(make_position(heading=45.0), BUS_ID, TRIP_ID)

        assert record.bus_id == BUS_ID
        assert record.trip_id == TRIP_ID
        assert record.latitude == 52.52
        assert record.longitude == 13.405
        assert record.heading == 45.0

    def test_accuracy_clamped(self, make_position) -> None:
        record = build_location_record(make_position(accuracy=5000.0), BUS_ID, None)
        assert record.accuracy == 999.99

    def test_accuracy_not_finite_dropped(self, make_position) -> None:
        record = build_location_record(make_position(accuracy=math.inf), BUS_ID, None)
        assert record.accuracy is None

    def test_missing_speed_becomes_zero(self, make_position) -> None:
        record = build_location_record(make_position(speed=None), BUS_ID, None)
        assert record.speed == 0.0

    def test_missing_heading_stays_none(self, make_position) -> None:
        record = build_location_record(make_position(heading=None), BUS_ID, None)
        assert record.heading is None


class TestTrackingSessionLifecycle:
    """Тесты для переходов IDLE ↔ WATCHING."""

    def test_initial_state(self, session: TrackingSession) -> None:
        assert session.status == SessionStatus.IDLE
        assert session.is_watching is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session: TrackingSession, provider) -> None:
        session.start(BUS_ID, TRIP_ID)

        assert session.status == SessionStatus.WATCHING
        assert session.bus_id == BUS_ID
        assert session.trip_id == TRIP_ID
        assert provider.watcher_count == 1

        session.stop()

        assert session.status == SessionStatus.IDLE
        assert provider.watcher_count == 0

    def test_stop_is_idempotent(self, session: TrackingSession) -> None:
        session.stop()
        session.start(BUS_ID)
        session.stop()
        session.stop()
        assert session.status == SessionStatus.IDLE

    def test_start_unsupported(self, sink) -> None:
        """Без геолокации start падает с UNSUPPORTED и остаётся в IDLE."""
        session = TrackingSession(PositionSampler(None), sink)

        with pytest.raises(PositionError) as exc_info:
            session.start(BUS_ID)

        assert exc_info.value.code == PositionErrorCode.UNSUPPORTED
        assert session.status == SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_restart_switches_bus(self, session, provider, sink, fake_clock, make_position) -> None:
        """Повторный start перезапускает наблюдение для нового автобуса."""
        session.start(BUS_ID, TRIP_ID)
        session.start("bus-2", "trip-2")

        assert provider.watcher_count == 1
        provider.push_fix(make_position())
        await session.drain()

        assert [r.bus_id for r in sink.records] == ["bus-2"]
        assert sink.records[0].trip_id == "trip-2"


class TestTrackingSessionSampling:
    """Тесты для обработки фиксаций."""

    @pytest.mark.asyncio
    async def test_throttled_scenario(self, session, provider, sink, fake_clock, make_position) -> None:
        """Фиксации в 0, 1000, 4000, 6000, 9000, 11000 → три записи."""
        session.start(BUS_ID, TRIP_ID)

        for t in (0, 1000, 4000, 6000, 9000, 11000):
            fake_clock.now = t
            provider.push_fix(make_position(latitude=10.0 + t / 1000))
        await session.drain()

        assert [r.latitude for r in sink.records] == [10.0, 16.0, 21.0]
        assert all(r.bus_id == BUS_ID and r.trip_id == TRIP_ID for r in sink.records)
        stats = session.get_stats()
        assert stats["records_written"] == 3
        assert stats["samples_dropped"] == 3

    @pytest.mark.asyncio
    async def test_no_records_after_stop(self, session, provider, sink, make_position) -> None:
        """Старт и сразу стоп: фиксация после стопа не записывается."""
        session.start(BUS_ID, TRIP_ID)
        session.stop()

        provider.push_fix(make_position())
        await session.drain()

        assert sink.records == []

    @pytest.mark.asyncio
    async def test_stale_callback_ignored(self, session, provider, sink, make_position) -> None:
        """Колбэк старого поколения игнорируется даже если провайдер его вызвал."""
        session.start(BUS_ID, TRIP_ID)
        on_fix, _, _ = next(iter(provider._watchers.values()))
        session.stop()

        on_fix(make_position())
        await session.drain()

        assert sink.records == []

    @pytest.mark.asyncio
    async def test_write_does_not_block_sampling(self, provider, notifier, fake_clock, make_position) -> None:
        """Запись выполняется отдельной задачей: push_fix возвращается сразу."""
        slow_sink = RecordingSink(delay=0.05)
        session = TrackingSession(
            PositionSampler(provider), slow_sink,
            throttle=LocationUpdateThrottle(0), notifier=notifier, clock=fake_clock,
        )
        session.start(BUS_ID)

        provider.push_fix(make_position())
        assert session.pending_writes == 1
        assert slow_sink.records == []

        await session.drain()
        assert len(slow_sink.records) == 1
        assert session.pending_writes == 0


class TestTrackingSessionSeed:
    """Тесты разового запроса координат после старта."""

    @pytest.mark.asyncio
    async def test_seed_writes_cached_fix(self, session, provider, sink, make_position) -> None:
        """Свежая фиксация в кэше провайдера записывается без ожидания наблюдения."""
        provider.push_fix(make_position(latitude=40.0))
        session.start(BUS_ID)

        session.seed()
        await session.drain()

        assert [r.latitude for r in sink.records] == [40.0]
        assert sink.records[0].trip_id is None

    @pytest.mark.asyncio
    async def test_seed_shares_throttle_with_watch(self, session, provider, sink, make_position) -> None:
        """Ответ на разовый запрос и та же фиксация из наблюдения дают одну запись."""
        session.start(BUS_ID)
        session.seed()
        await asyncio.sleep(0)

        provider.push_fix(make_position())
        await session.drain()

        assert len(sink.records) == 1
        assert session.get_stats()["samples_dropped"] == 1

    @pytest.mark.asyncio
    async def test_seed_in_idle_does_nothing(self, session, provider, sink, make_position) -> None:
        provider.push_fix(make_position())

        session.seed()
        await session.drain()

        assert sink.records == []

    @pytest.mark.asyncio
    async def test_stop_cancels_seed(self, session, provider, sink, make_position) -> None:
        session.start(BUS_ID)
        session.seed()
        await asyncio.sleep(0)

        session.stop()
        await session.drain()
        provider.push_fix(make_position())
        await session.drain()

        assert sink.records == []
        assert session.pending_writes == 0

    @pytest.mark.asyncio
    async def test_seed_timeout_reported(self, provider, sink, notifier, fake_clock) -> None:
        session = TrackingSession(
            PositionSampler(provider, PositionOptions(timeout_ms=10)), sink,
            notifier=notifier, clock=fake_clock,
        )
        session.start(BUS_ID)

        session.seed()
        await session.drain()

        assert session.status == SessionStatus.WATCHING
        notifier.assert_awaited_once()
        assert notifier.await_args.args[0] == "Location Error"


class TestTrackingSessionErrors:
    """Тесты для ошибок геолокации и записи."""

    @pytest.mark.asyncio
    async def test_sampling_error_notifies_and_keeps_watching(self, session, provider, notifier) -> None:
        session.start(BUS_ID, TRIP_ID)

        provider.push_error(PositionErrorCode.PERMISSION_DENIED)
        await session.drain()

        assert session.status == SessionStatus.WATCHING
        notifier.assert_awaited_once()
        title, description = notifier.await_args.args
        assert title == "Location Error"
        assert "denied" in description

    @pytest.mark.asyncio
    async def test_write_failure_reported_and_sampling_continues(
        self, provider, notifier, fake_clock, make_position,
    ) -> None:
        failing_sink = RecordingSink(fail_with=WriteFailedError("rejected"))
        session = TrackingSession(
            PositionSampler(provider), failing_sink,
            throttle=LocationUpdateThrottle(5000), notifier=notifier, clock=fake_clock,
        )
        session.start(BUS_ID, TRIP_ID)

        provider.push_fix(make_position())
        await session.drain()

        notifier.assert_awaited_with("Location Error", "Failed to save bus location")
        assert session.status == SessionStatus.WATCHING
        assert session.get_stats()["write_failures"] == 1

        # Повтора нет: следующая попытка только в следующем окне
        fake_clock.advance(1000)
        provider.push_fix(make_position())
        await session.drain()
        assert session.get_stats()["write_failures"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_sink_error_does_not_escape(self, provider, notifier, fake_clock, make_position) -> None:
        session = TrackingSession(
            PositionSampler(provider), RecordingSink(fail_with=RuntimeError("boom")),
            notifier=notifier, clock=fake_clock,
        )
        session.start(BUS_ID)

        provider.push_fix(make_position())
        await session.drain()

        assert session.get_stats()["write_failures"] == 1
        notifier.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(self, provider, fake_clock) -> None:
        notifier = AsyncMock(side_effect=ConnectionError("socket closed"))
        session = TrackingSession(
            PositionSampler(provider), RecordingSink(), notifier=notifier, clock=fake_clock,
        )
        session.start(BUS_ID)

        provider.push_error(PositionErrorCode.TIMEOUT)
        await session.drain()

        assert session.status == SessionStatus.WATCHING
