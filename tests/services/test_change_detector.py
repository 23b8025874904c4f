"""Tests for ChangeDetector and Broadcaster"""

import asyncio
from typing import Any, List, Tuple
from unittest.mock import AsyncMock

import pytest

from token_aggregator.models.event import GLOBAL_CHANNEL, EventType
from token_aggregator.models.token import Snapshot, TokenRecord
from token_aggregator.services.broadcast.broadcaster import Broadcaster
from token_aggregator.services.broadcast.detector import (
    ChangeDetector,
    ChangeThresholds,
    DetectorState,
)


class RecordingPublisher:
    def __init__(self):
        self.published: List[Tuple[str, str, Any, int]] = []

    async def publish(self, channel, event_type, payload, timestamp):
        self.published.append((channel, event_type, payload, timestamp))

    def events(self, event_type: str):
        return [p for p in self.published if p[1] == event_type]


class ScriptedAggregator:
    """Returns queued snapshots (or raises queued errors) from refresh()"""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def refresh(self, force_bypass_cache: bool = False):
        self.calls.append(force_bypass_cache)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _snap(**prices) -> Snapshot:
    return Snapshot.from_records(
        TokenRecord(id=token_id, price=price, volume=10.0) for token_id, price in prices.items()
    )


def _detector(aggregator, publisher, interval=5.0) -> ChangeDetector:
    return ChangeDetector(
        aggregator=aggregator,
        broadcaster=Broadcaster(publisher),
        interval=interval,
        thresholds=ChangeThresholds(price_change_pct=1.0, volume_spike_floor=1000, volume_spike_pct=50),
    )


@pytest.mark.asyncio
async def test_first_sighting_only_seeds_table():
    publisher = RecordingPublisher()
    detector = _detector(ScriptedAggregator(_snap(A=1.0)), publisher)

    changes = await detector.run_cycle()

    assert changes.is_empty()
    assert publisher.published == []
    assert detector.previous_prices() == {"A": (1.0, 10.0)}
    assert detector.state == DetectorState.IDLE


@pytest.mark.asyncio
async def test_price_threshold():
    publisher = RecordingPublisher()
    aggregator = ScriptedAggregator(_snap(A=1.0, B=1.0), _snap(A=1.02, B=1.005))
    detector = _detector(aggregator, publisher)

    await detector.run_cycle()
    changes = await detector.run_cycle()

    assert [r.id for r in changes.price_updates] == ["A"]
    updates = publisher.events("price_update")
    assert len(updates) == 1
    channel, _, payload, timestamp = updates[0]
    assert channel == GLOBAL_CHANNEL
    assert [item["id"] for item in payload] == ["A"]
    assert timestamp > 0
    assert aggregator.calls == [True, True]


@pytest.mark.asyncio
async def test_price_drop_counts():
    publisher = RecordingPublisher()
    detector = _detector(ScriptedAggregator(_snap(A=2.0), _snap(A=1.9)), publisher)

    await detector.run_cycle()
    changes = await detector.run_cycle()

    assert [r.id for r in changes.price_updates] == ["A"]


@pytest.mark.asyncio
async def test_zero_previous_price_is_skipped():
    publisher = RecordingPublisher()
    detector = _detector(ScriptedAggregator(_snap(A=0.0), _snap(A=5.0)), publisher)

    await detector.run_cycle()
    changes = await detector.run_cycle()

    assert changes.price_updates == []


@pytest.mark.asyncio
async def test_volume_spike_published_separately():
    publisher = RecordingPublisher()
    first = Snapshot.from_records([TokenRecord(id="A", price=1.0, volume=5000)])
    second = Snapshot.from_records(
        [TokenRecord(id="A", price=1.0, volume=6000, price_change_1h=75.0)]
    )
    detector = _detector(ScriptedAggregator(first, second), publisher)

    await detector.run_cycle()
    changes = await detector.run_cycle()

    assert changes.price_updates == []
    assert [r.id for r in changes.volume_spikes] == ["A"]
    assert len(publisher.events("volume_spike")) == 1
    assert publisher.events("price_update") == []


@pytest.mark.asyncio
async def test_failed_refresh_leaves_table_untouched():
    publisher = RecordingPublisher()
    aggregator = ScriptedAggregator(_snap(A=1.0), RuntimeError("all sources down"), _snap(A=1.5))
    detector = _detector(aggregator, publisher)

    await detector.run_cycle()
    assert await detector.run_cycle() is None
    assert detector.previous_prices() == {"A": (1.0, 10.0)}
    assert detector.state == DetectorState.IDLE

    changes = await detector.run_cycle()
    assert [r.id for r in changes.price_updates] == ["A"]


@pytest.mark.asyncio
async def test_start_and_stop():
    publisher = RecordingPublisher()
    aggregator = ScriptedAggregator(_snap(A=1.0))
    detector = _detector(aggregator, publisher, interval=0.01)

    await detector.start()
    await asyncio.sleep(0.05)
    assert detector.running

    await detector.stop()

    assert not detector.running
    assert len(aggregator.calls) >= 2
    calls = len(aggregator.calls)
    await asyncio.sleep(0.05)
    assert len(aggregator.calls) == calls


@pytest.mark.asyncio
async def test_broadcaster_swallows_transport_errors():
    publisher = AsyncMock()
    publisher.publish.side_effect = ConnectionError("socket closed")
    broadcaster = Broadcaster(publisher)

    result = await broadcaster.publish(EventType.PRICE_UPDATE, [])

    assert result is None
    publisher.publish.assert_awaited_once()


@pytest.mark.asyncio
async def test_broadcaster_stamps_events():
    publisher = RecordingPublisher()
    broadcaster = Broadcaster(publisher)

    event = await broadcaster.publish(EventType.VOLUME_SPIKE, {"x": 1}, channel="alerts")

    assert event.channel == "alerts"
    assert publisher.published == [("alerts", "volume_spike", {"x": 1}, event.timestamp)]


@pytest.mark.asyncio
async def test_broadcaster_without_publisher():
    assert await Broadcaster().publish(EventType.ERROR, {}) is None


class SlowPublisher(RecordingPublisher):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def publish(self, channel, event_type, payload, timestamp):
        await asyncio.sleep(self.delay)
        await super().publish(channel, event_type, payload, timestamp)


@pytest.mark.asyncio
async def test_stop_during_publishing_sends_whole_cycle():
    publisher = SlowPublisher(delay=0.2)
    first = Snapshot.from_records([TokenRecord(id="A", price=1.0, volume=5000)])
    second = Snapshot.from_records(
        [TokenRecord(id="A", price=2.0, volume=6000, price_change_1h=75.0)]
    )
    detector = _detector(ScriptedAggregator(first, second), publisher, interval=10.0)
    await detector.run_cycle()

    await detector.start()
    await asyncio.sleep(0.05)
    assert detector.state == DetectorState.PUBLISHING

    await detector.stop(timeout=2.0)

    assert [p[1] for p in publisher.published] == ["price_update", "volume_spike"]
    assert detector.previous_prices() == {"A": (2.0, 6000)}
    assert detector.state == DetectorState.IDLE
    assert not detector.running


@pytest.mark.asyncio
async def test_empty_refresh_keeps_price_history():
    publisher = RecordingPublisher()
    aggregator = ScriptedAggregator(_snap(A=1.0), Snapshot.from_records([]), _snap(A=2.0))
    detector = _detector(aggregator, publisher)

    await detector.run_cycle()
    changes = await detector.run_cycle()
    assert changes.is_empty()
    assert detector.previous_prices() == {"A": (1.0, 10.0)}

    changes = await detector.run_cycle()
    assert [r.id for r in changes.price_updates] == ["A"]


@pytest.mark.asyncio
async def test_token_absent_for_one_cycle_keeps_entry():
    publisher = RecordingPublisher()
    aggregator = ScriptedAggregator(_snap(A=1.0, B=1.0), _snap(B=1.0), _snap(A=1.5, B=1.0))
    detector = _detector(aggregator, publisher)

    await detector.run_cycle()
    await detector.run_cycle()
    assert set(detector.previous_prices()) == {"A", "B"}

    changes = await detector.run_cycle()
    assert [r.id for r in changes.price_updates] == ["A"]
