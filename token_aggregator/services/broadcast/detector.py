"""
Change detection service

后台周期任务：强制刷新快照，与上一轮的价格/成交量对比，并广播变化。
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from token_aggregator.core.logger import get_logger
from token_aggregator.models.event import EventType
from token_aggregator.models.token import Snapshot, TokenRecord
from token_aggregator.services.aggregation.aggregator import TokenAggregator
from token_aggregator.services.broadcast.broadcaster import Broadcaster

logger = get_logger(__name__)


class DetectorState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    PUBLISHING = "publishing"


@dataclass
class ChangeThresholds:
    price_change_pct: float = 1.0
    volume_spike_floor: float = 1000.0
    volume_spike_pct: float = 50.0


@dataclass
class ChangeSet:
    """One cycle's detected changes"""

    price_updates: List[TokenRecord] = field(default_factory=list)
    volume_spikes: List[TokenRecord] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.price_updates and not self.volume_spikes


def _dump(records: List[TokenRecord]) -> List[dict]:
    return [record.model_dump(mode="json") for record in records]


class ChangeDetector:
    """
    价格/成交量变化检测器

    状态流转: IDLE → FETCHING → DIFFING → PUBLISHING → IDLE。
    上一轮的价格表只在本类内部维护；FETCHING / DIFFING 出错时本轮中止，价格表保持不变。
    stop() 在 PUBLISHING 阶段不会打断发布，本轮事件要么全部发出，要么一条都不发。
    """

    def __init__(
        self,
        aggregator: TokenAggregator,
        broadcaster: Broadcaster,
        interval: float = 5.0,
        thresholds: Optional[ChangeThresholds] = None,
    ):
        """
        Args:
            aggregator: 聚合器
            broadcaster: 事件广播器
            interval: 两轮之间的间隔（秒）
            thresholds: 触发阈值
        """
        self.aggregator = aggregator
        self.broadcaster = broadcaster
        self.interval = interval
        self.thresholds = thresholds or ChangeThresholds()

        self.state = DetectorState.IDLE
        self._previous: Dict[str, Tuple[float, float]] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def previous_prices(self) -> Dict[str, Tuple[float, float]]:
        """Copy of the id -> (price, volume) table from the last published cycle"""
        return dict(self._previous)

    def diff(self, snapshot: Snapshot) -> ChangeSet:
        """
        对比快照与上一轮价格表

        首次出现的代币只记录，不产生事件。
        """
        changes = ChangeSet()
        for record in snapshot.tokens():
            previous = self._previous.get(record.id)
            if previous is None:
                continue

            previous_price, _ = previous
            if previous_price > 0:
                change_pct = (record.price - previous_price) / previous_price * 100
                if abs(change_pct) > self.thresholds.price_change_pct:
                    changes.price_updates.append(record)

            if (
                record.volume > self.thresholds.volume_spike_floor
                and record.price_change_1h > self.thresholds.volume_spike_pct
            ):
                changes.volume_spikes.append(record)
        return changes

    async def run_cycle(self) -> Optional[ChangeSet]:
        """
        执行一轮检测

        Returns:
            本轮检测到的变化；刷新或对比失败时返回None
        """
        try:
            self.state = DetectorState.FETCHING
            snapshot = await self.aggregator.refresh(force_bypass_cache=True)

            self.state = DetectorState.DIFFING
            changes = self.diff(snapshot)
        except asyncio.CancelledError:
            self.state = DetectorState.IDLE
            raise
        except Exception as e:
            logger.error(f"Change detection cycle aborted in {self.state.value}: {e}", exc_info=True)
            self.state = DetectorState.IDLE
            return None

        self.state = DetectorState.PUBLISHING
        publishing = asyncio.ensure_future(self._publish(changes, snapshot))
        try:
            await asyncio.shield(publishing)
        except asyncio.CancelledError:
            # 发布阶段不响应取消：本轮事件全部发出、价格表更新后再退出
            await asyncio.shield(publishing)
            raise
        finally:
            self.state = DetectorState.IDLE

        if not changes.is_empty():
            logger.info(
                f"Published {len(changes.price_updates)} price updates, "
                f"{len(changes.volume_spikes)} volume spikes"
            )
        return changes

    async def _publish(self, changes: ChangeSet, snapshot: Snapshot) -> None:
        if changes.price_updates:
            await self.broadcaster.publish(EventType.PRICE_UPDATE, _dump(changes.price_updates))
        if changes.volume_spikes:
            await self.broadcaster.publish(EventType.VOLUME_SPIKE, _dump(changes.volume_spikes))

        # 按代币逐条更新；本轮缺席的代币保留上一次的值
        self._previous.update(
            {record.id: (record.price, record.volume) for record in snapshot.tokens()}
        )

    async def start(self) -> None:
        """启动后台检测任务"""
        if self.running:
            logger.warning("Change detector already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Change detector started (interval: {self.interval}s)")

    async def stop(self, timeout: float = 2.0) -> None:
        """
        停止后台检测任务

        Args:
            timeout: 等待任务结束的超时时间（秒）
        """
        self._stop_event.set()

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        self._task = None
        self.state = DetectorState.IDLE
        logger.info("Change detector stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
