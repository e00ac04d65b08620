"""遥测：tick 内按因果顺序暂存事件，提交后再推送给订阅者。"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from liaison.models.telemetry import (
    MetricTickEvent,
    SceneTransitionEvent,
    TelemetryEvent,
    TurnEndEvent,
    TurnStartEvent,
)

logger = logging.getLogger(__name__)

TelemetrySink = Callable[[TelemetryEvent], None]


class TickTelemetry:
    """一次 tick 的事件暂存区。

    无论事件在 tick 内以何种次序产生，flush 时总是按
    turn.start → 逐句 turn.end → scene.transition → metric.tick 的顺序输出，
    同类事件保持插入顺序。
    """

    def __init__(self) -> None:
        self._start: list[TurnStartEvent] = []
        self._ends: list[TurnEndEvent] = []
        self._transitions: list[SceneTransitionEvent] = []
        self._metrics: list[MetricTickEvent] = []

    def turn_start(self, event: TurnStartEvent) -> None:
        self._start.append(event)

    def turn_end(self, event: TurnEndEvent) -> None:
        self._ends.append(event)

    def transition(self, event: SceneTransitionEvent) -> None:
        self._transitions.append(event)

    def metric(self, event: MetricTickEvent) -> None:
        self._metrics.append(event)

    @property
    def transitions(self) -> list[SceneTransitionEvent]:
        return list(self._transitions)

    def ordered(self) -> list[TelemetryEvent]:
        return [*self._start, *self._ends, *self._transitions, *self._metrics]


class TelemetryHub:
    """可选的推送通道：tick 的返回值之外，把事件流推给订阅者（存储、评估引擎等）。

    可以被多个剧集共享；订阅表的修改受锁保护。
    """

    def __init__(self, sinks: Iterable[TelemetrySink] = ()):
        self._sinks: list[TelemetrySink] = list(sinks)
        self._lock = threading.Lock()

    def subscribe(self, sink: TelemetrySink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def unsubscribe(self, sink: TelemetrySink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def publish(self, events: Iterable[TelemetryEvent]) -> None:
        with self._lock:
            sinks = list(self._sinks)
        if not sinks:
            return
        for event in events:
            for sink in sinks:
                try:
                    sink(event)
                except Exception as e:
                    # 订阅者出错不影响已提交的状态
                    logger.error("遥测订阅者处理 %s 失败: %s", event.kind, e)
