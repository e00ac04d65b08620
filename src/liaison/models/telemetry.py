"""遥测事件：按 kind 区分的封闭联合类型，发出后不可变。"""

from __future__ import annotations

import time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from liaison.models.episode import Act, EndReason, SpokenLine
from liaison.models.nudge import Nudge, NudgeSource
from liaison.models.relationship import ChemistryDeltas


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    episode_id: str
    scene_id: str | None = None
    timestamp: float = Field(default_factory=time.time)


class TurnStartEvent(_EventBase):
    kind: Literal["turn.start"] = "turn.start"
    act: Act
    scene: int


class TurnEndEvent(_EventBase):
    kind: Literal["turn.end"] = "turn.end"
    line: SpokenLine
    deltas: ChemistryDeltas
    latency_ms: float


class NudgeAppliedEvent(_EventBase):
    kind: Literal["nudge.applied"] = "nudge.applied"
    nudge: Nudge
    source: NudgeSource


class SceneRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    act: Act
    scene: int


class SceneTransitionEvent(_EventBase):
    kind: Literal["scene.transition"] = "scene.transition"
    from_scene: SceneRef
    to_scene: SceneRef
    reason: EndReason


class MetricTickEvent(_EventBase):
    kind: Literal["metric.tick"] = "metric.tick"
    name: str
    value: float


TelemetryEvent = Annotated[
    Union[TurnStartEvent, TurnEndEvent, NudgeAppliedEvent, SceneTransitionEvent, MetricTickEvent],
    Field(discriminator="kind"),
]
