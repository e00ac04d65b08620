"""控制台快照与 tick 结果。"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from liaison.models.episode import EpisodeSummary, SpokenLine
from liaison.models.nudge import CadenceStatus, Nudge
from liaison.models.telemetry import SceneTransitionEvent, TelemetryEvent


class BadgeType(str, Enum):
    SPARK = "spark"
    FRAGILE_TRUST = "fragile_trust"
    SAFE_SPACE = "safe_space"
    HIGH_TENSION = "high_tension"
    PLATEAU = "plateau"


class BadgeLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ThresholdBadge(BaseModel):
    type: BadgeType
    level: BadgeLevel
    description: str


class ConsoleState(BaseModel):
    """get_state() 的只读返回值。"""

    summary: EpisodeSummary
    badges: list[ThresholdBadge] = Field(default_factory=list)
    pending_nudges: list[Nudge] = Field(default_factory=list)
    cadence: CadenceStatus
    plateau_counter: int = 0
    scene_fragility: float = 0.0


class TickResult(BaseModel):
    """tick() 的返回值：本回合台词、幕间推进、以及刷出的遥测批次。"""

    produced_lines: list[SpokenLine] = Field(default_factory=list)
    transitions: list[SceneTransitionEvent] = Field(default_factory=list)
    telemetry: list[TelemetryEvent] = Field(default_factory=list)
    summary: EpisodeSummary
