"""与对白生成 / 安全协作者之间的契约模型。"""

from __future__ import annotations

from pydantic import BaseModel, Field

from liaison.models.episode import Act
from liaison.models.nudge import BiasFlags
from liaison.models.relationship import ChemistryDeltas, RelationshipPair


class RecentLine(BaseModel):
    speaker: str
    text: str
    timestamp: float


class BeatContext(BaseModel):
    """交给对白生成方的结构快照。"""

    act: Act
    vibe: str = ""
    setting: str = ""
    spotlight: tuple[str, str]
    watchers: list[str] = Field(default_factory=list, description="在场但不在聚光灯下的角色")
    recent_lines: list[RecentLine] = Field(default_factory=list)
    bias_flags: BiasFlags = Field(default_factory=BiasFlags)
    open_tokens: list[str] = Field(default_factory=list, description="可回收的回调 token")
    pair: RelationshipPair | None = None
    scene_fragility: float = 0.0
    constraints: list[str] = Field(default_factory=list)


class FinalLine(BaseModel):
    """生成方返回的定稿台词。"""

    speaker: str
    text: str
    deltas: ChemistryDeltas = Field(default_factory=ChemistryDeltas)
    rationales: list[str] = Field(default_factory=list)
    used_tokens: list[str] = Field(default_factory=list)
    is_fallback: bool = False


class SafetyVerdict(BaseModel):
    is_safe: bool
    reason: str | None = None
