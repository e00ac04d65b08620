"""评估引擎数据模型。

最终得分 = 新鲜度收益 − λ × 连贯成本，
λ = 本幕基础权重 × (0.6 + 脆弱度 × 1.2)。
"""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

from liaison.models.episode import Act, SpokenLine, new_id
from liaison.models.nudge import CadenceStatus, Nudge
from liaison.models.policy import CheckpointType
from liaison.models.relationship import RelationshipPair


class FragilityComponents(BaseModel):
    high_tension: float = 0.0
    low_trust: float = 0.0
    contradictions: float = 0.0
    total: float = 0.0


class FreshnessComponents(BaseModel):
    semantic_novelty: float = 0.0
    diversity_bonus: float = 0.0
    stagnation_buster: float = 0.0
    callback_revival: float = 0.0
    total: float = 0.0


class CoherenceComponents(BaseModel):
    persona_drift: float = 0.0
    act_grammar_violation: float = 0.0
    continuity_contradiction: float = 0.0
    safety_risk: float = 0.0
    total: float = 0.0


class EvaluationScores(BaseModel):
    freshness_gain: float = Field(default=0.0, description="新鲜度收益 0-1")
    coherence_cost: float = Field(default=0.0, description="连贯成本 0-1")
    fragility_index: float = Field(default=0.0, description="脆弱度 0-1")
    coherence_weight: float = Field(default=0.0, description="λ")
    final_score: float = Field(default=0.0, description="最终得分 [-1,1]")


class StructuralState(BaseModel):
    """评估时的结构状态快照。"""

    act: Act
    scene_index: int = 0
    scene_id: str = ""
    milestones: list[CheckpointType] = Field(default_factory=list)
    spotlight: tuple[str, str]
    watchers: list[str] = Field(default_factory=list, description="聚光灯之外的在场角色")
    pair: RelationshipPair | None = None
    callbacks: list[str] = Field(default_factory=list)
    plateau_counter: int = 0
    cadence: CadenceStatus = Field(default_factory=CadenceStatus)


class DialogueSummary(BaseModel):
    """评估时的近期对白窗口。"""

    recent_lines: list[SpokenLine] = Field(default_factory=list)


class EvaluationSnapshot(BaseModel):
    """一次候选打分记录（追加写入的评估日志）。"""

    id: str = Field(default_factory=new_id)
    scene_id: str
    candidate: Nudge
    scores: EvaluationScores
    rationales: list[str] = Field(default_factory=list)
    chosen: bool = False
    timestamp: float = Field(default_factory=time.time)


class EvaluationRecommendation(BaseModel):
    """consider() 的结果：推荐一个干预，或明确弃权。"""

    nudge: Nudge | None = None
    abstain: bool = False
    rationales: list[str] = Field(default_factory=list)
    scores: EvaluationScores = Field(default_factory=EvaluationScores)
    candidates_considered: int = 0
