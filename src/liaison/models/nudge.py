"""干预（nudge）相关数据模型。"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from liaison.models.episode import Act
from liaison.models.relationship import ChemistryDeltas


class NudgeType(str, Enum):
    """干预类型。"""
    RAISE_STAKES = "raise_stakes"  # 抬高赌注：短期张力偏置
    COMFORT = "comfort"  # 安抚：降张力、升安心
    VULNERABILITY = "vulnerability"  # 示弱：倾向自我袒露
    RECALL = "recall"  # 回调：重提沉睡的 token
    ASIDE = "aside"  # 旁白对：临时切换聚光灯
    TEMPO_UP = "tempo_up"  # 提速
    TEMPO_DOWN = "tempo_down"  # 放缓


class NudgeIntensity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"


class NudgeSource(str, Enum):
    OBSERVER = "observer"  # 人类观察者
    AUTO = "auto"  # 自动规则
    EVALUATOR = "evaluator"  # 评估引擎推荐


class Nudge(BaseModel):
    """一次干预请求。被接受后作为下一次 tick 的软偏置，随后丢弃。"""

    type: NudgeType = Field(description="干预类型")
    intensity: NudgeIntensity = Field(default=NudgeIntensity.MINOR, description="强度")
    source: NudgeSource = Field(default=NudgeSource.OBSERVER, description="来源")
    target: str | None = Field(default=None, description="目标角色（aside 用）")
    token: str | None = Field(default=None, description="回调 token（recall 用）")


class NudgeDescriptor(BaseModel):
    """干预目录中的一项。"""

    type: NudgeType
    intensity: NudgeIntensity = Field(default=NudgeIntensity.MINOR)
    description: str = Field(default="")
    bias_effects: ChemistryDeltas = Field(
        default_factory=ChemistryDeltas,
        description="对下一句台词关系变化的期望贡献，只用于偏置生成，不直接写入关系图",
    )
    act_restrictions: list[Act] = Field(
        default_factory=list, description="允许出现的幕，为空表示不限"
    )
    cooldown_exchanges: int = Field(default=0, ge=0, description="同类型干预的冷却回合数")
    persona_drift_risk: float = Field(
        default=0.1, ge=0.0, le=1.0, description="人设漂移风险（评估引擎使用）"
    )
    probe_line: str = Field(default="", description="代表该干预走向的示例台词（新颖度探针）")

    def permits_act(self, act: Act) -> bool:
        return not self.act_restrictions or act in self.act_restrictions


class NudgeDecision(BaseModel):
    """apply_nudge 的结果。拒绝是正常流程，不是错误。"""

    accepted: bool
    reason: str = Field(description="人类可读的接受/拒绝理由")
    nudge: Nudge | None = None

    def __bool__(self) -> bool:
        return self.accepted


class RecoveryBias(BaseModel):
    """重干预之后的恢复窗口：偏向安抚/澄清。"""

    exchanges_left: int = Field(default=2, ge=0)


class BiasFlags(BaseModel):
    """传给对白生成方的偏置开关。每个字段缺省为 None/False 表示不生效。"""

    recovery_comfort_clarify: bool = Field(default=False, description="恢复窗口：优先安抚/澄清")
    reassure_weight: float | None = Field(default=None, description="安抚倾向 0-1")
    self_disclosure_weight: float | None = Field(default=None, description="自我袒露倾向 0-1")
    stakes_weight: float | None = Field(default=None, description="加码倾向 0-1")
    recall_token: str | None = Field(default=None, description="要回收的回调 token")
    aside_pair: tuple[str, str] | None = Field(default=None, description="旁白对")
    cap_line_seconds: float | None = Field(default=None, description="单句时长上限（秒）")


class CadenceStatus(BaseModel):
    """节奏控制状态（控制台展示 + 评估引擎的节奏检查）。"""

    exchange: int = Field(default=0, description="当前回合计数")
    major_budget_used: int = Field(default=0, description="本场景已用重干预次数")
    major_budget_max: int = Field(default=1, description="每个冷却窗口允许的重干预次数")
    last_major_exchange: int | None = Field(default=None, description="上一次接受重干预的回合")
    exchanges_until_major: int = Field(default=0, description="距离允许下一次重干预还需的回合数")
    recovery_active: bool = Field(default=False)
    recovery_exchanges_left: int = Field(default=0)
    cooldowns: dict[NudgeType, int] = Field(
        default_factory=dict, description="各干预类型剩余冷却回合"
    )
