"""静态策略表：act gate、检查点规则、干预目录。

三张表都是纯数据，从 YAML 读入后在启动时做一致性校验，
不在代码里猜测它们之间的意图。
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from liaison.models.episode import Act
from liaison.models.nudge import NudgeDescriptor, NudgeType
from liaison.models.relationship import DIMENSIONS


class CheckpointType(str, Enum):
    MUTUAL_SPARK = "mutual_spark"  # 1→2 互相心动
    EXPLICIT_CONFLICT = "explicit_conflict"  # 2→3 冲突摆上台面
    NEED_BOUNDARY = "need_boundary"  # 3→4 说出需要/边界
    RELATIONAL_CHOICE = "relational_choice"  # 4→5 做出关系选择


class ActGate(BaseModel):
    """每一幕允许/禁止的干预类型与基础连贯权重。"""

    act: Act
    allowed: list[NudgeType] = Field(default_factory=list, description="允许的干预")
    blocked: list[NudgeType] = Field(default_factory=list, description="禁止的干预")
    coherence_weight: float = Field(gt=0, description="基础连贯权重（λ 的基数）")
    description: str = Field(default="")
    grammar_violations: dict[NudgeType, float] = Field(
        default_factory=dict, description="违背本幕语法的风险，未列出的类型取基线值"
    )


class CheckpointEvidence(BaseModel):
    """检查点的"证据"条件：任一满足即可。"""

    open_callback: bool = Field(default=False, description="存在未回收的回调 token 即算证据")
    keywords: list[str] = Field(default_factory=list, description="近期台词中出现的关键词")
    delta_above: dict[str, float] = Field(
        default_factory=dict, description="近期某句台词在某维度的变化量超过阈值"
    )

    def is_empty(self) -> bool:
        return not (self.open_callback or self.keywords or self.delta_above)


class CheckpointRule(BaseModel):
    """幕间推进规则。"""

    type: CheckpointType
    from_act: Act
    to_act: Act
    description: str = Field(default="")
    pair_at_least: dict[str, float] = Field(
        default_factory=dict, description="聚光灯关系对必须达到的下限（全部满足）"
    )
    evidence: CheckpointEvidence = Field(default_factory=CheckpointEvidence)


class PolicyTables(BaseModel):
    """完整策略表。"""

    act_gates: list[ActGate]
    checkpoints: list[CheckpointRule]
    nudge_catalog: list[NudgeDescriptor]
    recovery_nudges: list[NudgeType] = Field(
        default_factory=lambda: [NudgeType.COMFORT, NudgeType.TEMPO_DOWN],
        description="恢复窗口中评估引擎只推荐这些安抚/澄清类干预",
    )

    def gate_for(self, act: Act) -> ActGate:
        for gate in self.act_gates:
            if gate.act == act:
                return gate
        raise KeyError(act)

    def checkpoint_from(self, act: Act) -> CheckpointRule | None:
        for rule in self.checkpoints:
            if rule.from_act == act:
                return rule
        return None

    def descriptor(self, nudge_type: NudgeType) -> NudgeDescriptor:
        for d in self.nudge_catalog:
            if d.type == nudge_type:
                return d
        raise KeyError(nudge_type)

    def consistency_problems(self) -> list[str]:
        """返回所有一致性问题（空列表表示通过）。"""
        problems: list[str] = []
        catalog = {d.type for d in self.nudge_catalog}

        gate_acts = [g.act for g in self.act_gates]
        for act in Act:
            if gate_acts.count(act) != 1:
                problems.append(f"第 {int(act)} 幕需要且只能有一个 act gate")

        for gate in self.act_gates:
            overlap = set(gate.allowed) & set(gate.blocked)
            if overlap:
                names = ", ".join(sorted(t.value for t in overlap))
                problems.append(f"第 {int(gate.act)} 幕同时允许又禁止: {names}")
            for t in [*gate.allowed, *gate.blocked, *gate.grammar_violations]:
                if t not in catalog:
                    problems.append(f"第 {int(gate.act)} 幕引用了目录中不存在的干预: {t.value}")
            for t in gate.allowed:
                if t in catalog and not self.descriptor(t).permits_act(gate.act):
                    problems.append(
                        f"第 {int(gate.act)} 幕允许 {t.value}，但目录限制其只能用于 "
                        f"{[int(a) for a in self.descriptor(t).act_restrictions]}"
                    )

        chain = sorted((int(r.from_act), int(r.to_act)) for r in self.checkpoints)
        if chain != [(1, 2), (2, 3), (3, 4), (4, 5)]:
            problems.append(f"检查点必须构成 1→2→3→4→5 的单链，实际为 {chain}")
        for rule in self.checkpoints:
            for dim, value in [*rule.pair_at_least.items(), *rule.evidence.delta_above.items()]:
                if dim not in DIMENSIONS:
                    problems.append(f"检查点 {rule.type.value} 使用了未知维度 {dim}")
                if not 0.0 <= value <= 1.0:
                    problems.append(f"检查点 {rule.type.value} 的阈值 {dim}={value} 超出 [0,1]")
            if not rule.pair_at_least and rule.evidence.is_empty():
                problems.append(f"检查点 {rule.type.value} 没有任何条件")

        for t in self.recovery_nudges:
            if t not in catalog:
                problems.append(f"恢复窗口引用了目录中不存在的干预: {t.value}")
        return problems
