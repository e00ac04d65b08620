"""检查点判定：幕间推进的谓词求值。

规则本身是策略表里的数据（见 liaison.models.policy.CheckpointRule），
这里只负责对"当前关系对 + 近期台词窗口"求值。
"""

from __future__ import annotations

from liaison.models.episode import Act, SpokenLine
from liaison.models.policy import CheckpointRule, PolicyTables
from liaison.models.relationship import RelationshipPair


def pair_meets_thresholds(rule: CheckpointRule, pair: RelationshipPair) -> bool:
    return all(getattr(pair, dim) >= value for dim, value in rule.pair_at_least.items())


def has_evidence(
    rule: CheckpointRule,
    recent_lines: list[SpokenLine],
    open_callbacks: list[str],
) -> bool:
    """证据条件：任一满足即可。没有配置证据条件的规则视为恒满足。"""
    evidence = rule.evidence
    if evidence.is_empty():
        return True

    if evidence.open_callback and open_callbacks:
        return True

    for line in recent_lines:
        if evidence.keywords:
            lowered = line.text.lower()
            if any(kw.lower() in lowered for kw in evidence.keywords):
                return True
        for dim, threshold in evidence.delta_above.items():
            if getattr(line.deltas, dim) > threshold:
                return True
    return False


def check_transition(
    policy: PolicyTables,
    act: Act,
    pair: RelationshipPair | None,
    recent_lines: list[SpokenLine],
    open_callbacks: list[str],
) -> CheckpointRule | None:
    """当前幕的检查点是否满足；满足时返回该规则。

    第五幕没有出口规则；聚光灯对不在关系图中时不推进。
    """
    rule = policy.checkpoint_from(act)
    if rule is None or pair is None:
        return None
    if not pair_meets_thresholds(rule, pair):
        return None
    if not has_evidence(rule, recent_lines, open_callbacks):
        return None
    return rule
