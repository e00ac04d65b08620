"""场景脆弱度：张力上升、信任下降、前后矛盾三者的加权和。

叙事运行时（控制台 / BeatContext 的 scene_fragility）和评估引擎（λ）共用同一套算法。
"""

from __future__ import annotations

import re

from liaison.models.episode import SpokenLine
from liaison.models.evaluation import FragilityComponents
from liaison.models.relationship import RelationshipPair
from liaison.state.relationship_graph import clamp01

# 单句张力增量达到此值即视为"满格"张力
_TENSION_DELTA_SCALE = 0.25
# 单句信任减量达到此值即视为"满格"失信
_TRUST_DELTA_SCALE = 0.1

# 相邻两句中一前一后出现即视为矛盾
CONTRADICTORY_PAIRS: tuple[tuple[str, str], ...] = (
    ("yes", "no"),
    ("love", "hate"),
    ("trust", "distrust"),
    ("want", "don't want"),
    ("always", "never"),
    ("喜欢", "讨厌"),
    ("相信", "怀疑"),
    ("爱你", "恨你"),
    ("永远", "从来没有"),
)

_CONTRADICTION_FOUND = 0.5
_CONTRADICTION_BASELINE = 0.1


def _mentions(text: str, word: str) -> bool:
    if word.isascii():
        return re.search(rf"\b{re.escape(word)}\b", text) is not None
    return word in text


def contradiction_score(recent_lines: list[SpokenLine]) -> float:
    """最后两句是否出现明显的矛盾措辞。不足两句时为 0。"""
    if len(recent_lines) < 2:
        return 0.0
    first = recent_lines[-2].text.lower()
    second = recent_lines[-1].text.lower()
    for a, b in CONTRADICTORY_PAIRS:
        if (_mentions(first, a) and _mentions(second, b)) or (
            _mentions(first, b) and _mentions(second, a)
        ):
            return _CONTRADICTION_FOUND
    return _CONTRADICTION_BASELINE


def compute_fragility(
    recent_lines: list[SpokenLine],
    pair: RelationshipPair | None = None,
) -> FragilityComponents:
    """计算脆弱度。

    张力/信任分量来自近期台词的变化量；给出聚光灯关系对时，
    与关系对的当前水平各占一半（张力高于 0.5、信任低于 0.5 的部分）。
    """
    if recent_lines:
        rising = sum(max(0.0, line.deltas.tension) for line in recent_lines) / len(recent_lines)
        falling = sum(max(0.0, -line.deltas.trust) for line in recent_lines) / len(recent_lines)
    else:
        rising = falling = 0.0
    high_tension = clamp01(rising / _TENSION_DELTA_SCALE)
    low_trust = clamp01(falling / _TRUST_DELTA_SCALE)

    if pair is not None:
        high_tension = 0.5 * high_tension + 0.5 * clamp01((pair.tension - 0.5) * 2)
        low_trust = 0.5 * low_trust + 0.5 * clamp01((0.5 - pair.trust) * 2)

    contradictions = contradiction_score(recent_lines)
    total = min(1.0, 0.4 * high_tension + 0.4 * low_trust + 0.2 * contradictions)
    return FragilityComponents(
        high_tension=high_tension,
        low_trust=low_trust,
        contradictions=contradictions,
        total=total,
    )
