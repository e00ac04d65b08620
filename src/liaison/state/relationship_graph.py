"""关系图更新：聚光灯对的直接变化 + 对其他角色对的涟漪效应。"""

from __future__ import annotations

import itertools
import logging

from liaison.models.relationship import (
    DIMENSIONS,
    ChemistryDeltas,
    RelationshipPair,
    pair_key,
)

logger = logging.getLogger(__name__)

# 涟漪强度：其他角色对只感受到主对变化的 10%
RIPPLE_STRENGTH = 0.1
# 主对张力增量超过此值才触发嫉妒涟漪
JEALOUSY_THRESHOLD = 0.1
# 嫉妒涟漪中张力 / 信任各自的附加系数
JEALOUSY_TENSION_FACTOR = 0.5
JEALOUSY_TRUST_FACTOR = 0.3


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def clamp_pair(pair: RelationshipPair) -> None:
    """把四个维度全部 clamp 回 [0,1]（原地修改）。"""
    for dim in DIMENSIONS:
        setattr(pair, dim, clamp01(getattr(pair, dim)))


def init_relationships(
    characters: list[str], baseline: RelationshipPair
) -> dict[str, RelationshipPair]:
    """为所有无序角色对建立关系记录，初值取 baseline。"""
    graph: dict[str, RelationshipPair] = {}
    for a, b in itertools.combinations(characters, 2):
        graph[pair_key(a, b)] = baseline.model_copy()
    return graph


def apply_line_deltas(
    graph: dict[str, RelationshipPair],
    spotlight: tuple[str, str],
    deltas: ChemistryDeltas,
) -> None:
    """把一句台词的变化量写入关系图（原地修改），随后向其余角色对传播涟漪。

    聚光灯对不在图中时（例如旁观者之间）不做任何修改。
    """
    primary_key = pair_key(*spotlight)
    primary = graph.get(primary_key)
    if primary is None:
        logger.debug("关系图中没有聚光灯对 %s，跳过", primary_key)
        return

    for dim in DIMENSIONS:
        setattr(primary, dim, getattr(primary, dim) + getattr(deltas, dim))
    clamp_pair(primary)

    apply_ripple(graph, primary_key, deltas)


def apply_ripple(
    graph: dict[str, RelationshipPair],
    primary_key: str,
    deltas: ChemistryDeltas,
) -> None:
    """涟漪效应。

    - 共喜：主对吸引或安心有正增量时，其余对按 RIPPLE_STRENGTH 比例获得吸引与安心变化
    - 嫉妒：主对张力增量超过 JEALOUSY_THRESHOLD 时，其余对张力上升、信任下降
    """
    compersion = deltas.attraction > 0 or deltas.comfort > 0
    jealousy = deltas.tension > JEALOUSY_THRESHOLD
    if not (compersion or jealousy):
        return

    for key, pair in graph.items():
        if key == primary_key:
            continue
        if compersion:
            pair.attraction += deltas.attraction * RIPPLE_STRENGTH
            pair.comfort += deltas.comfort * RIPPLE_STRENGTH
        if jealousy:
            pair.tension += deltas.tension * RIPPLE_STRENGTH * JEALOUSY_TENSION_FACTOR
            pair.trust -= deltas.tension * RIPPLE_STRENGTH * JEALOUSY_TRUST_FACTOR
        clamp_pair(pair)
