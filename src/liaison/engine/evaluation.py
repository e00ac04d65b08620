"""评估引擎：决定是否以及如何干预。

对当前幕允许的每个候选干预打分：

    最终得分 = 新鲜度收益 − λ × 连贯成本，   λ = 本幕基础权重 × (0.6 + 脆弱度 × 1.2)

场景越脆弱，连贯性越重要（最多放大到平静场景的 3 倍）。
引擎只给建议，从不直接修改故事状态；调用方决定是否通过 apply_nudge 提交。
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter, deque
from typing import TYPE_CHECKING, Any

from langchain_core.embeddings import Embeddings

from liaison.config.settings import RuntimeConfig
from liaison.engine.cadence import cadence_block_reason, describe_nudge
from liaison.models.episode import SpokenLine
from liaison.models.evaluation import (
    CoherenceComponents,
    DialogueSummary,
    EvaluationRecommendation,
    EvaluationScores,
    EvaluationSnapshot,
    FragilityComponents,
    FreshnessComponents,
    StructuralState,
)
from liaison.models.nudge import Nudge, NudgeIntensity, NudgeSource, NudgeType
from liaison.models.policy import ActGate, PolicyTables
from liaison.models.relationship import ChemistryDeltas
from liaison.models.telemetry import TelemetryEvent
from liaison.policy import load_policy
from liaison.state.fragility import compute_fragility
from liaison.state.plateau import text_similarity

if TYPE_CHECKING:
    from liaison.agents.safety import SafetyGuard

logger = logging.getLogger(__name__)

# 多样性奖励只看最近这么多次实际生效的干预
DIVERSITY_HISTORY = 10
# 本幕语法表未列出的干预类型的基线违背风险
GRAMMAR_BASELINE = 0.1
# 每晚一幕，连贯成本放大 10%
LATE_ACT_COHERENCE_STEP = 0.1


def lambda_weight(base_weight: float, fragility: float) -> float:
    """λ = 本幕基础权重 × (0.6 + 脆弱度 × 1.2)。"""
    return base_weight * (0.6 + fragility * 1.2)


def _cosine(a: list[float], b: list[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class EvaluationEngine:
    """多因素评估引擎。

    Args:
        policy: 策略表（候选来自本幕 act gate，参数来自干预目录）。
        config: 运行参数（最低推荐分、候选上限、日志上限等）。
        embeddings: 可选的 langchain Embeddings，用于语义新颖度；缺省用词集重合度。
        safety: 可选的安全复核，判定为不安全的候选安全风险记为满分。
    """

    def __init__(
        self,
        policy: PolicyTables | None = None,
        config: RuntimeConfig | None = None,
        embeddings: Embeddings | None = None,
        safety: SafetyGuard | None = None,
    ):
        self.policy = policy or load_policy()
        self.config = config or RuntimeConfig()
        self.embeddings = embeddings
        self.safety = safety

        self._lock = threading.Lock()
        self._snapshots: deque[EvaluationSnapshot] = deque(maxlen=self.config.max_snapshots)
        self._applied: deque[NudgeType] = deque(maxlen=DIVERSITY_HISTORY)
        self._recent_deltas: deque[ChemistryDeltas] = deque(maxlen=10)
        self._exchange_counter = 0
        self._major_count = 0
        self._last_major_exchange: int | None = None

    # ──────────────────────────────────────────
    # 遥测
    # ──────────────────────────────────────────

    def on_telemetry(self, event: TelemetryEvent) -> None:
        """订阅遥测流：记录实际生效的干预（多样性奖励）与回合计数。"""
        with self._lock:
            match event.kind:
                case "nudge.applied":
                    self._applied.append(event.nudge.type)
                    if event.nudge.intensity == NudgeIntensity.MAJOR:
                        self._major_count += 1
                        self._last_major_exchange = self._exchange_counter
                case "turn.end":
                    self._recent_deltas.append(event.deltas)
                case "metric.tick" if event.name == "exchange_counter":
                    self._exchange_counter = int(event.value)
                case _:
                    pass

    # ──────────────────────────────────────────
    # 评估
    # ──────────────────────────────────────────

    def consider(
        self, structural: StructuralState, dialogue: DialogueSummary
    ) -> EvaluationRecommendation:
        """返回推荐的干预，或带理由的明确弃权。打分过程中的任何异常都降级为弃权。"""
        try:
            return self._consider(structural, dialogue)
        except Exception as e:
            logger.error("评估失败，弃权: %s", e)
            return EvaluationRecommendation(
                abstain=True,
                rationales=["评估过程出错", "保守起见，本回合不干预"],
                scores=EvaluationScores(coherence_cost=1.0, fragility_index=1.0, final_score=-1.0),
            )

    def _consider(
        self, structural: StructuralState, dialogue: DialogueSummary
    ) -> EvaluationRecommendation:
        gate = self.policy.gate_for(structural.act)
        lines = dialogue.recent_lines
        fragility = self.fragility(structural, dialogue)
        weight = lambda_weight(gate.coherence_weight, fragility.total)

        candidates = self.candidates(structural)
        if not candidates:
            return EvaluationRecommendation(
                abstain=True,
                rationales=[f"第 {int(structural.act)} 幕当前没有可用的干预（均不允许或在冷却中）"],
                scores=EvaluationScores(
                    fragility_index=fragility.total, coherence_weight=weight
                ),
            )

        line_vectors = self._embed_lines(lines)
        with self._lock:
            applied = Counter(self._applied)

        scored: list[EvaluationSnapshot] = []
        for candidate in candidates:
            freshness = self.freshness(candidate, structural, lines, applied, line_vectors)
            coherence = self.coherence(candidate, structural, gate)
            final = max(-1.0, min(1.0, freshness.total - weight * coherence.total))
            scores = EvaluationScores(
                freshness_gain=freshness.total,
                coherence_cost=coherence.total,
                fragility_index=fragility.total,
                coherence_weight=weight,
                final_score=final,
            )
            scored.append(
                EvaluationSnapshot(
                    scene_id=structural.scene_id,
                    candidate=candidate,
                    scores=scores,
                    rationales=self._rationales(candidate, scores, freshness, structural),
                )
            )

        best = max(scored, key=lambda s: s.scores.final_score)
        recommendation = self._decide(best, structural, len(scored))
        with self._lock:
            self._snapshots.extend(scored)
        logger.debug(
            "评估第 %d 幕: %d 个候选，最佳 %s=%.3f，%s",
            int(structural.act),
            len(scored),
            best.candidate.type.value,
            best.scores.final_score,
            "弃权" if recommendation.abstain else "推荐",
        )
        return recommendation

    def _decide(
        self, best: EvaluationSnapshot, structural: StructuralState, considered: int
    ) -> EvaluationRecommendation:
        threshold = self.config.min_recommend_score
        if best.scores.final_score < threshold:
            return EvaluationRecommendation(
                abstain=True,
                rationales=[
                    f"所有候选都低于最低分 {threshold:.2f}"
                    f"（最佳 {best.candidate.type.value} {best.scores.final_score:.2f}）",
                    "维持当前走向",
                ],
                scores=best.scores,
                candidates_considered=considered,
            )

        blocked = cadence_block_reason(best.candidate, structural.cadence, self.policy.recovery_nudges)
        if blocked:
            return EvaluationRecommendation(
                abstain=True,
                rationales=[blocked, "遵守干预节奏限制"],
                scores=best.scores,
                candidates_considered=considered,
            )

        best.chosen = True
        return EvaluationRecommendation(
            nudge=best.candidate,
            rationales=list(best.rationales),
            scores=best.scores,
            candidates_considered=considered,
        )

    def candidates(self, structural: StructuralState) -> list[Nudge]:
        """本幕允许、且不在各自冷却期内的干预，最多 max_candidates 个。"""
        gate = self.policy.gate_for(structural.act)
        result: list[Nudge] = []
        for nudge_type in gate.allowed:
            if structural.cadence.cooldowns.get(nudge_type, 0) > 0:
                continue
            descriptor = self.policy.descriptor(nudge_type)
            token = None
            target = None
            if nudge_type == NudgeType.RECALL and structural.callbacks:
                token = structural.callbacks[0]
            if nudge_type == NudgeType.ASIDE:
                if not structural.watchers:
                    continue
                target = structural.watchers[0]
            result.append(
                Nudge(
                    type=nudge_type,
                    intensity=descriptor.intensity,
                    source=NudgeSource.EVALUATOR,
                    token=token,
                    target=target,
                )
            )
        return result[: self.config.max_candidates]

    # ──────────────────────────────────────────
    # 各分量
    # ──────────────────────────────────────────

    def fragility(self, structural: StructuralState, dialogue: DialogueSummary) -> FragilityComponents:
        return compute_fragility(dialogue.recent_lines, structural.pair)

    def freshness(
        self,
        candidate: Nudge,
        structural: StructuralState,
        lines: list[SpokenLine],
        applied: Counter | None = None,
        line_vectors: list[list[float]] | None = None,
    ) -> FreshnessComponents:
        novelty = self._semantic_novelty(candidate, lines, line_vectors)
        usage = (applied or Counter())[candidate.type]
        diversity = max(0.0, 1.0 - usage * 0.3)
        stagnation = self._stagnation(structural, lines)
        revival = 1.0 if candidate.token else 0.0
        total = min(1.0, 0.4 * novelty + 0.3 * diversity + 0.2 * stagnation + 0.1 * revival)
        return FreshnessComponents(
            semantic_novelty=novelty,
            diversity_bonus=diversity,
            stagnation_buster=stagnation,
            callback_revival=revival,
            total=total,
        )

    def coherence(
        self, candidate: Nudge, structural: StructuralState, gate: ActGate
    ) -> CoherenceComponents:
        descriptor = self.policy.descriptor(candidate.type)
        drift = descriptor.persona_drift_risk
        grammar = gate.grammar_violations.get(candidate.type, GRAMMAR_BASELINE)
        if candidate.type == NudgeType.RECALL and not structural.callbacks:
            continuity = 0.8
        else:
            continuity = 0.1
        safety = self._safety_risk(candidate)

        act_scale = 1.0 + (int(structural.act) - 1) * LATE_ACT_COHERENCE_STEP
        total = min(1.0, act_scale * (0.3 * drift + 0.25 * grammar + 0.25 * continuity + 0.2 * safety))
        return CoherenceComponents(
            persona_drift=drift,
            act_grammar_violation=grammar,
            continuity_contradiction=continuity,
            safety_risk=safety,
            total=total,
        )

    def _semantic_novelty(
        self,
        candidate: Nudge,
        lines: list[SpokenLine],
        line_vectors: list[list[float]] | None,
    ) -> float:
        if len(lines) < 2:
            return 0.8
        probe = self.policy.descriptor(candidate.type).probe_line or candidate.type.value
        recent = lines[-3:]
        if self.embeddings is not None and line_vectors:
            probe_vector = self.embeddings.embed_query(probe)
            sims = [_cosine(probe_vector, v) for v in line_vectors[-3:]]
        else:
            sims = [text_similarity(probe, line.text) for line in recent]
        return max(0.0, min(1.0, 1.0 - sum(sims) / len(sims)))

    def _embed_lines(self, lines: list[SpokenLine]) -> list[list[float]] | None:
        if self.embeddings is None or len(lines) < 2:
            return None
        return self.embeddings.embed_documents([line.text for line in lines[-3:]])

    def _stagnation(self, structural: StructuralState, lines: list[SpokenLine]) -> float:
        if len(lines) < 3:
            return 0.0
        if structural.plateau_counter >= self.config.plateau_alert_threshold:
            return 1.0
        avg = sum(line.deltas.total_magnitude() for line in lines[-3:]) / 3
        return 0.8 if avg < 0.05 else 0.2

    def _safety_risk(self, candidate: Nudge) -> float:
        if self.safety is not None and not self.safety.validate(describe_nudge(candidate)).is_safe:
            return 1.0
        if candidate.intensity == NudgeIntensity.MAJOR:
            return 0.2
        return 0.05

    def _rationales(
        self,
        candidate: Nudge,
        scores: EvaluationScores,
        freshness: FreshnessComponents,
        structural: StructuralState,
    ) -> list[str]:
        rationales: list[str] = []
        if scores.freshness_gain > 0.7:
            rationales.append("新颖度潜力高")
        if candidate.token:
            rationales.append(f"回收沉睡的回调: {candidate.token}")
        if freshness.stagnation_buster > 0.6:
            rationales.append("故事推进正在停滞")
        if scores.coherence_cost > 0.5:
            rationales.append("连贯风险偏高")
        if structural.act >= 4 and candidate.type == NudgeType.RAISE_STAKES:
            rationales.append("后段加码")
        if structural.act <= 2 and candidate.type == NudgeType.VULNERABILITY:
            rationales.append("前期建立自我袒露")
        if scores.fragility_index > 0.6 and candidate.type == NudgeType.COMFORT:
            rationales.append("场景脆弱，需要稳定")
        return rationales or ["常规推进干预"]

    # ──────────────────────────────────────────
    # 评估日志
    # ──────────────────────────────────────────

    def snapshots(self) -> list[EvaluationSnapshot]:
        with self._lock:
            return list(self._snapshots)

    def recent_scores(self, n: int = 5) -> list[EvaluationScores]:
        with self._lock:
            return [s.scores for s in list(self._snapshots)[-n:]]

    def clear_snapshots(self) -> None:
        with self._lock:
            self._snapshots.clear()

    def export_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "exchange_counter": self._exchange_counter,
                "applied_nudges": [t.value for t in self._applied],
                "major_nudge_count": self._major_count,
                "last_major_exchange": self._last_major_exchange,
                "recent_deltas": [d.model_dump() for d in list(self._recent_deltas)[-3:]],
                "snapshot_count": len(self._snapshots),
            }
