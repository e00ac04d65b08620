"""评估引擎：脆弱度、λ、新鲜度 / 连贯成本与弃权规则。"""

from collections import Counter

import pytest
from conftest import spoken
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from liaison.config.settings import RuntimeConfig
from liaison.engine.evaluation import EvaluationEngine, lambda_weight
from liaison.models.episode import Act
from liaison.models.evaluation import DialogueSummary, StructuralState
from liaison.models.nudge import CadenceStatus, Nudge, NudgeIntensity, NudgeSource, NudgeType
from liaison.models.relationship import RelationshipPair
from liaison.models.telemetry import NudgeAppliedEvent
from liaison.state.fragility import compute_fragility, contradiction_score

STABLE_LINES = [
    spoken("今天的海很平静。"),
    spoken("嗯，适合散步。"),
    spoken("我们去买点喝的吧。"),
]
FRAGILE_LINES = [
    spoken("你总是这样。", tension=0.25, trust=-0.1),
    spoken("I love you, you know that.", tension=0.25, trust=-0.1),
    spoken("Sometimes I hate you.", tension=0.25, trust=-0.1),
]


def _structural(act=Act.RISING_ACTION, pair=None, **kwargs) -> StructuralState:
    return StructuralState(
        act=act,
        scene_id="scene-1",
        spotlight=("林夏", "周屿"),
        pair=pair or RelationshipPair(),
        **kwargs,
    )


def _scores_by_type(engine):
    return {s.candidate.type: s.scores for s in engine.snapshots()}


def test_lambda_weight():
    assert lambda_weight(1.0, 0.0) == pytest.approx(0.6)
    assert lambda_weight(1.0, 1.0) == pytest.approx(1.8)
    assert lambda_weight(1.6, 0.5) == pytest.approx(1.6 * 1.2)


def test_fragility_components():
    fragile = compute_fragility(FRAGILE_LINES)
    assert fragile.high_tension == pytest.approx(1.0)
    assert fragile.low_trust == pytest.approx(1.0)
    assert fragile.contradictions == pytest.approx(0.5)
    assert fragile.total == pytest.approx(0.9)

    stable = compute_fragility(STABLE_LINES)
    assert stable.total == pytest.approx(0.02)
    assert compute_fragility([]).total == 0.0


def test_fragility_blends_pair_levels():
    pair = RelationshipPair(tension=0.9, trust=0.1)
    blended = compute_fragility(FRAGILE_LINES, pair)
    assert blended.high_tension == pytest.approx(0.9)
    assert blended.low_trust == pytest.approx(0.9)


def test_contradiction_needs_two_lines():
    assert contradiction_score([spoken("yes")]) == 0.0
    assert contradiction_score([spoken("我永远相信你"), spoken("我从来没有相信过谁")]) == 0.5
    assert contradiction_score([spoken("yesterday"), spoken("nothing")]) == 0.1


def test_final_score_is_freshness_minus_weighted_coherence(policy):
    engine = EvaluationEngine(policy)
    engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    snapshots = engine.snapshots()
    assert snapshots
    for s in snapshots:
        expected = max(-1.0, min(1.0, s.scores.freshness_gain - s.scores.coherence_weight * s.scores.coherence_cost))
        assert s.scores.final_score == pytest.approx(expected)
        assert s.candidate.source == NudgeSource.EVALUATOR


def test_fragile_scene_weighs_coherence_more(policy):
    stable_engine = EvaluationEngine(policy)
    fragile_engine = EvaluationEngine(policy)
    stable_engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    fragile_engine.consider(
        _structural(pair=RelationshipPair(tension=0.9, trust=0.1)),
        DialogueSummary(recent_lines=FRAGILE_LINES),
    )
    stable = _scores_by_type(stable_engine)
    fragile = _scores_by_type(fragile_engine)

    assert set(stable) == set(fragile)
    for nudge_type in stable:
        s, f = stable[nudge_type], fragile[nudge_type]
        assert f.fragility_index > s.fragility_index
        assert f.coherence_weight > s.coherence_weight
        assert f.coherence_cost == pytest.approx(s.coherence_cost)
        assert f.freshness_gain - f.final_score > s.freshness_gain - s.final_score


def test_later_acts_cost_more(policy):
    engine = EvaluationEngine(policy)
    gate2 = policy.gate_for(Act.RISING_ACTION)
    gate4 = policy.gate_for(Act.FALLING_ACTION)
    nudge = Nudge(type=NudgeType.VULNERABILITY)
    early = engine.coherence(nudge, _structural(act=Act.RISING_ACTION), gate2)
    late = engine.coherence(nudge, _structural(act=Act.FALLING_ACTION), gate4)
    assert late.total > early.total


def test_recall_candidate_carries_first_callback(policy):
    engine = EvaluationEngine(policy)
    candidates = engine.candidates(_structural(act=Act.SETUP, callbacks=["旧照片", "车票"]))
    recall = next(c for c in candidates if c.type == NudgeType.RECALL)
    assert recall.token == "旧照片"
    assert recall.intensity == NudgeIntensity.MINOR


def test_aside_candidate_targets_a_watcher(policy):
    engine = EvaluationEngine(policy)
    candidates = engine.candidates(_structural(watchers=["沈眠"]))
    aside = next(c for c in candidates if c.type == NudgeType.ASIDE)
    assert aside.target == "沈眠"

    alone = engine.candidates(_structural())
    assert NudgeType.ASIDE not in {c.type for c in alone}


def test_recall_without_callbacks_risks_continuity(policy):
    engine = EvaluationEngine(policy)
    gate = policy.gate_for(Act.SETUP)
    recall = Nudge(type=NudgeType.RECALL)
    assert engine.coherence(recall, _structural(act=Act.SETUP), gate).continuity_contradiction == 0.8


def test_cooldowns_exclude_candidates(policy):
    engine = EvaluationEngine(policy)
    cadence = CadenceStatus(
        cooldowns={NudgeType.COMFORT: 1, NudgeType.RECALL: 2, NudgeType.TEMPO_DOWN: 1}
    )
    recommendation = engine.consider(
        _structural(act=Act.RESOLUTION, cadence=cadence), DialogueSummary()
    )
    assert recommendation.abstain
    assert recommendation.candidates_considered == 0
    assert engine.snapshots() == []


def test_abstains_below_threshold(policy):
    engine = EvaluationEngine(policy, RuntimeConfig(min_recommend_score=1.1))
    recommendation = engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    assert recommendation.abstain
    assert recommendation.nudge is None
    assert "最低分" in recommendation.rationales[0]
    assert not any(s.chosen for s in engine.snapshots())


def test_abstains_during_recovery(policy):
    engine = EvaluationEngine(policy, RuntimeConfig(min_recommend_score=-1.0))
    cadence = CadenceStatus(recovery_active=True, recovery_exchanges_left=1)
    recommendation = engine.consider(
        _structural(act=Act.CLIMAX, cadence=cadence), DialogueSummary(recent_lines=STABLE_LINES)
    )
    assert recommendation.abstain
    assert "恢复窗口" in recommendation.rationales[0]


def test_recommends_best_candidate(policy):
    engine = EvaluationEngine(policy, RuntimeConfig(min_recommend_score=-1.0))
    recommendation = engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    assert not recommendation.abstain
    chosen = [s for s in engine.snapshots() if s.chosen]
    assert len(chosen) == 1
    assert chosen[0].candidate == recommendation.nudge
    best = max(s.scores.final_score for s in engine.snapshots())
    assert recommendation.scores.final_score == pytest.approx(best)


class _BrokenEmbeddings(Embeddings):
    def embed_documents(self, texts):
        raise RuntimeError("向量服务不可用")

    def embed_query(self, text):
        raise RuntimeError("向量服务不可用")


def test_internal_error_becomes_abstention(policy):
    engine = EvaluationEngine(policy, embeddings=_BrokenEmbeddings())
    recommendation = engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    assert recommendation.abstain
    assert recommendation.scores.final_score == -1.0
    assert "出错" in recommendation.rationales[0]


def test_embedding_novelty_stays_in_range(policy):
    engine = EvaluationEngine(policy, embeddings=DeterministicFakeEmbedding(size=16))
    engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    snapshots = engine.snapshots()
    assert snapshots
    for s in snapshots:
        assert 0.0 <= s.scores.freshness_gain <= 1.0


def test_novelty_defaults_with_short_history(policy):
    engine = EvaluationEngine(policy)
    freshness = engine.freshness(Nudge(type=NudgeType.COMFORT), _structural(), [spoken()])
    assert freshness.semantic_novelty == 0.8
    assert freshness.stagnation_buster == 0.0


def test_applied_nudges_reduce_diversity(policy):
    engine = EvaluationEngine(policy)
    for _ in range(2):
        engine.on_telemetry(
            NudgeAppliedEvent(
                episode_id="ep",
                nudge=Nudge(type=NudgeType.COMFORT),
                source=NudgeSource.OBSERVER,
            )
        )
    engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    scores = _scores_by_type(engine)
    assert engine.export_metrics()["applied_nudges"] == ["comfort", "comfort"]

    applied = Counter([NudgeType.COMFORT, NudgeType.COMFORT])
    comfort = engine.freshness(Nudge(type=NudgeType.COMFORT), _structural(), STABLE_LINES, applied)
    assert comfort.diversity_bonus == pytest.approx(0.4)
    assert scores[NudgeType.COMFORT].freshness_gain < 1.0


def test_snapshot_log_is_bounded(policy):
    engine = EvaluationEngine(policy, RuntimeConfig(max_snapshots=3))
    for _ in range(3):
        engine.consider(_structural(), DialogueSummary(recent_lines=STABLE_LINES))
    assert len(engine.snapshots()) == 3
    assert len(engine.recent_scores(2)) == 2
    engine.clear_snapshots()
    assert engine.snapshots() == []


def test_consider_does_not_mutate_inputs(policy):
    engine = EvaluationEngine(policy)
    structural = _structural(callbacks=["旧照片"])
    dialogue = DialogueSummary(recent_lines=list(STABLE_LINES))
    before = (structural.model_dump(), dialogue.model_dump())
    engine.consider(structural, dialogue)
    assert (structural.model_dump(), dialogue.model_dump()) == before


def test_same_dialogue_scores_lower_when_fragile(policy):
    """台词文本相同、只有变化量不同时，脆弱场景的每个候选得分都不高于平稳场景。"""
    texts = ["我们聊聊吧。", "好，你先说。", "我一直在想这件事。"]
    fragile_lines = [spoken(t, tension=0.3, trust=-0.1) for t in texts]
    stable_lines = [spoken(t, comfort=0.15, trust=0.1) for t in texts]

    fragile_engine = EvaluationEngine(policy)
    stable_engine = EvaluationEngine(policy)
    fragile_engine.consider(_structural(), DialogueSummary(recent_lines=fragile_lines))
    stable_engine.consider(_structural(), DialogueSummary(recent_lines=stable_lines))

    fragile = _scores_by_type(fragile_engine)
    stable = _scores_by_type(stable_engine)
    for nudge_type, s in stable.items():
        f = fragile[nudge_type]
        assert f.fragility_index > s.fragility_index
        assert f.final_score <= s.final_score
