"""检查点判定与幕推进。"""

from conftest import CAST, set_spotlight_pair, spoken

from liaison.agents.dialogue import ScriptedDialogueGenerator
from liaison.models.episode import Act, EndReason
from liaison.models.policy import CheckpointType
from liaison.models.relationship import RelationshipPair
from liaison.state.checkpoints import check_transition, has_evidence


def test_attraction_without_evidence_stays_in_setup(policy):
    pair = RelationshipPair(attraction=0.45, trust=0.2)
    lines = [spoken("你好。"), spoken("你好。")]
    assert check_transition(policy, Act.SETUP, pair, lines, []) is None


def test_open_callback_counts_as_evidence(policy):
    pair = RelationshipPair(attraction=0.45, trust=0.2)
    rule = check_transition(policy, Act.SETUP, pair, [spoken()], ["旧照片"])
    assert rule is not None
    assert rule.type == CheckpointType.MUTUAL_SPARK
    assert rule.to_act == Act.RISING_ACTION


def test_delta_evidence_is_strictly_greater(policy):
    pair = RelationshipPair(attraction=0.45)
    assert check_transition(policy, Act.SETUP, pair, [spoken(trust=0.05)], []) is None
    assert check_transition(policy, Act.SETUP, pair, [spoken(trust=0.06)], []) is not None


def test_pair_threshold_is_required(policy):
    pair = RelationshipPair(attraction=0.39)
    assert check_transition(policy, Act.SETUP, pair, [spoken(trust=0.2)], ["旧照片"]) is None


def test_keywords_are_case_insensitive(policy):
    pair = RelationshipPair(tension=0.7)
    rule = check_transition(policy, Act.RISING_ACTION, pair, [spoken("I DISAGREE with you.")], [])
    assert rule is not None and rule.type == CheckpointType.EXPLICIT_CONFLICT


def test_chinese_keyword_evidence(policy):
    pair = RelationshipPair(trust=0.65)
    rule = check_transition(policy, Act.CLIMAX, pair, [spoken("我需要一点空间。")], [])
    assert rule is not None and rule.to_act == Act.FALLING_ACTION


def test_resolution_has_no_exit(policy):
    pair = RelationshipPair(attraction=1.0, trust=1.0, tension=1.0, comfort=1.0)
    assert check_transition(policy, Act.RESOLUTION, pair, [spoken("在一起")], ["x"]) is None


def test_missing_pair_never_transitions(policy):
    assert check_transition(policy, Act.SETUP, None, [spoken(trust=0.2)], ["x"]) is None


def test_rule_without_evidence_block_is_satisfied(policy):
    rule = policy.checkpoint_from(Act.SETUP).model_copy(deep=True)
    rule.evidence.open_callback = False
    rule.evidence.delta_above = {}
    assert has_evidence(rule, [], [])


def test_tick_advances_when_predicate_holds(make_runtime, events):
    """聚光灯对达标且有未回收回调时，一个回合内进入第二幕。"""
    runtime = make_runtime()
    handle = runtime.start_episode(CAST)
    handle.state.callbacks = ["海边的约定"]
    set_spotlight_pair(handle, attraction=0.45, trust=0.2)

    result = runtime.tick(handle)

    assert len(result.transitions) == 1
    transition = result.transitions[0]
    assert transition.reason == EndReason.CHECKPOINT
    assert transition.from_scene.act == Act.SETUP
    assert transition.to_scene.act == Act.RISING_ACTION
    assert transition.to_scene.scene == 1

    state = handle.state
    assert state.act == Act.RISING_ACTION
    assert state.episode.act_path == [Act.SETUP, Act.RISING_ACTION]
    assert state.milestones == [CheckpointType.MUTUAL_SPARK]
    assert state.plateau_counter == 0
    closed = state.episode.scenes[0]
    assert closed.ended_reason == EndReason.CHECKPOINT
    assert closed.ended_at is not None
    assert state.scene.is_open


def test_one_transition_per_tick(make_runtime):
    """即使下一幕的条件也已满足，一个回合最多推进一幕。"""
    runtime = make_runtime(ScriptedDialogueGenerator())
    handle = runtime.start_episode(CAST)
    handle.state.callbacks = ["海边的约定"]
    set_spotlight_pair(handle, attraction=0.9, trust=0.9, tension=0.9)

    result = runtime.tick(handle)
    assert len(result.transitions) == 1
    assert handle.state.act == Act.RISING_ACTION


def test_act_path_is_monotonic_through_demo(make_runtime):
    runtime = make_runtime(ScriptedDialogueGenerator())
    handle = runtime.start_episode(CAST)
    for _ in range(10):
        runtime.tick(handle)
    path = [int(a) for a in handle.state.episode.act_path]
    assert path == [1, 2, 3, 4, 5]
