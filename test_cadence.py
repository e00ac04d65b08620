"""干预节奏：act gate、重干预间隔、恢复窗口与安全复核。"""

import pytest
from conftest import CAST, set_spotlight_pair

from liaison.engine.cadence import cadence_block_reason, describe_nudge
from liaison.models.dialogue import SafetyVerdict
from liaison.models.episode import Act, EndReason
from liaison.models.nudge import CadenceStatus, Nudge, NudgeIntensity, NudgeSource, NudgeType
from liaison.state.story_state import open_next_scene

RAISE_STAKES = Nudge(type=NudgeType.RAISE_STAKES, intensity=NudgeIntensity.MAJOR)
COMFORT = Nudge(type=NudgeType.COMFORT)


def _enter_act(handle, act: Act) -> None:
    state = handle.state
    state.episode.act_path.append(act)
    open_next_scene(state, act, EndReason.CHECKPOINT)


@pytest.fixture
def act2(runtime, handle):
    """通过真实的检查点进入第二幕。"""
    handle.state.callbacks = ["海边的约定"]
    set_spotlight_pair(handle, attraction=0.45, trust=0.2)
    runtime.tick(handle)
    assert handle.state.act == Act.RISING_ACTION
    return handle


def test_blocked_nudge_in_setup(runtime, handle):
    decision = runtime.apply_nudge(handle, RAISE_STAKES)
    assert not decision
    assert "raise_stakes" in decision.reason
    assert handle.state.pending_nudges == []


def test_aside_blocked_in_resolution(runtime, handle):
    _enter_act(handle, Act.RESOLUTION)
    decision = runtime.apply_nudge(handle, Nudge(type=NudgeType.ASIDE, target="沈眠"))
    assert not decision.accepted
    assert "禁止" in decision.reason


def test_not_allowed_nudge_is_rejected(runtime, handle):
    decision = runtime.apply_nudge(handle, Nudge(type=NudgeType.TEMPO_UP))
    assert not decision.accepted
    assert "不允许" in decision.reason


def test_minor_nudge_is_buffered_until_next_tick(runtime, handle, events):
    decision = runtime.apply_nudge(handle, COMFORT)
    assert decision.accepted
    assert handle.state.pending_nudges == [COMFORT]
    assert handle.state.scene.minor_nudges == 1
    assert events == []

    result = runtime.tick(handle)
    assert result.telemetry[0].kind == "nudge.applied"
    assert result.telemetry[0].source == NudgeSource.OBSERVER
    assert handle.state.pending_nudges == []


def test_major_gap_and_recovery(runtime, act2):
    handle = act2
    first = runtime.apply_nudge(handle, RAISE_STAKES)
    assert first.accepted
    state = handle.state
    assert state.last_major_exchange == state.exchange == 1
    assert state.recovery is not None and state.recovery.exchanges_left == 2
    assert state.scene.major_nudges == 1

    runtime.tick(handle)
    second = runtime.apply_nudge(handle, RAISE_STAKES)
    assert not second.accepted
    assert "间隔" in second.reason

    # 恢复窗口每个回合递减，两回合后关闭
    assert handle.state.recovery.exchanges_left == 1
    runtime.tick(handle)
    assert handle.state.recovery is None

    for _ in range(4):
        runtime.tick(handle)
    assert handle.state.exchange - handle.state.last_major_exchange == 6
    assert runtime.apply_nudge(handle, RAISE_STAKES).accepted


def test_intensity_comes_from_catalog(runtime, act2):
    handle = act2
    decisions = [runtime.apply_nudge(handle, Nudge(type=NudgeType.RAISE_STAKES)) for _ in range(3)]
    assert [d.accepted for d in decisions] == [True, False, False]
    assert decisions[0].nudge.intensity == NudgeIntensity.MAJOR
    assert "间隔" in decisions[1].reason

    state = handle.state
    assert state.last_major_exchange == state.exchange
    assert state.recovery is not None
    assert state.scene.major_nudges == 1
    assert state.pending_nudges[0].intensity == NudgeIntensity.MAJOR


def test_caller_cannot_upgrade_minor_nudge(runtime, act2):
    decision = runtime.apply_nudge(
        act2, Nudge(type=NudgeType.COMFORT, intensity=NudgeIntensity.MAJOR)
    )
    assert decision.accepted
    assert decision.nudge.intensity == NudgeIntensity.MINOR
    assert act2.state.recovery is None
    assert act2.state.last_major_exchange is None
    assert act2.state.scene.minor_nudges == 1


def test_recovery_sets_comfort_bias(runtime, act2):
    runtime.apply_nudge(act2, RAISE_STAKES)
    context = runtime.beat_context(act2.state)
    assert context.bias_flags.recovery_comfort_clarify
    assert context.bias_flags.stakes_weight == pytest.approx(0.4)
    assert any("recovery" in c for c in context.constraints)


def test_tempo_up_caps_line_seconds(runtime, act2):
    assert runtime.apply_nudge(act2, Nudge(type=NudgeType.TEMPO_UP)).accepted
    context = runtime.beat_context(act2.state)
    assert context.bias_flags.cap_line_seconds == pytest.approx(6.0)


def test_aside_sets_aside_pair(runtime, act2):
    assert runtime.apply_nudge(act2, Nudge(type=NudgeType.ASIDE, target="沈眠")).accepted
    context = runtime.beat_context(act2.state)
    assert context.bias_flags.aside_pair == ("林夏", "沈眠")


@pytest.mark.parametrize("target", [None, "路人", "林夏", "周屿"])
def test_aside_needs_a_watcher_target(runtime, act2, target):
    decision = runtime.apply_nudge(act2, Nudge(type=NudgeType.ASIDE, target=target))
    assert not decision.accepted
    assert "旁观角色" in decision.reason
    assert act2.state.pending_nudges == []
    assert NudgeType.ASIDE not in act2.state.last_applied


def test_cooldowns_are_reported(runtime, handle):
    runtime.apply_nudge(handle, COMFORT)
    cadence = runtime.get_state(handle).cadence
    assert cadence.cooldowns[NudgeType.COMFORT] == 2
    runtime.tick(handle)
    assert runtime.get_state(handle).cadence.cooldowns[NudgeType.COMFORT] == 1


class _Unsafe:
    def validate(self, text):
        return SafetyVerdict(is_safe=False, reason="不合适")


class _Broken:
    def validate(self, text):
        raise RuntimeError("服务不可用")


@pytest.mark.parametrize("guard", [_Unsafe(), _Broken()])
def test_safety_review_rejects(make_runtime, guard):
    runtime = make_runtime(safety=guard)
    handle = runtime.start_episode(CAST)
    decision = runtime.apply_nudge(handle, COMFORT)
    assert not decision.accepted
    assert "安全复核" in decision.reason
    assert handle.state.pending_nudges == []


def test_describe_nudge_omits_intensity():
    text = describe_nudge(Nudge(type=NudgeType.RECALL, token="旧照片"))
    assert "minor" not in text
    assert "recall" in text and "旧照片" in text


def test_cadence_block_reason():
    recovery = [NudgeType.COMFORT, NudgeType.TEMPO_DOWN]
    cooling = CadenceStatus(exchanges_until_major=3)
    assert "3" in cadence_block_reason(RAISE_STAKES, cooling, recovery)
    assert cadence_block_reason(COMFORT, cooling, recovery) is None

    recovering = CadenceStatus(recovery_active=True, recovery_exchanges_left=1)
    assert cadence_block_reason(Nudge(type=NudgeType.VULNERABILITY), recovering, recovery)
    assert cadence_block_reason(COMFORT, recovering, recovery) is None
