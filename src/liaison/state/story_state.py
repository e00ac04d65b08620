"""单个剧集的可变状态，以及由它派生的只读视图。

StoryState 只由叙事运行时持有和修改；这里的函数都不做 I/O，
纯粹在状态上计算摘要、徽章、节奏状态与偏置开关。
"""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

from liaison.config.settings import RuntimeConfig
from liaison.models.console import BadgeLevel, BadgeType, ThresholdBadge
from liaison.models.episode import (
    Act,
    EndReason,
    Ending,
    Episode,
    EpisodeConstraints,
    EpisodeSeed,
    EpisodeSummary,
    Scene,
    SpokenLine,
    new_id,
)
from liaison.models.nudge import (
    BiasFlags,
    CadenceStatus,
    Nudge,
    NudgeType,
    RecoveryBias,
)
from liaison.models.policy import CheckpointType, PolicyTables
from liaison.models.relationship import RelationshipPair, pair_key
from liaison.state.relationship_graph import init_relationships

# tempo_up 时单句时长上限（秒）
TEMPO_UP_LINE_SECONDS = 6.0


class LoggedTurn(BaseModel):
    """完整台词日志中的一条（带场景归属，用于导出）。"""

    id: str = Field(default_factory=new_id)
    scene_id: str
    line: SpokenLine


class StoryState(BaseModel):
    """一个剧集的全部可变状态。"""

    episode: Episode
    recent_lines: list[SpokenLine] = Field(default_factory=list, description="滚动台词窗口")
    callbacks: list[str] = Field(default_factory=list, description="未回收的回调 token")
    open_loops: list[str] = Field(default_factory=list, description="未闭合的故事线")
    previous_ending: Ending | None = None
    milestones: list[CheckpointType] = Field(default_factory=list, description="已通过的检查点")
    plateau_counter: int = 0
    exchange: int = Field(default=0, description="已完成的回合数")
    last_major_exchange: int | None = None
    recovery: RecoveryBias | None = None
    pending_nudges: list[Nudge] = Field(default_factory=list)
    last_applied: dict[NudgeType, int] = Field(
        default_factory=dict, description="各干预类型最近一次被接受时的回合"
    )

    @property
    def active(self) -> bool:
        return self.episode.ended_at is None

    @property
    def act(self) -> Act:
        return self.episode.current_act

    @property
    def scene(self) -> Scene:
        return self.episode.current_scene

    @property
    def spotlight(self) -> tuple[str, str]:
        return self.episode.current_scene.spotlight

    def spotlight_pair(self) -> RelationshipPair | None:
        return self.episode.relationships.get(pair_key(*self.spotlight))

    def watchers(self) -> list[str]:
        return [c for c in self.episode.characters if c not in self.spotlight]


def new_story_state(
    seed: EpisodeSeed,
    config: RuntimeConfig,
    constraints: EpisodeConstraints | None = None,
) -> StoryState:
    """按开局参数建立全新的剧集状态：第一幕、场景 0、前两位角色为聚光灯。"""
    episode = Episode(
        characters=list(seed.characters),
        import_seed=seed.import_seed,
        relationships=init_relationships(seed.characters, config.baseline_pair),
        vibe=seed.vibe,
        setting=seed.setting,
        constraints=constraints or EpisodeConstraints(),
    )
    episode.scenes.append(
        Scene(
            episode_id=episode.id,
            act=Act.SETUP,
            index=0,
            spotlight=(seed.characters[0], seed.characters[1]),
        )
    )
    return StoryState(
        episode=episode,
        callbacks=list(seed.callbacks),
        open_loops=list(seed.open_loops),
        previous_ending=seed.previous_ending,
    )


def open_next_scene(
    state: StoryState,
    act: Act,
    reason: EndReason,
    spotlight: tuple[str, str] | None = None,
) -> tuple[Scene, Scene]:
    """关闭当前场景并打开新场景，返回 (旧场景, 新场景)。

    新场景先完整构造，再和旧场景的关闭一起写入，中间不会留下两个都开着的场景。
    """
    old = state.scene
    now = time.time()
    new = Scene(
        episode_id=state.episode.id,
        act=act,
        index=old.index + 1,
        started_at=now,
        spotlight=spotlight or old.spotlight,
    )
    closed = old.model_copy(update={"ended_at": now, "ended_reason": reason})
    state.episode.scenes[-1:] = [closed, new]
    return closed, new


def append_line(state: StoryState, line: SpokenLine, window: int) -> LoggedTurn:
    """写入滚动窗口，并移除本句消耗掉的回调 token。

    返回对应的完整日志条目；完整日志只增不减，由 EpisodeHandle 在提交后追加，不随状态复制。
    """
    state.recent_lines.append(line)
    if len(state.recent_lines) > window:
        state.recent_lines = state.recent_lines[-window:]
    turn = LoggedTurn(scene_id=state.scene.id, line=line)
    if line.used_tokens:
        state.callbacks = [t for t in state.callbacks if t not in line.used_tokens]
    return turn


# ──────────────────────────────────────────
# 只读视图
# ──────────────────────────────────────────


def build_summary(state: StoryState, last_n: int = 3) -> EpisodeSummary:
    return EpisodeSummary(
        episode_id=state.episode.id,
        act=state.act,
        act_path=list(state.episode.act_path),
        scene=state.scene.index,
        scene_id=state.scene.id,
        spotlight=state.spotlight,
        open_loops=list(state.open_loops),
        callbacks=list(state.callbacks),
        last_lines=list(state.recent_lines[-last_n:]),
        relationships={k: v.model_copy() for k, v in state.episode.relationships.items()},
    )


def compute_badges(state: StoryState, plateau_alert: int) -> list[ThresholdBadge]:
    """聚光灯关系对与停滞计数越过阈值时的提示徽章。"""
    badges: list[ThresholdBadge] = []
    pair = state.spotlight_pair()
    if pair is not None:
        if pair.attraction >= 0.7:
            badges.append(
                ThresholdBadge(type=BadgeType.SPARK, level=BadgeLevel.HIGH, description="强烈的相互吸引")
            )
        if pair.trust < 0.3 and pair.tension > 0.5:
            badges.append(
                ThresholdBadge(
                    type=BadgeType.FRAGILE_TRUST, level=BadgeLevel.HIGH, description="张力之下信任脆弱"
                )
            )
        if pair.comfort >= 0.8:
            badges.append(
                ThresholdBadge(type=BadgeType.SAFE_SPACE, level=BadgeLevel.HIGH, description="已经建立安心的连接")
            )
        if pair.tension >= 0.75:
            badges.append(
                ThresholdBadge(
                    type=BadgeType.HIGH_TENSION, level=BadgeLevel.MEDIUM, description="张力接近临界"
                )
            )

    if state.plateau_counter >= plateau_alert:
        level = BadgeLevel.HIGH if state.plateau_counter >= plateau_alert * 2 else BadgeLevel.MEDIUM
        badges.append(
            ThresholdBadge(type=BadgeType.PLATEAU, level=level, description="故事推进停滞")
        )
    return badges


def major_allowed(state: StoryState, gap: int) -> bool:
    return state.last_major_exchange is None or state.exchange - state.last_major_exchange >= gap


def cooldowns_remaining(state: StoryState, policy: PolicyTables) -> dict[NudgeType, int]:
    remaining: dict[NudgeType, int] = {}
    for nudge_type, applied_at in state.last_applied.items():
        left = policy.descriptor(nudge_type).cooldown_exchanges - (state.exchange - applied_at)
        if left > 0:
            remaining[nudge_type] = left
    return remaining


def cadence_status(state: StoryState, policy: PolicyTables, config: RuntimeConfig) -> CadenceStatus:
    if state.last_major_exchange is None:
        until_major = 0
    else:
        until_major = max(0, config.major_gap_exchanges - (state.exchange - state.last_major_exchange))
    return CadenceStatus(
        exchange=state.exchange,
        major_budget_used=state.scene.major_nudges,
        last_major_exchange=state.last_major_exchange,
        exchanges_until_major=until_major,
        recovery_active=state.recovery is not None,
        recovery_exchanges_left=state.recovery.exchanges_left if state.recovery else 0,
        cooldowns=cooldowns_remaining(state, policy),
    )


def build_bias_flags(state: StoryState, policy: PolicyTables) -> BiasFlags:
    """把恢复窗口与待生效的干预翻译成显式的偏置开关。"""
    flags = BiasFlags()
    if state.recovery is not None:
        flags.recovery_comfort_clarify = True
        flags.reassure_weight = 0.6

    for nudge in state.pending_nudges:
        effects = policy.descriptor(nudge.type).bias_effects
        if effects.comfort > 0:
            flags.reassure_weight = 0.7
        if effects.trust > 0:
            flags.self_disclosure_weight = 0.5
        if effects.tension > 0:
            flags.stakes_weight = 0.4
        if nudge.token:
            flags.recall_token = nudge.token
        if nudge.type == NudgeType.ASIDE and nudge.target:
            flags.aside_pair = (state.spotlight[0], nudge.target)
        if nudge.type == NudgeType.TEMPO_UP:
            flags.cap_line_seconds = min(
                state.episode.constraints.max_line_seconds, TEMPO_UP_LINE_SECONDS
            )
    return flags


def build_constraints(state: StoryState, policy: PolicyTables) -> list[str]:
    constraints = []
    if state.episode.constraints.pg13:
        constraints.append("PG-13 content")
    constraints.append("consent-aware")
    constraints.append(policy.gate_for(state.act).description)
    if state.recovery is not None:
        constraints.append("recovery mode - comfort/clarify bias")
    return constraints
