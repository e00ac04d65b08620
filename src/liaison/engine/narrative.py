"""叙事状态机：剧集/场景生命周期、关系图更新、检查点推进、停滞检测与干预节奏。

每个剧集由一个 EpisodeHandle 持有全部可变状态；NarrativeRuntime 本身不保存剧集，
多个剧集可以并发运行，同一剧集上的 tick / apply_nudge 由 handle 上的锁串行化。
"""

from __future__ import annotations

import logging
import threading
import time

from liaison.agents.dialogue import DialogueGenerator
from liaison.agents.safety import SafetyGuard
from liaison.config.settings import RuntimeConfig
from liaison.engine.cadence import CadenceController
from liaison.engine.telemetry import TelemetryHub, TickTelemetry
from liaison.errors import EpisodeNotActiveError, EpisodeSetupError, GenerationError
from liaison.models.console import ConsoleState, TickResult
from liaison.models.dialogue import BeatContext, FinalLine, RecentLine
from liaison.models.episode import (
    Act,
    EndReason,
    Ending,
    EpisodeConstraints,
    EpisodeSeed,
    EpisodeSummary,
    SpokenLine,
)
from liaison.models.evaluation import DialogueSummary, StructuralState
from liaison.models.nudge import Nudge, NudgeDecision
from liaison.models.policy import CheckpointRule, PolicyTables
from liaison.models.telemetry import (
    MetricTickEvent,
    NudgeAppliedEvent,
    SceneRef,
    SceneTransitionEvent,
    TelemetryEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from liaison.policy import load_policy
from liaison.state.checkpoints import check_transition
from liaison.state.fragility import compute_fragility
from liaison.state.plateau import estimate_line_seconds, update_plateau_counter
from liaison.state.relationship_graph import apply_line_deltas
from liaison.state.story_state import (
    LoggedTurn,
    StoryState,
    append_line,
    build_bias_flags,
    build_constraints,
    build_summary,
    cadence_status,
    compute_badges,
    new_story_state,
    open_next_scene,
)

logger = logging.getLogger(__name__)


class EpisodeHandle:
    """一个剧集的全部运行时状态：剧集状态 + 完整台词日志 + 待刷出的遥测 + 串行化锁。

    台词日志只增不减，放在状态之外，tick 复制状态时不会带上它。
    遥测在持锁期间推送，同一剧集的事件按提交顺序到达订阅方。
    """

    def __init__(self, state: StoryState):
        self.state = state
        self.turns: list[LoggedTurn] = []
        self.lock = threading.RLock()
        self._outbox: list[TelemetryEvent] = []

    @property
    def episode_id(self) -> str:
        return self.state.episode.id

    @property
    def active(self) -> bool:
        return self.state.active

    def summary(self) -> EpisodeSummary:
        with self.lock:
            return build_summary(self.state)

    def _queue(self, event: TelemetryEvent) -> None:
        self._outbox.append(event)

    def _drain(self) -> list[TelemetryEvent]:
        events, self._outbox = self._outbox, []
        return events


class NarrativeRuntime:
    """五幕叙事状态机。

    Args:
        generator: 对白生成协作者。
        safety: 干预的安全复核协作者；为 None 时跳过这一步。
        policy: 策略表，缺省加载包内默认表。
        config: 运行参数。
        telemetry: 遥测推送通道，可在多个运行时之间共享。
    """

    def __init__(
        self,
        generator: DialogueGenerator,
        safety: SafetyGuard | None = None,
        policy: PolicyTables | None = None,
        config: RuntimeConfig | None = None,
        telemetry: TelemetryHub | None = None,
    ):
        self.generator = generator
        self.policy = policy or load_policy()
        self.config = config or RuntimeConfig()
        self.cadence = CadenceController(self.policy, self.config, safety)
        self.telemetry = telemetry or TelemetryHub()

    # ──────────────────────────────────────────
    # 生命周期
    # ──────────────────────────────────────────

    def start_episode(
        self,
        characters: list[str],
        vibe: str = "",
        setting: str = "",
        seed: EpisodeSeed | None = None,
        constraints: EpisodeConstraints | None = None,
    ) -> EpisodeHandle:
        """开始新剧集：第一幕场景 0，前两位角色为聚光灯，所有计数归零。

        seed 提供前情（回调 token、未闭合故事线、上一集结局）；
        characters 以参数为准，vibe / setting 非空时覆盖 seed。

        Raises:
            EpisodeSetupError: 角色少于两位或有重名。
        """
        if len(characters) < 2:
            raise EpisodeSetupError(f"至少需要两位角色，实际 {len(characters)} 位")
        if len(set(characters)) != len(characters):
            raise EpisodeSetupError(f"角色名不能重复: {characters}")

        seed_data = seed.model_dump() if seed else {}
        seed_data["characters"] = list(characters)
        if vibe:
            seed_data["vibe"] = vibe
        if setting:
            seed_data["setting"] = setting
        full_seed = EpisodeSeed.model_validate(seed_data)

        if constraints is None:
            constraints = EpisodeConstraints(max_line_seconds=self.config.max_line_seconds)
        state = new_story_state(full_seed, self.config, constraints)
        handle = EpisodeHandle(state)
        logger.info(
            "剧集开始 %s: 角色 %s，聚光灯 %s，导入 %d 个回调 / %d 条故事线",
            handle.episode_id[:8],
            "、".join(characters),
            " & ".join(state.spotlight),
            len(state.callbacks),
            len(state.open_loops),
        )
        return handle

    def end_episode(self, handle: EpisodeHandle, ending: Ending | None = None) -> EpisodeSummary:
        """外部停止：以 wrap 关闭当前场景并记录结局。之后 tick / get_state 会抛出异常。"""
        with handle.lock:
            state = self._require_active(handle)
            work = state.model_copy(deep=True)
            now = time.time()
            work.episode.scenes[-1] = work.scene.model_copy(
                update={"ended_at": now, "ended_reason": EndReason.WRAP}
            )
            work.episode.ended_at = now
            work.episode.ending = ending
            handle.state = work
            summary = build_summary(work)
            self.telemetry.publish(handle._drain())
        logger.info(
            "剧集结束 %s: 幕路径 %s，结局 %s",
            handle.episode_id[:8],
            [int(a) for a in work.episode.act_path],
            ending.value if ending else "未指定",
        )
        return summary

    def wrap_scene(
        self,
        handle: EpisodeHandle,
        reason: EndReason = EndReason.PLATEAU,
        spotlight: tuple[str, str] | None = None,
    ) -> SceneTransitionEvent:
        """调用方主动收束当前场景，在同一幕内开新场景（可换聚光灯）。幕路径不变。"""
        with handle.lock:
            state = self._require_active(handle)
            if spotlight is not None:
                a, b = spotlight
                if a == b or a not in state.episode.characters or b not in state.episode.characters:
                    raise EpisodeSetupError(f"聚光灯必须是两位不同的在场角色: {spotlight}")
            work = state.model_copy(deep=True)
            from_ref = SceneRef(act=work.act, scene=work.scene.index)
            _, new = open_next_scene(work, work.act, reason, spotlight)
            work.plateau_counter = 0
            event = SceneTransitionEvent(
                episode_id=work.episode.id,
                scene_id=new.id,
                from_scene=from_ref,
                to_scene=SceneRef(act=new.act, scene=new.index),
                reason=reason,
            )
            handle.state = work
            self.telemetry.publish([*handle._drain(), event])
        logger.info("场景收束（%s），第 %d 幕场景 %d 开始", reason.value, int(new.act), new.index)
        return event

    # ──────────────────────────────────────────
    # 回合推进
    # ──────────────────────────────────────────

    def tick(self, handle: EpisodeHandle) -> TickResult:
        """推进一个回合。

        全部修改都在状态副本上进行，成功后一次性替换；生成失败且未开启兜底时
        抛出 GenerationError，原状态保持不变。

        Raises:
            EpisodeNotActiveError: 剧集未开始或已结束。
            GenerationError: 对白生成失败且未开启兜底。
        """
        with handle.lock:
            state = self._require_active(handle)
            work = state.model_copy(deep=True)
            staged = TickTelemetry()
            episode_id = work.episode.id

            work.exchange += 1
            staged.turn_start(
                TurnStartEvent(
                    episode_id=episode_id,
                    scene_id=work.scene.id,
                    act=work.act,
                    scene=work.scene.index,
                )
            )

            context = self.beat_context(work)
            speakers = list(work.spotlight)
            started = time.time()
            finals = self._generate(work, context, speakers, staged)
            latency_ms = (time.time() - started) * 1000
            cap = context.bias_flags.cap_line_seconds or work.episode.constraints.max_line_seconds

            produced: list[SpokenLine] = []
            logged: list[LoggedTurn] = []
            transitioned = False
            for final in finals:
                line = SpokenLine(
                    timestamp=started,
                    speaker=final.speaker,
                    text=final.text,
                    secs=estimate_line_seconds(final.text, self.config.words_per_second, cap),
                    deltas=final.deltas,
                    latency_ms=latency_ms,
                    rationales=list(final.rationales),
                    used_tokens=list(final.used_tokens),
                    is_fallback=final.is_fallback,
                )
                produced.append(line)
                logged.append(self._record_line(work, line, staged))

                if not transitioned:
                    rule = check_transition(
                        self.policy,
                        work.act,
                        work.spotlight_pair(),
                        work.recent_lines[-self.config.checkpoint_window :],
                        work.callbacks,
                    )
                    if rule is not None:
                        staged.transition(self._advance(work, rule))
                        transitioned = True

                self._check_plateau(work, staged)

            self.cadence.end_of_tick(work)
            self._emit_metrics(work, staged)

            handle.state = work
            handle.turns.extend(logged)
            events = [*handle._drain(), *staged.ordered()]
            summary = build_summary(work)
            self.telemetry.publish(events)

        return TickResult(
            produced_lines=produced,
            transitions=staged.transitions,
            telemetry=events,
            summary=summary,
        )

    def _generate(
        self,
        work: StoryState,
        context: BeatContext,
        speakers: list[str],
        staged: TickTelemetry,
    ) -> list[FinalLine]:
        try:
            finals = self.generator.generate(context, speakers)
            if not finals:
                raise ValueError("生成方没有返回任何台词")
            return finals
        except Exception as e:
            if not self.config.fallback_on_generation_error:
                raise GenerationError(f"对白生成失败: {e}") from e
            logger.warning("对白生成失败，使用兜底台词: %s", e)
            staged.metric(
                MetricTickEvent(
                    episode_id=work.episode.id,
                    scene_id=work.scene.id,
                    name="generation_fallback",
                    value=1.0,
                )
            )
            return [
                FinalLine(
                    speaker=speaker,
                    text=self.config.fallback_line_text,
                    rationales=[f"生成失败兜底: {type(e).__name__}"],
                    is_fallback=True,
                )
                for speaker in speakers
            ]

    def _record_line(self, work: StoryState, line: SpokenLine, staged: TickTelemetry) -> LoggedTurn:
        scene_id = work.scene.id
        turn = append_line(work, line, self.config.line_window)
        apply_line_deltas(work.episode.relationships, work.spotlight, line.deltas)
        staged.turn_end(
            TurnEndEvent(
                episode_id=work.episode.id,
                scene_id=scene_id,
                line=line,
                deltas=line.deltas,
                latency_ms=line.latency_ms,
            )
        )
        logger.debug("%s: %s (Δ=%.3f)", line.speaker, line.text, line.deltas.total_magnitude())
        return turn

    def _advance(self, work: StoryState, rule: CheckpointRule) -> SceneTransitionEvent:
        from_ref = SceneRef(act=work.act, scene=work.scene.index)
        to_act = Act(rule.to_act)
        work.episode.act_path.append(to_act)
        _, new = open_next_scene(work, to_act, EndReason.CHECKPOINT)
        work.plateau_counter = 0
        work.milestones.append(rule.type)
        logger.info(
            "幕推进 %d → %d（%s）",
            int(from_ref.act),
            int(to_act),
            rule.description or rule.type.value,
        )
        return SceneTransitionEvent(
            episode_id=work.episode.id,
            scene_id=new.id,
            from_scene=from_ref,
            to_scene=SceneRef(act=to_act, scene=new.index),
            reason=EndReason.CHECKPOINT,
        )

    def _check_plateau(self, work: StoryState, staged: TickTelemetry) -> None:
        counter, detected = update_plateau_counter(
            work.plateau_counter,
            work.recent_lines,
            self.config.plateau_window,
            self.config.plateau_delta_threshold,
            self.config.plateau_similarity_threshold,
        )
        work.plateau_counter = counter
        if not detected:
            return
        staged.metric(
            MetricTickEvent(
                episode_id=work.episode.id,
                scene_id=work.scene.id,
                name="plateau_detected",
                value=float(counter),
            )
        )
        if counter >= self.config.plateau_alert_threshold:
            logger.info("检测到停滞（计数 %d），建议新鲜度干预", counter)

    def _emit_metrics(self, work: StoryState, staged: TickTelemetry) -> None:
        pair = work.spotlight_pair()
        metrics = {
            "exchange_counter": float(work.exchange),
            "plateau_counter": float(work.plateau_counter),
            "active_callbacks": float(len(work.callbacks)),
            "spotlight_attraction": pair.attraction if pair else 0.0,
            "scene_fragility": self.scene_fragility(work),
        }
        for name, value in metrics.items():
            staged.metric(
                MetricTickEvent(
                    episode_id=work.episode.id,
                    scene_id=work.scene.id,
                    name=name,
                    value=value,
                )
            )

    # ──────────────────────────────────────────
    # 干预
    # ──────────────────────────────────────────

    def apply_nudge(self, handle: EpisodeHandle, nudge: Nudge) -> NudgeDecision:
        """提交一个干预。拒绝是正常结果，带原因返回，不抛异常。"""
        with handle.lock:
            decision = self.cadence.review(handle.state, nudge)
            if decision.accepted:
                accepted = decision.nudge
                self.cadence.accept(handle.state, accepted)
                handle._queue(
                    NudgeAppliedEvent(
                        episode_id=handle.state.episode.id,
                        scene_id=handle.state.scene.id,
                        nudge=accepted,
                        source=accepted.source,
                    )
                )
        return decision

    # ──────────────────────────────────────────
    # 只读视图
    # ──────────────────────────────────────────

    def get_state(self, handle: EpisodeHandle) -> ConsoleState:
        with handle.lock:
            state = self._require_active(handle)
            return ConsoleState(
                summary=build_summary(state),
                badges=compute_badges(state, self.config.plateau_alert_threshold),
                pending_nudges=[n.model_copy() for n in state.pending_nudges],
                cadence=cadence_status(state, self.policy, self.config),
                plateau_counter=state.plateau_counter,
                scene_fragility=self.scene_fragility(state),
            )

    def evaluation_inputs(self, handle: EpisodeHandle) -> tuple[StructuralState, DialogueSummary]:
        """评估引擎 consider() 所需的两份快照。"""
        with handle.lock:
            state = self._require_active(handle)
            pair = state.spotlight_pair()
            structural = StructuralState(
                act=state.act,
                scene_index=state.scene.index,
                scene_id=state.scene.id,
                milestones=list(state.milestones),
                spotlight=state.spotlight,
                watchers=state.watchers(),
                pair=pair.model_copy() if pair else None,
                callbacks=list(state.callbacks),
                plateau_counter=state.plateau_counter,
                cadence=cadence_status(state, self.policy, self.config),
            )
            dialogue = DialogueSummary(
                recent_lines=list(state.recent_lines[-self.config.evaluation_window :])
            )
        return structural, dialogue

    def beat_context(self, state: StoryState) -> BeatContext:
        pair = state.spotlight_pair()
        return BeatContext(
            act=state.act,
            vibe=state.episode.vibe,
            setting=state.episode.setting,
            spotlight=state.spotlight,
            watchers=state.watchers(),
            recent_lines=[
                RecentLine(speaker=line.speaker, text=line.text, timestamp=line.timestamp)
                for line in state.recent_lines
            ],
            bias_flags=build_bias_flags(state, self.policy),
            open_tokens=list(state.callbacks),
            pair=pair.model_copy() if pair else None,
            scene_fragility=self.scene_fragility(state),
            constraints=build_constraints(state, self.policy),
        )

    def scene_fragility(self, state: StoryState) -> float:
        return compute_fragility(
            state.recent_lines[-self.config.evaluation_window :],
            state.spotlight_pair(),
        ).total

    @staticmethod
    def _require_active(handle: EpisodeHandle) -> StoryState:
        if handle is None or not handle.state.active:
            raise EpisodeNotActiveError("没有进行中的剧集")
        return handle.state
