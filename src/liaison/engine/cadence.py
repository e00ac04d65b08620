"""干预节奏控制：act gate 检查、重干预间隔、安全复核与恢复窗口。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from liaison.config.settings import RuntimeConfig
from liaison.models.nudge import (
    CadenceStatus,
    Nudge,
    NudgeDecision,
    NudgeIntensity,
    NudgeType,
    RecoveryBias,
)
from liaison.models.policy import PolicyTables
from liaison.state.story_state import StoryState, major_allowed

if TYPE_CHECKING:
    from liaison.agents.safety import SafetyGuard

logger = logging.getLogger(__name__)


def describe_nudge(nudge: Nudge) -> str:
    """给安全复核用的干预文本描述。

    只包含类型与载荷；强度标签 "minor" 会被年龄规则误判，不写入。
    """
    parts = [f"nudge:{nudge.type.value}"]
    if nudge.target:
        parts.append(f"target:{nudge.target}")
    if nudge.token:
        parts.append(f"token:{nudge.token}")
    return " ".join(parts)


def cadence_block_reason(
    nudge: Nudge,
    cadence: CadenceStatus,
    recovery_nudges: list[NudgeType],
) -> str | None:
    """评估引擎用的节奏检查：返回阻止原因，允许时返回 None。"""
    if nudge.intensity == NudgeIntensity.MAJOR and cadence.exchanges_until_major > 0:
        return f"重干预冷却中，还需 {cadence.exchanges_until_major} 个回合"
    if cadence.recovery_active and nudge.type not in recovery_nudges:
        allowed = "/".join(t.value for t in recovery_nudges)
        return f"恢复窗口中（剩余 {cadence.recovery_exchanges_left} 回合），只考虑 {allowed}"
    return None


class CadenceController:
    """apply_nudge 的规则链。

    review() 只读状态给出接受/拒绝；accept() 把已通过的干预写入状态。
    两步之间由调用方持有剧集锁。
    """

    def __init__(
        self,
        policy: PolicyTables,
        config: RuntimeConfig,
        safety: SafetyGuard | None = None,
    ):
        self.policy = policy
        self.config = config
        self.safety = safety

    def normalize(self, nudge: Nudge) -> Nudge:
        """强度以干预目录为准，忽略调用方自带的 intensity。"""
        intensity = self.policy.descriptor(nudge.type).intensity
        if nudge.intensity == intensity:
            return nudge
        return nudge.model_copy(update={"intensity": intensity})

    def review(self, state: StoryState, nudge: Nudge) -> NudgeDecision:
        """按规则链复核干预。返回的 decision.nudge 是按目录归一化后的干预。"""
        nudge = self.normalize(nudge)
        if not state.active:
            return self._reject(nudge, "剧集未在进行中")

        gate = self.policy.gate_for(state.act)
        if nudge.type in gate.blocked:
            return self._reject(nudge, f"第 {int(state.act)} 幕禁止 {nudge.type.value}")
        if nudge.type not in gate.allowed:
            return self._reject(nudge, f"第 {int(state.act)} 幕不允许 {nudge.type.value}")

        if nudge.intensity == NudgeIntensity.MAJOR and not major_allowed(
            state, self.config.major_gap_exchanges
        ):
            since = state.exchange - state.last_major_exchange
            return self._reject(
                nudge,
                f"重干预间隔不足：距上次仅 {since} 回合，至少需要 {self.config.major_gap_exchanges} 回合",
            )

        if nudge.type == NudgeType.ASIDE:
            watchers = state.watchers()
            if nudge.target is None:
                return self._reject(nudge, "aside 需要指定一位旁观角色作为目标")
            if nudge.target not in watchers:
                current = "、".join(watchers) or "无"
                return self._reject(
                    nudge,
                    f"aside 的目标必须是在场的旁观角色（当前: {current}），实际为 {nudge.target}",
                )

        if self.safety is not None:
            try:
                verdict = self.safety.validate(describe_nudge(nudge))
            except Exception as e:
                logger.warning("安全复核调用失败，拒绝干预 %s: %s", nudge.type.value, e)
                return self._reject(nudge, f"安全复核不可用: {e}")
            if not verdict.is_safe:
                return self._reject(nudge, f"安全复核未通过: {verdict.reason or '未说明原因'}")

        return NudgeDecision(accepted=True, reason="已加入下一回合的偏置", nudge=nudge)

    def accept(self, state: StoryState, nudge: Nudge) -> None:
        nudge = self.normalize(nudge)
        state.pending_nudges.append(nudge)
        state.last_applied[nudge.type] = state.exchange
        scene = state.scene
        if nudge.intensity == NudgeIntensity.MAJOR:
            scene.major_nudges += 1
            state.last_major_exchange = state.exchange
            if self.config.recovery_exchanges > 0:
                state.recovery = RecoveryBias(exchanges_left=self.config.recovery_exchanges)
            logger.info(
                "接受重干预 %s（第 %d 回合），恢复窗口 %d 回合",
                nudge.type.value,
                state.exchange,
                self.config.recovery_exchanges,
            )
        else:
            scene.minor_nudges += 1
            logger.info("接受轻干预 %s（第 %d 回合）", nudge.type.value, state.exchange)

    def end_of_tick(self, state: StoryState) -> None:
        """回合结束：清空已生效的干预，恢复窗口倒计时。"""
        state.pending_nudges = []
        if state.recovery is None:
            return
        left = state.recovery.exchanges_left - 1
        if left <= 0:
            state.recovery = None
            logger.debug("恢复窗口结束")
        else:
            state.recovery = RecoveryBias(exchanges_left=left)

    @staticmethod
    def _reject(nudge: Nudge, reason: str) -> NudgeDecision:
        logger.warning("拒绝干预 %s: %s", nudge.type.value, reason)
        return NudgeDecision(accepted=False, reason=reason, nudge=nudge)
