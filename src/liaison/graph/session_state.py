"""自动驾驶会话图的状态定义（LangGraph StateGraph 状态）。"""

from __future__ import annotations

from operator import add
from typing import Annotated

from typing_extensions import TypedDict

from liaison.models.episode import SpokenLine
from liaison.models.evaluation import EvaluationRecommendation
from liaison.models.nudge import NudgeDecision
from liaison.models.telemetry import SceneTransitionEvent


class SessionState(TypedDict, total=False):
    """使用 total=False，节点只返回需要更新的字段。"""

    # ── 预算 ──
    max_exchanges: int
    resolution_exchanges: int

    # ── 进度 ──
    exchanges_run: int
    resolution_run: int
    act: int
    lines: Annotated[list[SpokenLine], add]
    transitions: Annotated[list[SceneTransitionEvent], add]

    # ── 评估与干预 ──
    recommendation: EvaluationRecommendation | None
    decisions: Annotated[list[NudgeDecision], add]

    # ── 路由 ──
    next_action: str
