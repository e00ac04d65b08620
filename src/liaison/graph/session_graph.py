"""自动驾驶会话图：tick → evaluate → submit_nudge 循环。

评估引擎的推荐通过 apply_nudge 回到运行时，和人类观察者提交干预走同一条路径。
图在以下任一条件满足时结束：回合预算用完，或已进入第五幕且结局场景跑满指定回合。
"""

from __future__ import annotations

import logging
from typing import Any

from langgraph.checkpoint.memory import InMemorySaver
from langgraph.graph import START, StateGraph

from liaison.engine.evaluation import EvaluationEngine
from liaison.engine.narrative import EpisodeHandle, NarrativeRuntime
from liaison.graph.routing import route_by_next_action
from liaison.graph.session_state import SessionState
from liaison.models.episode import Act, Ending

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────
# 节点
# ────────────────────────────────────────────


def create_tick_node(runtime: NarrativeRuntime, handle: EpisodeHandle):
    def tick_node(state: SessionState) -> dict[str, Any]:
        act_before = state.get("act", int(Act.SETUP))
        result = runtime.tick(handle)

        exchanges_run = state.get("exchanges_run", 0) + 1
        resolution_run = state.get("resolution_run", 0)
        if act_before == int(Act.RESOLUTION):
            resolution_run += 1

        for t in result.transitions:
            logger.info("第 %d 回合: 进入第 %d 幕", exchanges_run, int(t.to_scene.act))

        budget_spent = exchanges_run >= state.get("max_exchanges", 0)
        resolution_budget = state.get("resolution_exchanges", 0)
        resolved = resolution_budget > 0 and resolution_run >= resolution_budget
        done = budget_spent or resolved
        return {
            "exchanges_run": exchanges_run,
            "resolution_run": resolution_run,
            "act": int(result.summary.act),
            "lines": result.produced_lines,
            "transitions": result.transitions,
            "next_action": "end" if done else "evaluate",
        }

    return tick_node


def create_evaluate_node(
    runtime: NarrativeRuntime, evaluator: EvaluationEngine, handle: EpisodeHandle
):
    def evaluate_node(state: SessionState) -> dict[str, Any]:
        structural, dialogue = runtime.evaluation_inputs(handle)
        recommendation = evaluator.consider(structural, dialogue)
        if recommendation.abstain or recommendation.nudge is None:
            logger.debug("评估弃权: %s", "；".join(recommendation.rationales))
            return {"recommendation": recommendation, "next_action": "tick"}
        return {"recommendation": recommendation, "next_action": "submit_nudge"}

    return evaluate_node


def create_submit_nudge_node(runtime: NarrativeRuntime, handle: EpisodeHandle):
    def submit_nudge_node(state: SessionState) -> dict[str, Any]:
        recommendation = state.get("recommendation")
        if recommendation is None or recommendation.nudge is None:
            return {"next_action": "tick"}
        decision = runtime.apply_nudge(handle, recommendation.nudge)
        return {"decisions": [decision], "next_action": "tick"}

    return submit_nudge_node


# ────────────────────────────────────────────
# 图构建
# ────────────────────────────────────────────


def build_session_graph(
    runtime: NarrativeRuntime,
    evaluator: EvaluationEngine,
    handle: EpisodeHandle,
) -> StateGraph:
    workflow = StateGraph(SessionState)
    workflow.add_node("tick", create_tick_node(runtime, handle))
    workflow.add_node("evaluate", create_evaluate_node(runtime, evaluator, handle))
    workflow.add_node("submit_nudge", create_submit_nudge_node(runtime, handle))

    workflow.add_edge(START, "tick")
    workflow.add_conditional_edges("tick", route_by_next_action)
    workflow.add_conditional_edges("evaluate", route_by_next_action)
    workflow.add_conditional_edges("submit_nudge", route_by_next_action)
    return workflow


def compile_session_graph(
    runtime: NarrativeRuntime,
    evaluator: EvaluationEngine,
    handle: EpisodeHandle,
):
    """构建并编译会话图，带 Checkpointer。"""
    workflow = build_session_graph(runtime, evaluator, handle)
    return workflow.compile(checkpointer=InMemorySaver())


def choose_ending(handle: EpisodeHandle) -> Ending:
    """按最终到达的幕与聚光灯信任度给出结局。"""
    state = handle.state
    pair = state.spotlight_pair()
    if state.act == Act.RESOLUTION:
        if pair is not None and pair.trust >= 0.5:
            return Ending.WARM_UNION
        return Ending.HOPEFUL_PAUSE
    if state.act >= Act.FALLING_ACTION:
        return Ending.HOPEFUL_PAUSE
    return Ending.BITTERSWEET_APART


def run_autopilot(
    runtime: NarrativeRuntime,
    evaluator: EvaluationEngine,
    handle: EpisodeHandle,
    max_exchanges: int = 24,
    resolution_exchanges: int = 2,
    thread_id: str | None = None,
) -> SessionState:
    """自动驾驶一个剧集直到结束条件满足；评估引擎在运行期间订阅遥测。

    返回图的最终状态。剧集本身不会被结束，调用方决定何时调用 end_episode。
    """
    graph = compile_session_graph(runtime, evaluator, handle)
    runtime.telemetry.subscribe(evaluator.on_telemetry)
    initial: SessionState = {
        "max_exchanges": max_exchanges,
        "resolution_exchanges": resolution_exchanges,
        "exchanges_run": 0,
        "resolution_run": 0,
        "act": int(handle.state.act),
        "lines": [],
        "transitions": [],
        "decisions": [],
        "recommendation": None,
        "next_action": "tick",
    }
    run_config = {
        "configurable": {"thread_id": thread_id or handle.episode_id},
        # 每个回合最多经过 3 个节点
        "recursion_limit": max_exchanges * 3 + 10,
    }
    try:
        return graph.invoke(initial, run_config)
    finally:
        runtime.telemetry.unsubscribe(evaluator.on_telemetry)
