"""条件路由。"""

from __future__ import annotations

from langgraph.graph import END

from liaison.graph.session_state import SessionState

VALID_ACTIONS = {
    "tick",
    "evaluate",
    "submit_nudge",
    "end",
}


def route_by_next_action(state: SessionState) -> str:
    """根据 state['next_action'] 决定下一个节点，未知动作一律结束。"""
    action = state.get("next_action", "end")
    if action in VALID_ACTIONS and action != "end":
        return action
    return END
