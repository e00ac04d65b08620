"""LangGraph 自动驾驶会话图。"""

from liaison.graph.session_graph import (
    build_session_graph,
    choose_ending,
    compile_session_graph,
    run_autopilot,
)
from liaison.graph.session_state import SessionState

__all__ = [
    "SessionState",
    "build_session_graph",
    "choose_ending",
    "compile_session_graph",
    "run_autopilot",
]
