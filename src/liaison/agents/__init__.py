"""外部协作者：对白生成与内容安全。"""

from liaison.agents.dialogue import (
    DEMO_SCRIPT,
    DialogueGenerator,
    LLMDialogueGenerator,
    ScriptedDialogueGenerator,
    ScriptedLine,
)
from liaison.agents.safety import PatternSafetyGuard, SafetyGuard
from liaison.agents.utils import extract_json, extract_response_text, invoke_with_retry

__all__ = [
    "DEMO_SCRIPT",
    "DialogueGenerator",
    "LLMDialogueGenerator",
    "PatternSafetyGuard",
    "SafetyGuard",
    "ScriptedDialogueGenerator",
    "ScriptedLine",
    "extract_json",
    "extract_response_text",
    "invoke_with_retry",
]
