"""内容安全复核。

PatternSafetyGuard 依次做三道检查：硬性拦截正则 → 可选的模型复核 → PG-13 与知情同意清单。
"""

from __future__ import annotations

import logging
import re
from typing import Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from liaison.agents.utils import extract_json, extract_response_text, invoke_with_retry
from liaison.models.dialogue import SafetyVerdict
from liaison.prompts import format_prompt, load_prompt

logger = logging.getLogger(__name__)


class SafetyGuard(Protocol):
    def validate(self, text: str) -> SafetyVerdict: ...


# 硬性拦截：命中即拒绝
HARD_BLOCK_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(?:under|minor|child|kid|teenage?r?)\b.*\b(?:sexual|romantic|intimate)\b",
        r"\b(?:sexual|romantic)\b.*\b(?:under|minor|child|kid|teenage?r?)\b",
        r"\b(?:rape|assault|abuse|violence)\b",
        r"\b(?:non-?consensual|against.{1,10}will|forced|coerced)\b",
        r"\b(?:explicit|graphic|hardcore|xxx)\b",
        r"\b(?:penetrat\w*|genital\w*|orgasm\w*|ejaculat\w*)\b",
        r"\b(?:fuck|shit|bitch|whore|slut)\b",
        r"未成年|强奸|性侵|色情|裸体|强迫",
    )
)

# 只记录不拦截
WARNING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(?:kiss|embrace|touch|caress|intimate)\b",
        r"\b(?:passion|desire|lust|arousal)\b",
        r"\b(?:bedroom|bed|shower|undress)\b",
        r"\b(?:alcohol|drunk|intoxicated)\b",
        r"接吻|拥抱|喝醉",
    )
)

_AGE_TERMS = (
    "underage", "minor", "child", "high school", "teenager",
    "under 18", "seventeen", "sixteen", "fifteen", "高中生", "初中",
)
_CONSENT_TERMS = (
    "without permission", "against their will", "didn't want to",
    "said no", "forced them", "made them", "不顾对方", "没有经过同意",
)
_EXPLICIT_TERMS = (
    "naked", "nude", "strip", "undressing", "underwear",
    "bra", "panties", "aroused", "erection", "脱衣", "内衣",
)


def check_pg13(text: str) -> SafetyVerdict:
    lowered = text.lower()
    if any(term in lowered for term in _AGE_TERMS):
        return SafetyVerdict(is_safe=False, reason="内容可能涉及未成年人")
    if any(term in lowered for term in _CONSENT_TERMS):
        return SafetyVerdict(is_safe=False, reason="内容可能包含非自愿情节")
    # 单个词可能是误伤，两个以上才判定超出 PG-13
    if sum(1 for term in _EXPLICIT_TERMS if term in lowered) >= 2:
        return SafetyVerdict(is_safe=False, reason="内容超出 PG-13 尺度")
    return SafetyVerdict(is_safe=True)


class PatternSafetyGuard:
    """规则过滤 + 可选的 LLM 复核。

    Args:
        moderation_model: 复核用的对话模型；为 None 时只做规则过滤。
    """

    def __init__(self, moderation_model: BaseChatModel | None = None):
        self.moderation_model = moderation_model

    def validate(self, text: str) -> SafetyVerdict:
        for pattern in HARD_BLOCK_PATTERNS:
            if pattern.search(text):
                return SafetyVerdict(is_safe=False, reason=f"命中禁止内容规则: {pattern.pattern}")

        if self.moderation_model is not None:
            verdict = self._moderate(text)
            if not verdict.is_safe:
                return verdict

        verdict = check_pg13(text)
        if not verdict.is_safe:
            return verdict

        for pattern in WARNING_PATTERNS:
            if pattern.search(text):
                logger.debug("内容命中提醒规则 %s", pattern.pattern)
        return SafetyVerdict(is_safe=True)

    def _moderate(self, text: str) -> SafetyVerdict:
        messages = [
            SystemMessage(content=load_prompt("safety_system")),
            HumanMessage(content=format_prompt("safety_review", text=text)),
        ]
        response = invoke_with_retry(self.moderation_model, messages, operation_name="safety_review")
        data = extract_json(extract_response_text(response))
        if not isinstance(data, dict):
            raise ValueError(f"安全复核输出不是 JSON 对象: {data!r}")
        return SafetyVerdict(
            is_safe=bool(data.get("is_safe", False)),
            reason=data.get("reason") or None,
        )
