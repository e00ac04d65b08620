"""对白生成协作者。

运行时只依赖 DialogueGenerator.generate() 的契约：
给出结构快照与说话人顺序，返回带关系变化量的定稿台词。
"""

from __future__ import annotations

import json
import logging
from typing import Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field, ValidationError

from liaison.agents.safety import SafetyGuard
from liaison.agents.utils import extract_json, extract_response_text, invoke_with_retry
from liaison.models.dialogue import BeatContext, FinalLine
from liaison.models.relationship import ChemistryDeltas
from liaison.prompts import format_prompt, load_prompt

logger = logging.getLogger(__name__)

# 单句变化量的上限，防止模型一句话把关系拉满
MAX_LINE_DELTA = 0.3


class DialogueGenerator(Protocol):
    def generate(self, context: BeatContext, speakers: list[str]) -> list[FinalLine]: ...


# ──────────────────────────────────────────
# LLM 生成
# ──────────────────────────────────────────


def _format_context(context: BeatContext, speakers: list[str]) -> str:
    flags = context.bias_flags.model_dump(exclude_none=True, exclude_defaults=True)
    recent = "\n".join(f"{line.speaker}: {line.text}" for line in context.recent_lines) or "（还没有台词）"
    pair = context.pair.model_dump() if context.pair else {}
    return format_prompt(
        "dialogue_beat",
        act=int(context.act),
        vibe=context.vibe or "未指定",
        setting=context.setting or "未指定",
        spotlight=" 与 ".join(context.spotlight),
        watchers="、".join(context.watchers) or "无",
        pair=json.dumps(pair, ensure_ascii=False),
        fragility=f"{context.scene_fragility:.2f}",
        constraints="\n".join(f"- {c}" for c in context.constraints) or "- 无",
        bias_flags=json.dumps(flags, ensure_ascii=False) if flags else "无",
        open_tokens="、".join(context.open_tokens) or "无",
        recent_lines=recent,
        speakers="、".join(speakers),
    )


def _clip_deltas(deltas: ChemistryDeltas) -> ChemistryDeltas:
    return ChemistryDeltas(
        **{
            dim: max(-MAX_LINE_DELTA, min(MAX_LINE_DELTA, value))
            for dim, value in deltas.model_dump().items()
        }
    )


class LLMDialogueGenerator:
    """用对话模型生成台词，每句台词生成后再过一遍安全复核。

    未通过复核的台词被替换为标记过的兜底台词（零变化量）。
    """

    def __init__(
        self,
        model: BaseChatModel,
        safety: SafetyGuard | None = None,
        fallback_text: str = "……",
    ):
        self.model = model
        self.safety = safety
        self.fallback_text = fallback_text

    def generate(self, context: BeatContext, speakers: list[str]) -> list[FinalLine]:
        messages = [
            SystemMessage(content=load_prompt("dialogue_system")),
            HumanMessage(content=_format_context(context, speakers)),
        ]
        response = invoke_with_retry(self.model, messages, operation_name="dialogue")
        data = extract_json(extract_response_text(response))
        raw_lines = data.get("lines", []) if isinstance(data, dict) else data
        if not isinstance(raw_lines, list) or not raw_lines:
            raise ValueError("对白输出中没有 lines")

        lines: list[FinalLine] = []
        for raw in raw_lines[: len(speakers)]:
            try:
                line = FinalLine.model_validate(raw)
            except ValidationError as e:
                raise ValueError(f"对白输出格式不合法: {e}") from e
            line = line.model_copy(update={"deltas": _clip_deltas(line.deltas)})
            lines.append(self._gate(line))
        return lines

    def _gate(self, line: FinalLine) -> FinalLine:
        if self.safety is None:
            return line
        verdict = self.safety.validate(line.text)
        if verdict.is_safe:
            return line
        logger.warning("台词未通过安全复核（%s），替换为兜底台词", verdict.reason)
        return FinalLine(
            speaker=line.speaker,
            text=self.fallback_text,
            rationales=[f"安全复核替换: {verdict.reason or '未说明原因'}"],
            is_fallback=True,
        )


# ──────────────────────────────────────────
# 脚本生成（dry run / 测试）
# ──────────────────────────────────────────


class ScriptedLine(BaseModel):
    text: str
    deltas: ChemistryDeltas = Field(default_factory=ChemistryDeltas)
    rationale: str = ""


def _line(text: str, attraction=0.0, trust=0.0, tension=0.0, comfort=0.0, rationale="") -> ScriptedLine:
    return ScriptedLine(
        text=text,
        deltas=ChemistryDeltas(attraction=attraction, trust=trust, tension=tension, comfort=comfort),
        rationale=rationale,
    )


# 从相遇到承诺的一段完整弧线，按默认策略表恰好依次通过四个检查点
DEMO_SCRIPT: list[ScriptedLine] = [
    # 第一幕：相遇
    _line("今晚的月色真好，你也是来看海的吗？", 0.1, 0.06, 0.0, 0.05, "搭话"),
    _line("嗯，我每年这个时候都会来。", 0.1, 0.06, 0.0, 0.05, "透露习惯"),
    _line("那我们算是有缘了。", 0.08, 0.04, 0.0, 0.05, "试探"),
    _line("说不定明年还能在这里遇见你。", 0.08, 0.04, 0.0, 0.05, "留下伏笔"),
    # 第二幕：裂痕
    _line("你为什么从来不提你的过去？", 0.02, 0.0, 0.12, -0.02, "追问"),
    _line("有些事我不想说，你别再问了。", 0.0, -0.03, 0.12, -0.03, "回避"),
    _line("你总是这样把我推开。", 0.0, -0.03, 0.1, -0.02, "指责"),
    _line("我不同意，你根本不了解我。", 0.0, 0.0, 0.12, 0.0, "冲突摆上台面"),
    # 第三幕：袒露
    _line("对不起，我刚才太冲动了。", 0.02, 0.12, -0.05, 0.05, "道歉"),
    _line("其实我小时候搬过很多次家，害怕和人走得太近。", 0.03, 0.14, -0.05, 0.05, "自我袒露"),
    _line("谢谢你愿意告诉我这些。", 0.03, 0.1, -0.05, 0.05, "接住"),
    _line("我需要你给我一点时间，但我不会再逃了。", 0.03, 0.06, -0.03, 0.05, "说出需要"),
    # 第四幕：和解
    _line("我会等你，不着急。", 0.05, 0.05, -0.05, 0.08, "回应需要"),
    _line("谢谢你一直没有放弃我。", 0.05, 0.05, -0.05, 0.08, "感激"),
    _line("明年的这个时候，我们还来这里看海吧。", 0.05, 0.04, -0.03, 0.08, "回收伏笔"),
    _line("好，我选择和你在一起。", 0.08, 0.05, -0.05, 0.1, "做出选择"),
    # 第五幕：结局
    _line("那就说定了。", 0.03, 0.03, -0.02, 0.06, "确认"),
    _line("嗯，说定了。", 0.03, 0.03, -0.02, 0.06, "确认"),
    _line("海风有点凉，我们回去吧。", 0.02, 0.02, -0.02, 0.05, "收尾"),
    _line("走吧，路上慢点。", 0.02, 0.02, -0.02, 0.05, "收尾"),
]


class ScriptedDialogueGenerator:
    """按顺序回放固定台词，说话人由调用方决定。

    偏置开关里有 recall_token 且该 token 仍未回收时，本回合第一句会标记回收它。
    脚本用完后从头循环。
    """

    def __init__(self, script: list[ScriptedLine] | None = None):
        self.script = list(script) if script is not None else list(DEMO_SCRIPT)
        if not self.script:
            raise ValueError("脚本不能为空")
        self._cursor = 0

    def generate(self, context: BeatContext, speakers: list[str]) -> list[FinalLine]:
        recall = context.bias_flags.recall_token
        if recall not in context.open_tokens:
            recall = None

        lines: list[FinalLine] = []
        for speaker in speakers:
            scripted = self.script[self._cursor % len(self.script)]
            self._cursor += 1
            used = [recall] if recall and not lines else []
            lines.append(
                FinalLine(
                    speaker=speaker,
                    text=scripted.text,
                    deltas=scripted.deltas,
                    rationales=[scripted.rationale] if scripted.rationale else [],
                    used_tokens=used,
                )
            )
        return lines
