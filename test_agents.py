"""对白生成与安全复核协作者。"""

import json

import pytest
from langchain_core.language_models import FakeListChatModel

from liaison.agents.dialogue import LLMDialogueGenerator, ScriptedDialogueGenerator
from liaison.agents.safety import PatternSafetyGuard, check_pg13
from liaison.agents.utils import extract_json
from liaison.models.dialogue import BeatContext
from liaison.models.episode import Act
from liaison.models.nudge import BiasFlags


def _context(**kwargs) -> BeatContext:
    return BeatContext(act=Act.SETUP, spotlight=("林夏", "周屿"), **kwargs)


def _reply(lines) -> str:
    return "好的，台词如下：\n```json\n" + json.dumps({"lines": lines}, ensure_ascii=False) + "\n```"


def test_extract_json_variants():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert extract_json('前言 [1, 2] 结尾') == [1, 2]
    with pytest.raises(json.JSONDecodeError):
        extract_json("没有 JSON")


def test_llm_generator_parses_and_clips():
    model = FakeListChatModel(
        responses=[
            _reply(
                [
                    {"speaker": "林夏", "text": "你也来看海？", "deltas": {"attraction": 0.9}},
                    {"speaker": "周屿", "text": "每年都来。", "deltas": {"trust": -0.5}},
                ]
            )
        ]
    )
    generator = LLMDialogueGenerator(model, safety=PatternSafetyGuard())
    lines = generator.generate(_context(), ["林夏", "周屿"])
    assert [line.text for line in lines] == ["你也来看海？", "每年都来。"]
    assert lines[0].deltas.attraction == pytest.approx(0.3)
    assert lines[1].deltas.trust == pytest.approx(-0.3)
    assert not any(line.is_fallback for line in lines)


def test_llm_generator_replaces_unsafe_line():
    model = FakeListChatModel(
        responses=[
            _reply(
                [
                    {"speaker": "林夏", "text": "他强迫我留下。", "deltas": {"tension": 0.2}},
                    {"speaker": "周屿", "text": "我们走吧。"},
                ]
            )
        ]
    )
    generator = LLMDialogueGenerator(model, safety=PatternSafetyGuard(), fallback_text="……")
    lines = generator.generate(_context(), ["林夏", "周屿"])
    assert lines[0].is_fallback
    assert lines[0].text == "……"
    assert lines[0].deltas.total_magnitude() == 0
    assert not lines[1].is_fallback


def test_llm_generator_rejects_empty_output():
    model = FakeListChatModel(responses=['{"lines": []}'])
    with pytest.raises(ValueError):
        LLMDialogueGenerator(model).generate(_context(), ["林夏", "周屿"])


def test_scripted_generator_marks_recall():
    generator = ScriptedDialogueGenerator()
    context = _context(
        bias_flags=BiasFlags(recall_token="旧照片"), open_tokens=["旧照片"]
    )
    lines = generator.generate(context, ["林夏", "周屿"])
    assert lines[0].used_tokens == ["旧照片"]
    assert lines[1].used_tokens == []

    # 已经回收过的 token 不再标记
    lines = generator.generate(_context(bias_flags=BiasFlags(recall_token="旧照片")), ["林夏", "周屿"])
    assert all(line.used_tokens == [] for line in lines)


def test_scripted_generator_rejects_empty_script():
    with pytest.raises(ValueError):
        ScriptedDialogueGenerator([])


@pytest.mark.parametrize(
    "text",
    ["nudge:raise_stakes", "nudge:comfort", "nudge:recall token:旧照片", "今晚的月色真好"],
)
def test_guard_allows_ordinary_text(text):
    assert PatternSafetyGuard().validate(text).is_safe


@pytest.mark.parametrize(
    "text",
    ["an explicit scene", "他们是高中生", "she said no but he kept going", "naked in her underwear"],
)
def test_guard_blocks(text):
    verdict = PatternSafetyGuard().validate(text)
    assert not verdict.is_safe
    assert verdict.reason


def test_single_explicit_term_is_tolerated():
    assert check_pg13("she borrowed his bra size chart").is_safe


def test_moderation_model_can_veto():
    model = FakeListChatModel(responses=['{"is_safe": false, "reason": "不合适"}'])
    verdict = PatternSafetyGuard(model).validate("普通的一句话")
    assert not verdict.is_safe
    assert verdict.reason == "不合适"


def test_moderation_model_approves():
    model = FakeListChatModel(responses=['```json\n{"is_safe": true}\n```'])
    assert PatternSafetyGuard(model).validate("普通的一句话").is_safe
