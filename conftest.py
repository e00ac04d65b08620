"""测试共用的构造工具。"""

import pytest

from liaison.agents.dialogue import ScriptedDialogueGenerator, ScriptedLine
from liaison.config.settings import RuntimeConfig
from liaison.engine.narrative import NarrativeRuntime
from liaison.engine.telemetry import TelemetryHub
from liaison.models.episode import SpokenLine
from liaison.models.relationship import ChemistryDeltas, pair_key
from liaison.policy import load_policy

CAST = ["林夏", "周屿", "沈眠"]


def flat_script(n: int = 8) -> list[ScriptedLine]:
    """不带任何关系变化的台词，每句文本不同。"""
    texts = [
        "今天风很大。",
        "我带了伞。",
        "咖啡店关门了吗？",
        "好像还开着。",
        "那边的灯亮了。",
        "我们走过去看看。",
        "路有点滑。",
        "小心脚下。",
    ]
    return [ScriptedLine(text=texts[i % len(texts)]) for i in range(n)]


def spoken(text: str = "嗯。", **deltas: float) -> SpokenLine:
    return SpokenLine(speaker="林夏", text=text, deltas=ChemistryDeltas(**deltas))


def set_spotlight_pair(handle, **values: float) -> None:
    """直接改写当前聚光灯对的关系值。"""
    state = handle.state
    pair = state.episode.relationships[pair_key(*state.spotlight)]
    for dim, value in values.items():
        setattr(pair, dim, value)


class FailingGenerator:
    def __init__(self, result=None):
        self.result = result
        self.calls = 0

    def generate(self, context, speakers):
        self.calls += 1
        if self.result is None:
            raise RuntimeError("模型超时")
        return self.result


@pytest.fixture
def policy():
    return load_policy()


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_runtime(policy, events):
    """按需构造运行时；遥测事件收集到 events 里。"""

    def _make(generator=None, safety=None, **config_overrides):
        config = RuntimeConfig(**config_overrides)
        return NarrativeRuntime(
            generator or ScriptedDialogueGenerator(flat_script()),
            safety=safety,
            policy=policy,
            config=config,
            telemetry=TelemetryHub([events.append]),
        )

    return _make


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()


@pytest.fixture
def handle(runtime):
    return runtime.start_episode(CAST, vibe="雨夜", setting="街角书店")
