"""剧集、场景与台词数据模型。"""

from __future__ import annotations

import time
import uuid
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field

from liaison.models.relationship import ChemistryDeltas, RelationshipPair


class Act(IntEnum):
    """五幕结构。"""
    SETUP = 1  # 开端
    RISING_ACTION = 2  # 发展
    CLIMAX = 3  # 高潮
    FALLING_ACTION = 4  # 回落
    RESOLUTION = 5  # 结局


class EndReason(str, Enum):
    """场景结束原因。"""
    CHECKPOINT = "checkpoint"  # 检查点通过，进入下一幕
    PLATEAU = "plateau"  # 停滞后由调用方收束
    WRAP = "wrap"  # 外部停止


class Ending(str, Enum):
    """剧集结局。"""
    WARM_UNION = "warm_union"
    HOPEFUL_PAUSE = "hopeful_pause"
    BITTERSWEET_APART = "bittersweet_apart"


def new_id() -> str:
    return uuid.uuid4().hex


class EpisodeConstraints(BaseModel):
    """内容约束。"""

    pg13: bool = Field(default=True, description="是否限制为 PG-13 内容")
    max_line_seconds: float = Field(default=9.0, gt=0, description="单句台词最长朗读秒数")


class SpokenLine(BaseModel):
    """一句已说出的台词（不可变）。"""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(default_factory=time.time, description="说出时间（epoch 秒）")
    speaker: str = Field(description="说话角色")
    text: str = Field(description="台词文本")
    secs: float = Field(default=0.0, description="估算朗读时长（秒），不超过格式上限")
    deltas: ChemistryDeltas = Field(default_factory=ChemistryDeltas, description="造成的关系变化")
    latency_ms: float = Field(default=0.0, description="生成延迟（毫秒）")
    rationales: list[str] = Field(default_factory=list, description="生成方给出的理由")
    used_tokens: list[str] = Field(default_factory=list, description="本句消耗的回调 token")
    is_fallback: bool = Field(default=False, description="是否为生成失败后的兜底台词")


class Scene(BaseModel):
    """某一幕中的一个连续片段。"""

    id: str = Field(default_factory=new_id, description="场景 ID")
    episode_id: str = Field(description="所属剧集 ID")
    act: Act = Field(description="所属幕")
    index: int = Field(default=0, ge=0, description="场景序号（全剧集递增）")
    started_at: float = Field(default_factory=time.time, description="开始时间")
    ended_at: float | None = Field(default=None, description="结束时间")
    spotlight: tuple[str, str] = Field(description="聚光灯角色对")
    ended_reason: EndReason | None = Field(default=None, description="结束原因")
    major_nudges: int = Field(default=0, description="本场景接受的重干预次数")
    minor_nudges: int = Field(default=0, description="本场景接受的轻干预次数")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class Episode(BaseModel):
    """一次故事运行的根聚合。"""

    id: str = Field(default_factory=new_id, description="剧集 ID")
    started_at: float = Field(default_factory=time.time, description="开始时间")
    ended_at: float | None = Field(default=None, description="结束时间")
    characters: list[str] = Field(description="出场角色（按传入顺序）")
    act_path: list[Act] = Field(default_factory=lambda: [Act.SETUP], description="经历过的幕（只增不减）")
    ending: Ending | None = Field(default=None, description="结局")
    import_seed: str | None = Field(default=None, description="导入的前情种子")
    scenes: list[Scene] = Field(default_factory=list, description="全部场景，最后一个为当前场景")
    relationships: dict[str, RelationshipPair] = Field(
        default_factory=dict, description="关系图：pair_key -> 关系记录"
    )
    vibe: str = Field(default="", description="当前基调")
    setting: str = Field(default="", description="当前场所")
    constraints: EpisodeConstraints = Field(default_factory=EpisodeConstraints)

    @property
    def current_act(self) -> Act:
        return self.act_path[-1]

    @property
    def current_scene(self) -> Scene:
        return self.scenes[-1]


class EpisodeSeed(BaseModel):
    """开局参数（可从 YAML 读取）。"""

    characters: list[str] = Field(description="角色列表，前两位为初始聚光灯")
    vibe: str = Field(default="", description="基调")
    setting: str = Field(default="", description="场所")
    import_seed: str | None = Field(default=None, description="前情种子")
    previous_ending: Ending | None = Field(default=None, description="上一集结局")
    callbacks: list[str] = Field(default_factory=list, description="可回收的回调 token")
    open_loops: list[str] = Field(default_factory=list, description="未闭合的故事线")


class EpisodeSummary(BaseModel):
    """只读剧集摘要。"""

    episode_id: str
    act: Act
    act_path: list[Act]
    scene: int = Field(description="当前场景序号")
    scene_id: str
    spotlight: tuple[str, str]
    open_loops: list[str] = Field(default_factory=list)
    callbacks: list[str] = Field(default_factory=list)
    last_lines: list[SpokenLine] = Field(default_factory=list)
    relationships: dict[str, RelationshipPair] = Field(default_factory=dict)
