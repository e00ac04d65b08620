"""全局配置。"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from liaison.models.relationship import RelationshipPair


class ModelConfig(BaseModel):
    """LLM 模型配置。"""

    provider: str = Field(
        default="openai",
        description="模型提供商: 'openai', 'google', 'anthropic' 等",
    )
    model_name: str = Field(default="gpt-4o-mini", description="模型名称")
    temperature: float = Field(default=0.9, description="生成温度")
    max_tokens: int = Field(default=1024, description="最大 token 数")
    api_key: str = Field(
        default="",
        description="模型 API key（可选，优先使用环境变量）",
    )


class RuntimeConfig(BaseModel):
    """叙事状态机与评估引擎的运行参数。"""

    # ── 关系图 ──
    baseline_pair: RelationshipPair = Field(
        default_factory=RelationshipPair,
        description="开局时每对角色的关系初值",
    )

    # ── 台词窗口 ──
    line_window: int = Field(default=16, ge=3, description="滚动保留的近期台词条数")
    checkpoint_window: int = Field(default=4, ge=1, description="检查点判定看最近几句")
    words_per_second: float = Field(default=2.5, gt=0, description="估算朗读时长的语速")
    max_line_seconds: float = Field(default=9.0, gt=0, description="单句台词最长朗读秒数")

    # ── 停滞检测 ──
    plateau_window: int = Field(default=3, ge=2, description="停滞检测看最近几句")
    plateau_delta_threshold: float = Field(
        default=0.02, description="平均变化幅度低于此值视为停滞"
    )
    plateau_similarity_threshold: float = Field(
        default=0.8, description="任意两句词集重合度高于此值视为重复"
    )
    plateau_alert_threshold: int = Field(
        default=3, description="停滞计数达到此值时建议新鲜度干预"
    )

    # ── 节奏控制 ──
    major_gap_exchanges: int = Field(
        default=6, ge=1, description="两次重干预之间至少间隔的回合数"
    )
    recovery_exchanges: int = Field(
        default=2, ge=0, description="重干预后恢复窗口的回合数"
    )

    # ── 生成失败 ──
    fallback_on_generation_error: bool = Field(
        default=True,
        description="对白生成失败时是否用标记过的兜底台词继续（否则抛出 GenerationError）",
    )
    fallback_line_text: str = Field(default="……", description="兜底台词文本")

    # ── 评估引擎 ──
    min_recommend_score: float = Field(default=0.3, description="最佳候选低于此分则弃权")
    max_candidates: int = Field(default=5, ge=1, description="每次最多评估的候选数")
    evaluation_window: int = Field(default=12, ge=2, description="评估引擎看最近几句")
    max_snapshots: int = Field(default=500, ge=1, description="评估日志最多保留条数")


class LiaisonConfig(BaseModel):
    """完整配置（CLI 从 YAML 读入）。"""

    dialogue_model: ModelConfig = Field(
        default_factory=ModelConfig,
        description="对白生成使用的模型",
    )
    safety_model: ModelConfig | None = Field(
        default=None,
        description="内容安全复核使用的模型。若为 None 则只做规则过滤。",
    )
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    policy_path: str = Field(default="", description="自定义策略表路径，为空用包内默认表")
    output_dir: str = Field(default="output", description="输出目录")


def load_config(path: str | Path | None) -> LiaisonConfig:
    """从 YAML 加载配置；path 为空时返回默认配置。"""
    if not path:
        return LiaisonConfig()
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return LiaisonConfig.model_validate(data)
