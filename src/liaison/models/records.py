"""扁平的可持久化记录（运行时本身不落盘）。"""

from __future__ import annotations

from pydantic import BaseModel, Field


class EpisodeRecord(BaseModel):
    id: str
    started_at: float
    ended_at: float | None = None
    act_path: list[int]
    ending: str | None = None
    import_seed: str | None = None
    vibe: str = ""
    setting: str = ""
    characters: list[str] = Field(default_factory=list)
    scene_count: int = 0
    turn_count: int = 0
    avg_latency_ms: float = 0.0


class SceneRecord(BaseModel):
    id: str
    episode_id: str
    act: int
    idx: int
    started_at: float
    ended_at: float | None = None
    ended_reason: str | None = None
    spotlight_a: str
    spotlight_b: str
    major_nudges: int = 0
    minor_nudges: int = 0


class TurnRecord(BaseModel):
    id: str
    episode_id: str
    scene_id: str
    speaker: str
    text: str
    secs: float
    attraction: float
    trust: float
    tension: float
    comfort: float
    latency_ms: float
    is_fallback: bool = False
    timestamp: float


class EvaluationSnapshotRecord(BaseModel):
    id: str
    scene_id: str
    nudge_type: str
    intensity: str
    token: str | None = None
    freshness: float
    coherence: float
    fragility: float
    coherence_weight: float
    score: float
    chosen: bool
    rationales: list[str] = Field(default_factory=list)
    timestamp: float


class TelemetryRecord(BaseModel):
    episode_id: str
    scene_id: str | None = None
    kind: str
    timestamp: float
    payload: dict = Field(default_factory=dict)
