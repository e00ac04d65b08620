"""持久化边界：把运行时内存模型转成扁平、可序列化的记录。

运行时本身不落盘；存储层（或 CLI 的 OutputManager）消费这里产出的记录。
"""

from __future__ import annotations

from typing import Iterable

from liaison.engine.narrative import EpisodeHandle
from liaison.models.evaluation import EvaluationSnapshot
from liaison.models.records import (
    EpisodeRecord,
    EvaluationSnapshotRecord,
    SceneRecord,
    TelemetryRecord,
    TurnRecord,
)
from liaison.models.telemetry import TelemetryEvent

_EVENT_ENVELOPE = {"kind", "episode_id", "scene_id", "timestamp"}


def episode_record(handle: EpisodeHandle) -> EpisodeRecord:
    with handle.lock:
        state = handle.state
        episode = state.episode
        latencies = [t.line.latency_ms for t in handle.turns]
        return EpisodeRecord(
            id=episode.id,
            started_at=episode.started_at,
            ended_at=episode.ended_at,
            act_path=[int(a) for a in episode.act_path],
            ending=episode.ending.value if episode.ending else None,
            import_seed=episode.import_seed,
            vibe=episode.vibe,
            setting=episode.setting,
            characters=list(episode.characters),
            scene_count=len(episode.scenes),
            turn_count=len(handle.turns),
            avg_latency_ms=sum(latencies) / len(latencies) if latencies else 0.0,
        )


def scene_records(handle: EpisodeHandle) -> list[SceneRecord]:
    with handle.lock:
        return [
            SceneRecord(
                id=scene.id,
                episode_id=scene.episode_id,
                act=int(scene.act),
                idx=scene.index,
                started_at=scene.started_at,
                ended_at=scene.ended_at,
                ended_reason=scene.ended_reason.value if scene.ended_reason else None,
                spotlight_a=scene.spotlight[0],
                spotlight_b=scene.spotlight[1],
                major_nudges=scene.major_nudges,
                minor_nudges=scene.minor_nudges,
            )
            for scene in handle.state.episode.scenes
        ]


def turn_records(handle: EpisodeHandle) -> list[TurnRecord]:
    with handle.lock:
        episode_id = handle.state.episode.id
        return [
            TurnRecord(
                id=turn.id,
                episode_id=episode_id,
                scene_id=turn.scene_id,
                speaker=turn.line.speaker,
                text=turn.line.text,
                secs=turn.line.secs,
                attraction=turn.line.deltas.attraction,
                trust=turn.line.deltas.trust,
                tension=turn.line.deltas.tension,
                comfort=turn.line.deltas.comfort,
                latency_ms=turn.line.latency_ms,
                is_fallback=turn.line.is_fallback,
                timestamp=turn.line.timestamp,
            )
            for turn in handle.turns
        ]


def snapshot_records(snapshots: Iterable[EvaluationSnapshot]) -> list[EvaluationSnapshotRecord]:
    return [
        EvaluationSnapshotRecord(
            id=s.id,
            scene_id=s.scene_id,
            nudge_type=s.candidate.type.value,
            intensity=s.candidate.intensity.value,
            token=s.candidate.token,
            freshness=s.scores.freshness_gain,
            coherence=s.scores.coherence_cost,
            fragility=s.scores.fragility_index,
            coherence_weight=s.scores.coherence_weight,
            score=s.scores.final_score,
            chosen=s.chosen,
            rationales=list(s.rationales),
            timestamp=s.timestamp,
        )
        for s in snapshots
    ]


def telemetry_record(event: TelemetryEvent) -> TelemetryRecord:
    """事件信封字段平铺，其余字段放进 payload。"""
    return TelemetryRecord(
        episode_id=event.episode_id,
        scene_id=event.scene_id,
        kind=event.kind,
        timestamp=event.timestamp,
        payload=event.model_dump(mode="json", exclude=_EVENT_ENVELOPE),
    )


def telemetry_records(events: Iterable[TelemetryEvent]) -> list[TelemetryRecord]:
    return [telemetry_record(e) for e in events]
