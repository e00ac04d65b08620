"""Pydantic 数据模型。"""

from liaison.models.console import BadgeLevel, BadgeType, ConsoleState, ThresholdBadge, TickResult
from liaison.models.dialogue import BeatContext, FinalLine, RecentLine, SafetyVerdict
from liaison.models.episode import (
    Act,
    EndReason,
    Ending,
    Episode,
    EpisodeConstraints,
    EpisodeSeed,
    EpisodeSummary,
    Scene,
    SpokenLine,
)
from liaison.models.evaluation import (
    CoherenceComponents,
    DialogueSummary,
    EvaluationRecommendation,
    EvaluationScores,
    EvaluationSnapshot,
    FragilityComponents,
    FreshnessComponents,
    StructuralState,
)
from liaison.models.nudge import (
    BiasFlags,
    CadenceStatus,
    Nudge,
    NudgeDecision,
    NudgeDescriptor,
    NudgeIntensity,
    NudgeSource,
    NudgeType,
    RecoveryBias,
)
from liaison.models.policy import ActGate, CheckpointEvidence, CheckpointRule, CheckpointType, PolicyTables
from liaison.models.relationship import DIMENSIONS, ChemistryDeltas, RelationshipPair, pair_key
from liaison.models.telemetry import (
    MetricTickEvent,
    NudgeAppliedEvent,
    SceneRef,
    SceneTransitionEvent,
    TelemetryEvent,
    TurnEndEvent,
    TurnStartEvent,
)

__all__ = [
    "DIMENSIONS",
    "Act",
    "ActGate",
    "BadgeLevel",
    "BadgeType",
    "BeatContext",
    "BiasFlags",
    "CadenceStatus",
    "CheckpointEvidence",
    "CheckpointRule",
    "CheckpointType",
    "ChemistryDeltas",
    "CoherenceComponents",
    "ConsoleState",
    "DialogueSummary",
    "EndReason",
    "Ending",
    "Episode",
    "EpisodeConstraints",
    "EpisodeSeed",
    "EpisodeSummary",
    "EvaluationRecommendation",
    "EvaluationScores",
    "EvaluationSnapshot",
    "FinalLine",
    "FragilityComponents",
    "FreshnessComponents",
    "MetricTickEvent",
    "Nudge",
    "NudgeAppliedEvent",
    "NudgeDecision",
    "NudgeDescriptor",
    "NudgeIntensity",
    "NudgeSource",
    "NudgeType",
    "PolicyTables",
    "RecentLine",
    "RecoveryBias",
    "RelationshipPair",
    "SafetyVerdict",
    "Scene",
    "SceneRef",
    "SceneTransitionEvent",
    "SpokenLine",
    "StructuralState",
    "TelemetryEvent",
    "ThresholdBadge",
    "TickResult",
    "TurnEndEvent",
    "TurnStartEvent",
    "pair_key",
]
