"""叙事运行时与评估引擎。"""

from liaison.engine.cadence import CadenceController
from liaison.engine.evaluation import EvaluationEngine, lambda_weight
from liaison.engine.narrative import EpisodeHandle, NarrativeRuntime
from liaison.engine.telemetry import TelemetryHub, TickTelemetry

__all__ = [
    "CadenceController",
    "EpisodeHandle",
    "EvaluationEngine",
    "NarrativeRuntime",
    "TelemetryHub",
    "TickTelemetry",
    "lambda_weight",
]
