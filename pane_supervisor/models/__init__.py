"""データモデルモジュール。"""

from .health import (
    ActivityState,
    ErrorCheckResult,
    HealthCheck,
    HealthRecommendation,
    HealthScoreResult,
    HealthState,
    ProcessCheckResult,
    ProcessTriage,
    StallCheckResult,
)
from .quota import ProviderPayload, ProviderSummary, UsageResponse
from .restart import (
    ErrorDetails,
    HardKillResult,
    RestartAction,
    RestartActionType,
    RestartErrorCode,
    RestartPhase,
    RestartSequence,
    RestartSummary,
    StructuredError,
)
from .work_status import WorkRecommendation, WorkStatus, WorkSummary

__all__ = [
    "ActivityState",
    "ErrorCheckResult",
    "ErrorDetails",
    "HardKillResult",
    "HealthCheck",
    "HealthRecommendation",
    "HealthScoreResult",
    "HealthState",
    "ProcessCheckResult",
    "ProcessTriage",
    "ProviderPayload",
    "ProviderSummary",
    "RestartAction",
    "RestartActionType",
    "RestartErrorCode",
    "RestartPhase",
    "RestartSequence",
    "RestartSummary",
    "StallCheckResult",
    "StructuredError",
    "UsageResponse",
    "WorkRecommendation",
    "WorkStatus",
    "WorkSummary",
]
