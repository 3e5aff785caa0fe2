"""ヘルススコアの算出。

作業状態とプロバイダー使用量から 0〜100 のスコア・グレード・推奨アクションを導く。
ヘルス状態（health_state_machine）とは独立した指標で、閾値も共有しない。
"""

import math

from pane_supervisor.config.settings import AgentType
from pane_supervisor.models.health import HealthRecommendation, HealthScoreResult
from pane_supervisor.models.quota import ProviderPayload
from pane_supervisor.models.work_status import WorkRecommendation, WorkStatus

BASE_SCORE = 100

# 減点
RATE_LIMITED_PENALTY = 50
ERROR_STATE_PENALTY = 40
CONTEXT_LOW_IDLE_PENALTY = 25
CONTEXT_LOW_WORKING_PENALTY = 10
UNKNOWN_TYPE_PENALTY = 15
LOW_CONFIDENCE_PENALTY = 10

# (使用率の下限, 減点) を高い順に評価し、最初に該当したものだけ適用
PROVIDER_USAGE_PENALTIES = ((95.0, 30), (80.0, 15), (60.0, 5))

LOW_CONFIDENCE_THRESHOLD = 0.5
UNKNOWN_CONFIDENCE_THRESHOLD = 0.3
SWITCH_ACCOUNT_PERCENT = 90.0
NEAR_CAP_PERCENT = 95.0
APPROACHING_LIMIT_PERCENT = 80.0
CONTEXT_LOW_PERCENT = 20

HEALTHY_SCORE = 70
MONITOR_SCORE = 50

_GRADES = ((90, "A"), (80, "B"), (70, "C"), (50, "D"))


def format_percent(value: float) -> str:
    """パーセンテージを最も近い整数に丸めて表示用文字列にする（0.5 は切り上げ）。"""
    return f"{math.floor(value + 0.5)}%"


def _is_error_state(status: WorkStatus) -> bool:
    return status.recommendation == WorkRecommendation.ERROR_STATE.value


def _provider_percent(provider: ProviderPayload | None) -> float | None:
    if provider is None:
        return None
    return provider.used_percent


def calculate_health_score(status: WorkStatus, provider: ProviderPayload | None = None) -> int:
    """100 点から減点してヘルススコアを算出する（下限 0）。

    Args:
        status: 作業状態
        provider: プロバイダー使用量（取得できない場合None）

    Returns:
        0〜100 のスコア
    """
    score = BASE_SCORE

    if status.is_rate_limited:
        score -= RATE_LIMITED_PENALTY
    if _is_error_state(status):
        score -= ERROR_STATE_PENALTY
    if status.is_context_low:
        score -= CONTEXT_LOW_WORKING_PENALTY if status.is_working else CONTEXT_LOW_IDLE_PENALTY
    if status.agent_type == AgentType.UNKNOWN.value:
        score -= UNKNOWN_TYPE_PENALTY

    pct = _provider_percent(provider)
    if pct is not None:
        for threshold, penalty in PROVIDER_USAGE_PENALTIES:
            if pct >= threshold:
                score -= penalty
                break

    if status.confidence < LOW_CONFIDENCE_THRESHOLD:
        score -= LOW_CONFIDENCE_PENALTY

    return max(0, score)


def health_grade(score: int) -> str:
    """スコアをグレード（A〜F）に変換する。"""
    for minimum, grade in _GRADES:
        if score >= minimum:
            return grade
    return "F"


def collect_issues(status: WorkStatus, provider: ProviderPayload | None = None) -> list[str]:
    """スコアに影響した問題を人が読める形で列挙する。"""
    issues: list[str] = []

    if status.is_rate_limited:
        issues.append("Rate limited - agent cannot continue")
    if _is_error_state(status):
        issues.append("Agent in error state - needs attention")
    if status.is_context_low:
        if status.context_remaining is not None:
            issues.append(
                f"Context remaining below {CONTEXT_LOW_PERCENT}% threshold "
                f"({format_percent(status.context_remaining)})"
            )
        else:
            issues.append("Context remaining below threshold")
    if status.is_idle and not status.is_rate_limited:
        issues.append("Agent is idle - may need new task")
    if status.agent_type == AgentType.UNKNOWN.value:
        issues.append("Could not determine agent type")
    if status.confidence < LOW_CONFIDENCE_THRESHOLD:
        issues.append("Low confidence in agent state assessment")

    pct = _provider_percent(provider)
    if pct is not None:
        if pct >= NEAR_CAP_PERCENT:
            issues.append(f"Provider at {format_percent(pct)} usage, near cap")
        elif pct >= APPROACHING_LIMIT_PERCENT:
            issues.append(f"Provider at {format_percent(pct)} usage, approaching limit")
    if provider is not None and not provider.is_operational:
        issues.append("Provider reports non-operational status")

    return issues


def derive_health_recommendation(
    status: WorkStatus, provider: ProviderPayload | None, score: int
) -> tuple[HealthRecommendation, str]:
    """推奨アクションと理由を導く（先に一致したものを採用）。"""
    if status.is_rate_limited:
        resets_at = provider.resets_at if provider is not None else None
        if resets_at is not None:
            return HealthRecommendation.WAIT_FOR_RESET, f"Rate limited, resets at {resets_at.isoformat()}"
        return HealthRecommendation.WAIT_FOR_RESET, "Rate limited"

    if _is_error_state(status):
        return (
            HealthRecommendation.RESTART_URGENT,
            "Agent in error state, requires immediate attention",
        )

    pct = _provider_percent(provider)
    if pct is not None and pct >= SWITCH_ACCOUNT_PERCENT:
        return (
            HealthRecommendation.SWITCH_ACCOUNT,
            f"Provider at {format_percent(pct)} usage, consider account switch",
        )

    if status.is_context_low and status.is_idle:
        remaining = (
            format_percent(status.context_remaining)
            if status.context_remaining is not None
            else "unknown"
        )
        return (
            HealthRecommendation.RESTART_RECOMMENDED,
            f"Low context ({remaining}), restart will restore capacity",
        )

    if (
        status.agent_type == AgentType.UNKNOWN.value
        and status.confidence < UNKNOWN_CONFIDENCE_THRESHOLD
    ):
        return HealthRecommendation.RESTART_URGENT, "Unable to determine agent state, may be stuck"

    if score >= HEALTHY_SCORE:
        if status.is_working:
            return HealthRecommendation.HEALTHY, "Agent working normally, account has capacity"
        return HealthRecommendation.HEALTHY, "Agent ready for work, account has capacity"

    if score >= MONITOR_SCORE:
        return HealthRecommendation.MONITOR, "Minor issues detected, monitoring recommended"

    return HealthRecommendation.RESTART_RECOMMENDED, "Multiple issues affecting agent health"


def score_pane(status: WorkStatus, provider: ProviderPayload | None = None) -> HealthScoreResult:
    """作業状態と使用量からヘルススコア一式を算出する。

    Args:
        status: 作業状態
        provider: プロバイダー使用量（取得できない場合None）

    Returns:
        スコア・グレード・問題点・推奨アクション
    """
    score = calculate_health_score(status, provider)
    recommendation, reason = derive_health_recommendation(status, provider, score)
    return HealthScoreResult(
        score=score,
        grade=health_grade(score),
        issues=collect_issues(status, provider),
        recommendation=recommendation,
        recommendation_reason=reason,
    )
