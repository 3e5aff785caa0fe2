"""セッション単位の状態集計。

セッション内の対象ペインをまとめて判定し、ツールが返す形の辞書に整形する。
"""

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pane_supervisor.config.agent_registry import provider_for_agent
from pane_supervisor.managers.health_score import health_grade, score_pane
from pane_supervisor.managers.health_state_machine import HEALTH_CAPTURE_LINES
from pane_supervisor.managers.quota_client import QuotaUnavailableError
from pane_supervisor.models.health import HealthState, ProcessTriage
from pane_supervisor.models.quota import ProviderPayload, ProviderSummary
from pane_supervisor.models.work_status import WorkStatus, WorkSummary

if TYPE_CHECKING:
    from pane_supervisor.config.settings import Settings
    from pane_supervisor.managers.health_state_machine import HealthStateMachine
    from pane_supervisor.managers.process_inspector import ProcessInspector
    from pane_supervisor.managers.quota_client import CachedQuotaClient
    from pane_supervisor.managers.tmux_manager import PaneInfo, TmuxManager
    from pane_supervisor.managers.work_state_classifier import WorkStateClassifier

logger = logging.getLogger(__name__)

FLEET_HEALTHY_SCORE = 70
FLEET_WARNING_SCORE = 50


def error_response(error: str, error_code: str, hint: str = "") -> dict[str, Any]:
    """失敗時の共通レスポンスを作成する。"""
    return {
        "success": False,
        "timestamp": datetime.now().isoformat(),
        "error": error,
        "error_code": error_code,
        "hint": hint,
    }


def provider_usage_dict(payload: ProviderPayload) -> dict[str, Any]:
    """プロバイダー使用量をレスポンス用に要約する。"""
    resets_at = payload.resets_at
    return {
        "provider": payload.provider,
        "account": payload.account,
        "used_percent": payload.used_percent,
        "resets_at": resets_at.isoformat() if resets_at else None,
        "operational": payload.is_operational,
        "has_usage_data": payload.has_usage_data(),
    }


class FleetMonitor:
    """セッション内のペインをまとめて監視する。"""

    def __init__(
        self,
        tmux_manager: "TmuxManager",
        classifier: "WorkStateClassifier",
        health_machine: "HealthStateMachine",
        process_inspector: "ProcessInspector",
        settings: "Settings",
        quota_client: "CachedQuotaClient | None" = None,
    ) -> None:
        """FleetMonitorを初期化する。"""
        self.tmux = tmux_manager
        self.classifier = classifier
        self.health_machine = health_machine
        self.inspector = process_inspector
        self.settings = settings
        self.quota_client = quota_client

    async def resolve_panes(
        self, session: str, panes: list[int] | None = None
    ) -> tuple[list["PaneInfo"], dict[str, Any] | None]:
        """対象ペインを解決する。

        panes を省略した場合はコントロールペイン以外の全ペインを対象にする。
        存在しないセッション・ペインの指定は何も処理せずにエラーを返す。

        Returns:
            (対象ペイン, エラーレスポンス) のタプル
        """
        if not await self.tmux.session_exists(session):
            return [], error_response(
                f"セッション '{session}' が見つかりません",
                "SESSION_NOT_FOUND",
                "tmux ls でセッション一覧を確認してください",
            )

        infos = await self.tmux.list_panes(session)
        if panes is None:
            return [i for i in infos if i.index != self.settings.control_pane_index], None

        by_index = {i.index: i for i in infos}
        missing = [p for p in panes if p not in by_index]
        if missing:
            return [], error_response(
                f"ペイン {missing} がセッション '{session}' に見つかりません",
                "PANE_NOT_FOUND",
                f"利用可能なペイン: {sorted(by_index)}",
            )
        return [by_index[p] for p in panes], None

    async def _classify(self, session: str, info: "PaneInfo", lines: int, verbose: bool) -> WorkStatus:
        output = await self.tmux.capture_pane(session, info.index, lines=lines)
        return self.classifier.classify(
            output, pane=str(info.index), agent_type_hint=info.title, verbose=verbose
        )

    async def is_working(
        self,
        session: str,
        panes: list[int] | None = None,
        lines: int | None = None,
        verbose: bool = False,
    ) -> dict[str, Any]:
        """ペインごとの作業状態を判定する。"""
        targets, error = await self.resolve_panes(session, panes)
        if error:
            return error

        lines = lines or self.settings.capture_lines
        summary = WorkSummary()
        results: dict[str, Any] = {}
        for info in targets:
            status = await self._classify(session, info, lines, verbose)
            summary.add(str(info.index), status)
            results[str(info.index)] = status.model_dump()

        return {
            "success": True,
            "session": session,
            "timestamp": datetime.now().isoformat(),
            "query": {
                "panes_requested": panes if panes is not None else [],
                "lines_captured": lines,
            },
            "panes": results,
            "summary": summary.model_dump(),
        }

    async def _provider_usage(
        self, status: WorkStatus, quota_errors: list[str]
    ) -> ProviderPayload | None:
        if self.quota_client is None or provider_for_agent(status.agent_type) is None:
            return None
        try:
            return await self.quota_client.get_agent_usage(status.agent_type)
        except QuotaUnavailableError as e:
            logger.warning(f"プロバイダー使用量を取得できません: {e}")
            quota_errors.append(str(e))
            return None

    async def _triage(self, info: "PaneInfo", status: WorkStatus) -> ProcessTriage | None:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.inspector.triage, info.pid, status.is_working),
                timeout=self.settings.triage_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"ペイン {info.index} のプロセストリアージがタイムアウトしました")
            return None

    async def agent_health(
        self,
        session: str,
        panes: list[int] | None = None,
        lines: int | None = None,
        include_quota: bool | None = None,
        include_triage: bool | None = None,
        verbose: bool = False,
    ) -> dict[str, Any]:
        """作業状態・使用量・プロセス情報を統合してヘルススコアを算出する。"""
        targets, error = await self.resolve_panes(session, panes)
        if error:
            return error

        lines = lines or self.settings.capture_lines
        use_quota = self.settings.quota_enabled if include_quota is None else include_quota
        use_triage = self.settings.triage_enabled if include_triage is None else include_triage

        results: dict[str, Any] = {}
        provider_summary: dict[str, ProviderSummary] = {}
        quota_errors: list[str] = []
        scores: list[int] = []
        for info in targets:
            pane = str(info.index)
            status = await self._classify(session, info, lines, verbose)
            payload = await self._provider_usage(status, quota_errors) if use_quota else None
            triage = await self._triage(info, status) if use_triage else None
            score = score_pane(status, payload)
            scores.append(score.score)

            if payload is not None:
                provider_summary.setdefault(payload.provider, ProviderSummary()).add(pane, payload)

            results[pane] = {
                "agent_type": status.agent_type,
                "local_state": status.model_dump(),
                "provider_usage": provider_usage_dict(payload) if payload else None,
                "triage": triage.model_dump() if triage else None,
                "health_score": score.score,
                "health_grade": score.grade,
                "issues": score.issues,
                "recommendation": score.recommendation,
                "recommendation_reason": score.recommendation_reason,
            }

        avg_score = sum(scores) / len(scores) if scores else 0.0
        response = {
            "success": True,
            "session": session,
            "timestamp": datetime.now().isoformat(),
            "panes": results,
            "provider_summary": {k: v.model_dump() for k, v in provider_summary.items()},
            "fleet_health": {
                "total": len(scores),
                "healthy": sum(1 for s in scores if s >= FLEET_HEALTHY_SCORE),
                "warning": sum(1 for s in scores if FLEET_WARNING_SCORE <= s < FLEET_HEALTHY_SCORE),
                "critical": sum(1 for s in scores if s < FLEET_WARNING_SCORE),
                "avg_score": round(avg_score, 1),
                "overall_grade": health_grade(round(avg_score)) if scores else "F",
            },
        }
        if quota_errors:
            response["quota_errors"] = quota_errors
        return response

    async def health_check(
        self,
        session: str,
        panes: list[int] | None = None,
        lines: int | None = None,
    ) -> dict[str, Any]:
        """ペインごとのヘルス状態（healthy / degraded / unhealthy / rate_limited）を判定する。"""
        targets, error = await self.resolve_panes(session, panes)
        if error:
            return error

        counts = {state.value: 0 for state in HealthState}
        results: dict[str, Any] = {}
        for info in targets:
            check = await self.health_machine.check_pane(
                session, info.index, agent_type_hint=info.title, lines=lines or HEALTH_CAPTURE_LINES
            )
            counts[check.health_state] += 1
            results[str(info.index)] = check.model_dump(mode="json")

        return {
            "success": True,
            "session": session,
            "timestamp": datetime.now().isoformat(),
            "panes": results,
            "summary": {"total": len(results), **counts},
        }
