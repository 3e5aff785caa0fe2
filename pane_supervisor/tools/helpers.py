"""MCPツール用共通ヘルパー関数。

マネージャーの遅延初期化は ensure_*() 関数で行う。
"""

import logging
from typing import Any

from pane_supervisor.context import AppContext
from pane_supervisor.managers.fleet_monitor import FleetMonitor
from pane_supervisor.managers.health_state_machine import HealthStateMachine
from pane_supervisor.managers.quota_client import CachedQuotaClient, QuotaClient
from pane_supervisor.managers.restart_orchestrator import RestartOrchestrator
from pane_supervisor.managers.work_state_classifier import WorkStateClassifier

logger = logging.getLogger(__name__)


def get_app_ctx(ctx: Any) -> AppContext:
    """MCP Context から AppContext を取得する。"""
    return ctx.request_context.lifespan_context


def ensure_classifier(app_ctx: AppContext) -> WorkStateClassifier:
    """WorkStateClassifierが初期化されていることを確認する。"""
    if app_ctx.classifier is None:
        app_ctx.classifier = WorkStateClassifier(
            context_low_threshold=app_ctx.settings.context_low_threshold,
        )
    return app_ctx.classifier


def ensure_quota_client(app_ctx: AppContext) -> CachedQuotaClient | None:
    """使用量クライアントを返す（照会が無効な場合None）。"""
    settings = app_ctx.settings
    if not settings.quota_enabled:
        return None
    if app_ctx.quota_client is None:
        client = QuotaClient(
            binary=settings.quota_binary,
            timeout_seconds=settings.quota_timeout_seconds,
        )
        if not client.is_installed():
            logger.info(f"{settings.quota_binary} が見つからないため使用量照会を省略します")
            return None
        app_ctx.quota_client = CachedQuotaClient(
            client, ttl_seconds=settings.quota_cache_ttl_seconds
        )
    return app_ctx.quota_client


def ensure_health_machine(app_ctx: AppContext) -> HealthStateMachine:
    """HealthStateMachineが初期化されていることを確認する。"""
    if app_ctx.health_machine is None:
        app_ctx.health_machine = HealthStateMachine(
            tmux_manager=app_ctx.tmux,
            activity_tracker=app_ctx.activity_tracker,
            process_inspector=app_ctx.process_inspector,
            classifier=ensure_classifier(app_ctx),
            stall_threshold_seconds=app_ctx.settings.stall_threshold_seconds,
            idle_degraded_seconds=app_ctx.settings.idle_degraded_seconds,
        )
    return app_ctx.health_machine


def ensure_fleet_monitor(app_ctx: AppContext) -> FleetMonitor:
    """FleetMonitorが初期化されていることを確認する。"""
    if app_ctx.fleet_monitor is None:
        app_ctx.fleet_monitor = FleetMonitor(
            tmux_manager=app_ctx.tmux,
            classifier=ensure_classifier(app_ctx),
            health_machine=ensure_health_machine(app_ctx),
            process_inspector=app_ctx.process_inspector,
            settings=app_ctx.settings,
            quota_client=ensure_quota_client(app_ctx),
        )
    return app_ctx.fleet_monitor


def ensure_restart_orchestrator(app_ctx: AppContext) -> RestartOrchestrator:
    """RestartOrchestratorが初期化されていることを確認する。"""
    if app_ctx.restart_orchestrator is None:
        app_ctx.restart_orchestrator = RestartOrchestrator(
            tmux_manager=app_ctx.tmux,
            classifier=ensure_classifier(app_ctx),
            process_inspector=app_ctx.process_inspector,
            settings=app_ctx.settings,
            quota_client=ensure_quota_client(app_ctx),
        )
    return app_ctx.restart_orchestrator
