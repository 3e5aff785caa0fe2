"""マネージャーモジュール。"""

from .activity_tracker import ActivityTracker, PaneActivitySample
from .fleet_monitor import FleetMonitor
from .health_state_machine import HealthStateMachine
from .process_inspector import ProcessInspector, ProcessSnapshot
from .quota_client import CachedQuotaClient, QuotaClient, QuotaUnavailableError
from .restart_orchestrator import RestartOrchestrator
from .tmux_manager import PaneInfo, TmuxManager
from .work_state_classifier import WorkStateClassifier

__all__ = [
    "ActivityTracker",
    "CachedQuotaClient",
    "FleetMonitor",
    "HealthStateMachine",
    "PaneActivitySample",
    "PaneInfo",
    "ProcessInspector",
    "ProcessSnapshot",
    "QuotaClient",
    "QuotaUnavailableError",
    "RestartOrchestrator",
    "TmuxManager",
    "WorkStateClassifier",
]
