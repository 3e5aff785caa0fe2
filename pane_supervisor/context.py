"""アプリケーションコンテキストの定義。

起動時に生成するもの（settings, tmux, アクティビティストアなど）と、
初回利用時に ensure_*() で生成するもの（監視・再起動のマネージャー）を保持する。
アクティビティストアはプロセス内で 1 つだけ持ち、呼び出しをまたいで共有する。
"""

from dataclasses import dataclass, field

from pane_supervisor.config.settings import Settings
from pane_supervisor.managers.activity_tracker import ActivityTracker
from pane_supervisor.managers.fleet_monitor import FleetMonitor
from pane_supervisor.managers.health_state_machine import HealthStateMachine
from pane_supervisor.managers.process_inspector import ProcessInspector
from pane_supervisor.managers.quota_client import CachedQuotaClient
from pane_supervisor.managers.restart_orchestrator import RestartOrchestrator
from pane_supervisor.managers.tmux_manager import TmuxManager
from pane_supervisor.managers.work_state_classifier import WorkStateClassifier


@dataclass
class AppContext:
    """アプリケーションコンテキスト。"""

    # --- コア（起動時に生成） ---
    settings: Settings
    tmux: TmuxManager
    activity_tracker: ActivityTracker = field(default_factory=ActivityTracker)
    process_inspector: ProcessInspector = field(default_factory=ProcessInspector)

    # --- 遅延初期化 ---
    classifier: WorkStateClassifier | None = None
    quota_client: CachedQuotaClient | None = None
    health_machine: HealthStateMachine | None = None
    fleet_monitor: FleetMonitor | None = None
    restart_orchestrator: RestartOrchestrator | None = None
