"""ヘルス状態・ヘルススコアのモデル定義。"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from pane_supervisor.config.settings import AgentType


class HealthState(str, Enum):
    """シグナル統合によるヘルス状態。"""

    HEALTHY = "healthy"
    """正常"""

    DEGRADED = "degraded"
    """停滞・長時間アイドル"""

    UNHEALTHY = "unhealthy"
    """クラッシュ・エラー"""

    RATE_LIMITED = "rate_limited"
    """レート制限中"""


class ActivityState(str, Enum):
    """出力の変化から見たアクティビティ状態。"""

    GENERATING = "generating"
    """出力が増えている"""

    WAITING = "waiting"
    """入力待ち"""

    STALLED = "stalled"
    """入力待ちでないのに出力が止まっている"""

    UNKNOWN = "unknown"
    """判定材料が不足"""


class HealthRecommendation(str, Enum):
    """ヘルススコアから導かれる推奨アクション。"""

    HEALTHY = "HEALTHY"
    MONITOR = "MONITOR"
    RESTART_RECOMMENDED = "RESTART_RECOMMENDED"
    RESTART_URGENT = "RESTART_URGENT"
    WAIT_FOR_RESET = "WAIT_FOR_RESET"
    SWITCH_ACCOUNT = "SWITCH_ACCOUNT"


class ProcessCheckResult(BaseModel):
    """プロセスチェックの結果。"""

    running: bool = False
    crashed: bool = False
    exit_status: str | None = None
    child_pid: int | None = None
    process_state: str | None = None
    memory_mb: float | None = None
    reason: str = ""


class StallCheckResult(BaseModel):
    """停滞チェックの結果。"""

    model_config = ConfigDict(use_enum_values=True)

    stalled: bool = False
    activity_state: ActivityState = ActivityState.UNKNOWN
    velocity: float = 0.0
    """直近サンプル間の行増加速度（行/秒）"""
    idle_seconds: int = 0
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reason: str = ""


class ErrorCheckResult(BaseModel):
    """エラーパターンチェックの結果。"""

    has_errors: bool = False
    rate_limited: bool = False
    patterns: list[str] = Field(default_factory=list)
    severity: float = 0.0
    """一致したパターンの重みの最大値"""
    wait_seconds: int = 0
    reason: str = ""


class HealthCheck(BaseModel):
    """1 ペインのヘルスチェック結果。"""

    model_config = ConfigDict(use_enum_values=True)

    pane_id: str
    agent_type: AgentType = AgentType.UNKNOWN
    process_check: ProcessCheckResult | None = None
    stall_check: StallCheckResult | None = None
    error_check: ErrorCheckResult | None = None
    health_state: HealthState = HealthState.HEALTHY
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    reason: str = ""
    checked_at: datetime


class HealthScoreResult(BaseModel):
    """ヘルススコアの算出結果。"""

    model_config = ConfigDict(use_enum_values=True)

    score: int = Field(ge=0, le=100)
    grade: str
    issues: list[str] = Field(default_factory=list)
    recommendation: HealthRecommendation
    recommendation_reason: str


class ProcessTriage(BaseModel):
    """OS プロセス情報によるトリアージ結果。"""

    classification: str
    """active / idle / stuck / zombie / absent"""
    shell_pid: int | None = None
    child_pid: int | None = None
    process_state: str | None = None
    memory_mb: float | None = None
    cpu_percent: float | None = None
    reason: str = ""
