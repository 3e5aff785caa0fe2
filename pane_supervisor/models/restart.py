"""再起動処理のモデル定義。"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RestartActionType(str, Enum):
    """ペインごとの再起動結果。"""

    RESTARTED = "RESTARTED"
    """再起動した"""

    SKIPPED = "SKIPPED"
    """作業中などの理由で見送った"""

    WAITING = "WAITING"
    """レート制限の解除待ち"""

    FAILED = "FAILED"
    """再起動に失敗した"""

    WOULD_RESTART = "WOULD_RESTART"
    """ドライランで再起動対象と判定した"""


class RestartErrorCode(str, Enum):
    """再起動失敗時のエラーコード。"""

    SOFT_EXIT_FAILED = "SOFT_EXIT_FAILED"
    SHELL_NOT_RETURNED = "SHELL_NOT_RETURNED"
    HARD_KILL_FAILED = "HARD_KILL_FAILED"
    CC_LAUNCH_FAILED = "CC_LAUNCH_FAILED"
    PROMPT_SEND_FAILED = "PROMPT_SEND_FAILED"
    PANE_NOT_FOUND = "PANE_NOT_FOUND"
    TIMEOUT = "TIMEOUT"


class RestartPhase(str, Enum):
    """再起動プロトコルのフェーズ。"""

    SOFT_EXIT = "soft_exit"
    POST_EXIT = "post_exit"
    HARD_KILL = "hard_kill"
    POST_HARD_KILL = "post_hard_kill"
    LAUNCH = "launch"
    PROMPT = "prompt"


class ErrorDetails(BaseModel):
    """構造化エラーの詳細情報。"""

    child_pid: int | None = None
    process_state: str | None = None
    last_output: str | None = None
    attempted_actions: list[str] = Field(default_factory=list)
    agent_type: str | None = None
    exit_method: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class StructuredError(BaseModel):
    """機械可読な再起動エラー。"""

    model_config = ConfigDict(use_enum_values=True)

    code: RestartErrorCode
    message: str
    phase: RestartPhase | None = None
    """失敗したフェーズ（フェーズ開始前の失敗は None）"""
    pane: str
    details: ErrorDetails = Field(default_factory=ErrorDetails)
    recovery_hint: str = ""


class HardKillResult(BaseModel):
    """強制終了の結果。"""

    shell_pid: int
    child_pid: int | None = None
    kill_method: str
    """kill_9 / no_child_process"""
    success: bool


class RestartSequence(BaseModel):
    """再起動の実行記録（監査用にそのまま出力する）。"""

    exit_method: str = ""
    exit_duration_ms: int = 0
    shell_confirmed: bool = False
    agent_launched: bool = False
    agent_type: str = ""
    prompt_sent: bool | None = None
    hard_kill_used: bool | None = None
    hard_kill_result: HardKillResult | None = None


class PreCheck(BaseModel):
    """再起動判断に使った作業状態。"""

    recommendation: str
    is_working: bool
    is_idle: bool
    is_rate_limited: bool
    is_context_low: bool
    context_remaining: float | None = None
    confidence: float
    agent_type: str


class PostState(BaseModel):
    """再起動後の状態（ベストエフォート）。"""

    agent_running: bool
    agent_type: str
    confidence: float


class WaitInfo(BaseModel):
    """レート制限待ちの情報。"""

    resets_at: str | None = None
    wait_seconds: int = 0
    suggestion: str = ""


class RestartAction(BaseModel):
    """1 ペインに対する再起動判断と実行結果。"""

    model_config = ConfigDict(use_enum_values=True)

    action: RestartActionType
    reason: str
    warning: str | None = None
    pre_check: PreCheck | None = None
    restart_sequence: RestartSequence | None = None
    post_state: PostState | None = None
    wait_info: WaitInfo | None = None
    error: str | None = None
    structured_error: StructuredError | None = None
    """FAILED の原因。RESTARTED でもプロンプト送信に失敗した場合は PROMPT_SEND_FAILED を持つ"""


class RestartSummary(BaseModel):
    """再起動結果の集計。"""

    restarted: int = 0
    skipped: int = 0
    waiting: int = 0
    failed: int = 0
    would_restart: int = 0
    panes_by_action: dict[str, list[str]] = Field(default_factory=dict)

    def add(self, pane: str, action: RestartAction) -> None:
        """ペインの結果を集計に加える。"""
        counters = {
            RestartActionType.RESTARTED.value: "restarted",
            RestartActionType.SKIPPED.value: "skipped",
            RestartActionType.WAITING.value: "waiting",
            RestartActionType.FAILED.value: "failed",
            RestartActionType.WOULD_RESTART.value: "would_restart",
        }
        attr = counters[action.action]
        setattr(self, attr, getattr(self, attr) + 1)
        self.panes_by_action.setdefault(action.action, []).append(pane)
