"""作業状態モデル定義。"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from pane_supervisor.config.settings import AgentType


class WorkRecommendation(str, Enum):
    """作業状態から導かれる推奨アクション。"""

    DO_NOT_INTERRUPT = "DO_NOT_INTERRUPT"
    """出力中のため中断しない"""

    SAFE_TO_RESTART = "SAFE_TO_RESTART"
    """アイドル状態のため再起動してよい"""

    CONTEXT_LOW_CONTINUE = "CONTEXT_LOW_CONTINUE"
    """コンテキスト残量は少ないが作業を続けさせる"""

    RATE_LIMITED_WAIT = "RATE_LIMITED_WAIT"
    """レート制限の解除を待つ"""

    ERROR_STATE = "ERROR_STATE"
    """エラー状態のため対応が必要"""

    UNKNOWN = "UNKNOWN"
    """状態を判定できない"""


class WorkStatus(BaseModel):
    """1 ペインの作業状態スナップショット。"""

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    pane: str | None = Field(default=None, description="ペイン識別子")
    agent_type: AgentType = Field(default=AgentType.UNKNOWN, description="エージェント種別")
    is_working: bool = Field(default=False, description="出力中か（中断禁止）")
    is_idle: bool = Field(default=False, description="入力待ちか（再起動可）")
    is_rate_limited: bool = Field(default=False, description="レート制限に達しているか")
    is_context_low: bool = Field(default=False, description="コンテキスト残量が閾値未満か")
    is_in_error: bool = Field(default=False, description="エラー状態か")
    context_remaining: float | None = Field(default=None, description="コンテキスト残量（%）")
    tokens_used: int | None = Field(default=None, description="消費トークン数")
    memory_mb: float | None = Field(default=None, description="メモリ使用量（MB）")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="判定の確信度")
    work_indicators: list[str] = Field(default_factory=list, description="作業中の根拠")
    limit_indicators: list[str] = Field(default_factory=list, description="レート制限の根拠")
    recommendation: WorkRecommendation = Field(
        default=WorkRecommendation.UNKNOWN, description="推奨アクション"
    )
    reason: str = Field(default="", description="推奨アクションの理由")
    raw_sample: str | None = Field(default=None, description="末尾の出力サンプル（詳細表示用）")


class WorkSummary(BaseModel):
    """複数ペインの作業状態サマリー。"""

    total: int = 0
    working: list[str] = Field(default_factory=list)
    idle: list[str] = Field(default_factory=list)
    rate_limited: list[str] = Field(default_factory=list)
    context_low: list[str] = Field(default_factory=list)
    error: list[str] = Field(default_factory=list)
    by_recommendation: dict[str, list[str]] = Field(default_factory=dict)

    def add(self, pane: str, status: WorkStatus) -> None:
        """ペインの状態をサマリーに加算する。"""
        self.total += 1
        if status.is_working:
            self.working.append(pane)
        if status.is_idle:
            self.idle.append(pane)
        if status.is_rate_limited:
            self.rate_limited.append(pane)
        if status.is_context_low:
            self.context_low.append(pane)
        if status.recommendation == WorkRecommendation.ERROR_STATE.value:
            self.error.append(pane)
        self.by_recommendation.setdefault(status.recommendation, []).append(pane)
