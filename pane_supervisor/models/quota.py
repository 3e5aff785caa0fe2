"""プロバイダー使用量（caut usage）のモデル定義。"""

from datetime import datetime

from pydantic import BaseModel, Field


class RateWindow(BaseModel):
    """レート制限ウィンドウの使用状況。"""

    used_percent: float | None = None
    window_minutes: int | None = None
    resets_at: datetime | None = None
    reset_description: str | None = None


class UsageIdentity(BaseModel):
    """アカウント情報。"""

    account_email: str | None = None
    plan_name: str | None = None


class UsageSnapshot(BaseModel):
    """使用量スナップショット。"""

    primary_rate_window: RateWindow | None = None
    secondary_rate_window: RateWindow | None = None
    tertiary_rate_window: RateWindow | None = None
    identity: UsageIdentity | None = None


class ProviderStatus(BaseModel):
    """プロバイダーの稼働状況。"""

    operational: bool = False
    message: str | None = None
    url: str | None = None


class ProviderPayload(BaseModel):
    """1 プロバイダー分の使用量情報。"""

    provider: str
    account: str | None = None
    source: str = ""
    status: ProviderStatus | None = None
    usage: UsageSnapshot = Field(default_factory=UsageSnapshot)

    @property
    def used_percent(self) -> float | None:
        """プライマリウィンドウの使用率（%）。"""
        window = self.usage.primary_rate_window
        return window.used_percent if window else None

    @property
    def resets_at(self) -> datetime | None:
        """プライマリウィンドウのリセット時刻。"""
        window = self.usage.primary_rate_window
        return window.resets_at if window else None

    @property
    def is_operational(self) -> bool:
        """稼働中か（ステータス不明の場合は稼働中とみなす）。"""
        if self.status is None:
            return True
        return self.status.operational

    def has_usage_data(self) -> bool:
        """いずれかのウィンドウ情報を持っているか。"""
        usage = self.usage
        return any(
            w is not None
            for w in (
                usage.primary_rate_window,
                usage.secondary_rate_window,
                usage.tertiary_rate_window,
            )
        )


class UsageData(BaseModel):
    """caut 応答の data 部。"""

    payloads: list[ProviderPayload] = Field(default_factory=list)


class UsageResponse(BaseModel):
    """caut usage --format json の応答。"""

    schema_version: str = ""
    command: str = ""
    timestamp: str = ""
    data: UsageData = Field(default_factory=UsageData)
    errors: list[str] = Field(default_factory=list)

    def payload_for(self, provider: str) -> ProviderPayload | None:
        """指定プロバイダーのペイロードを返す。"""
        for payload in self.data.payloads:
            if payload.provider == provider:
                return payload
        return None


class ProviderSummary(BaseModel):
    """プロバイダー単位の集計。"""

    accounts: int = 0
    avg_used_percent: float = 0.0
    panes_using: list[str] = Field(default_factory=list)

    def add(self, pane: str, payload: ProviderPayload) -> None:
        """ペインの使用量を集計に加える。"""
        if pane not in self.panes_using:
            self.panes_using.append(pane)
        pct = payload.used_percent
        if pct is not None:
            total = self.avg_used_percent * self.accounts
            self.accounts += 1
            self.avg_used_percent = (total + pct) / self.accounts
