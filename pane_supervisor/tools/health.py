"""ヘルスチェックツール。"""

from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from pane_supervisor.tools.helpers import ensure_fleet_monitor, get_app_ctx


def register_tools(mcp: FastMCP) -> None:
    """ヘルスチェックツールを登録する。"""

    @mcp.tool()
    async def agent_health(
        session: str,
        panes: list[int] | None = None,
        lines: int | None = None,
        include_quota: bool | None = None,
        include_triage: bool | None = None,
        verbose: bool = False,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """ペインごとのヘルススコア（0〜100）と推奨アクションを算出する。

        作業状態に加え、プロバイダー使用量（caut）と OS プロセス情報を統合する。
        使用量が取得できない場合も作業状態だけで算出する。

        Args:
            session: tmux セッション名
            panes: 対象ペイン番号（省略時はコントロールペイン以外の全ペイン）
            lines: キャプチャ行数（省略時は設定値）
            include_quota: 使用量を照会するか（省略時は設定値）
            include_triage: プロセストリアージを行うか（省略時は設定値）
            verbose: Trueの場合、出力サンプルを含める

        Returns:
            ペインごとのスコア（success, panes, provider_summary, fleet_health）
        """
        app_ctx = get_app_ctx(ctx)
        monitor = ensure_fleet_monitor(app_ctx)
        return await monitor.agent_health(
            session,
            panes=panes,
            lines=lines,
            include_quota=include_quota,
            include_triage=include_triage,
            verbose=verbose,
        )

    @mcp.tool()
    async def health_check(
        session: str,
        panes: list[int] | None = None,
        lines: int | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """ペインのヘルス状態（healthy / degraded / unhealthy / rate_limited）を判定する。

        呼び出しごとに出力の変化を記録し、前回からの変化で停滞を検出する。

        Args:
            session: tmux セッション名
            panes: 対象ペイン番号（省略時はコントロールペイン以外の全ペイン）
            lines: キャプチャ行数（省略時は 50）

        Returns:
            ペインごとのヘルス状態（success, panes, summary）
        """
        app_ctx = get_app_ctx(ctx)
        monitor = ensure_fleet_monitor(app_ctx)
        return await monitor.health_check(session, panes=panes, lines=lines)
