"""作業状態判定ツール。"""

from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from pane_supervisor.tools.helpers import ensure_fleet_monitor, get_app_ctx


def register_tools(mcp: FastMCP) -> None:
    """作業状態判定ツールを登録する。"""

    @mcp.tool()
    async def is_working(
        session: str,
        panes: list[int] | None = None,
        lines: int | None = None,
        verbose: bool = False,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """ペインのエージェントが作業中かどうかを判定する。

        出力中のエージェントは DO_NOT_INTERRUPT、入力待ちは SAFE_TO_RESTART
        として推奨アクションを返す。

        Args:
            session: tmux セッション名
            panes: 対象ペイン番号（省略時はコントロールペイン以外の全ペイン）
            lines: キャプチャ行数（省略時は設定値）
            verbose: Trueの場合、出力サンプルを含める

        Returns:
            ペインごとの作業状態（success, panes, summary）
        """
        app_ctx = get_app_ctx(ctx)
        monitor = ensure_fleet_monitor(app_ctx)
        return await monitor.is_working(session, panes=panes, lines=lines, verbose=verbose)
