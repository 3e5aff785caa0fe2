"""再起動ツール。"""

import logging
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from pane_supervisor.managers.fleet_monitor import error_response
from pane_supervisor.tools.helpers import ensure_restart_orchestrator, get_app_ctx

logger = logging.getLogger(__name__)


def register_tools(mcp: FastMCP) -> None:
    """再起動ツールを登録する。"""

    @mcp.tool()
    async def smart_restart(
        session: str,
        panes: list[int] | None = None,
        force: bool = False,
        dry_run: bool = False,
        prompt: str | None = None,
        hard_kill: bool | None = None,
        hard_kill_only: bool = False,
        post_launch_wait: float | None = None,
        lines: int | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """作業中のエージェントを中断せずに、再起動してよいペインだけを再起動する。

        ※ 作業中のペインは force=True の場合のみ再起動する。

        Args:
            session: tmux セッション名
            panes: 対象ペイン番号（省略時はコントロールペイン以外の全ペイン）
            force: 作業中・状態不明のペインも再起動する
            dry_run: 判断のみ行い実行しない
            prompt: 起動後に送信するプロンプト
            hard_kill: ソフト終了失敗時に kill -9 にフォールバックする（省略時は設定値）
            hard_kill_only: ソフト終了を省略して kill -9 する
            post_launch_wait: 起動後の待機秒数（省略時は設定値）
            lines: 判断に使うキャプチャ行数（省略時は設定値）

        Returns:
            ペインごとの結果（success, actions, summary）
        """
        app_ctx = get_app_ctx(ctx)
        if not await app_ctx.tmux.session_exists(session):
            return error_response(
                f"セッション '{session}' が見つかりません",
                "SESSION_NOT_FOUND",
                "tmux ls でセッション一覧を確認してください",
            )

        orchestrator = ensure_restart_orchestrator(app_ctx)
        logger.info(
            f"smart_restart: session={session}, panes={panes}, force={force}, dry_run={dry_run}"
        )
        return await orchestrator.restart_panes(
            session,
            panes=panes,
            force=force,
            dry_run=dry_run,
            prompt=prompt,
            hard_kill=hard_kill,
            hard_kill_only=hard_kill_only,
            post_launch_wait=post_launch_wait,
            lines=lines,
        )
