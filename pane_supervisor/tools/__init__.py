"""MCP Tools モジュール。"""

from mcp.server.fastmcp import FastMCP

from pane_supervisor.tools import health, restart, work_state


def register_all_tools(mcp: FastMCP) -> None:
    """全ツールをMCPサーバーに登録する。

    Args:
        mcp: FastMCPインスタンス
    """
    # 作業状態
    work_state.register_tools(mcp)

    # ヘルスチェック
    health.register_tools(mcp)

    # 再起動
    restart.register_tools(mcp)
