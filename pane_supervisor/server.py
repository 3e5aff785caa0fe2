"""Pane Supervisor MCP Server エントリーポイント。"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from pane_supervisor.config.settings import Settings
from pane_supervisor.context import AppContext
from pane_supervisor.managers.tmux_manager import TmuxManager
from pane_supervisor.tools import register_all_tools

# ログ設定（stderrに出力）
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """サーバーライフサイクルを管理する。

    Args:
        server: FastMCPサーバーインスタンス

    Yields:
        アプリケーションコンテキスト
    """
    logger.info("Pane Supervisor MCP Server を起動しています...")

    settings = Settings()
    tmux = TmuxManager(settings)
    app_ctx = AppContext(settings=settings, tmux=tmux)

    try:
        yield app_ctx
    finally:
        logger.info(
            f"サーバーをシャットダウンしています...（追跡中のペイン: {len(app_ctx.activity_tracker)}）"
        )


# FastMCPサーバーを作成
mcp = FastMCP("Pane Supervisor", lifespan=app_lifespan)
register_all_tools(mcp)


def main() -> None:
    """MCPサーバーを起動する。"""
    mcp.run()


if __name__ == "__main__":
    main()
