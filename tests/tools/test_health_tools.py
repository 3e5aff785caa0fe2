"""ヘルスチェックツールのテスト。"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.server.fastmcp import FastMCP

from pane_supervisor.models.quota import ProviderPayload, RateWindow, UsageSnapshot
from pane_supervisor.tools.health import register_tools


def _get_tool(name: str):
    mcp = FastMCP("test")
    register_tools(mcp)
    for tool in mcp._tool_manager._tools.values():
        if tool.name == name:
            return tool.fn
    raise AssertionError(f"tool {name} not registered")


class TestAgentHealthTool:
    """agent_health ツールのテスト。"""

    @pytest.mark.asyncio
    async def test_scores_panes(self, mock_ctx):
        """ペインごとのスコアとフリート集計を返すことをテスト。"""
        agent_health = _get_tool("agent_health")
        app_ctx = mock_ctx.request_context.lifespan_context
        app_ctx.tmux.capture_pane = AsyncMock(
            return_value="Claude Opus 4.5\nYou've hit your limit. resets 5pm"
        )

        result = await agent_health(session="proj", panes=[1], ctx=mock_ctx)

        pane = result["panes"]["1"]
        assert pane["health_score"] == 50
        assert pane["health_grade"] == "D"
        assert pane["recommendation"] == "WAIT_FOR_RESET"
        assert result["fleet_health"]["warning"] == 1

    @pytest.mark.asyncio
    async def test_uses_quota_client_when_enabled(self, mock_ctx):
        """使用量照会が有効な場合はプロバイダー使用量を含めることをテスト。"""
        agent_health = _get_tool("agent_health")
        app_ctx = mock_ctx.request_context.lifespan_context
        app_ctx.settings.quota_enabled = True
        quota = MagicMock()
        quota.get_agent_usage = AsyncMock(
            return_value=ProviderPayload(
                provider="claude",
                usage=UsageSnapshot(primary_rate_window=RateWindow(used_percent=92.0)),
            )
        )
        app_ctx.quota_client = quota
        app_ctx.tmux.capture_pane = AsyncMock(return_value="Claude Opus 4.5\nHuman: ")

        result = await agent_health(session="proj", panes=[1], ctx=mock_ctx)

        pane = result["panes"]["1"]
        assert pane["provider_usage"]["used_percent"] == 92.0
        assert pane["recommendation"] == "SWITCH_ACCOUNT"
        assert result["provider_summary"]["claude"]["panes_using"] == ["1"]

    @pytest.mark.asyncio
    async def test_missing_pane(self, mock_ctx):
        """存在しないペインはエラーを返すことをテスト。"""
        agent_health = _get_tool("agent_health")

        result = await agent_health(session="proj", panes=[5], ctx=mock_ctx)

        assert result["success"] is False
        assert result["error_code"] == "PANE_NOT_FOUND"


class TestHealthCheckTool:
    """health_check ツールのテスト。"""

    @pytest.mark.asyncio
    async def test_detects_stall_across_calls(self, mock_ctx, clock):
        """呼び出しをまたいで停滞を検出することをテスト。"""
        health_check = _get_tool("health_check")
        app_ctx = mock_ctx.request_context.lifespan_context
        app_ctx.tmux.capture_pane = AsyncMock(return_value="Claude Opus 4.5\nThinking...")

        first = await health_check(session="proj", panes=[1], ctx=mock_ctx)
        clock.advance(app_ctx.settings.stall_threshold_seconds + 1)
        second = await health_check(session="proj", panes=[1], ctx=mock_ctx)

        assert first["panes"]["1"]["health_state"] == "healthy"
        assert second["panes"]["1"]["health_state"] == "degraded"
        assert second["panes"]["1"]["stall_check"]["stalled"] is True
        assert second["summary"]["degraded"] == 1

    @pytest.mark.asyncio
    async def test_crashed_agent(self, mock_ctx):
        """シェルに戻ったペインは unhealthy になることをテスト。"""
        health_check = _get_tool("health_check")
        app_ctx = mock_ctx.request_context.lifespan_context
        app_ctx.tmux.capture_pane = AsyncMock(return_value="Goodbye!\nuser@host:~/proj$ ")

        result = await health_check(session="proj", panes=[1], ctx=mock_ctx)

        pane = result["panes"]["1"]
        assert pane["health_state"] == "unhealthy"
        assert pane["process_check"]["exit_status"] == "shell_prompt"
