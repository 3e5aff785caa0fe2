"""pytest設定とフィクスチャ。"""

import os
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from pane_supervisor.config.settings import Settings
from pane_supervisor.context import AppContext
from pane_supervisor.managers.activity_tracker import ActivityTracker
from pane_supervisor.managers.process_inspector import ProcessInspector
from pane_supervisor.managers.tmux_manager import PaneInfo, TmuxManager
from pane_supervisor.managers.work_state_classifier import WorkStateClassifier


class FakeClock:
    """テスト用の手動で進める時計。"""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def settings(monkeypatch):
    """テスト用の設定を作成する（環境変数と .env の影響を受けない）。"""
    for key in list(os.environ):
        if key.startswith("SUPERVISOR_"):
            monkeypatch.delenv(key, raising=False)
    return Settings(
        _env_file=None,
        tmux_window="0",
        quota_enabled=False,
        triage_enabled=False,
        post_launch_wait_seconds=6.0,
    )


@pytest.fixture
def clock():
    """手動で進める時計を作成する。"""
    return FakeClock()


@pytest.fixture
def activity_tracker(clock):
    """時計を差し替えた ActivityTracker を作成する。"""
    return ActivityTracker(clock=clock)


@pytest.fixture
def classifier():
    """WorkStateClassifierインスタンスを作成する。"""
    return WorkStateClassifier()


@pytest.fixture
def mock_inspector():
    """ProcessInspector のモック（psutil を呼ばない）。"""
    inspector = MagicMock(spec=ProcessInspector)
    inspector.find_child_pid.return_value = 4321
    inspector.process_state.return_value = "sleeping"
    inspector.kill_process.return_value = (True, None)
    inspector.snapshot.return_value = None
    return inspector


@pytest.fixture
def mock_tmux(settings):
    """TmuxManager のモック。

    capture_pane はデフォルトで空文字を返す。テスト側で side_effect を設定する。
    """
    tmux = MagicMock(spec=TmuxManager)
    tmux.settings = settings
    tmux.pane_target = MagicMock(side_effect=lambda session, pane: f"{session}:0.{pane}")
    tmux.session_exists = AsyncMock(return_value=True)
    tmux.list_panes = AsyncMock(
        return_value=[
            PaneInfo(index=0, pid=1000, title="control", current_command="zsh"),
            PaneInfo(index=1, pid=1001, title="proj__cc_1", current_command="claude"),
            PaneInfo(index=2, pid=1002, title="proj__cod_1", current_command="codex"),
        ]
    )
    tmux.capture_pane = AsyncMock(return_value="")
    tmux.get_pane_pid = AsyncMock(return_value=1001)
    tmux.send_keys = AsyncMock(return_value=True)
    tmux.send_special_key = AsyncMock(return_value=True)
    return tmux


@pytest.fixture
def no_sleep():
    """即座に返す sleep。呼び出し秒数は await_args_list で確認できる。"""
    return AsyncMock(return_value=None)


@pytest.fixture
def app_ctx(settings, mock_tmux, activity_tracker, mock_inspector):
    """テスト用のAppContextを作成する。"""
    return AppContext(
        settings=settings,
        tmux=mock_tmux,
        activity_tracker=activity_tracker,
        process_inspector=mock_inspector,
    )


@pytest.fixture
def mock_ctx(app_ctx):
    """MCP Context のモック。"""
    mock = MagicMock()
    mock.request_context.lifespan_context = app_ctx
    return mock
