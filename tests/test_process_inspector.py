"""ProcessInspectorのテスト。"""

import os
import signal
import subprocess
import sys
from unittest.mock import MagicMock, patch

import psutil
import pytest

from pane_supervisor.managers.process_inspector import ProcessInspector, ProcessSnapshot

_PSUTIL = "pane_supervisor.managers.process_inspector.psutil"


@pytest.fixture
def inspector():
    """ProcessInspectorインスタンスを作成する。"""
    return ProcessInspector()


class TestFindChildPid:
    """find_child_pid のテスト。"""

    def test_returns_lowest_child_pid(self, inspector):
        """直下の子プロセスのうち最小の PID を返すことをテスト。"""
        with patch(f"{_PSUTIL}.Process") as mock_process:
            mock_process.return_value.children.return_value = [
                MagicMock(pid=2002),
                MagicMock(pid=2001),
            ]

            assert inspector.find_child_pid(1000) == 2001
            mock_process.return_value.children.assert_called_once_with(recursive=False)

    def test_no_children(self, inspector):
        """子プロセスがない場合は None を返すことをテスト。"""
        with patch(f"{_PSUTIL}.Process") as mock_process:
            mock_process.return_value.children.return_value = []

            assert inspector.find_child_pid(1000) is None

    def test_missing_parent(self, inspector):
        """親プロセスが存在しない場合は None を返すことをテスト。"""
        with patch(f"{_PSUTIL}.Process", side_effect=psutil.NoSuchProcess(1000)):
            assert inspector.find_child_pid(1000) is None

    def test_access_denied_falls_back_to_ppid_scan(self, inspector):
        """アクセス拒否時は親 PID で全プロセスを検索することをテスト。"""
        procs = [
            MagicMock(info={"pid": 3000, "ppid": 1}),
            MagicMock(info={"pid": 3001, "ppid": 1000}),
        ]
        with (
            patch(f"{_PSUTIL}.Process", side_effect=psutil.AccessDenied(1000)),
            patch(f"{_PSUTIL}.process_iter", return_value=procs),
        ):
            assert inspector.find_child_pid(1000) == 3001


class TestProcessDetails:
    """process_state / memory_mb / snapshot のテスト。"""

    def test_process_state(self, inspector):
        """プロセス状態を返すことをテスト。"""
        with patch(f"{_PSUTIL}.Process") as mock_process:
            mock_process.return_value.status.return_value = psutil.STATUS_SLEEPING

            assert inspector.process_state(1000) == "sleeping"

    def test_process_state_missing(self, inspector):
        """存在しないプロセスは None を返すことをテスト。"""
        with patch(f"{_PSUTIL}.Process", side_effect=psutil.NoSuchProcess(1000)):
            assert inspector.process_state(1000) is None

    def test_memory_mb(self, inspector):
        """RSS を MB に変換することをテスト。"""
        with patch(f"{_PSUTIL}.Process") as mock_process:
            mock_process.return_value.memory_info.return_value = MagicMock(rss=256 * 1024 * 1024)

            assert inspector.memory_mb(1000) == 256.0

    def test_snapshot_dead_shell(self, inspector):
        """シェルが存在しない場合のスナップショットをテスト。"""
        with patch(f"{_PSUTIL}.pid_exists", return_value=False):
            snapshot = inspector.snapshot(1000)

        assert snapshot == ProcessSnapshot(shell_pid=1000, shell_alive=False)

    def test_snapshot_with_agent(self, inspector):
        """エージェントプロセスの情報を含むスナップショットをテスト。"""
        with (
            patch(f"{_PSUTIL}.pid_exists", return_value=True),
            patch.object(inspector, "find_child_pid", return_value=2001),
            patch.object(inspector, "process_state", return_value="zombie"),
            patch.object(inspector, "memory_mb", return_value=12.5),
        ):
            snapshot = inspector.snapshot(1000)

        assert snapshot.child_pid == 2001
        assert snapshot.is_zombie is True
        assert snapshot.to_dict()["memory_mb"] == 12.5

    def test_snapshot_of_current_process(self, inspector):
        """実プロセスのスナップショットを取得できることをテスト。"""
        snapshot = inspector.snapshot(os.getpid())

        assert snapshot.shell_alive is True
        assert snapshot.shell_pid == os.getpid()


class TestKillProcess:
    """kill_process のテスト。"""

    def test_already_exited_counts_as_success(self, inspector):
        """既に終了しているプロセスは成功とみなすことをテスト。"""
        with patch(f"{_PSUTIL}.Process", side_effect=psutil.NoSuchProcess(1000)):
            assert inspector.kill_process(1000) == (True, None)

    def test_access_denied(self, inspector):
        """権限がない場合は失敗を返すことをテスト。"""
        with patch(f"{_PSUTIL}.Process") as mock_process:
            mock_process.return_value.kill.side_effect = psutil.AccessDenied(1000)

            success, error = inspector.kill_process(1000)

        assert success is False
        assert error.startswith("permission denied")

    def test_kills_real_process(self, inspector):
        """実プロセスを SIGKILL で終了できることをテスト。"""
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        try:
            assert inspector.kill_process(proc.pid) == (True, None)
            assert proc.wait(timeout=5) == -signal.SIGKILL
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()


class TestTriage:
    """triage のテスト。"""

    def test_no_pid_is_absent(self, inspector):
        """PID がない場合は absent になることをテスト。"""
        assert inspector.triage(None).classification == "absent"

    def test_no_agent_process_is_absent(self, inspector):
        """エージェントプロセスがない場合は absent になることをテスト。"""
        with patch.object(
            inspector, "snapshot", return_value=ProcessSnapshot(shell_pid=1000, shell_alive=True)
        ):
            triage = inspector.triage(1000)

        assert triage.classification == "absent"
        assert triage.reason == "no agent process"

    @pytest.mark.parametrize(
        ("state", "expected"),
        [(psutil.STATUS_ZOMBIE, "zombie"), (psutil.STATUS_STOPPED, "stuck")],
    )
    def test_bad_process_states(self, inspector, state, expected):
        """ゾンビ・停止状態の分類をテスト。"""
        snapshot = ProcessSnapshot(shell_pid=1000, shell_alive=True, child_pid=2001, state=state)
        with patch.object(inspector, "snapshot", return_value=snapshot):
            assert inspector.triage(1000).classification == expected

    @pytest.mark.parametrize(
        ("cpu", "is_working", "expected"),
        [(0.0, False, "idle"), (25.0, False, "active"), (0.0, True, "active")],
    )
    def test_cpu_and_output_activity(self, inspector, cpu, is_working, expected):
        """CPU 使用率と出力状態による分類をテスト。"""
        snapshot = ProcessSnapshot(
            shell_pid=1000, shell_alive=True, child_pid=2001, state=psutil.STATUS_SLEEPING
        )
        with (
            patch.object(inspector, "snapshot", return_value=snapshot),
            patch(f"{_PSUTIL}.Process") as mock_process,
        ):
            mock_process.return_value.cpu_percent.return_value = cpu

            triage = inspector.triage(1000, is_working=is_working)

        assert triage.classification == expected
        assert triage.cpu_percent == cpu
        assert triage.child_pid == 2001
