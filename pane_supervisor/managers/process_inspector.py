"""OS プロセス情報の収集。

tmux ペインのシェル PID を起点に、エージェントプロセス（直下の子プロセス）の
状態・メモリ使用量を psutil で取得する。
"""

import logging
from dataclasses import dataclass

import psutil

from pane_supervisor.models.health import ProcessTriage

logger = logging.getLogger(__name__)

# 直近 CPU 使用率がこれを超えていれば作業中とみなす
_ACTIVE_CPU_PERCENT = 1.0


@dataclass
class ProcessSnapshot:
    """ペインのプロセス状態のスナップショット。"""

    shell_pid: int
    """ペインのシェル PID"""

    shell_alive: bool
    """シェルが存在するか"""

    child_pid: int | None = None
    """エージェントプロセスの PID"""

    state: str | None = None
    """エージェントプロセスの状態（psutil の status）"""

    memory_mb: float | None = None
    """エージェントプロセスの RSS（MB）"""

    @property
    def is_zombie(self) -> bool:
        """エージェントプロセスがゾンビ状態か。"""
        return self.state == psutil.STATUS_ZOMBIE

    def to_dict(self) -> dict:
        """辞書に変換する。"""
        return {
            "shell_pid": self.shell_pid,
            "shell_alive": self.shell_alive,
            "child_pid": self.child_pid,
            "state": self.state,
            "memory_mb": self.memory_mb,
        }


class ProcessInspector:
    """psutil を使ってプロセス情報を取得する。"""

    def find_child_pid(self, pid: int) -> int | None:
        """直下の子プロセスの PID を返す。

        プロセスツリーから取得できない場合は、親 PID で全プロセスを検索する。

        Args:
            pid: 親プロセスの PID

        Returns:
            子プロセスの PID、存在しない場合None
        """
        try:
            children = psutil.Process(pid).children(recursive=False)
            if children:
                return min(child.pid for child in children)
            return None
        except psutil.NoSuchProcess:
            return None
        except psutil.AccessDenied as e:
            logger.debug("プロセスツリーの取得に失敗、親 PID で検索します: %s", e)

        for proc in psutil.process_iter(["pid", "ppid"]):
            if proc.info.get("ppid") == pid:
                return proc.info["pid"]
        return None

    def process_state(self, pid: int) -> str | None:
        """プロセスの状態（running, sleeping, zombie など）を返す。"""
        try:
            return psutil.Process(pid).status()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("プロセス状態の取得に失敗: %s", e)
            return None

    def memory_mb(self, pid: int) -> float | None:
        """プロセスの RSS を MB 単位で返す。"""
        try:
            return psutil.Process(pid).memory_info().rss / (1024 * 1024)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("メモリ使用量の取得に失敗: %s", e)
            return None

    def snapshot(self, shell_pid: int) -> ProcessSnapshot:
        """ペインのプロセス状態を取得する。

        Args:
            shell_pid: ペインのシェル PID

        Returns:
            プロセススナップショット
        """
        if not psutil.pid_exists(shell_pid):
            return ProcessSnapshot(shell_pid=shell_pid, shell_alive=False)

        child_pid = self.find_child_pid(shell_pid)
        if child_pid is None:
            return ProcessSnapshot(shell_pid=shell_pid, shell_alive=True)

        return ProcessSnapshot(
            shell_pid=shell_pid,
            shell_alive=True,
            child_pid=child_pid,
            state=self.process_state(child_pid),
            memory_mb=self.memory_mb(child_pid),
        )

    def kill_process(self, pid: int) -> tuple[bool, str | None]:
        """プロセスを SIGKILL で強制終了する。

        既に終了している場合は成功とみなす。

        Args:
            pid: 対象プロセスの PID

        Returns:
            (成功したかどうか, エラーメッセージ) のタプル
        """
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            logger.info(f"プロセス {pid} は既に終了しています")
            return True, None
        except psutil.AccessDenied as e:
            logger.error(f"プロセス {pid} の強制終了が拒否されました: {e}")
            return False, f"permission denied: {e}"
        logger.info(f"プロセス {pid} に SIGKILL を送信しました")
        return True, None

    def triage(self, shell_pid: int | None, is_working: bool = False) -> ProcessTriage:
        """エージェントプロセスを分類する。

        分類:
        - absent: シェルまたはエージェントプロセスが存在しない
        - zombie: エージェントプロセスがゾンビ
        - stuck: エージェントプロセスが停止（stopped）している
        - active: 出力中、または CPU を使用している
        - idle: 上記以外

        Args:
            shell_pid: ペインのシェル PID
            is_working: 出力から作業中と判定されているか

        Returns:
            トリアージ結果
        """
        if shell_pid is None:
            return ProcessTriage(classification="absent", reason="pane pid unavailable")

        snapshot = self.snapshot(shell_pid)
        if not snapshot.shell_alive:
            return ProcessTriage(
                classification="absent", shell_pid=shell_pid, reason="pane shell not running"
            )
        if snapshot.child_pid is None:
            return ProcessTriage(
                classification="absent", shell_pid=shell_pid, reason="no agent process"
            )

        triage = ProcessTriage(
            classification="idle",
            shell_pid=shell_pid,
            child_pid=snapshot.child_pid,
            process_state=snapshot.state,
            memory_mb=snapshot.memory_mb,
        )
        if snapshot.is_zombie:
            triage.classification = "zombie"
            triage.reason = "agent process is a zombie"
            return triage
        if snapshot.state == psutil.STATUS_STOPPED:
            triage.classification = "stuck"
            triage.reason = "agent process is stopped"
            return triage

        try:
            triage.cpu_percent = psutil.Process(snapshot.child_pid).cpu_percent(interval=0.1)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("CPU 使用率の取得に失敗: %s", e)

        if is_working or (triage.cpu_percent or 0.0) > _ACTIVE_CPU_PERCENT:
            triage.classification = "active"
            triage.reason = "agent producing output" if is_working else "agent using cpu"
        else:
            triage.reason = "agent process waiting"
        return triage
