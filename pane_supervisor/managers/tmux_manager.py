"""tmuxペイン操作モジュール。"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pane_supervisor.config.settings import Settings

logger = logging.getLogger(__name__)

_PANE_FORMAT = "#{pane_index}\t#{pane_pid}\t#{pane_title}\t#{pane_current_command}"


@dataclass
class PaneInfo:
    """tmux ペインの情報。"""

    index: int
    """ペイン番号"""

    pid: int | None
    """ペインで動作するシェルの PID"""

    title: str = ""
    """ペインタイトル"""

    current_command: str = ""
    """ペインで実行中のコマンド"""

    def to_dict(self) -> dict:
        """辞書に変換する。"""
        return {
            "index": self.index,
            "pid": self.pid,
            "title": self.title,
            "current_command": self.current_command,
        }


class TmuxManager:
    """監視対象セッションのtmuxペインを操作するクラス。"""

    def __init__(self, settings: "Settings") -> None:
        """TmuxManagerを初期化する。

        Args:
            settings: アプリケーション設定
        """
        self.settings = settings
        self.window = settings.tmux_window

    async def _run(self, *args: str) -> tuple[int, str, str]:
        """tmuxコマンドを実行する。

        Args:
            *args: tmuxコマンドの引数

        Returns:
            (リターンコード, stdout, stderr) のタプル
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                "tmux",
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
            return proc.returncode or 0, stdout.decode(), stderr.decode()
        except FileNotFoundError:
            logger.error("tmux がインストールされていません")
            return 1, "", "tmux not found"
        except OSError as e:
            logger.error(f"tmux コマンド実行エラー: {e}")
            return 1, "", str(e)

    def _window_target(self, session: str) -> str:
        """セッション内の対象ウィンドウを指すターゲット文字列を返す。"""
        return f"{session}:{self.window}"

    def pane_target(self, session: str, pane: int) -> str:
        """ペインを指すターゲット文字列を返す。

        Args:
            session: セッション名
            pane: ペイン番号

        Returns:
            session:window.pane 形式のターゲット
        """
        return f"{self._window_target(session)}.{pane}"

    async def session_exists(self, session: str) -> bool:
        """セッションが存在するか確認する。

        Args:
            session: セッション名

        Returns:
            存在する場合True
        """
        code, _, _ = await self._run("has-session", "-t", session)
        return code == 0

    async def list_panes(self, session: str) -> list[PaneInfo]:
        """対象ウィンドウのペイン一覧を取得する。

        Args:
            session: セッション名

        Returns:
            ペイン情報のリスト（ペイン番号順）
        """
        code, stdout, stderr = await self._run(
            "list-panes", "-t", self._window_target(session), "-F", _PANE_FORMAT
        )
        if code != 0:
            logger.error(f"ペイン一覧取得エラー: {stderr}")
            return []

        panes = []
        for line in stdout.strip().split("\n"):
            if not line:
                continue
            parts = line.split("\t")
            try:
                index = int(parts[0])
            except ValueError:
                continue
            pid = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else None
            panes.append(
                PaneInfo(
                    index=index,
                    pid=pid,
                    title=parts[2] if len(parts) > 2 else "",
                    current_command=parts[3] if len(parts) > 3 else "",
                )
            )
        return sorted(panes, key=lambda p: p.index)

    async def get_pane_pid(self, session: str, pane: int) -> int | None:
        """ペインで動作するシェルの PID を取得する。

        Args:
            session: セッション名
            pane: ペイン番号

        Returns:
            PID、取得できない場合None
        """
        for info in await self.list_panes(session):
            if info.index == pane:
                return info.pid
        return None

    async def capture_pane(self, session: str, pane: int, lines: int = 100) -> str:
        """ペインの出力をキャプチャする。

        Args:
            session: セッション名
            pane: ペイン番号
            lines: 取得する行数

        Returns:
            キャプチャした出力テキスト
        """
        code, stdout, stderr = await self._run(
            "capture-pane", "-t", self.pane_target(session, pane), "-p", "-S", f"-{lines}"
        )
        if code != 0:
            logger.error(f"ペインキャプチャエラー: {stderr}")
            return ""
        # カーソルより下の空行で埋められるため末尾を詰める
        return stdout.rstrip()

    async def send_keys(self, session: str, pane: int, text: str, enter: bool = True) -> bool:
        """ペインにテキストを送信する。

        テキストはリテラルモードで送信し、Enter は別途送信する。

        Args:
            session: セッション名
            pane: ペイン番号
            text: 送信するテキスト
            enter: Trueの場合、続けて Enter を送信する

        Returns:
            成功した場合True
        """
        target = self.pane_target(session, pane)
        code, _, stderr = await self._run("send-keys", "-t", target, "-l", text)
        if code != 0:
            logger.error(f"ペインへのキー送信エラー: {stderr}")
            return False

        if not enter:
            return True

        code, _, stderr = await self._run("send-keys", "-t", target, "Enter")
        if code != 0:
            logger.error(f"Enterキー送信エラー: {stderr}")
        return code == 0

    async def send_special_key(self, session: str, pane: int, key: str) -> bool:
        """ペインに特殊キー（C-c, Escape など）を送信する。

        Args:
            session: セッション名
            pane: ペイン番号
            key: tmux のキー名

        Returns:
            成功した場合True
        """
        code, _, stderr = await self._run(
            "send-keys", "-t", self.pane_target(session, pane), key
        )
        if code != 0:
            logger.error(f"特殊キー送信エラー ({key}): {stderr}")
        return code == 0
