"""設定管理モジュール。"""

import os
from enum import Enum
from pathlib import Path

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


def resolve_project_env_file(project_root: str | os.PathLike[str] | None) -> str | None:
    """指定した project_root から .env ファイルを解決する。

    Args:
        project_root: プロジェクトルートパス

    Returns:
        .env ファイルのパス（存在する場合）、または None
    """
    if not project_root:
        return None

    env_file = Path(project_root) / ".pane-supervisor" / ".env"
    if env_file.exists():
        return str(env_file)
    return None


def get_project_env_file() -> str | None:
    """プロジェクト別 .env ファイルのパスを取得。

    SUPERVISOR_PROJECT_ROOT 環境変数が設定されている場合、
    {project_root}/.pane-supervisor/.env を返す。

    Returns:
        .env ファイルのパス（存在する場合）、または None
    """
    return resolve_project_env_file(os.getenv("SUPERVISOR_PROJECT_ROOT"))


class AICli(str, Enum):
    """エージェントが利用する AI プロバイダー（CLI）。"""

    CLAUDE = "claude"
    """Claude Code CLI"""

    CODEX = "codex"
    """OpenAI Codex CLI"""

    GEMINI = "gemini"
    """Google Gemini CLI"""


class AgentType(str, Enum):
    """ペイン上で動作するエージェントの種別。"""

    CLAUDE_CODE = "cc"
    """Claude Code"""

    CODEX = "cod"
    """Codex"""

    GEMINI = "gmi"
    """Gemini"""

    UNKNOWN = "unknown"
    """判別できない（シェルのみのペインを含む）"""


DEFAULT_LAUNCH_COMMANDS: dict[str, str] = {
    AgentType.CLAUDE_CODE: "claude",
    AgentType.CODEX: "codex",
    AgentType.GEMINI: "gemini",
}


class Settings(BaseSettings):
    """Pane Supervisor の設定。

    環境変数で上書き可能。プレフィックスは SUPERVISOR_。
    例: SUPERVISOR_CAPTURE_LINES=200

    優先順位:
    1. 環境変数（最優先）
    2. プロジェクト別 .env ファイル（{project}/.pane-supervisor/.env）
    3. デフォルト値
    """

    model_config = ConfigDict(
        env_prefix="SUPERVISOR_",
        env_file=get_project_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # tmux設定
    tmux_window: str = ""
    """対象ウィンドウ（空の場合はセッションのアクティブウィンドウ）"""

    control_pane_index: int = 0
    """コントロールペインの番号（対象ペイン省略時は除外される）"""

    capture_lines: int = Field(default=100, description="ペインキャプチャの行数")
    """状態判定に使うキャプチャ行数（デフォルト: 100）"""

    # 作業状態判定設定
    context_low_threshold: float = Field(
        default=20.0,
        description="コンテキスト残量が少ないと判定する閾値（%）",
    )
    """コンテキスト残量の閾値（デフォルト: 20%）"""

    # ヘルスチェック設定
    stall_threshold_seconds: int = 600
    """無出力が続いたときに停滞と判定する閾値（秒）"""

    idle_degraded_seconds: int = 300
    """アイドル継続で degraded と判定する閾値（秒）"""

    # 再起動設定
    exit_wait_seconds: float = 3.0
    """ソフト終了後にシェル復帰を確認するまでの待機秒数"""

    hard_kill_wait_seconds: float = 1.0
    """強制終了後にシェル復帰を確認するまでの待機秒数"""

    post_launch_wait_seconds: float = Field(
        default=6.0,
        description="エージェント起動後の待機秒数",
    )
    """起動後のウォームアップ待機（デフォルト: 6秒）"""

    prompt_delay_seconds: float = 0.5
    """プロンプト送信前の待機秒数"""

    restart_deadline_seconds: float | None = Field(
        default=120.0,
        description="1ペインあたりの再起動処理の制限時間（秒、None で無制限）",
    )

    hard_kill_enabled: bool = False
    """ソフト終了失敗時に強制終了へフォールバックするか"""

    launch_command_cc: str = DEFAULT_LAUNCH_COMMANDS[AgentType.CLAUDE_CODE]
    """Claude Code の起動コマンド"""

    launch_command_cod: str = DEFAULT_LAUNCH_COMMANDS[AgentType.CODEX]
    """Codex の起動コマンド"""

    launch_command_gmi: str = DEFAULT_LAUNCH_COMMANDS[AgentType.GEMINI]
    """Gemini の起動コマンド"""

    # クォータ照会設定
    quota_enabled: bool = True
    """プロバイダー使用量の照会を行うか"""

    quota_binary: str = "caut"
    """使用量照会に使う CLI"""

    quota_timeout_seconds: float = 10.0
    """使用量照会のタイムアウト（秒）"""

    quota_cache_ttl_seconds: float = 300.0
    """使用量照会結果のキャッシュ保持期間（秒）"""

    # プロセストリアージ設定
    triage_enabled: bool = True
    """OS プロセス情報によるトリアージを行うか"""

    triage_timeout_seconds: float = 10.0
    """トリアージのタイムアウト（秒）"""

    @field_validator("context_low_threshold")
    @classmethod
    def validate_context_low_threshold(cls, value: float) -> float:
        """閾値をパーセンテージの範囲に制限する。"""
        if not 0 <= value <= 100:
            raise ValueError(
                f"SUPERVISOR_CONTEXT_LOW_THRESHOLD は 0〜100 で指定してください: {value}"
            )
        return value

    @field_validator("capture_lines")
    @classmethod
    def validate_capture_lines(cls, value: int) -> int:
        """キャプチャ行数は正の整数のみ許可する。"""
        if value <= 0:
            raise ValueError(f"SUPERVISOR_CAPTURE_LINES は正の整数で指定してください: {value}")
        return value

    def get_launch_command(self, agent_type: AgentType | str) -> str:
        """エージェント種別の起動コマンドを返す。

        unknown は Claude Code のコマンドにフォールバックする。
        """
        value = agent_type.value if isinstance(agent_type, AgentType) else str(agent_type)
        commands = {
            AgentType.CLAUDE_CODE.value: self.launch_command_cc,
            AgentType.CODEX.value: self.launch_command_cod,
            AgentType.GEMINI.value: self.launch_command_gmi,
        }
        return commands.get(value, self.launch_command_cc)


def load_settings_for_project(project_root: str | os.PathLike[str] | None) -> Settings:
    """指定 project_root の .env を優先して Settings を生成する。

    優先順位:
    1. プロセス環境変数 SUPERVISOR_*
    2. {project_root}/.pane-supervisor/.env
    3. デフォルト値

    Args:
        project_root: プロジェクトルートパス

    Returns:
        読み込み済み Settings インスタンス
    """
    env_file = resolve_project_env_file(project_root)
    if env_file:
        return Settings(_env_file=env_file)
    # model_config 側の env_file を使わず、環境変数 + デフォルトのみで構築
    return Settings(_env_file=None)
