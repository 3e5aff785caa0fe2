"""ペイン出力から状態シグナルを抽出するためのパターン定義。

検出ロジックに分岐を増やすのではなく、テーブルに行を追加して
新しいパターンに対応する。
"""

import re
from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """ヘルスチェックで検出するエラー分類。"""

    RATE_LIMIT = "rate_limit"
    """プロバイダーのレート制限"""

    AUTH_ERROR = "auth_error"
    """認証エラー"""

    CRASH = "crash"
    """プロセスのクラッシュ"""

    NETWORK_ERROR = "network_error"
    """ネットワークエラー"""


@dataclass(frozen=True)
class SignalPattern:
    """1 件のシグナルパターン。"""

    pattern: re.Pattern[str]
    """照合に使う正規表現"""

    category: str
    """パターンの分類"""

    weight: float = 1.0
    """一致したときの確信度の重み（0.0〜1.0）"""

    def search(self, text: str) -> re.Match[str] | None:
        """テキスト中の最初の一致を返す。"""
        return self.pattern.search(text)


def build_pattern_table(
    rows: list[tuple[str, str, float]], flags: int = re.IGNORECASE
) -> tuple[SignalPattern, ...]:
    """(pattern, category, weight) の行からパターンテーブルを構築する。"""
    return tuple(
        SignalPattern(re.compile(p, flags), category, weight) for p, category, weight in rows
    )


ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

# エージェント種別に依存しない汎用レート制限パターン
GENERIC_RATE_LIMIT_PATTERNS = build_pattern_table(
    [
        (r"you've hit your limit", ErrorCategory.RATE_LIMIT.value, 0.3),
        (r"rate limit", ErrorCategory.RATE_LIMIT.value, 0.25),
        (r"too many requests", ErrorCategory.RATE_LIMIT.value, 0.25),
        (r"RESOURCE_EXHAUSTED", ErrorCategory.RATE_LIMIT.value, 0.25),
        (r"resets \d+[ap]m", ErrorCategory.RATE_LIMIT.value, 0.2),
    ]
)

# ヘルスチェック用のエラーパターン（小文字化した出力に対して照合）
HEALTH_ERROR_PATTERNS = build_pattern_table(
    [
        (r"rate.?limit", ErrorCategory.RATE_LIMIT.value, 0.6),
        (r"429", ErrorCategory.RATE_LIMIT.value, 0.5),
        (r"too.?many.?requests", ErrorCategory.RATE_LIMIT.value, 0.6),
        (r"quota.?exceeded", ErrorCategory.RATE_LIMIT.value, 0.6),
        (r"authentication.?(failed|error)", ErrorCategory.AUTH_ERROR.value, 0.8),
        (r"401", ErrorCategory.AUTH_ERROR.value, 0.5),
        (r"unauthorized", ErrorCategory.AUTH_ERROR.value, 0.7),
        (r"panic:", ErrorCategory.CRASH.value, 1.0),
        (r"fatal.?error", ErrorCategory.CRASH.value, 0.9),
        (r"segmentation.?fault", ErrorCategory.CRASH.value, 1.0),
        (r"stack.?trace", ErrorCategory.CRASH.value, 0.7),
        (r"connection.?(refused|reset|timeout)", ErrorCategory.NETWORK_ERROR.value, 0.7),
        (r"network.?(error|unreachable)", ErrorCategory.NETWORK_ERROR.value, 0.7),
    ]
)

# レート制限の待機時間を抽出するパターン（1 グループ目が秒数）
# "wait 30 or 60 seconds" のような範囲表記は最初の数値を採用する
_SECONDS = r"(?:seconds?|secs?|s)\b"
WAIT_TIME_PATTERNS = (
    re.compile(rf"wait\s+(\d+)(?:\s*(?:or|to|-)\s*\d+)?\s*{_SECONDS}", re.IGNORECASE),
    re.compile(rf"retry\s+(?:in|after)\s+(\d+)\s*{_SECONDS}", re.IGNORECASE),
    re.compile(rf"try\s+again\s+in\s+(\d+)\s*{_SECONDS}", re.IGNORECASE),
    re.compile(rf"(\d+)\s*{_SECONDS}\s+(?:cooldown|delay|wait)", re.IGNORECASE),
)

MAX_RATE_LIMIT_WAIT_SECONDS = 3600

EXIT_CODE_PATTERN = re.compile(r"(?:exited with code|exit code:)\s*(-?\d+)?", re.IGNORECASE)

# シェルプロンプトと見なす末尾（rstrip 後に比較）
SHELL_PROMPT_SUFFIXES = ("$ ", "% ", "# ", "❯ ", "→ ", "> ")
SHELL_PROMPT_CHARS = "$%#>"


def strip_ansi(text: str) -> str:
    """ANSI エスケープシーケンスを除去する。"""
    return ANSI_ESCAPE.sub("", text)


def last_non_empty_line(text: str, window: int = 5) -> str:
    """末尾 window 行の中で最後の空でない行を返す。

    末尾の空行（tmux のパディング）は window に数えない。
    見つからない場合は空文字を返す。
    """
    lines = text.splitlines()
    while lines and not lines[-1].strip():
        lines.pop()
    for line in reversed(lines[-window:]):
        if line.strip():
            return line
    return ""


def looks_like_shell_prompt(text: str) -> bool:
    """出力の末尾がシェルプロンプトに見えるか判定する。"""
    last = last_non_empty_line(text)
    if not last:
        return False

    stripped = last.rstrip()
    for suffix in SHELL_PROMPT_SUFFIXES:
        if stripped.endswith(suffix.rstrip()):
            return True
    return stripped[-1] in SHELL_PROMPT_CHARS
