"""エージェント種別ごとの振る舞いを定義するレジストリ。

エージェント種別ごとに以下をまとめて保持する:
- 終了シーケンス（ソフト終了に使うキー操作）
- アイドルプロンプト判定
- 作業中・エラー・レート制限を示す出力パターン
- 対応するプロバイダー

新しいエージェント種別は AGENT_PROFILES に 1 件追加するだけで扱える。
"""

import re
from dataclasses import dataclass, field

from .settings import AgentType, AICli
from .signal_patterns import SHELL_PROMPT_CHARS, SignalPattern, build_pattern_table


@dataclass(frozen=True)
class ExitStep:
    """ソフト終了シーケンスの 1 ステップ。"""

    kind: str
    """key（特殊キー送信）/ text（リテラル + Enter）/ pause（待機）"""

    value: str = ""
    """送信するキー名またはテキスト"""

    seconds: float = 0.0
    """pause の待機秒数"""


@dataclass(frozen=True)
class AgentProfile:
    """エージェント種別のプロファイル。"""

    agent_type: AgentType
    display_name: str
    provider: AICli | None
    exit_method: str
    exit_steps: tuple[ExitStep, ...]
    header_patterns: tuple[re.Pattern[str], ...] = ()
    idle_patterns: tuple[re.Pattern[str], ...] = ()
    rate_limit_patterns: tuple[SignalPattern, ...] = ()
    working_keywords: tuple[str, ...] = ()
    error_keywords: tuple[str, ...] = ()
    context_warning_patterns: tuple[re.Pattern[str], ...] = ()
    metric_patterns: dict[str, re.Pattern[str]] = field(default_factory=dict)

    def matches_idle(self, line: str) -> bool:
        """行がこのエージェントのアイドルプロンプトか判定する。"""
        if not line.strip():
            return False
        if self.idle_patterns:
            return any(p.search(line) for p in self.idle_patterns)
        # シェルのみのペインはプロンプト記号で判定
        return line.rstrip()[-1] in SHELL_PROMPT_CHARS

    def matches_header(self, text: str) -> bool:
        """出力にこのエージェント固有のヘッダーが含まれるか判定する。"""
        return any(p.search(text) for p in self.header_patterns)


def _compile(*patterns: str, flags: int = 0) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, flags) for p in patterns)


_INTERRUPT_PAUSE = 0.1

CLAUDE_CODE_PROFILE = AgentProfile(
    agent_type=AgentType.CLAUDE_CODE,
    display_name="Claude Code",
    provider=AICli.CLAUDE,
    exit_method="double_ctrl_c",
    # 2 回の C-c は 100ms 空ける必要がある（連続送信では終了しない）
    exit_steps=(
        ExitStep("key", "C-c"),
        ExitStep("pause", seconds=_INTERRUPT_PAUSE),
        ExitStep("key", "C-c"),
    ),
    header_patterns=_compile(r"(?i)(opus|claude|sonnet|haiku)\s*\d*\.?\d*"),
    idle_patterns=_compile(r">\s*$", r"Human:\s*$", r"(?i)waiting for input", r"\?\s*$"),
    rate_limit_patterns=build_pattern_table(
        [
            (r"you've hit your limit", "rate_limit", 0.3),
            (r"you.ve hit your limit", "rate_limit", 0.3),
            (r"rate limit exceeded", "rate_limit", 0.3),
            (r"rate limit", "rate_limit", 0.25),
            (r"please wait", "rate_limit", 0.1),
            (r"try again later", "rate_limit", 0.15),
            (r"too many requests", "rate_limit", 0.25),
            (r"usage limit", "rate_limit", 0.25),
            (r"request limit", "rate_limit", 0.2),
            (r"exceeded.*limit", "rate_limit", 0.2),
        ]
    ),
    working_keywords=(
        "```",
        "writing to ",
        "created ",
        "modified ",
        "deleted ",
        "reading ",
        "searching ",
        "running ",
        "executing ",
        "installing ",
        "thinking",
        "processing",
        "analyzing",
        "compiling",
        "building",
        "testing",
        "fetching",
        "downloading",
        "uploading",
    ),
    error_keywords=(
        "error:",
        "failed:",
        "exception:",
        "panic:",
        "fatal:",
        "abort:",
        "permission denied",
        "access denied",
        "connection refused",
        "timeout",
    ),
    context_warning_patterns=_compile(
        r"this conversation is getting long",
        r"context limit",
        r"context.*limit",
        r"running out of context",
        r"conversation.*long",
        r"approaching.*limit",
        r"nearing.*capacity",
        flags=re.IGNORECASE,
    ),
)

CODEX_PROFILE = AgentProfile(
    agent_type=AgentType.CODEX,
    display_name="Codex",
    provider=AICli.CODEX,
    exit_method="exit_command",
    exit_steps=(ExitStep("text", "/exit"),),
    header_patterns=_compile(r"(?i)(codex|openai|gpt-\d)"),
    idle_patterns=_compile(r">\s*$", r"\?\s*for\s*shortcuts", r"codex>\s*$"),
    rate_limit_patterns=build_pattern_table(
        [
            (r"you've reached your usage limit", "rate_limit", 0.3),
            (r"rate limit exceeded", "rate_limit", 0.3),
            (r"rate limit", "rate_limit", 0.25),
            (r"quota exceeded", "rate_limit", 0.25),
            (r"capacity reached", "rate_limit", 0.2),
            (r"maximum requests", "rate_limit", 0.2),
            (r"too many requests", "rate_limit", 0.25),
        ]
    ),
    working_keywords=(
        "```",
        "editing ",
        "creating ",
        "writing ",
        "reading ",
        "running ",
        "$ ",
        "applying ",
        "patching ",
        "deleting ",
    ),
    error_keywords=("error:", "failed:", "exception:", "could not", "unable to"),
    metric_patterns={
        "context_left": re.compile(r"(\d+)%\s*context\s*left", re.IGNORECASE),
        "tokens": re.compile(r"Token usage:\s*total=(\d[\d,]*)", re.IGNORECASE),
    },
)

GEMINI_PROFILE = AgentProfile(
    agent_type=AgentType.GEMINI,
    display_name="Gemini",
    provider=AICli.GEMINI,
    exit_method="escape_then_exit",
    exit_steps=(
        ExitStep("key", "Escape"),
        ExitStep("pause", seconds=_INTERRUPT_PAUSE),
        ExitStep("text", "/exit"),
    ),
    header_patterns=_compile(r"(?i)(gemini.*preview|gemini-\d|google\s+ai)"),
    idle_patterns=_compile(r">\s*$", r"gemini>\s*$"),
    rate_limit_patterns=build_pattern_table(
        [
            (r"quota exceeded", "rate_limit", 0.3),
            (r"quota", "rate_limit", 0.2),
            (r"limit reached", "rate_limit", 0.2),
            (r"rate limit", "rate_limit", 0.25),
            (r"try again", "rate_limit", 0.1),
            (r"capacity", "rate_limit", 0.1),
            (r"resource exhausted", "rate_limit", 0.25),
        ]
    ),
    working_keywords=(
        "```",
        "creating ",
        "writing ",
        "executing ",
        "running ",
        "generating ",
        "analyzing ",
    ),
    error_keywords=("error", "failed", "exception", "invalid"),
    metric_patterns={
        "memory": re.compile(r"(\d+\.?\d*)\s*MB"),
        "yolo": re.compile(r"(?i)YOLO\s*mode:\s*(ON|OFF)"),
    },
)

UNKNOWN_PROFILE = AgentProfile(
    agent_type=AgentType.UNKNOWN,
    display_name="Unknown",
    provider=None,
    exit_method="ctrl_c_fallback",
    exit_steps=(ExitStep("key", "C-c"),),
)

AGENT_PROFILES: dict[str, AgentProfile] = {
    profile.agent_type.value: profile
    for profile in (CLAUDE_CODE_PROFILE, CODEX_PROFILE, GEMINI_PROFILE, UNKNOWN_PROFILE)
}

# ペインタイトル（例: myproject__cod_2）からエージェント種別を読み取る
_PANE_TITLE_PATTERN = re.compile(r"__(cc|cod|gmi)(?:_\d+)?(?:$|[^a-z])")


def get_agent_profile(agent_type: AgentType | str | None) -> AgentProfile:
    """エージェント種別のプロファイルを返す（未知の種別は unknown）。"""
    if isinstance(agent_type, AgentType):
        agent_type = agent_type.value
    return AGENT_PROFILES.get(agent_type or "", UNKNOWN_PROFILE)


def known_profiles() -> list[AgentProfile]:
    """unknown 以外のプロファイル一覧を返す。"""
    return [p for p in AGENT_PROFILES.values() if p.agent_type != AgentType.UNKNOWN]


def provider_for_agent(agent_type: AgentType | str | None) -> str | None:
    """エージェント種別に対応するプロバイダー名を返す。"""
    provider = get_agent_profile(agent_type).provider
    return provider.value if provider else None


def agent_type_for_provider(provider: str) -> str:
    """プロバイダー名に対応するエージェント種別を返す。"""
    for profile in known_profiles():
        if profile.provider and profile.provider.value == provider:
            return profile.agent_type.value
    return AgentType.UNKNOWN.value


def agent_type_from_title(title: str | None) -> str | None:
    """ペインタイトルの命名規則からエージェント種別を推定する。"""
    if not title:
        return None
    match = _PANE_TITLE_PATTERN.search(title)
    return match.group(1) if match else None
