"""作業状態の判定。

ペインの出力テキストから、エージェントが作業中・アイドル・レート制限中・
コンテキスト不足・エラーのいずれかを判定し、推奨アクションを返す。
入力が同じなら常に同じ結果を返す（内部状態を持たない）。
"""

import logging

from pane_supervisor.config.agent_registry import (
    CLAUDE_CODE_PROFILE,
    CODEX_PROFILE,
    GEMINI_PROFILE,
    AgentProfile,
    agent_type_from_title,
    get_agent_profile,
    known_profiles,
)
from pane_supervisor.config.settings import AgentType
from pane_supervisor.config.signal_patterns import (
    GENERIC_RATE_LIMIT_PATTERNS,
    SHELL_PROMPT_CHARS,
    SignalPattern,
    last_non_empty_line,
    strip_ansi,
)
from pane_supervisor.managers.health_score import format_percent
from pane_supervisor.models.work_status import WorkRecommendation, WorkStatus

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LOW_THRESHOLD = 20.0
DEFAULT_SAMPLE_LENGTH = 500

# 作業中・エラー・レート制限を探す末尾の行数
RECENT_WINDOW = 20
# アイドルプロンプトを探す末尾の行数
IDLE_WINDOW = 5

_BASE_CONFIDENCE_KNOWN = 0.5
_BASE_CONFIDENCE_UNKNOWN = 0.2
_METRIC_CONFIDENCE = 0.2
_STATE_SIGNAL_CONFIDENCE = 0.15

# ヘッダーによる種別判定の順序（より特徴的なものから）
_HEADER_DETECTION_ORDER = (GEMINI_PROFILE, CODEX_PROFILE, CLAUDE_CODE_PROFILE)


def derive_work_recommendation(
    *,
    is_rate_limited: bool,
    is_in_error: bool,
    is_working: bool,
    is_context_low: bool,
    is_idle: bool,
    context_remaining: float | None = None,
) -> tuple[WorkRecommendation, str]:
    """作業状態から推奨アクションと理由を導く（先に一致したものを採用）。"""
    if is_rate_limited:
        return WorkRecommendation.RATE_LIMITED_WAIT, "Agent hit rate limit"
    if is_in_error:
        return WorkRecommendation.ERROR_STATE, "Agent in error state"
    if is_working and is_context_low:
        if context_remaining is not None:
            reason = f"Working but low context ({format_percent(context_remaining)})"
        else:
            reason = "Working but low context"
        return WorkRecommendation.CONTEXT_LOW_CONTINUE, reason
    if is_working:
        return WorkRecommendation.DO_NOT_INTERRUPT, "Agent is actively producing output"
    if is_idle:
        return WorkRecommendation.SAFE_TO_RESTART, "Agent is idle"
    return WorkRecommendation.UNKNOWN, "Could not determine agent state"


def _first_match(patterns: tuple[SignalPattern, ...], text: str) -> tuple[str, float] | None:
    for signal in patterns:
        match = signal.search(text)
        if match:
            return match.group(0), signal.weight
    return None


class WorkStateClassifier:
    """ペイン出力から作業状態を判定する。"""

    def __init__(
        self,
        context_low_threshold: float = DEFAULT_CONTEXT_LOW_THRESHOLD,
        sample_length: int = DEFAULT_SAMPLE_LENGTH,
    ) -> None:
        """WorkStateClassifierを初期化する。

        Args:
            context_low_threshold: コンテキスト残量が少ないと判定する閾値（%）
            sample_length: raw_sample に残す末尾の文字数
        """
        self.context_low_threshold = context_low_threshold
        self.sample_length = sample_length

    def detect_agent_type(self, text: str, hint: str | None = None) -> AgentType:
        """出力（とペインタイトル）からエージェント種別を推定する。

        Args:
            text: ANSI 除去済みの出力
            hint: ペインタイトルなどの種別ヒント

        Returns:
            エージェント種別（判別できない場合は unknown）
        """
        hinted = agent_type_from_title(hint) if hint else None
        if hinted is None and hint in {p.agent_type.value for p in known_profiles()}:
            hinted = hint
        if hinted:
            return AgentType(hinted)

        if not text.strip():
            return AgentType.UNKNOWN

        # 固有のメトリクス表示は最も確実な手がかり
        for profile in (CODEX_PROFILE, GEMINI_PROFILE):
            if any(
                name in ("context_left", "yolo") and pattern.search(text)
                for name, pattern in profile.metric_patterns.items()
            ):
                return profile.agent_type

        for profile in _HEADER_DETECTION_ORDER:
            if profile.matches_header(text):
                return profile.agent_type
        return AgentType.UNKNOWN

    def _is_idle(self, profile: AgentProfile, text: str) -> bool:
        line = last_non_empty_line(text, IDLE_WINDOW)
        if not line:
            return False
        if profile.agent_type != AgentType.UNKNOWN:
            return profile.matches_idle(line)
        # 種別不明のペインは既知エージェントのプロンプトかシェルプロンプトで判定
        if any(p.matches_idle(line) for p in known_profiles()):
            return True
        return line.rstrip()[-1] in SHELL_PROMPT_CHARS

    def _extract_metrics(self, profile: AgentProfile, text: str) -> dict[str, float | int]:
        metrics: dict[str, float | int] = {}
        for name, pattern in profile.metric_patterns.items():
            matches = pattern.findall(text)
            if not matches:
                continue
            # 最新の値（最後の一致）を採用
            value = matches[-1]
            if name == "context_left":
                metrics["context_remaining"] = float(value)
            elif name == "tokens":
                metrics["tokens_used"] = int(value.replace(",", ""))
            elif name == "memory":
                metrics["memory_mb"] = float(value)
        return metrics

    def classify(
        self,
        output: str,
        pane: str | None = None,
        agent_type_hint: str | None = None,
        verbose: bool = False,
    ) -> WorkStatus:
        """出力から作業状態を判定する。

        判定順:
        1. レート制限フレーズ（最初の一致を根拠として保持）
        2. 末尾のアイドルプロンプト（最大 5 行、最初の空でない行のみ）
        3. コンテキスト残量（閾値未満で context low）

        Args:
            output: キャプチャした出力
            pane: ペイン識別子
            agent_type_hint: ペインタイトルなどの種別ヒント
            verbose: Trueの場合、raw_sample を含める

        Returns:
            作業状態スナップショット
        """
        text = strip_ansi(output)
        agent_type = self.detect_agent_type(text, agent_type_hint)
        profile = get_agent_profile(agent_type)
        recent = "\n".join(text.splitlines()[-RECENT_WINDOW:])
        recent_lower = recent.lower()

        confidence = (
            _BASE_CONFIDENCE_KNOWN if agent_type != AgentType.UNKNOWN else _BASE_CONFIDENCE_UNKNOWN
        )

        # 1. レート制限
        limit_indicators: list[str] = []
        rate_limit = _first_match(profile.rate_limit_patterns, recent) or _first_match(
            GENERIC_RATE_LIMIT_PATTERNS, recent
        )
        if rate_limit:
            phrase, weight = rate_limit
            limit_indicators.append(phrase)
            confidence += weight
        is_rate_limited = rate_limit is not None

        # 2. アイドルプロンプト
        is_idle = self._is_idle(profile, text)

        # 3. コンテキスト残量
        metrics = self._extract_metrics(profile, text)
        if metrics:
            confidence += _METRIC_CONFIDENCE
        context_remaining = metrics.get("context_remaining")
        is_context_low = (
            context_remaining is not None and context_remaining < self.context_low_threshold
        )
        if not is_context_low and any(
            p.search(recent) for p in profile.context_warning_patterns
        ):
            is_context_low = True

        work_indicators = [kw.strip() for kw in profile.working_keywords if kw in recent_lower]
        is_working = bool(work_indicators) and not is_idle and not is_rate_limited

        has_error_text = any(kw in recent_lower for kw in profile.error_keywords)
        is_in_error = has_error_text and not (is_idle or is_working or is_rate_limited)

        if is_idle or is_working:
            confidence += _STATE_SIGNAL_CONFIDENCE

        recommendation, reason = derive_work_recommendation(
            is_rate_limited=is_rate_limited,
            is_in_error=is_in_error,
            is_working=is_working,
            is_context_low=is_context_low,
            is_idle=is_idle,
            context_remaining=context_remaining,
        )

        status = WorkStatus(
            pane=pane,
            agent_type=agent_type,
            is_working=is_working,
            is_idle=is_idle,
            is_rate_limited=is_rate_limited,
            is_context_low=is_context_low,
            is_in_error=is_in_error,
            context_remaining=context_remaining,
            tokens_used=metrics.get("tokens_used"),
            memory_mb=metrics.get("memory_mb"),
            confidence=round(min(1.0, confidence), 2),
            work_indicators=work_indicators,
            limit_indicators=limit_indicators,
            recommendation=recommendation,
            reason=reason,
            raw_sample=text[-self.sample_length :] if verbose else None,
        )
        logger.debug(
            "作業状態を判定: pane=%s type=%s recommendation=%s confidence=%.2f",
            pane,
            status.agent_type,
            status.recommendation,
            status.confidence,
        )
        return status
