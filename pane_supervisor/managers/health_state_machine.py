"""ヘルス状態の判定。

プロセス・停滞・エラーの 3 つのチェック結果を優先順位に従って統合し、
healthy / degraded / unhealthy / rate_limited のいずれかに分類する。
判定は毎回その時点の証拠だけから行い、遷移の履歴は持たない。
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from pane_supervisor.config.signal_patterns import (
    EXIT_CODE_PATTERN,
    HEALTH_ERROR_PATTERNS,
    MAX_RATE_LIMIT_WAIT_SECONDS,
    WAIT_TIME_PATTERNS,
    ErrorCategory,
    strip_ansi,
)
from pane_supervisor.models.health import (
    ActivityState,
    ErrorCheckResult,
    HealthCheck,
    HealthState,
    ProcessCheckResult,
    StallCheckResult,
)

if TYPE_CHECKING:
    from pane_supervisor.managers.activity_tracker import ActivityTracker, PaneActivitySample
    from pane_supervisor.managers.process_inspector import ProcessInspector, ProcessSnapshot
    from pane_supervisor.managers.tmux_manager import TmuxManager
    from pane_supervisor.managers.work_state_classifier import WorkStateClassifier

logger = logging.getLogger(__name__)

DEFAULT_IDLE_DEGRADED_SECONDS = 300
DEFAULT_STALL_THRESHOLD_SECONDS = 600
HEALTH_CAPTURE_LINES = 50

# 停滞チェックの確信度がこれ未満のときだけ全体の確信度に掛ける
_STALL_CONFIDENCE_CUTOFF = 0.7
# サブチェックが欠けているときの割引率
_MISSING_CHECK_DISCOUNT = 0.8

_SHELL_ONLY_PROMPTS = {"$", "bash$", "zsh$"}


def parse_rate_limit_wait(output: str) -> int:
    """レート制限メッセージから待機秒数を抽出する。

    全パターンのうち出現位置が最も早い一致を採用する。
    0 < 秒数 <= 3600 の場合のみ有効とし、それ以外は 0 を返す。

    Args:
        output: ペイン出力

    Returns:
        待機秒数（抽出できない場合は 0）
    """
    earliest = None
    for pattern in WAIT_TIME_PATTERNS:
        match = pattern.search(output)
        if match and (earliest is None or match.start() < earliest.start()):
            earliest = match
    if earliest is None:
        return 0

    seconds = int(earliest.group(1))
    if 0 < seconds <= MAX_RATE_LIMIT_WAIT_SECONDS:
        return seconds
    return 0


def check_errors(output: str) -> ErrorCheckResult:
    """出力からエラーパターンを検出する。

    同じ分類は 1 回だけ記録する。レート制限は has_errors も立てる。
    """
    result = ErrorCheckResult()
    text = strip_ansi(output).lower()

    for signal in HEALTH_ERROR_PATTERNS:
        if signal.category in result.patterns or not signal.search(text):
            continue
        result.patterns.append(signal.category)
        result.severity = max(result.severity, signal.weight)
        if signal.category == ErrorCategory.RATE_LIMIT.value:
            result.rate_limited = True
            result.wait_seconds = parse_rate_limit_wait(text)
        else:
            result.has_errors = True

    if result.rate_limited:
        result.has_errors = True
        result.reason = "rate limit detected"
    elif result.patterns:
        result.reason = "detected: " + ", ".join(result.patterns)
    return result


def _last_line(text: str) -> str:
    lines = text.rstrip().splitlines()
    return lines[-1].strip() if lines else ""


def check_process(output: str, snapshot: "ProcessSnapshot | None" = None) -> ProcessCheckResult:
    """出力と OS プロセス情報からエージェントの終了を検出する。

    - 最終行がシェルプロンプトのみ → クラッシュ
    - "exited with code" / "exit code:" → クラッシュ
    - シェル直下にエージェントプロセスがない、またはゾンビ → クラッシュ
    """
    result = ProcessCheckResult(running=True)
    text = strip_ansi(output)

    last_line = _last_line(text)
    if last_line in _SHELL_ONLY_PROMPTS or (last_line.endswith("$") and ">" not in last_line):
        result.running = False
        result.crashed = True
        result.exit_status = "shell_prompt"
        result.reason = "detected shell prompt - agent may have crashed"

    exit_match = EXIT_CODE_PATTERN.search(text)
    if not result.crashed and exit_match:
        result.running = False
        result.crashed = True
        result.exit_status = exit_match.group(1) or "unknown"
        result.reason = "exit code detected"

    if snapshot is None:
        return result

    result.child_pid = snapshot.child_pid
    result.process_state = snapshot.state
    result.memory_mb = snapshot.memory_mb
    if result.crashed:
        return result

    if not snapshot.shell_alive:
        result.running = False
        result.crashed = True
        result.reason = "pane shell not running"
    elif snapshot.child_pid is None:
        result.running = False
        result.crashed = True
        result.reason = "no agent process under pane shell"
    elif snapshot.is_zombie:
        result.running = False
        result.crashed = True
        result.exit_status = snapshot.state
        result.reason = "agent process is a zombie"
    return result


def check_stall(
    previous: "PaneActivitySample | None",
    current: "PaneActivitySample | None",
    is_idle: bool,
    now: datetime,
    velocity: float = 0.0,
    stall_threshold_seconds: int = DEFAULT_STALL_THRESHOLD_SECONDS,
) -> StallCheckResult:
    """アクティビティサンプルから停滞を判定する。

    - 入力待ち: waiting（idle_seconds に最終変化からの経過秒数）
    - 出力が変化: generating
    - 入力待ちでないのに閾値を超えて無変化: stalled
    - 履歴が足りない: unknown
    """
    result = StallCheckResult()
    if current is None:
        result.reason = "no activity sample"
        return result

    since_change = max(0.0, (now - current.last_change).total_seconds())
    result.velocity = round(velocity, 3)

    if is_idle:
        result.activity_state = ActivityState.WAITING.value
        result.idle_seconds = int(since_change) if previous is not None else 0
        result.confidence = 0.9 if previous is not None else 0.5
        result.reason = "agent waiting for input"
        return result

    if previous is None:
        result.reason = "first activity sample"
        return result

    if previous.content_hash != current.content_hash:
        result.activity_state = ActivityState.GENERATING.value
        result.confidence = 0.8
        result.reason = "output changing"
        return result

    if since_change > stall_threshold_seconds:
        result.stalled = True
        result.activity_state = ActivityState.STALLED.value
        result.confidence = 0.8
        result.reason = f"no output for {int(since_change)}s"
        return result

    result.confidence = 0.6
    result.reason = "output unchanged"
    return result


def calculate_health_confidence(check: HealthCheck) -> float:
    """ヘルス判定の確信度を算出する。

    1.0 から始め、停滞チェックの確信度が 0.7 未満ならそれを掛け、
    欠けているサブチェックがあれば 0.8 を掛ける。
    """
    confidence = 1.0
    if check.stall_check is not None and check.stall_check.confidence < _STALL_CONFIDENCE_CUTOFF:
        confidence *= check.stall_check.confidence
    if check.process_check is None or check.stall_check is None or check.error_check is None:
        confidence *= _MISSING_CHECK_DISCOUNT
    return confidence


def calculate_health_state(
    check: HealthCheck,
    idle_degraded_seconds: int = DEFAULT_IDLE_DEGRADED_SECONDS,
) -> tuple[HealthState, str]:
    """サブチェックを優先順位に従って統合する（先に一致したものを採用）。

    1. クラッシュ → unhealthy
    2. エラー（レート制限以外）→ unhealthy
    3. レート制限 → rate_limited
    4. 停滞 → degraded
    5. 長時間アイドル → degraded
    6. それ以外 → healthy
    """
    if check.process_check is not None and check.process_check.crashed:
        return HealthState.UNHEALTHY, "agent crashed"

    error = check.error_check
    if error is not None and error.has_errors and not error.rate_limited:
        return HealthState.UNHEALTHY, "error detected: " + error.reason
    if error is not None and error.rate_limited:
        return HealthState.RATE_LIMITED, "rate limit detected"

    stall = check.stall_check
    if stall is not None and stall.stalled:
        return HealthState.DEGRADED, "agent stalled: " + stall.reason
    if stall is not None and stall.idle_seconds > idle_degraded_seconds:
        return HealthState.DEGRADED, "agent idle for extended period"

    return HealthState.HEALTHY, "all checks passed"


def finalize_health_check(
    check: HealthCheck, idle_degraded_seconds: int = DEFAULT_IDLE_DEGRADED_SECONDS
) -> HealthCheck:
    """サブチェックから health_state・reason・confidence を埋めた結果を返す。"""
    state, reason = calculate_health_state(check, idle_degraded_seconds)
    return check.model_copy(
        update={
            "health_state": state.value,
            "reason": reason,
            "confidence": round(calculate_health_confidence(check), 4),
        }
    )


class HealthStateMachine:
    """ペインのシグナルを収集してヘルス状態を判定する。"""

    def __init__(
        self,
        tmux_manager: "TmuxManager",
        activity_tracker: "ActivityTracker",
        process_inspector: "ProcessInspector",
        classifier: "WorkStateClassifier",
        stall_threshold_seconds: int = DEFAULT_STALL_THRESHOLD_SECONDS,
        idle_degraded_seconds: int = DEFAULT_IDLE_DEGRADED_SECONDS,
    ) -> None:
        """HealthStateMachineを初期化する。"""
        self.tmux_manager = tmux_manager
        self.activity_tracker = activity_tracker
        self.process_inspector = process_inspector
        self.classifier = classifier
        self.stall_threshold_seconds = stall_threshold_seconds
        self.idle_degraded_seconds = idle_degraded_seconds

    def evaluate(
        self,
        pane_id: str,
        output: str,
        snapshot: "ProcessSnapshot | None" = None,
        agent_type_hint: str | None = None,
    ) -> HealthCheck:
        """キャプチャ済みの出力とプロセス情報からヘルス状態を判定する。

        Args:
            pane_id: ペイン識別子
            output: キャプチャした出力
            snapshot: OS プロセス情報（取得できない場合None）
            agent_type_hint: ペインタイトルなどの種別ヒント

        Returns:
            ヘルスチェック結果
        """
        status = self.classifier.classify(output, pane=pane_id, agent_type_hint=agent_type_hint)

        previous = self.activity_tracker.get(pane_id)
        self.activity_tracker.update(pane_id, strip_ansi(output))
        current = self.activity_tracker.get(pane_id)
        now = self.activity_tracker.now()
        velocity = self.activity_tracker.velocity(previous, current) if current else 0.0

        check = HealthCheck(
            pane_id=pane_id,
            agent_type=status.agent_type,
            process_check=check_process(output, snapshot),
            stall_check=check_stall(
                previous,
                current,
                status.is_idle,
                now,
                velocity=velocity,
                stall_threshold_seconds=self.stall_threshold_seconds,
            ),
            error_check=check_errors(output),
            checked_at=now,
        )
        check = finalize_health_check(check, self.idle_degraded_seconds)
        logger.debug(
            "ヘルス判定: pane=%s state=%s reason=%s", pane_id, check.health_state, check.reason
        )
        return check

    async def check_pane(
        self,
        session: str,
        pane: int,
        agent_type_hint: str | None = None,
        lines: int = HEALTH_CAPTURE_LINES,
    ) -> HealthCheck:
        """ペインの出力とプロセス情報を取得してヘルス状態を判定する。

        Args:
            session: セッション名
            pane: ペイン番号
            agent_type_hint: ペインタイトルなどの種別ヒント
            lines: キャプチャ行数

        Returns:
            ヘルスチェック結果
        """
        output = await self.tmux_manager.capture_pane(session, pane, lines=lines)
        shell_pid = await self.tmux_manager.get_pane_pid(session, pane)
        snapshot = self.process_inspector.snapshot(shell_pid) if shell_pid else None
        pane_id = self.tmux_manager.pane_target(session, pane)
        return self.evaluate(pane_id, output, snapshot, agent_type_hint)
