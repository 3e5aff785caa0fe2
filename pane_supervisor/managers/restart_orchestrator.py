"""エージェントの安全な再起動。

作業中のエージェントは中断せず、再起動してよいペインだけを
ソフト終了 → シェル復帰確認 → （必要なら強制終了）→ 起動 → プロンプト送信
の順に処理する。各フェーズの実行記録は監査用にそのまま結果へ含める。
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pane_supervisor.config.agent_registry import AgentProfile, get_agent_profile
from pane_supervisor.config.settings import AgentType
from pane_supervisor.config.signal_patterns import looks_like_shell_prompt, strip_ansi
from pane_supervisor.managers.fleet_monitor import error_response
from pane_supervisor.managers.health_score import format_percent
from pane_supervisor.managers.health_state_machine import parse_rate_limit_wait
from pane_supervisor.managers.quota_client import QuotaUnavailableError
from pane_supervisor.models.restart import (
    ErrorDetails,
    HardKillResult,
    PostState,
    PreCheck,
    RestartAction,
    RestartActionType,
    RestartErrorCode,
    RestartPhase,
    RestartSequence,
    RestartSummary,
    StructuredError,
    WaitInfo,
)
from pane_supervisor.models.work_status import WorkRecommendation, WorkStatus

if TYPE_CHECKING:
    from pane_supervisor.config.settings import Settings
    from pane_supervisor.managers.process_inspector import ProcessInspector
    from pane_supervisor.managers.quota_client import CachedQuotaClient
    from pane_supervisor.managers.tmux_manager import TmuxManager
    from pane_supervisor.managers.work_state_classifier import WorkStateClassifier

logger = logging.getLogger(__name__)

VERIFY_CAPTURE_LINES = 10
POST_STATE_CAPTURE_LINES = 50
LAST_OUTPUT_MAX_LENGTH = 500
DEFAULT_RATE_LIMIT_WAIT_SECONDS = 3600
WAIT_SUGGESTION = "Consider caam account switch"

HINT_USE_HARD_KILL = "Try restart with hard-kill to use kill -9 fallback"
HINT_CHECK_PANE = "Check if the pane still exists"
HINT_KILL_MANUALLY = "Try restart with hard-kill, or manually kill the process"
HINT_INSPECT_PROCESS = "Manual intervention required - check process state with ps aux | grep <pid>"
HINT_RESET_SHELL = "Shell may be in unexpected state - try manually running 'reset' in the pane"
HINT_CHECK_CLI = "Verify the agent CLI is installed and in PATH"
HINT_DEADLINE = "Increase SUPERVISOR_RESTART_DEADLINE_SECONDS or inspect the pane manually"
HINT_RESEND_PROMPT = "Agent is running - send the prompt manually"

SleepFunc = Callable[[float], Awaitable[Any]]


class RestartPhaseError(RuntimeError):
    """再起動フェーズの致命的な失敗。"""

    def __init__(self, error: StructuredError) -> None:
        super().__init__(error.message)
        self.error = error


def truncate_output(output: str, max_length: int = LAST_OUTPUT_MAX_LENGTH) -> str:
    """エラー詳細に含める出力を切り詰める。"""
    if len(output) > max_length:
        return output[:max_length] + "... [truncated]"
    return output


def _format_seconds(seconds: float) -> str:
    return str(int(seconds)) if float(seconds).is_integer() else f"{seconds:g}"


def decide_restart(status: WorkStatus, force: bool) -> tuple[bool, str, str | None]:
    """作業状態から再起動するかどうかを判断する。

    作業中のエージェントは force なしでは決して再起動しない。

    Args:
        status: 作業状態
        force: 強制再起動するか

    Returns:
        (再起動するか, 理由, 警告) のタプル
    """
    if status.is_working and not force:
        return False, "Agent is actively working", None

    warning = "FORCED restart of working agent - data may be lost!" if status.is_working else None
    rec = status.recommendation

    if rec == WorkRecommendation.DO_NOT_INTERRUPT.value:
        if force:
            return True, "FORCED restart of working agent", warning
        return False, "Agent is actively working", None

    if rec == WorkRecommendation.SAFE_TO_RESTART.value:
        return True, "Agent is idle", None

    if rec == WorkRecommendation.CONTEXT_LOW_CONTINUE.value:
        if status.is_working:
            if force:
                return True, "FORCED restart of working agent with low context", warning
            return False, "Working with low context - let finish", None
        if status.context_remaining is not None:
            remaining = format_percent(status.context_remaining)
            return True, f"Idle with low context ({remaining})", None
        return True, "Idle with low context", None

    if rec == WorkRecommendation.RATE_LIMITED_WAIT.value:
        if force:
            return (
                True,
                "FORCED restart despite rate limit",
                "Restarting won't help - still rate limited",
            )
        return False, "Rate limited - waiting for reset", None

    if rec == WorkRecommendation.ERROR_STATE.value:
        return True, "Agent in error state", None

    if force:
        return True, "FORCED restart of unknown state", "Unknown state - results unpredictable"
    return False, "Unknown state - manual inspection needed", None


def build_pre_check(status: WorkStatus) -> PreCheck:
    """判断に使った作業状態を記録用に抜き出す。"""
    return PreCheck(
        recommendation=status.recommendation,
        is_working=status.is_working,
        is_idle=status.is_idle,
        is_rate_limited=status.is_rate_limited,
        is_context_low=status.is_context_low,
        context_remaining=status.context_remaining,
        confidence=status.confidence,
        agent_type=status.agent_type,
    )


@dataclass
class _RestartRun:
    """1 ペインの再起動処理の進行状況。"""

    session: str
    pane: int
    pane_id: str
    profile: AgentProfile
    phase: RestartPhase = RestartPhase.SOFT_EXIT
    attempted_actions: list[str] = field(default_factory=list)
    sequence: RestartSequence = field(default_factory=RestartSequence)
    last_output: str = ""
    prompt_error: StructuredError | None = None

    @property
    def agent_type(self) -> str:
        return self.profile.agent_type.value


class RestartOrchestrator:
    """ペインのエージェントを安全に再起動する。"""

    def __init__(
        self,
        tmux_manager: "TmuxManager",
        classifier: "WorkStateClassifier",
        process_inspector: "ProcessInspector",
        settings: "Settings",
        quota_client: "CachedQuotaClient | None" = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """RestartOrchestratorを初期化する。

        Args:
            tmux_manager: tmux 操作
            classifier: 作業状態の判定器
            process_inspector: OS プロセス情報
            settings: アプリケーション設定
            quota_client: レート制限解除時刻の照会に使う（任意）
            sleep: 待機関数（テストでは即時に返すものを渡す）
        """
        self.tmux = tmux_manager
        self.classifier = classifier
        self.inspector = process_inspector
        self.settings = settings
        self.quota_client = quota_client
        self._sleep = sleep

    # ========== 判断 ==========

    async def _build_wait_info(self, status: WorkStatus, output: str) -> WaitInfo:
        info = WaitInfo(
            wait_seconds=parse_rate_limit_wait(strip_ansi(output)) or DEFAULT_RATE_LIMIT_WAIT_SECONDS,
            suggestion=WAIT_SUGGESTION,
        )
        if self.quota_client is None or not self.settings.quota_enabled:
            return info

        try:
            payload = await self.quota_client.get_agent_usage(status.agent_type)
        except QuotaUnavailableError as e:
            logger.warning(f"レート制限の解除時刻を取得できません: {e}")
            return info
        if payload is not None and payload.resets_at is not None:
            info.resets_at = payload.resets_at.isoformat()
        return info

    async def restart_pane(
        self,
        session: str,
        pane: int,
        force: bool = False,
        dry_run: bool = False,
        prompt: str | None = None,
        hard_kill: bool | None = None,
        hard_kill_only: bool = False,
        post_launch_wait: float | None = None,
        agent_type_hint: str | None = None,
        lines: int | None = None,
    ) -> RestartAction:
        """1 ペインの再起動を判断し、必要なら実行する。

        判断順:
        1. レート制限中（force なし）→ WAITING
        2. 再起動すべきでない → SKIPPED
        3. ドライラン → WOULD_RESTART
        4. 再起動を実行 → RESTARTED / FAILED

        Args:
            session: セッション名
            pane: ペイン番号
            force: 作業中・状態不明でも再起動する
            dry_run: 判断のみ行い実行しない
            prompt: 起動後に送信するプロンプト
            hard_kill: ソフト終了失敗時に強制終了するか（None で設定値）
            hard_kill_only: ソフト終了を省略して強制終了する
            post_launch_wait: 起動後の待機秒数（None で設定値）
            agent_type_hint: ペインタイトルなどの種別ヒント
            lines: 判断に使うキャプチャ行数（None で設定値）

        Returns:
            再起動結果
        """
        pane_id = self.tmux.pane_target(session, pane)
        output = await self.tmux.capture_pane(
            session, pane, lines=lines or self.settings.capture_lines
        )
        status = self.classifier.classify(output, pane=pane_id, agent_type_hint=agent_type_hint)
        pre_check = build_pre_check(status)

        if status.is_rate_limited and not force:
            logger.info(f"{pane_id}: レート制限中のため再起動を見送ります")
            return RestartAction(
                action=RestartActionType.WAITING,
                reason="Rate limited - wait for reset",
                pre_check=pre_check,
                wait_info=await self._build_wait_info(status, output),
            )

        should_restart, reason, warning = decide_restart(status, force)
        if not should_restart:
            logger.info(f"{pane_id}: 再起動をスキップ ({reason})")
            return RestartAction(
                action=RestartActionType.SKIPPED, reason=reason, pre_check=pre_check
            )

        if dry_run:
            return RestartAction(
                action=RestartActionType.WOULD_RESTART,
                reason=reason,
                warning=warning,
                pre_check=pre_check,
            )

        if warning:
            logger.warning(f"{pane_id}: {warning}")

        run = _RestartRun(
            session=session,
            pane=pane,
            pane_id=pane_id,
            profile=get_agent_profile(status.agent_type),
        )
        run.sequence.agent_type = run.agent_type
        use_hard_kill = self.settings.hard_kill_enabled if hard_kill is None else hard_kill
        wait = self.settings.post_launch_wait_seconds if post_launch_wait is None else post_launch_wait
        deadline = self.settings.restart_deadline_seconds

        logger.info(f"{pane_id}: 再起動を開始します (type={run.agent_type})")
        try:
            await asyncio.wait_for(
                self._execute(run, prompt, use_hard_kill, hard_kill_only, wait),
                timeout=deadline,
            )
        except RestartPhaseError as e:
            logger.error(f"{pane_id}: 再起動に失敗 ({e.error.code}, phase={e.error.phase})")
            return RestartAction(
                action=RestartActionType.FAILED,
                reason=reason,
                warning=warning,
                pre_check=pre_check,
                restart_sequence=run.sequence,
                error=e.error.message,
                structured_error=e.error,
            )
        except asyncio.TimeoutError:
            error = self._structured_error(
                run,
                RestartErrorCode.TIMEOUT,
                f"Restart did not finish within {deadline}s",
                HINT_DEADLINE,
            )
            logger.error(f"{pane_id}: 再起動がタイムアウトしました (phase={run.phase.value})")
            return RestartAction(
                action=RestartActionType.FAILED,
                reason=reason,
                warning=warning,
                pre_check=pre_check,
                restart_sequence=run.sequence,
                error=error.message,
                structured_error=error,
            )
        except asyncio.CancelledError:
            logger.warning(f"{pane_id}: 再起動がキャンセルされました (phase={run.phase.value})")
            raise

        logger.info(f"{pane_id}: 再起動が完了しました")
        return RestartAction(
            action=RestartActionType.RESTARTED,
            reason=reason,
            warning=warning,
            pre_check=pre_check,
            restart_sequence=run.sequence,
            post_state=await self._post_state(run),
            structured_error=run.prompt_error,
        )

    async def restart_panes(
        self,
        session: str,
        panes: list[int] | None = None,
        force: bool = False,
        dry_run: bool = False,
        prompt: str | None = None,
        hard_kill: bool | None = None,
        hard_kill_only: bool = False,
        post_launch_wait: float | None = None,
        lines: int | None = None,
    ) -> dict[str, Any]:
        """複数ペインを順に処理する。

        存在しないペインが指定された場合は、どのペインにも触れずにエラーを返す。
        ペインの処理開始後は、1 ペインの失敗は他のペインに影響しない。

        Returns:
            ペインごとの結果と集計
        """
        pane_infos = {info.index: info for info in await self.tmux.list_panes(session)}
        if panes is None:
            panes = [i for i in pane_infos if i != self.settings.control_pane_index]

        missing = [p for p in panes if p not in pane_infos]
        if missing:
            logger.error(f"存在しないペインが指定されました: {missing}")
            return error_response(
                f"ペイン {missing} がセッション '{session}' に見つかりません",
                RestartErrorCode.PANE_NOT_FOUND.value,
                f"利用可能なペイン: {sorted(pane_infos)}",
            )

        actions: dict[str, dict[str, Any]] = {}
        summary = RestartSummary()
        for pane in panes:
            action = await self.restart_pane(
                session,
                pane,
                force=force,
                dry_run=dry_run,
                prompt=prompt,
                hard_kill=hard_kill,
                hard_kill_only=hard_kill_only,
                post_launch_wait=post_launch_wait,
                agent_type_hint=pane_infos[pane].title,
                lines=lines,
            )
            summary.add(str(pane), action)
            actions[str(pane)] = action.model_dump()

        return {
            "success": True,
            "session": session,
            "timestamp": datetime.now().isoformat(),
            "dry_run": dry_run,
            "force": force,
            "actions": actions,
            "summary": summary.model_dump(),
        }

    # ========== 実行 ==========

    def _structured_error(
        self,
        run: _RestartRun,
        code: RestartErrorCode,
        message: str,
        hint: str,
        last_output: str | None = None,
        **details: Any,
    ) -> StructuredError:
        output = run.last_output if last_output is None else last_output
        return StructuredError(
            code=code,
            message=message,
            phase=run.phase,
            pane=run.pane_id,
            details=ErrorDetails(
                agent_type=run.agent_type,
                exit_method=run.sequence.exit_method or None,
                attempted_actions=list(run.attempted_actions),
                last_output=truncate_output(output) if output else None,
                **details,
            ),
            recovery_hint=hint,
        )

    def _fail(
        self, run: _RestartRun, code: RestartErrorCode, message: str, hint: str, **kw: Any
    ) -> RestartPhaseError:
        return RestartPhaseError(self._structured_error(run, code, message, hint, **kw))

    async def _execute(
        self,
        run: _RestartRun,
        prompt: str | None,
        hard_kill: bool,
        hard_kill_only: bool,
        post_launch_wait: float,
    ) -> None:
        needs_hard_kill = hard_kill_only
        if not hard_kill_only:
            needs_hard_kill = not await self._soft_exit_phase(run, hard_kill)

        if needs_hard_kill:
            await self._hard_kill_phase(run)

        await self._launch_phase(run, post_launch_wait)

        if prompt:
            await self._prompt_phase(run, prompt)

    async def _soft_exit_phase(self, run: _RestartRun, hard_kill: bool) -> bool:
        """ソフト終了とシェル復帰確認を行う。

        Returns:
            シェル復帰を確認できた場合True（強制終了が不要）
        """
        run.phase = RestartPhase.SOFT_EXIT
        run.attempted_actions.append(f"exit-agent-{run.agent_type}")
        run.sequence.exit_method = run.profile.exit_method
        exited = await self._send_exit_sequence(run)
        if not exited:
            if not hard_kill:
                raise self._fail(
                    run,
                    RestartErrorCode.SOFT_EXIT_FAILED,
                    f"Failed to send exit sequence ({run.profile.exit_method})",
                    HINT_USE_HARD_KILL,
                )
            logger.warning(f"{run.pane_id}: ソフト終了に失敗、強制終了にフォールバックします")

        run.phase = RestartPhase.POST_EXIT
        wait = self.settings.exit_wait_seconds
        run.attempted_actions.append(f"wait-{_format_seconds(wait)}s")
        run.sequence.exit_duration_ms = int(wait * 1000)
        await self._sleep(wait)

        run.attempted_actions.append("verify-shell-prompt")
        run.sequence.shell_confirmed = await self._verify_shell(run)
        if run.sequence.shell_confirmed:
            return exited

        if not hard_kill:
            raise self._fail(
                run,
                RestartErrorCode.SHELL_NOT_RETURNED,
                "Shell prompt not detected after exit - agent may still be running",
                HINT_KILL_MANUALLY,
            )
        return False

    async def _send_exit_sequence(self, run: _RestartRun) -> bool:
        for step in run.profile.exit_steps:
            if step.kind == "pause":
                await self._sleep(step.seconds)
            elif step.kind == "key":
                if not await self.tmux.send_special_key(run.session, run.pane, step.value):
                    return False
            elif not await self.tmux.send_keys(run.session, run.pane, step.value):
                return False
        return True

    async def _verify_shell(self, run: _RestartRun) -> bool:
        output = await self.tmux.capture_pane(run.session, run.pane, lines=VERIFY_CAPTURE_LINES)
        run.last_output = output
        return looks_like_shell_prompt(strip_ansi(output))

    async def _hard_kill_phase(self, run: _RestartRun) -> None:
        run.phase = RestartPhase.HARD_KILL
        run.attempted_actions.append("hard-kill")
        run.sequence.hard_kill_used = True

        shell_pid = await self.tmux.get_pane_pid(run.session, run.pane)
        if shell_pid is None:
            raise self._fail(
                run,
                RestartErrorCode.HARD_KILL_FAILED,
                "Could not resolve pane shell pid",
                HINT_CHECK_PANE,
            )

        child_pid = self.inspector.find_child_pid(shell_pid)
        if child_pid is None:
            logger.info(f"{run.pane_id}: 強制終了対象の子プロセスがありません")
            run.sequence.hard_kill_result = HardKillResult(
                shell_pid=shell_pid, kill_method="no_child_process", success=True
            )
        else:
            state = self.inspector.process_state(child_pid)
            killed, kill_error = self.inspector.kill_process(child_pid)
            run.sequence.hard_kill_result = HardKillResult(
                shell_pid=shell_pid, child_pid=child_pid, kill_method="kill_9", success=killed
            )
            if not killed:
                raise self._fail(
                    run,
                    RestartErrorCode.HARD_KILL_FAILED,
                    f"Hard kill (kill -9) failed: {kill_error}",
                    HINT_INSPECT_PROCESS,
                    child_pid=child_pid,
                    process_state=state,
                    extra={"shell_pid": shell_pid},
                )

        run.phase = RestartPhase.POST_HARD_KILL
        wait = self.settings.hard_kill_wait_seconds
        run.attempted_actions.append(f"wait-{_format_seconds(wait)}s-after-kill")
        await self._sleep(wait)

        run.attempted_actions.append("verify-shell-prompt")
        run.sequence.shell_confirmed = await self._verify_shell(run)
        if not run.sequence.shell_confirmed:
            raise self._fail(
                run,
                RestartErrorCode.SHELL_NOT_RETURNED,
                "Shell prompt not detected after hard kill",
                HINT_RESET_SHELL,
            )

    async def _launch_phase(self, run: _RestartRun, post_launch_wait: float) -> None:
        run.phase = RestartPhase.LAUNCH
        launch_type = (
            run.agent_type
            if run.profile.agent_type != AgentType.UNKNOWN
            else AgentType.CLAUDE_CODE.value
        )
        run.attempted_actions.append(f"launch-{launch_type}")
        command = self.settings.get_launch_command(launch_type)
        if not await self.tmux.send_keys(run.session, run.pane, command):
            raise self._fail(
                run,
                RestartErrorCode.CC_LAUNCH_FAILED,
                f"Failed to launch agent: {command}",
                HINT_CHECK_CLI,
                last_output="",
            )
        run.sequence.agent_launched = True
        run.sequence.agent_type = launch_type

        run.attempted_actions.append(f"wait-{_format_seconds(post_launch_wait)}s")
        await self._sleep(post_launch_wait)

    async def _prompt_phase(self, run: _RestartRun, prompt: str) -> None:
        run.phase = RestartPhase.PROMPT
        run.attempted_actions.append("send-prompt")
        await self._sleep(self.settings.prompt_delay_seconds)
        run.sequence.prompt_sent = await self.tmux.send_keys(run.session, run.pane, prompt)
        if not run.sequence.prompt_sent:
            logger.warning(f"{run.pane_id}: プロンプトの送信に失敗しました（起動は成功）")
            run.prompt_error = self._structured_error(
                run,
                RestartErrorCode.PROMPT_SEND_FAILED,
                "Failed to send prompt after launch",
                HINT_RESEND_PROMPT,
            )

    async def _post_state(self, run: _RestartRun) -> PostState:
        output = await self.tmux.capture_pane(run.session, run.pane, lines=POST_STATE_CAPTURE_LINES)
        status = self.classifier.classify(output, pane=run.pane_id)
        return PostState(
            agent_running=status.agent_type != AgentType.UNKNOWN.value,
            agent_type=status.agent_type,
            confidence=status.confidence,
        )
