"""WorkStateClassifierのテスト。"""

import pytest

from pane_supervisor.config.settings import AgentType
from pane_supervisor.managers.work_state_classifier import (
    WorkStateClassifier,
    derive_work_recommendation,
)
from pane_supervisor.models.work_status import WorkRecommendation, WorkSummary

CLAUDE_RATE_LIMITED = """Claude Opus 4.5 ready
Processing your request...
You've hit your limit. Please wait and try again later."""

CLAUDE_WORKING = """Claude Opus 4.5 ready
Let me write some code for you:
```go
package main

func main() {
    fmt.Println("Hello, World!")
}
```"""

CLAUDE_IDLE = """Task completed successfully.
What would you like me to do next?
Human: """

CODEX_IDLE_WITH_METRICS = """Processing your request...
Token usage: total=150,000 input=140,000 output=10,000
47% context left · ? for shortcuts
codex> """

CODEX_WORKING_LOW_CONTEXT = """15% context left
editing src/main.py
"""

GEMINI_IDLE = """gemini-2.0-flash-preview ready
YOLO mode: ON
Memory: 512.5 MB
gemini> """

CLAUDE_ERROR = """Claude Opus 4.5 ready
Error: connection refused"""


class TestDetectAgentType:
    """detect_agent_type のテスト。"""

    @pytest.mark.parametrize(
        "text",
        ["Claude Opus 4.5 is ready", "Using sonnet 3.5 for this task", "Haiku model loaded"],
    )
    def test_claude_headers(self, classifier, text):
        """Claude のヘッダーを判別することをテスト。"""
        assert classifier.detect_agent_type(text) == AgentType.CLAUDE_CODE

    @pytest.mark.parametrize(
        "text",
        ["47% context left · ? for shortcuts", "OpenAI Codex CLI ready", "GPT-4 turbo model"],
    )
    def test_codex_headers(self, classifier, text):
        """Codex のヘッダー・メトリクスを判別することをテスト。"""
        assert classifier.detect_agent_type(text) == AgentType.CODEX

    @pytest.mark.parametrize(
        "text",
        ["gemini-2.0-flash-preview ready", "YOLO mode: ON", "Google AI Studio connected"],
    )
    def test_gemini_headers(self, classifier, text):
        """Gemini のヘッダー・メトリクスを判別することをテスト。"""
        assert classifier.detect_agent_type(text) == AgentType.GEMINI

    def test_pane_title_hint_wins(self, classifier):
        """ペインタイトルのヒントが出力より優先されることをテスト。"""
        assert classifier.detect_agent_type("Claude Opus 4.5", hint="proj__gmi_2") == AgentType.GEMINI

    def test_plain_type_hint(self, classifier):
        """種別そのものをヒントとして受け付けることをテスト。"""
        assert classifier.detect_agent_type("", hint="cod") == AgentType.CODEX

    def test_unknown_for_plain_shell(self, classifier):
        """シェルのみの出力は unknown になることをテスト。"""
        assert classifier.detect_agent_type("user@host:~/proj$ ") == AgentType.UNKNOWN


class TestClassify:
    """classify のテスト。"""

    def test_empty_output_is_unknown_with_low_confidence(self, classifier):
        """空の出力は unknown かつ低い確信度になることをテスト。"""
        status = classifier.classify("")

        assert status.agent_type == AgentType.UNKNOWN.value
        assert status.confidence <= 0.3
        assert status.recommendation == WorkRecommendation.UNKNOWN.value

    def test_rate_limited_claude(self, classifier):
        """Claude のレート制限を検出することをテスト。"""
        status = classifier.classify(CLAUDE_RATE_LIMITED)

        assert status.agent_type == AgentType.CLAUDE_CODE.value
        assert status.is_rate_limited is True
        assert status.is_working is False
        assert status.limit_indicators == ["You've hit your limit"]
        assert status.recommendation == WorkRecommendation.RATE_LIMITED_WAIT.value
        assert status.reason == "Agent hit rate limit"
        assert status.confidence == pytest.approx(0.8)

    def test_working_code_block(self, classifier):
        """コードブロック出力中は作業中と判定することをテスト。"""
        status = classifier.classify(CLAUDE_WORKING)

        assert status.is_working is True
        assert status.is_idle is False
        assert "```" in status.work_indicators
        assert status.recommendation == WorkRecommendation.DO_NOT_INTERRUPT.value

    def test_idle_claude_prompt(self, classifier):
        """Human: プロンプトで入力待ちと判定することをテスト。"""
        status = classifier.classify(CLAUDE_IDLE, agent_type_hint="proj__cc_1")

        assert status.agent_type == AgentType.CLAUDE_CODE.value
        assert status.is_idle is True
        assert status.is_working is False
        assert status.recommendation == WorkRecommendation.SAFE_TO_RESTART.value

    def test_idle_prompt_above_blank_rows(self, classifier):
        """プロンプトの下に空行が続いても入力待ちと判定することをテスト。"""
        output = "Claude Opus 4.5\nDone.\n> \n" + "\n" * 15

        status = classifier.classify(output, agent_type_hint="proj__cc_1")

        assert status.is_idle is True
        assert status.recommendation == WorkRecommendation.SAFE_TO_RESTART.value

    def test_unknown_pane_uses_known_idle_prompts(self, classifier):
        """種別不明でも既知のプロンプトで入力待ちと判定することをテスト。"""
        status = classifier.classify(CLAUDE_IDLE)

        assert status.agent_type == AgentType.UNKNOWN.value
        assert status.is_idle is True

    def test_codex_metrics_extraction(self, classifier):
        """Codex のコンテキスト残量・トークン数を抽出することをテスト。"""
        status = classifier.classify(CODEX_IDLE_WITH_METRICS)

        assert status.agent_type == AgentType.CODEX.value
        assert status.context_remaining == 47.0
        assert status.tokens_used == 150000
        assert status.is_context_low is False
        assert status.is_idle is True
        assert status.confidence == pytest.approx(0.85)

    def test_codex_working_with_low_context(self, classifier):
        """作業中かつコンテキスト残量が少ない場合は CONTEXT_LOW_CONTINUE になることをテスト。"""
        status = classifier.classify(CODEX_WORKING_LOW_CONTEXT)

        assert status.is_context_low is True
        assert status.is_working is True
        assert status.recommendation == WorkRecommendation.CONTEXT_LOW_CONTINUE.value
        assert status.reason == "Working but low context (15%)"

    def test_context_threshold_is_configurable(self):
        """閾値を変更できることをテスト。"""
        classifier = WorkStateClassifier(context_low_threshold=50.0)

        status = classifier.classify(CODEX_IDLE_WITH_METRICS)

        assert status.is_context_low is True

    def test_claude_context_warning_marks_low(self, classifier):
        """Claude の会話長警告でコンテキスト不足と判定することをテスト。"""
        output = "Claude Opus 4.5\nThis conversation is getting long.\nHuman: "

        status = classifier.classify(output)

        assert status.is_context_low is True
        assert status.context_remaining is None

    def test_gemini_memory_metric(self, classifier):
        """Gemini のメモリ使用量を抽出することをテスト。"""
        status = classifier.classify(GEMINI_IDLE)

        assert status.agent_type == AgentType.GEMINI.value
        assert status.memory_mb == 512.5
        assert status.is_idle is True

    def test_error_state(self, classifier):
        """エラー出力で停止している場合は ERROR_STATE になることをテスト。"""
        status = classifier.classify(CLAUDE_ERROR)

        assert status.is_in_error is True
        assert status.recommendation == WorkRecommendation.ERROR_STATE.value

    def test_ansi_sequences_are_stripped(self, classifier):
        """ANSI エスケープシーケンスを除去して判定することをテスト。"""
        output = "\x1b[1m47% context left\x1b[0m\n\x1b[32mcodex>\x1b[0m "

        status = classifier.classify(output)

        assert status.agent_type == AgentType.CODEX.value
        assert status.is_idle is True

    def test_raw_sample_only_when_verbose(self, classifier):
        """verbose の場合のみ raw_sample を含めることをテスト。"""
        assert classifier.classify(GEMINI_IDLE).raw_sample is None
        assert classifier.classify(GEMINI_IDLE, verbose=True).raw_sample.endswith("gemini> ")

    def test_idempotent(self, classifier):
        """同じ入力に対して同じ結果を返すことをテスト。"""
        first = classifier.classify(CODEX_IDLE_WITH_METRICS, pane="1")
        second = classifier.classify(CODEX_IDLE_WITH_METRICS, pane="1")

        assert first == second

    def test_confidence_never_exceeds_one(self, classifier):
        """確信度が 1.0 を超えないことをテスト。"""
        output = "47% context left\nrate limit exceeded\ncodex> "

        status = classifier.classify(output)

        assert 0.0 <= status.confidence <= 1.0


class TestDeriveWorkRecommendation:
    """derive_work_recommendation のテスト。"""

    def test_rate_limit_has_highest_priority(self):
        """レート制限が最優先であることをテスト。"""
        rec, _ = derive_work_recommendation(
            is_rate_limited=True,
            is_in_error=True,
            is_working=True,
            is_context_low=True,
            is_idle=True,
        )
        assert rec == WorkRecommendation.RATE_LIMITED_WAIT

    def test_idle_is_safe_to_restart(self):
        """アイドルは SAFE_TO_RESTART であることをテスト。"""
        rec, reason = derive_work_recommendation(
            is_rate_limited=False,
            is_in_error=False,
            is_working=False,
            is_context_low=True,
            is_idle=True,
        )
        assert rec == WorkRecommendation.SAFE_TO_RESTART
        assert reason == "Agent is idle"

    def test_nothing_detected_is_unknown(self):
        """何も検出されない場合は UNKNOWN であることをテスト。"""
        rec, reason = derive_work_recommendation(
            is_rate_limited=False,
            is_in_error=False,
            is_working=False,
            is_context_low=False,
            is_idle=False,
        )
        assert rec == WorkRecommendation.UNKNOWN
        assert reason == "Could not determine agent state"


class TestWorkSummary:
    """WorkSummary のテスト。"""

    def test_summary_groups_panes(self, classifier):
        """ペインを状態ごとに集計することをテスト。"""
        summary = WorkSummary()
        summary.add("1", classifier.classify(CLAUDE_WORKING))
        summary.add("2", classifier.classify(CLAUDE_RATE_LIMITED))
        summary.add("3", classifier.classify(GEMINI_IDLE))

        assert summary.total == 3
        assert summary.working == ["1"]
        assert summary.rate_limited == ["2"]
        assert summary.idle == ["3"]
        assert summary.by_recommendation["SAFE_TO_RESTART"] == ["3"]
