"""エージェントレジストリのテスト。"""

import pytest

from pane_supervisor.config.agent_registry import (
    CLAUDE_CODE_PROFILE,
    CODEX_PROFILE,
    GEMINI_PROFILE,
    UNKNOWN_PROFILE,
    agent_type_for_provider,
    agent_type_from_title,
    get_agent_profile,
    known_profiles,
    provider_for_agent,
)
from pane_supervisor.config.settings import AgentType


class TestAgentProfiles:
    """プロファイル定義のテスト。"""

    def test_exit_sequences(self):
        """種別ごとの終了方法をテスト。"""
        assert CLAUDE_CODE_PROFILE.exit_method == "double_ctrl_c"
        assert [s.kind for s in CLAUDE_CODE_PROFILE.exit_steps] == ["key", "pause", "key"]
        assert CLAUDE_CODE_PROFILE.exit_steps[1].seconds == 0.1
        assert CODEX_PROFILE.exit_method == "exit_command"
        assert CODEX_PROFILE.exit_steps[0].value == "/exit"
        assert GEMINI_PROFILE.exit_method == "escape_then_exit"
        assert [s.value for s in GEMINI_PROFILE.exit_steps if s.kind != "pause"] == [
            "Escape",
            "/exit",
        ]
        assert UNKNOWN_PROFILE.exit_method == "ctrl_c_fallback"

    def test_known_profiles_exclude_unknown(self):
        """known_profiles は unknown を含まないことをテスト。"""
        types = {p.agent_type for p in known_profiles()}

        assert types == {AgentType.CLAUDE_CODE, AgentType.CODEX, AgentType.GEMINI}

    @pytest.mark.parametrize(
        ("line", "expected"),
        [("Human: ", True), ("> ", True), ("Anything else?", True), ("Thinking...", False)],
    )
    def test_claude_idle_prompt(self, line, expected):
        """Claude Code のアイドルプロンプト判定をテスト。"""
        assert CLAUDE_CODE_PROFILE.matches_idle(line) is expected

    def test_unknown_profile_uses_shell_prompt(self):
        """unknown はシェルプロンプト記号で判定することをテスト。"""
        assert UNKNOWN_PROFILE.matches_idle("user@host:~$ ") is True
        assert UNKNOWN_PROFILE.matches_idle("building...") is False
        assert UNKNOWN_PROFILE.matches_idle("   ") is False


class TestLookups:
    """検索関数のテスト。"""

    def test_get_agent_profile(self):
        """文字列・列挙・未知の値でプロファイルを取得できることをテスト。"""
        assert get_agent_profile("cod") is CODEX_PROFILE
        assert get_agent_profile(AgentType.GEMINI) is GEMINI_PROFILE
        assert get_agent_profile("other") is UNKNOWN_PROFILE
        assert get_agent_profile(None) is UNKNOWN_PROFILE

    def test_provider_mapping(self):
        """種別とプロバイダーの対応をテスト。"""
        assert provider_for_agent("cc") == "claude"
        assert provider_for_agent("unknown") is None
        assert agent_type_for_provider("gemini") == "gmi"
        assert agent_type_for_provider("mistral") == "unknown"

    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            ("myproject__cc_1", "cc"),
            ("myproject__cod_2", "cod"),
            ("myproject__gmi", "gmi"),
            ("myproject__gmi_3 (main)", "gmi"),
            ("myproject__code", None),
            ("control", None),
            ("", None),
            (None, None),
        ],
    )
    def test_agent_type_from_title(self, title, expected):
        """ペインタイトルから種別を推定することをテスト。"""
        assert agent_type_from_title(title) == expected
