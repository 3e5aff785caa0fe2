"""シグナルパターンのテスト。"""

import pytest

from pane_supervisor.config.signal_patterns import (
    GENERIC_RATE_LIMIT_PATTERNS,
    build_pattern_table,
    last_non_empty_line,
    looks_like_shell_prompt,
    strip_ansi,
)


class TestPatternTable:
    """build_pattern_table のテスト。"""

    def test_rows_become_case_insensitive_patterns(self):
        """行から大文字小文字を区別しないパターンを作ることをテスト。"""
        table = build_pattern_table([(r"quota exceeded", "rate_limit", 0.3)])

        assert table[0].category == "rate_limit"
        assert table[0].weight == 0.3
        assert table[0].search("QUOTA EXCEEDED for project") is not None

    def test_generic_rate_limit_reset_time(self):
        """リセット時刻表記を検出することをテスト。"""
        assert any(p.search("limit resets 5pm (UTC)") for p in GENERIC_RATE_LIMIT_PATTERNS)


class TestTextHelpers:
    """テキスト処理関数のテスト。"""

    def test_strip_ansi(self):
        """ANSI エスケープシーケンスを除去することをテスト。"""
        assert strip_ansi("\x1b[1;32mok\x1b[0m done") == "ok done"

    def test_last_non_empty_line(self):
        """末尾の空行を飛ばして最後の行を返すことをテスト。"""
        assert last_non_empty_line("a\nb\n\n   \n") == "b"

    def test_last_non_empty_line_skips_tmux_padding(self):
        """tmux のパディング空行はウィンドウに数えないことをテスト。"""
        text = "Done.\nprompt> \n" + "\n" * 19

        assert last_non_empty_line(text, window=5) == "prompt> "

    def test_shell_prompt_with_tmux_padding(self):
        """パディング付きのキャプチャでもシェルプロンプトを判定することをテスト。"""
        assert looks_like_shell_prompt("user@host:~$ \n" + "\n" * 19) is True

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("user@host:~/proj$ ", True),
            ("~/proj ❯ ", True),
            ("root@box:/# ", True),
            ("host% ", True),
            ("Thinking...", False),
            ("", False),
        ],
    )
    def test_looks_like_shell_prompt(self, text, expected):
        """シェルプロンプト判定をテスト。"""
        assert looks_like_shell_prompt(text) is expected
