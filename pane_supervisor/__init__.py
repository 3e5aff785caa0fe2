"""tmux ペイン上のコーディングエージェントを監視・再起動する MCP サーバー。"""

__version__ = "0.1.0"
