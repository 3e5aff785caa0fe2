"""設定モジュール。"""

from .agent_registry import AgentProfile, ExitStep, get_agent_profile, provider_for_agent
from .settings import AgentType, AICli, Settings

__all__ = [
    "AICli",
    "AgentProfile",
    "AgentType",
    "ExitStep",
    "Settings",
    "get_agent_profile",
    "provider_for_agent",
]
