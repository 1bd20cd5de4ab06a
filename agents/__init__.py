"""
Agents that play a faction's turn.

TacticalAgent is a deterministic heuristic search; LLMAgent lets OpenAI
(gpt-4o) pick among the tactical agent's best candidates.
"""

from .base import Agent, AgentConfig
from .llm import LLMAgent
from .tactical import TacticalAgent

__all__ = ["Agent", "AgentConfig", "TacticalAgent", "LLMAgent"]
