"""
Base agent interface.

Agents play a faction's turn through the TurnController action API and the
faction view only, the same surface a human player has.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from skirmish.errors import ActionError
from skirmish.turn import TurnController


@dataclass
class AgentConfig:
    """Configuration for an agent."""
    faction: str
    doctrine: str = "balanced"
    risk_tolerance: float = 0.5  # 0 = cautious, 1 = reckless
    max_nodes: int = 20000  # candidate evaluations per turn
    time_budget_s: float = 2.0
    produce: bool = True
    # LLM settings
    top_k: int = 5
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 1024


class Agent(ABC):
    """Base class for anything that plays a faction's turn."""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.faction = config.faction
        self.turn_count = 0

    @abstractmethod
    def play_turn(self, controller: TurnController) -> list[dict]:
        """Take every action for this turn. Does not call end_turn()."""

    def wait_all(self, controller: TurnController, actions: list[dict]):
        """Mark every unit that can still act as done for the turn."""
        for unit in controller.selectable_units(self.faction):
            try:
                controller.apply_wait(unit.id)
            except ActionError as exc:
                actions.append({"unit": unit.id, "action": "wait", "rejected": str(exc)})
                continue
            actions.append({"unit": unit.id, "action": "wait"})

    def reset(self):
        """Reset agent state for a new game."""
        self.turn_count = 0
