"""
LLM-advised agent using OpenAI (gpt-4o).

The tactical search ranks candidates; the model picks one of the top few.
Any API or parse failure falls back to the best-ranked candidate.
"""

import json
import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from skirmish.turn import TurnController

from .base import AgentConfig
from .tactical import Candidate, TacticalAgent

logger = logging.getLogger(__name__)


class LLMAgent(TacticalAgent):
    """Tactical agent that defers the final choice of each step to a language model."""

    def __init__(self, config: AgentConfig, client: Optional[OpenAI] = None):
        super().__init__(config)
        self.client = client or OpenAI()  # Uses OPENAI_API_KEY env var
        self.conversation_history: list[dict] = []
        self.fallbacks = 0

    @property
    def system_prompt(self) -> str:
        return f"""You are the field commander of the {self.faction} faction in a turn-based grid tactics game.

## YOUR ROLE
Each step you are shown the battlefield as your faction sees it and a short list of candidate actions
already checked for legality. Pick exactly one candidate by its index.

## DOCTRINE: {self.config.doctrine.upper()}
Risk tolerance: {self.config.risk_tolerance:.1f} (0 = cautious, 1 = reckless)

## RULES OF THUMB
- Destroying a unit removes its counter-attack for the rest of the match.
- Capturing structures raises income; losing your base loses the match.
- Units hidden in fog may be anywhere. Do not assume empty cells are safe.
"""

    @property
    def choice_schema(self) -> dict:
        """JSON schema for the structured choice."""
        return {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "reasoning": {
                    "type": "string",
                    "description": "One or two sentences explaining the choice"
                },
                "choice": {
                    "type": "integer",
                    "description": "Index of the chosen candidate"
                }
            },
            "required": ["reasoning", "choice"]
        }

    def play_turn(self, controller: TurnController) -> list[dict]:
        self.conversation_history = []
        return super().play_turn(controller)

    def choose(self, controller: TurnController, ranked: list[Candidate]) -> Candidate:
        top = [c for c in ranked[:self.config.top_k] if c.score > 0]
        if len(top) <= 1:
            return ranked[0]

        prompt = self._build_situation_prompt(controller.faction_view(self.faction), top)
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": prompt},
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "tactical_choice",
                        "schema": self.choice_schema,
                        "strict": True
                    }
                },
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
            response_text = response.choices[0].message.content
            choice = json.loads(response_text)["choice"]
            if not isinstance(choice, int) or not 0 <= choice < len(top):
                raise ValueError(f"choice {choice!r} is not one of 0..{len(top) - 1}")
        except (OpenAIError, json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError) as exc:
            self.fallbacks += 1
            logger.warning(f"{self.faction}: model choice failed ({exc}), using top-ranked candidate")
            return ranked[0]

        self.conversation_history.append({"role": "user", "content": prompt})
        self.conversation_history.append({"role": "assistant", "content": response_text})
        logger.debug(f"{self.faction}: model chose #{choice} {top[choice].describe()}")
        return top[choice]

    def _build_situation_prompt(self, view: dict, candidates: list[Candidate]) -> str:
        """Build the briefing for one step."""
        prompt = f"""
## SITUATION REPORT - TURN {view['turn']}
Weather: {view['weather']}
Funds: {view['resources']} | Commander: {view['commander']} | Charge: {view['charge']}/{view['power_cost']}

### FRIENDLY UNITS
"""
        for u in view["own_units"]:
            status = "done" if u["acted"] else ("moved" if u["moved"] else "ready")
            cargo = ", ".join(c["unit_type"] for c in u["cargo"])
            carrying = f" carrying {cargo}" if cargo else ""
            prompt += f"  - `{u['id']}` {u['unit_type']} at ({u['x']}, {u['y']}) hp {u['hp']} ammo {u['ammo']}{carrying} [{status}]\n"

        prompt += "\n### VISIBLE ENEMIES\n"
        if view["visible_enemies"]:
            for e in view["visible_enemies"]:
                prompt += f"  - `{e['id']}` {e['unit_type']} at ({e['x']}, {e['y']}) hp {e['hp']}\n"
        else:
            prompt += "No enemy units in sight.\n"

        prompt += "\n### STRUCTURES\n"
        for s in view["structures"]:
            seen = "visible" if s["visible"] else "last seen"
            prompt += f"  - {s['terrain']} at ({s['pos'][0]}, {s['pos'][1]}) owner {s['owner'] or 'neutral'} ({seen})\n"

        prompt += "\n### CANDIDATE ACTIONS\n"
        for index, candidate in enumerate(candidates):
            prompt += f"  {index}. {candidate.describe()} (heuristic score {candidate.score:.1f})\n"

        prompt += "\nChoose one candidate index.\n"
        return prompt

    def get_reasoning(self) -> Optional[str]:
        """Get the last reasoning from the model."""
        if self.conversation_history:
            last = self.conversation_history[-1]
            if last['role'] == 'assistant':
                try:
                    return json.loads(last['content']).get('reasoning')
                except json.JSONDecodeError:
                    return None
        return None

    def reset(self):
        """Reset agent state for a new game."""
        super().reset()
        self.conversation_history = []
        self.fallbacks = 0
