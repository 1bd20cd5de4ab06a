"""
Main game runner for the skirmish tactics engine.

Plays a scenario agent-vs-agent through the Action API and writes a JSON game log.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from skirmish import (
    FogOfWar, TurnController, load_game, load_rule_tables, load_scenario, save_game
)
from agents import Agent, AgentConfig, LLMAgent, TacticalAgent
from agents.tactical import DOCTRINES

load_dotenv(Path(__file__).parent / ".env")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 30


class SkirmishSimulation:
    """Main simulation orchestrator."""

    def __init__(
        self,
        data_path: str = "data",
        scenario: str = "woodland",
        log_dir: str = "logs",
        use_llm: bool = False,
        seed: Optional[int] = None,
        load_path: Optional[str] = None,
        doctrine: str = "balanced",
    ):
        self.data_path = Path(data_path)
        self.scenario_name = scenario
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(exist_ok=True)
        self.use_llm = use_llm
        self.doctrine = doctrine

        logger.info("Loading rule tables...")
        self.rules = load_rule_tables(self.data_path)

        if load_path:
            logger.info(f"Resuming saved match: {load_path}")
            self.state = load_game(load_path, self.rules)
        else:
            scenario_path = self.data_path / "scenarios" / f"{scenario}.yaml"
            logger.info(f"Loading scenario: {scenario_path}")
            self.state = load_scenario(scenario_path, self.rules)
        if seed is not None:
            self.state.seed = seed

        self.controller = TurnController(self.state, FogOfWar())
        self.agents: dict[str, Agent] = {
            faction_id: self._create_agent(faction_id) for faction_id in self.state.faction_order
        }

        # Game log
        self.game_log: list[dict] = []
        self.start_time: Optional[datetime] = None

    def _create_agent(self, faction_id: str) -> Agent:
        config = AgentConfig(faction=faction_id, doctrine=self.doctrine)
        if self.use_llm:
            logger.info(f"Initializing LLM agent for {faction_id}...")
            return LLMAgent(config)
        logger.info(f"Initializing tactical agent for {faction_id}...")
        return TacticalAgent(config)

    def initialize(self):
        """Start the match unless a resumed save is already under way."""
        self.start_time = datetime.now()
        if not self.state.turn.started:
            self.controller.start_match()

        self._log_event("game_start", {
            "scenario": self.scenario_name,
            "seed": self.state.seed,
            "map": self.state.battlefield.grid.get_stats(),
            "units": {
                fid: self.state.battlefield.count_units(fid) for fid in self.state.faction_order
            },
        })
        logger.info("Game initialized")

    def run_turn(self) -> dict:
        """Let the active faction's agent act, then end its turn."""
        state = self.state
        faction_id = state.active_faction
        turn = state.turn.turn_number
        logger.info(f"{'='*60}")
        logger.info(f"TURN {turn}: {faction_id}")
        logger.info(f"{'='*60}")

        agent = self.agents[faction_id]
        actions = agent.play_turn(self.controller)
        reasoning = agent.get_reasoning() if isinstance(agent, LLMAgent) else None
        result = self.controller.end_turn()

        turn_log = {
            "turn": turn,
            "faction": faction_id,
            "weather": state.weather.current.value,
            "actions": actions,
            "reasoning": reasoning,
            "resources": state.faction(faction_id).resources,
            "resupplied": result.resupplied,
            "repaired": result.repaired,
            "unrepaired": result.unrepaired,
            "units": {
                fid: state.battlefield.count_units(fid) for fid in state.faction_order
            },
        }
        self._log_event("turn_complete", turn_log)

        logger.info(f"Turn {turn} ({faction_id}) complete: {len(actions)} actions")
        return turn_log

    def run_game(self, max_turns: Optional[int] = None, save_path: Optional[str] = None) -> dict:
        """Run until the match ends or max_turns full rounds have been played."""
        self.initialize()
        max_turns = max_turns or DEFAULT_MAX_TURNS

        while not self.state.game_over and self.state.turn.turn_number <= max_turns:
            self.run_turn()

        results = self._compile_results()
        self._log_event("game_end", results)
        self._save_game_log()
        if save_path:
            save_game(self.state, save_path)
            logger.info(f"Match saved to: {save_path}")
        return results

    def _compile_results(self) -> dict:
        """Compile final game results."""
        state = self.state
        return {
            "turns_played": state.turn.turn_number,
            "game_over": state.game_over,
            "winner": list(state.winner),
            "surviving_forces": {
                fid: state.battlefield.count_units(fid) for fid in state.faction_order
            },
            "resources": {fid: f.resources for fid, f in state.factions.items()},
            "duration": str(datetime.now() - self.start_time) if self.start_time else None,
        }

    def _log_event(self, event_type: str, data: dict):
        """Log a game event."""
        self.game_log.append({
            "timestamp": datetime.now().isoformat(),
            "event": event_type,
            "data": data,
        })

    def _save_game_log(self):
        """Save game log to file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = self.log_dir / f"game_{timestamp}.json"

        with open(log_path, "w") as f:
            json.dump(self.game_log, f, indent=2, default=str)

        logger.info(f"Game log saved to: {log_path}")


def main():
    """Run a skirmish simulation."""
    import argparse

    parser = argparse.ArgumentParser(description="Skirmish Tactics Simulation")
    parser.add_argument("--scenario", default="woodland", help="Scenario name")
    parser.add_argument("--turns", type=int, default=None, help=f"Max turns (default: {DEFAULT_MAX_TURNS})")
    parser.add_argument("--data", default="data", help="Data directory path")
    parser.add_argument("--logs", default="logs", help="Log directory path")
    parser.add_argument("--llm", action="store_true", help="Let OpenAI pick among the AI's best moves")
    parser.add_argument("--doctrine", default="balanced", choices=sorted(DOCTRINES), help="AI doctrine for every faction")
    parser.add_argument("--seed", type=int, default=None, help="Override the scenario seed")
    parser.add_argument("--save", default=None, help="Write a save file when the run ends")
    parser.add_argument("--load", default=None, help="Resume from a save file")

    args = parser.parse_args()

    sim = SkirmishSimulation(
        data_path=args.data,
        scenario=args.scenario,
        log_dir=args.logs,
        use_llm=args.llm,
        seed=args.seed,
        load_path=args.load,
        doctrine=args.doctrine,
    )

    results = sim.run_game(max_turns=args.turns, save_path=args.save)

    print("\n" + "="*60)
    print("FINAL RESULTS")
    print("="*60)
    print(f"Turns played: {results['turns_played']}")
    print(f"Winner: {', '.join(results['winner']) or 'undecided'}")
    for faction_id, count in results["surviving_forces"].items():
        print(f"  {faction_id}: {count} units, {results['resources'][faction_id]} funds")
    print(f"Duration: {results['duration']}")


if __name__ == "__main__":
    main()
