"""
End-to-end runs of the simulation runner on the shipped data.
"""

import json
from pathlib import Path

from agents.tactical import DOCTRINES
from game import SkirmishSimulation

DATA_PATH = Path(__file__).parent.parent / "data"


class TestSimulation:

    def test_short_run_writes_log_and_save(self, tmp_path):
        save_path = tmp_path / "end.json"
        sim = SkirmishSimulation(data_path=DATA_PATH, scenario="crossing", log_dir=tmp_path / "logs")
        results = sim.run_game(max_turns=2, save_path=save_path)

        assert results["turns_played"] >= 2 or results["game_over"]
        assert set(results["surviving_forces"]) == {"eastern", "northern"}
        assert save_path.exists()

        logs = list((tmp_path / "logs").glob("game_*.json"))
        assert len(logs) == 1
        events = [entry["event"] for entry in json.loads(logs[0].read_text())]
        assert events[0] == "game_start"
        assert events[-1] == "game_end"
        assert "turn_complete" in events

    def test_resume_from_save(self, tmp_path):
        save_path = tmp_path / "mid.json"
        first = SkirmishSimulation(data_path=DATA_PATH, scenario="crossing", log_dir=tmp_path / "logs")
        first.run_game(max_turns=1, save_path=save_path)

        resumed = SkirmishSimulation(data_path=DATA_PATH, log_dir=tmp_path / "logs", load_path=save_path)
        assert resumed.state.turn.started
        assert resumed.state.turn.turn_number == first.state.turn.turn_number
        resumed.initialize()
        assert resumed.state.active_faction == first.state.active_faction

    def test_seed_override(self, tmp_path):
        sim = SkirmishSimulation(data_path=DATA_PATH, scenario="crossing", log_dir=tmp_path / "logs", seed=99)
        assert sim.state.seed == 99

    def test_doctrine_reaches_every_agent(self, tmp_path):
        sim = SkirmishSimulation(data_path=DATA_PATH, scenario="crossing", log_dir=tmp_path / "logs",
                                 doctrine="cautious")
        assert {agent.doctrine for agent in sim.agents.values()} == {DOCTRINES["cautious"]}
        sim.initialize()
        turn_log = sim.run_turn()
        assert "unrepaired" in turn_log
