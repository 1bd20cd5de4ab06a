"""
Tests for the tactical and LLM-advised agents.

The OpenAI client is mocked; no network access is needed.
"""

import json
import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError

from agents import AgentConfig, LLMAgent, TacticalAgent
from agents.tactical import (
    DOCTRINES, Candidate, capture_utility, damage_utility, risk_utility, safety_utility, unit_value,
)
from skirmish import TurnController, load_scenario, snapshot
from skirmish.errors import ConfigurationError

WOODLAND = Path(__file__).parent.parent / "data" / "scenarios" / "woodland.yaml"


def config(**overrides):
    """Deterministic settings: only the node budget can cut a search short."""
    settings = {"faction": "red", "time_budget_s": 1000.0, "produce": False}
    settings.update(overrides)
    return AgentConfig(**settings)


def mock_client(content):
    client = MagicMock()
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    client.chat.completions.create.return_value = response
    return client


def ranked(controller, **overrides):
    agent = TacticalAgent(config(**overrides))
    agent._start_budget()
    return agent.rank_candidates(controller)


class TestUtilities:

    def test_unit_value(self):
        assert unit_value(1000) == 10

    def test_kill_outweighs_any_partial_damage(self):
        assert damage_utility(20, 20, 10) == 100
        assert damage_utility(99, 100, 10) < damage_utility(20, 20, 10)
        assert damage_utility(0, 100, 10) == 0

    def test_risk_is_negative(self):
        assert risk_utility(0, 100, 10) == 0
        assert risk_utility(20, 100, 10) < 0
        assert risk_utility(100, 100, 10) == -20

    def test_capture_grows_with_progress(self):
        first = capture_utility(10, 20, 1000, False)
        finishing = capture_utility(20, 20, 1000, False)
        assert finishing > first > 0
        assert capture_utility(10, 20, 1000, True) > first

    def test_safety_penalty_grows_with_danger(self):
        assert safety_utility(0, 100) == 0
        assert safety_utility(40, 100) == 0
        assert safety_utility(70, 100) == pytest.approx(-3.5)
        assert safety_utility(120, 100) == -15
        assert safety_utility(200, 100) == -25

    def test_candidate_order_is_total(self):
        a = Candidate("u2", (0, 0), "hold", 1.0)
        b = Candidate("u1", (1, 0), "hold", 1.0)
        c = Candidate("u1", (0, 1), "hold", 1.0)
        d = Candidate("u1", (0, 1), "attack", 5.0, "x")
        assert sorted([a, b, c, d], key=Candidate.sort_key) == [d, b, c, a]


class TestTacticalAgent:

    def test_attacks_adjacent_enemy(self, new_match, start):
        state = new_match(["....."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (1, 0)),
        ])
        controller = start(state)
        actions = TacticalAgent(config()).play_turn(controller)

        assert actions[0]["action"] == "attack"
        assert actions[0]["target"] == "b1"
        assert state.battlefield.get_unit("b1").hp == 72
        assert controller.selectable_units("red") == []

    def test_prefers_the_kill(self, new_match, start):
        state = new_match(["..."], units=[
            ("r1", "infantry", "red", (1, 0)),
            ("b1", "infantry", "blue", (0, 0)),
            ("b2", "infantry", "blue", (2, 0)),
        ])
        controller = start(state)
        state.battlefield.get_unit("b2").hp = 20
        actions = TacticalAgent(config()).play_turn(controller)

        assert actions[0]["target"] == "b2"
        assert state.battlefield.get_unit("b2") is None
        assert state.battlefield.get_unit("b1").hp == 100

    def test_waits_without_objectives(self, new_match, start):
        state = new_match([".........."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (9, 0)),
        ])
        controller = start(state)
        actions = TacticalAgent(config()).play_turn(controller)

        assert actions == [{"unit": "r1", "action": "wait"}]
        assert state.battlefield.get_unit("r1").pos == (0, 0)

    def test_moves_onto_structure_and_captures(self, new_match, start):
        state = new_match([".P........"], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (9, 0)),
        ])
        controller = start(state)
        actions = TacticalAgent(config()).play_turn(controller)

        assert actions[0]["action"] == "capture"
        assert actions[0]["dest"] == [1, 0]
        assert state.battlefield.get_unit("r1").pos == (1, 0)
        assert state.battlefield.get_cell((1, 0)).capture_points == 10

    def test_advances_toward_unexplored_structure(self, new_match, start):
        state = new_match([".........P"], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (9, 0)),
        ])
        controller = start(state)
        TacticalAgent(config()).play_turn(controller)
        assert state.battlefield.get_unit("r1").pos == (3, 0)

    def test_budget_exhaustion_ends_turn(self, new_match, start, caplog):
        state = new_match([".........P"], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("r2", "infantry", "red", (1, 0)),
            ("b1", "infantry", "blue", (9, 0)),
        ])
        controller = start(state)
        agent = TacticalAgent(config(max_nodes=1))
        with caplog.at_level(logging.WARNING, logger="agents.tactical"):
            agent.play_turn(controller)

        assert "search budget exhausted" in caplog.text
        assert controller.selectable_units("red") == []

    def test_activates_power_when_enemy_in_sight(self, new_match, start):
        state = new_match(["....."], commanders={"red": "striker"}, units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (1, 0)),
        ])
        controller = start(state)
        state.faction("red").charge = 100
        actions = TacticalAgent(config()).play_turn(controller)

        assert actions[0] == {"action": "power", "power": "Overdrive"}
        assert actions[1]["damage"] == 41

    def test_holds_power_without_targets(self, new_match, start):
        state = new_match([".........."], commanders={"red": "striker"}, units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (9, 0)),
        ])
        controller = start(state)
        state.faction("red").charge = 100
        TacticalAgent(config()).play_turn(controller)
        assert not state.faction("red").power_active

    def test_produces_most_expensive_affordable_unit(self, new_match, start):
        state = new_match(["B........."], owners={(0, 0): "red"}, funds={"red": 6000}, units=[
            ("r1", "infantry", "red", (4, 0)),
            ("b1", "infantry", "blue", (9, 0)),
        ])
        controller = start(state)
        actions = TacticalAgent(config(produce=True)).play_turn(controller)

        assert actions[-1]["action"] == "produce"
        assert actions[-1]["unit_type"] == "tank"
        assert state.battlefield.unit_at((0, 0)).unit_type == "tank"
        assert state.faction("red").resources == 0

    def test_same_inputs_same_match(self, repo_rules):
        def play(rounds=2):
            state = load_scenario(WOODLAND, repo_rules)
            controller = TurnController(state)
            controller.start_match()
            agents = {fid: TacticalAgent(config(faction=fid, produce=True)) for fid in state.faction_order}
            for _ in range(rounds * len(agents)):
                if state.game_over:
                    break
                agents[state.active_faction].play_turn(controller)
                controller.end_turn()
            return snapshot(state)

        assert play() == play()


    def test_join_when_weakened(self, new_match, start):
        state = new_match(["....."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("r2", "infantry", "red", (1, 0)),
            ("b1", "infantry", "blue", (4, 0)),
        ])
        controller = start(state)
        state.battlefield.get_unit("r1").hp = 30
        state.battlefield.get_unit("r2").hp = 60
        actions = TacticalAgent(config()).play_turn(controller)

        assert actions[0]["action"] == "join"
        assert actions[0]["target"] == "r2"
        assert state.battlefield.get_unit("r1") is None
        assert state.battlefield.get_unit("r2").hp == 90


class TestThreatMap:

    def threats(self, controller):
        agent = TacticalAgent(config())
        return agent.threat_map(controller, controller.faction_view("red"))

    def test_direct_fire_covers_reach_plus_range(self, new_match, start):
        state = new_match(["......."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (2, 0)),
        ])
        threats = self.threats(start(state))
        assert threats == {(x, 0): {"b1": 55.0} for x in range(7)}

    def test_strength_scales_with_hit_points(self, new_match, start):
        state = new_match(["......."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (2, 0)),
        ])
        controller = start(state)
        state.battlefield.get_unit("b1").hp = 50
        assert self.threats(controller)[(0, 0)] == {"b1": 27.5}

    def test_indirect_fire_strikes_from_where_it_stands(self, new_match, start):
        state = new_match([".........."], units=[
            ("r1", "infantry", "red", (3, 0)),
            ("b1", "artillery", "blue", (5, 0)),
        ])
        threats = self.threats(start(state))
        assert set(threats) == {(2, 0), (3, 0), (7, 0), (8, 0)}

    def test_no_ammo_no_threat(self, new_match, start):
        state = new_match([".........."], units=[
            ("r1", "infantry", "red", (3, 0)),
            ("b1", "artillery", "blue", (5, 0)),
        ])
        controller = start(state)
        state.battlefield.get_unit("b1").ammo = 0
        assert self.threats(controller) == {}

    def test_hidden_enemies_threaten_nothing(self, new_match, start):
        state = new_match([".........."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "tank", "blue", (6, 0)),
        ])
        assert self.threats(start(state)) == {}


class TestDoctrines:

    def test_proximity_weight(self, new_match, start):
        scores = {}
        for name in DOCTRINES:
            state = new_match([".........P"], units=[
                ("r1", "infantry", "red", (0, 0)),
                ("b1", "infantry", "blue", (9, 0)),
            ])
            best = ranked(start(state), doctrine=name)[0]
            assert (best.action, best.dest) == ("hold", (3, 0))
            scores[name] = best.score
        assert scores == {"aggressive": 9.0, "balanced": 6.0, "cautious": 3.0}

    def test_threat_weight(self, new_match, start):
        scores = {}
        for name in DOCTRINES:
            state = new_match(["....."], units=[
                ("r1", "infantry", "red", (0, 0)),
                ("b1", "tank", "blue", (2, 0)),
            ])
            candidates = ranked(start(state), doctrine=name)
            stay = next(c for c in candidates if c.action == "hold" and c.dest == (0, 0))
            scores[name] = stay.score
        # a full-strength tank threatens 70 against 100 hp
        assert scores["balanced"] == pytest.approx(-3.5)
        assert scores["aggressive"] == pytest.approx(-1.75)
        assert scores["cautious"] == pytest.approx(-5.25)

    def test_unknown_doctrine(self):
        with pytest.raises(ConfigurationError):
            TacticalAgent(config(doctrine="reckless"))


class TestHiddenInformation:
    """Rankings depend only on what the faction is allowed to see."""

    def test_unseen_structure_owner_is_not_used(self, new_match, start):
        def build(owners):
            state = new_match(["...P........"], factions=("red", "blue", "green"), owners=owners, units=[
                ("r1", "infantry", "red", (0, 0)),
                ("b1", "infantry", "blue", (6, 0)),
                ("g1", "infantry", "green", (11, 0)),
            ])
            return start(state)

        neutral = build({})
        # green is red's ally, but red has never seen the outpost
        allied = build({(3, 0): "green"})

        assert neutral.faction_view("red") == allied.faction_view("red")
        assert ranked(neutral) == ranked(allied)
        assert any(c.action == "capture" and c.dest == (3, 0) for c in ranked(allied))

    def test_hidden_unit_does_not_change_rankings(self, new_match, start):
        units = [("r1", "infantry", "red", (0, 0)), ("b1", "infantry", "blue", (9, 0))]
        plain = start(new_match(["....P....."], units=units))
        lurking = start(new_match(["....P....."], units=units + [("b2", "infantry", "blue", (3, 0))]))

        assert plain.faction_view("red") == lurking.faction_view("red")
        assert ranked(plain) == ranked(lurking)



class TestLLMAgent:

    @pytest.fixture
    def controller(self, new_match, start):
        # Candidates: capture at (0, 0), attack b1, step toward the outpost
        state = new_match(["P...."], units=[
            ("r1", "infantry", "red", (1, 0)),
            ("b1", "infantry", "blue", (2, 0)),
        ])
        return start(state)

    def test_model_choice_is_followed(self, controller):
        client = mock_client(json.dumps({"reasoning": "Hit them first.", "choice": 1}))
        agent = LLMAgent(config(), client=client)
        actions = agent.play_turn(controller)

        assert actions[0]["action"] == "attack"
        assert controller.state.battlefield.get_unit("b1").hp == 72
        assert agent.fallbacks == 0
        assert agent.get_reasoning() == "Hit them first."

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"]["json_schema"]["name"] == "tactical_choice"
        assert "CANDIDATE ACTIONS" in kwargs["messages"][1]["content"]

    @pytest.mark.parametrize("content", [
        "not json",
        json.dumps({"reasoning": "?", "choice": 7}),
        json.dumps({"reasoning": "?"}),
    ])
    def test_bad_response_falls_back(self, controller, content):
        agent = LLMAgent(config(), client=mock_client(content))
        actions = agent.play_turn(controller)

        assert actions[0]["action"] == "capture"
        assert controller.state.battlefield.get_cell((0, 0)).capture_points == 10
        assert agent.fallbacks == 1
        assert agent.get_reasoning() is None

    def test_api_error_falls_back(self, controller):
        client = MagicMock()
        client.chat.completions.create.side_effect = OpenAIError("service unavailable")
        agent = LLMAgent(config(), client=client)
        actions = agent.play_turn(controller)

        assert actions[0]["action"] == "capture"
        assert agent.fallbacks == 1

    def test_single_candidate_skips_the_model(self, new_match, start):
        state = new_match(["....."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (1, 0)),
        ])
        controller = start(state)
        client = mock_client("{}")
        LLMAgent(config(), client=client).play_turn(controller)
        client.chat.completions.create.assert_not_called()

    def test_reset(self, controller):
        agent = LLMAgent(config(), client=mock_client(json.dumps({"reasoning": "ok", "choice": 0})))
        agent.play_turn(controller)
        agent.reset()
        assert agent.turn_count == 0
        assert agent.conversation_history == []
        assert agent.get_reasoning() is None
