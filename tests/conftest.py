"""
Shared fixtures: a compact rule table built in code and small ASCII maps.

Map symbols:
    .  grass      F  forest (foliage)   T  thicket (conceals)
    #  wall       ~  water              B  base (HQ)   P  outpost
"""

import copy
from pathlib import Path

import pytest

from skirmish import RuleTables, TurnController, build_match, load_rule_tables

DATA_PATH = Path(__file__).parent.parent / "data"

GROUND = {"foot": 1, "wheels": 1, "treads": 1, "air": 1}

RULES_DATA = {
    "terrain_types": {
        "grass": {"symbol": ".", "defense_bonus": 0, "movement_cost": dict(GROUND)},
        "forest": {
            "symbol": "F", "defense_bonus": 2, "foliage": True,
            "movement_cost": {"foot": 1, "wheels": 2, "treads": 2, "air": 1},
        },
        "thicket": {
            "symbol": "T", "defense_bonus": 1, "conceals": True,
            "movement_cost": {"foot": 1, "wheels": 2, "treads": 2, "air": 1},
        },
        "wall": {
            "symbol": "#", "defense_bonus": 4, "vision_height": 3, "vision_bonus": 1,
            "movement_cost": {"foot": 2, "air": 1},
        },
        "water": {"symbol": "~", "defense_bonus": 0, "movement_cost": {"air": 1, "naval": 1}},
        "base": {
            "symbol": "B", "defense_bonus": 3, "capturable": True, "capture_threshold": 20,
            "income": 1000, "sight": 1, "resupplies": True, "required": True,
            "produces": ["foot", "wheels", "treads"], "movement_cost": dict(GROUND),
        },
        "outpost": {
            "symbol": "P", "defense_bonus": 2, "capturable": True, "capture_threshold": 20,
            "income": 1000, "movement_cost": dict(GROUND),
        },
    },
    "unit_types": {
        "infantry": {
            "class": "foot", "attack": 55, "defense": 100, "movement": 3,
            "attack_range": [1, 1], "vision": 2, "cost": 1000, "can_capture": True,
        },
        "tank": {
            "class": "treads", "attack": 70, "defense": 60, "movement": 5,
            "attack_range": [1, 1], "vision": 3, "cost": 7000, "max_ammo": 9, "max_fuel": 60,
        },
        "artillery": {
            "class": "treads", "attack": 60, "defense": 40, "movement": 4,
            "attack_range": [2, 3], "vision": 2, "cost": 6000, "max_ammo": 6,
        },
        "flyer": {
            "class": "air", "attack": 50, "defense": 50, "movement": 6,
            "attack_range": [1, 1], "vision": 4, "cost": 8000,
        },
        "supply": {
            "class": "treads", "attack": 0, "defense": 50, "movement": 5,
            "attack_range": [0, 0], "vision": 2, "cost": 5000, "supplies": True,
        },
        "carrier": {
            "class": "treads", "attack": 0, "defense": 70, "movement": 5,
            "attack_range": [0, 0], "vision": 2, "cost": 5000,
            "transport_capacity": 1, "carries": ["foot"],
        },
    },
    "factions": {
        "red": {"team": "red"},
        "blue": {"team": "blue"},
        "green": {"team": "red"},
        "gold": {"team": "gold"},
    },
    "commanders": {
        "striker": {
            "power": {"name": "Overdrive", "cost": 100, "effect": "stat_boost",
                      "params": {"attack": 1.5, "defense": 1.0, "movement": 1}},
        },
        "bulwark": {
            "defense_bonus": 1.2,
            "power": {"name": "Bastion", "cost": 100, "effect": "defense_and_heal",
                      "params": {"defense": 1.5, "heal": 20}},
        },
        "banker": {
            "income_bonus": 1.5, "cost_modifier": 0.5,
            "power": {"name": "Windfall", "cost": 100, "effect": "bonus_funds",
                      "params": {"multiplier": 0.5}},
        },
        "seer": {
            "vision_bonus": 1,
            "power": {"name": "Clear Sight", "cost": 100, "effect": "reveal_and_boost",
                      "params": {"attack": 1.2}},
        },
        "mustering": {
            "power": {"name": "Levy", "cost": 100, "effect": "free_units",
                      "params": {"unit_type": "infantry"}},
        },
        "runner": {
            "movement_bonus": 1, "charge_per_turn": 10,
            "power": {"name": "Dash", "cost": 100, "effect": "extra_move"},
        },
    },
}


@pytest.fixture
def rules_data():
    """A fresh, mutable copy of the test rule data."""
    return copy.deepcopy(RULES_DATA)


@pytest.fixture
def rules(rules_data):
    return RuleTables.from_dict(rules_data)


@pytest.fixture(scope="session")
def repo_rules():
    """The rule tables shipped in data/rules."""
    return load_rule_tables(DATA_PATH)


@pytest.fixture
def new_match(rules):
    """
    Build a MatchState from ASCII rows.

    units: (id, unit_type, faction, (x, y)) tuples
    owners: {(x, y): faction}
    """

    def build(
        rows,
        units=(),
        owners=None,
        factions=("red", "blue"),
        commanders=None,
        funds=None,
        weather="clear",
        dynamic_weather=False,
        seed=0,
        rule_tables=None,
    ):
        data = {
            "scenario": {
                "name": "test",
                "seed": seed,
                "weather": weather,
                "dynamic_weather": dynamic_weather,
            },
            "map": {
                "rows": list(rows),
                "owners": [{"pos": list(pos), "owner": owner} for pos, owner in (owners or {}).items()],
            },
            "factions": [
                {
                    "id": faction_id,
                    "commander": (commanders or {}).get(faction_id),
                    "funds": (funds or {}).get(faction_id, 0),
                }
                for faction_id in factions
            ],
            "units": [
                {"id": unit_id, "type": unit_type, "faction": faction, "pos": list(pos)}
                for unit_id, unit_type, faction, pos in units
            ],
        }
        return build_match(data, rule_tables or rules)

    return build


@pytest.fixture
def start():
    """Start a match and return its controller."""

    def begin(state):
        controller = TurnController(state)
        controller.start_match()
        return controller

    return begin
