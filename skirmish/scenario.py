"""
Scenario loading: map, factions and starting units from YAML.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from .battlefield import Battlefield
from .errors import ActionError, ConfigurationError
from .map import GridMap
from .rules import RuleTables
from .state import FactionState, MatchState
from .units import Unit
from .weather import Weather, WeatherState

logger = logging.getLogger(__name__)


def build_match(data: dict[str, Any], rules: RuleTables) -> MatchState:
    """Create a fresh MatchState from parsed scenario data."""
    meta = data.get("scenario", {})
    map_data = data.get("map") or {}
    if "rows" not in map_data:
        raise ConfigurationError("Scenario map needs 'rows'")

    grid = GridMap.from_rows(map_data["rows"], rules)
    for entry in map_data.get("owners", []):
        pos = tuple(entry["pos"])
        if not grid.in_bounds(pos):
            raise ConfigurationError(f"Owned cell {pos} lies outside the map")
        rules.faction(entry["owner"])
        grid.cells[pos].owner = entry["owner"]

    factions = []
    for entry in data.get("factions", []):
        faction_def = rules.faction(entry["id"])
        factions.append(FactionState(
            id=faction_def.id,
            team=entry.get("team", faction_def.team),
            commander_id=entry.get("commander"),
            resources=int(entry.get("funds", 0)),
        ))
    if len(factions) < 2:
        raise ConfigurationError("A scenario needs at least two factions")

    weather = WeatherState(
        current=Weather(meta.get("weather", "clear")),
        dynamic=bool(meta.get("dynamic_weather", True)),
        change_chance=int(meta.get("weather_change_chance", 20)),
    )
    battlefield = Battlefield(grid)
    state = MatchState(rules, battlefield, factions, seed=int(meta.get("seed", 0)), weather=weather)

    for entry in data.get("units", []):
        faction_id = entry["faction"]
        state.faction(faction_id)
        unit_type = rules.unit_type(entry["type"])
        unit_id = entry.get("id") or state.new_unit_id(faction_id)
        unit = Unit.create(unit_id, unit_type, faction_id, tuple(entry["pos"]))
        if "hp" in entry:
            unit.hp = max(1, min(unit_type.max_hp, int(entry["hp"])))
        for loaded in entry.get("cargo", []):
            loaded_type = rules.unit_type(loaded["type"])
            if not unit_type.can_carry(loaded_type) or len(unit.cargo) >= unit_type.transport_capacity:
                raise ConfigurationError(f"{unit_type.name} {unit_id} cannot carry {loaded_type.name}")
            loaded_id = loaded.get("id") or state.new_unit_id(faction_id)
            unit.cargo.append(Unit.create(loaded_id, loaded_type, faction_id, unit.pos))
        try:
            battlefield.place_unit(unit)
        except ActionError as exc:
            raise ConfigurationError(f"Bad unit placement in scenario: {exc}") from exc

    logger.info(
        f"Scenario loaded: {meta.get('name', 'Unnamed')} "
        f"({grid.width}x{grid.height}, {len(battlefield.units)} units, {len(factions)} factions)"
    )
    return state


def load_scenario(path: Path | str, rules: RuleTables) -> MatchState:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Scenario not found: {path}")
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return build_match(data, rules)
