"""
Turn-based grid tactics simulation engine.

Core modules:
- rules: Rule tables (terrain, unit types, factions, commanders)
- map: Square grid geometry
- battlefield: Cells plus live units
- movement: Reachability and pathfinding
- combat: Attack resolution
- fog_of_war: Per-faction visibility
- weather: Weather effects and progression
- commanders: Commander bonuses and powers
- turn: Turn sequencing and the action API
- save: Snapshot and restore
- scenario: Scenario loading
"""

from .rules import RuleTables, UnitClass, PowerEffect, load_rule_tables
from .map import GridMap, Cell
from .units import Unit
from .battlefield import Battlefield
from .state import MatchState, FactionState, TurnState, Phase
from .fog_of_war import FogOfWar
from .combat import CombatResolver, CombatOutcome
from .movement import MoveResult, ReachableCell
from .weather import Weather, WeatherState
from .turn import TurnController, CaptureResult, EndTurnResult, JoinResult
from .save import snapshot, restore, save_game, load_game
from .scenario import load_scenario, build_match
from .errors import SkirmishError, ActionError, ConfigurationError

__all__ = [
    # Rules
    "RuleTables", "UnitClass", "PowerEffect", "load_rule_tables",
    # Battlefield
    "GridMap", "Cell", "Unit", "Battlefield",
    # State
    "MatchState", "FactionState", "TurnState", "Phase",
    # Systems
    "FogOfWar", "CombatResolver", "CombatOutcome", "MoveResult", "ReachableCell",
    "Weather", "WeatherState",
    # Turn Management
    "TurnController", "CaptureResult", "EndTurnResult", "JoinResult",
    # Persistence
    "snapshot", "restore", "save_game", "load_game", "load_scenario", "build_match",
    # Errors
    "SkirmishError", "ActionError", "ConfigurationError",
]
