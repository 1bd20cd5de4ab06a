"""
Match state aggregate.

MatchState owns every mutable part of a match: the battlefield, per-faction
state, turn state, weather and fog memory. The rule tables are held as a
separate read-only reference.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .battlefield import Battlefield
from .errors import UnknownIdentifier
from .map import Cell, Coord
from .rules import RuleTables
from .weather import WeatherState


class Phase(Enum):
    """Turn phases in order of execution."""
    TURN_START = "turn_start"
    UNIT_ACTIONS = "unit_actions"
    TURN_END = "turn_end"


@dataclass
class TurnState:
    """State of the current turn."""
    active_index: int = 0
    turn_number: int = 1
    phase: Phase = Phase.TURN_START
    started: bool = False
    log: list[dict] = field(default_factory=list)
    history: list[list[dict]] = field(default_factory=list)


@dataclass
class FactionState:
    """Mutable per-faction state."""
    id: str
    team: str
    commander_id: Optional[str] = None
    resources: int = 0
    charge: int = 0
    power_active: bool = False
    eliminated: bool = False
    started_with_required: bool = False
    # Fog memory: cells seen at least once and last-seen owner of capturable cells
    explored: set[Coord] = field(default_factory=set)
    remembered_owners: dict[Coord, Optional[str]] = field(default_factory=dict)


class MatchState:
    """Complete match state."""

    def __init__(
        self,
        rules: RuleTables,
        battlefield: Battlefield,
        factions: list[FactionState],
        seed: int = 0,
        weather: Optional[WeatherState] = None,
    ):
        self.rules = rules
        self.battlefield = battlefield
        # Insertion order is the turn rotation
        self.factions: dict[str, FactionState] = {}
        for faction in factions:
            rules.faction(faction.id)
            if faction.commander_id is not None:
                rules.commander(faction.commander_id)
            self.factions[faction.id] = faction
        self.turn = TurnState()
        self.weather = weather or WeatherState()
        self.seed = seed
        self.next_unit_serial = 1
        self.game_over = False
        self.winner: list[str] = []

    @property
    def revision(self) -> int:
        return self.battlefield.revision

    def touch(self):
        """Record a mutation that is not a battlefield change."""
        self.battlefield.touch()

    # Factions
    @property
    def faction_order(self) -> list[str]:
        return list(self.factions)

    @property
    def active_faction(self) -> str:
        return self.faction_order[self.turn.active_index]

    def faction(self, faction_id: str) -> FactionState:
        try:
            return self.factions[faction_id]
        except KeyError:
            raise UnknownIdentifier("faction", faction_id) from None

    def live_factions(self) -> list[str]:
        return [fid for fid, f in self.factions.items() if not f.eliminated]

    def is_friendly(self, a: str, b: str) -> bool:
        """Same faction or same team."""
        return a == b or self.factions[a].team == self.factions[b].team

    def is_enemy(self, a: str, b: str) -> bool:
        return not self.is_friendly(a, b)

    # Units
    def new_unit_id(self, faction_id: str) -> str:
        while True:
            unit_id = f"{faction_id}-{self.next_unit_serial}"
            self.next_unit_serial += 1
            if unit_id not in self.battlefield.units:
                return unit_id

    # Territory
    def owned_cells(self, faction_id: str) -> list[Cell]:
        return self.battlefield.grid.get_cells_by_owner(faction_id)

    def owns_required(self, faction_id: str) -> bool:
        return any(
            self.rules.terrain_type(c.terrain).required for c in self.owned_cells(faction_id)
        )

    def base_income(self, faction_id: str) -> int:
        return sum(self.rules.terrain_type(c.terrain).income for c in self.owned_cells(faction_id))

    # Log
    def log_action(self, action: str, **details):
        entry = {
            "turn": self.turn.turn_number,
            "faction": self.active_faction,
            "action": action,
            **details,
        }
        self.turn.log.append(entry)
