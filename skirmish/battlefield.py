"""
Battlefield model: the grid plus the set of live units.

Handles:
- Unit lookup by id and by position (both indices updated together)
- Placement, relocation and removal with occupancy checks
- Capture progress on capturable cells
"""

import logging
from typing import Iterator, Optional

from .errors import OccupiedCell, OutOfBounds
from .map import Cell, Coord, GridMap, scan_key
from .rules import RuleTables
from .units import Unit

logger = logging.getLogger(__name__)


class Battlefield:
    """Grid of cells and the units standing on it."""

    def __init__(self, grid: GridMap):
        self.grid = grid
        self.units: dict[str, Unit] = {}
        self._positions: dict[Coord, str] = {}
        # Bumped on every mutation; visibility caches key on it
        self.revision = 0

    @property
    def rules(self) -> RuleTables:
        return self.grid.rules

    def touch(self):
        self.revision += 1

    # Lookups
    def get_cell(self, pos: Coord) -> Optional[Cell]:
        return self.grid.get_cell(pos)

    def get_unit(self, unit_id: str) -> Optional[Unit]:
        return self.units.get(unit_id)

    def unit_at(self, pos: Coord) -> Optional[Unit]:
        unit_id = self._positions.get(pos)
        return self.units[unit_id] if unit_id else None

    def is_occupied(self, pos: Coord) -> bool:
        return pos in self._positions

    def iter_units(self) -> Iterator[Unit]:
        """Units in scan order of their position."""
        for pos in sorted(self._positions, key=scan_key):
            yield self.units[self._positions[pos]]

    def get_units_by_faction(self, faction: str) -> list[Unit]:
        return [u for u in self.iter_units() if u.faction == faction]

    def count_units(self, faction: str) -> int:
        """Units the faction fields, counting those loaded in transports."""
        return sum(1 + len(u.cargo) for u in self.units.values() if u.faction == faction)

    # Mutation
    def place_unit(self, unit: Unit):
        """Add a unit at its recorded position."""
        pos = unit.pos
        if not self.grid.in_bounds(pos):
            raise OutOfBounds(f"Cannot place {unit.id} at {pos}: outside the grid", unit.id)
        if pos in self._positions:
            raise OccupiedCell(f"Cannot place {unit.id} at {pos}: occupied by {self._positions[pos]}", unit.id)
        if unit.id in self.units:
            raise OccupiedCell(f"Unit id {unit.id} already on the battlefield", unit.id)
        self.rules.unit_type(unit.unit_type)

        self.units[unit.id] = unit
        self._positions[pos] = unit.id
        self.touch()

    def remove_unit(self, unit_id: str) -> Unit:
        """Remove a unit from both indices and clear any capture it held."""
        unit = self.units.pop(unit_id)
        del self._positions[unit.pos]
        self._abandon_capture(unit)
        self.touch()
        return unit

    def relocate_unit(self, unit: Unit, pos: Coord):
        if not self.grid.in_bounds(pos):
            raise OutOfBounds(f"{pos} lies outside the grid", unit.id)
        if pos == unit.pos:
            return
        if pos in self._positions:
            raise OccupiedCell(f"{pos} is occupied by {self._positions[pos]}", unit.id)

        self._abandon_capture(unit)
        del self._positions[unit.pos]
        unit.x, unit.y = pos
        self._positions[pos] = unit.id
        self.touch()

    # Capture
    def advance_capture(self, unit: Unit, amount: int) -> bool:
        """
        Add capture points for the unit on its current cell.

        Returns True when the threshold is reached; ownership then transfers
        and progress resets to zero.
        """
        cell = self.grid.require_cell(unit.pos)
        terrain = self.rules.terrain_type(cell.terrain)

        if cell.capturing_faction != unit.faction:
            cell.capture_points = 0
            cell.capturing_faction = unit.faction

        cell.capture_points = min(terrain.capture_threshold, cell.capture_points + amount)
        self.touch()

        if cell.capture_points >= terrain.capture_threshold:
            previous = cell.owner
            cell.owner = unit.faction
            cell.reset_capture()
            logger.info(f"{unit.faction} captured {terrain.name} at {cell.pos} (from {previous or 'neutral'})")
            return True

        logger.debug(f"{unit.id} capture {cell.capture_points}/{terrain.capture_threshold} at {cell.pos}")
        return False

    def _abandon_capture(self, unit: Unit):
        cell = self.grid.get_cell(unit.pos)
        if cell and cell.capturing_faction == unit.faction and cell.capture_points:
            cell.reset_capture()

    def set_owner(self, pos: Coord, faction: Optional[str]):
        cell = self.grid.require_cell(pos)
        cell.owner = faction
        cell.reset_capture()
        self.touch()

    def check_integrity(self) -> bool:
        """True when both unit indices agree."""
        if len(self._positions) != len(self.units):
            return False
        return all(self._positions.get(u.pos) == uid for uid, u in self.units.items())
