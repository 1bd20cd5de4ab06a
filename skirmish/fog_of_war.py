"""
Fog of war and visibility for each faction.

Handles:
- Visible cell computation by ring expansion from every friendly observer
- Terrain vision blockers and concealing terrain
- Structure memory (explored cells, last-seen owner of capturable cells)
- Caching against the match revision counter
"""

import logging
from collections import deque
from typing import Optional

from . import commanders
from .map import Coord
from .rules import UnitClass
from .state import MatchState
from .units import Unit

logger = logging.getLogger(__name__)


class FogOfWar:
    """
    Computes what each faction can currently see.

    Enemy units are never remembered: a unit outside the visible set is
    unknown even if it was seen on an earlier turn. Structures are
    remembered with the owner they had when last seen.
    """

    def __init__(self):
        self._cache: dict[str, tuple[int, frozenset[Coord]]] = {}

    def visible_cells(self, state: MatchState, faction_id: str) -> frozenset[Coord]:
        """Cells the faction currently sees."""
        cached = self._cache.get(faction_id)
        if cached and cached[0] == state.revision:
            return cached[1]

        visible = frozenset(self._compute_visible(state, faction_id))
        self._remember(state, faction_id, visible)
        self._cache[faction_id] = (state.revision, visible)
        logger.debug(f"Visibility for {faction_id}: {len(visible)} cells (rev {state.revision})")
        return visible

    def is_visible(self, state: MatchState, faction_id: str, pos: Coord) -> bool:
        return pos in self.visible_cells(state, faction_id)

    def can_see_unit(self, state: MatchState, faction_id: str, unit: Unit) -> bool:
        if state.is_friendly(faction_id, unit.faction):
            return True
        return unit.pos in self.visible_cells(state, faction_id)

    def visible_enemy_units(self, state: MatchState, faction_id: str) -> list[Unit]:
        visible = self.visible_cells(state, faction_id)
        return [
            u for u in state.battlefield.iter_units()
            if state.is_enemy(faction_id, u.faction) and u.pos in visible
        ]

    def remembered_structures(self, state: MatchState, faction_id: str) -> dict[Coord, Optional[str]]:
        """Capturable cells the faction has seen, with their last-seen owner."""
        self.visible_cells(state, faction_id)
        return dict(state.faction(faction_id).remembered_owners)

    # Computation
    def _compute_visible(self, state: MatchState, faction_id: str) -> set[Coord]:
        grid = state.battlefield.grid
        if not state.rules.settings.fog_enabled or commanders.reveals_map(state, faction_id):
            return set(grid.cells)

        visible: set[Coord] = set()
        weather = state.weather

        for unit in state.battlefield.iter_units():
            if not state.is_friendly(faction_id, unit.faction):
                continue
            unit_type = unit.type_info(state.rules)
            bonus = commanders.get_bonuses(state, unit.faction).vision
            terrain = grid.terrain_at(unit.pos)
            vision = weather.apply_vision(unit_type.vision + bonus + terrain.vision_bonus)
            airborne = unit_type.unit_class == UnitClass.AIR
            visible |= self._cast_vision(state, unit.pos, vision, airborne)

        for cell in grid.iter_cells():
            if cell.owner is None or not state.is_friendly(faction_id, cell.owner):
                continue
            sight = state.rules.terrain_type(cell.terrain).sight
            if sight > 0:
                visible |= self._cast_vision(state, cell.pos, weather.apply_vision(sight), False)

        return visible

    def _cast_vision(self, state: MatchState, origin: Coord, vision: int, airborne: bool) -> set[Coord]:
        """Ring expansion over the 4-neighborhood up to the vision range."""
        grid = state.battlefield.grid
        threshold = state.rules.settings.vision_block_threshold
        observer_height = grid.terrain_at(origin).vision_height

        seen = {origin}
        distance = {origin: 0}
        frontier = deque([origin])

        while frontier:
            pos = frontier.popleft()
            d = distance[pos]
            if pos != origin and not airborne:
                height = grid.terrain_at(pos).vision_height
                if height > threshold and height > observer_height:
                    # Blocker is seen but hides what lies behind it
                    continue
            if d >= vision:
                continue
            for neighbor in grid.get_neighbors(pos):
                if neighbor in distance:
                    continue
                distance[neighbor] = d + 1
                frontier.append(neighbor)
                terrain = grid.terrain_at(neighbor)
                if terrain.conceals and d + 1 > 1:
                    continue
                seen.add(neighbor)

        return seen

    def _remember(self, state: MatchState, faction_id: str, visible: frozenset[Coord]):
        faction = state.faction(faction_id)
        grid = state.battlefield.grid
        faction.explored.update(visible)
        for pos in visible:
            cell = grid.cells[pos]
            if state.rules.terrain_type(cell.terrain).capturable:
                faction.remembered_owners[pos] = cell.owner
