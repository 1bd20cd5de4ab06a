"""
Movement range and pathfinding.

Reachable cells come from a uniform-cost expansion (Dijkstra) over the
4-neighborhood, ordered by (cost, row, column) so results never depend on
hash ordering. The search only knows what the moving faction can see:
hidden enemies do not block it, and running into one during the move is an
ambush.
"""

import heapq
import logging
from dataclasses import dataclass
from typing import Optional

from . import commanders
from .errors import AlreadyActed, AlreadyMoved, OccupiedCell, UnreachableCell
from .fog_of_war import FogOfWar
from .map import Coord, scan_key
from .state import MatchState
from .units import Unit

logger = logging.getLogger(__name__)

LOAD = "load"
JOIN = "join"


@dataclass(frozen=True)
class ReachableCell:
    pos: Coord
    cost: int
    path: tuple[Coord, ...]
    merge_with: Optional[str] = None  # unit to board or join on arrival


@dataclass
class MoveResult:
    """Outcome of a committed move."""
    unit_id: str
    path: list[Coord]
    cost: int
    trapped: bool = False
    ambushed_by: Optional[str] = None

    @property
    def destination(self) -> Coord:
        return self.path[-1]


def movement_allowance(state: MatchState, unit: Unit) -> int:
    """Movement points this turn: type + commander, weather adjusted, capped by fuel."""
    unit_type = unit.type_info(state.rules)
    bonus = commanders.get_bonuses(state, unit.faction).movement
    allowance = state.weather.apply_movement(unit_type.movement + bonus)
    return min(allowance, unit.fuel)


def enter_cost(state: MatchState, unit: Unit, pos: Coord) -> Optional[int]:
    """Cost for the unit to enter a cell, or None when impassable."""
    unit_type = unit.type_info(state.rules)
    return state.battlefield.grid.terrain_at(pos).cost_for(unit_type.unit_class)


def merge_kind(state: MatchState, unit: Unit, other: Unit) -> Optional[str]:
    """
    How the unit could end its move on other's cell.

    LOAD when other is an own transport with room for it, JOIN when other is
    a damaged own unit of the same type. Loaded transports never join and a
    unit carrying cargo never boards.
    """
    if other.id == unit.id or other.faction != unit.faction or unit.cargo:
        return None
    rules = state.rules
    other_type = other.type_info(rules)
    if other_type.can_carry(unit.type_info(rules)) and len(other.cargo) < other_type.transport_capacity:
        return LOAD
    if other.unit_type == unit.unit_type and other.hp < other_type.max_hp and not other.cargo:
        return JOIN
    return None


def reachable(
    state: MatchState, unit: Unit, fog: FogOfWar, merges: bool = False
) -> dict[Coord, ReachableCell]:
    """
    Every cell the unit can end its move on, with cheapest cost and path.

    Friendly units can be passed through but not stopped on, unless merges
    is set and the unit could board or join the one standing there. Enemy
    units visible to the mover block. A unit that has moved or acted can
    only stay where it is.
    """
    origin = unit.pos
    stay = {origin: ReachableCell(origin, 0, (origin,))}
    if unit.moved or unit.acted:
        return stay

    battlefield = state.battlefield
    grid = battlefield.grid
    allowance = movement_allowance(state, unit)
    visible = fog.visible_cells(state, unit.faction)

    best: dict[Coord, int] = {origin: 0}
    came_from: dict[Coord, Coord] = {}
    settled: set[Coord] = set()
    heap = [(0, scan_key(origin), origin)]

    while heap:
        cost, _, pos = heapq.heappop(heap)
        if pos in settled:
            continue
        settled.add(pos)

        for neighbor in grid.get_neighbors(pos):
            if neighbor in settled:
                continue
            step = enter_cost(state, unit, neighbor)
            if step is None:
                continue
            new_cost = cost + step
            if new_cost > allowance:
                continue
            occupant = battlefield.unit_at(neighbor)
            if occupant and state.is_enemy(unit.faction, occupant.faction) and neighbor in visible:
                continue
            if new_cost < best.get(neighbor, new_cost + 1):
                best[neighbor] = new_cost
                came_from[neighbor] = pos
                heapq.heappush(heap, (new_cost, scan_key(neighbor), neighbor))

    result: dict[Coord, ReachableCell] = {}
    for pos in sorted(settled, key=scan_key):
        occupant = battlefield.unit_at(pos)
        merge_with = None
        if occupant and occupant.id != unit.id and state.is_friendly(unit.faction, occupant.faction):
            if not merges or merge_kind(state, unit, occupant) is None:
                continue
            merge_with = occupant.id
        path = tuple(_reconstruct(came_from, origin, pos))
        result[pos] = ReachableCell(pos, best[pos], path, merge_with)

    logger.debug(f"{unit.id} at {origin}: {len(result)} reachable cells (allowance {allowance})")
    return result


def _reconstruct(came_from: dict[Coord, Coord], origin: Coord, target: Coord) -> list[Coord]:
    path = [target]
    while path[-1] != origin:
        path.append(came_from[path[-1]])
    path.reverse()
    return path


def validate_move(
    state: MatchState, unit: Unit, target: Coord, fog: FogOfWar, onto: Optional[Unit] = None
) -> ReachableCell:
    """Raise the matching ActionError if the move is illegal; otherwise return the route."""
    if unit.acted:
        raise AlreadyActed(f"{unit.id} has already acted this turn", unit.id)
    if unit.moved:
        raise AlreadyMoved(f"{unit.id} has already moved this turn", unit.id)

    grid = state.battlefield.grid
    grid.require_cell(target)

    occupant = state.battlefield.unit_at(target)
    if occupant and occupant.id != unit.id and occupant is not onto:
        known = state.is_friendly(unit.faction, occupant.faction) or fog.is_visible(state, unit.faction, target)
        if known:
            raise OccupiedCell(f"{target} is occupied by {occupant.id}", unit.id)

    route = reachable(state, unit, fog, merges=onto is not None).get(target)
    if route is None or (onto is not None and route.merge_with != onto.id):
        raise UnreachableCell(f"{unit.id} cannot reach {target}", unit.id)
    return route


def apply_move(
    state: MatchState, unit: Unit, target: Coord, fog: FogOfWar, onto: Optional[Unit] = None
) -> MoveResult:
    """
    Move the unit along its cheapest known path.

    If a hidden enemy stands on the path the unit stops on the last free
    cell before it, and its turn is over. When onto is given and the unit
    arrives, it leaves the battlefield; the caller stows or merges it.
    """
    route = validate_move(state, unit, target, fog, onto)
    battlefield = state.battlefield

    stop = 0
    ambusher = None
    for i, pos in enumerate(route.path[1:], start=1):
        occupant = battlefield.unit_at(pos)
        if occupant and state.is_enemy(unit.faction, occupant.faction):
            ambusher = occupant
            break
        if occupant is None:
            stop = i
    else:
        stop = len(route.path) - 1

    path = list(route.path[:stop + 1])
    cost = sum(enter_cost(state, unit, pos) for pos in path[1:])

    if onto is not None and ambusher is None:
        battlefield.remove_unit(unit.id)
        unit.x, unit.y = path[-1]
    else:
        battlefield.relocate_unit(unit, path[-1])
    unit.fuel = max(0, unit.fuel - cost)
    unit.moved = True
    if ambusher:
        unit.acted = True
        battlefield.touch()
        logger.info(f"{unit.id} ambushed by {ambusher.id}; stopped at {path[-1]}")
        return MoveResult(unit.id, path, cost, trapped=True, ambushed_by=ambusher.id)

    battlefield.touch()
    logger.debug(f"{unit.id} moved {path[0]} -> {path[-1]} (cost {cost})")
    return MoveResult(unit.id, path, cost)
