"""
Turn controller: faction rotation, phase sequencing and the action API.

Each faction turn runs TURN_START -> UNIT_ACTIONS -> TURN_END. Every
apply_* call validates fully before touching state, so a raised ActionError
leaves the match exactly as it was.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Optional

from . import commanders
from .combat import CombatOutcome, CombatResolver
from .errors import (
    AlreadyActed,
    InsufficientFunds,
    InvalidAction,
    InvalidTurnState,
    NotVisible,
    OccupiedCell,
    OutOfRange,
    UnknownIdentifier,
)
from .fog_of_war import FogOfWar
from .map import Coord, manhattan
from .movement import JOIN, LOAD, MoveResult, ReachableCell, apply_move, enter_cost, merge_kind, reachable
from .rules import PowerDef
from .state import MatchState, Phase
from .units import Unit

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    unit_id: str
    pos: Coord
    progress: int
    threshold: int
    captured: bool = False


@dataclass
class EndTurnResult:
    faction: str
    turn: int
    next_faction: Optional[str]
    resupplied: list[str]
    repaired: list[str]
    game_over: bool = False
    winner: Optional[list[str]] = None
    # Damaged units on a depot whose repair the faction could not pay for
    unrepaired: list[str] = field(default_factory=list)


@dataclass
class JoinResult:
    unit_id: str
    target_id: str
    hp: int
    refund: int = 0
    trapped: bool = False


class TurnController:
    """Drives a match and exposes the action API used by players and agents."""

    def __init__(self, state: MatchState, fog: Optional[FogOfWar] = None):
        self.state = state
        self.fog = fog or FogOfWar()
        self.combat = CombatResolver()

    @property
    def rules(self):
        return self.state.rules

    @property
    def active_faction(self) -> str:
        return self.state.active_faction

    @property
    def phase(self) -> Phase:
        return self.state.turn.phase

    # Match flow
    def start_match(self):
        """Enter the first faction's turn."""
        state = self.state
        if state.turn.started:
            raise InvalidTurnState("Match already started")
        if not state.factions:
            raise InvalidTurnState("Match has no factions")

        for faction_id, faction in state.factions.items():
            faction.started_with_required = faction.started_with_required or state.owns_required(faction_id)

        state.turn.started = True
        logger.info(f"Match started: {', '.join(state.faction_order)}")
        self._begin_turn()

    def _begin_turn(self):
        state = self.state
        turn = state.turn

        while True:
            turn.phase = Phase.TURN_START
            self.evaluate_victory()
            if state.game_over:
                return
            if not state.faction(state.active_faction).eliminated:
                break
            self._advance_rotation()

        faction_id = state.active_faction
        faction = state.faction(faction_id)

        for unit in state.battlefield.get_units_by_faction(faction_id):
            unit.reset_turn()
            for loaded in unit.cargo:
                loaded.reset_turn()

        commander = commanders.get_commander(state, faction_id)
        if commander and commander.charge_per_turn:
            commanders.add_charge(state, faction_id, commander.charge_per_turn)

        bonuses = commanders.get_bonuses(state, faction_id)
        income = math.floor(state.base_income(faction_id) * bonuses.income)
        faction.resources += income

        turn.phase = Phase.UNIT_ACTIONS
        state.touch()
        logger.info(
            f"Turn {turn.turn_number}: {faction_id} (+{income} funds, {faction.resources} total, "
            f"weather {state.weather.current.value})"
        )

    def _advance_rotation(self):
        state = self.state
        count = len(state.faction_order)
        for _ in range(count):
            state.turn.active_index = (state.turn.active_index + 1) % count
            if state.turn.active_index == 0:
                state.turn.turn_number += 1
            if not state.faction(state.active_faction).eliminated:
                return

    def evaluate_victory(self) -> bool:
        """Eliminate beaten factions; return True when the match is over."""
        state = self.state
        for faction_id, faction in state.factions.items():
            if faction.eliminated:
                continue
            no_units = state.battlefield.count_units(faction_id) == 0
            lost_hq = faction.started_with_required and not state.owns_required(faction_id)
            if no_units or lost_hq:
                self._eliminate(faction_id, "no units left" if no_units else "lost its headquarters")

        live = state.live_factions()
        teams = {state.faction(fid).team for fid in live}
        if len(teams) <= 1 and not state.game_over:
            state.game_over = True
            state.winner = live
            logger.info(f"Match over after turn {state.turn.turn_number}: winner {', '.join(live) or 'none'}")
        return state.game_over

    def _eliminate(self, faction_id: str, reason: str):
        state = self.state
        state.faction(faction_id).eliminated = True
        for unit in state.battlefield.get_units_by_faction(faction_id):
            state.battlefield.remove_unit(unit.id)
        for cell in state.owned_cells(faction_id):
            state.battlefield.set_owner(cell.pos, None)
        state.touch()
        logger.info(f"{faction_id} eliminated: {reason}")

    def end_turn(self) -> EndTurnResult:
        """Finish the active faction's turn and start the next one."""
        state = self.state
        self._require_unit_phase()
        faction_id = state.active_faction
        turn_number = state.turn.turn_number
        state.turn.phase = Phase.TURN_END

        resupplied, repaired, unrepaired = self._resupply(faction_id)
        commanders.clear_power(state, faction_id)
        state.weather.advance(state.seed, turn_number, state.turn.active_index)

        state.log_action("end_turn")
        state.turn.history.append(state.turn.log)
        state.turn.log = []
        state.touch()

        self._advance_rotation()
        self._begin_turn()

        return EndTurnResult(
            faction=faction_id,
            turn=turn_number,
            next_faction=None if state.game_over else state.active_faction,
            resupplied=resupplied,
            repaired=repaired,
            game_over=state.game_over,
            winner=list(state.winner) if state.game_over else None,
            unrepaired=unrepaired,
        )

    def _resupply(self, faction_id: str) -> tuple[list[str], list[str], list[str]]:
        """Refill ammo and fuel on supply cells or next to a supply unit; repair on owned supply cells."""
        state = self.state
        rules = self.rules
        battlefield = state.battlefield
        faction = state.faction(faction_id)
        repair_hp = rules.settings.repair_hp
        resupplied, repaired, unrepaired = [], [], []

        for unit in battlefield.get_units_by_faction(faction_id):
            unit_type = unit.type_info(rules)
            cell = battlefield.get_cell(unit.pos)
            terrain = rules.terrain_type(cell.terrain)
            on_depot = terrain.resupplies and cell.owner == faction_id
            near_supplier = self._next_to_supplier(unit)

            if (on_depot or near_supplier) and unit.resupply(unit_type):
                resupplied.append(unit.id)

            if on_depot and unit.hp < unit_type.max_hp and repair_hp > 0:
                healed = min(repair_hp, unit_type.max_hp - unit.hp)
                cost = math.ceil(unit_type.cost * healed / unit_type.max_hp)
                if cost <= faction.resources:
                    faction.resources -= cost
                    unit.heal(healed, unit_type.max_hp)
                    repaired.append(unit.id)
                    logger.debug(f"Repaired {unit.id} by {healed} for {cost}")
                else:
                    unrepaired.append(unit.id)
                    logger.info(f"{faction_id} cannot afford {cost} to repair {unit.id}")

        if resupplied or repaired:
            state.touch()
        return resupplied, repaired, unrepaired

    def _next_to_supplier(self, unit: Unit) -> bool:
        battlefield = self.state.battlefield
        for pos in battlefield.grid.get_neighbors(unit.pos):
            other = battlefield.unit_at(pos)
            if other and other.faction == unit.faction and other.type_info(self.rules).supplies:
                return True
        return False

    # Validation helpers
    def _require_unit_phase(self, faction_id: Optional[str] = None):
        state = self.state
        if not state.turn.started:
            raise InvalidTurnState("Match has not started")
        if state.game_over:
            raise InvalidTurnState("Match is over")
        if state.turn.phase != Phase.UNIT_ACTIONS:
            raise InvalidTurnState(f"Actions are not accepted during {state.turn.phase.value}")
        if faction_id is not None and faction_id != state.active_faction:
            raise InvalidTurnState(f"It is {state.active_faction}'s turn, not {faction_id}'s")

    def _own_unit(self, unit_id: str) -> Unit:
        unit = self.state.battlefield.get_unit(unit_id)
        if unit is None:
            raise InvalidAction(f"No unit with id {unit_id}", unit_id)
        self._require_unit_phase(unit.faction)
        return unit

    # Queries
    def selectable_units(self, faction_id: str) -> list[Unit]:
        """Units the faction may still act with this turn."""
        state = self.state
        if (
            state.game_over
            or state.turn.phase != Phase.UNIT_ACTIONS
            or faction_id != state.active_faction
        ):
            return []
        return [u for u in state.battlefield.get_units_by_faction(faction_id) if not u.acted]

    def reachable(self, unit_id: str, merges: bool = False) -> dict[Coord, ReachableCell]:
        """End cells for a move. With merges, also cells where the unit can board or join."""
        unit = self.state.battlefield.get_unit(unit_id)
        if unit is None:
            raise InvalidAction(f"No unit with id {unit_id}", unit_id)
        return reachable(self.state, unit, self.fog, merges)

    def legal_targets(self, unit_id: str, from_cell: Optional[Coord] = None) -> list[Unit]:
        unit = self.state.battlefield.get_unit(unit_id)
        if unit is None:
            raise InvalidAction(f"No unit with id {unit_id}", unit_id)
        return self.combat.legal_targets(self.state, unit, from_cell or unit.pos, self.fog)

    def visible_cells(self, faction_id: str) -> frozenset[Coord]:
        return self.fog.visible_cells(self.state, faction_id)

    # Actions
    def apply_move(self, unit_id: str, cell: Coord) -> MoveResult:
        unit = self._own_unit(unit_id)
        result = apply_move(self.state, unit, tuple(cell), self.fog)
        self.state.log_action(
            "move", unit=unit_id, path=[list(p) for p in result.path], trapped=result.trapped
        )
        return result

    def apply_attack(self, attacker_id: str, defender_id: str) -> CombatOutcome:
        attacker = self._own_unit(attacker_id)
        defender = self.state.battlefield.get_unit(defender_id)
        if defender is None:
            raise NotVisible(f"{attacker_id} cannot see a unit {defender_id}", attacker_id)
        outcome = self.combat.resolve(self.state, attacker, defender, self.fog)
        self.state.log_action(
            "attack",
            unit=attacker_id,
            target=defender_id,
            damage=outcome.damage,
            counter_damage=outcome.counter_damage,
        )
        return outcome

    def apply_capture(self, unit_id: str) -> CaptureResult:
        state = self.state
        unit = self._own_unit(unit_id)
        if unit.acted:
            raise AlreadyActed(f"{unit_id} has already acted this turn", unit_id)

        unit_type = unit.type_info(self.rules)
        if not unit_type.can_capture:
            raise InvalidAction(f"{unit_type.name} cannot capture", unit_id)
        cell = state.battlefield.get_cell(unit.pos)
        terrain = self.rules.terrain_type(cell.terrain)
        if not terrain.capturable:
            raise InvalidAction(f"{terrain.name} at {unit.pos} cannot be captured", unit_id)
        if cell.owner is not None and state.is_friendly(unit.faction, cell.owner):
            raise InvalidAction(f"{terrain.name} at {unit.pos} is already held by {cell.owner}", unit_id)

        captured = state.battlefield.advance_capture(unit, unit.display_hp(self.rules))
        unit.acted = True
        state.log_action("capture", unit=unit_id, cell=list(unit.pos), captured=captured)
        return CaptureResult(
            unit_id=unit_id,
            pos=unit.pos,
            progress=cell.capture_points,
            threshold=terrain.capture_threshold,
            captured=captured,
        )

    def apply_wait(self, unit_id: str):
        """End the unit's activity for this turn."""
        unit = self._own_unit(unit_id)
        unit.acted = True
        self.state.touch()
        self.state.log_action("wait", unit=unit_id)

    def _merge_partner(self, unit: Unit, other_id: str, kind: str) -> Unit:
        other = self.state.battlefield.get_unit(other_id)
        if other is None:
            raise InvalidAction(f"No unit with id {other_id}", unit.id)
        if merge_kind(self.state, unit, other) != kind:
            raise InvalidAction(f"{unit.id} cannot {kind} {other_id}", unit.id)
        return other

    def apply_load(self, unit_id: str, transport_id: str) -> MoveResult:
        """Move the unit onto an own transport and stow it there."""
        state = self.state
        unit = self._own_unit(unit_id)
        transport = self._merge_partner(unit, transport_id, LOAD)

        result = apply_move(state, unit, transport.pos, self.fog, onto=transport)
        if not result.trapped:
            unit.acted = True
            transport.cargo.append(unit)
            logger.debug(f"{unit_id} boarded {transport_id} at {transport.pos}")
        state.log_action(
            "load", unit=unit_id, transport=transport_id,
            path=[list(p) for p in result.path], trapped=result.trapped,
        )
        return result

    def apply_unload(self, transport_id: str, cell: Coord, cargo_id: Optional[str] = None) -> Unit:
        """
        Drop a loaded unit on a free cell next to the transport.

        The unloaded unit counts as moved; it may still attack, capture or
        wait unless it was loaded this same turn. The transport is done.
        """
        state = self.state
        transport = self._own_unit(transport_id)
        if transport.acted:
            raise AlreadyActed(f"{transport_id} has already acted this turn", transport_id)
        if not transport.cargo:
            raise InvalidAction(f"{transport_id} carries nothing", transport_id)
        if cargo_id is None:
            cargo = transport.cargo[0]
        else:
            cargo = next((u for u in transport.cargo if u.id == cargo_id), None)
            if cargo is None:
                raise InvalidAction(f"{transport_id} does not carry {cargo_id}", transport_id)

        cell = tuple(cell)
        grid = state.battlefield.grid
        grid.require_cell(cell)
        if manhattan(cell, transport.pos) != 1:
            raise OutOfRange(f"{cell} is not next to {transport_id}", transport_id)
        if enter_cost(state, cargo, cell) is None:
            raise InvalidAction(f"{cargo.id} cannot stand on {grid.terrain_at(cell).name}", transport_id)
        if state.battlefield.is_occupied(cell):
            raise OccupiedCell(f"{cell} is occupied", transport_id)

        transport.cargo.remove(cargo)
        cargo.x, cargo.y = cell
        cargo.moved = True
        state.battlefield.place_unit(cargo)
        transport.moved = True
        transport.acted = True
        state.log_action("unload", unit=cargo.id, transport=transport_id, cell=list(cell))
        logger.debug(f"{transport_id} unloaded {cargo.id} at {cell}")
        return cargo

    def apply_join(self, unit_id: str, target_id: str) -> JoinResult:
        """
        Move the unit onto a damaged own unit of the same type and merge them.

        Hit points add up to the type maximum; the surplus is refunded at the
        unit's cost per hit point. Ammo and fuel take the better of the two.
        The merged unit has finished its turn.
        """
        state = self.state
        unit = self._own_unit(unit_id)
        target = self._merge_partner(unit, target_id, JOIN)

        move = apply_move(state, unit, target.pos, self.fog, onto=target)
        if move.trapped:
            state.log_action("join", unit=unit_id, target=target_id, trapped=True)
            return JoinResult(unit_id, target_id, hp=target.hp, trapped=True)

        unit_type = target.type_info(self.rules)
        total = target.hp + unit.hp
        target.hp = min(unit_type.max_hp, total)
        refund = math.floor(unit_type.cost * (total - target.hp) / unit_type.max_hp)
        target.ammo = max(target.ammo, unit.ammo)
        target.fuel = max(target.fuel, unit.fuel)
        target.moved = True
        target.acted = True
        state.faction(unit.faction).resources += refund
        state.touch()

        state.log_action("join", unit=unit_id, target=target_id, hp=target.hp, refund=refund)
        logger.info(f"{unit_id} joined {target_id}: {target.hp} hp" + (f", {refund} refunded" if refund else ""))
        return JoinResult(unit_id, target_id, hp=target.hp, refund=refund)

    def production_cost(self, faction_id: str, unit_type_id: str) -> int:
        unit_type = self.rules.unit_type(unit_type_id)
        faction_def = self.rules.faction(faction_id)
        bonuses = commanders.get_bonuses(self.state, faction_id)
        return math.ceil(unit_type.cost * faction_def.cost_modifier * bonuses.cost)

    def can_produce_at(self, faction_id: str, unit_type_id: str, cell: Coord) -> bool:
        grid = self.state.battlefield.grid
        target = grid.get_cell(tuple(cell))
        if target is None or target.owner != faction_id:
            return False
        unit_class = self.rules.unit_type(unit_type_id).unit_class.value
        return unit_class in self.rules.terrain_type(target.terrain).produces

    def apply_produce(self, faction_id: str, unit_type_id: str, cell: Coord) -> Unit:
        """Build a unit on an owned production cell. It cannot act until next turn."""
        state = self.state
        self._require_unit_phase(faction_id)
        cell = tuple(cell)
        try:
            unit_type = self.rules.unit_type(unit_type_id)
        except UnknownIdentifier as exc:
            raise InvalidAction(str(exc)) from exc

        state.battlefield.grid.require_cell(cell)
        if not self.can_produce_at(faction_id, unit_type_id, cell):
            raise InvalidAction(f"{faction_id} cannot build {unit_type.name} at {cell}")
        if state.battlefield.is_occupied(cell):
            raise OccupiedCell(f"{cell} is occupied")
        cost = self.production_cost(faction_id, unit_type_id)
        faction = state.faction(faction_id)
        if cost > faction.resources:
            raise InsufficientFunds(f"{unit_type.name} costs {cost}, {faction_id} has {faction.resources}")

        unit = Unit.create(state.new_unit_id(faction_id), unit_type, faction_id, cell)
        unit.moved = True
        unit.acted = True
        state.battlefield.place_unit(unit)
        faction.resources -= cost
        state.log_action("produce", unit=unit.id, unit_type=unit_type_id, cell=list(cell), cost=cost)
        logger.info(f"{faction_id} built {unit_type.name} {unit.id} at {cell} for {cost}")
        return unit

    def activate_power(self, faction_id: str) -> PowerDef:
        self._require_unit_phase(faction_id)
        power = commanders.activate_power(self.state, faction_id)
        self.state.log_action("power", power=power.name)
        return power

    # Views
    def faction_view(self, faction_id: str) -> dict:
        """Everything a faction is allowed to know, as plain data."""
        state = self.state
        faction = state.faction(faction_id)
        visible = self.fog.visible_cells(state, faction_id)
        commander = commanders.get_commander(state, faction_id)

        own_units = [asdict(u) for u in state.battlefield.get_units_by_faction(faction_id)]
        enemies = [asdict(u) for u in self.fog.visible_enemy_units(state, faction_id)]
        for enemy in enemies:
            # What an enemy transport carries is not observable
            del enemy["cargo"]
        structures = [
            {
                "pos": list(pos),
                "terrain": state.battlefield.grid.cells[pos].terrain,
                "owner": owner,
                "visible": pos in visible,
            }
            for pos, owner in sorted(faction.remembered_owners.items(), key=lambda item: (item[0][1], item[0][0]))
        ]

        return {
            "faction": faction_id,
            "team": faction.team,
            "turn": state.turn.turn_number,
            "phase": state.turn.phase.value,
            "active_faction": state.active_faction,
            "weather": state.weather.current.value,
            "resources": faction.resources,
            "commander": commander.name if commander else None,
            "charge": faction.charge,
            "power_cost": commanders.power_cost(state, faction_id),
            "power_active": faction.power_active,
            "map": {"width": state.battlefield.grid.width, "height": state.battlefield.grid.height},
            "visible_cells": sorted([list(p) for p in visible], key=lambda p: (p[1], p[0])),
            "own_units": own_units,
            "visible_enemies": enemies,
            "structures": structures,
            "factions": {
                fid: {"team": f.team, "eliminated": f.eliminated}
                for fid, f in state.factions.items()
            },
            "game_over": state.game_over,
            "winner": list(state.winner),
        }
