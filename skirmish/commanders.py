"""
Commander bonuses, charge meter and power activation.

Passive bonuses and active power modifiers are computed on lookup and never
written back into the shared unit type stats.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .errors import InsufficientCharge, InvalidAction
from .rules import CommanderDef, PowerDef, PowerEffect
from .state import MatchState
from .units import Unit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommanderBonuses:
    """Combined passive and active power modifiers for one faction."""
    attack: float = 1.0
    defense: float = 1.0
    movement: int = 0
    income: float = 1.0
    vision: int = 0
    cost: float = 1.0


NO_BONUSES = CommanderBonuses()


def get_commander(state: MatchState, faction_id: str) -> Optional[CommanderDef]:
    commander_id = state.faction(faction_id).commander_id
    if commander_id is None:
        return None
    return state.rules.commander(commander_id)


def get_bonuses(state: MatchState, faction_id: str) -> CommanderBonuses:
    commander = get_commander(state, faction_id)
    if commander is None:
        return NO_BONUSES

    attack = commander.attack_bonus
    defense = commander.defense_bonus
    movement = commander.movement_bonus

    if state.faction(faction_id).power_active:
        power = commander.power
        params = power.params
        if power.effect == PowerEffect.STAT_BOOST:
            attack *= float(params.get("attack", 1.0))
            defense *= float(params.get("defense", 1.0))
            movement += int(params.get("movement", 0))
        elif power.effect == PowerEffect.REVEAL_AND_BOOST:
            attack *= float(params.get("attack", 1.0))
        elif power.effect == PowerEffect.DEFENSE_AND_HEAL:
            defense *= float(params.get("defense", 1.0))

    return CommanderBonuses(
        attack=attack,
        defense=defense,
        movement=movement,
        income=commander.income_bonus,
        vision=commander.vision_bonus,
        cost=commander.cost_modifier,
    )


def power_cost(state: MatchState, faction_id: str) -> int:
    commander = get_commander(state, faction_id)
    return commander.power.cost if commander else 0


def add_charge(state: MatchState, faction_id: str, amount: int) -> int:
    """Add to the charge meter, capped at the power cost. Returns the new value."""
    faction = state.faction(faction_id)
    cap = power_cost(state, faction_id)
    if cap <= 0 or amount <= 0:
        return faction.charge
    faction.charge = min(cap, faction.charge + amount)
    state.touch()
    return faction.charge


def can_activate(state: MatchState, faction_id: str) -> bool:
    faction = state.faction(faction_id)
    cost = power_cost(state, faction_id)
    return cost > 0 and faction.charge >= cost and not faction.power_active


def reveals_map(state: MatchState, faction_id: str) -> bool:
    """True while a reveal power is active for the faction."""
    faction = state.faction(faction_id)
    if not faction.power_active:
        return False
    commander = get_commander(state, faction_id)
    return commander is not None and commander.power.effect == PowerEffect.REVEAL_AND_BOOST


def activate_power(state: MatchState, faction_id: str) -> PowerDef:
    """
    Spend the full charge and apply the commander's power.

    Stat modifiers take effect through get_bonuses() until the end of the
    faction's turn; one-off effects are applied here.
    """
    faction = state.faction(faction_id)
    commander = get_commander(state, faction_id)
    if commander is None:
        raise InvalidAction(f"{faction_id} has no commander")
    if faction.power_active:
        raise InvalidAction(f"{commander.power.name} is already active for {faction_id}")
    if faction.charge < commander.power.cost:
        raise InsufficientCharge(
            f"{commander.power.name} needs {commander.power.cost} charge, {faction_id} has {faction.charge}"
        )

    faction.charge = 0
    faction.power_active = True
    _apply_effect(state, faction_id, commander.power)
    state.touch()

    logger.info(f"{commander.name} ({faction_id}) activated {commander.power.name}")
    return commander.power


def clear_power(state: MatchState, faction_id: str):
    faction = state.faction(faction_id)
    if faction.power_active:
        faction.power_active = False
        state.touch()


def _apply_effect(state: MatchState, faction_id: str, power: PowerDef):
    faction = state.faction(faction_id)
    battlefield = state.battlefield
    rules = state.rules
    params = power.params

    if power.effect == PowerEffect.BONUS_FUNDS:
        bonus = math.floor(faction.resources * float(params.get("multiplier", 0.5)) + 0.5)
        faction.resources += bonus
        logger.info(f"{faction_id} gained {bonus} bonus funds")

    elif power.effect == PowerEffect.DEFENSE_AND_HEAL:
        heal = int(params.get("heal", 0))
        for unit in battlefield.get_units_by_faction(faction_id):
            unit.heal(heal, unit.type_info(rules).max_hp)

    elif power.effect == PowerEffect.FREE_UNITS:
        unit_type = rules.unit_type(params["unit_type"])
        for cell in state.owned_cells(faction_id):
            terrain = rules.terrain_type(cell.terrain)
            if unit_type.unit_class.value not in terrain.produces or battlefield.is_occupied(cell.pos):
                continue
            unit = Unit.create(state.new_unit_id(faction_id), unit_type, faction_id, cell.pos)
            unit.moved = True
            unit.acted = True
            battlefield.place_unit(unit)
            logger.info(f"Spawned free {unit_type.name} {unit.id} at {cell.pos}")

    elif power.effect == PowerEffect.EXTRA_MOVE:
        for unit in battlefield.get_units_by_faction(faction_id):
            unit.moved = False

    elif power.effect == PowerEffect.REVEAL_AND_BOOST:
        for cell in battlefield.grid.iter_cells():
            faction.explored.add(cell.pos)
