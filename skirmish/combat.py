"""
Combat resolution between an attacker and a defender.

Damage is deterministic:

    attack  = type.attack * commander attack * weather attack
    defense = min(MAX, type.defense * commander defense * weather defense + terrain stars * 10)
    damage  = floor(attack * hp / max_hp * (MAX - defense) / MAX + 0.5)

clamped to the defender's remaining hit points. MAX is the max_defense
engine setting (200). There is no minimum damage.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from . import commanders
from .errors import AlreadyActed, AlreadyMoved, InvalidAction, NotVisible, OutOfAmmo, OutOfRange
from .fog_of_war import FogOfWar
from .map import Coord, manhattan
from .rules import UnitType
from .state import MatchState
from .units import Unit

logger = logging.getLogger(__name__)


@dataclass
class CombatOutcome:
    """Report of a resolved attack exchange."""
    attacker_id: str
    defender_id: str
    damage: int
    counter_damage: int = 0
    attacker_hp: int = 0
    defender_hp: int = 0
    attacker_destroyed: bool = False
    defender_destroyed: bool = False
    charge_gained: dict[str, int] = field(default_factory=dict)
    cargo_lost: list[str] = field(default_factory=list)
    location: Optional[Coord] = None

    @property
    def countered(self) -> bool:
        return self.counter_damage > 0


class CombatResolver:
    """Computes and applies attack exchanges."""

    def terrain_defense(self, state: MatchState, pos: Coord) -> int:
        terrain = state.battlefield.grid.terrain_at(pos)
        if terrain.foliage and not state.weather.effects.foliage_cover:
            return 0
        return terrain.defense_bonus * 10

    def calculate_damage(
        self,
        state: MatchState,
        attacker: Unit,
        defender: Unit,
        attacker_hp: Optional[int] = None,
        defender_pos: Optional[Coord] = None,
    ) -> int:
        """Damage the attacker would deal. Pure: nothing is mutated."""
        rules = state.rules
        max_defense = rules.settings.max_defense
        weather = state.weather.effects
        atk_type = attacker.type_info(rules)
        def_type = defender.type_info(rules)
        atk_mods = commanders.get_bonuses(state, attacker.faction)
        def_mods = commanders.get_bonuses(state, defender.faction)

        hp = attacker.hp if attacker_hp is None else attacker_hp
        attack_value = atk_type.attack * atk_mods.attack * weather.attack_multiplier
        hp_ratio = hp / atk_type.max_hp
        defense_value = min(
            max_defense,
            def_type.defense * def_mods.defense * weather.defense_multiplier
            + self.terrain_defense(state, defender_pos or defender.pos),
        )

        damage = math.floor(attack_value * hp_ratio * (max_defense - defense_value) / max_defense + 0.5)
        return max(0, min(damage, defender.hp))

    def in_range(self, unit_type: UnitType, from_pos: Coord, to_pos: Coord) -> bool:
        low, high = unit_type.attack_range
        return low <= manhattan(from_pos, to_pos) <= high

    def has_ammo(self, state: MatchState, unit: Unit) -> bool:
        unit_type = unit.type_info(state.rules)
        return not unit_type.uses_ammo or unit.ammo >= state.rules.settings.ammo_per_attack

    def can_counter(self, state: MatchState, defender: Unit, attacker_pos: Coord, defender_hp: int) -> bool:
        """Survivor retaliation check: direct, armed, and in its own range."""
        def_type = defender.type_info(state.rules)
        return (
            defender_hp > 0
            and def_type.is_direct
            and self.in_range(def_type, defender.pos, attacker_pos)
            and self.has_ammo(state, defender)
        )

    def legal_targets(self, state: MatchState, unit: Unit, from_pos: Coord, fog: FogOfWar) -> list[Unit]:
        """Visible enemies the unit could attack from a cell, in scan order."""
        unit_type = unit.type_info(state.rules)
        if unit.acted or not unit_type.can_attack or not self.has_ammo(state, unit):
            return []
        if unit_type.is_indirect and (unit.moved or from_pos != unit.pos):
            return []

        visible = fog.visible_cells(state, unit.faction)
        return [
            other for other in state.battlefield.iter_units()
            if state.is_enemy(unit.faction, other.faction)
            and other.pos in visible
            and self.in_range(unit_type, from_pos, other.pos)
        ]

    def validate_attack(self, state: MatchState, attacker: Unit, defender: Unit, fog: FogOfWar):
        if attacker.acted:
            raise AlreadyActed(f"{attacker.id} has already acted this turn", attacker.id)
        if not fog.can_see_unit(state, attacker.faction, defender):
            raise NotVisible(f"{attacker.id} cannot see a target at {defender.pos}", attacker.id)
        if not state.is_enemy(attacker.faction, defender.faction):
            raise InvalidAction(f"{defender.id} is not an enemy of {attacker.id}", attacker.id)

        atk_type = attacker.type_info(state.rules)
        if not atk_type.can_attack:
            raise InvalidAction(f"{atk_type.name} cannot attack", attacker.id)
        if atk_type.is_indirect and attacker.moved:
            raise AlreadyMoved(f"{attacker.id} cannot fire after moving", attacker.id)
        if not self.in_range(atk_type, attacker.pos, defender.pos):
            raise OutOfRange(
                f"{defender.id} at distance {manhattan(attacker.pos, defender.pos)} is outside "
                f"range {atk_type.attack_range} of {attacker.id}",
                attacker.id,
            )
        if not self.has_ammo(state, attacker):
            raise OutOfAmmo(f"{attacker.id} is out of ammunition", attacker.id)

    def forecast(
        self, state: MatchState, attacker: Unit, defender: Unit, from_pos: Optional[Coord] = None
    ) -> tuple[int, int]:
        """Expected (damage, counter damage) if the attacker strikes from from_pos."""
        from_pos = from_pos or attacker.pos
        damage = self.calculate_damage(state, attacker, defender)
        defender_hp = defender.hp - damage
        counter = 0
        if self.can_counter(state, defender, from_pos, defender_hp):
            counter = self.calculate_damage(
                state, defender, attacker, attacker_hp=defender_hp, defender_pos=from_pos
            )
        return damage, counter

    def resolve(self, state: MatchState, attacker: Unit, defender: Unit, fog: FogOfWar) -> CombatOutcome:
        """Validate and apply an attack exchange."""
        self.validate_attack(state, attacker, defender, fog)

        rules = state.rules
        ammo_cost = rules.settings.ammo_per_attack
        outcome = CombatOutcome(
            attacker_id=attacker.id,
            defender_id=defender.id,
            damage=0,
            location=defender.pos,
        )

        outcome.damage = defender.take_damage(self.calculate_damage(state, attacker, defender))
        if attacker.type_info(rules).uses_ammo:
            attacker.ammo -= ammo_cost

        if self.can_counter(state, defender, attacker.pos, defender.hp):
            counter = self.calculate_damage(state, defender, attacker)
            outcome.counter_damage = attacker.take_damage(counter)
            if defender.type_info(rules).uses_ammo:
                defender.ammo -= ammo_cost

        attacker.acted = True
        outcome.attacker_hp = attacker.hp
        outcome.defender_hp = defender.hp

        self._award_charge(state, attacker.faction, defender.faction, outcome)

        logger.debug(
            f"{attacker.id} hit {defender.id} for {outcome.damage}"
            + (f", countered for {outcome.counter_damage}" if outcome.countered else "")
        )

        if not defender.is_alive():
            outcome.defender_destroyed = True
            state.battlefield.remove_unit(defender.id)
            logger.info(f"{defender.id} destroyed by {attacker.id}")
            if defender.cargo:
                outcome.cargo_lost = [u.id for u in defender.cargo]
                logger.info(f"Lost aboard {defender.id}: {', '.join(outcome.cargo_lost)}")
        if not attacker.is_alive():
            outcome.attacker_destroyed = True
            state.battlefield.remove_unit(attacker.id)
            logger.info(f"{attacker.id} destroyed by counter-attack from {defender.id}")

        state.battlefield.touch()
        return outcome

    def _award_charge(self, state: MatchState, attacker_faction: str, defender_faction: str, outcome: CombatOutcome):
        settings = state.rules.settings
        dealt_rate = settings.charge_per_damage_dealt
        taken_rate = settings.charge_per_damage_taken

        attacker_gain = math.floor(outcome.damage * dealt_rate + outcome.counter_damage * taken_rate)
        defender_gain = math.floor(outcome.counter_damage * dealt_rate + outcome.damage * taken_rate)

        for faction_id, gain in ((attacker_faction, attacker_gain), (defender_faction, defender_gain)):
            before = state.faction(faction_id).charge
            after = commanders.add_charge(state, faction_id, gain)
            outcome.charge_gained[faction_id] = after - before
