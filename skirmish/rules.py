"""
Rule tables: terrain, unit type, faction and commander parameters.

Loaded once from YAML at match start and treated as read-only for the whole
match. Every component receives the RuleTables instance explicitly.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigurationError, UnknownIdentifier

logger = logging.getLogger(__name__)


class UnitClass(Enum):
    FOOT = "foot"
    WHEELS = "wheels"
    TREADS = "treads"
    AIR = "air"
    NAVAL = "naval"


class PowerEffect(Enum):
    STAT_BOOST = "stat_boost"
    BONUS_FUNDS = "bonus_funds"
    REVEAL_AND_BOOST = "reveal_and_boost"
    DEFENSE_AND_HEAL = "defense_and_heal"
    FREE_UNITS = "free_units"
    EXTRA_MOVE = "extra_move"


@dataclass(frozen=True)
class TerrainType:
    """Terrain properties. A class missing from movement_cost cannot enter."""
    id: str
    name: str
    symbol: str
    defense_bonus: int
    movement_cost: Mapping[str, int]
    capturable: bool = False
    capture_threshold: int = 0
    income: int = 0
    vision_height: int = 0
    vision_bonus: int = 0  # extra vision for a unit standing here
    sight: int = 0  # vision the cell provides to its owner
    conceals: bool = False
    foliage: bool = False  # cover lost in weather that negates foliage
    resupplies: bool = False
    required: bool = False  # losing every required cell eliminates the owner
    produces: tuple[str, ...] = ()

    def cost_for(self, unit_class: UnitClass) -> Optional[int]:
        """Movement cost for a class, or None when impassable."""
        return self.movement_cost.get(unit_class.value)


@dataclass(frozen=True)
class UnitType:
    id: str
    name: str
    unit_class: UnitClass
    max_hp: int
    attack: int
    defense: int
    movement: int
    attack_range: tuple[int, int]
    vision: int
    cost: int
    can_capture: bool = False
    max_ammo: int = 0  # 0 = weapon never runs dry
    max_fuel: int = 99
    supplies: bool = False
    transport_capacity: int = 0
    carries: tuple[str, ...] = ()  # unit classes it can load

    @property
    def can_attack(self) -> bool:
        return self.attack > 0 and self.attack_range[1] > 0

    @property
    def is_direct(self) -> bool:
        return self.can_attack and self.attack_range[0] <= 1

    @property
    def is_indirect(self) -> bool:
        return self.can_attack and self.attack_range[0] > 1

    @property
    def uses_ammo(self) -> bool:
        return self.max_ammo > 0

    @property
    def is_transport(self) -> bool:
        return self.transport_capacity > 0

    def can_carry(self, other: "UnitType") -> bool:
        return self.is_transport and other.unit_class.value in self.carries

    def display_hp(self, hp: int) -> int:
        """HP on the 1-10 scale used for capture strength."""
        if hp <= 0:
            return 0
        return math.ceil(10 * hp / self.max_hp)


@dataclass(frozen=True)
class FactionDef:
    id: str
    name: str
    team: str
    cost_modifier: float = 1.0


@dataclass(frozen=True)
class PowerDef:
    name: str
    cost: int
    effect: PowerEffect
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CommanderDef:
    id: str
    name: str
    power: PowerDef
    faction: Optional[str] = None
    attack_bonus: float = 1.0
    defense_bonus: float = 1.0
    movement_bonus: int = 0
    vision_bonus: int = 0
    income_bonus: float = 1.0
    cost_modifier: float = 1.0
    charge_per_turn: int = 0


@dataclass(frozen=True)
class EngineSettings:
    vision_block_threshold: int = 1
    ammo_per_attack: int = 1
    charge_per_damage_dealt: float = 1.0
    charge_per_damage_taken: float = 0.5
    repair_hp: int = 20
    fog_enabled: bool = True
    max_defense: int = 200


class RuleTables:
    """Immutable parameter tables keyed by identifier."""

    def __init__(
        self,
        terrain: dict[str, TerrainType],
        unit_types: dict[str, UnitType],
        factions: dict[str, FactionDef],
        commanders: dict[str, CommanderDef],
        settings: Optional[EngineSettings] = None,
    ):
        self.terrain: Mapping[str, TerrainType] = MappingProxyType(dict(terrain))
        self.unit_types: Mapping[str, UnitType] = MappingProxyType(dict(unit_types))
        self.factions: Mapping[str, FactionDef] = MappingProxyType(dict(factions))
        self.commanders: Mapping[str, CommanderDef] = MappingProxyType(dict(commanders))
        self.settings = settings or EngineSettings()
        self._by_symbol = MappingProxyType({t.symbol: t for t in self.terrain.values()})
        self.validate()

    # Lookups
    def terrain_type(self, terrain_id: str) -> TerrainType:
        try:
            return self.terrain[terrain_id]
        except KeyError:
            raise UnknownIdentifier("terrain", terrain_id) from None

    def terrain_for_symbol(self, symbol: str) -> TerrainType:
        try:
            return self._by_symbol[symbol]
        except KeyError:
            raise UnknownIdentifier("terrain symbol", symbol) from None

    def unit_type(self, unit_type_id: str) -> UnitType:
        try:
            return self.unit_types[unit_type_id]
        except KeyError:
            raise UnknownIdentifier("unit type", unit_type_id) from None

    def faction(self, faction_id: str) -> FactionDef:
        try:
            return self.factions[faction_id]
        except KeyError:
            raise UnknownIdentifier("faction", faction_id) from None

    def commander(self, commander_id: str) -> CommanderDef:
        try:
            return self.commanders[commander_id]
        except KeyError:
            raise UnknownIdentifier("commander", commander_id) from None

    def validate(self):
        """Check cross references between tables; raise on the first miss."""
        if not self.terrain:
            raise ConfigurationError("Rule tables define no terrain types")
        if not self.unit_types:
            raise ConfigurationError("Rule tables define no unit types")

        symbols: dict[str, str] = {}
        class_names = {c.value for c in UnitClass}
        for terrain in self.terrain.values():
            if terrain.symbol in symbols:
                raise ConfigurationError(
                    f"Terrain '{terrain.id}' reuses symbol '{terrain.symbol}' of '{symbols[terrain.symbol]}'"
                )
            symbols[terrain.symbol] = terrain.id
            for class_name in list(terrain.movement_cost) + list(terrain.produces):
                if class_name not in class_names:
                    raise UnknownIdentifier("unit class", class_name, referenced_by=f"terrain {terrain.id}")
            if terrain.capturable and terrain.capture_threshold <= 0:
                raise ConfigurationError(f"Capturable terrain '{terrain.id}' needs a positive capture_threshold")

        for unit_type in self.unit_types.values():
            for class_name in unit_type.carries:
                if class_name not in class_names:
                    raise UnknownIdentifier("unit class", class_name, referenced_by=f"unit type {unit_type.id}")
            if unit_type.carries and unit_type.transport_capacity <= 0:
                raise ConfigurationError(f"Unit type '{unit_type.id}' carries units but has no transport_capacity")

        for commander in self.commanders.values():
            if commander.faction is not None and commander.faction not in self.factions:
                raise UnknownIdentifier("faction", commander.faction, referenced_by=f"commander {commander.id}")
            if commander.power.effect == PowerEffect.FREE_UNITS:
                unit_type_id = commander.power.params.get("unit_type", "")
                if unit_type_id not in self.unit_types:
                    raise UnknownIdentifier("unit type", unit_type_id, referenced_by=f"commander {commander.id}")

    @classmethod
    def from_dict(cls, data: dict) -> "RuleTables":
        """Build tables from already-parsed YAML sections."""
        terrain = {
            tid: _terrain_from_dict(tid, info)
            for tid, info in (data.get("terrain_types") or {}).items()
        }
        unit_types = {
            uid: _unit_type_from_dict(uid, info)
            for uid, info in (data.get("unit_types") or {}).items()
        }
        factions = {
            fid: FactionDef(
                id=fid,
                name=info.get("name", fid.title()),
                team=info.get("team", fid),
                cost_modifier=float(info.get("cost_modifier", 1.0)),
            )
            for fid, info in (data.get("factions") or {}).items()
        }
        commanders = {
            cid: _commander_from_dict(cid, info)
            for cid, info in (data.get("commanders") or {}).items()
        }
        settings = _settings_from_dict(data.get("settings") or {})
        return cls(terrain, unit_types, factions, commanders, settings)


def _require(info: dict, key: str, owner: str) -> Any:
    if key not in info:
        raise ConfigurationError(f"{owner} is missing required field '{key}'")
    return info[key]


def _terrain_from_dict(terrain_id: str, info: dict) -> TerrainType:
    owner = f"terrain '{terrain_id}'"
    costs = {
        str(cls_name): int(cost)
        for cls_name, cost in (_require(info, "movement_cost", owner) or {}).items()
        if cost is not None
    }
    return TerrainType(
        id=terrain_id,
        name=info.get("name", terrain_id.replace("_", " ").title()),
        symbol=str(_require(info, "symbol", owner)),
        defense_bonus=int(info.get("defense_bonus", 0)),
        movement_cost=MappingProxyType(costs),
        capturable=bool(info.get("capturable", False)),
        capture_threshold=int(info.get("capture_threshold", 0)),
        income=int(info.get("income", 0)),
        vision_height=int(info.get("vision_height", 0)),
        vision_bonus=int(info.get("vision_bonus", 0)),
        sight=int(info.get("sight", 0)),
        conceals=bool(info.get("conceals", False)),
        foliage=bool(info.get("foliage", False)),
        resupplies=bool(info.get("resupplies", False)),
        required=bool(info.get("required", False)),
        produces=tuple(info.get("produces", ())),
    )


def _unit_type_from_dict(unit_type_id: str, info: dict) -> UnitType:
    owner = f"unit type '{unit_type_id}'"
    class_name = _require(info, "class", owner)
    try:
        unit_class = UnitClass(class_name)
    except ValueError:
        raise UnknownIdentifier("unit class", class_name, referenced_by=owner) from None

    attack_range = info.get("attack_range", (1, 1))
    if len(attack_range) != 2 or attack_range[0] > attack_range[1]:
        raise ConfigurationError(f"{owner} has invalid attack_range {attack_range}")

    return UnitType(
        id=unit_type_id,
        name=info.get("name", unit_type_id.title()),
        unit_class=unit_class,
        max_hp=int(info.get("max_hp", 100)),
        attack=int(_require(info, "attack", owner)),
        defense=int(_require(info, "defense", owner)),
        movement=int(_require(info, "movement", owner)),
        attack_range=(int(attack_range[0]), int(attack_range[1])),
        vision=int(info.get("vision", 2)),
        cost=int(info.get("cost", 0)),
        can_capture=bool(info.get("can_capture", False)),
        max_ammo=int(info.get("max_ammo", 0)),
        max_fuel=int(info.get("max_fuel", 99)),
        supplies=bool(info.get("supplies", False)),
        transport_capacity=int(info.get("transport_capacity", 0)),
        carries=tuple(info.get("carries", ())),
    )


def _commander_from_dict(commander_id: str, info: dict) -> CommanderDef:
    owner = f"commander '{commander_id}'"
    power_info = _require(info, "power", owner)
    effect_name = _require(power_info, "effect", f"{owner} power")
    try:
        effect = PowerEffect(effect_name)
    except ValueError:
        raise UnknownIdentifier("power effect", effect_name, referenced_by=owner) from None

    power = PowerDef(
        name=power_info.get("name", effect_name),
        cost=int(_require(power_info, "cost", f"{owner} power")),
        effect=effect,
        params=MappingProxyType(dict(power_info.get("params") or {})),
    )
    return CommanderDef(
        id=commander_id,
        name=info.get("name", commander_id.title()),
        power=power,
        faction=info.get("faction"),
        attack_bonus=float(info.get("attack_bonus", 1.0)),
        defense_bonus=float(info.get("defense_bonus", 1.0)),
        movement_bonus=int(info.get("movement_bonus", 0)),
        vision_bonus=int(info.get("vision_bonus", 0)),
        income_bonus=float(info.get("income_bonus", 1.0)),
        cost_modifier=float(info.get("cost_modifier", 1.0)),
        charge_per_turn=int(info.get("charge_per_turn", 0)),
    )


def _settings_from_dict(info: dict) -> EngineSettings:
    defaults = EngineSettings()
    unknown = set(info) - set(defaults.__dataclass_fields__)
    if unknown:
        raise ConfigurationError(f"Unknown engine settings: {sorted(unknown)}")
    return EngineSettings(**{**defaults.__dict__, **info})


RULE_FILES = {
    "terrain_types": "terrain.yaml",
    "unit_types": "units.yaml",
    "factions": "factions.yaml",
    "commanders": "commanders.yaml",
    "settings": "settings.yaml",
}


def load_rule_tables(data_path: Path | str = "data") -> RuleTables:
    """Load every rule table from <data_path>/rules/*.yaml."""
    rules_path = Path(data_path) / "rules"
    data: dict[str, Any] = {}

    for section, filename in RULE_FILES.items():
        path = rules_path / filename
        if not path.exists():
            if section == "settings":
                continue
            raise ConfigurationError(f"Rule table not found: {path}")
        with open(path) as f:
            content = yaml.safe_load(f) or {}
        data[section] = content.get(section, {})

    tables = RuleTables.from_dict(data)
    logger.info(
        f"Loaded rule tables: {len(tables.terrain)} terrain, {len(tables.unit_types)} unit types, "
        f"{len(tables.factions)} factions, {len(tables.commanders)} commanders"
    )
    return tables
