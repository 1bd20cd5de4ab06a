"""
Unit runtime state.

Static stats live on the UnitType in the rule tables; a Unit only carries
what changes during a match: position, hit points, ammo, fuel, the
per-turn action flags and, for transports, the units loaded aboard.
"""

from dataclasses import dataclass, field

from .rules import RuleTables, UnitType


@dataclass
class Unit:
    """A single unit on the battlefield."""
    id: str
    unit_type: str  # unit type id in the rule tables
    faction: str
    x: int
    y: int
    hp: int
    ammo: int = 0
    fuel: int = 0
    moved: bool = False
    acted: bool = False
    # Loaded units are off the battlefield until unloaded
    cargo: list["Unit"] = field(default_factory=list)

    @classmethod
    def create(cls, unit_id: str, unit_type: UnitType, faction: str, pos: tuple[int, int]) -> "Unit":
        """New unit at full strength."""
        return cls(
            id=unit_id,
            unit_type=unit_type.id,
            faction=faction,
            x=pos[0],
            y=pos[1],
            hp=unit_type.max_hp,
            ammo=unit_type.max_ammo,
            fuel=unit_type.max_fuel,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Unit":
        """Rebuild a unit (and its cargo) from dataclasses.asdict output."""
        fields = dict(data)
        cargo = [cls.from_dict(entry) for entry in fields.pop("cargo", [])]
        return cls(**fields, cargo=cargo)

    @property
    def pos(self) -> tuple[int, int]:
        return (self.x, self.y)

    def type_info(self, rules: RuleTables) -> UnitType:
        return rules.unit_type(self.unit_type)

    def is_alive(self) -> bool:
        return self.hp > 0

    def hp_ratio(self, rules: RuleTables) -> float:
        return self.hp / self.type_info(rules).max_hp

    def display_hp(self, rules: RuleTables) -> int:
        """Hit points on the 1-10 scale."""
        return self.type_info(rules).display_hp(self.hp)

    def take_damage(self, amount: int) -> int:
        """Apply damage, returning what was actually lost."""
        lost = min(self.hp, max(0, amount))
        self.hp -= lost
        return lost

    def heal(self, amount: int, max_hp: int) -> int:
        healed = min(max_hp - self.hp, max(0, amount))
        self.hp += healed
        return healed

    def resupply(self, unit_type: UnitType) -> bool:
        """Refill ammo and fuel. Returns True if anything changed."""
        changed = self.ammo != unit_type.max_ammo or self.fuel != unit_type.max_fuel
        self.ammo = unit_type.max_ammo
        self.fuel = unit_type.max_fuel
        return changed

    def reset_turn(self):
        self.moved = False
        self.acted = False
