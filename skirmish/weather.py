"""
Weather conditions and their effect on vision, movement and combat.

Weather changes at the end of each faction turn. The roll is seeded from
(match seed, turn number, faction index) so a restored match sees exactly
the same weather sequence as an uninterrupted one.
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class Weather(Enum):
    CLEAR = "clear"
    RAIN = "rain"
    SNOW = "snow"
    SANDSTORM = "sandstorm"
    FOG = "fog"


@dataclass(frozen=True)
class WeatherEffects:
    vision_modifier: int = 0
    movement_modifier: int = 0
    attack_multiplier: float = 1.0
    defense_multiplier: float = 1.0
    foliage_cover: bool = True  # False: foliage terrain gives no defense
    vision_cap: int = 0  # 0 = no cap


WEATHER_EFFECTS = {
    Weather.CLEAR: WeatherEffects(),
    Weather.RAIN: WeatherEffects(vision_modifier=-1, foliage_cover=False),
    Weather.SNOW: WeatherEffects(movement_modifier=-1, defense_multiplier=1.1),
    Weather.SANDSTORM: WeatherEffects(vision_modifier=-2, attack_multiplier=0.85),
    Weather.FOG: WeatherEffects(vision_cap=1),
}

# Relative weights for a random change; clear is the common case
WEATHER_WEIGHTS = {
    Weather.CLEAR: 50,
    Weather.RAIN: 15,
    Weather.SNOW: 10,
    Weather.SANDSTORM: 10,
    Weather.FOG: 15,
}


@dataclass
class WeatherState:
    """Current weather conditions."""
    current: Weather = Weather.CLEAR
    turns_remaining: int = 0  # 0 = lasts until the next random change
    dynamic: bool = True
    change_chance: int = 20  # percent per faction turn

    @property
    def effects(self) -> WeatherEffects:
        return WEATHER_EFFECTS[self.current]

    def set_weather(self, weather: Weather, turns: int = 0):
        self.current = weather
        self.turns_remaining = turns

    def apply_vision(self, base_vision: int) -> int:
        """Vision after weather, never below 1."""
        effects = self.effects
        vision = max(1, base_vision + effects.vision_modifier)
        if effects.vision_cap > 0:
            vision = min(vision, effects.vision_cap)
        return vision

    def apply_movement(self, base_movement: int) -> int:
        """Movement after weather, never below 1."""
        return max(1, base_movement + self.effects.movement_modifier)

    def advance(self, seed: int, turn: int, faction_index: int) -> Optional[Weather]:
        """Roll for a weather change. Returns the new weather if it changed."""
        if not self.dynamic:
            return None

        if self.turns_remaining > 0:
            self.turns_remaining -= 1
            if self.turns_remaining > 0:
                return None

        rng = random.Random(f"{seed}:{turn}:{faction_index}")
        if rng.randrange(100) >= self.change_chance:
            return None

        options = list(WEATHER_WEIGHTS)
        new_weather = rng.choices(options, weights=[WEATHER_WEIGHTS[w] for w in options])[0]
        if new_weather == self.current:
            return None

        logger.info(f"Weather changed from {self.current.value} to {new_weather.value}")
        self.current = new_weather
        return new_weather

    def to_dict(self) -> dict:
        return {
            "current": self.current.value,
            "turns_remaining": self.turns_remaining,
            "dynamic": self.dynamic,
            "change_chance": self.change_chance,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeatherState":
        return cls(
            current=Weather(data.get("current", "clear")),
            turns_remaining=int(data.get("turns_remaining", 0)),
            dynamic=bool(data.get("dynamic", True)),
            change_chance=int(data.get("change_chance", 20)),
        )
