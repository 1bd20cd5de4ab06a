"""
Tests for weather effects and seeded weather changes.
"""

from skirmish.weather import WEATHER_EFFECTS, Weather, WeatherState


class TestEffects:

    def test_vision_never_below_one(self):
        weather = WeatherState(current=Weather.SANDSTORM)
        assert weather.apply_vision(2) == 1
        assert weather.apply_vision(5) == 3

    def test_fog_caps_vision(self):
        weather = WeatherState(current=Weather.FOG)
        assert weather.apply_vision(5) == 1

    def test_snow_slows_but_never_stops(self):
        weather = WeatherState(current=Weather.SNOW)
        assert weather.apply_movement(3) == 2
        assert weather.apply_movement(1) == 1

    def test_rain_removes_foliage_cover(self):
        assert not WEATHER_EFFECTS[Weather.RAIN].foliage_cover
        assert WEATHER_EFFECTS[Weather.CLEAR].foliage_cover


class TestAdvance:

    def test_static_weather_never_changes(self):
        weather = WeatherState(current=Weather.RAIN, dynamic=False, change_chance=100)
        assert all(weather.advance(7, turn, 0) is None for turn in range(1, 30))
        assert weather.current == Weather.RAIN

    def test_zero_chance_never_changes(self):
        weather = WeatherState(change_chance=0)
        assert all(weather.advance(7, turn, i) is None for turn in range(1, 30) for i in range(2))
        assert weather.current == Weather.CLEAR

    def test_same_seed_same_sequence(self):
        def run(seed):
            weather = WeatherState(change_chance=100)
            sequence = []
            for turn in range(1, 25):
                for index in range(2):
                    weather.advance(seed, turn, index)
                    sequence.append(weather.current)
            return sequence

        first = run(42)
        assert first == run(42)
        assert len(set(first)) > 1

    def test_timed_weather_holds(self):
        weather = WeatherState(change_chance=0)
        weather.set_weather(Weather.SNOW, turns=2)
        weather.advance(1, 1, 0)
        assert weather.turns_remaining == 1
        assert weather.current == Weather.SNOW


class TestPersistence:

    def test_round_trip(self):
        weather = WeatherState(current=Weather.FOG, turns_remaining=3, dynamic=False, change_chance=35)
        assert WeatherState.from_dict(weather.to_dict()) == weather

    def test_defaults(self):
        weather = WeatherState.from_dict({})
        assert weather.current == Weather.CLEAR
        assert weather.dynamic
        assert weather.change_chance == 20
