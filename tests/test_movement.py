"""
Tests for reachability, pathfinding and move application.
"""

import pytest

from skirmish.errors import AlreadyActed, AlreadyMoved, OccupiedCell, OutOfBounds, UnreachableCell
from skirmish.map import manhattan
from skirmish.movement import movement_allowance
from skirmish.weather import Weather

OPEN_5x5 = [".....", ".....", ".....", ".....", "....."]


class TestReachable:

    def test_open_ground_respects_allowance(self, new_match, start):
        state = new_match(OPEN_5x5, units=[
            ("r1", "infantry", "red", (2, 2)),
            ("b1", "infantry", "blue", (4, 4)),
        ])
        controller = start(state)
        cells = controller.reachable("r1")

        assert all(c.cost <= 3 for c in cells.values())
        assert all(manhattan((2, 2), pos) == c.cost for pos, c in cells.items())
        # every cell except the four corners
        assert len(cells) == 21
        assert (4, 4) not in cells

    def test_origin_is_reachable_at_zero_cost(self, new_match, start):
        state = new_match(OPEN_5x5, units=[("r1", "infantry", "red", (0, 0)), ("b1", "infantry", "blue", (4, 4))])
        cells = start(state).reachable("r1")
        assert cells[(0, 0)].cost == 0
        assert cells[(0, 0)].path == ((0, 0),)

    def test_impassable_terrain_excluded(self, new_match, start):
        state = new_match([
            "...",
            "~~~",
            "...",
        ], units=[("r1", "infantry", "red", (1, 0)), ("b1", "infantry", "blue", (1, 2))])
        cells = start(state).reachable("r1")
        assert set(cells) == {(0, 0), (1, 0), (2, 0)}

    def test_class_specific_costs(self, new_match, start):
        state = new_match([".#...", "....."], units=[
            ("r1", "tank", "red", (0, 0)),
            ("r2", "infantry", "red", (0, 1)),
            ("b1", "infantry", "blue", (4, 1)),
        ])
        controller = start(state)
        # treads cannot enter the wall; foot pays 2
        assert (1, 0) not in controller.reachable("r1")
        assert controller.reachable("r2")[(1, 0)].cost == 3

    def test_wall_costs_two_for_foot(self, new_match, start):
        state = new_match(["#...", "...."], units=[
            ("r1", "infantry", "red", (1, 0)),
            ("b1", "infantry", "blue", (3, 1)),
        ])
        cells = start(state).reachable("r1")
        assert cells[(0, 0)].cost == 2
        assert cells[(0, 1)].cost == 2

    def test_air_units_fly_over_water(self, new_match, start):
        state = new_match(["~~~~~."], units=[("r1", "flyer", "red", (0, 0)), ("b1", "infantry", "blue", (5, 0))])
        cells = start(state).reachable("r1")
        assert (2, 0) in cells

    def test_visible_enemy_blocks(self, new_match, start):
        state = new_match(["....."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (2, 0)),
        ])
        cells = start(state).reachable("r1")
        assert set(cells) == {(0, 0), (1, 0)}

    def test_pass_through_friendly_but_not_stop(self, new_match, start):
        state = new_match(["......"], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("r2", "infantry", "red", (1, 0)),
            ("b1", "infantry", "blue", (5, 0)),
        ])
        cells = start(state).reachable("r1")
        assert (1, 0) not in cells
        assert cells[(3, 0)].path == ((0, 0), (1, 0), (2, 0), (3, 0))

    def test_team_mates_can_be_passed(self, new_match, start):
        state = new_match(["......"], factions=("red", "blue", "green"), units=[
            ("r1", "infantry", "red", (0, 0)),
            ("g1", "infantry", "green", (1, 0)),
            ("b1", "infantry", "blue", (5, 0)),
        ])
        cells = start(state).reachable("r1")
        assert (1, 0) not in cells
        assert (2, 0) in cells

    def test_tie_break_prefers_scan_order(self, new_match, start):
        state = new_match(OPEN_5x5, units=[("r1", "infantry", "red", (0, 0)), ("b1", "infantry", "blue", (4, 4))])
        cells = start(state).reachable("r1")
        assert cells[(1, 1)].path == ((0, 0), (1, 0), (1, 1))

    def test_results_are_reproducible(self, new_match, start):
        def run():
            state = new_match(["..F..", ".#.T.", "....."], units=[
                ("r1", "infantry", "red", (0, 0)),
                ("b1", "infantry", "blue", (4, 2)),
            ])
            return start(state).reachable("r1")

        assert run() == run()

    def test_fuel_caps_allowance(self, new_match, start):
        state = new_match(OPEN_5x5, units=[("r1", "tank", "red", (0, 0)), ("b1", "infantry", "blue", (4, 4))])
        controller = start(state)
        state.battlefield.get_unit("r1").fuel = 1
        cells = controller.reachable("r1")
        assert set(cells) == {(0, 0), (1, 0), (0, 1)}

    def test_snow_slows_movement(self, new_match, start):
        state = new_match(OPEN_5x5, weather="snow", units=[
            ("r1", "infantry", "red", (0, 0)), ("b1", "infantry", "blue", (4, 4)),
        ])
        controller = start(state)
        assert movement_allowance(state, state.battlefield.get_unit("r1")) == 2
        assert max(c.cost for c in controller.reachable("r1").values()) == 2

    def test_commander_movement_bonus(self, new_match, start):
        state = new_match(OPEN_5x5, commanders={"red": "runner"}, units=[
            ("r1", "infantry", "red", (0, 0)), ("b1", "infantry", "blue", (4, 4)),
        ])
        start(state)
        assert movement_allowance(state, state.battlefield.get_unit("r1")) == 4


class TestApplyMove:

    @pytest.fixture
    def controller(self, new_match, start):
        state = new_match(OPEN_5x5, units=[
            ("r1", "infantry", "red", (0, 0)),
            ("r2", "infantry", "red", (1, 0)),
            ("b1", "infantry", "blue", (4, 4)),
        ])
        return start(state)

    def test_move_updates_position_and_flags(self, controller):
        result = controller.apply_move("r1", (0, 2))
        unit = controller.state.battlefield.get_unit("r1")
        assert unit.pos == (0, 2)
        assert unit.moved and not unit.acted
        assert result.destination == (0, 2)
        assert result.cost == 2
        assert unit.fuel == 97
        assert controller.state.battlefield.check_integrity()

    def test_moved_unit_only_reaches_its_cell(self, controller):
        controller.apply_move("r1", (0, 2))
        assert set(controller.reachable("r1")) == {(0, 2)}

    def test_second_move_rejected(self, controller):
        controller.apply_move("r1", (0, 2))
        with pytest.raises(AlreadyMoved):
            controller.apply_move("r1", (0, 1))

    def test_acted_unit_cannot_move(self, controller):
        controller.apply_wait("r1")
        with pytest.raises(AlreadyActed):
            controller.apply_move("r1", (0, 1))

    def test_unreachable(self, controller):
        with pytest.raises(UnreachableCell):
            controller.apply_move("r1", (3, 3))
        assert controller.state.battlefield.get_unit("r1").pos == (0, 0)

    def test_occupied_by_friend(self, controller):
        with pytest.raises(OccupiedCell):
            controller.apply_move("r1", (1, 0))

    def test_out_of_bounds(self, controller):
        with pytest.raises(OutOfBounds):
            controller.apply_move("r1", (9, 9))


class TestAmbush:
    """Hidden enemies do not block planning but stop the move."""

    @pytest.fixture
    def state(self, new_match):
        return new_match(["..T.."], units=[
            ("r1", "infantry", "red", (0, 0)),
            ("b1", "infantry", "blue", (2, 0)),
        ])

    def test_hidden_enemy_does_not_block_planning(self, state, start):
        controller = start(state)
        assert (2, 0) not in controller.visible_cells("red")
        assert (3, 0) in controller.reachable("r1")

    def test_walking_into_hidden_enemy(self, state, start):
        controller = start(state)
        result = controller.apply_move("r1", (3, 0))
        unit = state.battlefield.get_unit("r1")

        assert result.trapped
        assert result.ambushed_by == "b1"
        assert unit.pos == (1, 0)
        assert unit.moved and unit.acted
        assert result.path == [(0, 0), (1, 0)]
        assert unit.fuel == 98
        assert state.battlefield.check_integrity()
