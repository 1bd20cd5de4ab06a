"""
Tactical AI: greedy one-action-at-a-time search over the Action API.

Handles:
- Candidate enumeration (unit, destination, attack/capture/join/hold)
- Utility scoring: damage, counter risk, capture progress, objective proximity
- A threat map of where visible enemies can strike next turn
- Doctrines that weight those utilities
- Node and wall-clock budgets
- Power activation and end-of-turn production

Everything is scored from the faction view; hidden units and the true owner
of unseen structures never reach the scoring.
"""

import heapq
import logging
import time
from dataclasses import dataclass
from typing import Optional

from skirmish.errors import ActionError, ConfigurationError, OccupiedCell
from skirmish.map import Coord, manhattan, scan_key
from skirmish.movement import JOIN, merge_kind
from skirmish.rules import UnitType
from skirmish.turn import TurnController
from skirmish.units import Unit

from .base import Agent, AgentConfig

logger = logging.getLogger(__name__)

REQUIRED_BONUS = 50.0
JOIN_BELOW = 0.5  # only units under half strength look for a merge

# Per enemy id, the strength it can bring against a cell next turn
ThreatMap = dict[Coord, dict[str, float]]


@dataclass(frozen=True)
class Doctrine:
    """Weights applied to each utility term."""
    attack: float = 1.0
    capture: float = 1.0
    proximity: float = 2.0  # per cell closer to the nearest objective
    threat: float = 1.0  # scales the position safety penalty


DOCTRINES = {
    "balanced": Doctrine(),
    "aggressive": Doctrine(attack=1.5, capture=0.8, proximity=3.0, threat=0.5),
    "cautious": Doctrine(attack=0.8, capture=1.0, proximity=1.0, threat=1.5),
}


def get_doctrine(name: str) -> Doctrine:
    try:
        return DOCTRINES[name]
    except KeyError:
        raise ConfigurationError(f"Unknown doctrine '{name}' (expected one of {sorted(DOCTRINES)})") from None


def unit_value(cost: int) -> float:
    """Scale a unit cost to utility points (a 1000-cost unit is worth 10)."""
    return cost / 100


def damage_utility(damage: int, target_hp: int, target_value: float) -> float:
    if damage <= 0:
        return 0.0
    if damage >= target_hp:
        return target_value * 5 + 50
    ratio = damage / target_hp
    if ratio > 0.7:
        return target_value * 3 * ratio
    if ratio > 0.4:
        return target_value * 2 * ratio
    return target_value * ratio


def risk_utility(counter: int, own_hp: int, own_value: float) -> float:
    if counter <= 0:
        return 0.0
    if counter >= own_hp:
        return -own_value * 2
    ratio = counter / own_hp
    if ratio > 0.7:
        return -own_value * ratio * 1.5
    if ratio > 0.3:
        return -own_value * ratio * 0.8
    return -own_value * ratio * 0.3


def safety_utility(threat: float, own_hp: int) -> float:
    """Penalty for ending on a cell the enemy can strike with the given strength."""
    if threat <= 0:
        return 0.0
    if own_hp <= 0:
        return -25.0
    danger = threat / own_hp
    if danger > 1.5:
        return -25.0
    if danger > 1.0:
        return -15.0
    if danger > 0.5:
        return -5.0 * danger
    return 0.0


def capture_utility(progress: int, threshold: int, income: int, required: bool) -> float:
    base = unit_value(income) * 3
    if required:
        base += REQUIRED_BONUS
    if threshold <= 0:
        return base * 2
    completion = progress / threshold
    if completion >= 1:
        return base * 2
    if completion > 0.5:
        return base * (1 + completion)
    if completion > 0:
        return base * (0.5 + completion)
    return base * 0.5


def threat_level(threats: ThreatMap, pos: Coord, exclude: Optional[str] = None) -> float:
    return sum(strength for enemy_id, strength in threats.get(pos, {}).items() if enemy_id != exclude)


@dataclass
class Candidate:
    unit_id: str
    dest: Coord
    action: str  # attack, capture, join or hold
    score: float
    target_id: Optional[str] = None

    def sort_key(self):
        return (-self.score, self.unit_id, scan_key(self.dest), self.target_id or "")

    def describe(self) -> str:
        text = f"{self.unit_id} -> {list(self.dest)} {self.action}"
        if self.target_id:
            text += f" {self.target_id}"
        return text

    def to_dict(self) -> dict:
        return {
            "unit": self.unit_id,
            "dest": list(self.dest),
            "action": self.action,
            "target": self.target_id,
            "score": round(self.score, 2),
        }


class TacticalAgent(Agent):
    """Heuristic agent that commits the best-scoring candidate action one step at a time."""

    def __init__(self, config: AgentConfig):
        super().__init__(config)
        self.doctrine = get_doctrine(config.doctrine)
        self._nodes = 0
        self._deadline = 0.0
        self._exhausted_logged = False

    # Budget
    def _start_budget(self):
        self._nodes = 0
        self._deadline = time.monotonic() + self.config.time_budget_s
        self._exhausted_logged = False

    def budget_exhausted(self) -> bool:
        exhausted = self._nodes >= self.config.max_nodes or time.monotonic() >= self._deadline
        if exhausted and not self._exhausted_logged:
            logger.warning(
                f"{self.faction}: search budget exhausted after {self._nodes} nodes on turn {self.turn_count}"
            )
            self._exhausted_logged = True
        return exhausted

    # Turn
    def play_turn(self, controller: TurnController) -> list[dict]:
        self.turn_count += 1
        self._start_budget()
        actions: list[dict] = []

        self._maybe_activate_power(controller, actions)

        while True:
            units = controller.selectable_units(self.faction)
            if not units:
                break
            ranked = self.rank_candidates(controller, units)
            if not ranked or ranked[0].score <= 0:
                self.wait_all(controller, actions)
                break
            choice = self.choose(controller, ranked)
            actions.append(self._commit(controller, choice))
            if self.budget_exhausted():
                self.wait_all(controller, actions)
                break

        if self.config.produce:
            self._produce(controller, actions)
        return actions

    def choose(self, controller: TurnController, ranked: list[Candidate]) -> Candidate:
        """Pick one of the ranked candidates. The first is always the best scored."""
        return ranked[0]

    # Candidates
    def rank_candidates(self, controller: TurnController, units: Optional[list[Unit]] = None) -> list[Candidate]:
        """Score every (unit, destination, action) tuple, best first.

        Stops early when the budget runs out; whatever was scored so far is returned.
        """
        if units is None:
            units = controller.selectable_units(self.faction)
        view = controller.faction_view(self.faction)
        objectives = self._objectives(controller, view)
        remembered = {tuple(s["pos"]): s["owner"] for s in view["structures"]}
        threats = self.threat_map(controller, view)

        candidates: list[Candidate] = []
        for unit in sorted(units, key=lambda u: u.id):
            routes = controller.reachable(unit.id, merges=True)
            for dest in sorted(routes, key=scan_key):
                if self.budget_exhausted():
                    candidates.sort(key=Candidate.sort_key)
                    return candidates
                partner = routes[dest].merge_with
                if partner is None:
                    candidates.extend(self._evaluate(controller, unit, dest, objectives, remembered, threats))
                else:
                    candidates.extend(self._evaluate_join(controller, unit, partner, threats))

        candidates.sort(key=Candidate.sort_key)
        logger.debug(f"{self.faction}: {len(candidates)} candidates from {len(units)} units")
        return candidates

    def _evaluate(
        self,
        controller: TurnController,
        unit: Unit,
        dest: Coord,
        objectives: list[Coord],
        remembered: dict[Coord, Optional[str]],
        threats: ThreatMap,
    ) -> list[Candidate]:
        rules = controller.rules
        state = controller.state
        doctrine = self.doctrine
        unit_type = unit.type_info(rules)
        own_value = unit_value(unit_type.cost)
        risk_weight = 1.5 - self.config.risk_tolerance
        results = []

        for target in controller.legal_targets(unit.id, dest):
            self._nodes += 1
            damage, counter = controller.combat.forecast(state, unit, target, from_pos=dest)
            target_value = unit_value(target.type_info(rules).cost)
            score = doctrine.attack * damage_utility(damage, target.hp, target_value)
            score += risk_weight * risk_utility(counter, unit.hp, own_value)
            # The target's own reach is already priced in as counter risk
            exposure = threat_level(threats, dest, exclude=target.id)
            score += doctrine.threat * safety_utility(exposure, unit.hp - counter)
            results.append(Candidate(unit.id, dest, "attack", score, target.id))

        safety = doctrine.threat * safety_utility(threat_level(threats, dest), unit.hp)

        cell = state.battlefield.get_cell(dest)
        terrain = rules.terrain_type(cell.terrain)
        # Ownership as last seen; a structure never seen counts as not ours
        owner = remembered.get(dest)
        owned = owner is not None and state.is_friendly(self.faction, owner)
        if unit_type.can_capture and terrain.capturable and not owned:
            self._nodes += 1
            progress = unit.display_hp(rules)
            if dest == unit.pos and cell.capturing_faction == unit.faction:
                progress += cell.capture_points
            score = doctrine.capture * capture_utility(
                progress, terrain.capture_threshold, terrain.income, terrain.required
            )
            results.append(Candidate(unit.id, dest, "capture", score + safety))

        self._nodes += 1
        score = 0.0
        if objectives:
            before = min(manhattan(unit.pos, obj) for obj in objectives)
            after = min(manhattan(dest, obj) for obj in objectives)
            score += doctrine.proximity * (before - after)
        results.append(Candidate(unit.id, dest, "hold", score + safety))
        return results

    def _evaluate_join(
        self, controller: TurnController, unit: Unit, partner_id: str, threats: ThreatMap
    ) -> list[Candidate]:
        """Worth of merging a weakened unit into a damaged one of its type."""
        state = controller.state
        rules = controller.rules
        partner = state.battlefield.get_unit(partner_id)
        if merge_kind(state, unit, partner) != JOIN or unit.hp_ratio(rules) >= JOIN_BELOW:
            return []

        self._nodes += 1
        unit_type = unit.type_info(rules)
        merged_hp = min(unit_type.max_hp, partner.hp + unit.hp)
        restored = merged_hp - partner.hp
        score = unit_value(unit_type.cost) * restored / unit_type.max_hp
        score += self.doctrine.threat * safety_utility(threat_level(threats, partner.pos), merged_hp)
        return [Candidate(unit.id, partner.pos, "join", score, partner.id)]

    def _objectives(self, controller: TurnController, view: dict) -> list[Coord]:
        """Visible enemies, structures not known to be friendly, and unexplored capturable cells."""
        state = controller.state
        objectives = [(e["x"], e["y"]) for e in view["visible_enemies"]]
        remembered = set()
        for structure in view["structures"]:
            pos = tuple(structure["pos"])
            remembered.add(pos)
            owner = structure["owner"]
            if owner is None or not state.is_friendly(self.faction, owner):
                objectives.append(pos)
        # Terrain is public; ownership of unexplored structures is not
        for cell in state.battlefield.grid.capturable_cells():
            if cell.pos not in remembered:
                objectives.append(cell.pos)
        return objectives

    # Threats
    def threat_map(self, controller: TurnController, view: dict) -> ThreatMap:
        """
        Cells each visible enemy could attack on its next turn.

        An enemy's strength is attack scaled by its remaining hit points.
        Direct-fire enemies strike from any cell they could reach (our own
        units block them); indirect-fire enemies only from where they stand.
        Enemies out of ammunition threaten nothing.
        """
        state = controller.state
        rules = controller.rules
        grid = state.battlefield.grid
        blockers = {
            u.pos for u in state.battlefield.iter_units() if state.is_friendly(self.faction, u.faction)
        }
        enemy_cells = {(e["x"], e["y"]) for e in view["visible_enemies"]}

        threats: ThreatMap = {}
        for enemy in view["visible_enemies"]:
            enemy_type = rules.unit_type(enemy["unit_type"])
            if not enemy_type.can_attack:
                continue
            if enemy_type.uses_ammo and enemy["ammo"] < rules.settings.ammo_per_attack:
                continue
            origin = (enemy["x"], enemy["y"])
            if enemy_type.is_indirect:
                stands = {origin}
            else:
                allowance = min(state.weather.apply_movement(enemy_type.movement), enemy["fuel"])
                reach = self._enemy_reach(controller, enemy_type, origin, allowance, blockers)
                stands = {pos for pos in reach if pos == origin or pos not in enemy_cells}

            strength = enemy_type.attack * enemy["hp"] / enemy_type.max_hp
            low, high = enemy_type.attack_range
            struck: set[Coord] = set()
            for pos in stands:
                struck.update(grid.get_cells_in_radius(pos, high, low))
            for pos in struck:
                threats.setdefault(pos, {})[enemy["id"]] = strength
        return threats

    def _enemy_reach(
        self, controller: TurnController, enemy_type: UnitType, origin: Coord, allowance: int, blockers: set[Coord]
    ) -> set[Coord]:
        """Cells an enemy could move to, by terrain cost alone."""
        grid = controller.state.battlefield.grid
        best = {origin: 0}
        heap = [(0, scan_key(origin), origin)]
        while heap:
            cost, _, pos = heapq.heappop(heap)
            if cost > best[pos]:
                continue
            for neighbor in grid.get_neighbors(pos):
                if neighbor in blockers:
                    continue
                step = grid.terrain_at(neighbor).cost_for(enemy_type.unit_class)
                if step is None or cost + step > allowance:
                    continue
                if cost + step < best.get(neighbor, allowance + 1):
                    best[neighbor] = cost + step
                    heapq.heappush(heap, (cost + step, scan_key(neighbor), neighbor))
        return set(best)

    # Commit
    def _commit(self, controller: TurnController, candidate: Candidate) -> dict:
        record = candidate.to_dict()
        unit_id = candidate.unit_id
        try:
            if candidate.action == "join":
                result = controller.apply_join(unit_id, candidate.target_id)
                record["hp"] = result.hp
                record["refund"] = result.refund
                if result.trapped:
                    record["trapped"] = True
                return record
            unit = controller.state.battlefield.get_unit(unit_id)
            if candidate.dest != unit.pos:
                result = controller.apply_move(unit_id, candidate.dest)
                if result.trapped:
                    record["trapped"] = True
                    record["ambushed_by"] = result.ambushed_by
                    logger.debug(f"{unit_id} ambushed at {result.destination}")
                    return record
            if candidate.action == "attack":
                outcome = controller.apply_attack(unit_id, candidate.target_id)
                record["damage"] = outcome.damage
                record["counter_damage"] = outcome.counter_damage
            elif candidate.action == "capture":
                result = controller.apply_capture(unit_id)
                record["captured"] = result.captured
            else:
                controller.apply_wait(unit_id)
        except ActionError as exc:
            logger.warning(f"{self.faction}: {candidate.describe()} rejected: {exc}")
            record["rejected"] = str(exc)
            unit = controller.state.battlefield.get_unit(unit_id)
            if unit is not None and not unit.acted:
                controller.apply_wait(unit_id)
        return record

    # Powers and production
    def _maybe_activate_power(self, controller: TurnController, actions: list[dict]):
        view = controller.faction_view(self.faction)
        if view["commander"] is None or view["power_active"]:
            return
        if view["charge"] < view["power_cost"] or not view["visible_enemies"]:
            return
        power = controller.activate_power(self.faction)
        actions.append({"action": "power", "power": power.name})
        logger.info(f"{self.faction} activates {power.name}")

    def _produce(self, controller: TurnController, actions: list[dict]):
        state = controller.state
        if state.game_over or state.active_faction != self.faction:
            return
        rules = controller.rules
        buildable = sorted(
            (t for t in rules.unit_types.values() if t.can_attack or t.can_capture),
            key=lambda t: (-t.cost, t.id),
        )

        view = controller.faction_view(self.faction)
        occupied = {(u["x"], u["y"]) for u in view["own_units"] + view["visible_enemies"]}

        for cell in state.owned_cells(self.faction):
            if cell.pos in occupied:
                continue
            resources = state.faction(self.faction).resources
            for unit_type in buildable:
                if not controller.can_produce_at(self.faction, unit_type.id, cell.pos):
                    continue
                if controller.production_cost(self.faction, unit_type.id) > resources:
                    continue
                try:
                    unit = controller.apply_produce(self.faction, unit_type.id, cell.pos)
                except OccupiedCell:
                    logger.debug(f"{self.faction}: production cell {cell.pos} is blocked")
                    break
                actions.append({"action": "produce", "unit": unit.id, "unit_type": unit_type.id, "cell": list(cell.pos)})
                break
