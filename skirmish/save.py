"""
Save and restore full match state.

A snapshot is plain JSON-compatible data. Restoring it only needs the rule
tables for identifier lookups; nothing is re-derived from them.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path

from .battlefield import Battlefield
from .errors import ActionError, SnapshotError
from .map import GridMap, scan_key
from .rules import RuleTables
from .state import FactionState, MatchState, Phase, TurnState
from .units import Unit
from .weather import WeatherState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def snapshot(state: MatchState) -> dict:
    """Capture every mutable part of the match."""
    grid = state.battlefield.grid
    cells = [
        {
            "pos": [c.x, c.y],
            "owner": c.owner,
            "capture_points": c.capture_points,
            "capturing_faction": c.capturing_faction,
        }
        for c in grid.iter_cells()
        if c.owner is not None or c.capture_points or c.capturing_faction is not None
    ]

    factions = []
    for f in state.factions.values():
        factions.append({
            "id": f.id,
            "team": f.team,
            "commander_id": f.commander_id,
            "resources": f.resources,
            "charge": f.charge,
            "power_active": f.power_active,
            "eliminated": f.eliminated,
            "started_with_required": f.started_with_required,
            "explored": [list(p) for p in sorted(f.explored, key=scan_key)],
            "remembered_owners": [
                {"pos": list(p), "owner": f.remembered_owners[p]}
                for p in sorted(f.remembered_owners, key=scan_key)
            ],
        })

    return {
        "version": SNAPSHOT_VERSION,
        "seed": state.seed,
        "next_unit_serial": state.next_unit_serial,
        "game_over": state.game_over,
        "winner": list(state.winner),
        "map": {"width": grid.width, "height": grid.height, "rows": grid.to_rows()},
        "cells": cells,
        "units": [asdict(u) for u in state.battlefield.iter_units()],
        "factions": factions,
        "turn": {
            "active_index": state.turn.active_index,
            "turn_number": state.turn.turn_number,
            "phase": state.turn.phase.value,
            "started": state.turn.started,
            "log": json.loads(json.dumps(state.turn.log)),
            "history": json.loads(json.dumps(state.turn.history)),
        },
        "weather": state.weather.to_dict(),
    }


def restore(data: dict, rules: RuleTables) -> MatchState:
    """Rebuild a live MatchState from a snapshot."""
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot must be a mapping")
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version {version!r} (expected {SNAPSHOT_VERSION})")

    try:
        grid = GridMap.from_rows(data["map"]["rows"], rules)
        if (grid.width, grid.height) != (data["map"]["width"], data["map"]["height"]):
            raise SnapshotError("Map rows do not match the recorded map size")

        for entry in data["cells"]:
            cell = grid.require_cell(tuple(entry["pos"]))
            cell.owner = entry["owner"]
            cell.capture_points = int(entry["capture_points"])
            cell.capturing_faction = entry["capturing_faction"]

        battlefield = Battlefield(grid)
        for entry in data["units"]:
            unit = Unit.from_dict(entry)
            for loaded in unit.cargo:
                rules.unit_type(loaded.unit_type)
            battlefield.place_unit(unit)

        factions = []
        for entry in data["factions"]:
            factions.append(FactionState(
                id=entry["id"],
                team=entry["team"],
                commander_id=entry["commander_id"],
                resources=int(entry["resources"]),
                charge=int(entry["charge"]),
                power_active=bool(entry["power_active"]),
                eliminated=bool(entry["eliminated"]),
                started_with_required=bool(entry["started_with_required"]),
                explored={tuple(p) for p in entry["explored"]},
                remembered_owners={tuple(r["pos"]): r["owner"] for r in entry["remembered_owners"]},
            ))

        state = MatchState(
            rules,
            battlefield,
            factions,
            seed=data["seed"],
            weather=WeatherState.from_dict(data["weather"]),
        )
        for unit in battlefield.units.values():
            state.faction(unit.faction)

        turn = data["turn"]
        state.turn = TurnState(
            active_index=int(turn["active_index"]),
            turn_number=int(turn["turn_number"]),
            phase=Phase(turn["phase"]),
            started=bool(turn["started"]),
            log=list(turn["log"]),
            history=list(turn["history"]),
        )
        state.next_unit_serial = int(data["next_unit_serial"])
        state.game_over = bool(data["game_over"])
        state.winner = list(data["winner"])
    except (KeyError, TypeError, ValueError, ActionError) as exc:
        raise SnapshotError(f"Malformed snapshot: {exc!r}") from exc

    if not 0 <= state.turn.active_index < len(state.factions):
        raise SnapshotError(f"Active faction index {state.turn.active_index} out of range")
    return state


def save_game(state: MatchState, filepath: Path | str):
    """Save match state to a JSON file."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w") as f:
        json.dump(snapshot(state), f, indent=2)
    logger.info(f"Saved match to {filepath}")


def load_game(filepath: Path | str, rules: RuleTables) -> MatchState:
    """Load match state from a JSON file."""
    try:
        with open(filepath) as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise SnapshotError(f"{filepath} is not valid JSON: {exc}") from exc
    state = restore(data, rules)
    logger.info(f"Loaded match from {filepath} (turn {state.turn.turn_number}, {state.active_faction} to act)")
    return state
