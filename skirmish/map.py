"""
Square grid map for the skirmish engine.

Coordinates are (x, y) with the origin at the top-left corner. Movement,
attack range and vision all use the 4-neighborhood and Manhattan distance.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

from .errors import ConfigurationError, OutOfBounds
from .rules import RuleTables, TerrainType


Coord = tuple[int, int]

# 4-neighborhood in scan order (up, left, right, down)
DIRECTIONS = [(0, -1), (-1, 0), (1, 0), (0, 1)]


def scan_key(pos: Coord) -> tuple[int, int]:
    """Row-major ordering key used for every deterministic tie-break."""
    return (pos[1], pos[0])


def manhattan(a: Coord, b: Coord) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


@dataclass
class Cell:
    """Individual grid cell."""
    x: int
    y: int
    terrain: str  # terrain type id
    owner: Optional[str] = None
    capture_points: int = 0
    capturing_faction: Optional[str] = None

    @property
    def pos(self) -> Coord:
        return (self.x, self.y)

    def reset_capture(self):
        self.capture_points = 0
        self.capturing_faction = None


class GridMap:
    """
    Rectangular grid of terrain cells.

    Cells are stored by (x, y). Terrain ids resolve through the rule tables
    the map was built with.
    """

    def __init__(self, width: int, height: int, rules: RuleTables, default_terrain: Optional[str] = None):
        if width <= 0 or height <= 0:
            raise ConfigurationError(f"Map size must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self.rules = rules
        fill = default_terrain or next(iter(rules.terrain))
        rules.terrain_type(fill)
        self.cells: dict[Coord, Cell] = {
            (x, y): Cell(x=x, y=y, terrain=fill)
            for y in range(height)
            for x in range(width)
        }

    @classmethod
    def from_rows(cls, rows: list[str], rules: RuleTables) -> "GridMap":
        """Build a map from rows of terrain symbols (one character per cell)."""
        rows = [row.strip() for row in rows if row.strip()]
        if not rows:
            raise ConfigurationError("Map has no rows")
        width = len(rows[0])
        for y, row in enumerate(rows):
            if len(row) != width:
                raise ConfigurationError(f"Map row {y} has {len(row)} cells, expected {width}")

        grid = cls(width, len(rows), rules)
        for y, row in enumerate(rows):
            for x, symbol in enumerate(row):
                grid.cells[(x, y)].terrain = rules.terrain_for_symbol(symbol).id
        return grid

    def to_rows(self) -> list[str]:
        return [
            "".join(self.terrain_at((x, y)).symbol for x in range(self.width))
            for y in range(self.height)
        ]

    # Cell access
    def in_bounds(self, pos: Coord) -> bool:
        return 0 <= pos[0] < self.width and 0 <= pos[1] < self.height

    def get_cell(self, pos: Coord) -> Optional[Cell]:
        """Get cell at coordinates, or None outside the grid."""
        return self.cells.get(pos)

    def require_cell(self, pos: Coord) -> Cell:
        cell = self.cells.get(pos)
        if cell is None:
            raise OutOfBounds(f"{pos} lies outside the {self.width}x{self.height} grid")
        return cell

    def terrain_at(self, pos: Coord) -> TerrainType:
        return self.rules.terrain_type(self.require_cell(pos).terrain)

    def iter_cells(self) -> Iterator[Cell]:
        """Cells in scan order."""
        for y in range(self.height):
            for x in range(self.width):
                yield self.cells[(x, y)]

    # Geometry
    def get_neighbors(self, pos: Coord) -> list[Coord]:
        """Adjacent in-bounds coordinates in scan order."""
        x, y = pos
        return [
            (x + dx, y + dy) for dx, dy in DIRECTIONS
            if self.in_bounds((x + dx, y + dy))
        ]

    def get_cells_in_radius(self, pos: Coord, radius: int, min_radius: int = 0) -> list[Coord]:
        """In-bounds coordinates with min_radius <= distance <= radius, in scan order."""
        x, y = pos
        result = []
        for cy in range(max(0, y - radius), min(self.height, y + radius + 1)):
            for cx in range(max(0, x - radius), min(self.width, x + radius + 1)):
                d = abs(cx - x) + abs(cy - y)
                if min_radius <= d <= radius:
                    result.append((cx, cy))
        return result

    # Ownership
    def get_cells_by_owner(self, faction: str) -> list[Cell]:
        """Get all cells owned by a faction."""
        return [c for c in self.iter_cells() if c.owner == faction]

    def capturable_cells(self) -> list[Cell]:
        return [c for c in self.iter_cells() if self.rules.terrain_type(c.terrain).capturable]

    def get_stats(self) -> dict:
        """Get map statistics."""
        terrain_counts: dict[str, int] = {}
        owner_counts: dict[str, int] = {}

        for cell in self.cells.values():
            terrain_counts[cell.terrain] = terrain_counts.get(cell.terrain, 0) + 1
            if cell.owner:
                owner_counts[cell.owner] = owner_counts.get(cell.owner, 0) + 1

        return {
            "width": self.width,
            "height": self.height,
            "total_cells": len(self.cells),
            "terrain_distribution": terrain_counts,
            "ownership": owner_counts,
        }
