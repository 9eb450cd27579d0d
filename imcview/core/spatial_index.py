"""
Uniform grid index over annotation bounding boxes, used for picking.
"""

import math
from typing import Dict, Iterable, List, Set, Tuple

from .config import INDEX_CELL_SIZE

Bounds = Tuple[float, float, float, float]
Cell = Tuple[int, int]


class GridIndex:
    """
    Maps grid cells to the ids of the items whose bounding box touches them.

    Updated incrementally: inserting, replacing or removing one item only
    touches the cells of that item.

    Attributes
    ----------
    cell_size : float
        Edge length of a grid cell in acquisition pixels.
    """

    cell_size: float

    def __init__(self, cell_size: float = INDEX_CELL_SIZE) -> None:
        if cell_size <= 0:
            raise ValueError(f"Cell size must be positive, got {cell_size}")
        self.cell_size = float(cell_size)
        self._cells: Dict[Cell, Set[int]] = {}
        self._bounds: Dict[int, Bounds] = {}

    def _cell_of(self, x: float, y: float) -> Cell:
        return (math.floor(x / self.cell_size), math.floor(y / self.cell_size))

    def _cells_of(self, bounds: Bounds) -> Iterable[Cell]:
        minx, miny, maxx, maxy = bounds
        cx0, cy0 = self._cell_of(minx, miny)
        cx1, cy1 = self._cell_of(maxx, maxy)
        for cx in range(cx0, cx1 + 1):
            for cy in range(cy0, cy1 + 1):
                yield (cx, cy)

    def insert(self, item_id: int, bounds: Bounds) -> None:
        """Add an item, replacing any previous entry with the same id."""
        if item_id in self._bounds:
            self.remove(item_id)
        self._bounds[item_id] = tuple(bounds)
        for cell in self._cells_of(bounds):
            self._cells.setdefault(cell, set()).add(item_id)

    def remove(self, item_id: int) -> None:
        """Drop an item; unknown ids are ignored."""
        bounds = self._bounds.pop(item_id, None)
        if bounds is None:
            return
        for cell in self._cells_of(bounds):
            ids = self._cells.get(cell)
            if ids is None:
                continue
            ids.discard(item_id)
            if not ids:
                del self._cells[cell]

    def clear(self) -> None:
        self._cells.clear()
        self._bounds.clear()

    def candidates(self, x: float, y: float) -> List[int]:
        """
        Ids whose bounding box contains (x, y), highest id first.

        Callers still run the exact point-in-polygon test on the result.
        """
        ids = self._cells.get(self._cell_of(x, y), ())
        hits = []
        for item_id in ids:
            minx, miny, maxx, maxy = self._bounds[item_id]
            if minx <= x <= maxx and miny <= y <= maxy:
                hits.append(item_id)
        return sorted(hits, reverse=True)

    def __len__(self) -> int:
        return len(self._bounds)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._bounds
