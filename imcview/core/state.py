"""
Pencil interaction state for an annotation set.
"""

from enum import Enum, auto
from typing import List, Tuple

Point = Tuple[float, float]


class StrokeState(Enum):
    """
    Enum representing the drawing state of an annotation set.
    """

    IDLE = auto()
    DRAWING = auto()


class Stroke:
    """
    Transient free-hand path recorded between begin and commit.

    Consecutive duplicate points are collapsed as they arrive, so a pointer
    that does not move adds nothing.

    Attributes
    ----------
    points : List[Point]
        The recorded points in drawing order.
    """

    points: List[Point]

    def __init__(self, start: Point) -> None:
        self.points = []
        self.append(start)

    def append(self, point: Point) -> bool:
        """
        Record a point.

        Returns
        -------
        bool
            False if the point repeats the previous one and was dropped.
        """
        p = (float(point[0]), float(point[1]))
        if self.points and self.points[-1] == p:
            return False
        self.points.append(p)
        return True

    @property
    def n_distinct(self) -> int:
        return len(set(self.points))

    def __len__(self) -> int:
        return len(self.points)
