"""
Position history and identity assignment for motion heuristics.

Identities here are approximate: a person box is matched to the nearest
recently seen centre, so two people crossing paths can swap ids. Anything
smarter (Kalman filter, IoU association) plugs in through the Tracker protocol.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

BBox = Sequence[float]


def bbox_center(bbox: BBox) -> Tuple[float, float]:
    x, y, w, h = bbox[:4]
    return (x + w / 2, y + h / 2)


def distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return math.sqrt((a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2)


@dataclass
class TrackedPosition:
    """Last known centre of one identity."""
    id: str
    x: float
    y: float
    last_seen: float  # seconds, same clock as PositionHistory

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x, self.y)


class PositionHistory:
    """Map of identity -> last position, purged lazily on every update."""

    def __init__(self, window_ms: int = 2000, clock: Callable[[], float] = time.monotonic):
        self.window = window_ms / 1000.0
        self.clock = clock
        self._positions: Dict[str, TrackedPosition] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, track_id: str) -> bool:
        return track_id in self._positions

    def get(self, track_id: str) -> Optional[TrackedPosition]:
        return self._positions.get(track_id)

    def purge(self, now: Optional[float] = None) -> int:
        """Drop entries older than the window. Returns number removed."""
        now = self.clock() if now is None else now
        stale = [tid for tid, pos in self._positions.items() if now - pos.last_seen > self.window]
        for tid in stale:
            del self._positions[tid]
        return len(stale)

    def update(self, track_id: str, x: float, y: float,
               now: Optional[float] = None) -> Optional[TrackedPosition]:
        """Record a new centre for track_id and return the previous one, if live."""
        now = self.clock() if now is None else now
        self.purge(now)
        previous = self._positions.get(track_id)
        self._positions[track_id] = TrackedPosition(track_id, x, y, now)
        return previous

    def live(self, now: Optional[float] = None) -> List[TrackedPosition]:
        now = self.clock() if now is None else now
        return [p for p in self._positions.values() if now - p.last_seen <= self.window]

    def clear(self):
        self._positions.clear()


class Tracker(Protocol):
    """Assigns an identity to each person box of one frame."""

    def assign(self, boxes: Sequence[BBox], now: Optional[float] = None) -> List[str]:
        ...


class ProximityTracker:
    """Nearest-centre identity heuristic.

    Each box takes the id of the closest live position within `match_radius`
    that no earlier box in the same frame has claimed; otherwise a new id is
    derived from the box geometry. Boxes are matched greedily in input order.
    """

    def __init__(self, history: PositionHistory, match_radius: float = 75.0):
        self.history = history
        self.match_radius = match_radius

    def assign(self, boxes: Sequence[BBox], now: Optional[float] = None) -> List[str]:
        candidates = self.history.live(now)
        claimed = set()
        ids = []

        for bbox in boxes:
            center = bbox_center(bbox)
            best_id, best_dist = None, self.match_radius
            for pos in candidates:
                if pos.id in claimed:
                    continue
                d = distance(center, pos.center)
                if d <= best_dist:
                    best_id, best_dist = pos.id, d

            if best_id is None:
                best_id = self._new_id(bbox, claimed)
            claimed.add(best_id)
            ids.append(best_id)

        return ids

    def _new_id(self, bbox: BBox, taken: set) -> str:
        base = "person_" + "_".join(f"{v:.0f}" for v in bbox[:4])
        track_id, n = base, 1
        while track_id in taken or track_id in self.history:
            n += 1
            track_id = f"{base}#{n}"
        return track_id
