import json
import logging
from typing import Any, List, Optional, Sequence, Tuple

from .ip_types import Point

logger = logging.getLogger(__name__)

Outline = List[Tuple[float, float]]


def _xy(p: Any) -> Tuple[float, float]:
    if isinstance(p, Point):
        x, y = p.as_tuple()
        return float(x), float(y)
    if isinstance(p, dict):
        return float(p["x"]), float(p["y"])
    return float(p[0]), float(p[1])


def area_pixels(points: Sequence) -> float:
    """Shoelace area of the closed polygon; 0.0 for fewer than 3 points."""
    if points is None or len(points) < 3:
        return 0.0

    pts = [_xy(p) for p in points]
    total = 0.0
    n = len(pts)
    for i in range(n):
        x0, y0 = pts[i]
        x1, y1 = pts[(i + 1) % n]
        total += x0 * y1 - x1 * y0
    return abs(total) / 2.0


def to_physical_area(area_px: float, calibration_factor: float) -> float:
    """Area in squared physical units for a linear (length per pixel) factor."""
    return area_px * calibration_factor * calibration_factor


def to_physical_area_linear(area_px: float, calibration_factor: float) -> float:
    """Area for a factor that is already areal (e.g. cm^2 per pixel)."""
    return area_px * calibration_factor


def outline_from_json(text: Optional[str]) -> Outline:
    """
    Parse a stored outline. Accepts {"points": [{"x": .., "y": ..}, ...]}
    or a bare [[x, y], ...] list. Blank or malformed input yields [].
    """
    if text is None or not text.strip():
        return []
    try:
        raw = json.loads(text)
        if isinstance(raw, dict):
            raw = raw.get("points") or []
        return [_xy(p) for p in raw]
    except (ValueError, TypeError, KeyError, IndexError) as e:
        logger.warning("Ignoring malformed outline JSON: %s", e)
        return []


def outline_to_json(points: Sequence) -> str:
    return json.dumps({"points": [{"x": x, "y": y} for x, y in (_xy(p) for p in points)]})
