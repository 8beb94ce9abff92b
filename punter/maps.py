"""Map files: loading, the maps bundled with the package, and random planar maps."""
import json
import math
import random
from pathlib import Path
from typing import List, Optional, Set, Tuple, Union

from .constants import MAP_HEIGHT, MAP_JITTER_RATIO, MAP_WIDTH, MAPS_DIR
from .models import GameMap, ProtocolError, River, Site

Point = Tuple[float, float]


def builtin_maps() -> List[str]:
    return sorted(p.name for p in MAPS_DIR.glob("*.json"))


def builtin_map_path(name: str) -> Path:
    path = MAPS_DIR / name
    if not path.is_file():
        raise FileNotFoundError(f"no bundled map {name!r} (have: {', '.join(builtin_maps())})")
    return path


def resolve_map_path(name_or_path: Union[str, Path]) -> Path:
    """A path on disk wins; otherwise look the name up among bundled maps."""
    path = Path(name_or_path)
    if path.is_file():
        return path
    return builtin_map_path(str(name_or_path))


def load_map(name_or_path: Union[str, Path]) -> GameMap:
    path = resolve_map_path(name_or_path)
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"{path}: not valid JSON: {exc}") from exc
    return GameMap.from_dict(data)


def write_map(game_map: GameMap, path: Union[str, Path]) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(game_map.to_dict(), handle, indent=2)


# Random planar maps


def _jittered_grid(count: int, rng: random.Random) -> List[Point]:
    aspect = MAP_WIDTH / MAP_HEIGHT
    cols = max(1, math.ceil(math.sqrt(count * aspect)))
    rows = max(1, math.ceil(count / cols))
    cell_w = MAP_WIDTH / cols
    cell_h = MAP_HEIGHT / rows
    jitter_w = cell_w * MAP_JITTER_RATIO
    jitter_h = cell_h * MAP_JITTER_RATIO
    points: List[Point] = []
    for index in range(count):
        row, col = divmod(index, cols)
        x = (col + 0.5) * cell_w + rng.uniform(-jitter_w, jitter_w)
        y = (row + 0.5) * cell_h + rng.uniform(-jitter_h, jitter_h)
        points.append((round(x, 3), round(y, 3)))
    return points


def _orientation(a: Point, b: Point, c: Point) -> int:
    val = (b[1] - a[1]) * (c[0] - b[0]) - (b[0] - a[0]) * (c[1] - b[1])
    if abs(val) < 1e-9:
        return 0
    return 1 if val > 0 else 2


def _on_segment(a: Point, b: Point, c: Point) -> bool:
    return (
        min(a[0], b[0]) - 1e-9 <= c[0] <= max(a[0], b[0]) + 1e-9
        and min(a[1], b[1]) - 1e-9 <= c[1] <= max(a[1], b[1]) + 1e-9
    )


def segments_cross(p1: Point, p2: Point, q1: Point, q2: Point) -> bool:
    """True when the two segments intersect anywhere, endpoints included."""
    o1 = _orientation(p1, p2, q1)
    o2 = _orientation(p1, p2, q2)
    o3 = _orientation(q1, q2, p1)
    o4 = _orientation(q1, q2, p2)
    if o1 != o2 and o3 != o4:
        return True
    return (
        (o1 == 0 and _on_segment(p1, p2, q1))
        or (o2 == 0 and _on_segment(p1, p2, q2))
        or (o3 == 0 and _on_segment(q1, q2, p1))
        or (o4 == 0 and _on_segment(q1, q2, p2))
    )


def planar_rivers(points: List[Point], wanted: int) -> List[Tuple[int, int]]:
    """Join the closest pairs first, skipping any river that would cross one already laid."""
    pairs = sorted(
        ((points[i][0] - points[j][0]) ** 2 + (points[i][1] - points[j][1]) ** 2, i, j)
        for i in range(len(points))
        for j in range(i + 1, len(points))
    )
    rivers: List[Tuple[int, int]] = []
    for _, i, j in pairs:
        if len(rivers) >= wanted:
            break
        crosses = False
        for a, b in rivers:
            if {a, b} & {i, j}:
                continue
            if segments_cross(points[i], points[j], points[a], points[b]):
                crosses = True
                break
        if not crosses:
            rivers.append((i, j))
    return rivers


def generate_map(sites: int, rivers: int, mines: int, seed: Optional[int] = None) -> GameMap:
    if sites < 2:
        raise ValueError("a map needs at least two sites")
    if not 1 <= mines <= sites:
        raise ValueError(f"mine count must be between 1 and {sites}")
    rng = random.Random(seed)
    points = _jittered_grid(sites, rng)
    laid = planar_rivers(points, rivers)
    mine_ids: Set[int] = set(rng.sample(range(sites), mines))
    return GameMap(
        sites=[Site(i, x, y) for i, (x, y) in enumerate(points)],
        rivers=[River(a, b) for a, b in laid],
        mines=sorted(mine_ids),
    )
