from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

from ..link_types import PatternEntry


def _values(path: Path) -> Iterator[str]:
    """Yield the meaningful lines of an objects file (no blanks, no # comments)."""
    with path.open("r", encoding="utf-8") as fp:
        for line in fp:
            text = line.strip()
            if not text or text.startswith("#"):
                continue
            yield text


def _next(values: Iterator[str], path: Path, what: str) -> str:
    try:
        return next(values)
    except StopIteration:
        raise ValueError(f"{path}: unexpected end of file while reading {what}") from None


def load_catalog(
    path: str | Path,
    data_directory: str | Path,
    load_pattern: Callable[[str, str | Path], int],
) -> list[PatternEntry]:
    """
    Read a marker objects file.

    Layout: the pattern count, then four lines per pattern: name, pattern
    token, side length in metres, and center "cx cy". `load_pattern`
    turns the pattern token into the id the detector will report.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Marker pattern list not found: {p}")

    values = _values(p)
    try:
        count = int(_next(values, p, "pattern count").split()[0])
    except ValueError as exc:
        raise ValueError(f"{p}: first value must be the number of patterns") from exc
    if count < 0:
        raise ValueError(f"{p}: negative pattern count {count}")

    catalog: list[PatternEntry] = []
    seen: set[int] = set()
    for i in range(count):
        name = _next(values, p, f"name of pattern {i + 1}").split()[0]
        token = _next(values, p, f"pattern of {name}").split()[0]
        try:
            width = float(_next(values, p, f"width of {name}").split()[0])
        except ValueError as exc:
            raise ValueError(f"{p}: width of {name} must be a number") from exc
        if width <= 0:
            raise ValueError(f"{p}: width of {name} must be positive")
        center_fields = _next(values, p, f"center of {name}").split()
        try:
            center = (float(center_fields[0]), float(center_fields[1]))
        except (IndexError, ValueError) as exc:
            raise ValueError(f"{p}: center of {name} must be two numbers") from exc

        marker_id = load_pattern(token, data_directory)
        if marker_id in seen:
            raise ValueError(f"{p}: pattern id {marker_id} ({name}) listed twice")
        seen.add(marker_id)
        catalog.append(PatternEntry(marker_id, name, width, token, center))

    return catalog
