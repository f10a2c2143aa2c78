from __future__ import annotations

from typing import Iterable, Sequence

from .link_types import Detection, PatternEntry, ResolvedMarker


def resolve(
    catalog: Sequence[PatternEntry], detections: Iterable[Detection]
) -> list[ResolvedMarker]:
    """
    Pick the best detection for each known pattern.

    Among detections sharing a pattern id the highest confidence wins; on
    equal confidence the first one seen is kept. Patterns with no detection
    are marked not visible and left out of the result, which follows
    catalog order.
    """
    detections = list(detections)
    resolved: list[ResolvedMarker] = []

    for index, entry in enumerate(catalog):
        best = None
        for det in detections:
            if det.marker_id != entry.id:
                continue
            if best is None or best.cf < det.cf:
                best = det

        if best is None:
            entry.visible = False
            continue

        entry.visible = True
        resolved.append(ResolvedMarker(index, entry, best))

    return resolved
