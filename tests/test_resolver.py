import numpy as np

from marker_link.link_types import Detection
from marker_link.resolver import resolve


def _det(marker_id, cf):
    return Detection(marker_id, np.zeros((4, 2)), cf)


def test_resolve_keeps_highest_confidence_per_pattern(catalog):
    dets = [_det(1, 0.3), _det(1, 0.9), _det(2, 0.5)]

    resolved = resolve(catalog, dets)

    assert [m.entry.id for m in resolved] == [1, 2]
    assert resolved[0].detection is dets[1]
    assert resolved[1].detection is dets[2]
    assert catalog[0].visible and catalog[1].visible
    assert catalog[2].visible is False


def test_resolve_first_detection_wins_ties(catalog):
    first, second = _det(1, 0.5), _det(1, 0.5)

    resolved = resolve(catalog, [first, second])

    assert len(resolved) == 1
    assert resolved[0].detection is first


def test_resolve_follows_catalog_order_and_index(catalog):
    resolved = resolve(catalog, [_det(3, 0.4), _det(1, 0.2)])

    assert [m.entry.name for m in resolved] == ["alpha", "gamma"]
    assert [m.index for m in resolved] == [0, 2]


def test_resolve_ignores_unknown_patterns(catalog):
    assert resolve(catalog, [_det(99, 1.0)]) == []
    assert not any(entry.visible for entry in catalog)


def test_resolve_clears_visibility_from_previous_frame(catalog):
    resolve(catalog, [_det(2, 0.6)])
    assert catalog[1].visible

    resolve(catalog, [])
    assert catalog[1].visible is False
