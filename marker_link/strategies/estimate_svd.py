from __future__ import annotations

import numpy as np

from ..errors import EstimationError
from ..link_types import PointCloudFrame, Pose, ResolvedMarker
from ..transforms import invert_transform, matrix_to_pose

# Vertex offsets for upper-left, upper-right, lower-right, lower-left.
CORNER_OFFSETS = (4, 5, 6, 7)


def estimate_rigid_transform_svd(source: np.ndarray, target: np.ndarray) -> np.ndarray:
    """
    Scale-free 3D-3D rigid alignment (Umeyama/Horn).

    Returns the 4x4 transform T with target ~= T @ source.
    """
    A = np.asarray(source, dtype=float)
    B = np.asarray(target, dtype=float)
    if A.shape != B.shape or A.ndim != 2 or A.shape[1] != 3:
        raise EstimationError(f"point sets must be matching Nx3 arrays, got {A.shape} and {B.shape}")
    if A.shape[0] < 3:
        raise EstimationError(f"need at least 3 correspondences, got {A.shape[0]}")
    if not (np.isfinite(A).all() and np.isfinite(B).all()):
        raise EstimationError("point sets contain non-finite values")

    centroid_A = A.mean(axis=0)
    centroid_B = B.mean(axis=0)
    AA = A - centroid_A
    BB = B - centroid_B
    H = AA.T @ BB
    U, S, Vt = np.linalg.svd(H)
    if S[1] <= 1e-12 * max(S[0], 1.0):
        raise EstimationError("degenerate point set (coincident or collinear)")

    R = Vt.T @ U.T
    if np.linalg.det(R) < 0:
        Vt[2, :] *= -1
        R = Vt.T @ U.T
    t = centroid_B - R @ centroid_A

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = t
    return T


def ideal_corners(width: float) -> np.ndarray:
    h = width / 2.0
    return np.array([
        [-h,  h, 0.0],   # upper left
        [ h,  h, 0.0],   # upper right
        [ h, -h, 0.0],   # lower right
        [-h, -h, 0.0],   # lower left
    ])


def corner_order(direction: int) -> list[int]:
    return [(offset - direction) % 4 for offset in CORNER_OFFSETS]


class PoseEstimator:
    def __init__(self, solver=estimate_rigid_transform_svd):
        self.solver = solver

    def observed_corners(self, marker: ResolvedMarker, frame: PointCloudFrame) -> np.ndarray:
        points = frame.points
        vertices = np.asarray(marker.detection.vertices, dtype=float).reshape(4, 2)
        samples = []
        for idx in corner_order(marker.detection.dir):
            u, v = vertices[idx]
            if not (np.isfinite(u) and np.isfinite(v)):
                raise EstimationError(f"non-finite vertex for marker {marker.entry.name}")
            col, row = int(u), int(v)
            if not (0 <= row < frame.height and 0 <= col < frame.width):
                raise EstimationError(
                    f"vertex ({col}, {row}) outside {frame.width}x{frame.height} cloud"
                )
            p = np.asarray(points[row, col], dtype=float)[:3]
            if not np.isfinite(p).all():
                raise EstimationError(f"no depth at ({col}, {row}) for marker {marker.entry.name}")
            samples.append(p)
        return np.array(samples)

    def estimate(self, marker: ResolvedMarker, frame: PointCloudFrame) -> Pose:
        observed = self.observed_corners(marker, frame)
        ideal = ideal_corners(marker.entry.width)
        # solver maps observed -> ideal; the marker pose is the inverse
        t = self.solver(observed, ideal)
        return matrix_to_pose(invert_transform(t))
