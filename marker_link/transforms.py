"""SE(3) and quaternion utilities for marker poses.

Quaternions are stored in x, y, z, w order throughout.
"""

import math

import numpy as np
from scipy.spatial.transform import Rotation

from .link_types import Pose


def invert_transform(T: np.ndarray) -> np.ndarray:
    """
    Invert a 4x4 homogeneous transformation matrix.

    For SE(3): T^-1 = [R^T, -R^T * t; 0, 1]

    Args:
        T: 4x4 transformation matrix

    Returns:
        4x4 inverted transformation matrix
    """
    T_inv = np.eye(4)
    R = T[:3, :3]
    t = T[:3, 3]

    R_T = R.T
    T_inv[:3, :3] = R_T
    T_inv[:3, 3] = -R_T @ t

    return T_inv


def normalize_quaternion(q) -> np.ndarray:
    """Divide all four components by the quaternion's magnitude."""
    q = np.asarray(q, dtype=float).reshape(4)
    magnitude = math.sqrt(float(np.dot(q, q)))
    if magnitude == 0.0 or not math.isfinite(magnitude):
        raise ValueError(f"cannot normalize quaternion {q.tolist()}")
    return q / magnitude


def matrix_to_pose(T: np.ndarray) -> Pose:
    """
    Convert a 4x4 homogeneous transform to a Pose.

    Args:
        T: 4x4 transformation matrix with an orthonormal rotation block

    Returns:
        Pose with translation T[:3, 3] and a unit quaternion
    """
    T = np.asarray(T, dtype=float)
    q = Rotation.from_matrix(T[:3, :3]).as_quat()
    return Pose(T[:3, 3].copy(), normalize_quaternion(q))


def pose_to_matrix(pose: Pose) -> np.ndarray:
    T = np.eye(4)
    T[:3, :3] = Rotation.from_quat(normalize_quaternion(pose.orientation)).as_matrix()
    T[:3, 3] = pose.position
    return T


def transform_pose(T: np.ndarray, pose: Pose) -> Pose:
    """Re-express pose through T (pose in frame B, T maps B into A)."""
    return matrix_to_pose(np.asarray(T, dtype=float) @ pose_to_matrix(pose))


def yaw_from_quaternion(q) -> float:
    """
    Planar yaw (rotation about the vertical axis) in radians.

    Uses the same expression as tf::getYaw, so the result lies in (-pi, pi].
    """
    x, y, z, w = np.asarray(q, dtype=float).reshape(4)
    return math.atan2(2.0 * (w * z + x * y), 1.0 - 2.0 * (y * y + z * z))
