import csv

import numpy as np


def _padded(values, n):
    """Flatten to n floats, NaN-filling anything missing."""
    if values is None:
        return [float("nan")] * n
    flat = np.asarray(values, dtype=float).ravel().tolist()[:n]
    return flat + [float("nan")] * (n - len(flat))


class CsvWriter:
    """One row per marker pose: stamp, frame, marker, then position and quaternion."""

    HEADER = [
        "stamp", "frame_id",
        "marker_id", "name", "confidence",
        "pos_x", "pos_y", "pos_z",
        "quat_x", "quat_y", "quat_z", "quat_w",
    ]

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        self.rows = 0
        self._fh = None
        self._w = None

    @classmethod
    def row(cls, stamp, frame_id, marker_id, name, confidence, position, orientation):
        return [
            f"{stamp:.6f}", frame_id, marker_id, name, f"{confidence:.3f}",
            *_padded(position, 3), *_padded(orientation, 4),
        ]

    def open(self):
        self._fh = open(self.csv_path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)

    def append(self, stamp, frame_id, marker_id, name, confidence, position, orientation):
        if self._w is None:
            raise RuntimeError(f"{self.csv_path} is not open")
        self._w.writerow(self.row(stamp, frame_id, marker_id, name, confidence, position, orientation))
        self.rows += 1

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._w = None
