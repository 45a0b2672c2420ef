from pathlib import Path

import numpy as np
from scipy.spatial.transform import Rotation as R_scipy

from cubetrack.geometry import invert_transform


def create_camera_matrix(fx: float, fy: float, cx: float, cy: float) -> np.ndarray:
    """
    Create 3x3 camera calibration matrix K.

    Args:
        fx, fy: focal lengths
        cx, cy: principal point

    Returns:
        K: 3x3 camera matrix

    """
    return np.array([[fx, 0, cx], [0, fy, cy], [0, 0, 1]], dtype=np.float64)


def camera_center(T_cw: np.ndarray) -> np.ndarray:
    """Camera position in world coordinates, C = -R.T * t."""
    return -T_cw[:3, :3].T @ T_cw[:3, 3]


def save_trajectory(poses: list[np.ndarray], timestamps: list[float], filename: str) -> None:
    """
    Save World-to-Camera poses in TUM format (timestamp tx ty tz qx qy qz qw).

    The TUM format stores the camera-to-world motion, so each pose is inverted.

    Args:
        poses: List of 4x4 World-to-Camera poses.
        timestamps: One timestamp per pose.
        filename: Output filename

    """
    if len(poses) != len(timestamps):
        msg = "Every pose needs a timestamp"
        raise ValueError(msg)

    with Path(filename).open("w") as f:
        for stamp, T_cw in zip(timestamps, poses):
            T_wc = invert_transform(T_cw)
            t = T_wc[:3, 3]
            quat = R_scipy.from_matrix(T_wc[:3, :3]).as_quat()

            f.write(
                f"{stamp:.6f} {t[0]:.6f} {t[1]:.6f} {t[2]:.6f} "
                f"{quat[0]:.6f} {quat[1]:.6f} {quat[2]:.6f} {quat[3]:.6f}\n"
            )

