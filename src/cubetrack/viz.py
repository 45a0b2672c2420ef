"""Rerun logging of tracked cameras and cuboid landmarks."""

import numpy as np
import rerun as rr

from cubetrack.modules.cuboid import CUBOID_EDGES, local_corners
from cubetrack.state.landmark import Landmark


def init_rerun(spawn: bool = True) -> None:
    """Initialize Rerun logging with correct coordinate systems."""
    rr.init("cubetrack", spawn=spawn)

    # forward +Z, right +X, down +Y
    rr.log("world", rr.ViewCoordinates.RIGHT_HAND_Y_DOWN, static=True)


def cuboid_strips_2d(landmark: Landmark, T_cw: np.ndarray, K: np.ndarray) -> list[np.ndarray]:
    """Visible projected edges of a landmark as 2-point strips."""
    cuboid = landmark.project(T_cw, K)
    return [
        cuboid.corners[[i, j]]
        for i, j in CUBOID_EDGES
        if cuboid.is_corner_visible[i] and cuboid.is_corner_visible[j]
    ]


def cuboid_strips_3d(landmark: Landmark) -> list[np.ndarray]:
    """Edges of a landmark in world coordinates as 2-point strips."""
    T_wl = landmark.get_pose_inverse()
    corners = local_corners(landmark.get_dimension().as_array())
    corners_w = (T_wl[:3, :3] @ corners.T).T + T_wl[:3, 3]
    return [corners_w[[i, j]] for i, j in CUBOID_EDGES]


def log_frame_rerun(
    image: np.ndarray,
    T_cw: np.ndarray,
    K: np.ndarray,
    frame_id: int,
    landmarks: list[Landmark],
    trajectory_history: list[np.ndarray],
) -> None:
    rr.set_time("frame", sequence=frame_id)

    # camera-world for rerun
    R_wc = T_cw[:3, :3].T
    t_wc = -R_wc @ T_cw[:3, 3]
    rr.log("world/camera", rr.Transform3D(translation=t_wc, mat3x3=R_wc))
    rr.log(
        "world/camera/image",
        rr.Pinhole(image_from_camera=K, width=image.shape[1], height=image.shape[0]),
    )
    rr.log("world/camera/image", rr.Image(np.clip(image, 0, 255).astype(np.uint8)))

    for landmark in landmarks:
        strips_2d = cuboid_strips_2d(landmark, T_cw, K)
        if strips_2d:
            rr.log(
                f"world/camera/image/cuboids/{landmark.landmark_id}",
                rr.LineStrips2D(strips_2d, colors=[0, 255, 0], radii=1),
            )
        rr.log(
            f"world/landmarks/{landmark.landmark_id}",
            rr.LineStrips3D(cuboid_strips_3d(landmark), colors=[0, 255, 0], radii=0.01),
        )

    if len(trajectory_history) > 1:
        rr.log(
            "world/trajectory",
            rr.LineStrips3D([trajectory_history], colors=[255, 255, 0], radii=0.02),
        )
