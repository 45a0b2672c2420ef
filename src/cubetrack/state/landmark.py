import itertools
import logging
import threading

import numpy as np

from cubetrack.config.config import TrackingConfig
from cubetrack.datatypes import BoundingBox, CuboidParams, Dimension3D, KeyFrame
from cubetrack.geometry import (
    bbox_iou,
    invert_transform,
    point_from_2d_homo,
    points_from_2d_homo,
    t_from_rt,
)
from cubetrack.modules.cuboid import CORNER_SIGNS, Cuboid2D, local_corners

logger = logging.getLogger(__name__)

_landmark_ids = itertools.count()

RIGID_TOL = 1e-6


def _skew(v: np.ndarray) -> np.ndarray:
    return np.array(
        [[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]],
        dtype=np.float64,
    )


def _keyframe_depth_in_bbox(
    keyframe: KeyFrame, bbox: BoundingBox, default_depth: float
) -> float:
    """Median depth of the keyframe's high gradient points inside bbox."""
    depth = keyframe.high_grad_depth
    if len(depth) == 0:
        return default_depth

    px = keyframe.high_grad_homo[:, :2] / keyframe.high_grad_homo[:, 2:3]
    x, y, w, h = bbox
    in_box = (
        (px[:, 0] >= x) & (px[:, 0] <= x + w) & (px[:, 1] >= y) & (px[:, 1] <= y + h)
    )
    valid = np.isfinite(depth) & (depth > 0)

    if np.any(in_box & valid):
        return float(np.median(depth[in_box & valid]))
    if np.any(valid):
        return float(np.median(depth[valid]))
    return default_depth


def back_project_proposal(
    proposal: Cuboid2D, inv_K: np.ndarray, depth: float
) -> tuple[np.ndarray, np.ndarray] | None:
    """
    Recover the camera-frame center and dimension of a cuboid proposal.

    Every corner c + R_cl @ (s_i * d / 2) must lie on its viewing ray
    inv_K @ (u, v, 1). Stacking the cross product constraints gives a
    homogeneous linear system in (c, d), known up to scale; the scale is
    fixed by the depth of the center.

    Args:
        proposal: 2D cuboid with R_lc set.
        inv_K: Inverse intrinsic matrix.
        depth: Depth of the cuboid center.

    Returns:
        (center (3,), dims (3,)), or None for a degenerate proposal.

    """
    R_cl = proposal.R_lc.T
    rays = (inv_K @ np.hstack([proposal.corners, np.ones((8, 1))]).T).T

    M = np.zeros((24, 6))
    for i in range(8):
        A_i = R_cl @ np.diag(CORNER_SIGNS[i] / 2.0)
        S = _skew(rays[i])
        M[3 * i : 3 * i + 3, :3] = S
        M[3 * i : 3 * i + 3, 3:] = S @ A_i

    _, _, Vt = np.linalg.svd(M)
    x = Vt[-1]
    if not np.all(np.isfinite(x)) or abs(x[2]) < 1e-9:
        return None
    if x[2] < 0:
        x = -x

    x *= depth / x[2]
    return x[:3], np.abs(x[3:])


class Landmark:
    """
    A cuboid object in the map.

    Pose and dimension are one unit guarded by a single lock. Every setter
    replaces them atomically and every getter returns a copy, so the combined
    cuboid parameters are derived on demand and never disagree with the pose.

    Attributes:
        bbox_center: Keyframe id -> observed 2D bounding box center.
        meas_quality: Agreement between the proposal and its detection.
        class_idx: Detector class index.
        landmark_id: Unique identifier.

    """

    def __init__(self, class_idx: int = -1) -> None:
        self.bbox_center: dict[int, np.ndarray] = {}
        self.meas_quality = 0.0
        self.class_idx = class_idx
        self.landmark_id = next(_landmark_ids)

        self._lock = threading.Lock()
        self._T_lw = np.eye(4)
        self._T_wl = np.eye(4)
        self._dimension = Dimension3D()

    @classmethod
    def from_proposal(
        cls,
        proposal: Cuboid2D,
        bbox: BoundingBox,
        keyframe: KeyFrame,
        inv_K: np.ndarray,
        class_idx: int,
        config: TrackingConfig | None = None,
    ) -> "Landmark":
        """
        Initialize a landmark by back-projecting a cuboid proposal.

        Args:
            proposal: 2D cuboid proposal observed in keyframe.
            bbox: Detection bounding box (x, y, w, h).
            keyframe: Observing keyframe.
            inv_K: Inverse intrinsic matrix.
            class_idx: Detector class index.
            config: Tracking configuration.

        Returns:
            The new landmark.

        """
        cfg = config or TrackingConfig()
        landmark = cls(class_idx)

        depth = _keyframe_depth_in_bbox(keyframe, bbox, cfg.default_object_depth)
        R_lc = (
            np.eye(3) if proposal.R_lc is None else np.asarray(proposal.R_lc, float)
        )
        proposal = Cuboid2D(R_lc, proposal.corners, proposal.is_corner_visible, True)

        solution = back_project_proposal(proposal, inv_K, depth)
        if solution is None:
            # place a bbox sized cuboid on the ray through the bbox center
            logger.debug("Degenerate proposal, falling back to bbox size")
            x, y, w, h = bbox
            center = inv_K @ np.array([x + w / 2.0, y + h / 2.0, 1.0]) * depth
            sx = np.linalg.norm(inv_K[:2, :2] @ np.array([w, 0.0])) * depth
            sy = np.linalg.norm(inv_K[:2, :2] @ np.array([0.0, h])) * depth
            dims = np.array([sx, sy, sx])
        else:
            center, dims = solution

        T_cl = t_from_rt(R_lc.T, center)
        T_lw = invert_transform(T_cl) @ keyframe.get_pose()
        landmark.set_pose_and_dimension(
            CuboidParams(T_lw, Dimension3D.from_array(dims))
        )

        x, y, w, h = bbox
        landmark.bbox_center[keyframe.frame_id] = np.array([x + w / 2.0, y + h / 2.0])

        proposal_box = proposal.bounding_box()
        landmark.meas_quality = (
            0.0 if proposal_box is None else bbox_iou(proposal_box, bbox)
        )
        logger.debug(
            "Landmark %d: depth %.3f, dims %s, quality %.3f",
            landmark.landmark_id,
            depth,
            np.round(dims, 3),
            landmark.meas_quality,
        )
        return landmark

    def copy(self) -> "Landmark":
        """Deep copy with its own lock, sharing the landmark id."""
        other = Landmark.__new__(Landmark)
        other.bbox_center = {k: v.copy() for k, v in self.bbox_center.items()}
        other.meas_quality = self.meas_quality
        other.class_idx = self.class_idx
        other.landmark_id = self.landmark_id
        other._lock = threading.Lock()
        with self._lock:
            other._T_lw = self._T_lw.copy()
            other._T_wl = self._T_wl.copy()
            other._dimension = Dimension3D(
                self._dimension.width, self._dimension.height, self._dimension.length
            )
        return other

    def __deepcopy__(self, memo: dict) -> "Landmark":
        return self.copy()

    def add_observation(self, frame_id: int, bbox: BoundingBox) -> None:
        x, y, w, h = bbox
        self.bbox_center[frame_id] = np.array([x + w / 2.0, y + h / 2.0])

    # setters

    def _set_pose_no_lock(self, T_lw: np.ndarray) -> None:
        T_lw = np.array(T_lw, dtype=np.float64)
        if T_lw.shape != (4, 4):
            msg = f"Expected a 4x4 pose, got shape {T_lw.shape}"
            raise ValueError(msg)
        R = T_lw[:3, :3]
        if (
            not np.allclose(R @ R.T, np.eye(3), atol=RIGID_TOL)
            or np.linalg.det(R) <= 0
            or not np.allclose(T_lw[3], [0.0, 0.0, 0.0, 1.0], atol=RIGID_TOL)
        ):
            msg = "Pose must be a rigid transform"
            raise ValueError(msg)
        self._T_lw = T_lw
        self._T_wl = invert_transform(T_lw)

    def set_dimension(self, dimension: Dimension3D) -> None:
        dimension = Dimension3D(dimension.width, dimension.height, dimension.length)
        with self._lock:
            self._dimension = dimension

    def set_pose(self, T_or_R: np.ndarray, t: np.ndarray | None = None) -> None:
        """
        Set the World-to-Local pose.

        Args:
            T_or_R: Either the 4x4 pose, or the 3x3 rotation when t is given.
            t: Optional translation (3,).

        """
        T_lw = T_or_R if t is None else t_from_rt(T_or_R, t)
        with self._lock:
            self._set_pose_no_lock(T_lw)

    def set_pose_and_dimension(self, cuboid: CuboidParams) -> None:
        dimension = Dimension3D(
            cuboid.dimension.width, cuboid.dimension.height, cuboid.dimension.length
        )
        with self._lock:
            self._set_pose_no_lock(cuboid.T_lw)
            self._dimension = dimension

    # getters

    def get_dimension(self) -> Dimension3D:
        with self._lock:
            d = self._dimension
            return Dimension3D(d.width, d.height, d.length)

    def get_pose(self) -> np.ndarray:
        with self._lock:
            return self._T_lw.copy()

    def get_pose_inverse(self) -> np.ndarray:
        with self._lock:
            return self._T_wl.copy()

    def get_rotation(self) -> np.ndarray:
        with self._lock:
            return self._T_lw[:3, :3].copy()

    def get_translation(self) -> np.ndarray:
        with self._lock:
            return self._T_lw[:3, 3].copy()

    def get_centroid(self) -> np.ndarray:
        """Cuboid center in world coordinates."""
        with self._lock:
            return self._T_wl[:3, 3].copy()

    def get_cuboid(self) -> CuboidParams:
        with self._lock:
            return CuboidParams(
                self._T_lw.copy(),
                Dimension3D(
                    self._dimension.width,
                    self._dimension.height,
                    self._dimension.length,
                ),
            )

    def _snapshot(self) -> tuple[np.ndarray, np.ndarray]:
        with self._lock:
            return self._T_wl.copy(), self._dimension.as_array()

    # projection

    def get_projected_centroid(self, T_cw: np.ndarray, K: np.ndarray) -> np.ndarray:
        """Project the cuboid center into the image of camera T_cw."""
        L_w = self.get_centroid()
        p_c = T_cw[:3, :3] @ L_w + T_cw[:3, 3]
        return point_from_2d_homo(K @ p_c)

    def project(self, T_cw: np.ndarray, K: np.ndarray) -> Cuboid2D:
        """
        Project the cuboid into the image of camera T_cw.

        Corners behind the camera are flagged invisible. The result is valid
        only if every corner has positive depth.

        Args:
            T_cw: World-to-Camera pose matrix (4x4).
            K: Intrinsic camera matrix (3x3).

        Returns:
            The projected cuboid.

        """
        T_wl, dims = self._snapshot()
        T_cl = T_cw @ T_wl
        R_cl = T_cl[:3, :3]

        corners_c = (R_cl @ local_corners(dims).T).T + T_cl[:3, 3]
        visible = corners_c[:, 2] > 0
        corners_2d = points_from_2d_homo((K @ corners_c.T).T)

        valid = bool(np.all(visible) and np.all(np.isfinite(corners_2d)))
        return Cuboid2D(R_cl.T, corners_2d, visible, valid)
