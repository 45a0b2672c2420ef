"""Synthetic scenes with known motion for demos and tests."""

import numpy as np
from scipy.spatial.transform import Rotation

from cubetrack.config.config import TrackingConfig
from cubetrack.datatypes import CuboidParams, Dimension3D, KeyFrame
from cubetrack.geometry import invert_transform, t_from_rt
from cubetrack.modules.cuboid import Cuboid2D
from cubetrack.modules.high_gradient import make_keyframe
from cubetrack.modules.pose_estimation import project_depth_points
from cubetrack.modules.utils import create_camera_matrix
from cubetrack.state.landmark import Landmark


def texture(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """
    Smooth color texture over current image coordinates.

    Args:
        u, v: Pixel coordinates of identical shape.

    Returns:
        Float colors in [0, 255] with a trailing channel axis of size 3.

    """
    c0 = 128 + 60 * np.sin(2 * np.pi * u / 80) + 40 * np.cos(2 * np.pi * v / 60)
    c1 = 128 + 50 * np.sin(2 * np.pi * (u + v) / 100) + 40 * np.cos(2 * np.pi * u / 50)
    c2 = 128 + 70 * np.sin(2 * np.pi * (u - v) / 90)
    return np.clip(np.stack([c0, c1, c2], axis=-1), 0.0, 255.0)


class SyntheticDataset:
    """
    Two-view scene with a known relative motion and one cuboid object.

    The scene surface is textured so that every 3D point shows in the
    reference view the color it has in the current view, which makes the
    true motion an exact photometric minimum.
    """

    def __init__(
        self,
        width: int = 320,
        height: int = 240,
        rel_rotvec: tuple[float, float, float] = (0.005, -0.01, 0.003),
        rel_translation: tuple[float, float, float] = (0.03, -0.02, 0.03),
        config: TrackingConfig | None = None,
    ) -> None:
        """
        Initialize the synthetic scene.

        Args:
            width: Image width.
            height: Image height.
            rel_rotvec: Axis-angle rotation reference -> current.
            rel_translation: Translation reference -> current.
            config: Tracking configuration used to build the keyframe.

        """
        self.width = width
        self.height = height
        self.config = config or TrackingConfig()
        self.K = create_camera_matrix(300.0, 300.0, width / 2.0, height / 2.0)

        R_rel = Rotation.from_rotvec(rel_rotvec).as_matrix()
        self.T_rel = t_from_rt(R_rel, np.asarray(rel_translation, dtype=np.float64))
        self.T_cw_ref = t_from_rt(np.eye(3), np.array([0.1, 0.0, 0.0]))
        self.T_cw_cur = self.T_rel @ self.T_cw_ref

        self.depth: np.ndarray | None = None
        self.ref_image: np.ndarray | None = None
        self.cur_image: np.ndarray | None = None
        self.keyframe: KeyFrame | None = None
        self.cuboid: CuboidParams | None = None
        self.load()

    def load(self) -> None:
        """Render both views, the keyframe and the cuboid object."""
        h, w = self.height, self.width
        vs, us = np.mgrid[0:h, 0:w].astype(np.float64)

        # non-planar surface seen from the reference camera
        self.depth = 3.0 + 0.8 * np.sin(2 * np.pi * us / w) * np.cos(2 * np.pi * vs / h)

        self.cur_image = texture(us, vs)

        # reference pixel -> 3D -> current pixel -> texture
        homo = np.stack([us.ravel(), vs.ravel(), np.ones(h * w)], axis=1)
        rays = homo @ np.linalg.inv(self.K).T
        px, _ = project_depth_points(
            self.depth.ravel(), rays, self.T_rel[:3, :3], self.T_rel[:3, 3], self.K
        )
        self.ref_image = texture(px[:, 0], px[:, 1]).reshape(h, w, 3)

        self.keyframe = make_keyframe(
            0, self.ref_image, self.depth, self.K, self.T_cw_ref, config=self.config
        )

        # cuboid in front of the reference camera
        R_cl = Rotation.from_euler("y", 0.3).as_matrix()
        T_cl = t_from_rt(R_cl, np.array([0.2, 0.1, 3.0]))
        self.cuboid = CuboidParams(
            invert_transform(T_cl) @ self.T_cw_ref, Dimension3D(0.6, 0.4, 0.8)
        )

    def make_landmark(self, class_idx: int = 0) -> Landmark:
        """Ground truth landmark of the scene's cuboid."""
        landmark = Landmark(class_idx)
        landmark.set_pose_and_dimension(self.cuboid.copy())
        return landmark

    def make_proposal(self) -> tuple[Cuboid2D, tuple[float, float, float, float]]:
        """Exact 2D proposal and detection box of the cuboid in the keyframe."""
        proposal = self.make_landmark().project(self.T_cw_ref, self.K)
        bbox = proposal.bounding_box()
        return proposal, bbox
