"""Passive data structures shared by tracking and landmarks."""

from dataclasses import dataclass, field

import numpy as np
from scipy.spatial.transform import Rotation

from cubetrack.geometry import invert_transform, t_from_rt

# (x, y, width, height) in pixels
BoundingBox = tuple[float, float, float, float]


@dataclass
class Dimension3D:
    """
    Extent of a cuboid along its local axes.

    Attributes:
        width: Extent along local x.
        height: Extent along local y.
        length: Extent along local z.

    """

    width: float = 0.0
    height: float = 0.0
    length: float = 0.0

    def __post_init__(self) -> None:
        self.width = abs(float(self.width))
        self.height = abs(float(self.height))
        self.length = abs(float(self.length))

    def as_array(self) -> np.ndarray:
        return np.array([self.width, self.height, self.length], dtype=np.float64)

    @classmethod
    def from_array(cls, dims: np.ndarray) -> "Dimension3D":
        dims = np.asarray(dims, dtype=np.float64).ravel()
        return cls(dims[0], dims[1], dims[2])


@dataclass
class CuboidParams:
    """
    Pose and dimension of a cuboid as one value.

    Attributes:
        T_lw: World-to-Local pose matrix (4x4).
        dimension: Extent of the cuboid.

    """

    T_lw: np.ndarray = field(default_factory=lambda: np.eye(4))
    dimension: Dimension3D = field(default_factory=Dimension3D)

    def to_vector(self) -> np.ndarray:
        """Flatten to [rotvec(3), t(3), dims(3)] for optimizers."""
        rvec = Rotation.from_matrix(self.T_lw[:3, :3]).as_rotvec()
        return np.concatenate([rvec, self.T_lw[:3, 3], self.dimension.as_array()])

    @classmethod
    def from_vector(cls, vec: np.ndarray) -> "CuboidParams":
        vec = np.asarray(vec, dtype=np.float64).ravel()
        if vec.shape != (9,):
            msg = f"Expected a 9-vector, got shape {vec.shape}"
            raise ValueError(msg)
        R = Rotation.from_rotvec(vec[:3]).as_matrix()
        return cls(t_from_rt(R, vec[3:6]), Dimension3D.from_array(vec[6:9]))

    def copy(self) -> "CuboidParams":
        return CuboidParams(
            self.T_lw.copy(),
            Dimension3D(
                self.dimension.width, self.dimension.height, self.dimension.length
            ),
        )


@dataclass
class KeyFrame:
    """
    A reference keyframe with its fixed-size high gradient point set.

    Attributes:
        frame_id: Unique sequential identifier.
        image: Color image (H, W, 3).
        K: Intrinsic camera matrix (3x3).
        inv_K: Inverse of K (3x3).
        T_cw: World-to-Camera pose matrix (4x4).
        high_grad_depth: Depth of each point (N,).
        high_grad_sqrt_uncertainty: One standard deviation of each depth (N,).
        high_grad_homo: Homogeneous pixel coordinates [u, v, 1] (N, 3).
        high_grad_pixels: Observed color of each point (N, 3).

    """

    frame_id: int
    image: np.ndarray
    K: np.ndarray
    inv_K: np.ndarray
    T_cw: np.ndarray = field(default_factory=lambda: np.eye(4))
    high_grad_depth: np.ndarray = field(default_factory=lambda: np.empty((0,)))
    high_grad_sqrt_uncertainty: np.ndarray = field(
        default_factory=lambda: np.empty((0,))
    )
    high_grad_homo: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    high_grad_pixels: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))

    def __post_init__(self) -> None:
        n = len(self.high_grad_depth)
        if (
            len(self.high_grad_sqrt_uncertainty) != n
            or len(self.high_grad_homo) != n
            or len(self.high_grad_pixels) != n
        ):
            msg = "High gradient point arrays must have the same length"
            raise ValueError(msg)

    @property
    def num_points(self) -> int:
        return len(self.high_grad_depth)

    @property
    def depth_plus_sigma(self) -> np.ndarray:
        return self.high_grad_depth + self.high_grad_sqrt_uncertainty

    def get_pose(self) -> np.ndarray:
        return self.T_cw.copy()

    def get_pose_inverse(self) -> np.ndarray:
        return invert_transform(self.T_cw)
