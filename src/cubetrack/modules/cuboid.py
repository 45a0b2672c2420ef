import cv2
import numpy as np

from cubetrack.datatypes import BoundingBox
from cubetrack.geometry import (
    HOMO_RANGE,
    clip_segment_to_rect,
    line_intersection_or_none,
    point_from_2d_homo,
)

# local corner signs, bottom face (+y, camera y points down) then top face,
# corner i and corner i + 4 share x and z
CORNER_SIGNS = np.array(
    [
        [-1, 1, -1],
        [1, 1, -1],
        [1, 1, 1],
        [-1, 1, 1],
        [-1, -1, -1],
        [1, -1, -1],
        [1, -1, 1],
        [-1, -1, 1],
    ],
    dtype=np.float64,
)

# bottom ring, top ring, verticals
CUBOID_EDGES = (
    (0, 1), (1, 2), (2, 3), (3, 0),
    (4, 5), (5, 6), (6, 7), (7, 4),
    (0, 4), (1, 5), (2, 6), (3, 7),
)

# BGR colors of the local x, y, z direction ticks
AXIS_COLORS = ((0, 0, 255), (0, 255, 0), (255, 0, 0))


def local_corners(dims: np.ndarray) -> np.ndarray:
    """
    Corners of a cuboid centered at the local origin.

    Args:
        dims: [width, height, length].

    Returns:
        (8, 3) corners in the fixed corner order.

    """
    return CORNER_SIGNS * (np.asarray(dims, dtype=np.float64).ravel() / 2.0)


class Cuboid2D:
    """
    Image-space projection of a cuboid.

    Attributes:
        R_lc: Rotation of the camera frame relative to the cuboid frame (3x3).
        corners: (8, 2) projected corners in the fixed corner order.
        is_corner_visible: (8,) flags, False for corners behind the camera.
        valid: Only valid projections may feed downstream geometry.

    """

    def __init__(
        self,
        R_lc: np.ndarray | None = None,
        corners: np.ndarray | None = None,
        is_corner_visible: np.ndarray | None = None,
        valid: bool = False,
    ) -> None:
        self.R_lc = None if R_lc is None else np.array(R_lc, dtype=np.float64)
        self.corners = (
            np.zeros((8, 2))
            if corners is None
            else np.array(corners, dtype=np.float64).reshape(8, 2)
        )
        self.is_corner_visible = (
            np.ones(8, dtype=bool)
            if is_corner_visible is None
            else np.array(is_corner_visible, dtype=bool).reshape(8)
        )
        self.valid = valid

    def copy(self) -> "Cuboid2D":
        return Cuboid2D(self.R_lc, self.corners, self.is_corner_visible, self.valid)

    def __copy__(self) -> "Cuboid2D":
        return self.copy()

    def __str__(self) -> str:
        pts = ",".join(f"[{x:g}, {y:g}]" for x, y in self.corners)
        return f"[{pts}]"

    def get_centroid(self) -> np.ndarray:
        """
        Projected cuboid center.

        The space diagonals meet at the cuboid center, so their projections
        meet at its image. Falls back to the corner mean if they are parallel.
        """
        c = self.corners
        center = line_intersection_or_none(c[0], c[6], c[1], c[7])
        if center is None:
            return c.mean(axis=0)
        return center

    def bounding_box(
        self, image_size: tuple[int, int] | None = None
    ) -> BoundingBox | None:
        """
        Axis-aligned box around the visible part of the cuboid.

        Args:
            image_size: Optional (width, height) to clip the edges against.

        Returns:
            (x, y, w, h), or None if nothing is visible.

        """
        if image_size is None:
            pts = self.corners[self.is_corner_visible]
        else:
            rect = (0.0, 0.0, float(image_size[0] - 1), float(image_size[1] - 1))
            clipped = []
            for i, j in CUBOID_EDGES:
                if not (self.is_corner_visible[i] and self.is_corner_visible[j]):
                    continue
                seg = clip_segment_to_rect(self.corners[i], self.corners[j], rect)
                if seg is not None:
                    clipped.extend(seg)
            pts = np.array(clipped).reshape(-1, 2)

        if len(pts) == 0:
            return None
        x0, y0 = pts.min(axis=0)
        x1, y1 = pts.max(axis=0)
        return float(x0), float(y0), float(x1 - x0), float(y1 - y0)

    def draw(
        self,
        canvas: np.ndarray,
        K: np.ndarray,
        edge_color: tuple[int, int, int] = (255, 255, 255),
        axis_tick_length: float = 20.0,
    ) -> None:
        """
        Draw the cuboid edges onto canvas in place.

        Edges with an invisible end point are skipped. When R_lc is known,
        short ticks from the centroid point toward the vanishing points of
        the three cuboid axes.

        Args:
            canvas: Image to draw on.
            K: Intrinsic matrix used to find the vanishing points.
            edge_color: Color of the edges.
            axis_tick_length: Length of the direction ticks in pixels.

        """
        h, w = canvas.shape[:2]
        rect = (0.0, 0.0, float(w - 1), float(h - 1))

        def to_px(p: np.ndarray) -> tuple[int, int]:
            p = np.clip(p, -HOMO_RANGE, HOMO_RANGE)
            return int(round(p[0])), int(round(p[1]))

        for i, j in CUBOID_EDGES:
            if not (self.is_corner_visible[i] and self.is_corner_visible[j]):
                continue
            seg = clip_segment_to_rect(self.corners[i], self.corners[j], rect)
            if seg is None:
                continue
            cv2.line(canvas, to_px(seg[0]), to_px(seg[1]), edge_color, 2)

        if self.R_lc is None or not np.all(self.is_corner_visible):
            return

        center = self.get_centroid()
        R_cl = self.R_lc.T
        for axis in range(3):
            vp = point_from_2d_homo(K @ R_cl[:, axis])
            direction = vp - center
            norm = np.linalg.norm(direction)
            if norm < 1e-9:
                continue
            tip = center + direction / norm * axis_tick_length
            seg = clip_segment_to_rect(center, tip, rect)
            if seg is not None:
                cv2.line(canvas, to_px(seg[0]), to_px(seg[1]), AXIS_COLORS[axis], 1)
