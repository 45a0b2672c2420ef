import logging

import cv2
import numpy as np

from cubetrack.config.config import TrackingConfig
from cubetrack.datatypes import KeyFrame

logger = logging.getLogger(__name__)


def gradient_magnitude(image: np.ndarray) -> np.ndarray:
    """Sobel gradient magnitude of the grayscale image."""
    gray = image
    if image.ndim == 3:
        gray = cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_BGR2GRAY)
    gray = gray.astype(np.float32)
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    return cv2.magnitude(gx, gy)


def select_high_gradient_points(
    image: np.ndarray,
    depth: np.ndarray,
    sqrt_uncertainty: np.ndarray | None,
    num_points: int,
    config: TrackingConfig,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Grid-based selection of a fixed number of high gradient points.

    Args:
        image: Color image (H, W, 3).
        depth: Depth map (H, W), non-positive or non-finite means unknown.
        sqrt_uncertainty: Per pixel depth standard deviation (H, W), or None
            to use a fixed fraction of the depth.
        num_points: Exact number of points to return.
        config: Configuration object containing grid settings.

    Returns:
        Tuple of parallel arrays, each of length num_points (or empty if no
        pixel has a valid depth):
        - depth (N,)
        - sqrt uncertainty (N,)
        - homogeneous pixel coordinates (N, 3)
        - pixel colors (N, 3)

    """
    h, w = depth.shape[:2]
    if image.shape[:2] != (h, w):
        msg = f"Image {image.shape[:2]} and depth {(h, w)} sizes differ"
        raise ValueError(msg)

    if sqrt_uncertainty is None:
        sqrt_uncertainty = depth * config.uncertainty_scale

    mag = gradient_magnitude(image)
    valid_depth = np.isfinite(depth) & (depth > 0)
    m = config.border_margin
    if m > 0:
        border = np.ones((h, w), dtype=bool)
        border[m : h - m, m : w - m] = False
        valid_depth &= ~border
    strong = valid_depth & (mag >= config.min_gradient)
    if not np.any(strong):
        # flat image, keep whatever has depth
        strong = valid_depth
    if not np.any(strong):
        logger.warning("No pixel with valid depth, empty point set")
        empty = np.empty((0,))
        return empty, empty.copy(), np.empty((0, 3)), np.empty((0, 3))

    n_rows = config.grid_rows
    n_cols = config.grid_cols
    per_cell = int(np.ceil(num_points / (n_rows * n_cols)))
    cell_h = int(np.ceil(h / n_rows))
    cell_w = int(np.ceil(w / n_cols))

    selected = []
    for r in range(n_rows):
        for c in range(n_cols):
            y1, x1 = r * cell_h, c * cell_w
            y2, x2 = min(y1 + cell_h, h), min(x1 + cell_w, w)
            if y1 >= y2 or x1 >= x2:
                continue

            ys, xs = np.nonzero(strong[y1:y2, x1:x2])
            if len(ys) == 0:
                continue

            # strongest pixels of this cell
            cell_mag = mag[y1:y2, x1:x2][ys, xs]
            order = np.argsort(-cell_mag, kind="stable")[:per_cell]
            selected.append(np.stack([ys[order] + y1, xs[order] + x1], axis=1))

    idx = np.vstack(selected)
    if len(idx) > num_points:
        order = np.argsort(-mag[idx[:, 0], idx[:, 1]], kind="stable")[:num_points]
        idx = idx[order]
    elif len(idx) < num_points:
        # the point set has a fixed size, repeat to fill it
        idx = np.resize(idx, (num_points, 2))

    ys, xs = idx[:, 0], idx[:, 1]
    homo = np.stack([xs, ys, np.ones(len(xs))], axis=1).astype(np.float64)
    pixels = image[ys, xs].reshape(len(xs), -1).astype(np.float64)

    return (
        depth[ys, xs].astype(np.float64),
        sqrt_uncertainty[ys, xs].astype(np.float64),
        homo,
        pixels,
    )


def make_keyframe(
    frame_id: int,
    image: np.ndarray,
    depth: np.ndarray,
    K: np.ndarray,
    T_cw: np.ndarray | None = None,
    sqrt_uncertainty: np.ndarray | None = None,
    config: TrackingConfig | None = None,
) -> KeyFrame:
    """
    Build a keyframe with its high gradient point set.

    Args:
        frame_id: Unique sequential identifier.
        image: Color image (H, W, 3).
        depth: Depth map (H, W).
        K: Intrinsic camera matrix.
        T_cw: World-to-Camera pose, identity by default.
        sqrt_uncertainty: Optional depth standard deviation map.
        config: Tracking configuration.

    Returns:
        The keyframe.

    """
    cfg = config or TrackingConfig()
    d, s, homo, pixels = select_high_gradient_points(
        image, depth, sqrt_uncertainty, cfg.num_points, cfg
    )
    return KeyFrame(
        frame_id=frame_id,
        image=image,
        K=K,
        inv_K=np.linalg.inv(K),
        T_cw=np.eye(4) if T_cw is None else np.array(T_cw, dtype=np.float64),
        high_grad_depth=d,
        high_grad_sqrt_uncertainty=s,
        high_grad_homo=homo,
        high_grad_pixels=pixels,
    )
