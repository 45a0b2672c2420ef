"""Geometric calculations."""

import numpy as np

# sentinel coordinate for "no intersection"
FLT_MAX = float(np.finfo(np.float32).max)

# bound used to clamp homogeneous points near infinity
HOMO_RANGE = 1e6

PARALLEL_EPS = 1e-6


def _pt(p) -> np.ndarray:
    return np.asarray(p, dtype=np.float64).reshape(2)


def is_parallel(A, B, C, D) -> bool:
    """Whether line AB and line CD are parallel."""
    A, B, C, D = _pt(A), _pt(B), _pt(C), _pt(D)
    det = (A[0] - B[0]) * (C[1] - D[1]) - (A[1] - B[1]) * (C[0] - D[0])
    return bool(abs(det) < PARALLEL_EPS)


def line_intersection_x(A, B, x: float) -> np.ndarray:
    """
    Point on the infinite line AB with the given x coordinate.

    Non-finite when AB is vertical, guard with is_parallel first.
    """
    A, B = _pt(A), _pt(B)
    with np.errstate(divide="ignore", invalid="ignore"):
        y = A[1] + (B[1] - A[1]) * (x - A[0]) / (B[0] - A[0])
    return np.array([x, y], dtype=np.float64)


def line_intersection_y(A, B, y: float) -> np.ndarray:
    """
    Point on the infinite line AB with the given y coordinate.

    Non-finite when AB is horizontal, guard with is_parallel first.
    """
    A, B = _pt(A), _pt(B)
    with np.errstate(divide="ignore", invalid="ignore"):
        x = A[0] + (B[0] - A[0]) * (y - A[1]) / (B[1] - A[1])
    return np.array([x, y], dtype=np.float64)


def line_intersection(A, B, C, D) -> np.ndarray:
    """
    Intersection point of line AB and line CD (not segments).

    Args:
        A, B: Two points on the first line.
        C, D: Two points on the second line.

    Returns:
        The intersection point, or (FLT_MAX, FLT_MAX) if the lines are parallel.

    """
    A, B, C, D = _pt(A), _pt(B), _pt(C), _pt(D)

    # line AB as a1 x + b1 y = c1
    a1 = B[1] - A[1]
    b1 = A[0] - B[0]
    c1 = a1 * A[0] + b1 * A[1]

    # line CD as a2 x + b2 y = c2
    a2 = D[1] - C[1]
    b2 = C[0] - D[0]
    c2 = a2 * C[0] + b2 * C[1]

    determinant = a1 * b2 - a2 * b1
    if determinant == 0:
        return np.array([FLT_MAX, FLT_MAX], dtype=np.float64)

    x = (b2 * c1 - b1 * c2) / determinant
    y = (a1 * c2 - a2 * c1) / determinant
    return np.array([x, y], dtype=np.float64)


def is_sentinel(p) -> bool:
    """Whether p is the "no intersection" point."""
    p = _pt(p)
    return bool(p[0] == FLT_MAX and p[1] == FLT_MAX)


def line_intersection_or_none(A, B, C, D) -> np.ndarray | None:
    """Like line_intersection, but None for parallel lines."""
    p = line_intersection(A, B, C, D)
    if is_sentinel(p):
        return None
    return p


def points_from_2d_homo(homo: np.ndarray) -> np.ndarray:
    """
    Convert homogeneous points to 2D without overflowing near Z = 0.

    Points whose image would leave [-1e6, 1e6] are clamped to that bound along
    their dominant axis, keeping their direction. The output is always finite
    for finite input.

    Args:
        homo: (N, 3) homogeneous points [X, Y, Z].

    Returns:
        (N, 2) euclidean points.

    """
    homo = np.asarray(homo, dtype=np.float64).reshape(-1, 3)
    X, Y, Z = homo[:, 0], homo[:, 1], homo[:, 2]
    abs_z = np.abs(Z)
    abs_x = np.abs(X)
    abs_y = np.abs(Y)
    max_abs_xy = np.maximum(abs_x, abs_y)

    divisible = (abs_z >= 1) | (max_abs_xy < HOMO_RANGE * abs_z)
    x_dominant = abs_x > abs_y

    out = np.zeros((len(homo), 2), dtype=np.float64)
    safe_z = np.where(divisible, Z, 1.0)
    out[divisible, 0] = X[divisible] / safe_z[divisible]
    out[divisible, 1] = Y[divisible] / safe_z[divisible]

    # clamp along x
    cx = ~divisible & x_dominant
    x = np.where(X[cx] > 0, HOMO_RANGE, -HOMO_RANGE)
    out[cx, 0] = x
    out[cx, 1] = x * (Y[cx] / X[cx])

    # clamp along y, the all zero vector stays at the origin
    cy = ~divisible & ~x_dominant & (abs_y > 0)
    y = np.where(Y[cy] > 0, HOMO_RANGE, -HOMO_RANGE)
    out[cy, 1] = y
    out[cy, 0] = y * (X[cy] / Y[cy])

    return out


def point_from_2d_homo(homo) -> np.ndarray:
    """Convert a single homogeneous 3-vector to a 2D point."""
    return points_from_2d_homo(np.asarray(homo).reshape(1, 3))[0]


def t_from_rt(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Build a 4x4 transform from a rotation and a translation."""
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = np.asarray(t, dtype=np.float64).ravel()
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Closed form inverse of a rigid 4x4 transform."""
    R = T[:3, :3]
    t = T[:3, 3]
    T_inv = np.eye(4)
    T_inv[:3, :3] = R.T
    T_inv[:3, 3] = -R.T @ t
    return T_inv


def distance_square(pt1, pt2) -> float:
    d = _pt(pt1) - _pt(pt2)
    return float(d @ d)


def distance(pt1, pt2) -> float:
    return float(np.sqrt(distance_square(pt1, pt2)))


def inside(pt, bbox: tuple[float, float, float, float]) -> bool:
    """Whether pt lies in the (x, y, w, h) box, borders included."""
    x, y = _pt(pt)
    bx, by, bw, bh = bbox
    return bool(bx <= x <= bx + bw and by <= y <= by + bh)


def bbox_iou(
    a: tuple[float, float, float, float], b: tuple[float, float, float, float]
) -> float:
    """Intersection over union of two (x, y, w, h) boxes."""
    ix = max(0.0, min(a[0] + a[2], b[0] + b[2]) - max(a[0], b[0]))
    iy = max(0.0, min(a[1] + a[3], b[1] + b[3]) - max(a[1], b[1]))
    inter = ix * iy
    union = a[2] * a[3] + b[2] * b[3] - inter
    if union <= 0:
        return 0.0
    return float(inter / union)


def clip_segment_to_rect(
    A, B, rect: tuple[float, float, float, float]
) -> tuple[np.ndarray, np.ndarray] | None:
    """
    Clip segment AB against an (x, y, w, h) rectangle.

    Args:
        A, B: Segment end points.
        rect: Clipping rectangle.

    Returns:
        The clipped end points, or None if the segment misses the rectangle.

    """
    A, B = _pt(A), _pt(B)
    x0, y0, w, h = rect
    x1, y1 = x0 + w, y0 + h

    # each border is a line, skip the ones parallel to AB
    borders = [
        ((x0, y0), (x0, y1), "x", x0),
        ((x1, y0), (x1, y1), "x", x1),
        ((x0, y0), (x1, y0), "y", y0),
        ((x0, y1), (x1, y1), "y", y1),
    ]

    candidates = [p for p in (A, B) if inside(p, rect)]
    for C, D, axis, value in borders:
        if is_parallel(A, B, C, D):
            continue
        if axis == "x":
            p = line_intersection_x(A, B, value)
        else:
            p = line_intersection_y(A, B, value)
        if not np.all(np.isfinite(p)):
            continue
        # must lie on the segment and on the border
        on_segment = (
            min(A[0], B[0]) - 1e-9 <= p[0] <= max(A[0], B[0]) + 1e-9
            and min(A[1], B[1]) - 1e-9 <= p[1] <= max(A[1], B[1]) + 1e-9
        )
        if on_segment and inside(p, (x0 - 1e-9, y0 - 1e-9, w + 2e-9, h + 2e-9)):
            candidates.append(p)

    if len(candidates) < 2:
        return None

    # the two candidates furthest apart span the clipped segment
    d = B - A
    params = [float((p - A) @ d) for p in candidates]
    lo = candidates[int(np.argmin(params))]
    hi = candidates[int(np.argmax(params))]
    return lo, hi
