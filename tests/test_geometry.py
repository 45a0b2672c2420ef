import numpy as np
import pytest

from cubetrack.geometry import (
    FLT_MAX,
    bbox_iou,
    clip_segment_to_rect,
    distance,
    inside,
    invert_transform,
    is_parallel,
    is_sentinel,
    line_intersection,
    line_intersection_or_none,
    line_intersection_x,
    line_intersection_y,
    point_from_2d_homo,
    points_from_2d_homo,
    t_from_rt,
)


def _on_line(p, A, B) -> bool:
    A, B, p = np.asarray(A, float), np.asarray(B, float), np.asarray(p, float)
    d = B - A
    cross = d[0] * (p[1] - A[1]) - d[1] * (p[0] - A[0])
    return abs(cross) < 1e-6 * max(1.0, np.linalg.norm(d) * np.linalg.norm(p - A))


def test_line_intersection_lies_on_both_lines():
    rng = np.random.default_rng(0)
    for _ in range(100):
        A, B, C, D = rng.uniform(-100, 100, size=(4, 2))
        if is_parallel(A, B, C, D):
            continue
        p = line_intersection(A, B, C, D)
        assert np.all(np.isfinite(p))
        assert _on_line(p, A, B)
        assert _on_line(p, C, D)


def test_line_intersection_parallel_returns_sentinel():
    p = line_intersection((0, 0), (1, 1), (0, 1), (2, 3))
    assert p[0] == FLT_MAX and p[1] == FLT_MAX
    assert is_sentinel(p)
    assert line_intersection_or_none((0, 0), (1, 1), (0, 1), (2, 3)) is None


def test_line_intersection_simple():
    p = line_intersection((0, 0), (2, 2), (0, 2), (2, 0))
    np.testing.assert_allclose(p, [1, 1])
    assert not is_sentinel(p)


def test_is_parallel_is_sign_independent():
    assert is_parallel((0, 0), (1, 0), (5, 5), (7, 5))
    assert not is_parallel((0, 0), (1, 0), (0, 0), (0, 1))
    # negative cross product is not parallel
    assert not is_parallel((0, 0), (0, 1), (0, 0), (1, 0))


def test_line_intersection_x_and_y():
    np.testing.assert_allclose(line_intersection_x((0, 0), (2, 4), 1.0), [1, 2])
    np.testing.assert_allclose(line_intersection_y((0, 0), (2, 4), 2.0), [1, 2])


def test_line_intersection_x_vertical_is_not_finite():
    p = line_intersection_x((1, 0), (1, 5), 3.0)
    assert not np.all(np.isfinite(p))
    p = line_intersection_y((0, 1), (5, 1), 3.0)
    assert not np.all(np.isfinite(p))


@pytest.mark.parametrize(
    "homo",
    [
        (1.0, 2.0, 0.0),
        (-3.0, 1.0, 0.0),
        (0.0, 0.0, 0.0),
        (1e30, -1e30, 1e-30),
        (5.0, 7.0, 1e-9),
        (-1e300, 1.0, 0.5),
    ],
)
def test_point_from_2d_homo_is_always_finite(homo):
    p = point_from_2d_homo(homo)
    assert np.all(np.isfinite(p))
    assert np.all(np.abs(p) <= 1e6) or abs(homo[2]) >= 1


def test_point_from_2d_homo_divides_regular_points():
    np.testing.assert_allclose(point_from_2d_homo((4.0, 6.0, 2.0)), [2, 3])
    np.testing.assert_allclose(point_from_2d_homo((0.04, 0.06, 0.02)), [2, 3])


def test_point_from_2d_homo_clamps_keeping_direction():
    p = point_from_2d_homo((2.0, 1.0, 0.0))
    np.testing.assert_allclose(p, [1e6, 5e5])
    p = point_from_2d_homo((1.0, -4.0, 0.0))
    np.testing.assert_allclose(p, [2.5e5, -1e6])


def test_points_from_2d_homo_vectorized():
    homo = np.array([[4.0, 6.0, 2.0], [2.0, 1.0, 0.0], [0.0, 0.0, 0.0]])
    pts = points_from_2d_homo(homo)
    assert pts.shape == (3, 2)
    np.testing.assert_allclose(pts[0], [2, 3])
    np.testing.assert_allclose(pts[2], [0, 0])


def test_invert_transform():
    R = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    T = t_from_rt(R, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(invert_transform(T) @ T, np.eye(4), atol=1e-12)


def test_inside_distance_and_iou():
    assert inside((5, 5), (0, 0, 10, 10))
    assert inside((10, 10), (0, 0, 10, 10))
    assert not inside((11, 5), (0, 0, 10, 10))
    assert distance((0, 0), (3, 4)) == pytest.approx(5.0)
    assert bbox_iou((0, 0, 10, 10), (0, 0, 10, 10)) == pytest.approx(1.0)
    assert bbox_iou((0, 0, 10, 10), (5, 0, 10, 10)) == pytest.approx(50 / 150)
    assert bbox_iou((0, 0, 1, 1), (5, 5, 1, 1)) == 0.0


def test_clip_segment_to_rect():
    seg = clip_segment_to_rect((-10, 5), (20, 5), (0, 0, 10, 10))
    assert seg is not None
    np.testing.assert_allclose(seg[0], [0, 5])
    np.testing.assert_allclose(seg[1], [10, 5])

    # fully inside stays untouched
    seg = clip_segment_to_rect((1, 1), (2, 3), (0, 0, 10, 10))
    np.testing.assert_allclose(seg[0], [1, 1])
    np.testing.assert_allclose(seg[1], [2, 3])

    # misses the rectangle
    assert clip_segment_to_rect((20, 20), (30, 25), (0, 0, 10, 10)) is None
