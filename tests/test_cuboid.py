import numpy as np

from cubetrack.modules.cuboid import CUBOID_EDGES, Cuboid2D, local_corners


def _square_cuboid() -> Cuboid2D:
    corners = np.array(
        [
            [100, 150], [200, 150], [220, 170], [120, 170],
            [100, 50], [200, 50], [220, 70], [120, 70],
        ],
        dtype=float,
    )
    return Cuboid2D(np.eye(3), corners, valid=True)


def test_local_corner_layout():
    corners = local_corners([2.0, 4.0, 6.0])
    assert corners.shape == (8, 3)
    # bottom face then top face, corner i above corner i + 4
    np.testing.assert_allclose(corners[:4, 1], 2.0)
    np.testing.assert_allclose(corners[4:, 1], -2.0)
    np.testing.assert_allclose(corners[:4, [0, 2]], corners[4:, [0, 2]])
    assert len(CUBOID_EDGES) == 12
    assert len({tuple(sorted(e)) for e in CUBOID_EDGES}) == 12


def test_copy_is_deep():
    cuboid = _square_cuboid()
    other = cuboid.copy()
    other.R_lc[0, 0] = 5.0
    other.corners[0] = [0, 0]
    other.is_corner_visible[0] = False
    assert cuboid.R_lc[0, 0] == 1.0
    np.testing.assert_allclose(cuboid.corners[0], [100, 150])
    assert cuboid.is_corner_visible[0]


def test_str_lists_all_corners():
    text = str(_square_cuboid())
    assert text.startswith("[[100, 150]")
    assert text.count("[") == 9


def test_centroid_from_diagonals():
    cuboid = _square_cuboid()
    c = cuboid.get_centroid()
    np.testing.assert_allclose(c, [160, 110])


def test_centroid_falls_back_to_mean():
    cuboid = Cuboid2D(corners=np.full((8, 2), 7.0))
    np.testing.assert_allclose(cuboid.get_centroid(), [7, 7])


def test_bounding_box_visible_corners():
    cuboid = _square_cuboid()
    assert cuboid.bounding_box() == (100.0, 50.0, 120.0, 120.0)

    cuboid.is_corner_visible[:] = False
    assert cuboid.bounding_box() is None


def test_bounding_box_clipped_to_image():
    cuboid = _square_cuboid()
    cuboid.corners[:, 0] -= 150  # partly left of the image
    x, y, w, h = cuboid.bounding_box((320, 240))
    assert x == 0.0
    assert w == 70.0
    assert y == 50.0 and h == 120.0


def test_draw_skips_invisible_edges():
    canvas = np.zeros((240, 320, 3), dtype=np.uint8)
    cuboid = _square_cuboid()
    cuboid.is_corner_visible[:] = False
    cuboid.draw(canvas, np.eye(3))
    assert canvas.sum() == 0

    cuboid.is_corner_visible[:] = True
    cuboid.draw(canvas, np.eye(3), (0, 255, 0))
    assert canvas[:, :, 1].sum() > 0


def test_draw_handles_far_and_infinite_points(K):
    canvas = np.zeros((240, 320, 3), dtype=np.uint8)
    cuboid = _square_cuboid()
    cuboid.corners[0] = [1e6, -1e6]
    # camera aligned axes put two vanishing points at infinity
    cuboid.draw(canvas, K, (255, 255, 255), axis_tick_length=15)
    assert canvas.sum() > 0
