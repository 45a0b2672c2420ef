import numpy as np
import pytest

from cubetrack.config.config import TrackingConfig
from cubetrack.modules.high_gradient import make_keyframe, select_high_gradient_points


def _checker(h=120, w=160) -> np.ndarray:
    vs, us = np.mgrid[0:h, 0:w]
    board = (((us // 10) + (vs // 10)) % 2 * 200 + 20).astype(np.uint8)
    return np.stack([board, board, board], axis=-1)


def test_selects_exactly_num_points_on_edges():
    cfg = TrackingConfig(grid_rows=4, grid_cols=4, border_margin=4)
    image = _checker()
    depth = np.full(image.shape[:2], 2.0)
    d, s, homo, pixels = select_high_gradient_points(image, depth, None, 300, cfg)

    assert d.shape == (300,)
    assert s.shape == (300,)
    assert homo.shape == (300, 3)
    assert pixels.shape == (300, 3)
    np.testing.assert_allclose(d, 2.0)
    np.testing.assert_allclose(s, 2.0 * cfg.uncertainty_scale)
    np.testing.assert_allclose(homo[:, 2], 1.0)

    u, v = homo[:, 0].astype(int), homo[:, 1].astype(int)
    assert np.all((u >= 4) & (u < 156) & (v >= 4) & (v < 116))
    # checkerboard edges sit next to a multiple of 10
    near_edge = (np.minimum(u % 10, 10 - u % 10) <= 1) | (
        np.minimum(v % 10, 10 - v % 10) <= 1
    )
    assert near_edge.all()
    np.testing.assert_array_equal(pixels, image[v, u].astype(float))


def test_skips_pixels_without_depth():
    cfg = TrackingConfig(grid_rows=2, grid_cols=2, border_margin=0)
    image = _checker()
    depth = np.full(image.shape[:2], 2.0)
    depth[:, :80] = 0.0
    depth[:, 100:] = np.nan
    _, _, homo, _ = select_high_gradient_points(image, depth, None, 50, cfg)
    assert np.all((homo[:, 0] >= 80) & (homo[:, 0] < 100))


def test_pads_to_fixed_size():
    cfg = TrackingConfig(grid_rows=1, grid_cols=1, border_margin=0)
    image = _checker(20, 20)
    depth = np.zeros((20, 20))
    depth[5, 5] = 1.0
    depth[6, 6] = 1.5
    d, _, homo, _ = select_high_gradient_points(image, depth, None, 10, cfg)
    assert len(d) == 10
    assert set(np.unique(d)) == {1.0, 1.5}


def test_no_depth_gives_empty_set():
    cfg = TrackingConfig()
    image = _checker()
    d, s, homo, pixels = select_high_gradient_points(
        image, np.zeros(image.shape[:2]), None, 100, cfg
    )
    assert len(d) == len(s) == len(homo) == len(pixels) == 0


def test_size_mismatch_raises():
    with pytest.raises(ValueError):
        select_high_gradient_points(
            _checker(), np.ones((10, 10)), None, 10, TrackingConfig()
        )


def test_make_keyframe(K):
    cfg = TrackingConfig(num_points=64, grid_rows=2, grid_cols=2)
    image = _checker()
    kf = make_keyframe(3, image, np.full(image.shape[:2], 1.5), K, config=cfg)
    assert kf.frame_id == 3
    assert kf.num_points == 64
    np.testing.assert_allclose(kf.inv_K @ K, np.eye(3), atol=1e-12)
    np.testing.assert_array_equal(kf.get_pose(), np.eye(4))
    np.testing.assert_allclose(kf.depth_plus_sigma, 1.5 * 1.1)
