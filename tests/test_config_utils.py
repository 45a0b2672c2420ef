import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from cubetrack.config.config import TrackingConfig, get_config
from cubetrack.geometry import t_from_rt
from cubetrack.modules.utils import (
    camera_center,
    create_camera_matrix,
    save_trajectory,
)


@pytest.mark.parametrize("dataset", ["tum", "kitti", "synthetic"])
def test_presets(dataset):
    cfg = get_config(dataset)
    assert isinstance(cfg, TrackingConfig)
    assert cfg.num_points > 0
    assert cfg.max_seconds > 0


def test_unknown_preset_raises():
    with pytest.raises(ValueError):
        get_config("euroc")


def test_camera_matrix_and_center():
    K = create_camera_matrix(500.0, 400.0, 320.0, 240.0)
    np.testing.assert_array_equal(K, [[500, 0, 320], [0, 400, 240], [0, 0, 1]])
    T_cw = t_from_rt(np.eye(3), [1.0, -2.0, 3.0])
    np.testing.assert_allclose(camera_center(T_cw), [-1, 2, -3])


def test_trajectory_file(tmp_path):
    R = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    poses = [np.eye(4), t_from_rt(R, [0.5, 0.0, -1.0])]
    path = tmp_path / "trajectory.txt"
    save_trajectory(poses, [0.0, 1.5], str(path))

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    assert [float(x) for x in lines[0].split()] == [0.0] * 7 + [1.0]

    # second line holds the camera-to-world motion
    row = np.array([float(x) for x in lines[1].split()])
    assert row[0] == 1.5
    np.testing.assert_allclose(row[1:4], camera_center(poses[1]), atol=1e-6)
    R_wc = Rotation.from_quat(row[4:8]).as_matrix()
    np.testing.assert_allclose(R_wc, R.T, atol=1e-5)

    with pytest.raises(ValueError):
        save_trajectory(poses, [0.0], str(path))
