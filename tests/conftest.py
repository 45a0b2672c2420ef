import numpy as np
import pytest

from cubetrack.config.config import get_config
from cubetrack.dataset_loader import SyntheticDataset
from cubetrack.modules.utils import create_camera_matrix


@pytest.fixture
def K() -> np.ndarray:
    return create_camera_matrix(300.0, 300.0, 160.0, 120.0)


@pytest.fixture(scope="module")
def synthetic_cfg():
    return get_config("synthetic")


@pytest.fixture(scope="module")
def dataset(synthetic_cfg) -> SyntheticDataset:
    return SyntheticDataset(config=synthetic_cfg)
