from dataclasses import dataclass


@dataclass
class TrackingConfig:
    """Configuration data class for photometric tracking and cuboid landmarks."""

    # photometric pose estimation
    num_points: int = 1000  # fixed size of the high gradient point set
    huber_delta: float = 1.0
    camera_pixel_noise2: float = 4.0  # pixel noise variance
    max_seconds: float = 0.1  # hard wall-clock budget for one solve
    max_num_iterations: int = 50
    numeric_diff_step: float = 1e-3  # central difference step on (r, t)

    # high gradient point selection
    grid_rows: int = 8
    grid_cols: int = 8
    min_gradient: float = 10.0
    uncertainty_scale: float = 0.1  # sqrt uncertainty as a fraction of depth
    border_margin: int = 8  # pixels excluded at the image border

    # landmarks
    default_object_depth: float = 1.0  # used when no depth is available

    # visualization
    axis_tick_length: float = 20.0  # pixels


def get_config(dataset: str) -> TrackingConfig:
    """
    Return the specific configuration for a dataset.

    Args:
        dataset: Name of the dataset (tum, kitti, synthetic).

    Returns:
        The configuration object with dataset-specific overrides.

    Raises:
        ValueError: If the dataset has no preset.

    """
    cfg = TrackingConfig()

    if dataset == "tum":
        cfg.num_points = 1000
        cfg.camera_pixel_noise2 = 4.0
        cfg.max_seconds = 0.1
        cfg.min_gradient = 10.0
        cfg.default_object_depth = 1.5

    elif dataset == "kitti":
        cfg.num_points = 2000
        cfg.camera_pixel_noise2 = 9.0
        cfg.max_seconds = 0.15
        cfg.grid_rows = 4
        cfg.grid_cols = 12
        cfg.min_gradient = 15.0
        cfg.default_object_depth = 10.0

    elif dataset == "synthetic":
        cfg.num_points = 200
        cfg.camera_pixel_noise2 = 1.0
        cfg.max_seconds = 5.0
        cfg.max_num_iterations = 100
        cfg.min_gradient = 1.0
        cfg.grid_rows = 10
        cfg.grid_cols = 10
        cfg.border_margin = 16

    else:
        msg = f"Unsupported dataset preset: {dataset}"
        raise ValueError(msg)

    return cfg
